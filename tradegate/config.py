"""Runtime configuration for the trade decision engine.

Values come from the process environment, optionally seeded from a ``.env``
file. Existing environment variables always win over the file.

Usage:
    from tradegate.config import TradeGateConfig

    config = TradeGateConfig.from_env()
    problems = config.validate()
"""

from __future__ import annotations

import logging
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

from tradegate.errors import ConfigurationError

log = logging.getLogger(__name__)

SOL_MINT = "So11111111111111111111111111111111111111112"
USDC_MINT = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
LAMPORTS_PER_SOL = 1_000_000_000

DEFAULT_RPC_URL = "https://api.mainnet-beta.solana.com"
DEFAULT_JUPITER_API = "https://lite-api.jup.ag/swap/v1"
DEFAULT_DEXSCREENER_API = "https://api.dexscreener.com"

_TRUE_VALUES = {"1", "true", "yes", "on"}


def _default_positions_file() -> Path:
    return Path.home() / ".tradegate" / "positions.json"


def _read_float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be a number, got {raw!r}", {"var": name})


def _read_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {raw!r}", {"var": name})


def _read_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in _TRUE_VALUES


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@dataclass
class TradeGateConfig:
    # Safety policy
    max_trade_size_sol: float = 0.5
    max_positions: int = 2
    daily_loss_limit_sol: float = 1.0
    cooldown_seconds: float = 60.0

    # Exit thresholds applied to new positions
    stop_loss_pct: float = 15.0
    take_profit_pct: float = 50.0

    # Routing
    slippage_bps: int = 500
    probe_amount_lamports: int = 10_000_000  # 0.01 SOL
    probe_slippage_bps: int = 500

    # Endpoints
    rpc_url: str = DEFAULT_RPC_URL
    jupiter_api_url: str = DEFAULT_JUPITER_API
    jupiter_api_key: str = ""
    dexscreener_api_url: str = DEFAULT_DEXSCREENER_API
    request_timeout_seconds: float = 15.0

    positions_file: Path = field(default_factory=_default_positions_file)
    dry_run: bool = False

    log_level: str = "INFO"
    log_json: bool = False

    @classmethod
    def from_env(
        cls,
        env: Optional[Mapping[str, str]] = None,
        dotenv_path: Optional[Path] = None,
    ) -> TradeGateConfig:
        """Build a config from environment variables.

        When ``env`` is omitted a ``.env`` file is loaded first (without
        overriding variables that are already set) and ``os.environ`` is read.
        """
        if env is None:
            load_dotenv(dotenv_path, override=False)
            env = os.environ

        positions_file = env.get("TRADEGATE_POSITIONS_FILE")
        return cls(
            max_trade_size_sol=_read_float(env, "TRADEGATE_MAX_TRADE_SOL", 0.5),
            max_positions=_read_int(env, "TRADEGATE_MAX_POSITIONS", 2),
            daily_loss_limit_sol=_read_float(env, "TRADEGATE_DAILY_LOSS_LIMIT_SOL", 1.0),
            cooldown_seconds=_read_float(env, "TRADEGATE_COOLDOWN_SECONDS", 60.0),
            stop_loss_pct=_read_float(env, "TRADEGATE_STOP_LOSS_PCT", 15.0),
            take_profit_pct=_read_float(env, "TRADEGATE_TAKE_PROFIT_PCT", 50.0),
            slippage_bps=_read_int(env, "TRADEGATE_SLIPPAGE_BPS", 500),
            probe_amount_lamports=_read_int(env, "TRADEGATE_PROBE_LAMPORTS", 10_000_000),
            rpc_url=env.get("SOLANA_RPC_URL") or DEFAULT_RPC_URL,
            jupiter_api_url=env.get("JUPITER_API_URL") or DEFAULT_JUPITER_API,
            jupiter_api_key=env.get("JUPITER_API_KEY", ""),
            positions_file=Path(positions_file).expanduser() if positions_file else _default_positions_file(),
            dry_run=_read_bool(env, "TRADEGATE_DRY_RUN", False),
            log_level=env.get("TRADEGATE_LOG_LEVEL", "INFO").upper(),
            log_json=_read_bool(env, "TRADEGATE_LOG_JSON", False),
        )

    def validate(self) -> list[str]:
        """Return a list of configuration problems (empty when valid)."""
        problems = []
        if self.max_trade_size_sol <= 0:
            problems.append("max_trade_size_sol must be positive")
        if self.max_positions < 1:
            problems.append("max_positions must be at least 1")
        if self.daily_loss_limit_sol <= 0:
            problems.append("daily_loss_limit_sol must be positive")
        if self.cooldown_seconds < 0:
            problems.append("cooldown_seconds cannot be negative")
        if not 0 < self.stop_loss_pct < 100:
            problems.append("stop_loss_pct must be between 0 and 100")
        if self.take_profit_pct <= 0:
            problems.append("take_profit_pct must be positive")
        if not 0 < self.slippage_bps <= 10_000:
            problems.append("slippage_bps must be between 1 and 10000")
        return problems

    def to_dict(self) -> dict:
        data = asdict(self)
        data["positions_file"] = str(self.positions_file)
        if data["jupiter_api_key"]:
            data["jupiter_api_key"] = "***"
        return data
