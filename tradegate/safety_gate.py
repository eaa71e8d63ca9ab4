"""Pre-trade safety gate.

Every trade intent passes through the gate BEFORE reaching the swap
executor. The gate rejects trades when:
    - The wallet has no signing key loaded
    - The trade is larger than the per-trade size limit
    - The cooldown since the previous execution has not elapsed
    - Realized losses in the rolling 24h window reached the daily limit

It also answers whether an asset has an executable route at all, by asking
the swap router for a small probe quote.

can_trade() reads state and never mutates it, except for lazily rolling a
stale 24h window. record_trade() and record_outcome() are the only writers.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable

import aiohttp

from tradegate.config import SOL_MINT, TradeGateConfig
from tradegate.errors import RouteUnavailable, TradeGateError

if TYPE_CHECKING:
    from tradegate.providers.jupiter import JupiterClient
    from tradegate.providers.wallet import SolanaWallet

log = logging.getLogger(__name__)

DAILY_WINDOW_SECONDS = 24 * 60 * 60
PUMP_FUN_SUFFIX = "pump"
PUMP_FUN_PROBE_SLIPPAGE_BPS = 1000


def is_pump_fun(address: str) -> bool:
    return address.lower().endswith(PUMP_FUN_SUFFIX)


# ---------------------------------------------------------------------------
# State and verdicts
# ---------------------------------------------------------------------------


@dataclass
class SafetyState:
    last_trade_time: float = 0.0  # 0 = never traded
    daily_pnl: float = 0.0
    daily_pnl_window_start: float = 0.0

    def to_dict(self) -> dict:
        return {
            "last_trade_time": self.last_trade_time,
            "daily_pnl": self.daily_pnl,
            "daily_pnl_window_start": self.daily_pnl_window_start,
        }


@dataclass(frozen=True)
class GateVerdict:
    """Result of a can_trade() evaluation."""

    allowed: bool
    reason: str = ""


@dataclass(frozen=True)
class TradabilityResult:
    """Result of a routing probe."""

    tradable: bool
    reason: str = ""
    is_pump_fun: bool = False

    def to_dict(self) -> dict:
        return {"tradable": self.tradable, "reason": self.reason, "is_pump_fun": self.is_pump_fun}


# ---------------------------------------------------------------------------
# Gate
# ---------------------------------------------------------------------------


class TradeSafetyGate:
    """Stateful trading policy.

    Checks, in order (first failure wins):
        1. Wallet ready
        2. Trade size limit
        3. Cooldown between executions
        4. Daily loss cap over a rolling 24h window
    """

    def __init__(
        self,
        router: JupiterClient,
        wallet: SolanaWallet,
        config: TradeGateConfig | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._router = router
        self._wallet = wallet
        self._config = config or TradeGateConfig.from_env()
        self._clock = clock
        self.state = SafetyState(daily_pnl_window_start=clock())

    @property
    def config(self) -> TradeGateConfig:
        return self._config

    def _roll_window_if_stale(self, now: float) -> None:
        if now - self.state.daily_pnl_window_start > DAILY_WINDOW_SECONDS:
            log.info(
                f"[GATE] Daily P&L window rolled (previous window closed at {self.state.daily_pnl:+.4f} SOL)"
            )
            self.state.daily_pnl = 0.0
            self.state.daily_pnl_window_start = now

    def can_trade(self, amount_sol: float) -> GateVerdict:
        cfg = self._config
        now = self._clock()

        # 1. Wallet
        if not self._wallet.is_ready:
            return self._deny("wallet not ready")

        # 2. Size
        if amount_sol > cfg.max_trade_size_sol:
            return self._deny(
                f"Trade size {amount_sol:.4f} SOL exceeds max {cfg.max_trade_size_sol:.4f} SOL"
            )

        # 3. Cooldown
        elapsed = now - self.state.last_trade_time
        if self.state.last_trade_time and elapsed < cfg.cooldown_seconds:
            remaining = cfg.cooldown_seconds - elapsed
            return self._deny(f"Cooldown active: {remaining:.0f}s remaining")

        # 4. Daily loss cap
        self._roll_window_if_stale(now)
        if self.state.daily_pnl < -cfg.daily_loss_limit_sol:
            return self._deny(
                f"Daily loss limit reached ({self.state.daily_pnl:.4f} SOL, limit -{cfg.daily_loss_limit_sol} SOL)"
            )

        return GateVerdict(allowed=True)

    def _deny(self, reason: str) -> GateVerdict:
        log.info(f"[GATE:DENY] {reason}")
        return GateVerdict(allowed=False, reason=reason)

    def record_trade(self) -> None:
        """Start the cooldown. Called after every successful execution."""
        self.state.last_trade_time = self._clock()

    def record_outcome(self, pnl_sol: float) -> None:
        """Add realized P&L to the current window. The window itself is rolled lazily by can_trade()."""
        self.state.daily_pnl += pnl_sol
        log.info(f"[GATE] Realized {pnl_sol:+.4f} SOL, daily P&L now {self.state.daily_pnl:+.4f} SOL")

    async def is_tradable(self, address: str) -> TradabilityResult:
        """Probe the router with a small SOL -> asset quote."""
        pump = is_pump_fun(address)
        slippage = PUMP_FUN_PROBE_SLIPPAGE_BPS if pump else self._config.probe_slippage_bps

        try:
            quote = await self._router.get_quote(
                SOL_MINT, address, self._config.probe_amount_lamports, slippage
            )
        except RouteUnavailable as e:
            if pump:
                reason = f"PUMP_FUN_NOT_GRADUATED: token may not have graduated to Jupiter yet ({e.message})"
            else:
                reason = f"NO_ROUTE: {e.message}"
            return self._not_tradable(address, reason, pump)
        except TradeGateError as e:
            return self._not_tradable(address, f"QUOTE_FAILED: {e.message}", pump)
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as e:
            return self._not_tradable(address, f"QUOTE_FAILED: network error: {e!r}", pump)
        except Exception as e:
            log.warning(f"[GATE] Unexpected probe failure for {address[:8]}...: {e}", exc_info=True)
            return self._not_tradable(address, f"QUOTE_FAILED: {e}", pump)

        if quote is None:
            return self._not_tradable(address, "QUOTE_FAILED: no response from router", pump)

        routes = [leg for leg in (quote.route_plan or []) if leg]
        if not routes:
            return self._not_tradable(
                address, "NO_ROUTE: no route found, the token may not be liquid enough", pump
            )

        return TradabilityResult(tradable=True, reason="route available", is_pump_fun=pump)

    def _not_tradable(self, address: str, reason: str, pump: bool) -> TradabilityResult:
        log.info(f"[GATE:NOT_TRADABLE] {address[:8]}... {reason}")
        return TradabilityResult(tradable=False, reason=reason, is_pump_fun=pump)

    def snapshot(self) -> dict:
        cfg = self._config
        return {
            **self.state.to_dict(),
            "wallet_ready": self._wallet.is_ready,
            "limits": {
                "max_trade_size_sol": cfg.max_trade_size_sol,
                "cooldown_seconds": cfg.cooldown_seconds,
                "daily_loss_limit_sol": cfg.daily_loss_limit_sol,
                "max_positions": cfg.max_positions,
            },
        }
