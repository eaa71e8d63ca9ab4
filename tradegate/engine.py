"""Wiring for the decision engine.

build_engine() turns a TradeGateConfig into connected components: wallet,
market data, swap router, safety gate, persisted ledger and orchestrator.
The CLI and any embedding agent go through here.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from tradegate.agent_tools import TradingToolExecutor
from tradegate.config import TradeGateConfig
from tradegate.ledger import PositionLedger
from tradegate.monitor import PositionMonitor
from tradegate.orchestrator import TradeDecisionOrchestrator
from tradegate.providers.dexscreener import DexScreenerClient
from tradegate.providers.jupiter import JupiterClient
from tradegate.providers.wallet import SolanaWallet, load_keypair
from tradegate.safe_state import SafeState
from tradegate.safety_gate import TradeSafetyGate

logger = logging.getLogger(__name__)


@dataclass
class TradeEngine:
    config: TradeGateConfig
    wallet: SolanaWallet
    market: DexScreenerClient
    router: JupiterClient
    gate: TradeSafetyGate
    ledger: PositionLedger
    orchestrator: TradeDecisionOrchestrator

    def tools(self) -> TradingToolExecutor:
        return TradingToolExecutor(
            self.orchestrator, self.gate, self.ledger, self.market, self.router, self.wallet
        )

    def monitor(self, auto_exit: bool = False) -> PositionMonitor:
        return PositionMonitor(
            self.ledger, self.market, orchestrator=self.orchestrator, auto_exit=auto_exit
        )

    async def close(self):
        await self.market.close()
        await self.router.close()
        await self.wallet.close()


def build_engine(
    config: Optional[TradeGateConfig] = None,
    keypair_path: Optional[str] = None,
) -> TradeEngine:
    """Construct every component from config and load persisted positions."""
    config = config or TradeGateConfig.from_env()
    for problem in config.validate():
        logger.warning(f"[CONFIG] {problem}")

    timeout = config.request_timeout_seconds
    wallet = SolanaWallet(load_keypair(keypair_path), rpc_url=config.rpc_url, timeout_seconds=timeout)
    market = DexScreenerClient(base_url=config.dexscreener_api_url, timeout_seconds=timeout)
    router = JupiterClient(
        wallet,
        api_url=config.jupiter_api_url,
        api_key=config.jupiter_api_key,
        dry_run=config.dry_run,
        timeout_seconds=timeout,
    )
    gate = TradeSafetyGate(router, wallet, config)
    ledger = PositionLedger(
        state=SafeState(config.positions_file),
        stop_loss_pct=config.stop_loss_pct,
        take_profit_pct=config.take_profit_pct,
    )
    ledger.load()
    orchestrator = TradeDecisionOrchestrator(gate, ledger, router, market, config)

    if config.dry_run:
        logger.info("Paper trading mode: swaps are quoted but never sent")

    return TradeEngine(
        config=config,
        wallet=wallet,
        market=market,
        router=router,
        gate=gate,
        ledger=ledger,
        orchestrator=orchestrator,
    )
