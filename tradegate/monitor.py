"""
Position monitor - marks open positions to market and acts on exit triggers.

Each check refreshes the price of every open position through the ledger.
Crossed stop-loss / take-profit thresholds come back as ExitSignals; with
auto_exit enabled each signal is turned into a full-size sell intent and
routed through the decision orchestrator, so exits obey the same safety
gate as any other trade.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Callable, List, Optional

from tradegate.errors import DataUnavailable
from tradegate.ledger import ExitReason, PositionLedger
from tradegate.orchestrator import DecisionResult, TradeDirection, TradeIntent

if TYPE_CHECKING:
    from tradegate.orchestrator import TradeDecisionOrchestrator
    from tradegate.providers.dexscreener import DexScreenerClient

logger = logging.getLogger(__name__)


@dataclass
class ExitSignal:
    address: str
    symbol: str
    reason: ExitReason
    price: float
    pnl_pct: float
    decision: Optional[DecisionResult] = None

    def to_dict(self) -> dict:
        return {
            "address": self.address,
            "symbol": self.symbol,
            "reason": self.reason.value,
            "price": self.price,
            "pnl_pct": self.pnl_pct,
            "decision": self.decision.to_dict() if self.decision else None,
        }


class PositionMonitor:
    """Periodic stop-loss / take-profit checks."""

    def __init__(
        self,
        ledger: PositionLedger,
        market: DexScreenerClient,
        orchestrator: Optional[TradeDecisionOrchestrator] = None,
        auto_exit: bool = False,
    ):
        if auto_exit and orchestrator is None:
            raise ValueError("auto_exit requires an orchestrator")
        self._ledger = ledger
        self._market = market
        self._orchestrator = orchestrator
        self.auto_exit = auto_exit
        self._running = False
        self._task: Optional[asyncio.Task] = None

    async def check_positions(self) -> List[ExitSignal]:
        """Refresh every open position once. Returns the triggered exits."""
        signals = []
        for position in self._ledger.all():
            try:
                price = await self._market.get_price(position.address)
            except DataUnavailable as e:
                logger.warning(f"[MONITOR] No price for {position.symbol}, skipping: {e.message}")
                continue

            update = self._ledger.update_price(position.address, price)
            if not update.should_sell:
                continue

            signal = ExitSignal(
                address=position.address,
                symbol=position.symbol,
                reason=update.reason,
                price=price,
                pnl_pct=position.unrealized_pnl_pct,
            )
            if self.auto_exit:
                signal.decision = await self._exit(position.address, position.amount, update.reason)
            signals.append(signal)
        return signals

    async def _exit(self, address: str, amount: float, reason: ExitReason) -> DecisionResult:
        intent = TradeIntent(
            direction=TradeDirection.SELL,
            address=address,
            amount=amount,
            rationale=f"auto exit: {reason.value}",
        )
        result = await self._orchestrator.decide(intent)
        if not result.success:
            logger.warning(f"[MONITOR] Auto exit for {address[:8]}... not executed: {result.reason}")
        return result

    async def run(self, interval_seconds: float = 15, on_signal: Optional[Callable[[ExitSignal], None]] = None):
        """Check positions every interval in the foreground until stop() is called."""
        self._running = True
        logger.info(f"Monitoring positions (interval: {interval_seconds}s)")
        await self._loop(interval_seconds, on_signal)

    async def start(self, interval_seconds: float = 15):
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop(interval_seconds))
        logger.info(f"Started position monitoring (interval: {interval_seconds}s)")

    async def stop(self):
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    async def _loop(self, interval: float, on_signal: Optional[Callable[[ExitSignal], None]] = None):
        while self._running:
            try:
                signals = await self.check_positions()
                for signal in signals:
                    logger.info(f"[MONITOR] {signal.reason.value.upper()} {signal.symbol} @ ${signal.price:.8f}")
                    if on_signal:
                        on_signal(signal)
            except Exception as e:
                logger.error(f"Position check failed: {e}", exc_info=True)
            if self._running:
                await asyncio.sleep(interval)
