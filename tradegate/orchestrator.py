"""Trade decision orchestrator.

Turns a trade intent into either a structured refusal or an executed swap
plus the matching ledger and safety-state update. Steps, each a hard
precondition for the next:

    1. Validate the intent
    2. Tradability probe
    3. Safety gate (size, cooldown, daily loss)
    4. Position cap (buys only) and entry price lookup
    5. Swap execution
    6. Ledger / safety-state update

Steps 1-4 have no side effects. Nothing is mutated unless step 5 succeeds,
and once step 5 is dispatched it runs to completion together with step 6
even if the caller is cancelled. The decision lock stays held until it has.

Sells are sized against the safety gate by the sold share of the tracked cost
basis, and a partial sell reduces the position instead of closing it.
"""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from tradegate.config import LAMPORTS_PER_SOL, TradeGateConfig
from tradegate.errors import (
    DataUnavailable,
    ErrorKind,
    ExecutionFailed,
    NotTradable,
    PolicyDenied,
    TradeGateError,
    ValidationError,
)
from tradegate.ledger import CloseResult, Position, PositionLedger
from tradegate.logging_config import DecisionContext
from tradegate.safety_gate import TradeSafetyGate

if TYPE_CHECKING:
    from tradegate.providers.dexscreener import DexScreenerClient
    from tradegate.providers.jupiter import JupiterClient, SwapExecution

logger = logging.getLogger(__name__)


class TradeDirection(Enum):
    BUY = "buy"
    SELL = "sell"


@dataclass
class TradeIntent:
    """A request to trade. ``amount`` is SOL for buys and token units for sells."""
    direction: TradeDirection
    address: str
    amount: float
    rationale: str = ""
    symbol: Optional[str] = None
    slippage_bps: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> TradeIntent:
        raw_direction = str(data.get("direction", "")).lower()
        try:
            direction = TradeDirection(raw_direction)
        except ValueError:
            raise ValidationError(f"direction must be 'buy' or 'sell', got {raw_direction!r}")
        try:
            amount = float(data.get("amount", 0))
        except (TypeError, ValueError):
            raise ValidationError(f"amount must be a number, got {data.get('amount')!r}")
        return cls(
            direction=direction,
            address=str(data.get("address") or data.get("token_address") or ""),
            amount=amount,
            rationale=str(data.get("rationale") or data.get("reasoning") or ""),
            symbol=data.get("symbol"),
            slippage_bps=data.get("slippage_bps"),
        )


@dataclass
class DecisionResult:
    """Outcome of decide(). ``kind`` is None exactly when ``success`` is True."""
    success: bool
    direction: Optional[TradeDirection] = None
    address: str = ""
    kind: Optional[ErrorKind] = None
    reason: str = ""
    position: Optional[Position] = None
    close: Optional[CloseResult] = None
    execution: Optional[SwapExecution] = None
    warnings: List[str] = field(default_factory=list)
    degraded: bool = False
    decision_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "direction": self.direction.value if self.direction else None,
            "address": self.address,
            "kind": self.kind.value if self.kind else None,
            "reason": self.reason,
            "position": self.position.to_dict() if self.position else None,
            "close": self.close.to_dict() if self.close else None,
            "execution": self.execution.to_dict() if self.execution else None,
            "warnings": list(self.warnings),
            "degraded": self.degraded,
            "decision_id": self.decision_id,
        }


class TradeDecisionOrchestrator:
    """
    Single entry point for trading.

    One intent is decided at a time; concurrent callers queue on an
    asyncio.Lock so ledger and safety state never see interleaved updates.
    """

    def __init__(
        self,
        gate: TradeSafetyGate,
        ledger: PositionLedger,
        router: JupiterClient,
        market: DexScreenerClient,
        config: TradeGateConfig | None = None,
    ):
        self.gate = gate
        self.ledger = ledger
        self._router = router
        self._market = market
        self._config = config or gate.config
        self._lock = asyncio.Lock()

    async def decide(self, intent: TradeIntent) -> DecisionResult:
        async with self._lock:
            with DecisionContext(asset=getattr(intent, "address", None)) as ctx:
                direction = getattr(intent, "direction", None)
                base = DecisionResult(
                    success=False,
                    direction=direction if isinstance(direction, TradeDirection) else None,
                    address=str(getattr(intent, "address", "") or ""),
                    decision_id=ctx.decision_id,
                )
                logger.info(
                    f"[DECIDE] {base.direction.value if base.direction else '?'} "
                    f"{getattr(intent, 'amount', None)} {base.address[:8]}... | {getattr(intent, 'rationale', '')}"
                )
                try:
                    return await self._decide(intent, base)
                except TradeGateError as e:
                    return self._refuse(base, e)
                except Exception as e:
                    logger.error(f"[DECIDE] Unexpected failure: {e}", exc_info=True)
                    base.kind = ErrorKind.EXECUTION_FAILED
                    base.reason = f"internal error: {e}"
                    return base

    def _refuse(self, result: DecisionResult, error: TradeGateError) -> DecisionResult:
        result.success = False
        result.kind = error.kind
        result.reason = error.message
        if error.kind in (ErrorKind.POLICY_DENIED, ErrorKind.NOT_TRADABLE):
            logger.info(f"[DECIDE:DENY] {error.kind.value}: {error.message}")
        elif error.kind == ErrorKind.EXECUTION_FAILED:
            logger.error(f"[DECIDE:FAILED] {error.message}")
        else:
            logger.warning(f"[DECIDE:REJECT] {error.kind.value}: {error.message}")
        return result

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    @staticmethod
    def _validate(intent: TradeIntent) -> None:
        if not isinstance(intent.direction, TradeDirection):
            raise ValidationError(f"unknown direction {intent.direction!r}")
        if not intent.address or not isinstance(intent.address, str):
            raise ValidationError("address is required")
        amount = intent.amount
        if isinstance(amount, bool) or not isinstance(amount, (int, float)):
            raise ValidationError(f"amount must be a number, got {amount!r}")
        if not math.isfinite(amount) or amount <= 0:
            raise ValidationError(f"amount must be positive, got {amount}")

    async def _decide(self, intent: TradeIntent, result: DecisionResult) -> DecisionResult:
        # 1. Validate
        self._validate(intent)
        slippage = intent.slippage_bps or self._config.slippage_bps
        is_buy = intent.direction == TradeDirection.BUY

        # 2. Tradability
        probe = await self.gate.is_tradable(intent.address)
        if not probe.tradable:
            raise NotTradable(probe.reason or "no route found", address=intent.address)

        # 3. Safety gate, sized in SOL for both directions
        sell_quote = None
        if is_buy:
            size_sol = intent.amount
        else:
            sell_quote = await self._router.quote_sell(intent.address, intent.amount, slippage)
            if sell_quote is None:
                raise NotTradable("no response from router", address=intent.address)
            size_sol = self._sell_size_sol(intent, sell_quote)

        verdict = self.gate.can_trade(size_sol)
        if not verdict.allowed:
            raise PolicyDenied(verdict.reason, {"size_sol": size_sol})

        # 4. Position cap and entry price
        stats = None
        if is_buy:
            if self.ledger.count() >= self._config.max_positions:
                raise PolicyDenied(
                    "position limit reached",
                    {"open": self.ledger.count(), "max": self._config.max_positions},
                )
            stats = await self._market.get_stats(intent.address)
            if stats.degraded:
                result.degraded = True
                result.warnings.append(f"market data incomplete: {', '.join(stats.missing_fields)}")

        # 5 + 6. Execute and apply. A cancelled caller still waits for the swap to
        # be applied so the lock is not released while it is in flight.
        task = asyncio.ensure_future(self._execute_and_apply(intent, result, slippage, sell_quote, stats))
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            logger.warning(f"[DECIDE] Cancelled with swap in flight for {intent.address[:8]}...; finishing it first")
            await asyncio.wait({task})
            if not task.cancelled() and task.exception() is not None:
                logger.error(f"[DECIDE] Swap finished after cancellation with error: {task.exception()}")
            raise

    def _sell_size_sol(self, intent: TradeIntent, sell_quote) -> float:
        """SOL at risk for a sell: the sold share of the tracked cost basis, else the quoted proceeds."""
        position = self.ledger.get(intent.address)
        if position is not None and position.amount > 0:
            return position.cost_basis * min(1.0, intent.amount / position.amount)
        return sell_quote.out_amount / LAMPORTS_PER_SOL

    async def _execute_and_apply(self, intent, result, slippage, sell_quote, stats) -> DecisionResult:
        is_buy = intent.direction == TradeDirection.BUY

        # 5. Execute
        if is_buy:
            try:
                quote = await self._router.quote_buy(intent.address, intent.amount, slippage)
            except TradeGateError as e:
                raise ExecutionFailed(f"quote failed: {e.message}", upstream=e.message)
            if quote is None:
                raise ExecutionFailed("no response from router")
        else:
            quote = sell_quote

        try:
            execution = await self._router.execute(quote)
        except ExecutionFailed:
            raise
        except TradeGateError as e:
            raise ExecutionFailed(e.message, upstream=e.message)
        if execution is None:
            raise ExecutionFailed("no response from swap executor")

        result.execution = execution
        if execution.simulated:
            result.warnings.append("paper trade: nothing was sent on-chain")

        # 6. Apply. The swap has landed, so failures here are reported as warnings.
        self.gate.record_trade()
        try:
            if is_buy:
                self._apply_buy(intent, result, execution, stats)
            else:
                await self._apply_sell(intent, result, execution)
        except Exception as e:
            logger.error(f"[DECIDE] Swap {execution.tx_id} landed but state update failed: {e}", exc_info=True)
            result.warnings.append(f"state update failed after execution: {e}")

        warning = self.ledger.last_persistence_warning
        if warning is not None:
            result.warnings.append(warning.message)

        result.success = True
        logger.info(f"[DECIDE:OK] {intent.direction.value} {intent.address[:8]}... tx={execution.tx_id}")
        return result

    def _apply_buy(self, intent, result, execution, stats) -> None:
        tokens = execution.out_amount_ui
        if tokens <= 0:
            result.warnings.append("swap reported zero tokens received; no position recorded")
            return
        result.position = self.ledger.open(
            intent.address,
            intent.symbol or stats.symbol,
            amount=tokens,
            entry_price=stats.price_usd,
            cost_basis=execution.in_amount_ui,
        )

    async def _apply_sell(self, intent, result, execution) -> None:
        position = self.ledger.get(intent.address)
        if position is None:
            result.warnings.append("no open position recorded for this token; P&L not tracked")
            return

        try:
            exit_price = await self._market.get_price(intent.address)
        except DataUnavailable as e:
            exit_price = position.current_price or position.entry_price
            result.degraded = True
            result.warnings.append(f"exit price unavailable ({e.message}); using last known price")

        result.close = self.ledger.reduce(intent.address, intent.amount, exit_price, execution.out_amount_ui)
        if result.close is not None:
            self.gate.record_outcome(result.close.pnl)
