"""
Position Ledger - open positions with stop-loss / take-profit triggers.

One position per token address. Exit thresholds are fixed when a position is
opened; price refreshes only update the mark and report whether an exit
threshold has been crossed. Acting on that report (selling) is the caller's
job, normally through the decision orchestrator.

Opens, partial sells and closes are written through SafeState; price marks stay in memory.
A failed write is logged as a persistence warning and never undoes the in-memory change.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from tradegate.errors import PersistenceWarning, ValidationError
from tradegate.safe_state import SafeState, StateLockError, StateReadError, StateWriteError

logger = logging.getLogger(__name__)

DEFAULT_STOP_LOSS_PCT = 15.0
DEFAULT_TAKE_PROFIT_PCT = 50.0

# Sells within this fraction of the held amount close the whole position
FULL_CLOSE_TOLERANCE = 1e-6


class ExitReason(Enum):
    STOP_LOSS = "stop_loss"
    TAKE_PROFIT = "take_profit"


@dataclass
class Position:
    """An open holding."""
    address: str
    symbol: str
    entry_price: float         # USD per token at entry
    entry_time: float          # epoch seconds
    amount: float              # token amount held
    cost_basis: float          # SOL spent
    stop_loss: float           # exit at or below this price
    take_profit: float         # exit at or above this price
    current_price: Optional[float] = None
    unrealized_pnl_pct: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'address': self.address,
            'symbol': self.symbol,
            'entry_price': self.entry_price,
            'entry_time': self.entry_time,
            'amount': self.amount,
            'cost_basis': self.cost_basis,
            'stop_loss': self.stop_loss,
            'take_profit': self.take_profit,
            'current_price': self.current_price,
            'unrealized_pnl_pct': self.unrealized_pnl_pct,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Position:
        current = data.get('current_price')
        return cls(
            address=data['address'],
            symbol=data.get('symbol', ''),
            entry_price=float(data['entry_price']),
            entry_time=float(data['entry_time']),
            amount=float(data['amount']),
            cost_basis=float(data['cost_basis']),
            stop_loss=float(data['stop_loss']),
            take_profit=float(data['take_profit']),
            current_price=float(current) if current is not None else None,
            unrealized_pnl_pct=float(data.get('unrealized_pnl_pct', 0.0)),
        )


@dataclass(frozen=True)
class UpdateResult:
    should_sell: bool
    reason: Optional[ExitReason] = None
    position: Optional[Position] = None


@dataclass(frozen=True)
class CloseResult:
    pnl: float                 # SOL
    pnl_pct: float
    hold_time: str
    exit_price: float
    position: Position         # the portion that was sold
    remaining: float = 0.0     # tokens still held after a partial close

    def to_dict(self) -> Dict[str, Any]:
        return {
            'pnl': self.pnl,
            'pnl_pct': self.pnl_pct,
            'hold_time': self.hold_time,
            'exit_price': self.exit_price,
            'symbol': self.position.symbol,
            'address': self.position.address,
            'amount': self.position.amount,
            'remaining': self.remaining,
        }


def format_hold_time(seconds: float) -> str:
    """Render a duration in its largest sensible unit: 45s, 12m, 3h 5m, 2d 4h."""
    seconds = int(max(seconds, 0))
    if seconds < 60:
        return f"{seconds}s"
    minutes = seconds // 60
    if minutes < 60:
        return f"{minutes}m"
    hours = minutes // 60
    if hours < 24:
        return f"{hours}h {minutes % 60}m"
    days = hours // 24
    return f"{days}d {hours % 24}h"


def _log_position_change(action: str, position: Position, details: dict = None):
    details = details or {}
    if action == "OPEN":
        logger.info(
            f"[POSITION:OPEN] {position.symbol} ({position.address[:8]}...) - "
            f"amount={position.amount:.4f}, cost={position.cost_basis:.4f} SOL, "
            f"entry=${position.entry_price:.8f}, SL=${position.stop_loss:.8f}, TP=${position.take_profit:.8f}"
        )
    elif action == "CLOSE":
        logger.info(
            f"[POSITION:CLOSE] {position.symbol} ({position.address[:8]}...) - "
            f"P&L={details.get('pnl', 0):+.4f} SOL ({details.get('pnl_pct', 0):+.1f}%), "
            f"held {details.get('hold_time', '?')}"
        )
    elif action == "TRIGGER":
        logger.info(
            f"[POSITION:TRIGGER] {details.get('reason', '').upper()} {position.symbol} "
            f"@ ${position.current_price:.8f}"
        )
    else:
        logger.info(f"[POSITION:{action}] {position.symbol} {details}")


class PositionLedger:
    """
    Open positions keyed by token address.

    Usage:
        ledger = PositionLedger(state=SafeState(path))
        ledger.load()
        ledger.open(mint, "BONK", amount=1_000_000, entry_price=0.00002, cost_basis=0.1)
        if ledger.update_price(mint, 0.000017).should_sell:
            ...
    """

    def __init__(
        self,
        state: Optional[SafeState] = None,
        stop_loss_pct: float = DEFAULT_STOP_LOSS_PCT,
        take_profit_pct: float = DEFAULT_TAKE_PROFIT_PCT,
        clock: Callable[[], float] = time.time,
    ):
        self._state = state
        self.stop_loss_pct = stop_loss_pct
        self.take_profit_pct = take_profit_pct
        self._clock = clock
        self._positions: Dict[str, Position] = {}
        self.last_persistence_warning: Optional[PersistenceWarning] = None

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, address: str) -> Optional[Position]:
        return self._positions.get(address)

    def all(self) -> List[Position]:
        return list(self._positions.values())

    def count(self) -> int:
        return len(self._positions)

    def __contains__(self, address: str) -> bool:
        return address in self._positions

    def __len__(self) -> int:
        return len(self._positions)

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def open(
        self,
        address: str,
        symbol: str,
        amount: float,
        entry_price: float,
        cost_basis: float,
        sl_pct: Optional[float] = None,
        tp_pct: Optional[float] = None,
    ) -> Position:
        """Record a new position, replacing any existing one at the address."""
        if not address:
            raise ValidationError("address is required")
        if not amount or amount <= 0:
            raise ValidationError(f"amount must be positive, got {amount}", {"address": address})
        if not entry_price or entry_price <= 0:
            raise ValidationError(f"entry_price must be positive, got {entry_price}", {"address": address})

        sl_pct = self.stop_loss_pct if sl_pct is None else sl_pct
        tp_pct = self.take_profit_pct if tp_pct is None else tp_pct

        position = Position(
            address=address,
            symbol=symbol or address[:6],
            entry_price=entry_price,
            entry_time=self._clock(),
            amount=amount,
            cost_basis=cost_basis,
            stop_loss=entry_price * (1 - sl_pct / 100),
            take_profit=entry_price * (1 + tp_pct / 100),
        )
        if position.take_profit <= position.stop_loss:
            logger.warning(
                f"[POSITION] {position.symbol} thresholds overlap (SL={position.stop_loss}, "
                f"TP={position.take_profit}); stop-loss will take precedence"
            )

        if address in self._positions:
            logger.info(f"[POSITION:REPLACE] {position.symbol} replaces existing position at {address[:8]}...")
        self._positions[address] = position
        _log_position_change("OPEN", position)

        self._save()
        return position

    def update_price(self, address: str, current_price: float) -> UpdateResult:
        """Mark a position to market and report whether an exit threshold is crossed."""
        position = self._positions.get(address)
        if position is None:
            return UpdateResult(should_sell=False)

        position.current_price = current_price
        position.unrealized_pnl_pct = (current_price - position.entry_price) / position.entry_price * 100

        # Stop-loss wins when both thresholds are crossed
        if current_price <= position.stop_loss:
            _log_position_change("TRIGGER", position, {"reason": ExitReason.STOP_LOSS.value})
            return UpdateResult(should_sell=True, reason=ExitReason.STOP_LOSS, position=position)

        if current_price >= position.take_profit:
            _log_position_change("TRIGGER", position, {"reason": ExitReason.TAKE_PROFIT.value})
            return UpdateResult(should_sell=True, reason=ExitReason.TAKE_PROFIT, position=position)

        return UpdateResult(should_sell=False, position=position)

    def close(self, address: str, exit_price: float, proceeds: float) -> Optional[CloseResult]:
        """
        Remove a position and realize its P&L.

        Args:
            address: Token address
            exit_price: USD price at exit
            proceeds: SOL received from the sale

        Returns:
            CloseResult, or None when no position exists at the address
        """
        position = self._positions.get(address)
        if position is None:
            return None

        pnl = proceeds - position.cost_basis
        basis = position.cost_basis if position.cost_basis != 0 else 1
        pnl_pct = pnl / basis * 100
        hold_time = format_hold_time(self._clock() - position.entry_time)

        del self._positions[address]
        _log_position_change("CLOSE", position, {"pnl": pnl, "pnl_pct": pnl_pct, "hold_time": hold_time})

        self._save()
        return CloseResult(
            pnl=pnl, pnl_pct=pnl_pct, hold_time=hold_time, exit_price=exit_price, position=position
        )

    def reduce(self, address: str, amount: float, exit_price: float, proceeds: float) -> Optional[CloseResult]:
        """
        Realize P&L on part of a position.

        The sold share of the cost basis is matched against the proceeds and the
        rest of the position stays open with its original thresholds. Selling the
        whole held amount (or more) closes the position.

        Returns:
            CloseResult for the sold portion, or None when no position exists
        """
        position = self._positions.get(address)
        if position is None:
            return None
        if not amount or amount <= 0:
            raise ValidationError(f"amount must be positive, got {amount}", {"address": address})
        if amount >= position.amount * (1 - FULL_CLOSE_TOLERANCE):
            return self.close(address, exit_price, proceeds)

        fraction = amount / position.amount
        cost = position.cost_basis * fraction
        pnl = proceeds - cost
        pnl_pct = pnl / (cost if cost != 0 else 1) * 100
        hold_time = format_hold_time(self._clock() - position.entry_time)

        sold = replace(position, amount=amount, cost_basis=cost)
        position.amount -= amount
        position.cost_basis -= cost
        _log_position_change("REDUCE", position, {
            "sold": amount, "remaining": position.amount, "pnl": round(pnl, 6),
        })

        self._save()
        return CloseResult(
            pnl=pnl,
            pnl_pct=pnl_pct,
            hold_time=hold_time,
            exit_price=exit_price,
            position=sold,
            remaining=position.amount,
        )

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        return {
            "positions": [[addr, pos.to_dict()] for addr, pos in self._positions.items()],
            "stop_loss_pct": self.stop_loss_pct,
            "take_profit_pct": self.take_profit_pct,
        }

    @classmethod
    def from_dict(
        cls,
        data: Dict[str, Any],
        state: Optional[SafeState] = None,
        clock: Callable[[], float] = time.time,
    ) -> PositionLedger:
        ledger = cls(
            state=state,
            stop_loss_pct=float(data.get("stop_loss_pct", DEFAULT_STOP_LOSS_PCT)),
            take_profit_pct=float(data.get("take_profit_pct", DEFAULT_TAKE_PROFIT_PCT)),
            clock=clock,
        )
        ledger._restore(data)
        return ledger

    def _restore(self, data: Dict[str, Any]) -> None:
        self._positions = {}
        for address, raw in data.get("positions", []):
            self._positions[address] = Position.from_dict(raw)

    def load(self) -> int:
        """Load the persisted document. Returns the number of positions restored."""
        if self._state is None:
            return 0
        try:
            data = self._state.read()
        except (StateLockError, StateReadError) as e:
            logger.error(f"[PERSIST] Could not load positions, starting empty: {e}")
            return 0

        if not data:
            return 0

        try:
            self._restore(data)
        except (KeyError, TypeError, ValueError) as e:
            logger.error(f"[PERSIST] Positions file is malformed, starting empty: {e}")
            self._positions = {}
            return 0

        self.stop_loss_pct = float(data.get("stop_loss_pct", self.stop_loss_pct))
        self.take_profit_pct = float(data.get("take_profit_pct", self.take_profit_pct))
        logger.info(f"[PERSIST] Loaded {len(self._positions)} positions from {self._state.file_path}")
        return len(self._positions)

    def _save(self) -> None:
        self.last_persistence_warning = None
        if self._state is None:
            return
        try:
            self._state.write(self.to_dict())
        except (StateLockError, StateWriteError, OSError) as e:
            warning = PersistenceWarning(
                f"Ledger save failed: {e}", {"file": str(self._state.file_path)}
            )
            logger.warning(f"[PERSIST] {warning.message}")
            self.last_persistence_warning = warning
