"""
Tool surface for the reasoning agent.

TRADING_TOOLS holds JSON-schema tool definitions in the shape tool-use LLM
APIs expect. TradingToolExecutor dispatches a tool call by name and always
answers with a JSON string; failures come back as
``{"success": false, "error": ...}`` rather than exceptions.
"""

from __future__ import annotations

import json
import logging
import time
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Optional

from tradegate.config import SOL_MINT
from tradegate.errors import TradeGateError, ValidationError
from tradegate.orchestrator import TradeDirection, TradeIntent
from tradegate.safety_gate import is_pump_fun
from tradegate.scoring import CandidateToken, DiscoveryFilters

if TYPE_CHECKING:
    from tradegate.ledger import PositionLedger
    from tradegate.orchestrator import TradeDecisionOrchestrator
    from tradegate.providers.dexscreener import DexScreenerClient
    from tradegate.providers.jupiter import JupiterClient
    from tradegate.providers.wallet import SolanaWallet
    from tradegate.safety_gate import TradeSafetyGate

logger = logging.getLogger(__name__)

_ADDRESS = {"type": "string", "description": "The token contract address (mint)"}
_DIRECTION = {"type": "string", "enum": ["buy", "sell"], "description": "buy = SOL to token, sell = token to SOL"}
_AMOUNT = {"type": "number", "description": "Amount in SOL (for buy) or number of tokens (for sell)"}


def _tool(name: str, description: str, properties: Dict[str, Any], required: List[str]) -> Dict[str, Any]:
    return {
        "name": name,
        "description": description,
        "input_schema": {"type": "object", "properties": properties, "required": required},
    }


TRADING_TOOLS = [
    _tool("check_balance", "Check the wallet SOL balance and open positions", {}, []),
    _tool("get_price", "Get price and market data for a Solana token", {"token_address": _ADDRESS}, ["token_address"]),
    _tool(
        "get_swap_quote",
        "Get a quote for buying or selling a token. Call this before execute_trade.",
        {"token_address": _ADDRESS, "direction": _DIRECTION, "amount": _AMOUNT},
        ["token_address", "direction", "amount"],
    ),
    _tool(
        "execute_trade",
        "Execute a swap. REAL MONEY unless paper mode is on. Passes through tradability, "
        "safety limits and position cap before anything is sent.",
        {
            "token_address": _ADDRESS,
            "direction": _DIRECTION,
            "amount": _AMOUNT,
            "reasoning": {"type": "string", "description": "Why this trade (logged)"},
        },
        ["token_address", "direction", "amount", "reasoning"],
    ),
    _tool(
        "check_can_trade",
        "Check whether trading is currently allowed (size limit, cooldown, daily loss limit)",
        {"amount": {"type": "number", "description": "Amount in SOL to check"}},
        ["amount"],
    ),
    _tool(
        "check_token_tradable",
        "Check whether Jupiter can route this token. Pump.fun tokens may not route until they graduate.",
        {"token_address": _ADDRESS},
        ["token_address"],
    ),
    _tool("list_positions", "List open positions with entry, stop-loss and take-profit levels", {}, []),
    _tool(
        "discover_tokens",
        "Scan DexScreener boosted tokens. Returns a scored list with risk flags.",
        {
            "min_liquidity": {"type": "number", "description": "Minimum liquidity in USD (default: 10000)"},
            "min_volume": {"type": "number", "description": "Minimum 24h volume in USD (default: 20000)"},
            "limit": {"type": "number", "description": "Max tokens to return (default: 10)"},
        },
        [],
    ),
]


def format_usd(value: float) -> str:
    if value >= 1_000_000:
        return f"${value / 1_000_000:.2f}M"
    if value >= 1_000:
        return f"${value / 1_000:.1f}K"
    return f"${value:.2f}"


def format_candidate(candidate: CandidateToken) -> str:
    """Render a scored candidate as a short markdown block."""
    flags = f" [!] {', '.join(f.value for f in candidate.flags)}" if candidate.flags else ""
    age = f"{candidate.age_hours:.0f}h" if candidate.age_hours is not None else "unknown"
    links = " ".join(
        name for name, present in (
            ("Twitter", candidate.has_twitter),
            ("Telegram", candidate.has_telegram),
            ("Website", candidate.has_website),
        ) if present
    ) or "none"
    description = candidate.description[:100] + ("..." if len(candidate.description) > 100 else "")
    lines = [
        f"**{candidate.name} ({candidate.symbol})** - Score: {candidate.score}/100{flags}",
        f"- Price: ${candidate.price_usd:.8f} ({candidate.price_change_24h_pct:+.1f}% 24h)",
        f"- Volume: {format_usd(candidate.volume_24h_usd)} | Liquidity: {format_usd(candidate.liquidity_usd)}",
        f"- Txns: {candidate.buys_24h} buys / {candidate.sells_24h} sells (24h)",
        f"- Age: {age} | Boost: {candidate.boost_amount:g}",
    ]
    if description:
        lines.append(f"- {description}")
    lines.append(f"- Links: {links}")
    lines.append(f"- Address: {candidate.address}")
    if candidate.degraded:
        lines.append("- Note: some market fields were missing and defaulted to 0")
    return "\n".join(lines)


class TradingToolExecutor:
    """Dispatches agent tool calls onto the engine."""

    def __init__(
        self,
        orchestrator: TradeDecisionOrchestrator,
        gate: TradeSafetyGate,
        ledger: PositionLedger,
        market: DexScreenerClient,
        router: JupiterClient,
        wallet: SolanaWallet,
    ):
        self._orchestrator = orchestrator
        self._gate = gate
        self._ledger = ledger
        self._market = market
        self._router = router
        self._wallet = wallet
        self._handlers: Dict[str, Callable[[Dict[str, Any]], Awaitable[Dict[str, Any]]]] = {
            "check_balance": self._check_balance,
            "get_price": self._get_price,
            "get_swap_quote": self._get_swap_quote,
            "execute_trade": self._execute_trade,
            "check_can_trade": self._check_can_trade,
            "check_token_tradable": self._check_token_tradable,
            "list_positions": self._list_positions,
            "discover_tokens": self._discover_tokens,
        }

    async def execute(self, name: str, tool_input: Optional[Dict[str, Any]] = None) -> str:
        handler = self._handlers.get(name)
        if handler is None:
            return json.dumps({"success": False, "error": f"Unknown tool: {name}"})

        try:
            payload = await handler(tool_input or {})
        except TradeGateError as e:
            payload = {"success": False, "error": e.message, "kind": e.kind.value}
        except Exception as e:
            logger.error(f"Tool {name} failed: {e}", exc_info=True)
            payload = {"success": False, "error": f"{name} failed: {e}"}
        return json.dumps(payload, default=str)

    @staticmethod
    def _require_address(tool_input: Dict[str, Any]) -> str:
        address = tool_input.get("token_address")
        if not address:
            raise ValidationError("token_address is required")
        return str(address)

    async def _check_balance(self, tool_input: Dict[str, Any]) -> Dict[str, Any]:
        sol = await self._wallet.balance()
        sol_price = await self._market.get_sol_price()
        positions = [p.to_dict() for p in self._ledger.all()]
        return {
            "success": True,
            "wallet_address": self._wallet.public_key(),
            "sol": {"balance": round(sol, 6), "usd_value": format_usd(sol * sol_price.price)},
            "sol_price_degraded": sol_price.degraded,
            "positions": positions,
            "total_positions": len(positions),
        }

    async def _get_price(self, tool_input: Dict[str, Any]) -> Dict[str, Any]:
        stats = await self._market.get_stats(self._require_address(tool_input))
        return {
            "success": True,
            "token": stats.symbol,
            "address": stats.address,
            "price": stats.price_usd,
            "change_24h": f"{stats.price_change_24h_pct:+.2f}%",
            "volume_24h": format_usd(stats.volume_24h_usd),
            "liquidity": format_usd(stats.liquidity_usd),
            "market_cap": format_usd(stats.market_cap_usd),
            "degraded": stats.degraded,
        }

    async def _get_swap_quote(self, tool_input: Dict[str, Any]) -> Dict[str, Any]:
        intent = TradeIntent.from_dict({**tool_input, "address": self._require_address(tool_input)})
        if intent.amount <= 0:
            raise ValidationError("amount must be positive")

        if intent.direction == TradeDirection.BUY:
            quote = await self._router.quote_buy(intent.address, intent.amount, self._gate.config.slippage_bps)
            out_decimals = await self._wallet.token_decimals(intent.address)
        else:
            quote = await self._router.quote_sell(intent.address, intent.amount, self._gate.config.slippage_bps)
            out_decimals = await self._wallet.token_decimals(SOL_MINT)

        return {
            "success": True,
            "direction": intent.direction.value,
            "input_amount": intent.amount,
            "output_amount": quote.out_amount / (10 ** out_decimals),
            "price_impact": f"{quote.price_impact_pct:.2f}%",
            "slippage": f"{quote.slippage_bps / 100}%",
            "warning": "High price impact!" if quote.price_impact_pct > 1 else None,
        }

    async def _execute_trade(self, tool_input: Dict[str, Any]) -> Dict[str, Any]:
        intent = TradeIntent.from_dict(tool_input)
        result = await self._orchestrator.decide(intent)
        payload = result.to_dict()
        if not result.success and result.kind and result.kind.value == "not_tradable":
            payload["tip"] = "Use discover_tokens to find alternatives, then check_token_tradable first."
        return payload

    async def _check_can_trade(self, tool_input: Dict[str, Any]) -> Dict[str, Any]:
        try:
            amount = float(tool_input.get("amount", 0))
        except (TypeError, ValueError):
            raise ValidationError("amount must be a number")
        verdict = self._gate.can_trade(amount)
        snapshot = self._gate.snapshot()
        last = snapshot["last_trade_time"]
        return {
            "success": True,
            "allowed": verdict.allowed,
            "reason": verdict.reason or None,
            "daily_pnl": f"{snapshot['daily_pnl']:.4f} SOL",
            "last_trade_time": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(last)) if last else "Never",
            "limits": snapshot["limits"],
            "open_positions": self._ledger.count(),
        }

    async def _check_token_tradable(self, tool_input: Dict[str, Any]) -> Dict[str, Any]:
        address = self._require_address(tool_input)
        result = await self._gate.is_tradable(address)
        return {
            "success": True,
            "token_address": address,
            "tradable": result.tradable,
            "reason": result.reason,
            "is_pump_fun_token": is_pump_fun(address),
            "warning": "Pump.fun token: may have Token-2022 routing issues. Prefer graduated tokens."
            if is_pump_fun(address) else None,
            "recommendation": "You can proceed with trading this token."
            if result.tradable else "DO NOT attempt to trade this token. Find an alternative.",
        }

    async def _list_positions(self, tool_input: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "success": True,
            "positions": [p.to_dict() for p in self._ledger.all()],
            "count": self._ledger.count(),
            "max_positions": self._gate.config.max_positions,
        }

    async def _discover_tokens(self, tool_input: Dict[str, Any]) -> Dict[str, Any]:
        filters = DiscoveryFilters()
        if tool_input.get("min_liquidity") is not None:
            filters.min_liquidity_usd = float(tool_input["min_liquidity"])
        if tool_input.get("min_volume") is not None:
            filters.min_volume_24h_usd = float(tool_input["min_volume"])
        limit = int(tool_input.get("limit") or 10)

        candidates = (await self._market.discover(filters))[:limit]
        return {
            "success": True,
            "count": len(candidates),
            "tokens": [c.to_dict() for c in candidates],
            "summary": "\n\n".join(format_candidate(c) for c in candidates) or "No tokens passed filters.",
        }
