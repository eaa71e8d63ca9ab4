"""
Jupiter Aggregator integration.

Provides route quotes (also used as the tradability probe) and swap
execution: build the swap transaction, sign it with the wallet key, submit
it and wait for confirmation. In paper mode quotes are real but nothing is
signed or sent.
"""

from __future__ import annotations

import asyncio
import base64
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import aiohttp

from tradegate.config import DEFAULT_JUPITER_API, LAMPORTS_PER_SOL, SOL_MINT
from tradegate.errors import (
    ConfigurationError,
    DataUnavailable,
    ExecutionFailed,
    RouteUnavailable,
)
from tradegate.providers.wallet import SolanaWallet

logger = logging.getLogger(__name__)

PROVIDER = "jupiter"

# Max priority fee per swap: 0.002 SOL
MAX_PRIORITY_FEE_LAMPORTS = 2_000_000

# Program error codes surfaced in Solana/Jupiter failure messages
SWAP_ERROR_CODES = (
    (("0x177e", "6014"), "TOKEN_PROGRAM_MISMATCH: This token may use the Token-2022 program. "
                         "Try a different token or wait for Jupiter support."),
    (("0x1771", "6001"), "SLIPPAGE_EXCEEDED: Price moved too much. Try increasing slippage or reducing amount."),
    (("0x1772", "6002"), "INSUFFICIENT_FUNDS: Not enough balance to complete swap."),
    (("InsufficientFunds",), "INSUFFICIENT_SOL: Not enough SOL for transaction fees."),
)


def map_swap_error(message: str) -> str:
    """Translate known program error codes into an actionable message."""
    for needles, friendly in SWAP_ERROR_CODES:
        if any(n in message for n in needles):
            return friendly
    return message


@dataclass
class SwapQuote:
    """Quote for a token swap."""
    input_mint: str
    output_mint: str
    in_amount: int             # smallest unit
    out_amount: int            # expected output, smallest unit
    price_impact_pct: float
    slippage_bps: int
    route_plan: List[Dict] = field(default_factory=list)
    raw: Dict[str, Any] = field(default_factory=dict)  # replayed to /swap

    @classmethod
    def from_api(cls, data: Dict[str, Any], slippage_bps: int) -> SwapQuote:
        if not isinstance(data, dict):
            raise DataUnavailable("quote payload is not an object", provider=PROVIDER)
        try:
            in_amount = int(data["inAmount"])
            out_amount = int(data["outAmount"])
        except (KeyError, TypeError, ValueError) as e:
            raise DataUnavailable(f"quote missing amounts: {e}", provider=PROVIDER)
        route_plan = data.get("routePlan") or []
        if not isinstance(route_plan, list):
            raise DataUnavailable("quote routePlan is not a list", provider=PROVIDER)
        try:
            impact = float(data.get("priceImpactPct") or 0)
        except (TypeError, ValueError):
            impact = 0.0
        return cls(
            input_mint=data.get("inputMint", ""),
            output_mint=data.get("outputMint", ""),
            in_amount=in_amount,
            out_amount=out_amount,
            price_impact_pct=impact,
            slippage_bps=slippage_bps,
            route_plan=route_plan,
            raw=data,
        )


@dataclass
class SwapExecution:
    """A landed (or paper) swap."""
    tx_id: str
    input_mint: str
    output_mint: str
    in_amount_ui: float
    out_amount_ui: float
    price_impact_pct: float = 0.0
    simulated: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'tx_id': self.tx_id,
            'input_mint': self.input_mint,
            'output_mint': self.output_mint,
            'in_amount': self.in_amount_ui,
            'out_amount': self.out_amount_ui,
            'price_impact_pct': self.price_impact_pct,
            'simulated': self.simulated,
            'explorer_url': None if self.simulated else f"https://solscan.io/tx/{self.tx_id}",
        }


class JupiterClient:
    """
    Jupiter swap API client.

    Errors:
        get_quote raises RouteUnavailable (HTTP error, error payload) or
        DataUnavailable (network failure, malformed payload).
        execute raises ExecutionFailed with the mapped upstream diagnostic.
    """

    TX_CONFIRM_TIMEOUT = 30  # seconds
    TX_POLL_INTERVAL = 0.5

    def __init__(
        self,
        wallet: SolanaWallet,
        api_url: str = DEFAULT_JUPITER_API,
        api_key: str = "",
        dry_run: bool = False,
        timeout_seconds: float = 15.0,
    ):
        self._wallet = wallet
        self.api_url = api_url.rstrip("/")
        self.api_key = api_key
        self.dry_run = dry_run
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._session: Optional[aiohttp.ClientSession] = None
        self._paper_fills = 0

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            headers = {"Accept": "application/json"}
            if self.api_key:
                headers["x-api-key"] = self.api_key
            self._session = aiohttp.ClientSession(timeout=self._timeout, headers=headers)
        return self._session

    async def close(self):
        if self._session and not self._session.closed:
            await self._session.close()

    # ------------------------------------------------------------------
    # Quotes
    # ------------------------------------------------------------------

    async def get_quote(
        self,
        input_mint: str,
        output_mint: str,
        amount: int,
        slippage_bps: int = 500,
    ) -> SwapQuote:
        """
        Get a swap quote.

        Args:
            input_mint: Input token mint address
            output_mint: Output token mint address
            amount: Amount in smallest unit (lamports for SOL)
            slippage_bps: Slippage tolerance in basis points (500 = 5%)
        """
        session = await self._get_session()
        params = {
            'inputMint': input_mint,
            'outputMint': output_mint,
            'amount': str(int(amount)),
            'slippageBps': str(slippage_bps),
        }

        try:
            async with session.get(f"{self.api_url}/quote", params=params) as resp:
                if resp.status != 200:
                    body = await resp.text()
                    raise RouteUnavailable(f"quote failed: HTTP {resp.status} {body[:200]}", address=output_mint)
                try:
                    data = await resp.json(content_type=None)
                except ValueError as e:
                    raise DataUnavailable(f"quote returned invalid JSON: {e}", provider=PROVIDER)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise DataUnavailable(f"quote request failed: {e!r}", provider=PROVIDER)

        if isinstance(data, dict) and data.get("error"):
            raise RouteUnavailable(f"quote error: {data['error']}", address=output_mint)

        quote = SwapQuote.from_api(data, slippage_bps)
        quote.input_mint = quote.input_mint or input_mint
        quote.output_mint = quote.output_mint or output_mint
        return quote

    async def to_base_units(self, mint: str, ui_amount: float) -> int:
        decimals = await self._wallet.token_decimals(mint)
        return int(ui_amount * (10 ** decimals))

    async def quote_buy(self, mint: str, amount_sol: float, slippage_bps: int = 500) -> SwapQuote:
        return await self.get_quote(SOL_MINT, mint, int(amount_sol * LAMPORTS_PER_SOL), slippage_bps)

    async def quote_sell(self, mint: str, token_amount: float, slippage_bps: int = 500) -> SwapQuote:
        amount = await self.to_base_units(mint, token_amount)
        return await self.get_quote(mint, SOL_MINT, amount, slippage_bps)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute(self, quote: SwapQuote) -> SwapExecution:
        """Execute a quoted swap. Raises ExecutionFailed."""
        try:
            in_decimals = await self._wallet.token_decimals(quote.input_mint)
            out_decimals = await self._wallet.token_decimals(quote.output_mint)
        except DataUnavailable as e:
            raise ExecutionFailed(f"could not resolve token decimals: {e.message}", upstream=e.message)

        in_ui = quote.in_amount / (10 ** in_decimals)
        out_ui = quote.out_amount / (10 ** out_decimals)

        if self.dry_run:
            return self._paper_fill(quote, in_ui, out_ui)

        if not self._wallet.is_ready:
            raise ExecutionFailed("wallet not ready")

        try:
            tx_bytes = await self._get_swap_transaction(quote)
            signed = self._wallet.sign_transaction(tx_bytes)
            signature = await self._wallet.rpc("sendTransaction", [
                base64.b64encode(signed).decode(),
                {'encoding': 'base64', 'preflightCommitment': 'confirmed', 'maxRetries': 3},
            ])
        except ExecutionFailed:
            raise
        except (DataUnavailable, ConfigurationError) as e:
            raise ExecutionFailed(map_swap_error(e.message), upstream=e.message)
        except ValueError as e:
            raise ExecutionFailed(f"could not sign swap transaction: {e}", upstream=str(e))

        if not signature:
            raise ExecutionFailed("sendTransaction returned no signature")

        await self._confirm(str(signature))

        logger.info(
            f"Swap executed: {in_ui:.6f} {quote.input_mint[:6]} -> {out_ui:.6f} {quote.output_mint[:6]} | TX: {signature}"
        )
        return SwapExecution(
            tx_id=str(signature),
            input_mint=quote.input_mint,
            output_mint=quote.output_mint,
            in_amount_ui=in_ui,
            out_amount_ui=out_ui,
            price_impact_pct=quote.price_impact_pct,
        )

    async def _get_swap_transaction(self, quote: SwapQuote) -> bytes:
        session = await self._get_session()
        payload = {
            'quoteResponse': quote.raw,
            'userPublicKey': self._wallet.public_key(),
            'wrapAndUnwrapSol': True,
            'dynamicComputeUnitLimit': True,
            'prioritizationFeeLamports': {
                'priorityLevelWithMaxLamports': {
                    'maxLamports': MAX_PRIORITY_FEE_LAMPORTS,
                    'priorityLevel': 'veryHigh',
                },
            },
        }
        try:
            async with session.post(f"{self.api_url}/swap", json=payload) as resp:
                if resp.status != 200:
                    error = await resp.text()
                    raise ExecutionFailed(
                        map_swap_error(f"swap transaction failed: {resp.status} - {error[:300]}"),
                        upstream=error[:300],
                    )
                data = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise ExecutionFailed(f"swap request failed: {e!r}", upstream=repr(e))

        swap_transaction = data.get('swapTransaction') if isinstance(data, dict) else None
        if not swap_transaction:
            raise ExecutionFailed("swap API returned no transaction")
        return base64.b64decode(swap_transaction)

    async def _confirm(self, signature: str) -> None:
        deadline = time.monotonic() + self.TX_CONFIRM_TIMEOUT
        while time.monotonic() < deadline:
            try:
                result = await self._wallet.rpc(
                    "getSignatureStatuses", [[signature], {"searchTransactionHistory": True}]
                )
            except DataUnavailable as e:
                logger.warning(f"Error checking tx status: {e.message}")
                result = None

            statuses = (result or {}).get("value") or []
            status = statuses[0] if statuses else None
            if status:
                if status.get("err"):
                    error = str(status["err"])
                    raise ExecutionFailed(
                        map_swap_error(f"Transaction failed: {error}"), tx_id=signature, upstream=error
                    )
                if status.get("confirmationStatus") in ("confirmed", "finalized"):
                    return

            await asyncio.sleep(self.TX_POLL_INTERVAL)

        raise ExecutionFailed("Transaction confirmation timeout", tx_id=signature)

    def _paper_fill(self, quote: SwapQuote, in_ui: float, out_ui: float) -> SwapExecution:
        self._paper_fills += 1
        tx_id = f"PAPER-{self._paper_fills:06d}-{int(time.time())}"
        logger.info(f"[PAPER] {in_ui:.6f} {quote.input_mint[:6]} -> {out_ui:.6f} {quote.output_mint[:6]} ({tx_id})")
        return SwapExecution(
            tx_id=tx_id,
            input_mint=quote.input_mint,
            output_mint=quote.output_mint,
            in_amount_ui=in_ui,
            out_amount_ui=out_ui,
            price_impact_pct=quote.price_impact_pct,
            simulated=True,
        )
