"""Wallet utilities for Solana key management, balances and signing."""

from __future__ import annotations

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import aiohttp
import base58
from solders.keypair import Keypair
from solders.transaction import VersionedTransaction

from tradegate.config import DEFAULT_RPC_URL, LAMPORTS_PER_SOL, SOL_MINT, USDC_MINT
from tradegate.errors import ConfigurationError, DataUnavailable

logger = logging.getLogger(__name__)

KNOWN_DECIMALS = {SOL_MINT: 9, USDC_MINT: 6}


def _keypair_from_value(value: Any) -> Keypair:
    if isinstance(value, list):
        return Keypair.from_bytes(bytes(value))
    text = str(value).strip()
    if text.startswith("["):
        return Keypair.from_bytes(bytes(json.loads(text)))
    return Keypair.from_bytes(base58.b58decode(text))


def load_keypair(
    path: Optional[str] = None,
    env_var: str = "SOLANA_PRIVATE_KEY",
) -> Optional[Keypair]:
    """
    Load a keypair from a JSON keypair file or the environment.

    The env var may hold a base58 secret key or a JSON byte array.
    Returns None when no key is configured; raises ConfigurationError when
    a key is configured but cannot be decoded.
    """
    if path:
        key_path = Path(path).expanduser()
        try:
            return _keypair_from_value(json.loads(key_path.read_text()))
        except (OSError, ValueError) as e:
            raise ConfigurationError(f"Could not load keypair from {key_path}: {e}")

    env_key = os.environ.get(env_var)
    if not env_key:
        return None
    try:
        return _keypair_from_value(env_key)
    except ValueError as e:
        raise ConfigurationError(f"{env_var} is not a valid base58 or JSON secret key: {e}")


class SolanaWallet:
    """
    Signing key plus the handful of RPC reads the engine needs.

    A wallet without a keypair is valid but not ready: every trade is then
    denied by the safety gate before anything is quoted or sent.
    """

    def __init__(
        self,
        keypair: Optional[Keypair] = None,
        rpc_url: str = DEFAULT_RPC_URL,
        timeout_seconds: float = 15.0,
    ):
        self._keypair = keypair
        self.rpc_url = rpc_url
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._session: Optional[aiohttp.ClientSession] = None
        self._decimals: Dict[str, int] = dict(KNOWN_DECIMALS)

        if keypair:
            logger.info(f"Wallet loaded: {self.public_key()[:8]}...")
        else:
            logger.warning("No wallet key configured; trading disabled")

    @property
    def is_ready(self) -> bool:
        return self._keypair is not None

    def public_key(self) -> Optional[str]:
        return str(self._keypair.pubkey()) if self._keypair else None

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    async def close(self):
        if self._session and not self._session.closed:
            await self._session.close()

    async def rpc(self, method: str, params: list) -> Any:
        """JSON-RPC call. Returns ``result``; raises DataUnavailable on any failure."""
        session = await self._get_session()
        payload = {"jsonrpc": "2.0", "id": 1, "method": method, "params": params}
        try:
            async with session.post(self.rpc_url, json=payload) as resp:
                if resp.status != 200:
                    raise DataUnavailable(f"RPC {method} returned HTTP {resp.status}", provider="rpc")
                data = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise DataUnavailable(f"RPC {method} failed: {e!r}", provider="rpc")

        if not isinstance(data, dict):
            raise DataUnavailable(f"RPC {method} returned malformed payload", provider="rpc")
        if data.get("error"):
            error = data["error"]
            message = error.get("message") if isinstance(error, dict) else str(error)
            raise DataUnavailable(f"RPC {method} error: {message}", provider="rpc")
        return data.get("result")

    async def balance(self) -> float:
        """SOL balance of the wallet."""
        if not self.is_ready:
            return 0.0
        result = await self.rpc("getBalance", [self.public_key()])
        try:
            lamports = int(result["value"])
        except (KeyError, TypeError, ValueError):
            raise DataUnavailable("getBalance returned no value", provider="rpc")
        return lamports / LAMPORTS_PER_SOL

    async def token_decimals(self, mint: str) -> int:
        if mint in self._decimals:
            return self._decimals[mint]
        result = await self.rpc("getTokenSupply", [mint])
        try:
            decimals = int(result["value"]["decimals"])
        except (KeyError, TypeError, ValueError):
            raise DataUnavailable(f"getTokenSupply returned no decimals for {mint}", provider="rpc")
        self._decimals[mint] = decimals
        return decimals

    def sign_transaction(self, tx_bytes: bytes) -> bytes:
        """Sign a serialized VersionedTransaction returned by the swap API."""
        if not self._keypair:
            raise ConfigurationError("Cannot sign: no wallet key loaded")
        unsigned = VersionedTransaction.from_bytes(tx_bytes)
        signed = VersionedTransaction(unsigned.message, [self._keypair])
        return bytes(signed)
