"""
test_wallet.py - Tests for key loading and wallet RPC reads.
"""

import json
import os
from unittest.mock import AsyncMock, patch

import base58
import pytest
from solders.keypair import Keypair

from fakes import TOKEN, FakeResponse, FakeSession
from tradegate.config import SOL_MINT
from tradegate.errors import ConfigurationError, DataUnavailable
from tradegate.providers.wallet import SolanaWallet, load_keypair


def _wallet(session: FakeSession, keypair=None) -> SolanaWallet:
    wallet = SolanaWallet(keypair)
    wallet._get_session = AsyncMock(return_value=session)
    return wallet


class TestLoadKeypair:
    def test_base58_env(self):
        keypair = Keypair()
        with patch.dict(os.environ, {"SOLANA_PRIVATE_KEY": base58.b58encode(bytes(keypair)).decode()}):
            assert load_keypair().pubkey() == keypair.pubkey()

    def test_json_array_env(self):
        keypair = Keypair()
        with patch.dict(os.environ, {"SOLANA_PRIVATE_KEY": json.dumps(list(bytes(keypair)))}):
            assert load_keypair().pubkey() == keypair.pubkey()

    def test_keypair_file(self, temp_dir):
        keypair = Keypair()
        path = temp_dir / "id.json"
        path.write_text(json.dumps(list(bytes(keypair))))
        assert load_keypair(str(path)).pubkey() == keypair.pubkey()

    def test_missing_key(self):
        with patch.dict(os.environ, {}, clear=True):
            assert load_keypair() is None

    def test_invalid_key(self):
        with patch.dict(os.environ, {"SOLANA_PRIVATE_KEY": "0OIl-not-base58"}):
            with pytest.raises(ConfigurationError):
                load_keypair()

    def test_missing_file(self, temp_dir):
        with pytest.raises(ConfigurationError):
            load_keypair(str(temp_dir / "nope.json"))


class TestSolanaWallet:
    def test_not_ready_without_key(self):
        wallet = SolanaWallet()
        assert wallet.is_ready is False
        assert wallet.public_key() is None

    def test_sign_without_key(self):
        with pytest.raises(ConfigurationError):
            SolanaWallet().sign_transaction(b"tx")

    @pytest.mark.asyncio
    async def test_balance(self):
        session = FakeSession().add("mainnet", FakeResponse(payload={"jsonrpc": "2.0", "result": {"value": 1_500_000_000}}))
        wallet = _wallet(session, Keypair())
        assert await wallet.balance() == pytest.approx(1.5)
        assert session.calls[0]["json"]["method"] == "getBalance"

    @pytest.mark.asyncio
    async def test_balance_without_key_is_zero(self):
        session = FakeSession()
        assert await _wallet(session).balance() == 0.0
        assert session.calls == []

    @pytest.mark.asyncio
    async def test_token_decimals_cached(self):
        session = FakeSession().add("mainnet", FakeResponse(payload={"result": {"value": {"decimals": 5}}}))
        wallet = _wallet(session)
        assert await wallet.token_decimals(TOKEN) == 5
        assert await wallet.token_decimals(TOKEN) == 5
        assert await wallet.token_decimals(SOL_MINT) == 9
        assert len(session.calls) == 1

    @pytest.mark.asyncio
    async def test_rpc_error(self):
        session = FakeSession().add("mainnet", FakeResponse(payload={"error": {"code": -32602, "message": "Invalid param"}}))
        with pytest.raises(DataUnavailable, match="Invalid param"):
            await _wallet(session).rpc("getTokenSupply", [TOKEN])

    @pytest.mark.asyncio
    async def test_rpc_http_error(self):
        session = FakeSession().add("mainnet", FakeResponse(503, body="busy"))
        with pytest.raises(DataUnavailable):
            await _wallet(session).rpc("getBalance", ["x"])
