"""
test_agent_tools.py - Tests for the agent tool surface.

Every tool call must come back as a JSON string, success or not.
"""

import json

import pytest

from fakes import PUMP_TOKEN, TOKEN
from tradegate.agent_tools import TRADING_TOOLS, TradingToolExecutor, format_candidate, format_usd
from tradegate.errors import DataUnavailable, RouteUnavailable
from tradegate.scoring import CandidateToken, Flag


@pytest.fixture
def executor(orchestrator, gate, ledger, market, router, wallet):
    return TradingToolExecutor(orchestrator, gate, ledger, market, router, wallet)


async def _call(executor, name, tool_input=None) -> dict:
    raw = await executor.execute(name, tool_input)
    assert isinstance(raw, str)
    return json.loads(raw)


def _candidate(**kwargs) -> CandidateToken:
    fields = dict(
        address=TOKEN, symbol="TEST", name="Test Token", price_usd=0.00201,
        liquidity_usd=85_000, volume_24h_usd=1_250_000, price_change_24h_pct=12.5,
        buys_24h=400, sells_24h=250, age_hours=10.0, has_twitter=True, score=72,
    )
    fields.update(kwargs)
    return CandidateToken(**fields)


class TestToolDefinitions:
    def test_tool_names(self):
        assert [t["name"] for t in TRADING_TOOLS] == [
            "check_balance", "get_price", "get_swap_quote", "execute_trade",
            "check_can_trade", "check_token_tradable", "list_positions", "discover_tokens",
        ]

    def test_schemas(self):
        execute_trade = next(t for t in TRADING_TOOLS if t["name"] == "execute_trade")
        schema = execute_trade["input_schema"]
        assert schema["type"] == "object"
        assert schema["properties"]["direction"]["enum"] == ["buy", "sell"]
        assert set(schema["required"]) == {"token_address", "direction", "amount", "reasoning"}


class TestExecutor:
    @pytest.mark.asyncio
    async def test_unknown_tool(self, executor):
        payload = await _call(executor, "launch_rocket")
        assert payload == {"success": False, "error": "Unknown tool: launch_rocket"}

    @pytest.mark.asyncio
    async def test_execute_trade(self, executor, ledger):
        payload = await _call(executor, "execute_trade", {
            "token_address": TOKEN, "direction": "buy", "amount": 0.1, "reasoning": "volume breakout",
        })
        assert payload["success"] is True
        assert payload["position"]["address"] == TOKEN
        assert ledger.get(TOKEN) is not None

    @pytest.mark.asyncio
    async def test_execute_trade_not_tradable(self, executor, router):
        router.route_plan = []
        payload = await _call(executor, "execute_trade", {
            "token_address": TOKEN, "direction": "buy", "amount": 0.1, "reasoning": "x",
        })
        assert payload["success"] is False
        assert payload["kind"] == "not_tradable"
        assert "tip" in payload

    @pytest.mark.asyncio
    async def test_execute_trade_bad_input(self, executor):
        payload = await _call(executor, "execute_trade", {"token_address": TOKEN, "amount": 1})
        assert payload["success"] is False
        assert payload["kind"] == "validation_error"

    @pytest.mark.asyncio
    async def test_check_can_trade(self, executor, gate):
        payload = await _call(executor, "check_can_trade", {"amount": 0.2})
        assert payload["allowed"] is True
        assert payload["last_trade_time"] == "Never"
        assert payload["limits"]["max_trade_size_sol"] == 0.5

        gate.record_trade()
        payload = await _call(executor, "check_can_trade", {"amount": 0.2})
        assert payload["allowed"] is False
        assert payload["reason"].startswith("Cooldown")
        assert payload["last_trade_time"].endswith("Z")

    @pytest.mark.asyncio
    async def test_check_token_tradable_pump(self, executor, router):
        router.quote_error = RouteUnavailable("TOKEN_NOT_TRADABLE", address=PUMP_TOKEN)
        payload = await _call(executor, "check_token_tradable", {"token_address": PUMP_TOKEN})
        assert payload["tradable"] is False
        assert payload["is_pump_fun_token"] is True
        assert payload["warning"]
        assert payload["recommendation"].startswith("DO NOT")

    @pytest.mark.asyncio
    async def test_check_token_tradable_ok(self, executor):
        payload = await _call(executor, "check_token_tradable", {"token_address": TOKEN})
        assert payload["tradable"] is True
        assert payload["warning"] is None

    @pytest.mark.asyncio
    async def test_get_swap_quote(self, executor):
        payload = await _call(executor, "get_swap_quote", {"token_address": TOKEN, "direction": "buy", "amount": 0.1})
        assert payload["success"] is True
        assert payload["output_amount"] == pytest.approx(1000.0)
        assert payload["slippage"] == "5.0%"
        assert payload["warning"] is None

    @pytest.mark.asyncio
    async def test_get_swap_quote_sell(self, executor):
        payload = await _call(executor, "get_swap_quote", {"token_address": TOKEN, "direction": "sell", "amount": 1000})
        assert payload["output_amount"] == pytest.approx(0.1)

    @pytest.mark.asyncio
    async def test_get_price(self, executor):
        payload = await _call(executor, "get_price", {"token_address": TOKEN})
        assert payload["price"] == 0.002
        assert payload["liquidity"] == "$80.0K"

    @pytest.mark.asyncio
    async def test_provider_error_is_reported(self, executor, market):
        market.stats_error = DataUnavailable("rate limited (429)", provider="dexscreener")
        payload = await _call(executor, "get_price", {"token_address": TOKEN})
        assert payload == {"success": False, "error": "rate limited (429)", "kind": "data_unavailable"}

    @pytest.mark.asyncio
    async def test_missing_address(self, executor):
        payload = await _call(executor, "get_price", {})
        assert payload["success"] is False
        assert payload["kind"] == "validation_error"

    @pytest.mark.asyncio
    async def test_check_balance(self, executor, ledger):
        ledger.open(TOKEN, "TEST", 1000, 0.002, 0.1)
        payload = await _call(executor, "check_balance")
        assert payload["sol"]["balance"] == 2.0
        assert payload["sol"]["usd_value"] == "$300.00"
        assert payload["total_positions"] == 1

    @pytest.mark.asyncio
    async def test_list_positions(self, executor, ledger):
        ledger.open(TOKEN, "TEST", 1000, 0.002, 0.1)
        payload = await _call(executor, "list_positions")
        assert payload["count"] == 1
        assert payload["positions"][0]["symbol"] == "TEST"
        assert payload["max_positions"] == 2

    @pytest.mark.asyncio
    async def test_discover_tokens(self, executor, market):
        market.candidates = [_candidate(), _candidate(address="B" * 44, symbol="TWO")]
        payload = await _call(executor, "discover_tokens", {"min_liquidity": 50_000, "limit": 1})
        assert payload["count"] == 1
        assert payload["tokens"][0]["symbol"] == "TEST"
        assert market.last_filters.min_liquidity_usd == 50_000
        assert market.last_filters.min_volume_24h_usd == 20_000
        assert "**Test Token (TEST)**" in payload["summary"]

    @pytest.mark.asyncio
    async def test_unexpected_error_is_reported(self, executor, wallet):
        async def broken():
            raise RuntimeError("socket closed")

        wallet.balance = broken
        payload = await _call(executor, "check_balance")
        assert payload["success"] is False
        assert "socket closed" in payload["error"]


class TestFormatting:
    def test_format_usd(self):
        assert format_usd(1_250_000) == "$1.25M"
        assert format_usd(85_000) == "$85.0K"
        assert format_usd(12.5) == "$12.50"

    def test_format_candidate(self):
        text = format_candidate(_candidate(flags=(Flag.LATE_ENTRY,), description="A test token"))
        assert text.startswith("**Test Token (TEST)** - Score: 72/100 [!] LATE_ENTRY")
        assert "+12.5% 24h" in text
        assert "Volume: $1.25M | Liquidity: $85.0K" in text
        assert "Links: Twitter" in text
        assert "A test token" in text
        assert f"Address: {TOKEN}" in text

    def test_format_unknown_age(self):
        assert "Age: unknown" in format_candidate(_candidate(age_hours=None))
