"""
test_dexscreener.py - Tests for the DexScreener market data client.

HTTP is mocked at the session seam with FakeSession.
"""

import asyncio
from unittest.mock import AsyncMock

import aiohttp
import pytest

from fakes import OTHER_TOKEN, START_TIME, TOKEN, FakeClock, FakeResponse, FakeSession
from tradegate.errors import DataUnavailable
from tradegate.providers.dexscreener import (
    SOL_PRICE_FALLBACK_USD,
    SOL_PRICE_TTL_SECONDS,
    BoostedToken,
    DexScreenerClient,
    MarketStats,
    pick_best_pair,
)
from tradegate.scoring import DiscoveryFilters


# ─── Helpers ─────────────────────────────────────────────────────────────────

def _pair(address=TOKEN, price="0.002", liquidity=80_000, volume=150_000, buys=400, sells=250,
          change=12.0, market_cap=1_500_000, age_hours=10.0, socials=("twitter",), websites=1,
          symbol="TEST", chain="solana", quote_symbol="SOL"):
    pair = {
        "chainId": chain,
        "url": f"https://dexscreener.com/solana/{address.lower()}",
        "baseToken": {"address": address, "symbol": symbol, "name": f"{symbol} Token"},
        "quoteToken": {"symbol": quote_symbol},
        "priceUsd": price,
        "liquidity": {"usd": liquidity},
        "volume": {"h24": volume},
        "priceChange": {"h24": change},
        "txns": {"h24": {"buys": buys, "sells": sells}},
        "marketCap": market_cap,
        "info": {
            "socials": [{"type": s, "url": f"https://{s}.example"} for s in socials],
            "websites": [{"url": "https://example.com"}] * websites,
        },
    }
    if age_hours is not None:
        pair["pairCreatedAt"] = int((START_TIME - age_hours * 3600) * 1000)
    return pair


def _client(session: FakeSession, clock=None) -> DexScreenerClient:
    client = DexScreenerClient(clock=clock or FakeClock())
    client._get_session = AsyncMock(return_value=session)
    return client


# ─── Parse boundary ──────────────────────────────────────────────────────────

class TestMarketStats:
    def test_full_pair(self):
        stats = MarketStats.from_api(_pair())
        assert stats.address == TOKEN
        assert stats.price_usd == 0.002
        assert stats.liquidity_usd == 80_000
        assert stats.buys_24h == 400
        assert stats.has_twitter is True
        assert stats.has_telegram is False
        assert stats.has_website is True
        assert stats.degraded is False
        assert stats.age_hours(START_TIME) == pytest.approx(10.0)

    def test_market_cap_falls_back_to_fdv(self):
        pair = _pair()
        del pair["marketCap"]
        pair["fdv"] = 2_000_000
        assert MarketStats.from_api(pair).market_cap_usd == 2_000_000

    @pytest.mark.parametrize("price", [None, "", "abc", "0", "-1"])
    def test_unusable_price_raises(self, price):
        pair = _pair(price=price)
        with pytest.raises(DataUnavailable):
            MarketStats.from_api(pair)

    def test_missing_base_token_raises(self):
        pair = _pair()
        del pair["baseToken"]
        with pytest.raises(DataUnavailable):
            MarketStats.from_api(pair)

    def test_missing_optional_fields_are_degraded(self):
        pair = _pair()
        del pair["volume"]
        del pair["txns"]
        stats = MarketStats.from_api(pair)
        assert stats.degraded is True
        assert stats.volume_24h_usd == 0.0
        assert stats.buys_24h == 0
        assert set(stats.missing_fields) == {"volume.h24", "txns.h24.buys", "txns.h24.sells"}

    def test_unknown_age(self):
        stats = MarketStats.from_api(_pair(age_hours=None))
        assert stats.age_hours(START_TIME) is None
        assert stats.to_candidate(START_TIME).age_hours is None

    def test_pick_best_pair(self):
        shallow = _pair(liquidity=1_000)
        deep = _pair(liquidity=900_000)
        assert pick_best_pair([shallow, deep, "junk"]) is deep
        assert pick_best_pair([]) is None


class TestBoostedToken:
    def test_links(self):
        token = BoostedToken.from_api({
            "tokenAddress": TOKEN,
            "chainId": "solana",
            "totalAmount": 500,
            "links": [{"type": "twitter", "url": "x"}, {"label": "Website", "url": "https://a.b"}],
        })
        assert token.has_twitter is True
        assert token.has_website is True
        assert token.has_telegram is False
        assert token.total_amount == 500

    def test_rejects_entry_without_address(self):
        assert BoostedToken.from_api({"chainId": "solana"}) is None

    def test_non_numeric_amount(self):
        token = BoostedToken.from_api({"tokenAddress": TOKEN, "chainId": "solana", "totalAmount": "lots"})
        assert token.total_amount == 0.0


# ─── Client ──────────────────────────────────────────────────────────────────

class TestGetStats:
    @pytest.mark.asyncio
    async def test_uses_most_liquid_pair(self):
        session = FakeSession().add(
            f"/token-pairs/v1/solana/{TOKEN}",
            FakeResponse(payload=[_pair(price="0.001", liquidity=5_000), _pair(price="0.002", liquidity=90_000)]),
        )
        stats = await _client(session).get_stats(TOKEN)
        assert stats.price_usd == 0.002

    @pytest.mark.asyncio
    async def test_no_pairs(self):
        session = FakeSession().add("/token-pairs/", FakeResponse(payload=[]))
        with pytest.raises(DataUnavailable):
            await _client(session).get_stats(TOKEN)

    @pytest.mark.asyncio
    async def test_rate_limited(self):
        session = FakeSession().add("/token-pairs/", FakeResponse(429, body="slow down"))
        with pytest.raises(DataUnavailable, match="rate limited"):
            await _client(session).get_price(TOKEN)

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        session = FakeSession().add("/token-pairs/", FakeResponse(body="<html>"))
        with pytest.raises(DataUnavailable, match="invalid JSON"):
            await _client(session).get_stats(TOKEN)

    @pytest.mark.asyncio
    async def test_network_error(self):
        session = FakeSession().add("/token-pairs/", aiohttp.ClientConnectionError("reset"))
        with pytest.raises(DataUnavailable):
            await _client(session).get_stats(TOKEN)

    @pytest.mark.asyncio
    async def test_timeout(self):
        session = FakeSession().add("/token-pairs/", asyncio.TimeoutError())
        with pytest.raises(DataUnavailable):
            await _client(session).get_stats(TOKEN)


class TestSolPrice:
    @pytest.mark.asyncio
    async def test_prefers_usd_quoted_pair(self):
        session = FakeSession().add("/tokens/v1/solana/", FakeResponse(payload=[
            _pair(price="151.0", quote_symbol="RAY"),
            _pair(price="150.0", quote_symbol="USDC"),
        ]))
        quote = await _client(session).get_sol_price()
        assert quote.price == 150.0
        assert quote.degraded is False

    @pytest.mark.asyncio
    async def test_cached_within_ttl(self):
        session = FakeSession().add("/tokens/v1/solana/", FakeResponse(payload=[_pair(price="150.0", quote_symbol="USDC")]))
        clock = FakeClock()
        client = _client(session, clock)
        await client.get_sol_price()
        clock.advance(SOL_PRICE_TTL_SECONDS - 1)
        await client.get_sol_price()
        assert len(session.calls) == 1

    @pytest.mark.asyncio
    async def test_fallback_constant_is_degraded(self):
        session = FakeSession().add("/tokens/v1/solana/", FakeResponse(500, body="oops"))
        quote = await _client(session).get_sol_price()
        assert quote.price == SOL_PRICE_FALLBACK_USD
        assert quote.degraded is True
        assert quote.source == "fallback"

    @pytest.mark.asyncio
    async def test_fallback_to_stale_cache(self):
        session = FakeSession().add("/tokens/v1/solana/", [
            FakeResponse(payload=[_pair(price="142.5", quote_symbol="USDC")]),
            FakeResponse(503, body="down"),
        ])
        clock = FakeClock()
        client = _client(session, clock)
        await client.get_sol_price()
        clock.advance(SOL_PRICE_TTL_SECONDS + 1)
        quote = await client.get_sol_price()
        assert quote.price == 142.5
        assert quote.degraded is True
        assert quote.source == "cache"


class TestDiscover:
    @pytest.mark.asyncio
    async def test_dedupes_filters_and_ranks(self):
        dead = "Dead1111111111111111111111111111111111111111"
        session = (
            FakeSession()
            .add("/token-boosts/latest/v1", FakeResponse(payload=[
                {"tokenAddress": TOKEN, "chainId": "solana", "totalAmount": 100},
                {"tokenAddress": "0xbase", "chainId": "base"},
                {"tokenAddress": dead, "chainId": "solana"},
            ]))
            .add("/token-boosts/top/v1", FakeResponse(payload=[
                {"tokenAddress": TOKEN, "chainId": "solana"},
                {"tokenAddress": OTHER_TOKEN, "chainId": "solana",
                 "links": [{"type": "twitter", "url": "x"}]},
            ]))
            .add(f"/token-pairs/v1/solana/{TOKEN}", FakeResponse(payload=[_pair(TOKEN, change=-20, websites=0)]))
            .add(f"/token-pairs/v1/solana/{OTHER_TOKEN}", FakeResponse(payload=[
                _pair(OTHER_TOKEN, symbol="BIG", liquidity=600_000, volume=2_000_000, buys=800,
                      sells=200, change=20, market_cap=20_000_000, socials=(), websites=1),
            ]))
            .add(f"/token-pairs/v1/solana/{dead}", FakeResponse(payload=[_pair(dead, liquidity=2_000)]))
        )

        ranked = await _client(session).discover(DiscoveryFilters())

        assert [c.address for c in ranked] == [OTHER_TOKEN, TOKEN]
        assert ranked[0].score == 100
        assert ranked[0].has_twitter is True
        assert ranked[1].boost_amount == 100
        assert session.calls_to("0xbase") == []
        assert len(session.calls_to(f"/token-pairs/v1/solana/{TOKEN}")) == 1

    @pytest.mark.asyncio
    async def test_boost_endpoint_down(self):
        session = (
            FakeSession()
            .add("/token-boosts/latest/v1", FakeResponse(500, body="down"))
            .add("/token-boosts/top/v1", FakeResponse(payload=[{"tokenAddress": TOKEN, "chainId": "solana"}]))
            .add("/token-pairs/", FakeResponse(payload=[_pair(TOKEN)]))
        )
        ranked = await _client(session).discover()
        assert [c.address for c in ranked] == [TOKEN]

    @pytest.mark.asyncio
    async def test_bad_boost_amount_does_not_break_scan(self):
        session = (
            FakeSession()
            .add("/token-boosts/latest/v1", FakeResponse(payload=[
                {"tokenAddress": TOKEN, "chainId": "solana", "totalAmount": "n/a"},
            ]))
            .add("/token-boosts/top/v1", FakeResponse(payload=[]))
            .add("/token-pairs/", FakeResponse(payload=[_pair(TOKEN)]))
        )
        ranked = await _client(session).discover()
        assert [c.address for c in ranked] == [TOKEN]
        assert ranked[0].boost_amount == 0.0

    @pytest.mark.asyncio
    async def test_unpriced_tokens_skipped(self):
        session = (
            FakeSession()
            .add("/token-boosts/latest/v1", FakeResponse(payload=[{"tokenAddress": TOKEN, "chainId": "solana"}]))
            .add("/token-boosts/top/v1", FakeResponse(payload=[]))
            .add("/token-pairs/", FakeResponse(payload=[_pair(TOKEN, price=None)]))
        )
        assert await _client(session).discover() == []


class TestSearch:
    @pytest.mark.asyncio
    async def test_search(self):
        session = FakeSession().add("/latest/dex/search", FakeResponse(payload={"pairs": [
            _pair(TOKEN), _pair(OTHER_TOKEN, chain="ethereum"),
        ]}))
        results = await _client(session).search("test")
        assert [c.address for c in results] == [TOKEN]
        assert session.calls[0]["params"] == {"q": "test"}

    @pytest.mark.asyncio
    async def test_search_ignores_malformed_entries(self):
        session = FakeSession().add("/latest/dex/search", FakeResponse(payload={"pairs": [
            "not-a-pair", None, _pair(TOKEN),
        ]}))
        results = await _client(session).search("test")
        assert [c.address for c in results] == [TOKEN]
