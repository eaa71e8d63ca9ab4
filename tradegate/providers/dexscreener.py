"""DexScreener market data for Solana tokens.

All payloads pass through a strict parse boundary: a pair without a usable
USD price raises DataUnavailable instead of being scored as a zero. Optional
counters (volume, txns, market cap) may be missing on young pairs; those
default to 0, are listed in ``missing_fields``, and mark the result degraded.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple

import aiohttp

from tradegate.config import DEFAULT_DEXSCREENER_API, SOL_MINT
from tradegate.errors import DataUnavailable
from tradegate.scoring import CandidateToken, DiscoveryFilters, OpportunityScorer, passes_filters

logger = logging.getLogger(__name__)

PROVIDER = "dexscreener"
USER_AGENT = "tradegate/0.1 (DexScreener Client)"

SOL_PRICE_TTL_SECONDS = 30
SOL_PRICE_FALLBACK_USD = 180.0
MAX_ENRICHED_TOKENS = 20
ENRICH_BATCH_SIZE = 5
ENRICH_BATCH_PAUSE_SECONDS = 0.2


def _require_float(value: Any, name: str) -> float:
    if value is None or value == "":
        raise DataUnavailable(f"missing {name}", provider=PROVIDER)
    try:
        return float(value)
    except (TypeError, ValueError):
        raise DataUnavailable(f"non-numeric {name}: {value!r}", provider=PROVIDER)


def _optional_float(value: Any, name: str, missing: List[str]) -> float:
    if value is None or value == "":
        missing.append(name)
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        missing.append(name)
        return 0.0


def _optional_int(value: Any, name: str, missing: List[str]) -> int:
    return int(_optional_float(value, name, missing))


# ---------------------------------------------------------------------------
# Parsed records
# ---------------------------------------------------------------------------


@dataclass
class MarketStats:
    """Validated market snapshot for the most liquid pair of a token."""
    address: str
    symbol: str
    name: str
    price_usd: float
    liquidity_usd: float
    volume_24h_usd: float
    price_change_24h_pct: float
    market_cap_usd: float
    buys_24h: int
    sells_24h: int
    pair_created_at: Optional[int] = None  # ms since epoch
    chain_id: str = "solana"
    url: str = ""
    has_twitter: bool = False
    has_telegram: bool = False
    has_website: bool = False
    missing_fields: Tuple[str, ...] = ()
    degraded: bool = False

    @classmethod
    def from_api(cls, pair: Dict[str, Any]) -> MarketStats:
        """Parse one DexScreener pair object. Raises DataUnavailable when unusable."""
        if not isinstance(pair, dict):
            raise DataUnavailable(f"pair is not an object: {type(pair).__name__}", provider=PROVIDER)

        base = pair.get("baseToken") or {}
        address = base.get("address")
        if not address:
            raise DataUnavailable("pair has no baseToken.address", provider=PROVIDER)

        price_usd = _require_float(pair.get("priceUsd"), "priceUsd")
        if price_usd <= 0:
            raise DataUnavailable(f"non-positive priceUsd: {price_usd}", provider=PROVIDER)

        missing: List[str] = []
        liquidity = pair.get("liquidity") or {}
        volume = pair.get("volume") or {}
        price_change = pair.get("priceChange") or {}
        txns = (pair.get("txns") or {}).get("h24") or {}
        info = pair.get("info") or {}

        socials = {s.get("type") for s in info.get("socials") or [] if isinstance(s, dict)}
        websites = info.get("websites") or []

        created = pair.get("pairCreatedAt")
        return cls(
            address=address,
            symbol=base.get("symbol") or "???",
            name=base.get("name") or "Unknown",
            price_usd=price_usd,
            liquidity_usd=_optional_float(liquidity.get("usd"), "liquidity.usd", missing),
            volume_24h_usd=_optional_float(volume.get("h24"), "volume.h24", missing),
            price_change_24h_pct=_optional_float(price_change.get("h24"), "priceChange.h24", missing),
            market_cap_usd=_optional_float(
                pair.get("marketCap", pair.get("fdv")), "marketCap", missing
            ),
            buys_24h=_optional_int(txns.get("buys"), "txns.h24.buys", missing),
            sells_24h=_optional_int(txns.get("sells"), "txns.h24.sells", missing),
            pair_created_at=int(created) if isinstance(created, (int, float)) else None,
            chain_id=pair.get("chainId") or "solana",
            url=pair.get("url") or "",
            has_twitter="twitter" in socials,
            has_telegram="telegram" in socials,
            has_website=bool(websites),
            missing_fields=tuple(missing),
            degraded=bool(missing),
        )

    def age_hours(self, now: float) -> Optional[float]:
        if not self.pair_created_at:
            return None
        return max(0.0, (now * 1000 - self.pair_created_at) / 3_600_000)

    def to_candidate(self, now: float, **overrides) -> CandidateToken:
        fields = dict(
            address=self.address,
            symbol=self.symbol,
            name=self.name,
            price_usd=self.price_usd,
            liquidity_usd=self.liquidity_usd,
            volume_24h_usd=self.volume_24h_usd,
            price_change_24h_pct=self.price_change_24h_pct,
            market_cap_usd=self.market_cap_usd,
            buys_24h=self.buys_24h,
            sells_24h=self.sells_24h,
            age_hours=self.age_hours(now),
            has_twitter=self.has_twitter,
            has_telegram=self.has_telegram,
            has_website=self.has_website,
            chain_id=self.chain_id,
            url=self.url,
            degraded=self.degraded,
        )
        fields.update(overrides)
        return CandidateToken(**fields)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "symbol": self.symbol,
            "name": self.name,
            "price_usd": self.price_usd,
            "liquidity_usd": self.liquidity_usd,
            "volume_24h_usd": self.volume_24h_usd,
            "price_change_24h_pct": self.price_change_24h_pct,
            "market_cap_usd": self.market_cap_usd,
            "txns_24h": {"buys": self.buys_24h, "sells": self.sells_24h},
            "pair_created_at": self.pair_created_at,
            "url": self.url,
            "degraded": self.degraded,
            "missing_fields": list(self.missing_fields),
        }


@dataclass(frozen=True)
class PriceQuote:
    price: float
    degraded: bool = False
    source: str = PROVIDER


@dataclass
class BoostedToken:
    """Entry from the token-boosts endpoints."""
    address: str
    chain_id: str
    description: str = ""
    url: str = ""
    total_amount: float = 0.0
    has_twitter: bool = False
    has_telegram: bool = False
    has_website: bool = False

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> Optional[BoostedToken]:
        if not isinstance(data, dict) or not data.get("tokenAddress"):
            return None
        token = cls(
            address=data["tokenAddress"],
            chain_id=data.get("chainId") or "",
            description=(data.get("description") or "")[:200],
            url=data.get("url") or "",
            total_amount=_optional_float(data.get("totalAmount") or data.get("amount"), "totalAmount", []),
        )
        for link in data.get("links") or []:
            if not isinstance(link, dict):
                continue
            link_type = link.get("type")
            if link_type == "twitter":
                token.has_twitter = True
            elif link_type == "telegram":
                token.has_telegram = True
            elif not link_type and link.get("url"):
                token.has_website = True
        return token


def pick_best_pair(pairs: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Most liquid pair, or None."""
    def liquidity(pair: Dict) -> float:
        try:
            return float((pair.get("liquidity") or {}).get("usd") or 0)
        except (TypeError, ValueError):
            return 0.0

    candidates = [p for p in pairs if isinstance(p, dict)]
    if not candidates:
        return None
    return max(candidates, key=liquidity)


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class DexScreenerClient:
    """
    Async DexScreener client.

    Owns its HTTP session and its SOL price cache; create one per agent and
    close() it on shutdown.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_DEXSCREENER_API,
        timeout_seconds: float = 15.0,
        scorer: Optional[OpportunityScorer] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.base_url = base_url.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._scorer = scorer or OpportunityScorer()
        self._clock = clock
        self._session: Optional[aiohttp.ClientSession] = None
        self._sol_price: Optional[Tuple[float, float]] = None  # (price, fetched_at)

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=self._timeout,
                headers={"Accept": "application/json", "User-Agent": USER_AGENT},
            )
        return self._session

    async def close(self):
        if self._session and not self._session.closed:
            await self._session.close()

    async def _get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        session = await self._get_session()
        url = f"{self.base_url}{path}"
        try:
            async with session.get(url, params=params) as resp:
                if resp.status == 429:
                    raise DataUnavailable("rate limited (429)", provider=PROVIDER)
                if resp.status != 200:
                    raise DataUnavailable(f"HTTP {resp.status} for {path}", provider=PROVIDER)
                try:
                    return await resp.json(content_type=None)
                except ValueError as e:
                    raise DataUnavailable(f"invalid JSON from {path}: {e}", provider=PROVIDER)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise DataUnavailable(f"request to {path} failed: {e!r}", provider=PROVIDER)

    async def get_pairs(self, address: str, chain_id: str = "solana") -> List[Dict[str, Any]]:
        data = await self._get_json(f"/token-pairs/v1/{chain_id}/{address}")
        if isinstance(data, dict):
            data = data.get("pairs") or []
        if not isinstance(data, list):
            raise DataUnavailable(f"unexpected pairs payload for {address}", provider=PROVIDER)
        return data

    async def get_stats(self, address: str) -> MarketStats:
        """Stats for the token's most liquid pair. Raises DataUnavailable."""
        pair = pick_best_pair(await self.get_pairs(address))
        if pair is None:
            raise DataUnavailable(f"no pairs for {address}", provider=PROVIDER)
        stats = MarketStats.from_api(pair)
        if stats.degraded:
            logger.warning(
                f"[DEXSCREENER] {stats.symbol} missing fields {', '.join(stats.missing_fields)}; defaulted to 0"
            )
        return stats

    async def get_price(self, address: str) -> float:
        return (await self.get_stats(address)).price_usd

    async def get_sol_price(self) -> PriceQuote:
        """SOL/USD, cached for 30s. Falls back to the last cached value, or a constant, marked degraded."""
        now = self._clock()
        if self._sol_price and now - self._sol_price[1] < SOL_PRICE_TTL_SECONDS:
            return PriceQuote(price=self._sol_price[0])

        try:
            data = await self._get_json(f"/tokens/v1/solana/{SOL_MINT}")
            pairs = [p for p in data if isinstance(p, dict)] if isinstance(data, list) else []
            usd_pair = next(
                (p for p in pairs if (p.get("quoteToken") or {}).get("symbol") in ("USDC", "USDT")),
                pairs[0] if pairs else None,
            )
            if usd_pair is None:
                raise DataUnavailable("no SOL pairs returned", provider=PROVIDER)
            price = _require_float(usd_pair.get("priceUsd"), "priceUsd")
            if price <= 0:
                raise DataUnavailable(f"non-positive SOL price {price}", provider=PROVIDER)
        except DataUnavailable as e:
            fallback = self._sol_price[0] if self._sol_price else SOL_PRICE_FALLBACK_USD
            source = "cache" if self._sol_price else "fallback"
            logger.warning(f"[DEXSCREENER] SOL price unavailable ({e.message}); using {source} ${fallback:.2f}")
            return PriceQuote(price=fallback, degraded=True, source=source)

        self._sol_price = (price, now)
        return PriceQuote(price=price)

    async def _boosted(self, path: str) -> List[BoostedToken]:
        try:
            data = await self._get_json(path)
        except DataUnavailable as e:
            logger.warning(f"[DEXSCREENER] {path} unavailable: {e.message}")
            return []
        if not isinstance(data, list):
            return []
        return [t for t in (BoostedToken.from_api(d) for d in data) if t is not None]

    async def discover(self, filters: Optional[DiscoveryFilters] = None) -> List[CandidateToken]:
        """
        Scan boosted tokens, enrich with pair stats, filter and rank.

        Returns:
            Candidates that pass the filters, best score first
        """
        filters = filters or DiscoveryFilters()
        latest, top = await asyncio.gather(
            self._boosted("/token-boosts/latest/v1"),
            self._boosted("/token-boosts/top/v1"),
        )

        seen = set()
        boosted = []
        for token in latest + top:
            if token.address in seen:
                continue
            seen.add(token.address)
            if filters.chain_id and token.chain_id != filters.chain_id:
                continue
            boosted.append(token)

        logger.info(f"[DISCOVER] {len(boosted)} boosted tokens on {filters.chain_id or 'all chains'}")

        now = self._clock()
        candidates = []
        for i, token in enumerate(boosted[:MAX_ENRICHED_TOKENS]):
            try:
                stats = await self.get_stats(token.address)
            except DataUnavailable as e:
                logger.debug(f"[DISCOVER] skipping {token.address[:8]}...: {e.message}")
                continue

            candidate = stats.to_candidate(
                now,
                chain_id=token.chain_id or stats.chain_id,
                description=token.description,
                url=token.url or stats.url,
                boost_amount=token.total_amount,
                has_twitter=token.has_twitter or stats.has_twitter,
                has_telegram=token.has_telegram or stats.has_telegram,
                has_website=token.has_website or stats.has_website,
            )
            if passes_filters(candidate, filters):
                candidates.append(candidate)

            if i % ENRICH_BATCH_SIZE == ENRICH_BATCH_SIZE - 1:
                await asyncio.sleep(ENRICH_BATCH_PAUSE_SECONDS)

        ranked = self._scorer.rank(candidates)
        logger.info(f"[DISCOVER] {len(ranked)} tokens passed filters")
        return ranked

    async def search(self, query: str, filters: Optional[DiscoveryFilters] = None) -> List[CandidateToken]:
        filters = filters or DiscoveryFilters()
        data = await self._get_json("/latest/dex/search", params={"q": query})
        raw_pairs = data.get("pairs") if isinstance(data, dict) else None
        pairs = [p for p in raw_pairs if isinstance(p, dict)] if isinstance(raw_pairs, list) else []

        now = self._clock()
        candidates = []
        for pair in pairs[:MAX_ENRICHED_TOKENS]:
            if filters.chain_id and pair.get("chainId") != filters.chain_id:
                continue
            try:
                candidate = MarketStats.from_api(pair).to_candidate(now)
            except DataUnavailable:
                continue
            if passes_filters(candidate, filters):
                candidates.append(candidate)
        return self._scorer.rank(candidates)
