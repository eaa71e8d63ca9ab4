"""
Opportunity scoring - quality score (0-100) and risk flags for candidate tokens.

The score is additive from a neutral base of 50 and clamped to [0, 100].
Flags are derived from the same market stats with their own thresholds, so a
caller can gate on either. Nothing here does I/O; the market-data provider
builds CandidateToken instances and hands them in.

Usage:
    from tradegate.scoring import OpportunityScorer

    result = OpportunityScorer().score(candidate)
    if Flag.NO_SOCIALS_RUG_RISK in result.flags:
        ...
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

logger = logging.getLogger(__name__)

BASE_SCORE = 50


class Flag(Enum):
    """Risk labels. Declaration order is the display order."""
    NO_SOCIALS_RUG_RISK = "NO_SOCIALS_RUG_RISK"
    DANGER_LOW_LIQUIDITY = "DANGER_LOW_LIQUIDITY"
    HEAVY_DUMPING = "HEAVY_DUMPING"
    CRASHING = "CRASHING"
    GHOST_TOWN = "GHOST_TOWN"
    SUSPICIOUS_VOLUME = "SUSPICIOUS_VOLUME"
    LATE_ENTRY = "LATE_ENTRY"
    JUST_LAUNCHED = "JUST_LAUNCHED"


@dataclass
class CandidateToken:
    """Market snapshot of one token under consideration."""
    address: str
    symbol: str = "???"
    name: str = "Unknown"
    price_usd: float = 0.0
    liquidity_usd: float = 0.0
    volume_24h_usd: float = 0.0
    price_change_24h_pct: float = 0.0
    market_cap_usd: float = 0.0
    buys_24h: int = 0
    sells_24h: int = 0
    age_hours: Optional[float] = None  # None when the pair creation time is unknown
    has_twitter: bool = False
    has_telegram: bool = False
    has_website: bool = False
    chain_id: str = "solana"
    description: str = ""
    url: str = ""
    boost_amount: float = 0.0
    degraded: bool = False

    # Derived by OpportunityScorer.rank()
    score: int = 0
    flags: Tuple[Flag, ...] = ()

    @property
    def txns_24h(self) -> int:
        return self.buys_24h + self.sells_24h

    @property
    def has_socials(self) -> bool:
        return self.has_twitter or self.has_telegram or self.has_website

    def to_dict(self) -> Dict:
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
            "age_hours": self.age_hours,
            "socials": {
                "twitter": self.has_twitter,
                "telegram": self.has_telegram,
                "website": self.has_website,
            },
            "url": self.url,
            "degraded": self.degraded,
            "score": self.score,
            "flags": [f.value for f in self.flags],
        }


@dataclass(frozen=True)
class ScoreResult:
    """Score, flags and the per-signal adjustments that produced the score."""
    score: int
    flags: Tuple[Flag, ...]
    factors: Dict[str, int] = field(default_factory=dict)


@dataclass
class DiscoveryFilters:
    """Minimum bar a candidate has to clear before it is worth scoring."""
    min_liquidity_usd: float = 10_000
    min_volume_24h_usd: float = 20_000
    max_age_hours: Optional[float] = 168  # 7 days
    min_buys_24h: int = 50
    chain_id: Optional[str] = "solana"


def _ratio(numerator: float, denominator: float) -> float:
    return numerator / (denominator if denominator != 0 else 1)


# ---------------------------------------------------------------------------
# Signal tables
# ---------------------------------------------------------------------------


def _volume_liquidity_points(ratio: float) -> int:
    if ratio > 10:
        return -15  # wash trading
    if ratio >= 3:
        return 15
    if ratio >= 1.5:
        return 10
    if ratio >= 0.5:
        return 5
    return -5  # dead volume


def _buy_ratio_points(buy_ratio: float) -> int:
    if buy_ratio > 0.65:
        return 15
    if buy_ratio >= 0.55:
        return 10
    if buy_ratio >= 0.45:
        return 0
    if buy_ratio >= 0.35:
        return -10
    return -20  # dumping


def _price_change_points(change_pct: float) -> int:
    if change_pct > 200:
        return -10  # late entry
    if change_pct >= 50:
        return 5
    if change_pct >= 10:
        return 10
    if change_pct >= -10:
        return 5
    if change_pct >= -30:
        return -15
    return -25


def _liquidity_points(liquidity: float) -> int:
    if liquidity > 500_000:
        return 20
    if liquidity > 200_000:
        return 15
    if liquidity > 100_000:
        return 10
    if liquidity > 50_000:
        return 5
    if liquidity >= 20_000:
        return 0
    return -10


def _volume_points(volume: float) -> int:
    if volume > 500_000:
        return 15
    if volume > 200_000:
        return 10
    if volume > 100_000:
        return 5
    return 0


def _market_cap_points(market_cap: float) -> int:
    if 0 < market_cap < 50_000:
        return -20
    if market_cap > 10_000_000:
        return 10
    return 0


def _txn_points(txns: int) -> int:
    if txns > 1000:
        return 10
    if txns > 500:
        return 5
    if txns < 100:
        return -15
    return 0


def _social_points(candidate: CandidateToken) -> int:
    if candidate.has_twitter and candidate.has_website:
        return 15
    if candidate.has_twitter:
        return 10
    if candidate.has_telegram or candidate.has_website:
        return 5
    return -25


# ---------------------------------------------------------------------------
# Scorer
# ---------------------------------------------------------------------------


class OpportunityScorer:
    """
    Deterministic quality scoring for candidate tokens.

    Flag thresholds are instance attributes so a stricter scorer can be built
    without touching the score table.
    """

    def __init__(
        self,
        low_liquidity_usd: float = 10_000,
        dump_sell_multiple: float = 2.0,
        just_launched_hours: float = 1.0,
        crash_pct: float = -50.0,
        ghost_town_txns: int = 50,
        wash_trade_ratio: float = 10.0,
        late_entry_pct: float = 200.0,
    ):
        self.low_liquidity_usd = low_liquidity_usd
        self.dump_sell_multiple = dump_sell_multiple
        self.just_launched_hours = just_launched_hours
        self.crash_pct = crash_pct
        self.ghost_town_txns = ghost_town_txns
        self.wash_trade_ratio = wash_trade_ratio
        self.late_entry_pct = late_entry_pct

    def score(self, candidate: CandidateToken) -> ScoreResult:
        vol_liq = _ratio(candidate.volume_24h_usd, candidate.liquidity_usd)
        buy_ratio = _ratio(candidate.buys_24h, candidate.txns_24h)

        factors = {
            "volume_liquidity": _volume_liquidity_points(vol_liq),
            "buy_ratio": _buy_ratio_points(buy_ratio),
            "price_change": _price_change_points(candidate.price_change_24h_pct),
            "liquidity": _liquidity_points(candidate.liquidity_usd),
            "volume": _volume_points(candidate.volume_24h_usd),
            "market_cap": _market_cap_points(candidate.market_cap_usd),
            "transactions": _txn_points(candidate.txns_24h),
            "socials": _social_points(candidate),
        }

        raw = BASE_SCORE + sum(factors.values())
        score = max(0, min(100, raw))

        return ScoreResult(score=score, flags=self.flags(candidate), factors=factors)

    def flags(self, candidate: CandidateToken) -> Tuple[Flag, ...]:
        raised = set()

        if not candidate.has_socials:
            raised.add(Flag.NO_SOCIALS_RUG_RISK)
        if candidate.liquidity_usd < self.low_liquidity_usd:
            raised.add(Flag.DANGER_LOW_LIQUIDITY)
        if candidate.sells_24h > 0 and candidate.sells_24h >= candidate.buys_24h * self.dump_sell_multiple:
            raised.add(Flag.HEAVY_DUMPING)
        if candidate.price_change_24h_pct <= self.crash_pct:
            raised.add(Flag.CRASHING)
        if candidate.txns_24h < self.ghost_town_txns:
            raised.add(Flag.GHOST_TOWN)
        if _ratio(candidate.volume_24h_usd, candidate.liquidity_usd) > self.wash_trade_ratio:
            raised.add(Flag.SUSPICIOUS_VOLUME)
        if candidate.price_change_24h_pct > self.late_entry_pct:
            raised.add(Flag.LATE_ENTRY)
        if candidate.age_hours is not None and candidate.age_hours < self.just_launched_hours:
            raised.add(Flag.JUST_LAUNCHED)

        return tuple(f for f in Flag if f in raised)

    def rank(self, candidates: Iterable[CandidateToken]) -> List[CandidateToken]:
        """Score every candidate and return copies sorted best first."""
        scored = []
        for candidate in candidates:
            result = self.score(candidate)
            scored.append(replace(candidate, score=result.score, flags=result.flags))
        scored.sort(key=lambda c: c.score, reverse=True)
        return scored


def passes_filters(candidate: CandidateToken, filters: DiscoveryFilters) -> bool:
    if filters.chain_id and candidate.chain_id != filters.chain_id:
        return False
    if candidate.liquidity_usd < filters.min_liquidity_usd:
        return False
    if candidate.volume_24h_usd < filters.min_volume_24h_usd:
        return False
    if candidate.buys_24h < filters.min_buys_24h:
        return False
    if filters.max_age_hours is not None and candidate.age_hours is not None:
        if candidate.age_hours > filters.max_age_hours:
            return False
    return True


def score_candidate(candidate: CandidateToken) -> ScoreResult:
    """Score with default flag thresholds."""
    return OpportunityScorer().score(candidate)
