"""Legislator-trade adapter (House/Senate periodic transaction reports).

Timing and conflict scores come from the feed when it supplies them;
otherwise they are estimated from trade recency, the issuer's industry and
the representative's profile.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Sequence

from altsignal.collectors.feeds import FeedClient
from altsignal.collectors.scoring import (
    categorize_volume,
    normalize_transaction_type,
    side_weighted_trend,
    summarize,
)
from altsignal.collectors.types import LEGISLATOR, BatchSummary, LegislatorTrade
from altsignal.utils import clamp, to_datetime, utc_now

logger = logging.getLogger(__name__)

_AMOUNT_RE = re.compile(r"[\d,]+(?:\.\d+)?")
_HIGH_IMPACT_INDUSTRIES = ("bank", "pharma", "defense", "energy", "technology")
_HIGH_PROFILE_MARKERS = ("speaker", "leader", "chairman", "chair")
_PROCESSED_SOURCES = {"quiver", "processed"}
_DEFAULT_PATTERN_SCORE = 0.3


def parse_amount(raw: Any) -> float:
    """Disclosures report ranges like ``$1,001 - $15,000``; take the midpoint."""
    if isinstance(raw, (int, float)):
        return abs(float(raw))
    numbers = [float(n.replace(",", "")) for n in _AMOUNT_RE.findall(str(raw or ""))]
    if not numbers:
        return 0.0
    if len(numbers) == 1:
        return numbers[0]
    return (numbers[0] + numbers[1]) / 2


def normalize_party(raw: str | None) -> str:
    value = (raw or "").strip().lower()
    if value.startswith("rep") or value == "r":
        return "Republican"
    if value.startswith("dem") or value == "d":
        return "Democrat"
    return "Independent"


def normalize_chamber(raw: str | None) -> str:
    return "Senate" if (raw or "").strip().lower().startswith("sen") else "House"


def estimate_timing(days_ago: float | None, earnings_proximity: float = 0.0, news_proximity: float = 0.0) -> float:
    score = earnings_proximity * 0.3 + news_proximity * 0.2 + _DEFAULT_PATTERN_SCORE * 0.3
    if days_ago is not None:
        if days_ago <= 30:
            score += 0.2
        elif days_ago <= 90:
            score += 0.1
    return clamp(score, 0.0, 1.0)


def estimate_conflict(industry: str, chamber: str, representative: str) -> float:
    industry = industry.lower()
    relevance = 1.0 if any(k in industry for k in _HIGH_IMPACT_INDUSTRIES) else 0.3
    score = relevance * 0.6
    if chamber == "Senate":
        score += 0.1
    if any(k in representative.lower() for k in _HIGH_PROFILE_MARKERS):
        score += 0.3
    return clamp(score, 0.0, 1.0)


def legislator_significance(
    *, value: float, chamber: str, timing: float, conflict: float, transaction_type: str
) -> float:
    score = 0.0
    if value > 0:
        if value > 1_000_000:
            score += 0.3
        elif value > 250_000:
            score += 0.25
        elif value > 50_000:
            score += 0.2
        elif value > 15_000:
            score += 0.15
        else:
            score += 0.1

    score += 0.1 if chamber == "Senate" else 0.05
    score += timing * 0.3
    score += conflict * 0.25

    if transaction_type == "buy":
        score += 0.05
    elif transaction_type == "sell":
        score += 0.03
    return clamp(score, 0.0, 1.0)


def legislator_confidence(
    *, processed: bool, has_price: bool, filing_delay_days: float | None, significance: float
) -> float:
    confidence = 0.4
    if processed:
        confidence += 0.3
    if has_price:
        confidence += 0.1
    if filing_delay_days is not None:
        if filing_delay_days <= 30:
            confidence += 0.1
        elif filing_delay_days <= 45:
            confidence += 0.05
    confidence += significance * 0.1
    return clamp(confidence, 0.0, 1.0)


class LegislatorAdapter:
    kind = LEGISLATOR

    def __init__(self, feed: FeedClient, source: str = "quiver") -> None:
        self._feed = feed
        self._source = source

    async def fetch(self, symbol: str | None, options: dict[str, Any]) -> list[LegislatorTrade]:
        records = await self._feed.fetch(symbol, options)
        trades: dict[tuple, LegislatorTrade] = {}
        for rec in records:
            trade = self._to_trade(rec, symbol)
            if trade is None:
                continue
            key = (trade.symbol, trade.representative, trade.transaction_date, trade.value, trade.transaction_type)
            trades.setdefault(key, trade)
        return list(trades.values())

    def _to_trade(self, rec: dict[str, Any], symbol: str | None) -> LegislatorTrade | None:
        sym = str(rec.get("symbol") or rec.get("ticker") or symbol or "").upper()
        representative = rec.get("representative") or rec.get("senator") or rec.get("name") or ""
        if not sym or not representative:
            return None

        chamber = normalize_chamber(rec.get("chamber") or ("Senate" if rec.get("senator") else "House"))
        tx_type = normalize_transaction_type(rec.get("transaction_type") or rec.get("type"))
        value = parse_amount(rec.get("amount", rec.get("value")))
        tx_date = to_datetime(rec.get("transaction_date")) if rec.get("transaction_date") else None
        filing_date = to_datetime(rec.get("filing_date")) if rec.get("filing_date") else None
        days_ago = (utc_now() - tx_date).total_seconds() / 86400 if tx_date else None

        timing = rec.get("timing_score")
        if timing is None:
            timing = estimate_timing(
                days_ago,
                earnings_proximity=float(rec.get("earnings_proximity") or 0.0),
                news_proximity=float(rec.get("news_proximity") or 0.0),
            )
        conflict = rec.get("conflict_score")
        if conflict is None:
            conflict = estimate_conflict(rec.get("industry") or "", chamber, representative)
        timing = clamp(float(timing), 0.0, 1.0)
        conflict = clamp(float(conflict), 0.0, 1.0)

        significance = legislator_significance(
            value=value, chamber=chamber, timing=timing, conflict=conflict, transaction_type=tx_type,
        )
        filing_delay = None
        if tx_date and filing_date:
            filing_delay = max(0.0, (filing_date - tx_date).total_seconds() / 86400)
        source = rec.get("source") or self._source

        return LegislatorTrade(
            timestamp=tx_date or filing_date or utc_now(),
            source=source,
            confidence=legislator_confidence(
                processed=source in _PROCESSED_SOURCES,
                has_price=rec.get("price") not in (None, ""),
                filing_delay_days=filing_delay,
                significance=significance,
            ),
            metadata={
                "filing_delay_days": filing_delay,
                "industry": rec.get("industry") or "",
                "urgency": _urgency(timing, conflict),
            },
            symbol=sym,
            representative=representative,
            chamber=chamber,
            party=normalize_party(rec.get("party")),
            transaction_type=tx_type,
            value=value,
            significance=significance,
            timing_score=timing,
            conflict_score=conflict,
            filing_date=filing_date,
            transaction_date=tx_date,
        )

    def summarize(self, items: Sequence[LegislatorTrade]) -> BatchSummary:
        return summarize(
            items,
            sentiment=side_weighted_trend(items),
            volume=categorize_volume(len(items), high=15, medium=5),
            significance=sum(t.significance for t in items) / len(items) if items else 0.0,
        )


def _urgency(timing: float, conflict: float) -> str:
    score = (timing + conflict) / 2
    if score > 0.7:
        return "high"
    if score > 0.4:
        return "medium"
    return "low"
