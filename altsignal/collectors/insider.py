"""Insider-filing adapter (Form 4 style records)."""

from __future__ import annotations

import logging
from typing import Any, Sequence

from altsignal.collectors.feeds import FeedClient
from altsignal.collectors.scoring import (
    categorize_volume,
    normalize_transaction_type,
    side_weighted_trend,
    summarize,
)
from altsignal.collectors.types import INSIDER, BatchSummary, InsiderTrade
from altsignal.utils import clamp, to_datetime, utc_now

logger = logging.getLogger(__name__)

_SOURCE_RELIABILITY = {"sec": 0.3, "quiver": 0.25}


def _float(value: Any) -> float | None:
    if value in (None, ""):
        return None
    try:
        return float(str(value).replace(",", "").replace("$", ""))
    except ValueError:
        return None


def position_score(title: str, relationship: str) -> float:
    t = title.lower()
    r = relationship.lower()
    if "ceo" in t or "president" in t or "chairman" in t:
        return 1.0
    if "cfo" in t or "coo" in t or "cto" in t or "chief" in t:
        return 0.9
    if "director" in t or "director" in r:
        return 0.8
    if "vice president" in t or "vp" in t or "senior" in t:
        return 0.7
    if "officer" in t or "officer" in r:
        return 0.6
    if "10%" in r or "ten percent" in r:
        return 0.8
    return 0.3


def recency_score(days_ago: float | None) -> float:
    if days_ago is None:
        return 0.5
    if days_ago <= 7:
        return 1.0
    if days_ago <= 30:
        return 0.8
    if days_ago <= 90:
        return 0.6
    return 0.3


def insider_significance(
    *,
    value: float,
    title: str,
    relationship: str,
    transaction_type: str,
    percent_owned: float | None,
    is_direct: bool,
    timing: float,
) -> float:
    score = 0.0
    if value > 10_000_000:
        score += 0.3
    elif value > 1_000_000:
        score += 0.25
    elif value > 100_000:
        score += 0.2
    elif value > 10_000:
        score += 0.15
    else:
        score += 0.1

    score += position_score(title, relationship) * 0.25

    if transaction_type == "buy":
        score += 0.2
    elif transaction_type == "sell":
        score += 0.1

    if percent_owned is not None:
        if percent_owned > 10:
            score += 0.15
        elif percent_owned > 5:
            score += 0.12
        elif percent_owned > 1:
            score += 0.08
        else:
            score += 0.05

    if is_direct:
        score += 0.05

    score += timing * 0.05
    return clamp(score, 0.0, 1.0)


def insider_confidence(
    *, source: str, has_price: bool, has_title: bool, is_direct: bool, significance: float
) -> float:
    confidence = 0.3 + _SOURCE_RELIABILITY.get(source, 0.0)
    if has_price:
        confidence += 0.1
    if has_title:
        confidence += 0.1
    if is_direct:
        confidence += 0.1
    confidence += significance * 0.15
    return clamp(confidence, 0.0, 1.0)


class InsiderAdapter:
    kind = INSIDER

    def __init__(self, feed: FeedClient, source: str = "sec") -> None:
        self._feed = feed
        self._source = source

    async def fetch(self, symbol: str | None, options: dict[str, Any]) -> list[InsiderTrade]:
        records = await self._feed.fetch(symbol, options)
        trades: dict[tuple, InsiderTrade] = {}
        for rec in records:
            trade = self._to_trade(rec, symbol)
            if trade is None:
                continue
            key = (trade.symbol, trade.insider_name, trade.transaction_date, trade.value, trade.transaction_type)
            trades.setdefault(key, trade)
        return list(trades.values())

    def _to_trade(self, rec: dict[str, Any], symbol: str | None) -> InsiderTrade | None:
        sym = str(rec.get("symbol") or rec.get("ticker") or symbol or "").upper()
        if not sym:
            return None

        tx_type = normalize_transaction_type(rec.get("transaction_type") or rec.get("transaction_code"))
        quantity = abs(_float(rec.get("shares") or rec.get("quantity")) or 0.0)
        price = _float(rec.get("price"))
        value = _float(rec.get("value"))
        if value is None:
            value = quantity * (price or 0.0)
        value = abs(value)

        title = rec.get("insider_title") or rec.get("title") or ""
        relationship = rec.get("relationship") or ""
        ownership = rec.get("ownership") or rec.get("is_direct")
        is_direct = ownership in (True, "D", "d", "direct", "Direct") or ownership is None
        percent_owned = _float(rec.get("percent_owned"))

        tx_date = to_datetime(rec.get("transaction_date")) if rec.get("transaction_date") else None
        filing_date = to_datetime(rec.get("filing_date")) if rec.get("filing_date") else None
        reference = tx_date or filing_date
        days_ago = (utc_now() - reference).total_seconds() / 86400 if reference else None
        timing = recency_score(days_ago)

        significance = insider_significance(
            value=value,
            title=title,
            relationship=relationship,
            transaction_type=tx_type,
            percent_owned=percent_owned,
            is_direct=is_direct,
            timing=timing,
        )
        source = rec.get("source") or self._source
        filing_delay = None
        if tx_date and filing_date:
            filing_delay = max(0.0, (filing_date - tx_date).total_seconds() / 86400)

        return InsiderTrade(
            timestamp=reference or utc_now(),
            source=source,
            confidence=insider_confidence(
                source=source,
                has_price=price is not None,
                has_title=bool(title),
                is_direct=is_direct,
                significance=significance,
            ),
            metadata={"timing_score": timing, "filing_delay_days": filing_delay},
            symbol=sym,
            insider_name=rec.get("insider_name") or rec.get("name") or "unknown",
            insider_title=title,
            relationship=relationship,
            transaction_type=tx_type,
            quantity=quantity,
            price=price,
            value=value,
            significance=significance,
            filing_date=filing_date,
            transaction_date=tx_date,
            is_direct=is_direct,
            percent_owned=percent_owned,
            volume_ratio=_float(rec.get("volume_ratio")),
        )

    def summarize(self, items: Sequence[InsiderTrade]) -> BatchSummary:
        return summarize(
            items,
            sentiment=side_weighted_trend(items),
            volume=categorize_volume(len(items), high=20, medium=10),
            significance=sum(t.significance for t in items) / len(items) if items else 0.0,
        )
