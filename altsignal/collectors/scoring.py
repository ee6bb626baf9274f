"""Shared scoring helpers used by every concrete collector.

These are plain functions rather than base-class methods so each collector
composes exactly the helpers it needs.
"""

from __future__ import annotations

import math
import re
from typing import Iterable, Sequence

from altsignal.collectors.types import (
    BatchSummary,
    DataPoint,
    Sentiment,
    TrendLabel,
    Trends,
    VolumeBucket,
)
from altsignal.utils import clamp

_POSITIVE_WORDS = (
    "bullish", "buy", "strong", "growth", "up", "gain", "profit", "good",
    "great", "excellent", "beat", "upgrade", "record", "surge", "rally",
)
_NEGATIVE_WORDS = (
    "bearish", "sell", "weak", "decline", "down", "loss", "bad", "terrible",
    "crash", "drop", "miss", "downgrade", "lawsuit", "bankruptcy", "plunge",
)
_FINANCIAL_TERMS = (
    "earnings", "revenue", "profit", "loss", "dividend", "split", "merger",
    "acquisition", "ipo", "buyback", "guidance", "forecast", "upgrade",
    "downgrade", "rating", "bullish", "bearish", "volatility", "volume",
    "liquidity",
)
_TICKER_STOPWORDS = frozenset({
    "THE", "AND", "FOR", "ARE", "BUT", "NOT", "YOU", "ALL", "CAN", "HER",
    "WAS", "ONE", "OUR", "OUT", "DAY", "GET", "HAS", "HIM", "HOW", "ITS",
    "MAY", "NEW", "NOW", "OLD", "SEE", "TWO", "WHO", "BOY", "DID", "LET",
    "PUT", "SAY", "SHE", "TOO", "USE", "CEO", "CFO", "IPO", "SEC", "USA",
    "ETF", "GDP", "CPI", "FED", "YOLO", "IMO", "DD",
})
_TICKER_RE = re.compile(r"\$?\b([A-Z]{1,5})\b")
_WORD_RE = re.compile(r"[a-z]+")

_SIGNIFICANCE_WEIGHTS = {
    "volume": 0.2,
    "value": 0.3,
    "timing": 0.2,
    "source": 0.15,
    "engagement": 0.15,
}


# ── Text ──────────────────────────────────────────────────────────────

def keyword_sentiment(text: str) -> Sentiment:
    """Word-list sentiment used when no model-backed scorer is plugged in."""
    words = set(_WORD_RE.findall(text.lower()))
    positive = sum(1 for w in _POSITIVE_WORDS if w in words)
    negative = sum(1 for w in _NEGATIVE_WORDS if w in words)
    hits = positive + negative

    score = (positive - negative) / hits if hits else 0.0
    magnitude = hits / 20

    label = "neutral"
    if score > 0.1:
        label = "positive"
    elif score < -0.1:
        label = "negative"

    return Sentiment(
        label=label,
        score=clamp(score, -1.0, 1.0),
        magnitude=clamp(magnitude, 0.0, 1.0),
        keywords=tuple(extract_financial_keywords(text)),
    )


def extract_financial_keywords(text: str) -> list[str]:
    lowered = text.lower()
    return [term for term in _FINANCIAL_TERMS if term in lowered]


def extract_symbols(text: str) -> list[str]:
    """Pull ticker-looking tokens out of free text, dropping common words."""
    seen: dict[str, None] = {}
    for match in _TICKER_RE.finditer(text):
        token = match.group(1).upper()
        if len(token) < 2 or token in _TICKER_STOPWORDS:
            continue
        seen.setdefault(token, None)
    return list(seen)


# ── Scores ────────────────────────────────────────────────────────────

def weighted_significance(**factors: float | None) -> float:
    """Weighted mean over whichever of volume/value/timing/source/engagement are given."""
    score = 0.0
    total = 0.0
    for key, value in factors.items():
        weight = _SIGNIFICANCE_WEIGHTS.get(key)
        if value is None or weight is None:
            continue
        score += value * weight
        total += weight
    return score / total if total > 0 else 0.0


def log_scale(value: float, ceiling: float) -> float:
    """Map a non-negative count onto 0..1 on a log10 scale capped at ``ceiling``."""
    if value <= 0:
        return 0.0
    return clamp(math.log10(value + 1) / math.log10(ceiling + 1), 0.0, 1.0)


def categorize_volume(count: int, high: int = 20, medium: int = 10) -> VolumeBucket:
    if count > high:
        return "high"
    if count > medium:
        return "medium"
    return "low"


def trend_from_scores(scores: Sequence[float], threshold: float = 0.1) -> TrendLabel:
    if not scores:
        return "neutral"
    avg = sum(scores) / len(scores)
    if avg > threshold:
        return "bullish"
    if avg < -threshold:
        return "bearish"
    return "neutral"


def side_sign(transaction_type: str) -> int:
    if transaction_type == "buy":
        return 1
    if transaction_type == "sell":
        return -1
    return 0


def side_weighted_trend(trades: Sequence, threshold: float = 0.2) -> TrendLabel:
    """Bullish/bearish from buy-minus-sell weighted by each trade's significance."""
    if not trades:
        return "neutral"
    avg = sum(side_sign(t.transaction_type) * t.significance for t in trades) / len(trades)
    if avg > threshold:
        return "bullish"
    if avg < -threshold:
        return "bearish"
    return "neutral"


def normalize_transaction_type(raw: str | None) -> str:
    value = (raw or "").strip().lower()
    if value in {"p", "buy", "purchase", "a", "acquire", "acquisition"} or value.startswith("purchase"):
        return "buy"
    if value in {"s", "sell", "sale", "d", "dispose", "disposition"} or value.startswith(("sale", "sell")):
        return "sell"
    return "hold"


def mentions_per_hour(points: Sequence[DataPoint]) -> float:
    """Mentions per hour across the points' time span, with a one-hour floor."""
    if not points:
        return 0.0
    stamps = [p.timestamp for p in points]
    hours = max((max(stamps) - min(stamps)).total_seconds() / 3600, 1.0)
    return len(points) / hours


# ── Batch summary ─────────────────────────────────────────────────────

def summarize(
    items: Iterable[DataPoint],
    *,
    sentiment: TrendLabel,
    volume: VolumeBucket,
    significance: float,
) -> BatchSummary:
    points = list(items)
    if not points:
        return BatchSummary(total_items=0, avg_confidence=0.0, time_range=None, trends=Trends())
    stamps = [p.timestamp for p in points]
    return BatchSummary(
        total_items=len(points),
        avg_confidence=sum(p.confidence for p in points) / len(points),
        time_range=(min(stamps), max(stamps)),
        trends=Trends(sentiment=sentiment, volume=volume, significance=clamp(significance, 0.0, 1.0)),
    )
