"""Signal fusion: turn one cycle of collector batches into an AggregatedSignal.

Only successful, non-empty batches count as reporting sources.  Every
per-source signal and the combined signal live in [-1, 1]; the combined
signal is a weighted mean renormalized over the reporting kinds, so a
missing source never dilutes the others.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import Any, Iterable, Literal, Sequence

from altsignal.collectors.scoring import mentions_per_hour, side_sign
from altsignal.collectors.types import (
    INSIDER,
    LEGISLATOR,
    NEWS,
    SOCIAL,
    CollectedBatch,
    InsiderTrade,
    LegislatorTrade,
    NewsItem,
    SocialPost,
)
from altsignal.utils import clamp, utc_now

RiskLevel = Literal["low", "medium", "high"]

SOURCE_WEIGHTS: dict[str, float] = {
    INSIDER: 0.3,
    LEGISLATOR: 0.2,
    SOCIAL: 0.25,
    NEWS: 0.25,
}

_KEYWORD_CAP = 20
_INSIDER_WINDOW = timedelta(days=30)
_LEGISLATOR_WINDOW = timedelta(days=60)
_NEWS_WINDOW = timedelta(hours=24)


# ── Output model ──────────────────────────────────────────────────────

@dataclass(frozen=True)
class OverallSentiment:
    label: str = "neutral"
    score: float = 0.0
    magnitude: float = 0.0
    confidence: float = 0.0
    keywords: tuple[str, ...] = ()


@dataclass(frozen=True)
class SocialMetrics:
    mentions: int = 0
    engagement: int = 0
    velocity: float = 0.0
    reach: int = 0
    trending: bool = False


@dataclass(frozen=True)
class TradingSignals:
    insider: float = 0.0
    legislator: float = 0.0
    social: float = 0.0
    news: float = 0.0
    combined: float = 0.0


@dataclass(frozen=True)
class QuickAlert:
    """Cheap always-on check raised during fusion, not a durable rule alert."""

    type: str
    severity: Literal["info", "warning", "critical"]
    message: str
    data: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class AggregatedSignal:
    symbol: str | None
    timestamp: datetime
    sources: tuple[str, ...]
    overall_sentiment: OverallSentiment
    social_metrics: SocialMetrics
    trading_signals: TradingSignals
    confidence: float
    risk_level: RiskLevel
    alerts: tuple[QuickAlert, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        out = asdict(self)
        out["timestamp"] = self.timestamp.isoformat()
        out["sources"] = list(self.sources)
        out["alerts"] = [asdict(a) for a in self.alerts]
        out["overall_sentiment"]["keywords"] = list(self.overall_sentiment.keywords)
        return out


# ── Per-step helpers ──────────────────────────────────────────────────

def _items(batches: Iterable[CollectedBatch], kind: str) -> list:
    return [item for b in batches if b.kind == kind for item in b.items]


def overall_sentiment(batches: Sequence[CollectedBatch]) -> OverallSentiment:
    reporting = [b for b in batches if not b.is_empty]
    if not reporting:
        return OverallSentiment()

    total_score = total_magnitude = total_weight = 0.0
    keywords: dict[str, None] = {}
    for batch in reporting:
        for item in batch.items:
            sentiment = item.sentiment
            if sentiment is None:
                continue
            weight = item.confidence or 0.5
            total_score += sentiment.score * weight
            total_magnitude += sentiment.magnitude * weight
            total_weight += weight
            for kw in sentiment.keywords:
                keywords.setdefault(kw, None)

    score = total_score / total_weight if total_weight else 0.0
    magnitude = total_magnitude / total_weight if total_weight else 0.0
    label = "neutral"
    if score > 0.1:
        label = "positive"
    elif score < -0.1:
        label = "negative"
    return OverallSentiment(
        label=label,
        score=clamp(score, -1.0, 1.0),
        magnitude=clamp(magnitude, 0.0, 1.0),
        confidence=clamp(total_weight / len(reporting), 0.0, 1.0),
        keywords=tuple(list(keywords)[:_KEYWORD_CAP]),
    )


def social_metrics(batches: Sequence[CollectedBatch]) -> SocialMetrics:
    posts: list[SocialPost] = _items(batches, SOCIAL)
    if not posts:
        return SocialMetrics()
    engagement = sum(p.engagement for p in posts)
    velocity = mentions_per_hour(posts)
    return SocialMetrics(
        mentions=len(posts),
        engagement=engagement,
        velocity=velocity,
        reach=sum(p.reach for p in posts),
        trending=velocity > 20 or engagement > 10_000,
    )


def insider_signal(trades: Sequence[InsiderTrade], now: datetime) -> float:
    recent = [t for t in trades if now - t.timestamp < _INSIDER_WINDOW]
    if not recent:
        return 0.0
    total = sum(side_sign(t.transaction_type) * t.significance for t in recent)
    return clamp(total / len(recent), -1.0, 1.0)


def legislator_signal(trades: Sequence[LegislatorTrade], now: datetime) -> float:
    recent = [t for t in trades if now - t.timestamp < _LEGISLATOR_WINDOW]
    if not recent:
        return 0.0
    total = sum(
        side_sign(t.transaction_type) * (t.timing_score + t.conflict_score) / 2
        for t in recent
    )
    return clamp(total / len(recent), -1.0, 1.0)


def social_signal(posts: Sequence[SocialPost]) -> float:
    weight = sum(p.confidence for p in posts)
    if weight <= 0:
        return 0.0
    return clamp(sum(p.post_sentiment.score * p.confidence for p in posts) / weight, -1.0, 1.0)


def news_signal(items: Sequence[NewsItem], now: datetime) -> float:
    recent = [n for n in items if now - n.timestamp < _NEWS_WINDOW]
    weight = sum(n.market_impact * n.credibility for n in recent)
    if weight <= 0:
        return 0.0
    total = sum(n.news_sentiment.score * n.market_impact * n.credibility for n in recent)
    return clamp(total / weight, -1.0, 1.0)


def combine(signals: dict[str, float], reporting: Iterable[str]) -> float:
    """Weighted mean over the reporting kinds only."""
    weighted = total = 0.0
    for kind in set(reporting):
        weight = SOURCE_WEIGHTS.get(kind)
        if weight is None:
            continue
        weighted += signals.get(kind, 0.0) * weight
        total += weight
    return clamp(weighted / total, -1.0, 1.0) if total else 0.0


def trading_signals(batches: Sequence[CollectedBatch], now: datetime | None = None) -> TradingSignals:
    now = now or utc_now()
    per_kind = {
        INSIDER: insider_signal(_items(batches, INSIDER), now),
        LEGISLATOR: legislator_signal(_items(batches, LEGISLATOR), now),
        SOCIAL: social_signal(_items(batches, SOCIAL)),
        NEWS: news_signal(_items(batches, NEWS), now),
    }
    reporting = {b.kind for b in batches if not b.is_empty}
    return TradingSignals(
        insider=per_kind[INSIDER],
        legislator=per_kind[LEGISLATOR],
        social=per_kind[SOCIAL],
        news=per_kind[NEWS],
        combined=combine(per_kind, reporting),
    )


def batch_confidence(batches: Sequence[CollectedBatch]) -> float:
    reporting = [b.summary.avg_confidence for b in batches if not b.is_empty]
    if not reporting:
        return 0.0
    return clamp(sum(reporting) / len(reporting), 0.0, 1.0)


def risk_level(combined: float, confidence: float) -> RiskLevel:
    risk_score = abs(combined) * (1 - confidence)
    if risk_score > 0.7:
        return "high"
    if risk_score > 0.3:
        return "medium"
    return "low"


def quick_alerts(
    symbol: str | None, batches: Sequence[CollectedBatch], signals: TradingSignals
) -> list[QuickAlert]:
    suffix = f" for {symbol}" if symbol else ""
    alerts: list[QuickAlert] = []

    if abs(signals.combined) > 0.7:
        direction = "bullish" if signals.combined > 0 else "bearish"
        alerts.append(QuickAlert(
            type="strong_signal",
            severity="critical",
            message=f"Strong {direction} signal detected{suffix}",
            data={"signal": signals.combined, "sources": sorted({b.kind for b in batches})},
        ))
    if abs(signals.insider) > 0.6:
        alerts.append(QuickAlert(
            type="insider_activity",
            severity="warning",
            message=f"Unusual insider trading activity detected{suffix}",
            data={"signal": signals.insider},
        ))
    if abs(signals.legislator) > 0.5:
        alerts.append(QuickAlert(
            type="legislator_trading",
            severity="warning",
            message=f"Unusual legislator trading detected{suffix}",
            data={"signal": signals.legislator},
        ))
    if any(b.kind == SOCIAL and b.summary.trends.volume == "high" for b in batches):
        alerts.append(QuickAlert(
            type="social_spike",
            severity="info",
            message=f"High social media activity detected{suffix}",
            data={"volume": "high"},
        ))
    urgent = [n for n in _items(batches, NEWS) if n.urgency > 0.8]
    if urgent:
        alerts.append(QuickAlert(
            type="breaking_news",
            severity="critical",
            message=f"Breaking news with high market impact detected{suffix}",
            data={"urgent_news": len(urgent), "headline": urgent[0].title},
        ))
    return alerts


# ── Entry point ───────────────────────────────────────────────────────

def fuse(symbol: str | None, batches: Sequence[CollectedBatch], now: datetime | None = None) -> AggregatedSignal:
    """Fuse the successful batches of one collection cycle."""
    now = now or utc_now()
    signals = trading_signals(batches, now)
    confidence = batch_confidence(batches)
    return AggregatedSignal(
        symbol=symbol,
        timestamp=now,
        sources=tuple(sorted({b.kind for b in batches if not b.is_empty})),
        overall_sentiment=overall_sentiment(batches),
        social_metrics=social_metrics(batches),
        trading_signals=signals,
        confidence=confidence,
        risk_level=risk_level(signals.combined, confidence),
        alerts=tuple(quick_alerts(symbol, batches, signals)),
    )
