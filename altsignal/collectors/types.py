"""Data model shared by every collector: points, batches, config, metrics."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

SentimentLabel = Literal["positive", "negative", "neutral"]
TrendLabel = Literal["bullish", "bearish", "neutral"]
VolumeBucket = Literal["high", "medium", "low"]
TransactionType = Literal["buy", "sell", "hold"]

# Collector kinds understood by fusion
SOCIAL = "social"
INSIDER = "insider"
LEGISLATOR = "legislator"
NEWS = "news"


@dataclass(frozen=True)
class Sentiment:
    label: SentimentLabel = "neutral"
    score: float = 0.0  # -1..1
    magnitude: float = 0.0  # 0..1
    keywords: tuple[str, ...] = ()


# ── Data points ───────────────────────────────────────────────────────

@dataclass(frozen=True, kw_only=True)
class DataPoint:
    timestamp: datetime
    source: str
    confidence: float
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def sentiment(self) -> Sentiment | None:
        return None


@dataclass(frozen=True, kw_only=True)
class SocialPost(DataPoint):
    post_id: str
    platform: str
    author: str
    text: str
    post_sentiment: Sentiment
    symbols: tuple[str, ...] = ()
    engagement: int = 0
    reach: int = 0

    @property
    def sentiment(self) -> Sentiment:
        return self.post_sentiment


@dataclass(frozen=True, kw_only=True)
class InsiderTrade(DataPoint):
    symbol: str
    insider_name: str
    insider_title: str
    relationship: str
    transaction_type: TransactionType
    quantity: float
    price: float | None
    value: float
    significance: float
    filing_date: datetime | None = None
    transaction_date: datetime | None = None
    is_direct: bool = True
    percent_owned: float | None = None
    volume_ratio: float | None = None


@dataclass(frozen=True, kw_only=True)
class LegislatorTrade(DataPoint):
    symbol: str
    representative: str
    chamber: Literal["House", "Senate"]
    party: Literal["Republican", "Democrat", "Independent"]
    transaction_type: TransactionType
    value: float
    significance: float
    timing_score: float
    conflict_score: float
    filing_date: datetime | None = None
    transaction_date: datetime | None = None


@dataclass(frozen=True, kw_only=True)
class NewsItem(DataPoint):
    title: str
    summary: str
    url: str
    outlet: str
    news_sentiment: Sentiment
    symbols: tuple[str, ...] = ()
    category: str = "general"
    market_impact: float = 0.0
    urgency: float = 0.0
    credibility: float = 0.5

    @property
    def sentiment(self) -> Sentiment:
        return self.news_sentiment


# ── Batches ───────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Trends:
    sentiment: TrendLabel = "neutral"
    volume: VolumeBucket = "low"
    significance: float = 0.0


@dataclass(frozen=True)
class BatchSummary:
    total_items: int
    avg_confidence: float
    time_range: tuple[datetime, datetime] | None
    trends: Trends


@dataclass(frozen=True)
class CollectedBatch:
    collector_type: str
    kind: str
    timestamp: datetime
    items: tuple[DataPoint, ...]
    summary: BatchSummary
    symbol: str | None = None

    @property
    def is_empty(self) -> bool:
        return not self.items


# ── Config / metrics ──────────────────────────────────────────────────

@dataclass
class CollectorConfig:
    enabled: bool = True
    update_interval: float = 30 * 60  # seconds
    timeout: float = 30.0  # seconds
    inter_symbol_delay: float = 1.0  # seconds
