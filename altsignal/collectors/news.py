"""News adapter: headline scoring for market impact, urgency and credibility."""

from __future__ import annotations

import logging
import re
from typing import Any, Callable, Sequence

from altsignal.collectors.feeds import FeedClient
from altsignal.collectors.scoring import (
    categorize_volume,
    extract_financial_keywords,
    extract_symbols,
    keyword_sentiment,
    summarize,
)
from altsignal.collectors.types import NEWS, BatchSummary, NewsItem, Sentiment, TrendLabel
from altsignal.utils import clamp, to_datetime, utc_now

logger = logging.getLogger(__name__)

# Event category -> (keywords, impact contribution)
MARKET_EVENTS: dict[str, tuple[tuple[str, ...], float]] = {
    "earnings": (("earnings", "quarterly", "revenue", "profit", "eps", "guidance"), 0.3),
    "mergers": (("merger", "acquisition", "buyout", "takeover", "deal"), 0.4),
    "regulatory": (("fda", "sec", "ftc", "approval", "investigation", "lawsuit", "compliance"), 0.35),
    "leadership": (("ceo", "cfo", "president", "chairman", "executive", "resignation", "appointment"), 0.25),
    "financial": (("debt", "loan", "credit", "bankruptcy", "dividend", "split", "buyback"), 0.3),
    "product": (("launch", "recall", "patent", "innovation", "breakthrough", "failure"), 0.2),
    "market": (("upgrade", "downgrade", "target", "rating", "analyst", "outlook"), 0.25),
}

OUTLET_CREDIBILITY: dict[str, float] = {
    "reuters": 0.95,
    "bloomberg": 0.93,
    "wall street journal": 0.92,
    "financial times": 0.91,
    "cnbc": 0.85,
    "marketwatch": 0.82,
    "yahoo finance": 0.75,
    "seeking alpha": 0.70,
    "business wire": 0.65,
    "pr newswire": 0.60,
}

_BREAKING_KEYWORDS = ("breaking", "urgent", "alert", "developing", "just in")
_WORD_RE = re.compile(r"[a-z0-9]+")
_TITLE_KEY_RE = re.compile(r"[^a-z0-9]")


def outlet_credibility(outlet: str) -> float:
    lowered = outlet.lower()
    for name, score in OUTLET_CREDIBILITY.items():
        if name in lowered:
            return score
    return 0.5


def matched_events(content: str) -> list[str]:
    words = set(_WORD_RE.findall(content.lower()))
    return [event for event, (keywords, _) in MARKET_EVENTS.items() if words.intersection(keywords)]


def market_impact(content: str, sentiment: Sentiment, credibility: float, has_symbols: bool) -> float:
    impact = 0.3
    for event in matched_events(content):
        impact += MARKET_EVENTS[event][1]
    impact += abs(sentiment.score) * 0.2
    impact += credibility * 0.1
    if has_symbols:
        impact += 0.1
    return clamp(impact, 0.0, 1.0)


def urgency_score(hours_ago: float, impact: float, content: str) -> float:
    urgency = 0.2
    if hours_ago <= 1:
        urgency += 0.4
    elif hours_ago <= 6:
        urgency += 0.3
    elif hours_ago <= 24:
        urgency += 0.2
    elif hours_ago <= 72:
        urgency += 0.1
    urgency += impact * 0.3
    lowered = content.lower()
    if any(k in lowered for k in _BREAKING_KEYWORDS):
        urgency += 0.2
    return clamp(urgency, 0.0, 1.0)


def recency_score(hours_ago: float) -> float:
    if hours_ago <= 1:
        return 1.0
    if hours_ago <= 6:
        return 0.8
    if hours_ago <= 24:
        return 0.6
    if hours_ago <= 72:
        return 0.4
    if hours_ago <= 168:
        return 0.2
    return 0.1


def content_quality(content: str) -> float:
    quality = 0.3
    words = len(content.split())
    if words > 200:
        quality += 0.3
    elif words > 100:
        quality += 0.2
    elif words > 50:
        quality += 0.1
    quality += min(len(extract_financial_keywords(content)) / 10, 0.3)
    if '"' in content or "“" in content:
        quality += 0.1
    return clamp(quality, 0.0, 1.0)


def news_confidence(
    *, credibility: float, impact: float, has_symbols: bool, recency: float, quality: float
) -> float:
    confidence = 0.2
    confidence += credibility * 0.3
    confidence += impact * 0.2
    if has_symbols:
        confidence += 0.1
    confidence += recency * 0.2
    confidence += quality * 0.2
    return clamp(confidence, 0.0, 1.0)


class NewsAdapter:
    kind = NEWS

    def __init__(self, feed: FeedClient, scorer: Callable[[str], Sentiment] = keyword_sentiment) -> None:
        self._feed = feed
        self._scorer = scorer

    async def fetch(self, symbol: str | None, options: dict[str, Any]) -> list[NewsItem]:
        records = await self._feed.fetch(symbol, options)
        items: dict[str, NewsItem] = {}
        for rec in records:
            item = self._to_item(rec, symbol)
            if item is None:
                continue
            key = _TITLE_KEY_RE.sub("", item.title.lower())[:50]
            items.setdefault(key, item)
        return sorted(
            items.values(),
            key=lambda n: (n.market_impact + n.urgency + n.confidence) / 3,
            reverse=True,
        )

    def _to_item(self, rec: dict[str, Any], symbol: str | None) -> NewsItem | None:
        title = (rec.get("title") or rec.get("headline") or "").strip()
        if not title:
            return None
        summary = (rec.get("summary") or rec.get("description") or "").strip()
        content = f"{title} {summary}"
        outlet = rec.get("source") or rec.get("outlet") or "unknown"

        published = to_datetime(rec.get("published") or rec.get("published_at") or rec.get("datetime"))
        hours_ago = max(0.0, (utc_now() - published).total_seconds() / 3600)

        symbols = [str(s).upper() for s in rec.get("symbols") or [] if s]
        for extracted in extract_symbols(title):
            if extracted not in symbols:
                symbols.append(extracted)
        if symbol and symbol.upper() not in symbols:
            symbols.insert(0, symbol.upper())

        sentiment = self._scorer(content)
        credibility = outlet_credibility(outlet)
        impact = market_impact(content, sentiment, credibility, bool(symbols))
        events = matched_events(content)

        return NewsItem(
            timestamp=published,
            source="news",
            confidence=news_confidence(
                credibility=credibility,
                impact=impact,
                has_symbols=bool(symbols),
                recency=recency_score(hours_ago),
                quality=content_quality(content),
            ),
            metadata={"events": events, "tags": rec.get("tags") or [], "hours_ago": round(hours_ago, 2)},
            title=title,
            summary=summary,
            url=rec.get("url") or rec.get("link") or "",
            outlet=outlet,
            news_sentiment=sentiment,
            symbols=tuple(symbols),
            category=events[0] if events else "general",
            market_impact=impact,
            urgency=urgency_score(hours_ago, impact, content),
            credibility=credibility,
        )

    def summarize(self, items: Sequence[NewsItem]) -> BatchSummary:
        return summarize(
            items,
            sentiment=_weighted_news_trend(items),
            volume=categorize_volume(len(items), high=50, medium=20),
            significance=sum(n.market_impact for n in items) / len(items) if items else 0.0,
        )


def _weighted_news_trend(items: Sequence[NewsItem]) -> TrendLabel:
    total = sum(n.market_impact * n.credibility for n in items)
    if total <= 0:
        return "neutral"
    avg = sum(n.news_sentiment.score * n.market_impact * n.credibility for n in items) / total
    if avg > 0.1:
        return "bullish"
    if avg < -0.1:
        return "bearish"
    return "neutral"
