"""Live monitoring feeds: the event source each alert type is evaluated against.

:class:`RegistryMonitoringFeeds` derives events from the collectors' latest
batches plus market snapshots; :class:`StaticMonitoringFeeds` serves fixed
events for replays and tests.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Protocol, Sequence

from altsignal.collectors.feeds import FeedClient
from altsignal.collectors.registry import CollectorRegistry
from altsignal.collectors.scoring import mentions_per_hour
from altsignal.collectors.types import INSIDER, LEGISLATOR, NEWS, SOCIAL
from altsignal.marketdata import MarketDataFeed
from altsignal.utils import utc_now

logger = logging.getLogger(__name__)

MARKET = "MARKET"
DEFAULT_SECTOR_ETFS = ("XLK", "XLF", "XLE", "XLV", "XLI", "XLY", "XLP", "XLU")
_SNAPSHOT_TTL = 30.0
_NEWS_LOOKBACK_HOURS = 24


class MonitoringFeeds(Protocol):
    async def events(self, alert_type: str) -> list[dict[str, Any]]: ...


class StaticMonitoringFeeds:
    def __init__(self, events: dict[str, list[dict[str, Any]]] | None = None) -> None:
        self._events: dict[str, list[dict[str, Any]]] = {k: list(v) for k, v in (events or {}).items()}

    def push(self, alert_type: str, event: dict[str, Any]) -> None:
        self._events.setdefault(alert_type, []).append(event)

    def clear(self, alert_type: str | None = None) -> None:
        if alert_type is None:
            self._events.clear()
        else:
            self._events.pop(alert_type, None)

    async def events(self, alert_type: str) -> list[dict[str, Any]]:
        return list(self._events.get(alert_type, []))


class RegistryMonitoringFeeds:
    """Turns collector output and market snapshots into rule events."""

    def __init__(
        self,
        registry: CollectorRegistry,
        *,
        market: MarketDataFeed | None = None,
        watchlist: Sequence[str] = (),
        options_feed: FeedClient | None = None,
        sector_symbols: Sequence[str] = DEFAULT_SECTOR_ETFS,
        market_symbol: str = "SPY",
    ) -> None:
        self._registry = registry
        self._market = market
        self._watchlist = [s.upper() for s in watchlist]
        self._options_feed = options_feed
        self._sector_symbols = list(sector_symbols)
        self._market_symbol = market_symbol
        self._sentiment_state: dict[str, dict[str, Any]] = {}
        self._snapshot_cache: dict[str, tuple[float, dict[str, Any] | None]] = {}
        self._handlers = {
            "insider_trading_spike": self._insider_events,
            "congressional_trading_unusual": self._legislator_events,
            "sentiment_spike": self._sentiment_events,
            "volume_anomaly": self._watchlist_snapshots,
            "price_anomaly": self._watchlist_snapshots,
            "breaking_news": self._news_events,
            "earnings_surprise": self._earnings_events,
            "analyst_upgrade_downgrade": self._analyst_events,
            "unusual_options_activity": self._options_events,
            "sector_rotation": self._sector_events,
            "market_crash_signal": self._market_events,
        }

    async def events(self, alert_type: str) -> list[dict[str, Any]]:
        handler = self._handlers.get(alert_type)
        if handler is None:
            return []
        return await handler()

    # ── collector-derived ──────────────────────────────────────────────

    async def _insider_events(self) -> list[dict[str, Any]]:
        events = []
        for batch in self._registry.latest_batches(INSIDER):
            for trade in batch.items:
                events.append({
                    "symbol": trade.symbol,
                    "value": trade.value,
                    "volume_ratio": trade.volume_ratio,
                    "insider_name": trade.insider_name,
                    "insider_title": trade.insider_title,
                    "transaction_type": trade.transaction_type,
                    "significance": trade.significance,
                    "transaction_date": trade.transaction_date.isoformat() if trade.transaction_date else None,
                })
        return events

    async def _legislator_events(self) -> list[dict[str, Any]]:
        now = utc_now()
        events = []
        for batch in self._registry.latest_batches(LEGISLATOR):
            for trade in batch.items:
                filed = trade.filing_date or trade.timestamp
                events.append({
                    "symbol": trade.symbol,
                    "value": trade.value,
                    "representative": trade.representative,
                    "chamber": trade.chamber,
                    "transaction_type": trade.transaction_type,
                    "timing_score": trade.timing_score,
                    "conflict_score": trade.conflict_score,
                    "days_since_filing": (now - filed).total_seconds() / 86400,
                })
        return events

    async def _sentiment_events(self) -> list[dict[str, Any]]:
        by_symbol: dict[str, list] = {}
        stamps: dict[str, Any] = {}
        for batch in self._registry.latest_batches(SOCIAL):
            if not batch.symbol or batch.is_empty:
                continue
            by_symbol.setdefault(batch.symbol, []).extend(batch.items)
            stamps[batch.symbol] = max(stamps.get(batch.symbol, batch.timestamp), batch.timestamp)

        events = []
        for symbol, posts in by_symbol.items():
            mentions = len(posts)
            score = sum(p.post_sentiment.score for p in posts) / mentions
            state = self._sentiment_state.get(symbol)
            if state is None or state["ts"] != stamps[symbol]:
                previous = state or {"mentions": mentions, "score": score}
                state = {
                    "ts": stamps[symbol],
                    "mentions": mentions,
                    "score": score,
                    "prev_mentions": previous["mentions"],
                    "prev_score": previous["score"],
                }
                self._sentiment_state[symbol] = state
            events.append({
                "symbol": symbol,
                "mentions": mentions,
                "velocity": mentions_per_hour(posts),
                "mention_spike": mentions / state["prev_mentions"] if state["prev_mentions"] else 1.0,
                "sentiment_score": score,
                "sentiment_change": score - state["prev_score"],
            })
        return events

    def _recent_news(self) -> list:
        now = utc_now()
        return [
            item
            for batch in self._registry.latest_batches(NEWS)
            for item in batch.items
            if (now - item.timestamp).total_seconds() < _NEWS_LOOKBACK_HOURS * 3600
        ]

    async def _news_events(self) -> list[dict[str, Any]]:
        return [
            {
                "symbol": item.symbols[0] if item.symbols else MARKET,
                "symbols": list(item.symbols),
                "title": item.title,
                "text": f"{item.title} {item.summary}",
                "url": item.url,
                "outlet": item.outlet,
                "category": item.category,
                "impact_score": item.market_impact,
                "credibility": item.credibility,
                "urgency": item.urgency,
                "sentiment_score": item.news_sentiment.score,
            }
            for item in self._recent_news()
        ]

    # ── market-derived ────────────────────────────────────────────────

    async def _snapshot(self, symbol: str) -> dict[str, Any] | None:
        cached = self._snapshot_cache.get(symbol)
        if cached and time.monotonic() - cached[0] < _SNAPSHOT_TTL:
            return cached[1]
        snap = await self._market.snapshot(symbol) if self._market else None
        self._snapshot_cache[symbol] = (time.monotonic(), snap)
        return snap

    async def _snapshots(self, symbols: Sequence[str]) -> list[dict[str, Any]]:
        if self._market is None or not symbols:
            return []
        results = await asyncio.gather(*(self._snapshot(s) for s in symbols), return_exceptions=True)
        out = []
        for symbol, result in zip(symbols, results):
            if isinstance(result, BaseException):
                logger.warning("[monitors] snapshot failed for %s: %s", symbol, result)
            elif result:
                out.append(dict(result))
        return out

    async def _watchlist_snapshots(self) -> list[dict[str, Any]]:
        return await self._snapshots(self._watchlist)

    def _news_symbols(self, category: str) -> dict[str, float]:
        """Symbols with recent news in *category*, mapped to best credibility."""
        found: dict[str, float] = {}
        for item in self._recent_news():
            if item.category != category:
                continue
            for sym in item.symbols:
                found[sym] = max(found.get(sym, 0.0), item.credibility)
        return found

    async def _earnings_events(self) -> list[dict[str, Any]]:
        symbols = self._news_symbols("earnings")
        events = await self._snapshots(list(symbols))
        for event in events:
            event["catalyst"] = "earnings"
        return events

    async def _analyst_events(self) -> list[dict[str, Any]]:
        symbols = self._news_symbols("market")
        events = await self._snapshots(list(symbols))
        for event in events:
            event["credibility"] = symbols.get(event["symbol"], 0.0)
            event["catalyst"] = "analyst_action"
        return events

    async def _options_events(self) -> list[dict[str, Any]]:
        if self._options_feed is None:
            return []
        records = await self._options_feed.fetch(None, {})
        return [r for r in records if r.get("symbol")]

    async def _sector_events(self) -> list[dict[str, Any]]:
        return await self._snapshots(self._sector_symbols)

    async def _market_events(self) -> list[dict[str, Any]]:
        events = await self._snapshots([self._market_symbol])
        # Only drawdowns count as crash signals.
        return [
            {**e, "symbol": MARKET, "index": self._market_symbol}
            for e in events
            if e.get("price_change_percent", 0) < 0
        ]
