"""CollectorRegistry: owns the collector set and fuses one cycle into a signal."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterable, Sequence

from altsignal.collectors.base import Collector, DataCollector
from altsignal.collectors.feeds import HttpJsonFeed, RssFeed
from altsignal.collectors.insider import InsiderAdapter
from altsignal.collectors.legislator import LegislatorAdapter
from altsignal.collectors.mock import (
    MockInsiderFeed,
    MockLegislatorFeed,
    MockNewsFeed,
    MockRedditFeed,
    MockTwitterFeed,
)
from altsignal.collectors.news import NewsAdapter
from altsignal.collectors.social import RedditAdapter, TwitterAdapter
from altsignal.collectors.types import CollectedBatch, CollectorConfig
from altsignal.config import Settings
from altsignal.events import EventBus
from altsignal.fusion import AggregatedSignal, fuse

logger = logging.getLogger(__name__)

_HEALTHY_RATIO = 0.7


class CollectorRegistry:
    """Runs every enabled collector concurrently and fuses the survivors.

    A failing collector is logged, recorded in its own metrics and left out
    of the cycle; it never aborts the others.
    """

    def __init__(self, collectors: Iterable[Collector] = (), bus: EventBus | None = None) -> None:
        self._collectors: dict[str, Collector] = {}
        self._bus = bus
        self._signals: dict[str | None, AggregatedSignal] = {}
        self.dormant: list[str] = []
        for collector in collectors:
            self.add_collector(collector)

    # ── membership ─────────────────────────────────────────────────────

    @property
    def names(self) -> list[str]:
        return list(self._collectors)

    def get(self, name: str) -> Collector | None:
        return self._collectors.get(name)

    def add_collector(self, collector: Collector) -> None:
        if collector.name in self._collectors:
            raise ValueError(f"collector {collector.name!r} is already registered")
        self._collectors[collector.name] = collector
        logger.info("[registry] added collector %s (%s)", collector.name, collector.kind)

    async def remove_collector(self, name: str) -> bool:
        collector = self._collectors.pop(name, None)
        if collector is None:
            return False
        await collector.stop_auto_collection()
        logger.info("[registry] removed collector %s", name)
        return True

    # ── collection ─────────────────────────────────────────────────────

    async def collect_all(self, symbol: str | None = None) -> AggregatedSignal:
        active = [c for c in self._collectors.values() if c.config.enabled]
        results = await asyncio.gather(
            *(c.collect(symbol) for c in active),
            return_exceptions=True,
        )

        batches: list[CollectedBatch] = []
        for collector, result in zip(active, results):
            if isinstance(result, BaseException):
                logger.warning("[registry] %s excluded from cycle: %s", collector.name, result)
                continue
            batches.append(result)

        signal = fuse(symbol, batches)
        self._signals[symbol] = signal
        logger.info(
            "[registry] %s: %d/%d collectors ok, sources=%s combined=%.3f confidence=%.2f risk=%s",
            symbol or "market", len(batches), len(active), list(signal.sources),
            signal.trading_signals.combined, signal.confidence, signal.risk_level,
        )
        if self._bus is not None:
            self._bus.publish("signal", signal.to_dict())
        return signal

    def fuse_latest(self, symbol: str) -> AggregatedSignal:
        """Fuse the cached batches for *symbol* without collecting again."""
        batches = [b for b in self.latest_batches() if b.symbol == symbol]
        signal = fuse(symbol, batches)
        self._signals[symbol] = signal
        return signal

    def latest_signal(self, symbol: str | None) -> AggregatedSignal | None:
        return self._signals.get(symbol)

    def latest_batches(self, kind: str | None = None) -> list[CollectedBatch]:
        """Last successful batch per collector and symbol, optionally by kind."""
        out: list[CollectedBatch] = []
        for collector in self._collectors.values():
            if kind is not None and collector.kind != kind:
                continue
            out.extend(collector.latest_batches())
        return out

    def start_collection(self, symbols: Sequence[str] | None = None) -> None:
        for collector in self._collectors.values():
            if collector.config.enabled:
                collector.start_auto_collection(symbols)
        logger.info("[registry] auto-collection started for %d collectors", len(self._collectors))

    async def stop_collection(self) -> None:
        await asyncio.gather(
            *(c.stop_auto_collection() for c in self._collectors.values()),
            return_exceptions=True,
        )
        logger.info("[registry] auto-collection stopped")

    # ── status ─────────────────────────────────────────────────────────

    def get_status(self) -> dict[str, Any]:
        statuses = [c.get_status() for c in self._collectors.values()]
        return {
            "active": [s["name"] for s in statuses if s["status"] == "active"],
            "dormant": list(self.dormant),
            "collectors": statuses,
        }

    async def health_check(self) -> dict[str, Any]:
        names = list(self._collectors)
        results = await asyncio.gather(
            *(self._collectors[n].is_healthy() for n in names),
            return_exceptions=True,
        )
        health = {n: r is True for n, r in zip(names, results)}
        ratio = sum(health.values()) / len(health) if health else 0.0
        return {
            "healthy": bool(health) and ratio >= _HEALTHY_RATIO,
            "healthy_ratio": ratio,
            "collectors": health,
        }


# ── construction ──────────────────────────────────────────────────────

def build_collectors(settings: Settings, mock: bool = False) -> tuple[list[DataCollector], list[str]]:
    """Build the default collector set, returning (active, dormant names).

    In mock mode every collector uses its Mock* feed.  In real mode a
    collector is only activated when its endpoint is configured.
    """

    def cfg(interval: int) -> CollectorConfig:
        return CollectorConfig(
            update_interval=interval,
            timeout=settings.collector_timeout_seconds,
            inter_symbol_delay=settings.inter_symbol_delay_seconds,
        )

    if mock:
        return [
            DataCollector("reddit", RedditAdapter(MockRedditFeed("reddit")), cfg(settings.reddit_interval_seconds)),
            DataCollector("twitter", TwitterAdapter(MockTwitterFeed("twitter")), cfg(settings.twitter_interval_seconds)),
            DataCollector("insider", InsiderAdapter(MockInsiderFeed("insider")), cfg(settings.insider_interval_seconds)),
            DataCollector("legislator", LegislatorAdapter(MockLegislatorFeed("legislator")), cfg(settings.legislator_interval_seconds)),
            DataCollector("news", NewsAdapter(MockNewsFeed("news")), cfg(settings.news_interval_seconds)),
        ], []

    collectors: list[DataCollector] = []
    dormant: list[str] = []
    auth = {"Authorization": f"Bearer {settings.feed_api_key}"} if settings.feed_api_key else {}

    if settings.reddit_feed_url and settings.reddit_subreddits:
        urls = [settings.reddit_feed_url.replace("{subreddit}", sub) for sub in settings.reddit_subreddits]
        market = [u.split("/search.json")[0] + "/new.json" for u in urls if "/search.json" in u]
        feed = HttpJsonFeed("reddit", urls, market_urls=market, items_path="data.children", unwrap="data")
        collectors.append(DataCollector("reddit", RedditAdapter(feed), cfg(settings.reddit_interval_seconds)))
    else:
        dormant.append("reddit")

    if settings.twitter_feed_url and settings.twitter_bearer_token:
        feed = HttpJsonFeed(
            "twitter",
            [settings.twitter_feed_url],
            items_path="data",
            headers={"Authorization": f"Bearer {settings.twitter_bearer_token}"},
        )
        collectors.append(DataCollector("twitter", TwitterAdapter(feed), cfg(settings.twitter_interval_seconds)))
    else:
        dormant.append("twitter")

    if settings.insider_feed_url:
        feed = HttpJsonFeed("insider", [settings.insider_feed_url], market_urls=[settings.insider_feed_url], headers=auth)
        collectors.append(DataCollector("insider", InsiderAdapter(feed), cfg(settings.insider_interval_seconds)))
    else:
        dormant.append("insider")

    if settings.legislator_feed_url:
        feed = HttpJsonFeed("legislator", [settings.legislator_feed_url], market_urls=[settings.legislator_feed_url], headers=auth)
        collectors.append(DataCollector("legislator", LegislatorAdapter(feed), cfg(settings.legislator_interval_seconds)))
    else:
        dormant.append("legislator")

    if settings.news_rss_urls:
        feed = RssFeed("news", settings.news_rss_urls)
        collectors.append(DataCollector("news", NewsAdapter(feed), cfg(settings.news_interval_seconds)))
    else:
        dormant.append("news")

    logger.info(
        "Real mode: %d active collectors, %d dormant (%s)",
        len(collectors), len(dormant), ", ".join(dormant) or "none",
    )
    return collectors, dormant
