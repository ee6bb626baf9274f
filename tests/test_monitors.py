from __future__ import annotations

from typing import Any

import pytest

from altsignal.alerts.monitors import MARKET, RegistryMonitoringFeeds, StaticMonitoringFeeds
from altsignal.collectors.base import DataCollector
from altsignal.collectors.feeds import StaticFeed
from altsignal.collectors.insider import InsiderAdapter
from altsignal.collectors.news import NewsAdapter
from altsignal.collectors.registry import CollectorRegistry
from altsignal.marketdata import snapshot_from_bars
from altsignal.utils import utc_now


class FakeMarket:
    def __init__(self, moves: dict[str, float]) -> None:
        self.moves = moves
        self.calls = 0

    async def snapshot(self, symbol: str) -> dict[str, Any] | None:
        self.calls += 1
        if symbol not in self.moves:
            return None
        return {"symbol": symbol, "price_change_percent": self.moves[symbol], "volume_ratio": 3.0, "window_minutes": 5}


@pytest.mark.asyncio
async def test_static_feeds_push_and_clear() -> None:
    feeds = StaticMonitoringFeeds()
    feeds.push("volume_anomaly", {"symbol": "AAPL"})
    assert await feeds.events("volume_anomaly") == [{"symbol": "AAPL"}]
    feeds.clear("volume_anomaly")
    assert await feeds.events("volume_anomaly") == []


@pytest.mark.asyncio
async def test_insider_and_news_events_come_from_latest_batches() -> None:
    stamp = utc_now().isoformat()
    registry = CollectorRegistry([
        DataCollector("insider", InsiderAdapter(StaticFeed("insider", [{
            "symbol": "AAPL", "insider_name": "Jane Cooper", "insider_title": "CEO",
            "transaction_type": "buy", "value": 2_500_000, "volume_ratio": 3.1, "transaction_date": stamp,
        }]))),
        DataCollector("news", NewsAdapter(StaticFeed("news", [{
            "title": "Breaking: FDA approval for MRNA vaccine", "source": "Reuters",
            "published": stamp, "symbols": ["MRNA"],
        }]))),
    ])
    await registry.collect_all(None)
    feeds = RegistryMonitoringFeeds(registry)

    [insider] = await feeds.events("insider_trading_spike")
    assert insider["symbol"] == "AAPL"
    assert insider["value"] == 2_500_000
    assert insider["volume_ratio"] == 3.1

    [news] = await feeds.events("breaking_news")
    assert news["symbol"] == "MRNA"
    assert news["credibility"] == pytest.approx(0.95)
    assert "FDA" in news["text"]


@pytest.mark.asyncio
async def test_market_events_keep_only_drawdowns_and_cache_snapshots() -> None:
    market = FakeMarket({"SPY": -3.5, "AAPL": 11.0})
    feeds = RegistryMonitoringFeeds(CollectorRegistry(), market=market, watchlist=["aapl", "ZZZZ"])

    [crash] = await feeds.events("market_crash_signal")
    assert crash["symbol"] == MARKET
    assert crash["index"] == "SPY"

    [price] = await feeds.events("price_anomaly")
    assert price["symbol"] == "AAPL"
    calls = market.calls
    await feeds.events("volume_anomaly")
    assert market.calls == calls

    market.moves["SPY"] = 1.2
    feeds._snapshot_cache.clear()
    assert await feeds.events("market_crash_signal") == []
    assert await feeds.events("unusual_options_activity") == []


def test_daily_snapshot_from_bars() -> None:
    bars = [{"date": f"2026-01-{d:02d}", "close": 100.0, "volume": 1_000.0} for d in range(1, 21)]
    bars.append({"date": "2026-01-21", "close": 112.0, "volume": 4_000.0})
    snap = snapshot_from_bars("AAPL", bars)
    assert snap["price_change_percent"] == pytest.approx(12.0)
    assert snap["volume_ratio"] == pytest.approx(4.0)
    assert snap["interval"] == "1d"
    assert "window_minutes" not in snap
    assert snapshot_from_bars("AAPL", bars[:1]) is None
