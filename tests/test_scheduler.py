from __future__ import annotations

import asyncio

import pytest

from altsignal.alerts.analysis import MockAnalysisEngine
from altsignal.alerts.engine import AlertEngine
from altsignal.alerts.monitors import StaticMonitoringFeeds
from altsignal.alerts.queue import AnalysisQueue
from altsignal.collectors.base import DataCollector
from altsignal.collectors.feeds import StaticFeed
from altsignal.collectors.insider import InsiderAdapter
from altsignal.collectors.registry import CollectorRegistry
from altsignal.scheduler import MonitorDriver
from altsignal.utils import utc_now


class ExplodingEngine:
    ticks = 0

    async def tick(self):
        raise RuntimeError("feed exploded")


class SlowEngine:
    async def tick(self):
        await asyncio.sleep(5)
        return []


def _driver(feeds: StaticMonitoringFeeds, **kwargs) -> tuple[MonitorDriver, AlertEngine, AnalysisQueue]:
    queue = AnalysisQueue(MockAnalysisEngine(seed=3, delay=0), max_concurrent=2)
    engine = AlertEngine(feeds, queue=queue)
    return MonitorDriver(engine, queue, **kwargs), engine, queue


@pytest.mark.asyncio
async def test_tick_evaluates_drains_and_reports() -> None:
    feeds = StaticMonitoringFeeds({"volume_anomaly": [
        {"symbol": "AAPL", "volume_ratio": 8.0, "window_minutes": 5},
        {"symbol": "TSLA", "volume_ratio": 6.0, "window_minutes": 10},
        {"symbol": "AMD", "volume_ratio": 9.0, "window_minutes": 15},
    ]})
    driver, engine, queue = _driver(feeds)
    await engine.load()

    summary = await driver.tick()
    assert summary["triggered"] == 3
    assert summary["analysis_started"] == 2
    assert queue.pending == 1
    assert driver.last_tick is summary
    assert summary["duration_ms"] >= 0

    await queue.wait_idle(timeout=5)
    second = await driver.tick()
    assert second["triggered"] == 0
    assert second["analysis_started"] == 1


@pytest.mark.asyncio
async def test_tick_promotes_fused_signals_for_watchlist() -> None:
    stamp = utc_now().isoformat()
    records = [
        {"symbol": "AAPL", "insider_name": f"Exec {i}", "insider_title": "Chief Executive Officer",
         "transaction_type": "buy", "value": 20_000_000, "percent_owned": 12, "transaction_date": stamp}
        for i in range(3)
    ]
    registry = CollectorRegistry([DataCollector("insider", InsiderAdapter(StaticFeed("insider", records)))])
    await registry.collect_all("AAPL")

    driver, engine, _ = _driver(StaticMonitoringFeeds(), registry=registry, symbols=["aapl"])
    await engine.load()
    summary = await driver.tick()
    assert summary["promoted"] == 1
    [alert] = engine.active_alerts.values()
    assert alert.type == "insider_trading_spike"
    assert alert.symbol == "AAPL"


@pytest.mark.asyncio
async def test_failing_tick_is_logged_not_raised() -> None:
    queue = AnalysisQueue(MockAnalysisEngine(delay=0))
    driver = MonitorDriver(ExplodingEngine(), queue)
    summary = await driver.tick()
    assert summary["error"] == "feed exploded"
    assert driver.failed_ticks == 1


@pytest.mark.asyncio
async def test_tick_timeout() -> None:
    queue = AnalysisQueue(MockAnalysisEngine(delay=0))
    driver = MonitorDriver(SlowEngine(), queue, tick_timeout=0.05)
    summary = await driver.tick()
    assert summary["error"] == "timeout"


@pytest.mark.asyncio
async def test_run_until_stopped() -> None:
    driver, engine, _ = _driver(StaticMonitoringFeeds(), interval=0.01)
    await engine.load()
    assert driver.running is False
    task = asyncio.create_task(driver.run())
    await asyncio.sleep(0.05)
    assert driver.running is True
    await driver.stop(timeout=1)
    await asyncio.wait_for(task, timeout=1)
    assert driver.running is False
    assert driver.ticks >= 1
    assert driver.get_status()["ticks"] == driver.ticks
