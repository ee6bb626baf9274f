"""Composition root: builds every component from settings and wires them together."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from altsignal.alerts.analysis import (
    AnalysisEngine,
    HeuristicImpactAssessor,
    ImpactAssessor,
    LLMAnalysisEngine,
    LLMImpactAssessor,
    MockAnalysisEngine,
)
from altsignal.alerts.engine import AlertEngine
from altsignal.alerts.monitors import RegistryMonitoringFeeds
from altsignal.alerts.notifications import NotificationDispatcher
from altsignal.alerts.queue import AnalysisQueue
from altsignal.collectors.registry import CollectorRegistry, build_collectors
from altsignal.config import Settings
from altsignal.db.database import Database
from altsignal.db.store import AlertStore
from altsignal.events import EventBus, RedisEventSink
from altsignal.marketdata import MarketDataFeed, MockMarketData, StooqMarketData
from altsignal.scheduler import MonitorDriver

logger = logging.getLogger(__name__)


@dataclass
class Pipeline:
    settings: Settings
    bus: EventBus
    registry: CollectorRegistry
    store: AlertStore | None
    dispatcher: NotificationDispatcher
    queue: AnalysisQueue
    engine: AlertEngine
    driver: MonitorDriver
    mock: bool = False
    _tasks: list[asyncio.Task] = field(default_factory=list)

    async def start(self, *, collect: bool = True) -> None:
        """Load rules, start auto-collection and the event forwarder."""
        await self.engine.load()
        if collect:
            self.registry.start_collection(self.settings.watchlist)
        self._tasks.append(asyncio.create_task(self.bus.forward(), name="event-forwarder"))

    async def close(self) -> None:
        await self.driver.stop(timeout=self.settings.tick_timeout_seconds)
        await self.registry.stop_collection()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks.clear()
        await self.bus.close()
        if self.store is not None:
            await self.store.close()
        logger.info("[pipeline] closed")


def _analysis(settings: Settings, mock: bool) -> tuple[AnalysisEngine, ImpactAssessor]:
    if mock or not settings.analysis_api_key:
        if not mock:
            logger.warning("[pipeline] no analysis API key, using mock analysis engine")
        return MockAnalysisEngine(), HeuristicImpactAssessor()
    from altsignal.llm_client import get_analysis_client

    client = get_analysis_client()
    return LLMAnalysisEngine(client), LLMImpactAssessor(client)


def build_pipeline(settings: Settings, *, mock: bool = False, persist: bool = True) -> Pipeline:
    """Wire collectors, fusion, rule engine, queue and driver from *settings*."""
    sink = None
    if settings.redis_url and not mock:
        sink = RedisEventSink(settings.redis_url, settings.redis_event_key, settings.redis_event_maxlen)
    bus = EventBus(maxsize=settings.event_bus_size, sink=sink)

    collectors, dormant = build_collectors(settings, mock=mock)
    registry = CollectorRegistry(collectors, bus=bus)
    registry.dormant = dormant

    market: MarketDataFeed = MockMarketData() if mock else StooqMarketData()
    feeds = RegistryMonitoringFeeds(registry, market=market, watchlist=settings.watchlist)

    store = AlertStore(Database(settings.async_database_url, echo=settings.log_level == "DEBUG")) if persist else None
    dispatcher = NotificationDispatcher.from_settings(settings)
    analysis_engine, assessor = _analysis(settings, mock)

    queue = AnalysisQueue(
        analysis_engine,
        max_concurrent=settings.max_concurrent_analysis,
        store=store,
        bus=bus,
        dispatcher=dispatcher,
    )
    engine = AlertEngine(
        feeds,
        store=store,
        dispatcher=dispatcher,
        queue=queue,
        bus=bus,
        impact_assessor=assessor,
        retention_days=settings.alert_retention_days,
        breaking_news_enabled=settings.breaking_news_enabled,
    )
    driver = MonitorDriver(
        engine,
        queue,
        registry=registry,
        symbols=settings.watchlist,
        interval=settings.monitoring_interval_seconds,
        tick_timeout=settings.tick_timeout_seconds,
    )
    return Pipeline(
        settings=settings,
        bus=bus,
        registry=registry,
        store=store,
        dispatcher=dispatcher,
        queue=queue,
        engine=engine,
        driver=driver,
        mock=mock,
    )
