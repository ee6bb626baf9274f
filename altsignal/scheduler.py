"""MonitorDriver: the single periodic loop behind alert evaluation and analysis.

Each tick evaluates every rule type (concurrently, inside the engine),
promotes fused quick alerts for the watchlist, then drains the analysis
queue.  A tick is bounded by ``tick_timeout`` and the next one starts only
after it settles.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Sequence

from altsignal.alerts.engine import AlertEngine
from altsignal.alerts.queue import AnalysisQueue
from altsignal.collectors.registry import CollectorRegistry

logger = logging.getLogger(__name__)

_SWEEP_INTERVAL = 3600.0


class MonitorDriver:
    def __init__(
        self,
        engine: AlertEngine,
        queue: AnalysisQueue,
        *,
        registry: CollectorRegistry | None = None,
        symbols: Sequence[str] = (),
        interval: float = 300.0,
        tick_timeout: float = 120.0,
    ) -> None:
        self.engine = engine
        self.queue = queue
        self.registry = registry
        self.symbols = [s.upper() for s in symbols]
        self.interval = interval
        self.tick_timeout = tick_timeout
        self._stop = asyncio.Event()
        self._last_sweep = 0.0
        self._running = False
        self.ticks = 0
        self.failed_ticks = 0
        self.last_tick: dict[str, Any] | None = None

    @property
    def running(self) -> bool:
        return self._running

    async def _tick_body(self) -> dict[str, Any]:
        triggered = await self.engine.tick()

        promoted = []
        if self.registry is not None:
            for symbol in self.symbols:
                signal = self.registry.fuse_latest(symbol)
                promoted.extend(await self.engine.evaluate_signal(signal))

        started = await self.queue.drain()

        swept = 0
        if time.monotonic() - self._last_sweep >= _SWEEP_INTERVAL:
            swept = await self.engine.sweep_retention()
            self._last_sweep = time.monotonic()

        return {
            "triggered": len(triggered),
            "promoted": len(promoted),
            "analysis_started": len(started),
            "swept": swept,
        }

    async def tick(self) -> dict[str, Any]:
        """Run one bounded tick; failures are logged, never raised."""
        self.ticks += 1
        t0 = time.monotonic()
        try:
            summary = await asyncio.wait_for(self._tick_body(), timeout=self.tick_timeout)
        except asyncio.TimeoutError:
            self.failed_ticks += 1
            logger.error("[driver] tick %d exceeded %.0fs", self.ticks, self.tick_timeout)
            summary = {"error": "timeout"}
        except Exception as exc:
            self.failed_ticks += 1
            logger.exception("[driver] tick %d failed", self.ticks)
            summary = {"error": str(exc)}
        summary["tick"] = self.ticks
        summary["duration_ms"] = round((time.monotonic() - t0) * 1000, 1)
        self.last_tick = summary
        logger.info("[driver] tick %d: %s", self.ticks, summary)
        return summary

    async def run(self) -> None:
        """Tick every ``interval`` seconds until :meth:`stop` is called."""
        self._stop.clear()
        self._running = True
        logger.info("[driver] monitoring every %.0fs (timeout %.0fs)", self.interval, self.tick_timeout)
        try:
            while not self._stop.is_set():
                await self.tick()
                try:
                    await asyncio.wait_for(self._stop.wait(), timeout=self.interval)
                except asyncio.TimeoutError:
                    pass
        finally:
            self._running = False

    async def stop(self, wait_for_analysis: bool = True, timeout: float | None = None) -> None:
        """Stop issuing ticks; in-flight analysis jobs are allowed to finish."""
        self._stop.set()
        if wait_for_analysis:
            await self.queue.wait_idle(timeout=timeout)
        logger.info("[driver] stopped after %d ticks (%d failed)", self.ticks, self.failed_ticks)

    def get_status(self) -> dict[str, Any]:
        return {
            "running": self.running,
            "interval_seconds": self.interval,
            "ticks": self.ticks,
            "failed_ticks": self.failed_ticks,
            "last_tick": self.last_tick,
            "queue": self.queue.get_stats(),
        }
