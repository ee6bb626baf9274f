"""Priority queue that feeds alerts to the analysis engine under a concurrency cap.

Jobs are ordered by :func:`analysis_priority` (highest first, FIFO among
equals).  ``drain()`` starts jobs while fewer than ``max_concurrent`` are in
flight; nothing is ever dropped, only delayed to a later drain.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from altsignal.alerts.analysis import AnalysisEngine
from altsignal.alerts.models import SEVERITY_WEIGHTS, Alert, AnalysisState
from altsignal.alerts.notifications import NotificationDispatcher
from altsignal.errors import AnalysisDispatchError, PersistenceError
from altsignal.events import EventBus

if TYPE_CHECKING:
    from altsignal.db.store import AlertStore

logger = logging.getLogger(__name__)

DEFAULT_MODULES = ["technical", "risk", "fusion"]
_PRIORITY_TYPES = {"insider_trading_spike", "breaking_news"}
_TYPE_BONUS = 25
_SIGNIFICANT_CONFIDENCE = 0.8


def analysis_priority(alert: Alert) -> float:
    priority = float(SEVERITY_WEIGHTS.get(alert.severity, 0))
    priority += alert.confidence * 20
    if alert.type in _PRIORITY_TYPES:
        priority += _TYPE_BONUS
    return priority


def is_significant(result: dict[str, Any]) -> bool:
    """True when the engine produced at least one high-confidence trade card."""
    if not result.get("success"):
        return False
    cards = ((result.get("results") or {}).get("fusion") or {}).get("tradeCards") or []
    return any(
        float((card.get("header") or {}).get("confidence") or 0) > _SIGNIFICANT_CONFIDENCE
        for card in cards
        if isinstance(card, dict)
    )


@dataclass
class AnalysisJob:
    alert: Alert
    priority: float
    modules: list[str] = field(default_factory=lambda: list(DEFAULT_MODULES))


class AnalysisQueue:
    def __init__(
        self,
        engine: AnalysisEngine,
        *,
        max_concurrent: int = 2,
        store: AlertStore | None = None,
        bus: EventBus | None = None,
        dispatcher: NotificationDispatcher | None = None,
    ) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self._engine = engine
        self.max_concurrent = max_concurrent
        self._store = store
        self._bus = bus
        self._dispatcher = dispatcher
        self._heap: list[tuple[float, int, AnalysisJob]] = []
        self._seq = itertools.count()
        self._queued: set[str] = set()
        self._in_flight: set[str] = set()
        self._tasks: set[asyncio.Task] = set()
        self.completed = 0
        self.failed = 0

    # ── queueing ───────────────────────────────────────────────────────

    @property
    def pending(self) -> int:
        return len(self._heap)

    @property
    def in_flight(self) -> frozenset[str]:
        return frozenset(self._in_flight)

    def enqueue(self, alert: Alert, modules: list[str] | None = None) -> AnalysisJob | None:
        """Queue *alert* for analysis; returns None if it is already queued or running."""
        if alert.id in self._queued or alert.id in self._in_flight:
            return None
        job = AnalysisJob(alert=alert, priority=analysis_priority(alert), modules=list(modules or DEFAULT_MODULES))
        alert.analysis_triggered = True
        alert.analysis_session_id = f"alert_{alert.id}"
        alert.analysis_state = AnalysisState.QUEUED
        heapq.heappush(self._heap, (-job.priority, next(self._seq), job))
        self._queued.add(alert.id)
        logger.info(
            "[queue] queued %s priority=%.1f pending=%d", alert.id, job.priority, len(self._heap),
        )
        return job

    async def drain(self) -> list[AnalysisJob]:
        """Start the highest-priority jobs while slots are free."""
        started: list[AnalysisJob] = []
        while self._heap and len(self._in_flight) < self.max_concurrent:
            _, _, job = heapq.heappop(self._heap)
            self._queued.discard(job.alert.id)
            self._in_flight.add(job.alert.id)
            job.alert.analysis_state = AnalysisState.RUNNING
            # No await between popping the job and creating its task.
            task = asyncio.create_task(self._run(job), name=f"analysis-{job.alert.id}")
            self._tasks.add(task)
            task.add_done_callback(self._tasks.discard)
            started.append(job)
        return started

    async def wait_idle(self, timeout: float | None = None) -> None:
        """Wait for every in-flight job to settle."""
        if not self._tasks:
            return
        await asyncio.wait(set(self._tasks), timeout=timeout)

    # ── execution ──────────────────────────────────────────────────────

    def _request(self, job: AnalysisJob) -> dict[str, Any]:
        alert = job.alert
        return {
            "session_id": alert.analysis_session_id,
            "symbol": alert.symbol,
            "requested_modules": job.modules,
            "priority": "urgent" if alert.severity == "critical" else "high",
            "allow_fallbacks": True,
            "require_validation": True,
            "inputs": {
                "alert_type": alert.type,
                "severity": alert.severity,
                "title": alert.title,
                "description": alert.description,
                "trigger_data": alert.trigger_data,
                "confidence": alert.confidence,
            },
        }

    async def _run(self, job: AnalysisJob) -> None:
        alert = job.alert
        try:
            await self._persist(alert)
            result = await self._engine.orchestrate(self._request(job))
            if not isinstance(result, dict):
                raise AnalysisDispatchError(f"engine returned {type(result).__name__}")
            alert.analysis_results = result
            if result.get("success"):
                alert.analysis_state = AnalysisState.COMPLETED
                alert.analysis_completed = True
                self.completed += 1
            else:
                alert.analysis_state = AnalysisState.FAILED
                self.failed += 1
            logger.info(
                "[queue] analysis %s for %s: %s",
                alert.analysis_session_id, alert.symbol, alert.analysis_state.value,
            )
        except Exception as exc:
            alert.analysis_state = AnalysisState.FAILED
            alert.analysis_results = {"success": False, "error": str(exc), "session_id": alert.analysis_session_id}
            self.failed += 1
            logger.error("[queue] analysis %s failed: %s", alert.analysis_session_id, exc)
        finally:
            self._in_flight.discard(alert.id)

        await self._persist(alert)
        if self._bus is not None:
            self._bus.publish("analysis_result", {
                "alert_id": alert.id,
                "symbol": alert.symbol,
                "state": alert.analysis_state.value,
            })
        if self._dispatcher is not None and alert.analysis_results and is_significant(alert.analysis_results):
            try:
                await self._dispatcher.notify_analysis(alert, alert.analysis_results)
            except Exception:
                logger.warning("[queue] analysis notification failed for %s", alert.id, exc_info=True)

    async def _persist(self, alert: Alert) -> None:
        if self._store is None:
            return
        try:
            await self._store.save_alert(alert)
        except PersistenceError as exc:
            logger.error("[queue] could not persist %s: %s", alert.id, exc)

    def get_stats(self) -> dict[str, Any]:
        return {
            "pending": len(self._heap),
            "in_flight": len(self._in_flight),
            "max_concurrent": self.max_concurrent,
            "completed": self.completed,
            "failed": self.failed,
        }
