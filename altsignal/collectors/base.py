"""Collector contract and the runtime every concrete feed is composed into.

A concrete data source only implements :class:`FeedAdapter` (fetch raw records
and score them into data points).  :class:`DataCollector` wraps an adapter and
owns everything the contract requires on top of that: timeouts, typed errors,
rolling health metrics, the latest-batch cache and the auto-collection loop.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from dataclasses import fields
from datetime import timedelta
from typing import Any, Protocol, Sequence, runtime_checkable

from altsignal.collectors.types import (
    BatchSummary,
    CollectedBatch,
    CollectorConfig,
    DataPoint,
)
from altsignal.errors import CollectorDisabled, CollectorError, CollectorTimeout
from altsignal.utils import utc_now

logger = logging.getLogger(__name__)

_MAX_ERRORS = 100
_ERROR_WINDOW = timedelta(hours=24)
_EMA_ALPHA = 0.1
_MAX_RESPONSE_MS = 30_000


@runtime_checkable
class FeedAdapter(Protocol):
    """Source-specific half of a collector."""

    kind: str

    async def fetch(self, symbol: str | None, options: dict[str, Any]) -> list[DataPoint]:
        """Return scored data points; an empty list is a valid answer."""

    def summarize(self, items: Sequence[DataPoint]) -> BatchSummary:
        """Build the batch summary (trend sentiment, volume bucket, significance)."""


@runtime_checkable
class Collector(Protocol):
    """Capability interface the registry depends on."""

    name: str
    kind: str
    config: CollectorConfig

    async def collect(self, symbol: str | None = None, options: dict[str, Any] | None = None) -> CollectedBatch: ...

    async def is_healthy(self) -> bool: ...

    def get_metrics(self) -> dict[str, Any]: ...

    def get_status(self) -> dict[str, Any]: ...

    def update_config(self, **changes: Any) -> None: ...

    def start_auto_collection(self, symbols: Sequence[str] | None = None) -> None: ...

    async def stop_auto_collection(self) -> None: ...

    def latest_batches(self) -> list[CollectedBatch]: ...


class DataCollector:
    """Runs a :class:`FeedAdapter` under the collector contract."""

    def __init__(self, name: str, adapter: FeedAdapter, config: CollectorConfig | None = None) -> None:
        self.name = name
        self.kind = adapter.kind
        self.config = config or CollectorConfig()
        self._adapter = adapter

        self._total_collections = 0
        self._avg_response_ms = 0.0
        self._last_update = None
        self._errors: deque[dict[str, Any]] = deque(maxlen=_MAX_ERRORS)
        self._latest: dict[str | None, CollectedBatch] = {}
        self._task: asyncio.Task | None = None

    # ── contract ───────────────────────────────────────────────────────

    async def collect(self, symbol: str | None = None, options: dict[str, Any] | None = None) -> CollectedBatch:
        if not self.config.enabled:
            raise CollectorDisabled(self.name, "collector is disabled")

        options = options or {}
        started = time.monotonic()
        self._total_collections += 1

        try:
            items = await asyncio.wait_for(
                self._adapter.fetch(symbol, options),
                timeout=self.config.timeout,
            )
        except asyncio.TimeoutError as exc:
            err = CollectorTimeout(self.name, f"timed out after {self.config.timeout:.1f}s")
            self._record_error(err, symbol, options)
            raise err from exc
        except CollectorError as exc:
            self._record_error(exc, symbol, options)
            raise
        except Exception as exc:
            err = CollectorError(self.name, f"{type(exc).__name__}: {exc}")
            self._record_error(err, symbol, options)
            raise err from exc

        elapsed_ms = (time.monotonic() - started) * 1000
        self._update_response_time(elapsed_ms)
        self._last_update = utc_now()

        ordered = tuple(sorted(items, key=lambda p: p.timestamp, reverse=True))
        batch = CollectedBatch(
            collector_type=self.name,
            kind=self.kind,
            timestamp=self._last_update,
            items=ordered,
            summary=self._adapter.summarize(ordered),
            symbol=symbol,
        )
        if not options.get("health_check"):
            self._latest[symbol] = batch

        logger.info(
            "[%s] collected %d items for %s in %.0fms (avg confidence %.2f)",
            self.name, len(ordered), symbol or "market", elapsed_ms, batch.summary.avg_confidence,
        )
        return batch

    async def is_healthy(self) -> bool:
        if not self.config.enabled:
            return False
        try:
            await self.collect(None, {"health_check": True})
            return True
        except CollectorError as exc:
            logger.warning("[%s] health check failed: %s", self.name, exc)
            return False

    def get_metrics(self) -> dict[str, Any]:
        return {
            "total_collections": self._total_collections,
            "success_rate": self._success_rate(),
            "avg_response_time_ms": round(self._avg_response_ms, 1),
            "last_update": self._last_update,
            "recent_errors": list(self._errors),
        }

    def get_status(self) -> dict[str, Any]:
        rate = self._success_rate()
        if not self.config.enabled:
            status = "inactive"
        elif rate > 0.8:
            status = "active"
        else:
            status = "error"
        next_update = None
        if self._last_update is not None:
            next_update = self._last_update + timedelta(seconds=self.config.update_interval)
        return {
            "name": self.name,
            "kind": self.kind,
            "status": status,
            "last_update": self._last_update,
            "next_update": next_update,
            "health_score": rate,
            "error_count": len(self._errors),
            "current_load": min(self._avg_response_ms / _MAX_RESPONSE_MS, 1.0),
            "auto_collecting": self.is_auto_collecting,
        }

    def update_config(self, **changes: Any) -> None:
        known = {f.name for f in fields(CollectorConfig)}
        unknown = set(changes) - known
        if unknown:
            raise ValueError(f"unknown collector config keys: {', '.join(sorted(unknown))}")
        for key, value in changes.items():
            setattr(self.config, key, value)
        logger.info("[%s] configuration updated: %s", self.name, changes)

    def latest_batches(self) -> list[CollectedBatch]:
        return list(self._latest.values())

    # ── auto collection ────────────────────────────────────────────────

    @property
    def is_auto_collecting(self) -> bool:
        return self._task is not None and not self._task.done()

    def start_auto_collection(self, symbols: Sequence[str] | None = None) -> None:
        if self.is_auto_collecting:
            return
        targets = list(symbols or [])
        self._task = asyncio.create_task(self._auto_loop(targets), name=f"collector-{self.name}")
        logger.info(
            "[%s] auto-collection started (interval=%ds, symbols=%s)",
            self.name, self.config.update_interval, targets or "market",
        )

    async def stop_auto_collection(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("[%s] auto-collection stopped", self.name)

    async def run_pass(self, symbols: Sequence[str]) -> int:
        """Collect once for every symbol (or the market), returning successes."""
        ok = 0
        if not symbols:
            try:
                await self.collect()
                ok += 1
            except CollectorError:
                logger.warning("[%s] market pass failed", self.name)
            return ok

        for i, symbol in enumerate(symbols):
            if i:
                await asyncio.sleep(self.config.inter_symbol_delay)
            try:
                await self.collect(symbol)
                ok += 1
            except CollectorError:
                logger.warning("[%s] pass failed for %s", self.name, symbol)
        return ok

    async def _auto_loop(self, symbols: list[str]) -> None:
        while True:
            await self.run_pass(symbols)
            await asyncio.sleep(self.config.update_interval)

    # ── metrics internals ─────────────────────────────────────────────

    def _record_error(self, error: Exception, symbol: str | None, options: dict[str, Any]) -> None:
        self._errors.append({
            "timestamp": utc_now(),
            "error": str(error),
            "context": {"symbol": symbol, "options": options},
        })
        logger.error(
            "[%s] collection error: %s (success rate %.2f)",
            self.name, error, self._success_rate(),
        )

    def _success_rate(self) -> float:
        recent_total = min(self._total_collections, _MAX_ERRORS)
        if recent_total == 0:
            return 1.0
        cutoff = utc_now() - _ERROR_WINDOW
        recent_errors = sum(1 for e in self._errors if e["timestamp"] >= cutoff)
        return max(0.0, (recent_total - recent_errors) / recent_total)

    def _update_response_time(self, elapsed_ms: float) -> None:
        if self._avg_response_ms == 0:
            self._avg_response_ms = elapsed_ms
        else:
            self._avg_response_ms = _EMA_ALPHA * elapsed_ms + (1 - _EMA_ALPHA) * self._avg_response_ms
