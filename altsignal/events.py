"""In-process event bus plus an optional redis fan-out sink.

The bus is a bounded ``asyncio.Queue`` with drop-oldest overflow: publishers
never block, and a slow subscriber loses the oldest events first.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

import redis.asyncio as aioredis

from altsignal.utils import utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Event:
    kind: str  # "signal", "alert", "alert_update", "analysis_result"
    payload: dict[str, Any]
    timestamp: datetime = field(default_factory=utc_now)

    def to_json(self) -> str:
        return json.dumps(
            {"kind": self.kind, "timestamp": self.timestamp.isoformat(), "payload": self.payload},
            default=str,
        )


class RedisEventSink:
    """Pushes events onto a capped redis list for external subscribers."""

    def __init__(self, redis_url: str, key: str = "altsignal:events", maxlen: int = 1000) -> None:
        self._redis = aioredis.from_url(redis_url, decode_responses=True)
        self._key = key
        self._maxlen = maxlen

    async def write(self, event: Event) -> None:
        pipe = self._redis.pipeline()
        pipe.lpush(self._key, event.to_json())
        pipe.ltrim(self._key, 0, self._maxlen - 1)
        await pipe.execute()

    async def close(self) -> None:
        await self._redis.aclose()


class EventBus:
    def __init__(self, maxsize: int = 500, sink: RedisEventSink | None = None) -> None:
        self._queue: asyncio.Queue[Event] = asyncio.Queue(maxsize=maxsize)
        self._sink = sink
        self.dropped = 0
        self.published = 0

    def publish(self, kind: str, payload: dict[str, Any]) -> Event:
        event = Event(kind=kind, payload=payload)
        while True:
            try:
                self._queue.put_nowait(event)
                break
            except asyncio.QueueFull:
                self._queue.get_nowait()
                self.dropped += 1
        self.published += 1
        return event

    async def get(self) -> Event:
        return await self._queue.get()

    def drain(self) -> list[Event]:
        """Return and remove every queued event without waiting."""
        out: list[Event] = []
        while not self._queue.empty():
            out.append(self._queue.get_nowait())
        return out

    def qsize(self) -> int:
        return self._queue.qsize()

    async def forward(self) -> None:
        """Relay events to the redis sink until cancelled."""
        if self._sink is None:
            return
        while True:
            event = await self._queue.get()
            try:
                await self._sink.write(event)
            except Exception:
                logger.warning("[events] redis sink write failed for %s", event.kind, exc_info=True)

    async def close(self) -> None:
        if self._sink is not None:
            await self._sink.close()

    def get_stats(self) -> dict[str, Any]:
        return {
            "queued": self._queue.qsize(),
            "published": self.published,
            "dropped": self.dropped,
            "redis_sink": self._sink is not None,
        }
