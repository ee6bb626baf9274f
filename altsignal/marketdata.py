"""Market snapshots (price change, volume ratio) for the price/volume monitors.

Daily bars come from stooq's public CSV endpoint; the snapshot compares the
latest bar with the previous close and the trailing average volume.
"""

from __future__ import annotations

import csv
import logging
import random
from datetime import datetime, timezone
from io import StringIO
from typing import Any, Protocol

import httpx

from altsignal.utils import utc_now

logger = logging.getLogger(__name__)

_STOOQ_HISTORY_URL = "https://stooq.com/q/d/l/"
_VOLUME_LOOKBACK = 20
_DAY_MINUTES = 24 * 60


class MarketDataFeed(Protocol):
    async def snapshot(self, symbol: str) -> dict[str, Any] | None: ...


def _safe_float(value: Any) -> float | None:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def snapshot_from_bars(symbol: str, bars: list[dict[str, Any]]) -> dict[str, Any] | None:
    """Build a snapshot from oldest-first daily bars.

    Daily bars carry no intraday window, so ``timeWindow`` conditions do not
    constrain these snapshots.
    """
    if len(bars) < 2:
        return None
    last, prev = bars[-1], bars[-2]
    if not last.get("close") or not prev.get("close"):
        return None
    history = [b["volume"] for b in bars[-_VOLUME_LOOKBACK - 1:-1] if b.get("volume")]
    avg_volume = sum(history) / len(history) if history else 0.0
    return {
        "symbol": symbol,
        "price": last["close"],
        "price_change_percent": (last["close"] - prev["close"]) / prev["close"] * 100,
        "volume": last.get("volume") or 0.0,
        "volume_ratio": (last.get("volume") or 0.0) / avg_volume if avg_volume else 0.0,
        "interval": "1d",
        "as_of": last["date"],
    }


class StooqMarketData:
    def __init__(self, timeout: float = 15.0) -> None:
        self._timeout = timeout

    @staticmethod
    def _to_stooq_symbol(symbol: str) -> str | None:
        s = (symbol or "").strip().lower()
        if not s or s.startswith("^") or s.endswith("-usd") or s.endswith("=f"):
            return None
        return f"{s}.us"

    async def snapshot(self, symbol: str) -> dict[str, Any] | None:
        stooq_symbol = self._to_stooq_symbol(symbol)
        if not stooq_symbol:
            return None
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.get(_STOOQ_HISTORY_URL, params={"s": stooq_symbol, "i": "d"})
                resp.raise_for_status()
                body = resp.text.strip()
        except httpx.HTTPError:
            logger.warning("[marketdata] stooq history failed for %s", symbol, exc_info=True)
            return None

        # Stooq history uses semicolon or comma delimiters depending on endpoint.
        delimiter = ";" if ";" in body.splitlines()[0] else ","
        bars: list[dict[str, Any]] = []
        for row in csv.DictReader(StringIO(body), delimiter=delimiter):
            close = _safe_float(row.get("Close"))
            if close is None or not row.get("Date"):
                continue
            try:
                dt = datetime.strptime(row["Date"], "%Y-%m-%d").replace(tzinfo=timezone.utc)
            except ValueError:
                continue
            bars.append({"date": dt.isoformat(), "close": close, "volume": _safe_float(row.get("Volume"))})
        return snapshot_from_bars(symbol, bars[-(_VOLUME_LOOKBACK + 2):])


class MockMarketData:
    """Random-walk snapshots; occasionally produces an anomaly."""

    def __init__(self, seed: int | None = None) -> None:
        self._rng = random.Random(seed)

    async def snapshot(self, symbol: str) -> dict[str, Any] | None:
        spike = self._rng.random() < 0.1
        change = self._rng.gauss(0, 1.5) * (6 if spike else 1)
        return {
            "symbol": symbol,
            "price": round(self._rng.uniform(20, 900), 2),
            "price_change_percent": round(change, 2),
            "volume": self._rng.randint(100_000, 50_000_000),
            "volume_ratio": round(self._rng.uniform(3, 12) if spike else self._rng.uniform(0.5, 1.8), 2),
            "window_minutes": self._rng.choice([5, 15, 30, _DAY_MINUTES]),
            "as_of": utc_now().isoformat(),
        }
