"""Raw feed clients: the transport edge of every collector.

Each client returns plain dicts; the adapters in ``social``/``insider``/
``legislator``/``news`` turn them into scored data points.  Transport, auth
and rate-limit failures surface as :class:`CollectorError`.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol, Sequence, runtime_checkable

import feedparser
import httpx

from altsignal.errors import CollectorError
from altsignal.utils import retry

logger = logging.getLogger(__name__)

_USER_AGENT = "altsignal/0.3 (+https://github.com/altsignal)"
_REQUEST_TIMEOUT = 15


@runtime_checkable
class FeedClient(Protocol):
    name: str

    async def fetch(self, symbol: str | None, options: dict[str, Any]) -> list[dict[str, Any]]: ...


def _dig(payload: Any, path: str) -> Any:
    """Walk a dotted path through nested dicts; missing keys yield []."""
    node = payload
    for part in filter(None, path.split(".")):
        if not isinstance(node, dict):
            return []
        node = node.get(part, [])
    return node


class HttpJsonFeed:
    """GET one or more JSON endpoints and flatten their record lists.

    ``urls`` are templates formatted with ``symbol``; ``market_urls`` are used
    when no symbol is given.  ``items_path`` points at the record list inside
    the response and ``unwrap`` optionally selects a key inside each record
    (reddit's ``children[].data``).
    """

    def __init__(
        self,
        name: str,
        urls: Sequence[str],
        *,
        market_urls: Sequence[str] | None = None,
        items_path: str = "",
        unwrap: str | None = None,
        headers: dict[str, str] | None = None,
        params: dict[str, str] | None = None,
        timeout: float = _REQUEST_TIMEOUT,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.name = name
        self._urls = list(urls)
        self._market_urls = list(market_urls) if market_urls is not None else []
        self._items_path = items_path
        self._unwrap = unwrap
        self._headers = {"User-Agent": _USER_AGENT, "Accept": "application/json", **(headers or {})}
        self._params = params or {}
        self._timeout = timeout
        self._client = client

    async def fetch(self, symbol: str | None, options: dict[str, Any]) -> list[dict[str, Any]]:
        templates = self._urls if symbol else self._market_urls
        if not templates:
            return []

        limit = int(options.get("limit", 50))
        records: list[dict[str, Any]] = []
        if self._client is not None:
            for template in templates:
                records.extend(await self._get(self._client, template.format(symbol=symbol or "")))
        else:
            async with httpx.AsyncClient(timeout=self._timeout, follow_redirects=True) as client:
                for template in templates:
                    records.extend(await self._get(client, template.format(symbol=symbol or "")))
        return records[:limit] if limit > 0 else records

    @retry(max_attempts=3, base_delay=1.0, exceptions=(httpx.TransportError,))
    async def _get(self, client: httpx.AsyncClient, url: str) -> list[dict[str, Any]]:
        resp = await client.get(url, headers=self._headers, params=self._params)
        if resp.status_code == 429:
            raise CollectorError(self.name, f"rate limited by {url}")
        if resp.status_code in (401, 403):
            raise CollectorError(self.name, f"auth rejected ({resp.status_code}) by {url}")
        if resp.status_code >= 500:
            raise CollectorError(self.name, f"upstream error {resp.status_code} from {url}")
        if resp.status_code != 200:
            logger.debug("[%s] %s returned %d", self.name, url, resp.status_code)
            return []

        try:
            payload = resp.json()
        except ValueError as exc:
            raise CollectorError(self.name, f"invalid JSON from {url}") from exc

        rows = _dig(payload, self._items_path) if self._items_path else payload
        if not isinstance(rows, list):
            return []
        out: list[dict[str, Any]] = []
        for row in rows:
            if self._unwrap and isinstance(row, dict):
                row = row.get(self._unwrap)
            if isinstance(row, dict):
                out.append(row)
        return out


class RssFeed:
    """Fetch RSS/Atom feeds over httpx and parse them with feedparser."""

    def __init__(
        self,
        name: str,
        urls: Sequence[str],
        *,
        timeout: float = _REQUEST_TIMEOUT,
        max_entries: int = 20,
    ) -> None:
        self.name = name
        self._urls = list(urls)
        self._timeout = timeout
        self._max_entries = max_entries

    async def fetch(self, symbol: str | None, options: dict[str, Any]) -> list[dict[str, Any]]:
        entries: list[dict[str, Any]] = []
        failures = 0
        async with httpx.AsyncClient(
            timeout=self._timeout,
            follow_redirects=True,
            headers={"User-Agent": _USER_AGENT},
        ) as client:
            for template in self._urls:
                url = template.format(symbol=symbol or "")
                try:
                    resp = await client.get(url)
                    resp.raise_for_status()
                except httpx.HTTPError:
                    failures += 1
                    logger.warning("[%s] failed to fetch %s", self.name, url, exc_info=True)
                    continue
                loop = asyncio.get_running_loop()
                parsed = await loop.run_in_executor(None, feedparser.parse, resp.text)
                entries.extend(self._entries(parsed, symbol))

        if failures and failures == len(self._urls):
            raise CollectorError(self.name, "every RSS endpoint failed")
        limit = int(options.get("limit", 50))
        return entries[:limit] if limit > 0 else entries

    def _entries(self, parsed: Any, symbol: str | None) -> list[dict[str, Any]]:
        outlet = parsed.feed.get("title", self.name) if getattr(parsed, "feed", None) else self.name
        out: list[dict[str, Any]] = []
        for entry in parsed.entries[: self._max_entries]:
            link = entry.get("link", "")
            if not link:
                continue
            out.append({
                "title": entry.get("title", ""),
                "summary": entry.get("summary", "")[:2000],
                "url": link,
                "source": entry.get("source", {}).get("title") or outlet,
                "published": entry.get("published") or entry.get("updated") or "",
                "symbols": [symbol] if symbol else [],
                "tags": [t.get("term", "") for t in entry.get("tags", [])],
            })
        return out


class StaticFeed:
    """In-memory feed for fixtures, replay and tests."""

    def __init__(self, name: str, records: Sequence[dict[str, Any]] | None = None) -> None:
        self.name = name
        self.records: list[dict[str, Any]] = list(records or [])

    async def fetch(self, symbol: str | None, options: dict[str, Any]) -> list[dict[str, Any]]:
        if symbol is None:
            return list(self.records)
        wanted = symbol.upper()
        out = []
        for rec in self.records:
            if "symbol" in rec:
                if str(rec["symbol"]).upper() == wanted:
                    out.append(rec)
            elif "symbols" in rec:
                if wanted in {str(s).upper() for s in rec["symbols"]}:
                    out.append(rec)
            else:
                out.append(rec)
        return out
