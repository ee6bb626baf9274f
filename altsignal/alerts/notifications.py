"""Notification channels and the dispatcher that fans an alert out to them.

Each channel exposes ``async send(payload) -> bool`` and raises
:class:`NotificationError` when delivery fails.  The dispatcher runs the
requested channels concurrently and records ``sent`` / ``failed`` per
channel on the alert; nothing is retried.
"""

from __future__ import annotations

import asyncio
import logging
import smtplib
from email.message import EmailMessage
from typing import Any, Protocol, Sequence

import httpx

from altsignal.alerts.models import Alert
from altsignal.config import Settings
from altsignal.errors import NotificationError

logger = logging.getLogger(__name__)
console_logger = logging.getLogger("altsignal.alerts.console")

_CONSOLE_LEVELS = {
    "error": {"critical"},
    "warn": {"critical", "high"},
    "warning": {"critical", "high"},
}
_SEVERITY_LOG_LEVEL = {
    "critical": logging.ERROR,
    "high": logging.WARNING,
    "medium": logging.INFO,
    "low": logging.INFO,
}


class NotificationChannel(Protocol):
    name: str

    @property
    def configured(self) -> bool: ...

    async def send(self, payload: dict[str, Any]) -> bool: ...


def _headline(payload: dict[str, Any]) -> str:
    return (
        f"{str(payload.get('severity', '')).upper()} ALERT: "
        f"{payload.get('title', '')} - {payload.get('description', '')}"
    )


# ── Channels ──────────────────────────────────────────────────────────

class ConsoleChannel:
    """Writes alerts to the log, filtered by ``console_log_level``."""

    name = "console"

    def __init__(self, level: str = "info") -> None:
        self.level = level.lower()

    @property
    def configured(self) -> bool:
        return True

    async def send(self, payload: dict[str, Any]) -> bool:
        severity = str(payload.get("severity", "low"))
        allowed = _CONSOLE_LEVELS.get(self.level)
        if allowed is not None and severity not in allowed:
            return True
        console_logger.log(_SEVERITY_LOG_LEVEL.get(severity, logging.INFO), _headline(payload))
        return True


class WebhookChannel:
    name = "webhook"

    def __init__(
        self,
        urls: Sequence[str],
        headers: dict[str, str] | None = None,
        *,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.urls = list(urls)
        self.headers = {"Content-Type": "application/json", **(headers or {})}
        self._timeout = timeout
        self._client = client

    @property
    def configured(self) -> bool:
        return bool(self.urls)

    async def _post(self, client: httpx.AsyncClient, url: str, payload: dict[str, Any]) -> None:
        try:
            resp = await client.post(url, json=payload, headers=self.headers)
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            raise NotificationError(f"webhook {url} failed: {exc}") from exc

    async def _post_all(self, client: httpx.AsyncClient, payload: dict[str, Any]) -> None:
        results = await asyncio.gather(
            *(self._post(client, url, payload) for url in self.urls),
            return_exceptions=True,
        )
        failed = [str(r) for r in results if isinstance(r, BaseException)]
        if failed:
            raise NotificationError(f"{len(failed)}/{len(self.urls)} webhooks failed: " + "; ".join(failed))

    async def send(self, payload: dict[str, Any]) -> bool:
        """Post to every URL; any failure fails the channel after all were tried."""
        if self._client is not None:
            await self._post_all(self._client, payload)
            return True
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            await self._post_all(client, payload)
        return True


class SlackChannel:
    name = "slack"

    def __init__(
        self,
        webhook_url: str,
        channel: str = "#alerts",
        *,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.webhook_url = webhook_url
        self.channel = channel
        self._timeout = timeout
        self._client = client

    @property
    def configured(self) -> bool:
        return bool(self.webhook_url)

    def _body(self, payload: dict[str, Any]) -> dict[str, Any]:
        symbol = payload.get("symbol", "")
        confidence = float(payload.get("confidence") or 0.0)
        return {
            "channel": self.channel,
            "text": _headline(payload),
            "attachments": [{
                "fields": [
                    {"title": "Symbol", "value": symbol, "short": True},
                    {"title": "Type", "value": payload.get("type", ""), "short": True},
                    {"title": "Confidence", "value": f"{confidence:.0%}", "short": True},
                ],
                "ts": payload.get("timestamp"),
            }],
        }

    async def send(self, payload: dict[str, Any]) -> bool:
        try:
            if self._client is not None:
                resp = await self._client.post(self.webhook_url, json=self._body(payload))
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    resp = await client.post(self.webhook_url, json=self._body(payload))
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            raise NotificationError(f"slack delivery failed: {exc}") from exc
        return True


class EmailChannel:
    """SMTP delivery; the blocking client runs in the default executor."""

    name = "email"

    def __init__(
        self,
        host: str,
        port: int,
        sender: str,
        recipients: Sequence[str],
        *,
        username: str = "",
        password: str = "",
        timeout: float = 15.0,
    ) -> None:
        self.host = host
        self.port = port
        self.sender = sender
        self.recipients = list(recipients)
        self.username = username
        self.password = password
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.host and self.recipients)

    def _message(self, payload: dict[str, Any]) -> EmailMessage:
        msg = EmailMessage()
        msg["Subject"] = f"[{str(payload.get('severity', '')).upper()}] {payload.get('title', '')}"
        msg["From"] = self.sender
        msg["To"] = ", ".join(self.recipients)
        lines = [
            payload.get("description", ""),
            "",
            f"Symbol: {payload.get('symbol', '')}",
            f"Type: {payload.get('type', '')}",
            f"Confidence: {float(payload.get('confidence') or 0.0):.2f}",
            f"Time: {payload.get('timestamp', '')}",
            f"Alert id: {payload.get('alert_id', '')}",
        ]
        msg.set_content("\n".join(lines))
        return msg

    def _deliver(self, msg: EmailMessage) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=self.timeout) as smtp:
            smtp.ehlo()
            if smtp.has_extn("starttls"):
                smtp.starttls()
                smtp.ehlo()
            if self.username:
                smtp.login(self.username, self.password)
            smtp.send_message(msg)

    async def send(self, payload: dict[str, Any]) -> bool:
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, self._deliver, self._message(payload))
        except (smtplib.SMTPException, OSError) as exc:
            raise NotificationError(f"email delivery failed: {exc}") from exc
        return True


# ── Dispatcher ────────────────────────────────────────────────────────

class NotificationDispatcher:
    """Sends alerts to named channels, one independent task per channel."""

    def __init__(self, channels: Sequence[NotificationChannel] = ()) -> None:
        self._channels: dict[str, NotificationChannel] = {c.name: c for c in channels}
        self.stats = {"sent": 0, "failed": 0, "skipped": 0}

    @classmethod
    def from_settings(cls, settings: Settings) -> NotificationDispatcher:
        return cls([
            ConsoleChannel(settings.console_log_level),
            WebhookChannel(settings.webhook_urls, settings.webhook_headers),
            SlackChannel(settings.slack_webhook_url, settings.slack_channel),
            EmailChannel(
                settings.smtp_host,
                settings.smtp_port,
                settings.smtp_from,
                settings.email_recipients,
                username=settings.smtp_username,
                password=settings.smtp_password,
            ),
        ])

    @property
    def channel_names(self) -> list[str]:
        return sorted(self._channels)

    async def _send_one(self, name: str, payload: dict[str, Any]) -> bool | None:
        """True on delivery, False on failure, None when the channel is unconfigured."""
        channel = self._channels.get(name)
        if channel is None:
            logger.warning("[notify] unknown channel %r for alert %s", name, payload.get("alert_id"))
            return False
        if not channel.configured:
            logger.debug("[notify] channel %s not configured, skipping", name)
            return None
        try:
            return bool(await channel.send(payload))
        except NotificationError as exc:
            logger.error("[notify] %s failed for alert %s: %s", name, payload.get("alert_id"), exc)
            return False
        except Exception:
            logger.exception("[notify] %s raised for alert %s", name, payload.get("alert_id"))
            return False

    async def dispatch(self, alert: Alert, channels: Sequence[str]) -> tuple[list[str], list[str]]:
        """Deliver *alert* on every channel and record the outcome on it."""
        names = list(dict.fromkeys(channels))
        payload = alert.notification_payload()
        outcomes = await asyncio.gather(*(self._send_one(n, payload) for n in names))

        sent, failed = [], []
        for name, ok in zip(names, outcomes):
            if ok is None:
                self.stats["skipped"] += 1
            elif ok:
                sent.append(name)
            else:
                failed.append(name)
        self.stats["sent"] += len(sent)
        self.stats["failed"] += len(failed)
        alert.notifications_sent.extend(n for n in sent if n not in alert.notifications_sent)
        alert.notifications_failed.extend(n for n in failed if n not in alert.notifications_failed)
        return sent, failed

    async def notify_analysis(self, alert: Alert, result: dict[str, Any]) -> None:
        """Best-effort follow-up once a significant analysis lands."""
        cards = ((result.get("results") or {}).get("fusion") or {}).get("tradeCards") or []
        payload = alert.notification_payload()
        payload.update({
            "title": f"Analysis complete: {alert.symbol}",
            "description": f"Generated {len(cards)} trade opportunities for {alert.title}",
            "session_id": result.get("session_id"),
            "trade_cards": len(cards),
        })
        targets = alert.notifications_sent or ["console"]
        await asyncio.gather(*(self._send_one(n, payload) for n in targets))
