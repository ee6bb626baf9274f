"""Builders and fakes shared by the test modules."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

from altsignal.alerts.models import Alert, AlertRule, AlertThreshold
from altsignal.collectors.scoring import summarize
from altsignal.collectors.types import (
    CollectedBatch,
    InsiderTrade,
    Sentiment,
    SocialPost,
)


class RecordingChannel:
    """Notification channel that remembers every payload it was handed."""

    def __init__(self, name: str, *, fail: bool = False, configured: bool = True) -> None:
        self.name = name
        self.fail = fail
        self._configured = configured
        self.payloads: list[dict[str, Any]] = []

    @property
    def configured(self) -> bool:
        return self._configured

    async def send(self, payload: dict[str, Any]) -> bool:
        from altsignal.errors import NotificationError

        if self.fail:
            raise NotificationError(f"{self.name} is down")
        self.payloads.append(payload)
        return True




def social_post(score: float, *, ts: datetime, confidence: float = 0.6, post_id: str = "p1") -> SocialPost:
    return SocialPost(
        timestamp=ts,
        source="reddit",
        confidence=confidence,
        post_id=post_id,
        platform="reddit",
        author="someone",
        text="AAPL looks strong",
        post_sentiment=Sentiment(label="positive" if score > 0 else "negative", score=score, magnitude=abs(score)),
        symbols=("AAPL",),
        engagement=120,
        reach=1000,
    )


def insider_trade(side: str, *, ts: datetime, significance: float = 0.8, value: float = 2_000_000) -> InsiderTrade:
    return InsiderTrade(
        timestamp=ts,
        source="sec",
        confidence=0.8,
        symbol="AAPL",
        insider_name="Jane Cooper",
        insider_title="Chief Executive Officer",
        relationship="Officer",
        transaction_type=side,
        quantity=10_000,
        price=200.0,
        value=value,
        significance=significance,
    )


def batch(kind: str, items: list, *, ts: datetime, symbol: str | None = "AAPL", name: str | None = None) -> CollectedBatch:
    return CollectedBatch(
        collector_type=name or kind,
        kind=kind,
        timestamp=ts,
        items=tuple(items),
        summary=summarize(items, sentiment="neutral", volume="low", significance=0.5),
        symbol=symbol,
    )


def make_rule(alert_type: str = "price_anomaly", **threshold: Any) -> AlertRule:
    params = {"severity": "high", "conditions": {}, "cooldown_period_minutes": 60}
    params.update(threshold)
    return AlertRule(
        id=f"test_{alert_type}",
        name=f"Test {alert_type}",
        threshold=AlertThreshold(alert_type=alert_type, **params),
    )


def make_alert(
    alert_id: str,
    *,
    severity: str = "medium",
    alert_type: str = "volume_anomaly",
    symbol: str = "AAPL",
    confidence: float = 0.5,
    ts: datetime | None = None,
) -> Alert:
    return Alert(
        id=alert_id,
        type=alert_type,
        severity=severity,
        symbol=symbol,
        title=f"{alert_type} {symbol}",
        description="test alert",
        trigger_data={},
        timestamp=ts or datetime.now(timezone.utc) - timedelta(minutes=1),
        metadata={"confidence": confidence},
    )
