"""Alert, rule and threshold models plus the default rule set."""

from __future__ import annotations

import copy
import enum
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Literal

from altsignal.utils import parse_iso, utc_now

Severity = Literal["low", "medium", "high", "critical"]

ALERT_TYPES = (
    "insider_trading_spike",
    "congressional_trading_unusual",
    "sentiment_spike",
    "volume_anomaly",
    "price_anomaly",
    "breaking_news",
    "earnings_surprise",
    "analyst_upgrade_downgrade",
    "unusual_options_activity",
    "sector_rotation",
    "market_crash_signal",
    "custom_signal",
)

SEVERITY_WEIGHTS: dict[str, int] = {"critical": 100, "high": 75, "medium": 50, "low": 25}


class AnalysisState(str, enum.Enum):
    TRIGGERED = "triggered"
    QUEUED = "analysis_queued"
    RUNNING = "analysis_running"
    COMPLETED = "analysis_completed"
    FAILED = "analysis_failed"


def _dt(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return parse_iso(str(value))


# ── Rules ─────────────────────────────────────────────────────────────

@dataclass
class AlertThreshold:
    alert_type: str
    severity: Severity
    conditions: dict[str, Any] = field(default_factory=dict)
    cooldown_period_minutes: int = 30
    notification_channels: list[str] = field(default_factory=lambda: ["console"])
    auto_trigger_analysis: bool = False
    analysis_modules: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AlertThreshold:
        return cls(
            alert_type=data["alert_type"],
            severity=data["severity"],
            conditions=dict(data.get("conditions") or {}),
            cooldown_period_minutes=int(data.get("cooldown_period_minutes", 30)),
            notification_channels=list(data.get("notification_channels") or ["console"]),
            auto_trigger_analysis=bool(data.get("auto_trigger_analysis", False)),
            analysis_modules=list(data.get("analysis_modules") or []),
        )


@dataclass
class Effectiveness:
    true_positives: int = 0
    false_positives: int = 0
    total_triggers: int = 0
    avg_market_impact: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> Effectiveness:
        data = data or {}
        return cls(
            true_positives=int(data.get("true_positives", 0)),
            false_positives=int(data.get("false_positives", 0)),
            total_triggers=int(data.get("total_triggers", 0)),
            avg_market_impact=float(data.get("avg_market_impact", 0.0)),
        )


@dataclass
class AlertRule:
    id: str
    name: str
    threshold: AlertThreshold
    description: str = ""
    enabled: bool = True
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    triggered_count: int = 0
    effectiveness: Effectiveness = field(default_factory=Effectiveness)

    @property
    def alert_type(self) -> str:
        return self.threshold.alert_type

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "enabled": self.enabled,
            "threshold": self.threshold.to_dict(),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "triggered_count": self.triggered_count,
            "effectiveness": self.effectiveness.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AlertRule:
        return cls(
            id=data["id"],
            name=data["name"],
            description=data.get("description") or "",
            enabled=bool(data.get("enabled", True)),
            threshold=AlertThreshold.from_dict(data["threshold"]),
            created_at=_dt(data.get("created_at")) or utc_now(),
            updated_at=_dt(data.get("updated_at")) or utc_now(),
            triggered_count=int(data.get("triggered_count", 0)),
            effectiveness=Effectiveness.from_dict(data.get("effectiveness")),
        )


# ── Alerts ────────────────────────────────────────────────────────────

@dataclass
class Alert:
    id: str
    type: str
    severity: Severity
    symbol: str
    title: str
    description: str
    trigger_data: dict[str, Any]
    timestamp: datetime
    rule_id: str | None = None
    analysis_state: AnalysisState = AnalysisState.TRIGGERED
    analysis_triggered: bool = False
    analysis_session_id: str | None = None
    analysis_completed: bool = False
    analysis_results: dict[str, Any] | None = None
    notifications_sent: list[str] = field(default_factory=list)
    notifications_failed: list[str] = field(default_factory=list)
    market_impact: dict[str, Any] | None = None
    user_actions: dict[str, Any] | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def confidence(self) -> float:
        return float(self.metadata.get("confidence", 0.0))

    @property
    def suppress_until(self) -> datetime | None:
        return _dt(self.metadata.get("suppress_until"))

    def notification_payload(self) -> dict[str, Any]:
        return {
            "alert_id": self.id,
            "type": self.type,
            "severity": self.severity,
            "symbol": self.symbol,
            "title": self.title,
            "description": self.description,
            "timestamp": self.timestamp.isoformat(),
            "confidence": self.confidence,
        }

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "severity": self.severity,
            "symbol": self.symbol,
            "title": self.title,
            "description": self.description,
            "trigger_data": self.trigger_data,
            "timestamp": self.timestamp.isoformat(),
            "rule_id": self.rule_id,
            "analysis_state": self.analysis_state.value,
            "analysis_triggered": self.analysis_triggered,
            "analysis_session_id": self.analysis_session_id,
            "analysis_completed": self.analysis_completed,
            "analysis_results": self.analysis_results,
            "notifications_sent": list(self.notifications_sent),
            "notifications_failed": list(self.notifications_failed),
            "market_impact": self.market_impact,
            "user_actions": self.user_actions,
            "metadata": _jsonable(self.metadata),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Alert:
        return cls(
            id=data["id"],
            type=data["type"],
            severity=data["severity"],
            symbol=data["symbol"],
            title=data.get("title") or "",
            description=data.get("description") or "",
            trigger_data=dict(data.get("trigger_data") or {}),
            timestamp=_dt(data["timestamp"]),
            rule_id=data.get("rule_id"),
            analysis_state=AnalysisState(data.get("analysis_state") or AnalysisState.TRIGGERED),
            analysis_triggered=bool(data.get("analysis_triggered", False)),
            analysis_session_id=data.get("analysis_session_id"),
            analysis_completed=bool(data.get("analysis_completed", False)),
            analysis_results=data.get("analysis_results"),
            notifications_sent=list(data.get("notifications_sent") or []),
            notifications_failed=list(data.get("notifications_failed") or []),
            market_impact=data.get("market_impact"),
            user_actions=data.get("user_actions"),
            metadata=dict(data.get("metadata") or {}),
        )


def _jsonable(metadata: dict[str, Any]) -> dict[str, Any]:
    out = dict(metadata)
    for key, value in out.items():
        if isinstance(value, datetime):
            out[key] = value.isoformat()
    return out


# ── Defaults ──────────────────────────────────────────────────────────

_FUSION = "fusion"

DEFAULT_THRESHOLDS: dict[str, AlertThreshold] = {
    "insider_trading_spike": AlertThreshold(
        alert_type="insider_trading_spike",
        severity="high",
        conditions={
            "insiderTradeValueMin": 1_000_000,
            "insiderTradeVolumeRatio": 2.0,
            "insiderExecutiveLevel": ["CEO", "CFO", "President", "Director"],
        },
        cooldown_period_minutes=60,
        notification_channels=["console", "webhook"],
        auto_trigger_analysis=True,
        analysis_modules=["risk", "technical", "anomaly", _FUSION],
    ),
    "congressional_trading_unusual": AlertThreshold(
        alert_type="congressional_trading_unusual",
        severity="high",
        conditions={"congressionalTradeValueMin": 50_000, "congressionalTimingWindow": 7},
        cooldown_period_minutes=120,
        notification_channels=["console", "webhook"],
        auto_trigger_analysis=True,
        analysis_modules=["sector", "risk", "anomaly", _FUSION],
    ),
    "sentiment_spike": AlertThreshold(
        alert_type="sentiment_spike",
        severity="medium",
        conditions={"sentimentVelocity": 100, "mentionSpike": 5.0, "sentimentScoreChange": 0.3},
        cooldown_period_minutes=30,
        notification_channels=["console"],
        auto_trigger_analysis=True,
        analysis_modules=["reddit", "technical", _FUSION],
    ),
    "volume_anomaly": AlertThreshold(
        alert_type="volume_anomaly",
        severity="medium",
        conditions={"volumeRatio": 5, "timeWindow": 15},
        cooldown_period_minutes=15,
        notification_channels=["console"],
        auto_trigger_analysis=True,
        analysis_modules=["technical", "anomaly", _FUSION],
    ),
    "price_anomaly": AlertThreshold(
        alert_type="price_anomaly",
        severity="high",
        conditions={"priceChangePercent": 10, "timeWindow": 5, "volumeRatio": 2},
        cooldown_period_minutes=30,
        notification_channels=["console", "webhook"],
        auto_trigger_analysis=True,
        analysis_modules=["technical", "anomaly", "risk", _FUSION],
    ),
    "breaking_news": AlertThreshold(
        alert_type="breaking_news",
        severity="high",
        conditions={
            "newsImpactScore": 0.8,
            "keywordMatches": ["earnings", "FDA", "merger", "acquisition", "bankruptcy", "lawsuit"],
            "sourceCredibility": 0.7,
        },
        cooldown_period_minutes=5,
        notification_channels=["console", "webhook", "email"],
        auto_trigger_analysis=True,
        analysis_modules=["sector", "risk", "anomaly", _FUSION],
    ),
    "earnings_surprise": AlertThreshold(
        alert_type="earnings_surprise",
        severity="high",
        conditions={"priceChangePercent": 5, "volumeRatio": 3},
        cooldown_period_minutes=240,
        notification_channels=["console", "webhook"],
        auto_trigger_analysis=True,
        analysis_modules=["earningsDrift", "technical", "risk", _FUSION],
    ),
    "analyst_upgrade_downgrade": AlertThreshold(
        alert_type="analyst_upgrade_downgrade",
        severity="medium",
        conditions={"priceChangePercent": 3, "sourceCredibility": 0.8},
        cooldown_period_minutes=60,
        notification_channels=["console"],
        auto_trigger_analysis=False,
        analysis_modules=[],
    ),
    "unusual_options_activity": AlertThreshold(
        alert_type="unusual_options_activity",
        severity="medium",
        conditions={"volumeRatio": 10, "timeWindow": 30},
        cooldown_period_minutes=60,
        notification_channels=["console"],
        auto_trigger_analysis=True,
        analysis_modules=["technical", "risk", "anomaly"],
    ),
    "sector_rotation": AlertThreshold(
        alert_type="sector_rotation",
        severity="low",
        conditions={"priceChangePercent": 2, "volumeRatio": 1.5},
        cooldown_period_minutes=120,
        notification_channels=["console"],
        auto_trigger_analysis=True,
        analysis_modules=["sector", _FUSION],
    ),
    "market_crash_signal": AlertThreshold(
        alert_type="market_crash_signal",
        severity="critical",
        conditions={"priceChangePercent": 3, "volumeRatio": 2},
        cooldown_period_minutes=60,
        notification_channels=["console", "webhook", "email"],
        auto_trigger_analysis=True,
        analysis_modules=["sector", "risk", "technical", "anomaly", _FUSION],
    ),
    "custom_signal": AlertThreshold(
        alert_type="custom_signal",
        severity="medium",
        conditions={},
        cooldown_period_minutes=30,
        notification_channels=["console"],
        auto_trigger_analysis=False,
        analysis_modules=[],
    ),
}

_DISABLED_BY_DEFAULT = {"custom_signal"}


def default_rules() -> list[AlertRule]:
    rules = []
    for alert_type, threshold in DEFAULT_THRESHOLDS.items():
        label = alert_type.replace("_", " ").title()
        rules.append(AlertRule(
            id=f"default_{alert_type}",
            name=f"Default {label}",
            description=f"Default threshold for {label.lower()} alerts",
            enabled=alert_type not in _DISABLED_BY_DEFAULT,
            threshold=copy.deepcopy(threshold),
        ))
    return rules
