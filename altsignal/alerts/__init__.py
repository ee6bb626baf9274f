"""Alert rules, monitoring feeds, notification channels and the analysis queue."""

from altsignal.alerts.engine import AlertEngine
from altsignal.alerts.models import (
    ALERT_TYPES,
    Alert,
    AlertRule,
    AlertThreshold,
    AnalysisState,
    Effectiveness,
    default_rules,
)
from altsignal.alerts.monitors import MonitoringFeeds, RegistryMonitoringFeeds, StaticMonitoringFeeds
from altsignal.alerts.notifications import NotificationDispatcher
from altsignal.alerts.queue import AnalysisQueue, analysis_priority

__all__ = [
    "ALERT_TYPES",
    "Alert",
    "AlertEngine",
    "AlertRule",
    "AlertThreshold",
    "AnalysisQueue",
    "AnalysisState",
    "Effectiveness",
    "MonitoringFeeds",
    "NotificationDispatcher",
    "RegistryMonitoringFeeds",
    "StaticMonitoringFeeds",
    "analysis_priority",
    "default_rules",
]
