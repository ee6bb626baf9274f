"""Exception hierarchy shared across the pipeline."""

from __future__ import annotations


class AltSignalError(Exception):
    """Base class for every error raised by altsignal."""


# ── collectors ─────────────────────────────────────────────────────────

class CollectorError(AltSignalError):
    """Transport, auth or rate-limit failure inside a collector."""

    def __init__(self, collector: str, message: str) -> None:
        super().__init__(f"[{collector}] {message}")
        self.collector = collector


class CollectorTimeout(CollectorError):
    """A collection call exceeded its configured timeout."""


class CollectorDisabled(CollectorError):
    """Collection was requested from a disabled collector."""


# ── alerting ───────────────────────────────────────────────────────────

class RuleEvaluationError(AltSignalError):
    """A single rule failed to evaluate during a tick."""


class RuleNotFoundError(AltSignalError, KeyError):
    """An operation referenced an unknown alert rule id."""


class NotificationError(AltSignalError):
    """A notification channel failed to deliver."""


class AnalysisDispatchError(AltSignalError):
    """The analysis engine failed or returned an unusable payload."""


class PersistenceError(AltSignalError):
    """The alert store could not read or write."""


class AlertNotFoundError(AltSignalError, KeyError):
    """An operation referenced an unknown alert id."""
