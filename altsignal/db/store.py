"""Durable storage for alert rules and alerts.

Writes are upserts keyed by id (``session.merge``).  Every failure is
re-raised as :class:`PersistenceError` so callers can keep running on the
in-memory state.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError

from altsignal.alerts.models import Alert, AlertRule, AlertThreshold, AnalysisState, Effectiveness
from altsignal.db.database import Database
from altsignal.db.models import AlertRow, AlertRuleRow
from altsignal.errors import PersistenceError

logger = logging.getLogger(__name__)


def _aware(dt: datetime | None) -> datetime | None:
    # sqlite hands back naive datetimes; everything is stored as UTC.
    if dt is not None and dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


# ── row <-> model ─────────────────────────────────────────────────────

def rule_to_row(rule: AlertRule) -> AlertRuleRow:
    return AlertRuleRow(
        id=rule.id,
        name=rule.name,
        description=rule.description,
        enabled=rule.enabled,
        threshold_json=rule.threshold.to_dict(),
        created_at=rule.created_at,
        updated_at=rule.updated_at,
        triggered_count=rule.triggered_count,
        effectiveness_json=rule.effectiveness.to_dict(),
    )


def rule_from_row(row: AlertRuleRow) -> AlertRule:
    return AlertRule(
        id=row.id,
        name=row.name,
        description=row.description or "",
        enabled=row.enabled,
        threshold=AlertThreshold.from_dict(row.threshold_json),
        created_at=_aware(row.created_at),
        updated_at=_aware(row.updated_at),
        triggered_count=row.triggered_count,
        effectiveness=Effectiveness.from_dict(row.effectiveness_json),
    )


def alert_to_row(alert: Alert) -> AlertRow:
    data = alert.to_dict()
    return AlertRow(
        id=alert.id,
        type=alert.type,
        severity=alert.severity,
        symbol=alert.symbol,
        title=alert.title,
        description=alert.description,
        trigger_data_json=data["trigger_data"],
        timestamp=alert.timestamp,
        rule_id=alert.rule_id,
        analysis_state=alert.analysis_state.value,
        analysis_triggered=alert.analysis_triggered,
        analysis_session_id=alert.analysis_session_id,
        analysis_completed=alert.analysis_completed,
        analysis_results_json=alert.analysis_results,
        notifications_sent_json=data["notifications_sent"],
        notifications_failed_json=data["notifications_failed"],
        market_impact_json=alert.market_impact,
        user_actions_json=alert.user_actions,
        metadata_json=data["metadata"],
    )


def alert_from_row(row: AlertRow) -> Alert:
    return Alert(
        id=row.id,
        type=row.type,
        severity=row.severity,  # type: ignore[arg-type]
        symbol=row.symbol,
        title=row.title,
        description=row.description or "",
        trigger_data=dict(row.trigger_data_json or {}),
        timestamp=_aware(row.timestamp),
        rule_id=row.rule_id,
        analysis_state=AnalysisState(row.analysis_state),
        analysis_triggered=row.analysis_triggered,
        analysis_session_id=row.analysis_session_id,
        analysis_completed=row.analysis_completed,
        analysis_results=row.analysis_results_json,
        notifications_sent=list(row.notifications_sent_json or []),
        notifications_failed=list(row.notifications_failed_json or []),
        market_impact=row.market_impact_json,
        user_actions=row.user_actions_json,
        metadata=dict(row.metadata_json or {}),
    )


# ── Store ─────────────────────────────────────────────────────────────

class AlertStore:
    def __init__(self, db: Database) -> None:
        self._db = db

    async def init(self) -> None:
        try:
            await self._db.init()
        except (SQLAlchemyError, OSError) as exc:
            raise PersistenceError(f"cannot initialise alert store: {exc}") from exc

    async def close(self) -> None:
        await self._db.close()

    # ── rules ─────────────────────────────────────────────────────────

    async def save_rule(self, rule: AlertRule) -> None:
        try:
            async with self._db.session() as session:
                await session.merge(rule_to_row(rule))
        except SQLAlchemyError as exc:
            raise PersistenceError(f"save_rule {rule.id}: {exc}") from exc

    async def load_rules(self) -> list[AlertRule]:
        try:
            async with self._db.session() as session:
                rows = (await session.execute(select(AlertRuleRow).order_by(AlertRuleRow.id))).scalars().all()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"load_rules: {exc}") from exc
        return [rule_from_row(r) for r in rows]

    # ── alerts ────────────────────────────────────────────────────────

    async def save_alert(self, alert: Alert) -> None:
        try:
            async with self._db.session() as session:
                await session.merge(alert_to_row(alert))
        except SQLAlchemyError as exc:
            raise PersistenceError(f"save_alert {alert.id}: {exc}") from exc

    async def get_alert(self, alert_id: str) -> Alert | None:
        try:
            async with self._db.session() as session:
                row = await session.get(AlertRow, alert_id)
        except SQLAlchemyError as exc:
            raise PersistenceError(f"get_alert {alert_id}: {exc}") from exc
        return alert_from_row(row) if row else None

    async def get_alert_history(
        self,
        *,
        alert_type: str | None = None,
        severity: str | None = None,
        symbol: str | None = None,
        start_time: datetime | None = None,
        end_time: datetime | None = None,
        limit: int | None = 100,
    ) -> list[Alert]:
        """Alerts matching every given filter, newest first."""
        stmt = select(AlertRow)
        if alert_type:
            stmt = stmt.where(AlertRow.type == alert_type)
        if severity:
            stmt = stmt.where(AlertRow.severity == severity)
        if symbol:
            stmt = stmt.where(AlertRow.symbol == symbol.upper())
        if start_time:
            stmt = stmt.where(AlertRow.timestamp >= start_time)
        if end_time:
            stmt = stmt.where(AlertRow.timestamp <= end_time)
        stmt = stmt.order_by(AlertRow.timestamp.desc())
        if limit:
            stmt = stmt.limit(limit)
        try:
            async with self._db.session() as session:
                rows = (await session.execute(stmt)).scalars().all()
        except SQLAlchemyError as exc:
            raise PersistenceError(f"get_alert_history: {exc}") from exc
        return [alert_from_row(r) for r in rows]

    async def recent_alerts(self, since: datetime) -> list[Alert]:
        return await self.get_alert_history(start_time=since, limit=None)

    async def delete_alerts_before(self, cutoff: datetime) -> int:
        try:
            async with self._db.session() as session:
                result = await session.execute(delete(AlertRow).where(AlertRow.timestamp < cutoff))
        except SQLAlchemyError as exc:
            raise PersistenceError(f"delete_alerts_before: {exc}") from exc
        deleted = result.rowcount or 0
        if deleted:
            logger.info("[store] purged %d alerts older than %s", deleted, cutoff.isoformat())
        return deleted
