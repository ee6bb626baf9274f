"""SQLAlchemy 2.0 ORM models for alert rules and alerts."""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import JSON, Boolean, DateTime, Index, Integer, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# JSONB on postgres, plain JSON (text) elsewhere; the store treats both as opaque.
JSONType = JSON().with_variant(JSONB(), "postgresql")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Shared declarative base for altsignal tables."""


class AlertRuleRow(Base):
    __tablename__ = "alert_rules"

    id: Mapped[str] = mapped_column(String(128), primary_key=True)
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    threshold_json: Mapped[dict] = mapped_column(JSONType, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=_utcnow)
    triggered_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    effectiveness_json: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)


class AlertRow(Base):
    __tablename__ = "alerts"

    id: Mapped[str] = mapped_column(String(256), primary_key=True)
    type: Mapped[str] = mapped_column(String(64), nullable=False)
    severity: Mapped[str] = mapped_column(String(16), nullable=False)
    symbol: Mapped[str] = mapped_column(String(32), nullable=False)
    title: Mapped[str] = mapped_column(String(512), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    trigger_data_json: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    rule_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    analysis_state: Mapped[str] = mapped_column(String(32), nullable=False, default="triggered")
    analysis_triggered: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    analysis_session_id: Mapped[str | None] = mapped_column(String(300), nullable=True)
    analysis_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    analysis_results_json: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    notifications_sent_json: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    notifications_failed_json: Mapped[list] = mapped_column(JSONType, nullable=False, default=list)
    market_impact_json: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    user_actions_json: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    metadata_json: Mapped[dict] = mapped_column(JSONType, nullable=False, default=dict)

    __table_args__ = (
        Index("ix_alerts_timestamp", "timestamp"),
        Index("ix_alerts_type", "type"),
        Index("ix_alerts_symbol", "symbol"),
        Index("ix_alerts_severity", "severity"),
    )
