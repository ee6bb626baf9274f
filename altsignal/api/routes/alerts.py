"""Alert endpoints: history, effectiveness, feedback, rule management."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from altsignal.alerts.models import ALERT_TYPES, Severity
from altsignal.api.app import get_pipeline
from altsignal.errors import AlertNotFoundError, RuleNotFoundError
from altsignal.pipeline import Pipeline
from altsignal.utils import parse_iso

router = APIRouter(tags=["alerts"])


class ThresholdBody(BaseModel):
    alert_type: str
    severity: Severity
    conditions: dict[str, Any] = Field(default_factory=dict)
    cooldown_period_minutes: int = Field(30, ge=0)
    notification_channels: list[str] = Field(default_factory=lambda: ["console"])
    auto_trigger_analysis: bool = False
    analysis_modules: list[str] = Field(default_factory=list)


class RuleCreate(BaseModel):
    name: str
    description: str = ""
    enabled: bool = True
    threshold: ThresholdBody


class RuleUpdate(BaseModel):
    name: str | None = None
    description: str | None = None
    enabled: bool | None = None
    threshold: dict[str, Any] | None = None


class FeedbackRequest(BaseModel):
    accurate: bool | None = None
    market_impact: dict[str, Any] | None = None
    action: str | None = None  # "traded" | "watched" | "ignored"
    notes: str | None = None


# ── Alerts (fixed paths before {alert_id}) ──

@router.get("/alerts")
async def list_alerts(
    limit: int = Query(50, ge=1, le=500),
    type: str | None = None,
    severity: str | None = None,
    symbol: str | None = None,
    since: str | None = None,
    until: str | None = None,
    pipeline: Pipeline = Depends(get_pipeline),
):
    try:
        start = parse_iso(since) if since else None
        end = parse_iso(until) if until else None
    except ValueError:
        raise HTTPException(422, "since/until must be ISO-8601 timestamps")
    alerts = await pipeline.engine.get_alert_history(
        alert_type=type, severity=severity, symbol=symbol,
        start_time=start, end_time=end, limit=limit,
    )
    return [a.to_dict() for a in alerts]


@router.get("/alerts/effectiveness")
async def alert_effectiveness(pipeline: Pipeline = Depends(get_pipeline)):
    return pipeline.engine.get_alert_effectiveness()


@router.get("/alerts/{alert_id}")
async def get_alert(alert_id: str, pipeline: Pipeline = Depends(get_pipeline)):
    alert = await pipeline.engine.get_alert(alert_id)
    if alert is None:
        raise HTTPException(404, "Alert not found")
    return alert.to_dict()


@router.post("/alerts/{alert_id}/feedback")
async def alert_feedback(alert_id: str, body: FeedbackRequest, pipeline: Pipeline = Depends(get_pipeline)):
    try:
        alert = await pipeline.engine.record_feedback(alert_id, **body.model_dump())
    except AlertNotFoundError:
        raise HTTPException(404, "Alert not found")
    return alert.to_dict()


# ── Rules ──

@router.get("/rules")
async def list_rules(pipeline: Pipeline = Depends(get_pipeline)):
    return [r.to_dict() for r in pipeline.engine.rules.values()]


@router.post("/rules", status_code=201)
async def create_rule(body: RuleCreate, pipeline: Pipeline = Depends(get_pipeline)):
    if body.threshold.alert_type not in ALERT_TYPES:
        raise HTTPException(422, f"Unknown alert type {body.threshold.alert_type!r}")
    rule = await pipeline.engine.create_alert_rule(
        body.name,
        body.threshold.model_dump(),
        description=body.description,
        enabled=body.enabled,
    )
    return rule.to_dict()


@router.patch("/rules/{rule_id}")
async def update_rule(rule_id: str, body: RuleUpdate, pipeline: Pipeline = Depends(get_pipeline)):
    changes = body.model_dump(exclude_none=True)
    try:
        rule = await pipeline.engine.update_alert_rule(rule_id, **changes)
    except RuleNotFoundError:
        raise HTTPException(404, "Rule not found")
    except (ValueError, KeyError) as exc:
        raise HTTPException(422, str(exc))
    return rule.to_dict()
