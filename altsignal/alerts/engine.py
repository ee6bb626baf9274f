"""AlertEngine: evaluates rules against live events and turns matches into alerts.

Owns the rules map and the active-alerts map.  Each tick evaluates every
alert type concurrently; one rule failing is logged and never affects the
others.  A match passes the cooldown check, becomes an :class:`Alert`, is
persisted, fanned out to notification channels and, when the rule asks for
it, queued for analysis.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Callable

from altsignal.alerts.analysis import HeuristicImpactAssessor, ImpactAssessor
from altsignal.alerts.conditions import evaluate
from altsignal.alerts.models import (
    ALERT_TYPES,
    SEVERITY_WEIGHTS,
    Alert,
    AlertRule,
    AlertThreshold,
    AnalysisState,
    Severity,
    default_rules,
)
from altsignal.alerts.monitors import MARKET, MonitoringFeeds
from altsignal.alerts.notifications import NotificationDispatcher
from altsignal.alerts.queue import AnalysisQueue
from altsignal.errors import AlertNotFoundError, PersistenceError, RuleEvaluationError, RuleNotFoundError
from altsignal.events import EventBus
from altsignal.fusion import AggregatedSignal
from altsignal.utils import utc_now

if TYPE_CHECKING:
    from altsignal.db.store import AlertStore

logger = logging.getLogger(__name__)

# Quick fusion alerts and the durable rule type that governs each.
SIGNAL_ALERT_TYPES = {
    "strong_signal": "custom_signal",
    "insider_activity": "insider_trading_spike",
    "legislator_trading": "congressional_trading_unusual",
    "social_spike": "sentiment_spike",
    "breaking_news": "breaking_news",
}

_IN_PROGRESS = (AnalysisState.QUEUED, AnalysisState.RUNNING)


# ── Alert text per type ───────────────────────────────────────────────

def _num(event: dict[str, Any], *keys: str, default: float = 0.0) -> float:
    for key in keys:
        value = event.get(key)
        if value is not None:
            try:
                return float(value)
            except (TypeError, ValueError):
                continue
    return default


def _signed(pct: float) -> str:
    return f"{'+' if pct > 0 else ''}{pct:.1f}%"


def _insider_text(e: dict, rule: AlertRule) -> tuple[str, str]:
    value = _num(e, "value", "tradeValue")
    return (
        f"Significant Insider Trading: {e['symbol']}",
        f"{e.get('insider_name', 'Insider')} ({e.get('insider_title', 'n/a')}) "
        f"{e.get('transaction_type', 'traded')} ${value / 1_000_000:.1f}M worth of shares",
    )


def _legislator_text(e: dict, rule: AlertRule) -> tuple[str, str]:
    value = _num(e, "value", "amount")
    return (
        f"Congressional Trading Alert: {e['symbol']}",
        f"{e.get('representative', 'Legislator')} {e.get('transaction_type', 'traded')} "
        f"${value / 1000:.0f}K worth of shares",
    )


def _sentiment_text(e: dict, rule: AlertRule) -> tuple[str, str]:
    score = _num(e, "sentiment_score", "sentimentScore")
    return (
        f"Sentiment Spike Detected: {e['symbol']}",
        f"{int(_num(e, 'mentions', 'mentionCount'))} mentions "
        f"({_num(e, 'mention_spike', 'mentionSpike', default=1.0):.1f}x normal), "
        f"sentiment: {'positive' if score > 0 else 'negative'}",
    )


def _volume_text(e: dict, rule: AlertRule) -> tuple[str, str]:
    window = rule.threshold.conditions.get("timeWindow")
    suffix = f" in {window} minutes" if window else ""
    return (
        f"Volume Anomaly: {e['symbol']}",
        f"{_num(e, 'volume_ratio', 'volumeRatio'):.1f}x normal volume "
        f"({int(_num(e, 'volume', 'currentVolume')):,}){suffix}",
    )


def _price_text(e: dict, rule: AlertRule) -> tuple[str, str]:
    pct = _num(e, "price_change_percent", "priceChangePercent")
    price = _num(e, "price", "currentPrice")
    at = f" to ${price:.2f}" if price else ""
    return (
        f"Price Anomaly: {e['symbol']}",
        f"{_signed(pct)} move{at} with {_num(e, 'volume_ratio', 'volumeRatio'):.1f}x volume",
    )


def _earnings_text(e: dict, rule: AlertRule) -> tuple[str, str]:
    pct = _num(e, "price_change_percent", "priceChangePercent")
    return (
        f"Earnings Surprise: {e['symbol']}",
        f"Stock {'up' if pct > 0 else 'down'} {abs(pct):.1f}% on "
        f"{_num(e, 'volume_ratio', 'volumeRatio'):.1f}x volume after earnings news",
    )


def _analyst_text(e: dict, rule: AlertRule) -> tuple[str, str]:
    pct = _num(e, "price_change_percent", "priceChangePercent")
    return (
        f"Analyst Rating Change: {e['symbol']}",
        f"{_signed(pct)} move following analyst coverage "
        f"(source credibility {_num(e, 'credibility', 'sourceCredibility'):.2f})",
    )


def _options_text(e: dict, rule: AlertRule) -> tuple[str, str]:
    return (
        f"Unusual Options Activity: {e['symbol']}",
        f"{_num(e, 'volume_ratio', 'volumeRatio'):.1f}x normal options volume",
    )


def _sector_text(e: dict, rule: AlertRule) -> tuple[str, str]:
    pct = _num(e, "price_change_percent", "priceChangePercent")
    return (
        f"Sector Rotation: {e['symbol']}",
        f"{e['symbol']} {_signed(pct)} on {_num(e, 'volume_ratio', 'volumeRatio'):.1f}x volume",
    )


def _market_text(e: dict, rule: AlertRule) -> tuple[str, str]:
    pct = _num(e, "price_change_percent", "priceChangePercent")
    index = e.get("index", e["symbol"])
    return (
        f"Market Crash Signal: {index}",
        f"{index} down {abs(pct):.1f}% on {_num(e, 'volume_ratio', 'volumeRatio'):.1f}x volume",
    )


def _custom_text(e: dict, rule: AlertRule) -> tuple[str, str]:
    return (
        f"{rule.name}: {e['symbol']}",
        str(e.get("message") or rule.description or "Custom alert rule matched"),
    )


# alert type -> (monitor source, confidence, text builder)
_MONITORS: dict[str, tuple[str, float, Callable[[dict, AlertRule], tuple[str, str]]]] = {
    "insider_trading_spike": ("insider_trading_monitor", 0.9, _insider_text),
    "congressional_trading_unusual": ("congressional_monitor", 0.85, _legislator_text),
    "sentiment_spike": ("sentiment_monitor", 0.75, _sentiment_text),
    "volume_anomaly": ("volume_monitor", 0.8, _volume_text),
    "price_anomaly": ("price_monitor", 0.85, _price_text),
    "earnings_surprise": ("earnings_monitor", 0.9, _earnings_text),
    "analyst_upgrade_downgrade": ("analyst_monitor", 0.8, _analyst_text),
    "unusual_options_activity": ("options_monitor", 0.75, _options_text),
    "sector_rotation": ("sector_monitor", 0.7, _sector_text),
    "market_crash_signal": ("market_monitor", 0.85, _market_text),
    "custom_signal": ("custom_rule", 0.5, _custom_text),
}


def _validate(threshold: AlertThreshold) -> None:
    if threshold.alert_type not in ALERT_TYPES:
        raise ValueError(f"unknown alert type {threshold.alert_type!r}")
    if threshold.severity not in SEVERITY_WEIGHTS:
        raise ValueError(f"unknown severity {threshold.severity!r}")
    if threshold.cooldown_period_minutes < 0:
        raise ValueError("cooldown_period_minutes must not be negative")


class AlertEngine:
    def __init__(
        self,
        feeds: MonitoringFeeds,
        *,
        store: AlertStore | None = None,
        dispatcher: NotificationDispatcher | None = None,
        queue: AnalysisQueue | None = None,
        bus: EventBus | None = None,
        impact_assessor: ImpactAssessor | None = None,
        retention_days: int = 30,
        breaking_news_enabled: bool = True,
    ) -> None:
        self._feeds = feeds
        self._store = store
        self._dispatcher = dispatcher or NotificationDispatcher()
        self._queue = queue
        self._bus = bus
        self._assessor = impact_assessor or HeuristicImpactAssessor()
        self.retention_days = retention_days
        self.breaking_news_enabled = breaking_news_enabled
        self.rules: dict[str, AlertRule] = {}
        self.active_alerts: dict[str, Alert] = {}
        self.degraded = store is None
        self.ticks = 0

    # ── startup ────────────────────────────────────────────────────────

    async def load(self) -> None:
        """Load rules and recent alerts; fall back to defaults in memory when the store is down."""
        if self._store is None:
            self._seed_defaults()
            logger.warning("[engine] no alert store configured, running in memory only")
            return
        try:
            await self._store.init()
            rules = await self._store.load_rules()
            if not rules:
                rules = default_rules()
                for rule in rules:
                    await self._store.save_rule(rule)
                logger.info("[engine] seeded %d default rules", len(rules))
            self.rules = {r.id: r for r in rules}

            horizon = max((r.threshold.cooldown_period_minutes for r in rules), default=60)
            since = utc_now() - timedelta(minutes=horizon)
            for alert in await self._store.recent_alerts(since):
                self.active_alerts[alert.id] = alert
            await self._recover_interrupted()
            self.degraded = False
            logger.info(
                "[engine] loaded %d rules, restored %d recent alerts", len(self.rules), len(self.active_alerts),
            )
        except PersistenceError as exc:
            self._seed_defaults()
            self.degraded = True
            logger.warning("[engine] alert store unavailable, DEGRADED in-memory mode: %s", exc)

    def _seed_defaults(self) -> None:
        self.rules = {r.id: r for r in default_rules()}

    async def _recover_interrupted(self) -> None:
        """Requeue alerts whose analysis was cut short by a restart, or fail them without a queue."""
        for alert in list(self.active_alerts.values()):
            if alert.analysis_state not in _IN_PROGRESS:
                continue
            if self._queue is not None:
                rule = self.rules.get(alert.rule_id or "")
                modules = rule.threshold.analysis_modules if rule is not None else None
                self._queue.enqueue(alert, modules or None)
                logger.info("[engine] requeued interrupted analysis for %s", alert.id)
            else:
                alert.analysis_state = AnalysisState.FAILED
                alert.analysis_results = {
                    "success": False,
                    "error": "analysis interrupted by restart",
                    "session_id": alert.analysis_session_id,
                }
                logger.warning("[engine] no analysis queue, marked %s failed", alert.id)
            await self._save_alert(alert)

    # ── persistence helpers ───────────────────────────────────────────

    async def _save_rule(self, rule: AlertRule) -> None:
        if self._store is None:
            return
        try:
            await self._store.save_rule(rule)
        except PersistenceError as exc:
            logger.error("[engine] could not persist rule %s: %s", rule.id, exc)

    async def _save_alert(self, alert: Alert) -> None:
        if self._store is None:
            return
        try:
            await self._store.save_alert(alert)
        except PersistenceError as exc:
            logger.error("[engine] could not persist alert %s: %s", alert.id, exc)

    async def update_alert(self, alert: Alert) -> None:
        await self._save_alert(alert)
        if self._bus is not None:
            self._bus.publish("alert_update", alert.to_dict())

    # ── evaluation ─────────────────────────────────────────────────────

    async def tick(self) -> list[Alert]:
        """Evaluate every enabled rule once."""
        self.ticks += 1
        return await self.evaluate_rules()

    async def evaluate_rules(self) -> list[Alert]:
        by_type: dict[str, list[AlertRule]] = defaultdict(list)
        for rule in self.rules.values():
            if rule.enabled:
                by_type[rule.alert_type].append(rule)

        results = await asyncio.gather(
            *(self._evaluate_type(t, rules) for t, rules in by_type.items()),
            return_exceptions=True,
        )
        triggered: list[Alert] = []
        for alert_type, result in zip(by_type, results):
            if isinstance(result, BaseException):
                logger.error("[engine] %s evaluation failed: %s", alert_type, result, exc_info=result)
            else:
                triggered.extend(result)
        if triggered:
            logger.info("[engine] tick %d triggered %d alerts", self.ticks, len(triggered))
        return triggered

    async def _evaluate_type(self, alert_type: str, rules: list[AlertRule]) -> list[Alert]:
        if alert_type == "breaking_news" and not self.breaking_news_enabled:
            return []
        events = await self._feeds.events(alert_type)
        triggered: list[Alert] = []
        for rule in rules:
            try:
                triggered.extend(await self._evaluate_rule(rule, events))
            except RuleEvaluationError as exc:
                logger.error("[engine] rule %s skipped: %s", rule.id, exc)
            except Exception:
                logger.exception("[engine] rule %s raised during evaluation", rule.id)
        return triggered

    async def _evaluate_rule(self, rule: AlertRule, events: list[dict[str, Any]]) -> list[Alert]:
        if not events and not rule.threshold.conditions and rule.alert_type == "custom_signal":
            # Unconditional custom rules fire on schedule, cooldown permitting.
            events = [{"symbol": MARKET, "scheduled": True}]

        triggered = []
        for event in events:
            if not event.get("symbol"):
                continue
            if not evaluate(rule.threshold.conditions, event):
                continue
            if rule.alert_type == "breaking_news":
                alert = await self._trigger_breaking_news(rule, event)
            else:
                source, confidence, text = _MONITORS.get(rule.alert_type, _MONITORS["custom_signal"])
                title, description = text(event, rule)
                alert = await self.trigger_alert(
                    rule,
                    symbol=str(event["symbol"]).upper(),
                    title=title,
                    description=description,
                    trigger_data=event,
                    source=source,
                    confidence=confidence,
                )
            if alert is not None:
                triggered.append(alert)
        return triggered

    async def _trigger_breaking_news(self, rule: AlertRule, event: dict[str, Any]) -> Alert | None:
        assessment = await self._assessor.assess(event)
        symbol = assessment.affected_symbols[0] if assessment.affected_symbols else MARKET
        sectors = ", ".join(assessment.affected_sectors) or "the broad market"
        return await self.trigger_alert(
            rule,
            symbol=symbol,
            title=f"Breaking News: {event.get('title', '')}",
            description=f"{assessment.market_impact.upper()} impact expected for {sectors}",
            trigger_data={**event, "impact_assessment": {
                "market_impact": assessment.market_impact,
                "confidence": assessment.confidence,
                "affected_symbols": assessment.affected_symbols,
                "affected_sectors": assessment.affected_sectors,
            }},
            source="breaking_news_monitor",
            confidence=assessment.confidence,
            severity="critical" if assessment.market_impact == "critical" else None,
        )

    # ── cooldown + trigger ─────────────────────────────────────────────

    def in_cooldown(
        self, alert_type: str, symbol: str, cooldown_minutes: int | None, now: datetime | None = None
    ) -> bool:
        """True if an alert for ``(type, symbol)`` is inside the cooldown or still being analysed."""
        now = now or utc_now()
        cutoff = now - timedelta(minutes=30 if cooldown_minutes is None else cooldown_minutes)
        for alert in self.active_alerts.values():
            if alert.type != alert_type or alert.symbol != symbol:
                continue
            if alert.timestamp > cutoff or alert.analysis_state in _IN_PROGRESS:
                return True
        return False

    async def trigger_alert(
        self,
        rule: AlertRule,
        *,
        symbol: str,
        title: str,
        description: str,
        trigger_data: dict[str, Any],
        source: str,
        confidence: float,
        severity: Severity | None = None,
        now: datetime | None = None,
    ) -> Alert | None:
        """Create, persist, notify and queue an alert unless ``(type, symbol)`` is cooling down."""
        threshold = rule.threshold
        now = now or utc_now()
        if self.in_cooldown(threshold.alert_type, symbol, threshold.cooldown_period_minutes, now):
            logger.debug("[engine] %s/%s suppressed by cooldown", threshold.alert_type, symbol)
            return None

        alert = Alert(
            id=f"{threshold.alert_type}_{symbol}_{int(now.timestamp() * 1000)}",
            type=threshold.alert_type,
            severity=severity or threshold.severity,
            symbol=symbol,
            title=title,
            description=description,
            trigger_data=dict(trigger_data),
            timestamp=now,
            rule_id=rule.id,
            metadata={
                "source": source,
                "confidence": confidence,
                "suppress_until": now + timedelta(minutes=threshold.cooldown_period_minutes),
            },
        )
        # Registered before any await so concurrent matches see the cooldown.
        self.active_alerts[alert.id] = alert
        rule.triggered_count += 1
        rule.effectiveness.total_triggers += 1
        rule.updated_at = now

        if threshold.auto_trigger_analysis and self._queue is not None:
            self._queue.enqueue(alert, threshold.analysis_modules or None)

        await self._save_alert(alert)
        await self._save_rule(rule)
        await self._dispatcher.dispatch(alert, threshold.notification_channels)
        await self._save_alert(alert)

        if self._bus is not None:
            self._bus.publish("alert", alert.notification_payload())
        logger.info(
            "[engine] alert %s severity=%s confidence=%.2f", alert.id, alert.severity, confidence,
        )
        return alert

    async def evaluate_signal(self, signal: AggregatedSignal) -> list[Alert]:
        """Promote fusion quick alerts to durable alerts through the matching rule."""
        symbol = (signal.symbol or MARKET).upper()
        triggered = []
        for quick in signal.alerts:
            alert_type = SIGNAL_ALERT_TYPES.get(quick.type)
            rule = self._rule_for_type(alert_type) if alert_type else None
            if rule is None:
                continue
            alert = await self.trigger_alert(
                rule,
                symbol=symbol,
                title=f"{quick.type.replace('_', ' ').title()}: {symbol}",
                description=quick.message,
                trigger_data={"quick_alert": quick.type, **quick.data, "signal_confidence": signal.confidence},
                source="signal_fusion",
                confidence=signal.confidence,
                severity="critical" if quick.severity == "critical" else None,
            )
            if alert is not None:
                triggered.append(alert)
        return triggered

    def _rule_for_type(self, alert_type: str) -> AlertRule | None:
        default = self.rules.get(f"default_{alert_type}")
        if default is not None and default.enabled:
            return default
        for rule in self.rules.values():
            if rule.enabled and rule.alert_type == alert_type:
                return rule
        return None

    # ── rule management ────────────────────────────────────────────────

    async def create_alert_rule(
        self,
        name: str,
        threshold: AlertThreshold | dict[str, Any],
        *,
        description: str = "",
        enabled: bool = True,
    ) -> AlertRule:
        if isinstance(threshold, dict):
            threshold = AlertThreshold.from_dict(threshold)
        _validate(threshold)
        now = utc_now()
        rule = AlertRule(
            id=f"custom_{int(now.timestamp() * 1000)}",
            name=name,
            description=description,
            enabled=enabled,
            threshold=threshold,
            created_at=now,
            updated_at=now,
        )
        while rule.id in self.rules:
            rule.id += "_1"
        self.rules[rule.id] = rule
        await self._save_rule(rule)
        logger.info("[engine] created rule %s (%s)", rule.id, rule.alert_type)
        return rule

    async def update_alert_rule(self, rule_id: str, **changes: Any) -> AlertRule:
        """Apply a partial update; ``threshold`` may itself be a partial dict."""
        rule = self.rules.get(rule_id)
        if rule is None:
            raise RuleNotFoundError(rule_id)
        for key, value in changes.items():
            if key == "threshold":
                merged = {**rule.threshold.to_dict(), **(value.to_dict() if isinstance(value, AlertThreshold) else value)}
                threshold = AlertThreshold.from_dict(merged)
                _validate(threshold)
                rule.threshold = threshold
            elif key in ("name", "description", "enabled"):
                setattr(rule, key, value)
            else:
                raise ValueError(f"cannot update rule field {key!r}")
        rule.updated_at = utc_now()
        await self._save_rule(rule)
        return rule

    # ── queries ────────────────────────────────────────────────────────

    async def get_alert(self, alert_id: str) -> Alert | None:
        alert = self.active_alerts.get(alert_id)
        if alert is None and self._store is not None:
            try:
                alert = await self._store.get_alert(alert_id)
            except PersistenceError as exc:
                logger.error("[engine] alert lookup failed: %s", exc)
        return alert

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
        if self._store is not None and not self.degraded:
            try:
                return await self._store.get_alert_history(
                    alert_type=alert_type, severity=severity, symbol=symbol,
                    start_time=start_time, end_time=end_time, limit=limit,
                )
            except PersistenceError as exc:
                logger.error("[engine] history query failed, using memory: %s", exc)

        alerts = [
            a for a in self.active_alerts.values()
            if (not alert_type or a.type == alert_type)
            and (not severity or a.severity == severity)
            and (not symbol or a.symbol == symbol.upper())
            and (not start_time or a.timestamp >= start_time)
            and (not end_time or a.timestamp <= end_time)
        ]
        alerts.sort(key=lambda a: a.timestamp, reverse=True)
        return alerts[:limit] if limit else alerts

    def get_alert_effectiveness(self) -> dict[str, dict[str, Any]]:
        """Counters per alert type, summed over that type's rules."""
        out: dict[str, dict[str, Any]] = {}
        for rule in self.rules.values():
            eff = rule.effectiveness
            row = out.setdefault(rule.alert_type, {
                "total_triggers": 0,
                "true_positives": 0,
                "false_positives": 0,
                "_impact_sum": 0.0,
            })
            row["total_triggers"] += eff.total_triggers
            row["true_positives"] += eff.true_positives
            row["false_positives"] += eff.false_positives
            row["_impact_sum"] += eff.avg_market_impact * (eff.true_positives + eff.false_positives)
        for row in out.values():
            rated = row["true_positives"] + row["false_positives"]
            row["accuracy"] = row["true_positives"] / row["total_triggers"] if row["total_triggers"] else 0.0
            row["avg_market_impact"] = row.pop("_impact_sum") / rated if rated else 0.0
        return out

    async def record_feedback(
        self,
        alert_id: str,
        *,
        accurate: bool | None = None,
        market_impact: dict[str, Any] | None = None,
        action: str | None = None,
        notes: str | None = None,
    ) -> Alert:
        """Attach outcome feedback to an alert and update its rule's counters."""
        alert = await self.get_alert(alert_id)
        if alert is None:
            raise AlertNotFoundError(alert_id)

        if market_impact is not None:
            alert.market_impact = dict(market_impact)
        actions = dict(alert.user_actions or {})
        actions.update({k: v for k, v in {"accurate": accurate, "action": action, "notes": notes}.items() if v is not None})
        actions["recorded_at"] = utc_now().isoformat()
        alert.user_actions = actions

        rule = self.rules.get(alert.rule_id or "")
        if rule is not None and accurate is not None:
            eff = rule.effectiveness
            if accurate:
                eff.true_positives += 1
            else:
                eff.false_positives += 1
            if market_impact is not None:
                magnitude = abs(_num(market_impact, "magnitude", "price_change_percent", "priceChangePercent"))
                rated = eff.true_positives + eff.false_positives
                eff.avg_market_impact += (magnitude - eff.avg_market_impact) / rated
            rule.updated_at = utc_now()
            await self._save_rule(rule)

        await self.update_alert(alert)
        return alert

    async def sweep_retention(self, now: datetime | None = None) -> int:
        """Purge alerts older than the retention horizon from the store and memory."""
        cutoff = (now or utc_now()) - timedelta(days=self.retention_days)
        in_flight = self._queue.in_flight if self._queue is not None else frozenset()
        stale = [
            aid for aid, a in self.active_alerts.items()
            if a.timestamp < cutoff and aid not in in_flight
        ]
        for aid in stale:
            del self.active_alerts[aid]

        deleted = len(stale)
        if self._store is not None:
            try:
                deleted = max(deleted, await self._store.delete_alerts_before(cutoff))
            except PersistenceError as exc:
                logger.error("[engine] retention sweep failed: %s", exc)
        return deleted

    def get_stats(self) -> dict[str, Any]:
        return {
            "rules": len(self.rules),
            "enabled_rules": sum(1 for r in self.rules.values() if r.enabled),
            "active_alerts": len(self.active_alerts),
            "ticks": self.ticks,
            "degraded": self.degraded,
            "notifications": dict(self._dispatcher.stats),
            "queue": self._queue.get_stats() if self._queue is not None else None,
        }
