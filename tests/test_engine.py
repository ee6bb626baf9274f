from __future__ import annotations

import asyncio
from datetime import timedelta

import pytest

from altsignal.alerts.analysis import MockAnalysisEngine
from altsignal.alerts.engine import AlertEngine
from altsignal.alerts.models import AnalysisState
from altsignal.alerts.monitors import StaticMonitoringFeeds
from altsignal.alerts.notifications import NotificationDispatcher
from altsignal.alerts.queue import AnalysisQueue
from altsignal.collectors.types import INSIDER
from altsignal.errors import AlertNotFoundError, RuleNotFoundError
from altsignal.events import EventBus
from altsignal.fusion import fuse
from altsignal.utils import utc_now
from helpers import RecordingChannel, batch, insider_trade, make_rule


def _engine(feeds: StaticMonitoringFeeds | None = None, **kwargs):
    console = RecordingChannel("console")
    dispatcher = NotificationDispatcher([
        console,
        RecordingChannel("webhook", configured=False),
        RecordingChannel("email", configured=False),
    ])
    analysis = MockAnalysisEngine(seed=7, delay=0)
    queue = AnalysisQueue(analysis, max_concurrent=2, dispatcher=dispatcher)
    bus = EventBus()
    engine = AlertEngine(feeds or StaticMonitoringFeeds(), dispatcher=dispatcher, queue=queue, bus=bus, **kwargs)
    return engine, queue, analysis, console, bus


def _trigger(engine, rule, symbol="AAPL", when=None):
    return engine.trigger_alert(
        rule,
        symbol=symbol,
        title=f"Test {symbol}",
        description="test",
        trigger_data={"symbol": symbol},
        source="test_monitor",
        confidence=0.8,
        now=when,
    )


@pytest.mark.asyncio
async def test_load_without_store_seeds_defaults() -> None:
    engine, *_ = _engine()
    await engine.load()
    assert len(engine.rules) == 12
    assert engine.rules["default_custom_signal"].enabled is False
    assert engine.degraded is True


@pytest.mark.asyncio
async def test_cooldown_suppresses_then_releases(now) -> None:
    engine, *_ = _engine()
    rule = make_rule("volume_anomaly", cooldown_period_minutes=60)

    first = await _trigger(engine, rule, when=now)
    assert first is not None
    assert await _trigger(engine, rule, when=now + timedelta(minutes=10)) is None
    assert engine.in_cooldown("volume_anomaly", "AAPL", 60, now + timedelta(minutes=10)) is True

    later = await _trigger(engine, rule, when=now + timedelta(minutes=61))
    assert later is not None
    assert later.id != first.id
    assert rule.triggered_count == 2
    assert rule.effectiveness.total_triggers == 2


@pytest.mark.asyncio
async def test_zero_cooldown_never_suppresses(now) -> None:
    engine, *_ = _engine()
    rule = make_rule("volume_anomaly", cooldown_period_minutes=0)

    first = await _trigger(engine, rule, when=now)
    assert first.metadata["suppress_until"] == now
    assert await _trigger(engine, rule, when=now + timedelta(minutes=5)) is not None
    assert rule.triggered_count == 2

@pytest.mark.asyncio
async def test_cooldown_is_per_symbol(now) -> None:
    engine, *_ = _engine()
    rule = make_rule("volume_anomaly")
    assert await _trigger(engine, rule, "AAPL", now) is not None
    assert await _trigger(engine, rule, "MSFT", now) is not None


@pytest.mark.asyncio
async def test_alert_being_analysed_suppresses_past_window(now) -> None:
    engine, queue, *_ = _engine()
    rule = make_rule("volume_anomaly", auto_trigger_analysis=True, analysis_modules=["technical"])
    first = await _trigger(engine, rule, when=now)
    assert first.analysis_state is AnalysisState.QUEUED
    assert queue.pending == 1
    assert await _trigger(engine, rule, when=now + timedelta(minutes=90)) is None


@pytest.mark.asyncio
async def test_price_anomaly_tick_triggers_and_queues_analysis() -> None:
    feeds = StaticMonitoringFeeds({"price_anomaly": [{
        "symbol": "NVDA", "price_change_percent": 12.0, "volume_ratio": 3.0, "window_minutes": 5,
    }]})
    engine, queue, analysis, console, bus = _engine(feeds)
    await engine.load()

    triggered = await engine.tick()
    assert len(triggered) == 1
    alert = triggered[0]
    assert alert.type == "price_anomaly"
    assert alert.severity == "high"
    assert alert.title == "Price Anomaly: NVDA"
    assert alert.analysis_triggered is True
    assert alert.analysis_session_id == f"alert_{alert.id}"
    assert alert.notifications_sent == ["console"]
    assert alert.notifications_failed == []
    assert console.payloads[0]["symbol"] == "NVDA"
    assert any(e.kind == "alert" for e in bus.drain())

    started = await queue.drain()
    assert [j.alert.id for j in started] == [alert.id]
    await queue.wait_idle(timeout=5)
    assert analysis.calls[0]["requested_modules"] == ["technical", "anomaly", "risk", "fusion"]
    assert analysis.calls[0]["priority"] == "high"
    assert alert.analysis_state is AnalysisState.COMPLETED

    # same event next tick is inside the cooldown
    assert await engine.tick() == []


@pytest.mark.asyncio
async def test_events_without_symbol_are_skipped() -> None:
    feeds = StaticMonitoringFeeds({"volume_anomaly": [{"volume_ratio": 9.0}]})
    engine, *_ = _engine(feeds)
    await engine.load()
    assert await engine.tick() == []


@pytest.mark.asyncio
async def test_failing_rule_does_not_block_others() -> None:
    feeds = StaticMonitoringFeeds({"volume_anomaly": [{"symbol": "AMD", "volume_ratio": 6.0, "window_minutes": 5}]})
    engine, *_ = _engine(feeds)
    await engine.load()
    await engine.create_alert_rule("Broken", {
        "alert_type": "volume_anomaly",
        "severity": "low",
        "conditions": {"volumeRatio": "lots"},
    })
    triggered = await engine.tick()
    assert [a.rule_id for a in triggered] == ["default_volume_anomaly"]


@pytest.mark.asyncio
async def test_breaking_news_uses_impact_assessment() -> None:
    event = {
        "symbol": "ACME",
        "symbols": ["ACME"],
        "title": "ACME hit with FDA lawsuit",
        "text": "ACME hit with FDA lawsuit over its flagship drug",
        "category": "regulatory",
        "impact_score": 0.97,
        "credibility": 0.95,
    }
    engine, *_ = _engine(StaticMonitoringFeeds({"breaking_news": [event]}))
    await engine.load()
    [alert] = await engine.tick()
    assert alert.type == "breaking_news"
    assert alert.severity == "critical"
    assert alert.symbol == "ACME"
    assert alert.description == "CRITICAL impact expected for regulatory"
    assert alert.trigger_data["impact_assessment"]["market_impact"] == "critical"


@pytest.mark.asyncio
async def test_breaking_news_can_be_switched_off() -> None:
    event = {"symbol": "ACME", "text": "FDA lawsuit", "impact_score": 0.97, "credibility": 0.95}
    engine, *_ = _engine(StaticMonitoringFeeds({"breaking_news": [event]}), breaking_news_enabled=False)
    await engine.load()
    assert await engine.tick() == []


@pytest.mark.asyncio
async def test_unconditional_custom_rule_fires_on_schedule() -> None:
    engine, *_ = _engine()
    await engine.load()
    await engine.update_alert_rule("default_custom_signal", enabled=True)
    [alert] = await engine.tick()
    assert alert.symbol == "MARKET"
    assert alert.trigger_data["scheduled"] is True
    assert await engine.tick() == []


@pytest.mark.asyncio
async def test_evaluate_signal_promotes_quick_alerts(now) -> None:
    engine, *_ = _engine()
    await engine.load()
    trades = [insider_trade("buy", ts=now - timedelta(days=1), significance=0.9) for _ in range(3)]
    signal = fuse("AAPL", [batch(INSIDER, trades, ts=now)], now=now)

    promoted = await engine.evaluate_signal(signal)
    # strong_signal maps to the custom rule, which is disabled by default
    assert [a.type for a in promoted] == ["insider_trading_spike"]
    assert promoted[0].metadata["source"] == "signal_fusion"
    assert await engine.evaluate_signal(signal) == []


@pytest.mark.asyncio
async def test_rule_management() -> None:
    engine, *_ = _engine()
    await engine.load()

    rule = await engine.create_alert_rule("Big options", {
        "alert_type": "unusual_options_activity",
        "severity": "high",
        "conditions": {"volumeRatio": 20},
    }, description="very large options prints")
    assert rule.id.startswith("custom_")
    assert engine.rules[rule.id] is rule

    updated = await engine.update_alert_rule(rule.id, threshold={"cooldown_period_minutes": 5}, enabled=False)
    assert updated.threshold.cooldown_period_minutes == 5
    assert updated.threshold.conditions == {"volumeRatio": 20}
    assert updated.enabled is False

    with pytest.raises(RuleNotFoundError):
        await engine.update_alert_rule("missing", enabled=True)
    with pytest.raises(ValueError):
        await engine.update_alert_rule(rule.id, triggered_count=99)
    with pytest.raises(ValueError):
        await engine.create_alert_rule("Nope", {"alert_type": "weather", "severity": "low"})
    with pytest.raises(ValueError):
        await engine.create_alert_rule("Loud", {"alert_type": "volume_anomaly", "severity": "extreme"})
    with pytest.raises(ValueError):
        await engine.update_alert_rule(rule.id, threshold={"severity": "bogus"})
    with pytest.raises(ValueError):
        await engine.update_alert_rule(rule.id, threshold={"cooldown_period_minutes": -5})
    assert engine.rules[rule.id].threshold.severity == "high"
    assert engine.rules[rule.id].threshold.cooldown_period_minutes == 5


@pytest.mark.asyncio
async def test_feedback_updates_effectiveness(now) -> None:
    engine, *_ = _engine()
    await engine.load()
    rule = engine.rules["default_volume_anomaly"]
    alert = await _trigger(engine, rule, when=now)

    await engine.record_feedback(alert.id, accurate=True, market_impact={"magnitude": -4.0}, action="traded")
    assert alert.user_actions["action"] == "traded"
    assert rule.effectiveness.true_positives == 1
    assert rule.effectiveness.avg_market_impact == pytest.approx(4.0)

    stats = engine.get_alert_effectiveness()["volume_anomaly"]
    assert stats["accuracy"] == pytest.approx(1.0)
    assert stats["avg_market_impact"] == pytest.approx(4.0)

    with pytest.raises(AlertNotFoundError):
        await engine.record_feedback("nope", accurate=False)


@pytest.mark.asyncio
async def test_history_filters_in_memory(now) -> None:
    engine, *_ = _engine()
    rule = make_rule("volume_anomaly")
    await _trigger(engine, rule, "AAPL", now - timedelta(hours=2))
    await _trigger(engine, rule, "MSFT", now)
    history = await engine.get_alert_history(symbol="msft")
    assert [a.symbol for a in history] == ["MSFT"]
    assert len(await engine.get_alert_history(start_time=now - timedelta(hours=1))) == 1
    assert [a.symbol for a in await engine.get_alert_history()] == ["MSFT", "AAPL"]


@pytest.mark.asyncio
async def test_retention_sweep_drops_old_alerts() -> None:
    engine, *_ = _engine(retention_days=30)
    rule = make_rule("volume_anomaly")
    old = await _trigger(engine, rule, "AAPL", utc_now() - timedelta(days=40))
    fresh = await _trigger(engine, rule, "MSFT")
    assert await engine.sweep_retention() == 1
    assert old.id not in engine.active_alerts
    assert fresh.id in engine.active_alerts


@pytest.mark.asyncio
async def test_concurrent_matches_produce_one_alert(now) -> None:
    engine, *_ = _engine()
    rule = make_rule("volume_anomaly")
    results = await asyncio.gather(*(_trigger(engine, rule, when=now) for _ in range(5)))
    assert sum(1 for r in results if r is not None) == 1
