from __future__ import annotations

from datetime import timedelta

import pytest

from altsignal.alerts.analysis import MockAnalysisEngine
from altsignal.alerts.engine import AlertEngine
from altsignal.alerts.models import AnalysisState, default_rules
from altsignal.alerts.monitors import StaticMonitoringFeeds
from altsignal.alerts.queue import AnalysisQueue
from altsignal.db.database import Database
from altsignal.db.store import AlertStore
from altsignal.errors import PersistenceError
from altsignal.utils import utc_now
from helpers import make_alert, make_rule


def _store(tmp_path) -> AlertStore:
    return AlertStore(Database(f"sqlite+aiosqlite:///{tmp_path}/alerts.db"))


@pytest.mark.asyncio
async def test_rule_round_trip(tmp_path) -> None:
    store = _store(tmp_path)
    await store.init()
    try:
        rule = make_rule("insider_trading_spike", conditions={"insiderTradeValueMin": 1_000_000})
        rule.triggered_count = 3
        rule.effectiveness.true_positives = 2
        await store.save_rule(rule)

        [loaded] = await store.load_rules()
        assert loaded.to_dict() == rule.to_dict()
        assert loaded.created_at.tzinfo is not None

        rule.enabled = False
        await store.save_rule(rule)
        [reloaded] = await store.load_rules()
        assert reloaded.enabled is False
    finally:
        await store.close()


@pytest.mark.asyncio
async def test_alert_history_filters_and_purge(tmp_path) -> None:
    store = _store(tmp_path)
    await store.init()
    try:
        now = utc_now()
        old = make_alert("old", symbol="AAPL", ts=now - timedelta(days=40))
        recent = make_alert("recent", symbol="MSFT", severity="high", ts=now - timedelta(minutes=5))
        recent.analysis_state = AnalysisState.COMPLETED
        recent.notifications_sent.append("console")
        for alert in (old, recent):
            await store.save_alert(alert)

        fetched = await store.get_alert("recent")
        assert fetched.to_dict() == recent.to_dict()
        assert await store.get_alert("missing") is None

        assert [a.id for a in await store.get_alert_history()] == ["recent", "old"]
        assert [a.id for a in await store.get_alert_history(severity="high")] == ["recent"]
        assert [a.id for a in await store.get_alert_history(symbol="aapl")] == ["old"]
        assert [a.id for a in await store.recent_alerts(now - timedelta(hours=1))] == ["recent"]

        assert await store.delete_alerts_before(now - timedelta(days=30)) == 1
        assert await store.get_alert("old") is None
    finally:
        await store.close()


@pytest.mark.asyncio
async def test_engine_state_survives_restart(tmp_path) -> None:
    store = _store(tmp_path)
    engine = AlertEngine(StaticMonitoringFeeds(), store=store)
    await engine.load()
    assert len(engine.rules) == len(default_rules())
    assert engine.degraded is False

    rule = engine.rules["default_volume_anomaly"]
    alert = await engine.trigger_alert(
        rule, symbol="AAPL", title="Volume Anomaly: AAPL", description="6.0x normal volume",
        trigger_data={"volume_ratio": 6.0}, source="volume_monitor", confidence=0.8,
    )
    await engine.update_alert_rule(rule.id, enabled=False)
    await store.close()

    store2 = _store(tmp_path)
    restarted = AlertEngine(StaticMonitoringFeeds(), store=store2)
    await restarted.load()
    try:
        assert restarted.rules["default_volume_anomaly"].enabled is False
        assert restarted.rules["default_volume_anomaly"].triggered_count == 1
        assert alert.id in restarted.active_alerts
        # cooldown is enforced across the restart
        assert restarted.in_cooldown("volume_anomaly", "AAPL", 15) is True
        history = await restarted.get_alert_history(alert_type="volume_anomaly")
        assert [a.id for a in history] == [alert.id]
    finally:
        await store2.close()


class DownStore:
    async def init(self) -> None:
        raise PersistenceError("database is unreachable")

    async def save_alert(self, alert) -> None:
        raise PersistenceError("database is unreachable")

    async def save_rule(self, rule) -> None:
        raise PersistenceError("database is unreachable")


@pytest.mark.asyncio
async def test_unreachable_store_runs_degraded() -> None:
    feeds = StaticMonitoringFeeds({"volume_anomaly": [{"symbol": "AMD", "volume_ratio": 7.0}]})
    engine = AlertEngine(feeds, store=DownStore())
    await engine.load()
    assert engine.degraded is True
    assert len(engine.rules) == len(default_rules())

    [alert] = await engine.tick()
    assert alert.symbol == "AMD"
    assert [a.id for a in await engine.get_alert_history()] == [alert.id]


async def _interrupted_alert(tmp_path):
    """Trigger an auto-analysis rule and shut down before the queue drains."""
    store = _store(tmp_path)
    queue = AnalysisQueue(MockAnalysisEngine(seed=1, delay=0))
    engine = AlertEngine(StaticMonitoringFeeds(), store=store, queue=queue)
    await engine.load()
    rule = engine.rules["default_volume_anomaly"]
    alert = await engine.trigger_alert(
        rule, symbol="AAPL", title="Volume Anomaly: AAPL", description="6.0x normal volume",
        trigger_data={"volume_ratio": 6.0}, source="volume_monitor", confidence=0.8,
    )
    assert alert.analysis_state is AnalysisState.QUEUED
    await store.close()
    return alert


@pytest.mark.asyncio
async def test_restart_requeues_interrupted_analysis(tmp_path) -> None:
    alert = await _interrupted_alert(tmp_path)

    store = _store(tmp_path)
    queue = AnalysisQueue(MockAnalysisEngine(seed=1, delay=0))
    restarted = AlertEngine(StaticMonitoringFeeds(), store=store, queue=queue)
    await restarted.load()
    try:
        assert queue.pending == 1
        assert [j.alert.id for j in await queue.drain()] == [alert.id]
        await queue.wait_idle(timeout=5)
        restored = restarted.active_alerts[alert.id]
        assert restored.analysis_state is AnalysisState.COMPLETED
        # once analysed, only the 15-minute window applies
        later = utc_now() + timedelta(days=2)
        assert restarted.in_cooldown("volume_anomaly", "AAPL", 15, later) is False
    finally:
        await store.close()


@pytest.mark.asyncio
async def test_restart_without_queue_fails_interrupted_analysis(tmp_path) -> None:
    alert = await _interrupted_alert(tmp_path)

    store = _store(tmp_path)
    restarted = AlertEngine(StaticMonitoringFeeds(), store=store)
    await restarted.load()
    try:
        restored = restarted.active_alerts[alert.id]
        assert restored.analysis_state is AnalysisState.FAILED
        assert (await store.get_alert(alert.id)).analysis_state is AnalysisState.FAILED

        rule = restarted.rules["default_volume_anomaly"]
        later = utc_now() + timedelta(days=2)
        assert restarted.in_cooldown("volume_anomaly", "AAPL", 15, later) is False
        fresh = await restarted.trigger_alert(
            rule, symbol="AAPL", title="Volume Anomaly: AAPL", description="7.0x normal volume",
            trigger_data={"volume_ratio": 7.0}, source="volume_monitor", confidence=0.8, now=later,
        )
        assert fresh is not None
    finally:
        await store.close()
