from __future__ import annotations

import asyncio
from typing import Any

import pytest

from altsignal.alerts.models import AnalysisState
from altsignal.alerts.notifications import NotificationDispatcher
from altsignal.alerts.queue import AnalysisQueue, analysis_priority, is_significant
from helpers import RecordingChannel, make_alert


class GatedEngine:
    """Holds every analysis open until the gate is released."""

    def __init__(self, result: dict[str, Any] | None = None) -> None:
        self.gate = asyncio.Event()
        self.started: list[str] = []
        self.result = result

    async def orchestrate(self, request: dict[str, Any]) -> dict[str, Any]:
        self.started.append(request["session_id"])
        await self.gate.wait()
        if self.result is not None:
            return {**self.result, "session_id": request["session_id"]}
        return {"success": True, "results": {}, "session_id": request["session_id"]}


class FailingEngine:
    async def orchestrate(self, request: dict[str, Any]) -> dict[str, Any]:
        raise RuntimeError("analysis backend unavailable")


def test_priority_formula() -> None:
    alert = make_alert("a", severity="critical", alert_type="insider_trading_spike", confidence=0.9)
    assert analysis_priority(alert) == pytest.approx(100 + 18 + 25)
    low = make_alert("b", severity="low", alert_type="sector_rotation", confidence=0.5)
    assert analysis_priority(low) == pytest.approx(25 + 10)


def test_significance_needs_a_confident_trade_card() -> None:
    card = {"header": {"confidence": 0.85}}
    assert is_significant({"success": True, "results": {"fusion": {"tradeCards": [card]}}}) is True
    assert is_significant({"success": True, "results": {"fusion": {"tradeCards": [{"header": {"confidence": 0.8}}]}}}) is False
    assert is_significant({"success": False, "results": {"fusion": {"tradeCards": [card]}}}) is False
    assert is_significant({"success": True, "results": {}}) is False


def test_max_concurrent_must_be_positive() -> None:
    with pytest.raises(ValueError):
        AnalysisQueue(GatedEngine(), max_concurrent=0)


@pytest.mark.asyncio
async def test_drain_starts_top_priorities_within_cap() -> None:
    engine = GatedEngine()
    queue = AnalysisQueue(engine, max_concurrent=2)
    alerts = [make_alert(f"a{i}", confidence=i / 10) for i in range(10)]
    for alert in alerts:
        assert queue.enqueue(alert) is not None

    started = await queue.drain()
    assert [j.alert.id for j in started] == ["a9", "a8"]
    assert queue.in_flight == frozenset({"a9", "a8"})
    assert queue.pending == 8
    assert alerts[9].analysis_state is AnalysisState.RUNNING
    assert alerts[0].analysis_state is AnalysisState.QUEUED

    # no free slot, nothing else starts
    assert await queue.drain() == []

    engine.gate.set()
    await queue.wait_idle(timeout=5)
    assert queue.in_flight == frozenset()
    assert alerts[9].analysis_state is AnalysisState.COMPLETED
    assert alerts[9].analysis_completed is True

    started = await queue.drain()
    assert [j.alert.id for j in started] == ["a7", "a6"]
    await queue.wait_idle(timeout=5)
    assert queue.get_stats()["completed"] == 4


@pytest.mark.asyncio
async def test_equal_priorities_run_in_arrival_order() -> None:
    engine = GatedEngine()
    engine.gate.set()
    queue = AnalysisQueue(engine, max_concurrent=1)
    for name in ("first", "second", "third"):
        queue.enqueue(make_alert(name))
    order = []
    while queue.pending:
        order.extend(j.alert.id for j in await queue.drain())
        await queue.wait_idle(timeout=5)
    assert order == ["first", "second", "third"]


@pytest.mark.asyncio
async def test_duplicate_enqueue_is_ignored() -> None:
    queue = AnalysisQueue(GatedEngine())
    alert = make_alert("dup")
    assert queue.enqueue(alert, ["technical"]) is not None
    assert queue.enqueue(alert) is None
    assert queue.pending == 1
    assert alert.analysis_session_id == "alert_dup"


@pytest.mark.asyncio
async def test_engine_failure_marks_alert_failed_and_frees_slot() -> None:
    queue = AnalysisQueue(FailingEngine(), max_concurrent=1)
    alert = make_alert("boom")
    queue.enqueue(alert)
    await queue.drain()
    await queue.wait_idle(timeout=5)
    assert alert.analysis_state is AnalysisState.FAILED
    assert alert.analysis_results["success"] is False
    assert "unavailable" in alert.analysis_results["error"]
    assert queue.in_flight == frozenset()
    assert queue.get_stats()["failed"] == 1


@pytest.mark.asyncio
async def test_unsuccessful_result_is_a_failure() -> None:
    engine = GatedEngine({"success": False, "results": {}})
    engine.gate.set()
    queue = AnalysisQueue(engine)
    alert = make_alert("partial")
    queue.enqueue(alert)
    await queue.drain()
    await queue.wait_idle(timeout=5)
    assert alert.analysis_state is AnalysisState.FAILED


@pytest.mark.asyncio
async def test_significant_result_sends_follow_up() -> None:
    card = {"header": {"title": "AAPL Long", "confidence": 0.9}}
    engine = GatedEngine({"success": True, "results": {"fusion": {"tradeCards": [card]}}})
    engine.gate.set()
    console = RecordingChannel("console")
    queue = AnalysisQueue(engine, dispatcher=NotificationDispatcher([console]))
    alert = make_alert("sig", severity="critical")
    alert.notifications_sent.append("console")
    queue.enqueue(alert)
    await queue.drain()
    await queue.wait_idle(timeout=5)
    assert len(console.payloads) == 1
    assert console.payloads[0]["title"] == "Analysis complete: AAPL"
    assert console.payloads[0]["trade_cards"] == 1
    assert engine.started == ["alert_sig"]


class SlowStore:
    def __init__(self) -> None:
        self.saved: list[str] = []

    async def save_alert(self, alert) -> None:
        await asyncio.sleep(0.2)
        self.saved.append(alert.analysis_state.value)


@pytest.mark.asyncio
async def test_cancelled_drain_does_not_strand_the_slot() -> None:
    engine = GatedEngine()
    engine.gate.set()
    store = SlowStore()
    queue = AnalysisQueue(engine, max_concurrent=1, store=store)
    first = make_alert("first")
    queue.enqueue(first)

    # a tick timing out around drain must not lose the job it popped
    try:
        await asyncio.wait_for(queue.drain(), timeout=0.05)
    except asyncio.TimeoutError:
        pass
    await queue.wait_idle(timeout=5)
    assert first.analysis_state is AnalysisState.COMPLETED
    assert queue.in_flight == frozenset()
    assert store.saved == ["analysis_running", "analysis_completed"]

    second = make_alert("second")
    queue.enqueue(second)
    assert [j.alert.id for j in await queue.drain()] == ["second"]
    await queue.wait_idle(timeout=5)
    assert second.analysis_state is AnalysisState.COMPLETED
