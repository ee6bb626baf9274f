from __future__ import annotations

import asyncio

import pytest
from fastapi.testclient import TestClient

from altsignal.api.app import create_app
from altsignal.config import Settings
from altsignal.pipeline import build_pipeline
from helpers import make_alert


@pytest.fixture
def pipeline():
    pipe = build_pipeline(Settings(_env_file=None), mock=True, persist=False)
    asyncio.run(pipe.engine.load())
    return pipe


@pytest.fixture
def client(pipeline):
    with TestClient(create_app(pipeline)) as c:
        yield c


def test_routes_are_registered(pipeline) -> None:
    app = create_app(pipeline)
    paths = {route.path for route in app.router.routes}
    for path in (
        "/api/health",
        "/api/alerts",
        "/api/alerts/effectiveness",
        "/api/alerts/{alert_id}/feedback",
        "/api/rules",
        "/api/rules/{rule_id}",
        "/api/collectors",
        "/api/signals/{symbol}",
    ):
        assert path in paths


def test_health_reports_components(client) -> None:
    body = client.get("/api/health").json()
    assert body["mock_mode"] is True
    assert body["components"]["collectors"] == 5
    assert body["engine"]["rules"] == 12


def test_alert_history_and_feedback(client, pipeline) -> None:
    alert = make_alert("volume_anomaly_AAPL_1", symbol="AAPL")
    alert.rule_id = "default_volume_anomaly"
    pipeline.engine.active_alerts[alert.id] = alert

    listed = client.get("/api/alerts", params={"symbol": "AAPL"}).json()
    assert [a["id"] for a in listed] == [alert.id]
    assert client.get("/api/alerts", params={"symbol": "MSFT"}).json() == []
    assert client.get("/api/alerts", params={"since": "yesterday"}).status_code == 422

    resp = client.post(f"/api/alerts/{alert.id}/feedback", json={"accurate": True, "action": "watched"})
    assert resp.status_code == 200
    assert resp.json()["user_actions"]["action"] == "watched"
    assert client.post("/api/alerts/nope/feedback", json={"accurate": False}).status_code == 404
    assert client.get("/api/alerts/nope").status_code == 404

    eff = client.get("/api/alerts/effectiveness").json()
    assert eff["volume_anomaly"]["true_positives"] == 1


def test_rule_create_and_update(client) -> None:
    rules = client.get("/api/rules").json()
    assert len(rules) == 12

    created = client.post("/api/rules", json={
        "name": "Huge congressional buys",
        "threshold": {
            "alert_type": "congressional_trading_unusual",
            "severity": "critical",
            "conditions": {"congressionalTradeValueMin": 1_000_000},
        },
    })
    assert created.status_code == 201
    rule_id = created.json()["id"]

    patched = client.patch(f"/api/rules/{rule_id}", json={"enabled": False, "threshold": {"severity": "high"}})
    assert patched.status_code == 200
    assert patched.json()["enabled"] is False
    assert patched.json()["threshold"]["severity"] == "high"
    assert patched.json()["threshold"]["conditions"] == {"congressionalTradeValueMin": 1_000_000}

    assert client.patch("/api/rules/missing", json={"enabled": True}).status_code == 404
    assert client.patch(f"/api/rules/{rule_id}", json={"threshold": {"alert_type": "weather"}}).status_code == 422
    assert client.patch(f"/api/rules/{rule_id}", json={"threshold": {"severity": "bogus"}}).status_code == 422
    bad = client.post("/api/rules", json={"name": "x", "threshold": {"alert_type": "weather", "severity": "low"}})
    assert bad.status_code == 422


def test_collectors_and_signals(client) -> None:
    status = client.get("/api/collectors").json()
    assert {c["name"] for c in status["collectors"]} == {"reddit", "twitter", "insider", "legislator", "news"}
    assert status["dormant"] == []

    signal = client.get("/api/signals/aapl").json()
    assert signal["symbol"] == "AAPL"
    assert signal["sources"] == []

    refreshed = client.get("/api/signals/AAPL", params={"refresh": True}).json()
    assert set(refreshed["sources"]) <= {"social", "insider", "legislator", "news"}
    assert -1.0 <= refreshed["trading_signals"]["combined"] <= 1.0
