from __future__ import annotations

import json
from types import SimpleNamespace
from typing import Any

import pytest

from altsignal.alerts.analysis import (
    HeuristicImpactAssessor,
    LLMAnalysisEngine,
    LLMImpactAssessor,
    MockAnalysisEngine,
    impact_level,
)
from altsignal.errors import AnalysisDispatchError
from altsignal.llm_client import LLMClient


def _client(*replies: Any) -> LLMClient:
    """LLMClient whose transport replays *replies* (strings or exceptions)."""
    queue = list(replies)

    async def create(**kwargs: Any):
        reply = queue.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return SimpleNamespace(
            choices=[SimpleNamespace(message=SimpleNamespace(content=reply))],
            usage=SimpleNamespace(prompt_tokens=10, completion_tokens=5),
        )

    client = object.__new__(LLMClient)
    client.provider = "test"
    client.model = "test-model"
    client.max_retries = 2
    client.backoff_base = 0.0
    client._client = SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))
    client._prompt_tokens = 0
    client._completion_tokens = 0
    return client


def _request(modules: list[str], **extra: Any) -> dict[str, Any]:
    return {
        "session_id": "alert_x",
        "symbol": "AAPL",
        "requested_modules": modules,
        "priority": "high",
        "allow_fallbacks": True,
        "require_validation": True,
        **extra,
    }


@pytest.mark.asyncio
async def test_complete_json_retries_and_strips_fences() -> None:
    client = _client(RuntimeError("502"), '```json\n{"ok": true}\n```')
    assert await client.complete_json("sys", "user") == {"ok": True}
    assert client.token_usage["total_tokens"] == 15


@pytest.mark.asyncio
async def test_complete_json_rejects_non_objects() -> None:
    with pytest.raises(AnalysisDispatchError):
        await _client("[1, 2]").complete_json("sys", "user")
    with pytest.raises(AnalysisDispatchError):
        await _client("not json").complete_json("sys", "user")
    with pytest.raises(AnalysisDispatchError):
        await _client(RuntimeError("a"), RuntimeError("b")).complete("sys", "user")


@pytest.mark.asyncio
async def test_llm_engine_partial_output_counts_with_fallbacks() -> None:
    reply = {"technical": {"trend": "up"}, "fusion": {"tradeCards": [{"header": {"confidence": 0.9}}]}}
    engine = LLMAnalysisEngine(_client(json.dumps(reply)))
    result = await engine.orchestrate(_request(["technical", "risk", "fusion"]))
    assert result["success"] is True
    assert result["session_id"] == "alert_x"
    assert "risk" not in result["results"]


@pytest.mark.asyncio
async def test_llm_engine_strict_mode_and_validation() -> None:
    reply = json.dumps({"technical": {}})
    engine = LLMAnalysisEngine(_client(reply))
    with pytest.raises(AnalysisDispatchError):
        await engine.orchestrate(_request(["technical", "risk"], allow_fallbacks=False))

    bad_cards = json.dumps({"fusion": {"tradeCards": [{"header": {"confidence": "high"}}]}})
    with pytest.raises(AnalysisDispatchError):
        await LLMAnalysisEngine(_client(bad_cards)).orchestrate(_request(["fusion"]))

    nothing = json.dumps({"other": {}})
    result = await LLMAnalysisEngine(_client(nothing)).orchestrate(_request(["technical"]))
    assert result["success"] is False


def test_impact_levels() -> None:
    assert impact_level(0.96) == "critical"
    assert impact_level(0.8) == "high"
    assert impact_level(0.5) == "medium"
    assert impact_level(0.1) == "low"


@pytest.mark.asyncio
async def test_heuristic_assessor() -> None:
    assessment = await HeuristicImpactAssessor().assess(
        {"symbol": "MARKET", "impact_score": 0.85, "credibility": 0.95, "category": "regulatory"}
    )
    assert assessment.market_impact == "high"
    assert assessment.confidence == pytest.approx(0.9)
    assert assessment.affected_symbols == []
    assert assessment.affected_sectors == ["regulatory"]


@pytest.mark.asyncio
async def test_llm_assessor_falls_back_on_bad_reply() -> None:
    event = {"symbol": "ACME", "symbols": ["ACME"], "impact_score": 0.6, "credibility": 0.5}
    fallback = await LLMImpactAssessor(_client("garbage")).assess(event)
    assert fallback.market_impact == "medium"

    reply = json.dumps({"market_impact": "critical", "confidence": 0.9, "affected_symbols": ["acme"]})
    graded = await LLMImpactAssessor(_client(reply)).assess(event)
    assert graded.market_impact == "critical"
    assert graded.affected_symbols == ["ACME"]


@pytest.mark.asyncio
async def test_mock_engine_shapes_fusion_output() -> None:
    engine = MockAnalysisEngine(seed=11, delay=0)
    result = await engine.orchestrate(_request(["technical", "fusion"]))
    assert result["success"] is True
    assert set(result["results"]) == {"technical", "fusion"}
    for card in result["results"]["fusion"]["tradeCards"]:
        assert 0.5 <= card["header"]["confidence"] <= 0.95
    assert engine.calls[0]["symbol"] == "AAPL"
