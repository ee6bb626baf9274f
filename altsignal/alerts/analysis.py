"""Analysis engine boundary: LLM-backed, mock, and breaking-news impact assessors.

The engine receives ``{session_id, symbol, requested_modules, priority,
allow_fallbacks, require_validation, inputs}`` and returns
``{success, results, session_id}``; a trade recommendation appears under
``results["fusion"]["tradeCards"]`` with a ``header.confidence`` in [0, 1].
"""

from __future__ import annotations

import asyncio
import json
import logging
import random
from dataclasses import dataclass, field
from typing import Any, Literal, Protocol

from altsignal.errors import AnalysisDispatchError
from altsignal.llm_client import LLMClient
from altsignal.utils import clamp, utc_now

logger = logging.getLogger(__name__)

ImpactLevel = Literal["low", "medium", "high", "critical"]


class AnalysisEngine(Protocol):
    async def orchestrate(self, request: dict[str, Any]) -> dict[str, Any]: ...


# ── Breaking news impact ──────────────────────────────────────────────

@dataclass(frozen=True)
class ImpactAssessment:
    market_impact: ImpactLevel
    confidence: float
    affected_symbols: list[str] = field(default_factory=list)
    affected_sectors: list[str] = field(default_factory=list)
    summary: str = ""


class ImpactAssessor(Protocol):
    async def assess(self, event: dict[str, Any]) -> ImpactAssessment: ...


def impact_level(score: float) -> ImpactLevel:
    if score >= 0.95:
        return "critical"
    if score >= 0.8:
        return "high"
    if score >= 0.5:
        return "medium"
    return "low"


class HeuristicImpactAssessor:
    """Grades a news event from its own impact score and source credibility."""

    async def assess(self, event: dict[str, Any]) -> ImpactAssessment:
        impact = float(event.get("impact_score") or 0.0)
        credibility = float(event.get("credibility") or 0.5)
        symbols = [s for s in event.get("symbols") or [] if s]
        if not symbols and event.get("symbol") and event["symbol"] != "MARKET":
            symbols = [event["symbol"]]
        category = event.get("category") or "general"
        return ImpactAssessment(
            market_impact=impact_level(impact),
            confidence=clamp((impact + credibility) / 2, 0.0, 1.0),
            affected_symbols=symbols,
            affected_sectors=[category],
            summary=str(event.get("title") or ""),
        )


_IMPACT_PROMPT = """You grade breaking financial news for market impact.
Reply with a JSON object:
{"market_impact": "low|medium|high|critical", "confidence": 0..1,
 "affected_symbols": [tickers], "affected_sectors": [names], "summary": "one sentence"}"""


class LLMImpactAssessor:
    """Asks the LLM for an impact grade; falls back to the heuristic on failure."""

    def __init__(self, client: LLMClient, fallback: ImpactAssessor | None = None) -> None:
        self._client = client
        self._fallback = fallback or HeuristicImpactAssessor()

    async def assess(self, event: dict[str, Any]) -> ImpactAssessment:
        prompt = json.dumps({k: event.get(k) for k in ("title", "text", "symbols", "category", "outlet")}, default=str)
        try:
            data = await self._client.complete_json(_IMPACT_PROMPT, prompt)
        except AnalysisDispatchError as exc:
            logger.warning("[analysis] impact assessment fell back to heuristic: %s", exc)
            return await self._fallback.assess(event)

        level = str(data.get("market_impact", "")).lower()
        if level not in ("low", "medium", "high", "critical"):
            return await self._fallback.assess(event)
        return ImpactAssessment(
            market_impact=level,  # type: ignore[arg-type]
            confidence=clamp(float(data.get("confidence") or 0.0), 0.0, 1.0),
            affected_symbols=[str(s).upper() for s in data.get("affected_symbols") or []],
            affected_sectors=[str(s) for s in data.get("affected_sectors") or []],
            summary=str(data.get("summary") or ""),
        )


# ── Analysis engines ──────────────────────────────────────────────────

_ANALYSIS_PROMPT = """You are a trading analyst. For the alert below, run the
requested analysis modules and fuse them into trade ideas.
Reply with a JSON object whose keys are the module names; each value holds
that module's findings. The "fusion" key must hold
{"tradeCards": [{"header": {"title": str, "confidence": 0..1,
"timeframe": str, "trade_type": "Long|Short|Options Play|Pairs Trade"},
"thesis": str}]}. Return an empty tradeCards list when nothing is actionable."""


class LLMAnalysisEngine:
    def __init__(self, client: LLMClient) -> None:
        self._client = client

    async def orchestrate(self, request: dict[str, Any]) -> dict[str, Any]:
        session_id = request["session_id"]
        modules = list(request.get("requested_modules") or [])
        logger.info(
            "[analysis] session %s for %s modules=%s priority=%s",
            session_id, request.get("symbol"), modules, request.get("priority"),
        )
        results = await self._client.complete_json(_ANALYSIS_PROMPT, json.dumps(request, default=str))

        missing = [m for m in modules if m not in results]
        if missing and not request.get("allow_fallbacks", True):
            raise AnalysisDispatchError(f"session {session_id} missing modules {missing}")
        if request.get("require_validation"):
            _validate_trade_cards(results)
        # Partial output counts as success when fallbacks are allowed.
        success = len(missing) < len(modules) if modules else bool(results)
        return {"success": success, "results": results, "session_id": session_id}


def _validate_trade_cards(results: dict[str, Any]) -> None:
    cards = (results.get("fusion") or {}).get("tradeCards") or []
    if not isinstance(cards, list):
        raise AnalysisDispatchError("fusion.tradeCards is not a list")
    for card in cards:
        header = card.get("header") if isinstance(card, dict) else None
        if not isinstance(header, dict) or not isinstance(header.get("confidence"), (int, float)):
            raise AnalysisDispatchError("trade card without a numeric header.confidence")


_TRADE_TYPES = ("Long", "Short", "Options Play")
_TIMEFRAMES = ("1-3 days", "1-2 weeks", "2-4 weeks")


class MockAnalysisEngine:
    """Returns plausible module output after a short simulated delay."""

    def __init__(self, seed: int | None = None, delay: float = 0.05) -> None:
        self._rng = random.Random(seed)
        self._delay = delay
        self.calls: list[dict[str, Any]] = []

    async def orchestrate(self, request: dict[str, Any]) -> dict[str, Any]:
        self.calls.append(request)
        await asyncio.sleep(self._delay)
        symbol = request.get("symbol", "")
        results: dict[str, Any] = {}
        for module in request.get("requested_modules") or []:
            if module == "fusion":
                continue
            results[module] = {
                "score": round(self._rng.uniform(-1, 1), 3),
                "confidence": round(self._rng.uniform(0.4, 0.95), 3),
                "generated_at": utc_now().isoformat(),
            }
        if "fusion" in (request.get("requested_modules") or []):
            cards = []
            for _ in range(self._rng.randint(0, 2)):
                cards.append({
                    "id": f"{symbol}_{int(utc_now().timestamp() * 1000)}",
                    "symbol": symbol,
                    "header": {
                        "title": f"{symbol} {self._rng.choice(_TRADE_TYPES)} setup",
                        "confidence": round(self._rng.uniform(0.5, 0.95), 3),
                        "timeframe": self._rng.choice(_TIMEFRAMES),
                        "trade_type": self._rng.choice(_TRADE_TYPES),
                    },
                })
            results["fusion"] = {"tradeCards": cards}
        return {"success": True, "results": results, "session_id": request["session_id"]}
