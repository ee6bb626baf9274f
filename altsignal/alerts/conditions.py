"""Rule condition evaluation against live monitoring events.

Every condition present on a rule must hold (logical AND); conditions the
rule does not set are unconstrained, so an empty map always matches.
Threshold conditions fail when the event lacks the field they test; window
conditions (``timeWindow``, ``congressionalTimingWindow``) only constrain
events that report a window.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Mapping

from altsignal.errors import RuleEvaluationError

logger = logging.getLogger(__name__)

_TITLE_ALIASES = {
    "ceo": ("ceo", "chief executive"),
    "cfo": ("cfo", "chief financial"),
    "coo": ("coo", "chief operating"),
    "cto": ("cto", "chief technology"),
}


def _at_least(actual: Any, expected: Any) -> bool:
    return float(actual) >= float(expected)


def _abs_at_least(actual: Any, expected: Any) -> bool:
    return abs(float(actual)) >= float(expected)


def _at_most(actual: Any, expected: Any) -> bool:
    return float(actual) <= float(expected)


def _title_matches(actual: Any, expected: Any) -> bool:
    title = str(actual or "").lower()
    for level in expected or []:
        needles = _TITLE_ALIASES.get(str(level).lower(), (str(level).lower(),))
        if any(n in title for n in needles):
            return True
    return False


def _keyword_matches(actual: Any, expected: Any) -> bool:
    text = str(actual or "").lower()
    return any(str(k).lower() in text for k in expected or [])


@dataclass(frozen=True)
class ConditionSpec:
    fields: tuple[str, ...]
    check: Callable[[Any, Any], bool]
    lenient: bool = False  # missing field leaves the condition unconstrained


CONDITIONS: dict[str, ConditionSpec] = {
    "insiderTradeValueMin": ConditionSpec(("value", "tradeValue"), _at_least),
    "insiderTradeVolumeRatio": ConditionSpec(("volume_ratio", "volumeRatio"), _at_least),
    "insiderExecutiveLevel": ConditionSpec(("insider_title", "insiderTitle"), _title_matches),
    "congressionalTradeValueMin": ConditionSpec(("value", "amount"), _at_least),
    "congressionalTimingWindow": ConditionSpec(("days_since_filing", "daysSinceFiling"), _at_most, lenient=True),
    "sentimentVelocity": ConditionSpec(("velocity", "postsPerHour"), _at_least),
    "mentionSpike": ConditionSpec(("mention_spike", "mentionSpike"), _at_least),
    "sentimentScoreChange": ConditionSpec(("sentiment_change", "sentimentChange"), _abs_at_least),
    "volumeRatio": ConditionSpec(("volume_ratio", "volumeRatio"), _at_least),
    "priceChangePercent": ConditionSpec(("price_change_percent", "priceChangePercent"), _abs_at_least),
    "timeWindow": ConditionSpec(("window_minutes", "timeWindow"), _at_most, lenient=True),
    "newsImpactScore": ConditionSpec(("impact_score", "impactScore"), _at_least),
    "keywordMatches": ConditionSpec(("text", "title"), _keyword_matches),
    "sourceCredibility": ConditionSpec(("credibility", "sourceCredibility"), _at_least),
}


def _lookup(event: Mapping[str, Any], fields: tuple[str, ...]) -> tuple[bool, Any]:
    for name in fields:
        if name in event and event[name] is not None:
            return True, event[name]
    return False, None


def _generic(key: str, expected: Any, event: Mapping[str, Any]) -> bool:
    """Unknown keys compare against the same-named event field."""
    field_name = key[:-3] if key.endswith("Min") else key
    found, actual = _lookup(event, (field_name, key))
    if not found:
        return False
    if isinstance(expected, (list, tuple)):
        values = actual if isinstance(actual, (list, tuple)) else [actual]
        return bool({str(v).lower() for v in values} & {str(e).lower() for e in expected})
    if isinstance(expected, (int, float)) and not isinstance(expected, bool):
        return _at_least(actual, expected)
    return actual == expected


def check_condition(key: str, expected: Any, event: Mapping[str, Any]) -> bool:
    spec = CONDITIONS.get(key)
    try:
        if spec is None:
            return _generic(key, expected, event)
        found, actual = _lookup(event, spec.fields)
        if not found:
            return spec.lenient
        return spec.check(actual, expected)
    except (TypeError, ValueError) as exc:
        raise RuleEvaluationError(f"condition {key}={expected!r} cannot be evaluated: {exc}") from exc


def evaluate(conditions: Mapping[str, Any], event: Mapping[str, Any]) -> bool:
    """True when every present condition holds for *event*."""
    for key, expected in conditions.items():
        if expected is None:
            continue
        if not check_condition(key, expected, event):
            return False
    return True
