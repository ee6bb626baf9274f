from __future__ import annotations

from datetime import timedelta

import pytest

from altsignal.collectors.scoring import (
    categorize_volume,
    extract_symbols,
    keyword_sentiment,
    log_scale,
    mentions_per_hour,
    normalize_transaction_type,
    side_weighted_trend,
    weighted_significance,
)
from helpers import insider_trade, social_post


def test_keyword_sentiment_scores_and_extracts_terms() -> None:
    s = keyword_sentiment("Strong growth, bullish rally")
    assert s.label == "positive"
    assert s.score == pytest.approx(1.0)
    assert 0.0 <= s.magnitude <= 1.0
    assert s.keywords == ("bullish",)

    neutral = keyword_sentiment("The meeting is on Tuesday")
    assert neutral.label == "neutral"
    assert neutral.score == 0.0


def test_extract_symbols_drops_common_words() -> None:
    assert extract_symbols("$AAPL and TSLA beat, the SEC and CEO said") == ["AAPL", "TSLA"]
    assert extract_symbols("nothing here") == []


def test_weighted_significance_renormalizes_over_given_factors() -> None:
    assert weighted_significance(value=1.0, timing=0.5) == pytest.approx(0.8)
    assert weighted_significance(value=None, volume=None) == 0.0
    assert weighted_significance() == 0.0


def test_volume_buckets_and_transaction_types() -> None:
    assert categorize_volume(21) == "high"
    assert categorize_volume(11) == "medium"
    assert categorize_volume(10) == "low"
    assert normalize_transaction_type("Purchase") == "buy"
    assert normalize_transaction_type("S") == "sell"
    assert normalize_transaction_type("gift") == "hold"
    assert normalize_transaction_type(None) == "hold"


def test_mentions_per_hour_has_one_hour_floor(now) -> None:
    posts = [social_post(0.5, ts=now - timedelta(minutes=m), post_id=str(m)) for m in (0, 5, 10)]
    assert mentions_per_hour(posts) == pytest.approx(3.0)
    assert mentions_per_hour([]) == 0.0


def test_side_weighted_trend(now) -> None:
    buys = [insider_trade("buy", ts=now, significance=0.9) for _ in range(3)]
    assert side_weighted_trend(buys) == "bullish"
    assert side_weighted_trend([insider_trade("sell", ts=now, significance=0.9)]) == "bearish"
    assert side_weighted_trend([]) == "neutral"


def test_log_scale_bounds() -> None:
    assert log_scale(0, 1000) == 0.0
    assert log_scale(1000, 1000) == pytest.approx(1.0)
    assert log_scale(10**9, 1000) == 1.0
