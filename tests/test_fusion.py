from __future__ import annotations

from datetime import timedelta

import pytest

from altsignal.collectors.types import INSIDER, SOCIAL
from altsignal.fusion import SOURCE_WEIGHTS, combine, fuse, risk_level
from helpers import batch, insider_trade, social_post


def test_no_reporting_sources_gives_empty_low_risk_signal(now) -> None:
    signal = fuse("AAPL", [], now=now)
    assert signal.sources == ()
    assert signal.confidence == 0.0
    assert signal.risk_level == "low"
    assert signal.trading_signals.combined == 0.0
    assert signal.alerts == ()


def test_empty_batches_are_not_reporting_sources(now) -> None:
    signal = fuse("AAPL", [batch(SOCIAL, [], ts=now)], now=now)
    assert signal.sources == ()
    assert signal.confidence == 0.0


def test_combined_renormalizes_over_reporting_sources(now) -> None:
    posts = [social_post(0.6, ts=now, post_id="a"), social_post(0.6, ts=now, post_id="b")]
    signal = fuse("AAPL", [batch(SOCIAL, posts, ts=now)], now=now)
    assert signal.sources == ("social",)
    # the only reporting source carries the whole weight
    assert signal.trading_signals.combined == pytest.approx(signal.trading_signals.social)
    assert signal.trading_signals.social == pytest.approx(0.6)


def test_combined_weights_mixed_sources(now) -> None:
    signals = {INSIDER: 1.0, SOCIAL: -1.0}
    expected = (SOURCE_WEIGHTS[INSIDER] - SOURCE_WEIGHTS[SOCIAL]) / (SOURCE_WEIGHTS[INSIDER] + SOURCE_WEIGHTS[SOCIAL])
    assert combine(signals, [INSIDER, SOCIAL]) == pytest.approx(expected)
    assert combine(signals, []) == 0.0


def test_signal_values_stay_in_bounds(now) -> None:
    posts = [social_post(1.0, ts=now, confidence=1.0, post_id=str(i)) for i in range(30)]
    trades = [insider_trade("buy", ts=now - timedelta(days=1), significance=1.0) for _ in range(5)]
    signal = fuse("AAPL", [batch(SOCIAL, posts, ts=now), batch(INSIDER, trades, ts=now)], now=now)
    ts = signal.trading_signals
    for value in (ts.insider, ts.legislator, ts.social, ts.news, ts.combined):
        assert -1.0 <= value <= 1.0
    assert 0.0 <= signal.confidence <= 1.0
    assert 0.0 <= signal.overall_sentiment.confidence <= 1.0


def test_strong_insider_buying_raises_quick_alerts(now) -> None:
    trades = [insider_trade("buy", ts=now - timedelta(days=2), significance=0.9) for _ in range(3)]
    signal = fuse("AAPL", [batch(INSIDER, trades, ts=now)], now=now)
    kinds = {a.type for a in signal.alerts}
    assert "insider_activity" in kinds
    assert "strong_signal" in kinds
    strong = next(a for a in signal.alerts if a.type == "strong_signal")
    assert strong.severity == "critical"
    assert "for AAPL" in strong.message


def test_stale_insider_trades_are_ignored(now) -> None:
    trades = [insider_trade("buy", ts=now - timedelta(days=45), significance=0.9)]
    signal = fuse("AAPL", [batch(INSIDER, trades, ts=now)], now=now)
    assert signal.trading_signals.insider == 0.0


def test_risk_level_thresholds() -> None:
    assert risk_level(0.9, 0.0) == "high"
    assert risk_level(0.5, 0.0) == "medium"
    assert risk_level(0.9, 0.9) == "low"
