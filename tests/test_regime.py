"""Tests for market regime classification and stability tracking."""

import numpy as np

from signalscout.constants import MomentumRegime, TrendDirection, TrendStrength, VolatilityLevel
from signalscout.core.regime import RegimeDescriptor, RegimeDetector


class TestUpdateRegime:
    def test_short_series_returns_default_unrecorded(self, make_series) -> None:
        det = RegimeDetector()
        r = det.update_regime(make_series(np.full(49, 1.1)))
        assert r.volatility.level is VolatilityLevel.MEDIUM
        assert r.trend.direction is TrendDirection.NEUTRAL
        assert r.trend.strength is TrendStrength.MODERATE
        assert r.momentum.rsi == 50.0
        assert r.stability == 50.0
        assert len(det.history) == 0
        assert det.current is None

    def test_uptrend_is_bullish(self, uptrend_series) -> None:
        r = RegimeDetector().update_regime(uptrend_series)
        assert r.trend.direction is TrendDirection.BULLISH
        assert r.momentum.regime is MomentumRegime.BULLISH
        assert r.volatility.level is VolatilityLevel.LOW

    def test_downtrend_is_bearish(self, downtrend_series) -> None:
        r = RegimeDetector().update_regime(downtrend_series)
        assert r.trend.direction is TrendDirection.BEARISH
        assert r.momentum.regime is MomentumRegime.BEARISH

    def test_wide_swings_are_high_volatility(self, make_series) -> None:
        closes = [1.0 if i % 2 else 1.02 for i in range(60)]
        r = RegimeDetector().update_regime(make_series(closes))
        assert r.volatility.level is VolatilityLevel.HIGH
        assert r.volatility.ratio > 0.7


class TestStability:
    def test_stability_holds_until_ten_snapshots(self, uptrend_series) -> None:
        det = RegimeDetector()
        for _ in range(9):
            det.update_regime(uptrend_series)
        assert det.stability == 50.0
        det.update_regime(uptrend_series)
        assert det.stability == 100.0
        assert det.current.stability == 100.0
        assert det.uncertainty == 0.0

    def test_mixed_regimes_lower_stability(self, uptrend_series, downtrend_series) -> None:
        det = RegimeDetector()
        for i in range(10):
            det.update_regime(uptrend_series if i % 2 else downtrend_series)
        assert det.stability < 100.0

    def test_history_is_capped(self, uptrend_series) -> None:
        det = RegimeDetector(history_size=5)
        for _ in range(8):
            det.update_regime(uptrend_series)
        assert len(det.history) == 5


class TestRegimeDescriptor:
    def test_label_and_uncertainty(self) -> None:
        r = RegimeDescriptor(stability=80.0)
        assert r.label() == "MEDIUM/NEUTRAL-MODERATE/NEUTRAL"
        assert r.uncertainty == 20.0
