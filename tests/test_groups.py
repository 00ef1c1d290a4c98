"""Tests for the indicator groups and their weighted consensus."""

import pytest

from signalscout.constants import Action, RiskLevel
from signalscout.core.groups import (
    GROUPS,
    MAX_VOLATILITY_RATIO,
    calculate_confidence,
    check_atr_filter,
    consensus,
    evaluate_all,
    group_by_id,
    group_count,
    group_index,
    risk_snapshot,
)
from signalscout.core.indicators import NO_PATTERNS, BollingerBands, IndicatorSnapshot


def _snap(**fields) -> IndicatorSnapshot:
    """Indicator snapshot with everything missing except ``fields``."""
    base = {name: None for name in IndicatorSnapshot.__dataclass_fields__}
    base["patterns"] = NO_PATTERNS
    base.update(fields)
    return IndicatorSnapshot(**base)


class TestConfidence:
    def test_strength_adds_five_per_unit(self) -> None:
        assert calculate_confidence(75, 0.5) == 78

    def test_failed_filter_costs_ten(self) -> None:
        assert calculate_confidence(75, 0, filter_passed=False) == 65

    def test_strong_adx_bonus(self) -> None:
        assert calculate_confidence(70, 0, adx_strength=30) == 73
        assert calculate_confidence(70, 0, adx_strength=20) == 70

    def test_clamped_to_range(self) -> None:
        assert calculate_confidence(90, 2) == 95
        assert calculate_confidence(50, 0) == 60


class TestRiskFilters:
    def test_atr_filter(self) -> None:
        assert check_atr_filter(_snap(atr=0.01, avg20=1.0))
        assert not check_atr_filter(_snap(atr=0.05, avg20=1.0))
        assert check_atr_filter(_snap())

    def test_atr_filter_limit_is_inclusive(self) -> None:
        assert check_atr_filter(_snap(atr=MAX_VOLATILITY_RATIO, avg20=1.0))
        assert not check_atr_filter(_snap(atr=MAX_VOLATILITY_RATIO + 0.001, avg20=1.0))
        assert check_atr_filter(_snap(atr=0.03, avg20=1.0), max_ratio=0.05)

    @pytest.mark.parametrize("atr, level, passes", [
        (0.001, RiskLevel.LOW, False),
        (0.005, RiskLevel.BALANCED, True),
        (0.015, RiskLevel.HIGH, True),
        (0.030, RiskLevel.EXTREME, False),
    ])
    def test_risk_levels(self, atr, level, passes) -> None:
        risk = risk_snapshot(_snap(atr=atr, avg20=1.0))
        assert risk.level is level
        assert risk.passes is passes

    def test_missing_data_is_unknown(self) -> None:
        assert risk_snapshot(_snap()).level is RiskLevel.UNKNOWN


class TestRegistry:
    def test_twenty_unique_groups(self) -> None:
        assert group_count() == 20
        assert len({g.id for g in GROUPS}) == 20

    def test_lookup(self) -> None:
        assert group_index("RSI_BB") == 0
        assert group_index("VOL_SQUEEZE_BREAKOUT") == 19
        assert group_by_id("EMA_TREND").name == "EMA Trend + Price Position"
        assert group_by_id("NOPE") is None


class TestGroupEvaluation:
    def test_short_series_every_group_abstains(self, make_series) -> None:
        assert evaluate_all(make_series([1.1, 1.2, 1.3])) == [None] * 20

    def test_rsi_bb_oversold_buy(self) -> None:
        ind = _snap(price=1.0, rsi=15.0, bb=BollingerBands(1.1, 1.05, 1.0, 0.0))
        prop = group_by_id("RSI_BB").evaluate(ind)
        assert prop.action is Action.BUY
        # strength (0.5 + 1.0) / 2 adds 3.75 to the base of 75
        assert prop.confidence == 79
        assert "Volatility OK" in prop.reasons

    def test_rsi_bb_neutral_abstains(self) -> None:
        ind = _snap(price=1.05, rsi=50.0, bb=BollingerBands(1.1, 1.05, 1.0, 0.5))
        assert group_by_id("RSI_BB").evaluate(ind) is None

    def test_ema_trend_follows_direction(self, uptrend_series, downtrend_series) -> None:
        group = group_by_id("EMA_TREND")
        up = group.evaluate(uptrend_series)
        down = group.evaluate(downtrend_series)
        assert (up.action, up.confidence) == (Action.BUY, 75)
        assert (down.action, down.confidence) == (Action.SELL, 75)

    def test_confidences_in_range(self, random_walk_series) -> None:
        for prop in evaluate_all(random_walk_series):
            if prop is not None:
                assert 60 <= prop.confidence <= 95
                assert prop.action in (Action.BUY, Action.SELL)


class TestConsensus:
    def test_abstentions_never_vote(self, make_series) -> None:
        c = consensus(make_series([1.1, 1.2, 1.3]))
        assert c.action is None
        assert c.voters == 0
        assert c.buy_score == c.sell_score == 0.0

    def test_voters_match_proposals(self, random_walk_series) -> None:
        props = [p for p in evaluate_all(random_walk_series) if p is not None]
        assert consensus(random_walk_series).voters == len(props)

    def test_weights_scale_votes(self, uptrend_series) -> None:
        weights = {g.id: 0.0 for g in GROUPS}
        weights["EMA_TREND"] = 2.0
        c = consensus(uptrend_series, weights)
        assert c.action is Action.BUY
        assert c.buy_score == pytest.approx(150.0)
        assert c.sell_score == 0.0
