"""Tests for the learning agent: state encoding, selection, rewards, bandit and persistence."""

import numpy as np
import pytest

from signalscout.config import ScoutConfig
from signalscout.constants import Outcome, RiskLevel
from signalscout.core.agent import (
    BANDIT_MAX,
    BANDIT_MIN,
    BANDIT_STATE_KEY,
    LEARNING_STATE_KEY,
    LearningAgent,
)
from signalscout.core.expiry import ExpirySelector
from signalscout.core.groups import GROUPS
from signalscout.core.regime import RegimeDetector
from signalscout.trading.storage import MemoryStore

NOON_UTC = 12 * 3600.0


@pytest.fixture
def agent(cfg, rng) -> LearningAgent:
    return LearningAgent(cfg, MemoryStore(), rng, clock=lambda: NOON_UTC)


class TestEncodeState:
    def test_short_series_is_neutral(self, agent, make_series) -> None:
        state = agent.encode_state(make_series([1.1] * 10))
        assert state.shape == (16,)
        assert np.all(state == 0.5)

    def test_features_bounded(self, agent, random_walk_series) -> None:
        regime = RegimeDetector().update_regime(random_walk_series)
        state = agent.encode_state(random_walk_series, regime)
        assert state.shape == (16,)
        assert np.all((state >= 0) & (state <= 1))
        assert not np.any(np.isnan(state))

    def test_time_of_day_from_clock(self, agent, random_walk_series) -> None:
        assert agent.encode_state(random_walk_series)[8] == pytest.approx(0.5)

    def test_uptrend_features(self, agent, uptrend_series) -> None:
        regime = RegimeDetector().update_regime(uptrend_series)
        state = agent.encode_state(uptrend_series, regime)
        assert state[3] == 1.0          # bullish trend
        assert state[4] == 1.0          # rsi 100
        assert state[13] == 1.0         # above EMA21
        assert agent.last_risk is not None


class TestSelection:
    def test_greedy_when_epsilon_zero(self, agent, random_walk_series) -> None:
        agent.epsilon = 0.0
        state = agent.encode_state(random_walk_series)
        idx, explored = agent.select_action(state)
        assert not explored
        assert idx == agent.dqn.best_action(state)[0]

    def test_random_when_epsilon_one(self, agent) -> None:
        agent.epsilon = 1.0
        idx, explored = agent.select_action(np.full(16, 0.5))
        assert explored
        assert 0 <= idx < 20

    def test_recommend_commit_controls_pending(self, agent, random_walk_series) -> None:
        rec = agent.recommend(random_walk_series, commit=False)
        assert agent.pending is None
        rec = agent.recommend(random_walk_series)
        assert agent.pending == (rec.state, rec.action_index)
        assert rec.group_id == GROUPS[rec.action_index].id

    def test_recommendation_bounds(self, agent, random_walk_series) -> None:
        rec = agent.recommend(random_walk_series)
        assert 40 <= rec.confidence <= 95
        assert 180 <= rec.expiry_seconds <= 420
        assert len(rec.state) == 16

    def test_ranked_groups_cover_all(self, agent) -> None:
        state = np.full(16, 0.5)
        ranked = agent.ranked_groups(state)
        assert sorted(ranked) == list(range(20))
        assert ranked[0] == agent.dqn.best_action(state)[0]

    def test_explore_fallback_while_undertrained(self, agent) -> None:
        assert agent.should_explore_fallback()
        agent.epsilon = 0.05
        agent.total_experiences = 100
        assert not agent.should_explore_fallback()


class TestRewards:
    def test_plain_rewards(self) -> None:
        assert LearningAgent.shape_reward(Outcome.WIN) == 10.0
        assert LearningAgent.shape_reward(Outcome.LOSS) == -5.0

    def test_confident_win(self) -> None:
        # 10 + 3 (conf) + 5 (>=85) + 2 (stable) + 1.5 (high risk)
        assert LearningAgent.shape_reward(Outcome.WIN, 90, 80, RiskLevel.HIGH) == pytest.approx(21.5)

    def test_confident_loss(self) -> None:
        # -5 - 10 (>=85) - 3 (>=80) + 1 (unstable) + 0.5 (extreme risk)
        assert LearningAgent.shape_reward(Outcome.LOSS, 90, 20, RiskLevel.EXTREME) == pytest.approx(-16.5)

    def test_moderate_loss(self) -> None:
        assert LearningAgent.shape_reward(Outcome.LOSS, 76) == pytest.approx(-10.0)


class TestOnOutcome:
    def test_nothing_pending_is_skipped(self, agent) -> None:
        assert agent.on_outcome(Outcome.WIN, 70) is None
        assert len(agent.replay) == 0

    def test_pending_pair_is_learned(self, agent, random_walk_series) -> None:
        rec = agent.recommend(random_walk_series)
        reward = agent.on_outcome(Outcome.WIN, 70, random_walk_series)
        assert reward == pytest.approx(11.0)
        assert agent.pending is None
        assert len(agent.replay) == 1
        assert agent.replay.buffer[0].action == rec.action_index
        assert agent.session_wins == 1
        assert agent.current_streak == 1
        assert agent.epsilon == pytest.approx(0.30 * 0.9995)

    def test_explicit_pair_overrides_pending(self, agent) -> None:
        state = tuple([0.5] * 16)
        agent.on_outcome(Outcome.LOSS, 70, state=state, action=4)
        assert agent.replay.buffer[0].action == 4
        assert agent.current_streak == -1
        assert agent.bandit_weight(GROUPS[4].id) < 1.0

    def test_trains_once_buffer_ready(self, rng) -> None:
        agent = LearningAgent(ScoutConfig(min_experiences=2, save_every=0), rng=rng)
        state = tuple([0.5] * 16)
        agent.on_outcome(Outcome.WIN, 70, state=state, action=0)
        assert agent.dqn.train_steps == 0
        agent.on_outcome(Outcome.WIN, 70, state=state, action=1)
        assert agent.dqn.train_steps == 1
        assert agent.last_loss is not None

    def test_epsilon_floor(self, agent) -> None:
        agent.epsilon = 0.01002
        agent.total_experiences = 500
        agent._decay_epsilon()
        assert agent.epsilon == 0.01


class TestBandit:
    def test_default_weight(self, agent) -> None:
        assert agent.bandit_weight("RSI_BB") == 1.0
        assert agent.bandit_weight(None) == 1.0

    def test_win_and_loss_adjustments(self, agent) -> None:
        assert agent.update_bandit_weight("RSI_BB", Outcome.WIN, 70) == pytest.approx(1.07)
        assert agent.update_bandit_weight("MACD_EMA", Outcome.LOSS, 80) == pytest.approx(0.9)

    def test_weights_bounded(self, agent) -> None:
        for _ in range(100):
            agent.update_bandit_weight("RSI_BB", Outcome.WIN, 95, persist=False)
            agent.update_bandit_weight("MACD_EMA", Outcome.LOSS, 95, persist=False)
        assert agent.bandit_weight("RSI_BB") == BANDIT_MAX
        assert agent.bandit_weight("MACD_EMA") == BANDIT_MIN

    def test_seed_needs_history_and_runs_once(self, agent, make_series, random_walk_series) -> None:
        assert agent.seed_bandit(make_series([1.1] * 20)) == 0
        assert not agent.bandit_seeded
        voted = agent.seed_bandit(random_walk_series)
        assert agent.bandit_seeded
        assert len(agent.bandit) == voted
        assert agent.seed_bandit(random_walk_series) == 0


class TestPersistence:
    def test_round_trip(self, cfg, rng, random_walk_series) -> None:
        store = MemoryStore()
        a = LearningAgent(cfg, store, rng)
        a.on_outcome(Outcome.WIN, 70, state=tuple([0.5] * 16), action=2)
        a.save()
        b = LearningAgent(cfg, store, np.random.default_rng(1))
        assert b.load()
        state = a.encode_state(random_walk_series)
        assert np.allclose(a.dqn.q_values(state), b.dqn.q_values(state))
        assert b.session_wins == 1
        assert b.epsilon == pytest.approx(a.epsilon)
        assert b.bandit_weight(GROUPS[2].id) == pytest.approx(a.bandit_weight(GROUPS[2].id))

    def test_unknown_version_rejected(self, cfg, rng) -> None:
        store = MemoryStore({LEARNING_STATE_KEY: {"version": 99, "weights": {}}})
        agent = LearningAgent(cfg, store, rng)
        assert not agent.load()
        assert agent.epsilon == cfg.epsilon_start

    def test_shape_mismatch_keeps_counters(self, cfg, rng) -> None:
        blob = {"version": 1, "weights": {"W1": [[0.0]]}, "total_experiences": 7, "epsilon": 0.2}
        agent = LearningAgent(cfg, MemoryStore({LEARNING_STATE_KEY: blob}), rng)
        assert not agent.load()
        assert agent.total_experiences == 7

    def test_bandit_blob_filters_and_clamps(self, cfg, rng) -> None:
        blob = {"version": 1, "weights": {"RSI_BB": 5.0, "GONE": 1.5}}
        agent = LearningAgent(cfg, MemoryStore({BANDIT_STATE_KEY: blob}), rng)
        agent.load()
        assert agent.bandit == {"RSI_BB": BANDIT_MAX}

    def test_no_store_is_noop(self, cfg, rng) -> None:
        agent = LearningAgent(cfg, None, rng)
        agent.save()
        assert not agent.load()

    def test_metrics_and_reset(self, agent) -> None:
        agent.on_outcome(Outcome.WIN, 70, state=tuple([0.5] * 16), action=0)
        m = agent.metrics()
        assert m["session_wins"] == 1
        assert m["win_rate"] == 100.0
        agent.reset_session()
        assert agent.session_wins == 0
        assert agent.total_experiences == 1


class TestExpirySelector:
    def test_volatility_bands(self, rng) -> None:
        sel = ExpirySelector(rng)
        assert sel.select(None) == 300
        assert 360 <= sel.select(0.1) < 420
        assert sel.select(0.5) == 300
        assert 180 <= sel.select(1.0) < 240

    def test_status_line(self) -> None:
        sel = ExpirySelector()
        assert sel.status_line() == "no data yet"
        sel.record_result(185, Outcome.WIN)
        sel.record_result(200, Outcome.LOSS)
        assert sel.status_line() == "3m:50%(2)"

    def test_state_round_trip(self) -> None:
        sel = ExpirySelector()
        sel.record_result(300, Outcome.WIN)
        other = ExpirySelector()
        other.load_state(sel.save_state())
        assert other.stats == {300: {"wins": 1, "losses": 0}}
