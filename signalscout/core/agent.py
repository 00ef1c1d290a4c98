"""
Learning agent: decides which indicator group to trust.

Two learners share the decision:
  • a per-group bandit weight that scales confidence (bounded 0.5 – 2.0)
  • a small Q-network over a 16-value market state, trained from replay

Rewards arrive late (one signal expiry later) and are shaped by the
confidence that was shown, the regime stability and the volatility risk.
"""
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Optional

import numpy as np

from signalscout.config import ScoutConfig
from signalscout.constants import Outcome, RiskLevel, TrendDirection, TrendStrength, VolatilityLevel
from signalscout.core.expiry import ExpirySelector
from signalscout.core.groups import GROUPS, VOL_RISK_CAP, VOL_RISK_LOW, IndicatorGroup, RiskSnapshot, group_count
from signalscout.core.indicators import NO_PATTERNS, PatternInfo, detect_patterns, snapshot
from signalscout.core.network import STATE_DIM, DQNAgent, WeightShapeError
from signalscout.core.regime import RegimeDescriptor
from signalscout.core.replay import ReplayBuffer
from signalscout.utils.candle import CandleSeries
from signalscout.utils.logger import log
from signalscout.utils.numeric import clamp, round_half_up

LEARNING_STATE_KEY = "rl_state"
BANDIT_STATE_KEY = "bandit_weights"
LEARNING_STATE_VERSION = 1
BANDIT_STATE_VERSION = 1

MIN_STATE_CANDLES = 50
MIN_SEED_CANDLES = 30

REWARD_WIN = 10.0
REWARD_LOSS = -5.0

BANDIT_MIN = 0.5
BANDIT_MAX = 2.0

_VOL_CODE = {VolatilityLevel.LOW: 0.25, VolatilityLevel.MEDIUM: 0.5, VolatilityLevel.HIGH: 0.75}
_TREND_CODE = {TrendDirection.BULLISH: 1.0, TrendDirection.BEARISH: 0.0, TrendDirection.NEUTRAL: 0.5}

@dataclass(frozen=True)
class Recommendation:
    group: IndicatorGroup
    action_index: int
    confidence: int
    expiry_seconds: int
    state: tuple
    q_advantage: float = 0.0
    explored: bool = False
    risk: Optional[RiskSnapshot] = None
    patterns: PatternInfo = field(default=NO_PATTERNS)

    @property
    def group_id(self) -> str:
        return self.group.id

def _risk_from_state(value: float, ratio: float) -> RiskSnapshot:
    if value > 0.9:
        level = RiskLevel.EXTREME
    elif value > 0.6:
        level = RiskLevel.HIGH
    elif value < 0.2:
        level = RiskLevel.LOW
    else:
        level = RiskLevel.BALANCED
    return RiskSnapshot(level, ratio, VOL_RISK_LOW <= ratio <= VOL_RISK_CAP)

class LearningAgent:
    def __init__(self, cfg: Optional[ScoutConfig] = None, store=None,
                 rng: Optional[np.random.Generator] = None,
                 clock: Callable[[], float] = time.time):
        self.cfg = cfg or ScoutConfig()
        self.store = store
        self.rng = rng if rng is not None else np.random.default_rng()
        self.clock = clock
        self.n_actions = group_count()

        self.dqn = DQNAgent(
            self.n_actions, self.rng, STATE_DIM, self.cfg.hidden1, self.cfg.hidden2,
            learning_rate=self.cfg.learning_rate, tau=self.cfg.tau, gamma=self.cfg.gamma,
        )
        self.replay = ReplayBuffer(self.cfg.replay_size, self.cfg.batch_size,
                                   self.cfg.min_experiences, self.rng)
        self.expiry = ExpirySelector(self.rng)

        self.epsilon = self.cfg.epsilon_start
        self.session_wins = 0
        self.session_losses = 0
        self.current_streak = 0
        self.max_streak = 0
        self.cumulative_reward = 0.0
        self.total_experiences = 0
        self.bandit: dict[str, float] = {}
        self.bandit_seeded = False

        # (state, action) awaiting its outcome
        self.pending: Optional[tuple[tuple, int]] = None
        self.last_risk: Optional[RiskSnapshot] = None
        self.last_patterns: PatternInfo = NO_PATTERNS
        self.last_q_advantage = 0.0
        self.last_loss: Optional[float] = None

    # ------------------------------------------------------------------
    # state
    # ------------------------------------------------------------------
    @property
    def win_rate(self) -> float:
        total = self.session_wins + self.session_losses
        return self.session_wins / total if total > 0 else 0.5

    def encode_state(self, series: CandleSeries, regime: Optional[RegimeDescriptor] = None) -> np.ndarray:
        """16 market/performance features in [0, 1]; anything unavailable stays 0.5."""
        state = np.full(STATE_DIM, 0.5)
        if len(series) < MIN_STATE_CANDLES:
            return state

        ind = snapshot(series)
        avg, price = ind.avg20, ind.price
        stability = regime.stability if regime is not None else 50.0

        if regime is not None:
            state[0] = _VOL_CODE[regime.volatility.level]

        if ind.atr and avg and avg > 0:
            ratio = ind.atr / avg
            state[1] = min(1.0, ratio * 50)
            self.last_risk = _risk_from_state(state[1], ratio)

        if ind.ema12 is not None and ind.ema26 is not None and avg:
            state[2] = min(1.0, abs(ind.ema12 - ind.ema26) / avg * 100)

        if regime is not None:
            state[3] = _TREND_CODE[regime.trend.direction]

        if ind.rsi is not None:
            state[4] = ind.rsi / 100
        if ind.macd is not None:
            state[5] = 0.5 + clamp(ind.macd.histogram * 1000, -0.5, 0.5)
        if ind.adx is not None:
            state[6] = min(1.0, ind.adx.adx / 100)
        if ind.stoch is not None:
            state[7] = ind.stoch.k / 100

        now = datetime.fromtimestamp(self.clock(), tz=timezone.utc)
        state[8] = (now.hour * 60 + now.minute) / 1440
        state[9] = stability / 100
        state[10] = self.win_rate
        state[11] = 0.5 + self.current_streak / 20

        if regime is not None:
            s12 = 0.5 + (stability - 50) / 200
            if regime.trend.strength is TrendStrength.STRONG:
                s12 += 0.15
            if regime.volatility.level is VolatilityLevel.HIGH:
                s12 -= 0.1
            state[12] = clamp(s12, 0.0, 1.0)

        if ind.ema21 is not None and price:
            state[13] = 1.0 if price > ind.ema21 else 0.0
        if ind.bb is not None:
            state[14] = ind.bb.percent_b
        if ind.cci is not None:
            state[15] = clamp((ind.cci + 200) / 400, 0.0, 1.0)

        patterns = detect_patterns(series.candles[-3:])
        self.last_patterns = patterns
        if patterns.score:
            state[12] = clamp(state[12] + 0.05 * patterns.bias, 0.0, 1.0)
            state[15] = clamp(state[15] * 0.7 + patterns.score * 0.3, 0.0, 1.0)

        return np.clip(np.nan_to_num(state, nan=0.5, posinf=1.0, neginf=0.0), 0.0, 1.0)

    # ------------------------------------------------------------------
    # decisions
    # ------------------------------------------------------------------
    def select_action(self, state) -> tuple[int, bool]:
        """Epsilon-greedy group index. Second value is True when the pick was random."""
        if self.rng.random() < self.epsilon:
            return int(self.rng.integers(0, self.n_actions)), True
        best, _, _ = self.dqn.best_action(state)
        return best, False

    def recommend(self, series: CandleSeries, regime: Optional[RegimeDescriptor] = None,
                  commit: bool = True) -> Recommendation:
        state = self.encode_state(series, regime)
        idx, explored = self.select_action(state)
        group = GROUPS[idx]
        confidence, q_adv = self.score_group(state, idx)
        self.last_q_advantage = q_adv

        vol_pct = None
        if len(series) >= MIN_STATE_CANDLES:
            ind = snapshot(series)
            if ind.volatility_ratio is not None:
                vol_pct = ind.volatility_ratio * 100
        expiry = self.expiry.select(vol_pct)

        frozen = tuple(float(x) for x in state)
        if commit:
            self.pending = (frozen, idx)

        return Recommendation(
            group=group, action_index=idx, confidence=confidence, expiry_seconds=expiry,
            state=frozen, q_advantage=q_adv, explored=explored,
            risk=self.last_risk, patterns=self.last_patterns,
        )

    def score_group(self, state, idx: int) -> tuple[int, float]:
        """Confidence (40–95, bandit-weighted) and Q-advantage over the runner-up for group ``idx``."""
        q = self.dqn.q_values(state)
        max_q, min_q = float(np.max(q)), float(np.min(q))
        confidence, q_adv = 75.0, 0.0
        if max_q != min_q:
            span = max_q - min_q
            second = float(np.sort(q)[-2]) if len(q) > 1 else min_q
            q_adv = max(0.0, (float(q[idx]) - second) / span)
            confidence = 60 + min(35.0, (float(q[idx]) - min_q) / span * 35)
        weight = self.bandit_weight(GROUPS[idx].id)
        return int(clamp(round_half_up(confidence * weight), 40, 95)), q_adv

    def top_actions(self, state, n: int = 3) -> list[tuple[str, float]]:
        return [(GROUPS[i].id, q) for i, q in self.dqn.top_actions(state, n)]

    def ranked_groups(self, state) -> list[int]:
        """All group indices, best Q-value first."""
        return [i for i, _ in self.dqn.top_actions(state, self.n_actions)]

    def set_learning_state(self, state, action: int):
        self.pending = (tuple(float(x) for x in state), int(action))

    def should_explore_fallback(self) -> bool:
        return self.epsilon > 0.12 or self.total_experiences < 80

    # ------------------------------------------------------------------
    # rewards
    # ------------------------------------------------------------------
    @staticmethod
    def shape_reward(result: Outcome, confidence: Optional[float] = None,
                     stability: Optional[float] = None,
                     risk_level: Optional[RiskLevel] = None) -> float:
        win = result is Outcome.WIN
        reward = REWARD_WIN if win else REWARD_LOSS

        if confidence is not None:
            if win:
                reward += (confidence - 60) / 10
                if confidence >= 85:
                    reward += 5
            else:
                if confidence >= 85:
                    reward -= 10
                elif confidence >= 75:
                    reward -= 5
                if confidence >= 80:
                    reward -= 3

        if stability is not None:
            stab = stability or 50
            if win and stab > 70:
                reward += 2
            elif not win and stab < 30:
                reward += 1

        if win and risk_level is RiskLevel.HIGH:
            reward += 1.5
        elif not win and risk_level is RiskLevel.EXTREME:
            reward += 0.5
        return reward

    def on_outcome(self, result: Outcome, confidence: Optional[float] = None,
                   series: Optional[CandleSeries] = None, regime: Optional[RegimeDescriptor] = None,
                   state=None, action: Optional[int] = None) -> Optional[float]:
        """Learn from a verified signal. Returns the reward, or None when nothing was pending."""
        if state is None or action is None:
            if self.pending is None:
                log.warning("⚠️ Outcome %s arrived with no pending state/action, skipped", result.value)
                return None
            state, action = self.pending
        self.pending = None

        next_state = self.encode_state(series, regime) if series is not None else None
        risk_level = self.last_risk.level if self.last_risk is not None else None
        stability = regime.stability if regime is not None else None
        reward = self.shape_reward(result, confidence, stability, risk_level)

        if result is Outcome.WIN:
            self.current_streak = max(0, self.current_streak) + 1
            self.session_wins += 1
            self.max_streak = max(self.max_streak, self.current_streak)
        else:
            self.current_streak = min(0, self.current_streak) - 1
            self.session_losses += 1
        self.cumulative_reward += reward
        self.total_experiences += 1
        self._decay_epsilon()

        self.replay.add(state, action, reward, next_state, done=True)
        if self.replay.can_train():
            batch = self.replay.sample()
            self.last_loss = self.dqn.train(batch)
            log.info("📚 Training step %d | buffer %d | batch %d | loss %.4f | WR %.1f%%",
                     self.total_experiences, len(self.replay), len(batch),
                     self.last_loss, self.win_rate * 100)
        else:
            log.info("📦 Experience stored (%d/%d needed for training)",
                     len(self.replay), self.replay.min_experiences)

        self.update_bandit_weight(GROUPS[action].id, result, confidence if confidence is not None else 70)

        if self.cfg.save_every > 0 and self.total_experiences % self.cfg.save_every == 0:
            self.save()
        return reward

    def _decay_epsilon(self):
        if self.epsilon > self.cfg.epsilon_min:
            fast = self.total_experiences > self.cfg.fast_decay_after
            decay = self.cfg.epsilon_fast_decay if fast else self.cfg.epsilon_decay
            self.epsilon = max(self.cfg.epsilon_min, self.epsilon * decay)

    # ------------------------------------------------------------------
    # bandit
    # ------------------------------------------------------------------
    def bandit_weight(self, group_id: Optional[str]) -> float:
        if not group_id:
            return 1.0
        return self.bandit.get(group_id, 1.0)

    def update_bandit_weight(self, group_id: str, result: Outcome, confidence: float = 70,
                             persist: bool = True) -> float:
        base = self.bandit_weight(group_id)
        if result is Outcome.WIN:
            adj = 0.05 + (confidence - 60) / 500
        else:
            adj = -0.05 - (confidence - 60) / 400
        new = clamp(base + adj, BANDIT_MIN, BANDIT_MAX)
        self.bandit[group_id] = new
        log.debug("🎯 Bandit %s: %.3f → %.3f (%s, conf=%s)", group_id, base, new, result.value, confidence)
        if persist:
            self.save_bandit()
        return new

    def seed_bandit(self, series: CandleSeries) -> int:
        """One-time warmup: score each group's proposal on history against the candle that followed."""
        if self.bandit_seeded or len(series) < MIN_SEED_CANDLES:
            return 0
        self.bandit_seeded = True

        history = series.head(len(series) - 1)
        move = series.closes[-1] - series.closes[-2]
        ind = snapshot(history)

        updated = 0
        for group in GROUPS:
            prop = group.evaluate(ind)
            if prop is None or prop.action is None:
                continue
            win = move * prop.action.sign > 0
            self.update_bandit_weight(group.id, Outcome.WIN if win else Outcome.LOSS,
                                      prop.confidence, persist=False)
            updated += 1
        if updated:
            self.save_bandit()
        log.info("🎯 Bandit seeded from history: %d groups voted", updated)
        return updated

    # ------------------------------------------------------------------
    # metrics / persistence
    # ------------------------------------------------------------------
    def metrics(self) -> dict:
        total = self.session_wins + self.session_losses
        return {
            "session_wins": self.session_wins,
            "session_losses": self.session_losses,
            "win_rate": self.session_wins / total * 100 if total > 0 else 0.0,
            "cumulative_reward": self.cumulative_reward,
            "epsilon": self.epsilon,
            "total_experiences": self.total_experiences,
            "current_streak": self.current_streak,
            "max_streak": self.max_streak,
            "train_steps": self.dqn.train_steps,
            "risk": self.last_risk.level.value if self.last_risk else None,
            "patterns": list(self.last_patterns.patterns),
        }

    def reset_session(self):
        self.session_wins = 0
        self.session_losses = 0
        self.current_streak = 0
        self.cumulative_reward = 0.0
        log.info("Session counters reset")

    def state_blob(self) -> dict:
        return {
            "version": LEARNING_STATE_VERSION,
            "weights": self.dqn.get_weights(),
            "epsilon": self.epsilon,
            "session_wins": self.session_wins,
            "session_losses": self.session_losses,
            "current_streak": self.current_streak,
            "max_streak": self.max_streak,
            "cumulative_reward": self.cumulative_reward,
            "total_experiences": self.total_experiences,
            "expiry": self.expiry.save_state(),
        }

    def save(self):
        if self.store is None:
            return
        try:
            self.store.save(LEARNING_STATE_KEY, self.state_blob())
            log.info("🧠 Learning state saved (%d experiences, ε=%.3f)", self.total_experiences, self.epsilon)
        except Exception as e:
            log.warning("Failed to save learning state: %s", e)

    def save_bandit(self):
        if self.store is None:
            return
        try:
            self.store.save(BANDIT_STATE_KEY, {"version": BANDIT_STATE_VERSION, "weights": dict(self.bandit)})
        except Exception as e:
            log.warning("Failed to save bandit weights: %s", e)

    def load(self) -> bool:
        """Restore persisted learning state. Returns True when network weights were restored."""
        if self.store is None:
            return False
        self._load_bandit()
        try:
            blob = self.store.load(LEARNING_STATE_KEY)
        except Exception as e:
            log.warning("Failed to load learning state: %s", e)
            return False
        if not blob:
            return False
        if not isinstance(blob, dict) or blob.get("version") != LEARNING_STATE_VERSION:
            log.warning("Learning state version %r not supported, starting fresh",
                        blob.get("version") if isinstance(blob, dict) else None)
            return False

        restored = False
        try:
            self.dqn.set_weights(blob.get("weights"))
            restored = True
        except WeightShapeError as e:
            log.warning("Saved weights shape mismatch (%s), reinitialising network", e)
            self.dqn.reset()

        self.epsilon = float(blob.get("epsilon") or self.cfg.epsilon_start)
        self.session_wins = int(blob.get("session_wins") or 0)
        self.session_losses = int(blob.get("session_losses") or 0)
        self.current_streak = int(blob.get("current_streak") or 0)
        self.max_streak = int(blob.get("max_streak") or 0)
        self.cumulative_reward = float(blob.get("cumulative_reward") or 0.0)
        self.total_experiences = int(blob.get("total_experiences") or 0)
        self.expiry.load_state(blob.get("expiry") or {})
        log.info("🧠 Learning state loaded (weights=%s, %d experiences, ε=%.3f)",
                 restored, self.total_experiences, self.epsilon)
        return restored

    def _load_bandit(self):
        try:
            blob = self.store.load(BANDIT_STATE_KEY)
        except Exception as e:
            log.warning("Failed to load bandit weights: %s", e)
            return
        if not blob:
            return
        if not isinstance(blob, dict) or blob.get("version") != BANDIT_STATE_VERSION:
            log.warning("Bandit weights version not supported, using defaults")
            return
        known = {g.id for g in GROUPS}
        for gid, w in (blob.get("weights") or {}).items():
            if gid in known:
                self.bandit[gid] = clamp(float(w), BANDIT_MIN, BANDIT_MAX)
