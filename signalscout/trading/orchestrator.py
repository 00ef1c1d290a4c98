"""
Top-level signal loop.

Ticks build candles; once warm, a periodic cycle opens a timing window for the
agent's candidate. When the window expires the direction is re-derived from
current data, gated, published, and verified against price after expiry.
"""
import time
from collections import deque
from typing import Optional

import numpy as np

from signalscout.config import ScoutConfig
from signalscout.constants import Action, Outcome
from signalscout.core import indicators as ti
from signalscout.core.agent import LearningAgent, Recommendation
from signalscout.core.candles import CandleAggregator
from signalscout.core.gates import apply_gate, evaluate_gates
from signalscout.core.groups import GROUPS, consensus, evaluate_all
from signalscout.core.regime import RegimeDetector
from signalscout.core.timing import PendingWindow, TimingController, timing_quality
from signalscout.trading.performance import PerformanceTracker
from signalscout.trading.signal import Signal
from signalscout.trading.storage import SignalSink
from signalscout.utils.logger import log
from signalscout.utils.scheduler import Scheduler, TimerHandle

class SignalOrchestrator:
    def __init__(self, cfg: ScoutConfig, scheduler: Scheduler, sink: Optional[SignalSink] = None,
                 store=None, journal=None, rng: Optional[np.random.Generator] = None):
        self.cfg = cfg
        self.scheduler = scheduler
        self.sink = sink
        self.journal = journal

        self.aggregator = CandleAggregator(cfg.candle_capacity)
        self.regime_detector = RegimeDetector()
        self.agent = LearningAgent(cfg, store, rng, clock=self._clock)
        self.timing = TimingController(
            scheduler, cfg.window_min_seconds, cfg.window_max_seconds, cfg.window_eval_seconds,
            on_evaluate=self._on_window_evaluate, on_expired=self._on_window_expired,
        )
        self.perf = PerformanceTracker()
        self.history: deque[Signal] = deque(maxlen=cfg.history_size)

        self.warmup_complete = False
        self.locked = False
        self.active_signal: Optional[Signal] = None
        self.last_timing_score = 0.0
        self._last_tick_ms: Optional[int] = None
        self._cycle_timer: Optional[TimerHandle] = None
        self._outcome_timer: Optional[TimerHandle] = None
        self._outcome_retried = False
        self._running = True

    def _clock(self) -> float:
        # hour-of-day feature follows market time when ticks carry it
        if self._last_tick_ms is not None:
            return self._last_tick_ms / 1000
        return time.time()

    # ------------------------------------------------------------------
    # ticks
    # ------------------------------------------------------------------
    def push_tick(self, timestamp_ms, price) -> bool:
        """Feed one price observation. Returns False when the tick was dropped."""
        if not self._running:
            return False
        if not self.aggregator.push_tick(timestamp_ms, price):
            return False
        self._last_tick_ms = int(timestamp_ms)

        if not self.warmup_complete and len(self.aggregator) >= self.cfg.warmup_candles:
            self._complete_warmup()

        if self.timing.is_active() and not self.timing.has_expired():
            self._check_bias()
        return True

    def _complete_warmup(self):
        self.warmup_complete = True
        log.info("🔥 Warmup complete: %d candles", len(self.aggregator))
        self.agent.seed_bandit(self.aggregator.get_series())
        self._cycle_timer = self.scheduler.call_every(self.cfg.signal_cycle_seconds, self._cycle)

    def _check_bias(self):
        """Cancel the open window when price sits against the candidate on every reference."""
        pending = self.timing.pending
        if pending is None or pending.candidate_action is None:
            return
        closes = self.aggregator.get_series().closes
        bb = ti.bollinger_bands(closes)
        refs = [r for r in (bb.middle if bb else None, ti.ema(closes, 21)) if r is not None]
        if not refs:
            return
        price = float(closes[-1])
        sign = pending.candidate_action.sign
        if all((price - r) * sign < 0 for r in refs):
            self.timing.cancel(f"bias flipped against {pending.candidate_action.value}")

    # ------------------------------------------------------------------
    # cycle
    # ------------------------------------------------------------------
    def _cycle(self):
        if not self.warmup_complete or self.locked or self.timing.is_active():
            return
        try:
            series = self.aggregator.get_series()
            regime = self.regime_detector.update_regime(series)
            rec = self.agent.recommend(series, regime, commit=False)
            candidate = self._candidate_action(series, rec)
            self.timing.start_window(candidate, rec.confidence, regime)
        except Exception as e:
            log.error("Signal cycle error: %s", e, exc_info=True)

    def _candidate_action(self, series, rec: Recommendation) -> Optional[Action]:
        prop = rec.group.evaluate(series)
        if prop is not None and prop.action is not None:
            return prop.action
        return consensus(series, self.agent.bandit).action

    def _on_window_evaluate(self, pending: PendingWindow, elapsed: float):
        series = self.aggregator.get_series()
        self.last_timing_score = timing_quality(series, pending, pending.initial_confidence)
        log.debug("⏱ %.0fs elapsed, %.0fs left, timing %.2f",
                  elapsed, self.timing.get_remaining_time(), self.last_timing_score)

    def _on_window_expired(self, pending: PendingWindow):
        try:
            self._publish(pending)
        except Exception as e:
            log.error("Publish error: %s", e, exc_info=True)
        finally:
            self.timing.stop_window()

    # ------------------------------------------------------------------
    # publish
    # ------------------------------------------------------------------
    def _publish(self, pending: PendingWindow) -> Optional[Signal]:
        price = self.aggregator.latest_price
        if price is None:
            return None
        series = self.aggregator.get_series()
        regime = self.regime_detector.update_regime(series)
        ind = ti.snapshot(series)
        rec = self.agent.recommend(series, regime, commit=True)
        proposals = evaluate_all(ind)

        idx, prop = rec.action_index, proposals[rec.action_index]
        if prop is None or prop.action is None:
            for i in self.agent.ranked_groups(rec.state):
                if proposals[i] is not None and proposals[i].action is not None:
                    idx, prop = i, proposals[i]
                    break

        group = GROUPS[idx]
        q_conf, q_adv = self.agent.score_group(rec.state, idx)
        if prop is not None and prop.action is not None:
            action = prop.action
            reasons = list(prop.reasons)
            # an undertrained network's Q spread says little, lean on the group
            if self.agent.should_explore_fallback():
                base = prop.confidence
            else:
                base = (q_conf + prop.confidence) / 2
        else:
            action = consensus(ind, self.agent.bandit).action or pending.candidate_action
            if action is None:
                log.info("🤷 No group has a direction at window close, nothing published")
                self.agent.pending = None
                return None
            reasons = ["Weighted group consensus"]
            base = q_conf
        if idx != rec.action_index:
            self.agent.set_learning_state(rec.state, idx)

        gate = evaluate_gates(action, ind, regime)
        confidence = apply_gate(base, gate, self.cfg.auto_trade_threshold, q_adv,
                                self.agent.bandit_weight(group.id), self.cfg.elevation_floor)
        quality = timing_quality(series, pending, confidence)
        reasons.append(f"Gate {gate.level.value}")
        reasons.append(f"Regime {regime.label()}")
        reasons.append(f"Timing {quality:.2f}")

        signal = Signal(
            action=action,
            confidence=confidence,
            group_id=group.id,
            price=price,
            timestamp=self._last_tick_ms if self._last_tick_ms is not None else int(time.time() * 1000),
            expiry_seconds=rec.expiry_seconds,
            reasons=reasons,
            group_name=group.name,
            asset=self.cfg.asset,
            gate=gate.level.value,
            q_advantage=q_adv,
            win_rate=self.perf.win_rate,
            auto_trade=confidence >= self.cfg.auto_trade_threshold,
            timing_score=quality,
            rl_state=rec.state,
            rl_action=idx,
        )
        if confidence < self.cfg.display_threshold:
            log.info("Signal below display threshold (%d%% < %d%%)", confidence, self.cfg.display_threshold)
        self._emit(signal)
        self._lock(signal)
        return signal

    def _emit(self, signal: Signal):
        log.info("📣 %s %s @ %.5f | conf %d%% | %s | gate %s | %dm%s",
                 signal.action.value, signal.asset, signal.price, signal.confidence,
                 signal.group_id, signal.gate, signal.duration_minutes,
                 " | AUTO" if signal.auto_trade else "")
        if self.sink is not None:
            try:
                self.sink.publish(signal)
            except Exception as e:
                log.warning("Failed to publish signal: %s", e)
        self._journal(signal)
        self.history.append(signal)

    def _journal(self, signal: Signal):
        if self.journal is None:
            return
        try:
            self.journal.save_signal(signal)
        except Exception as e:
            log.warning("Failed to journal signal %s: %s", signal.id, e)

    def _lock(self, signal: Signal):
        self.active_signal = signal
        self.locked = True
        self._outcome_retried = False
        delay = signal.expiry_seconds + self.cfg.settle_margin_seconds
        self._outcome_timer = self.scheduler.call_later(delay, self._check_outcome)

    # ------------------------------------------------------------------
    # outcome
    # ------------------------------------------------------------------
    def _check_outcome(self):
        self._outcome_timer = None
        signal = self.active_signal
        if signal is None:
            return
        try:
            price = self.aggregator.latest_price
            # price must come from after the expiry, a stale feed counts as unavailable
            fresh = self._last_tick_ms is not None and self._last_tick_ms >= signal.expires_at
            if price is None or not fresh:
                if not self._outcome_retried:
                    self._outcome_retried = True
                    log.info("⏳ No price after expiry for %s, retrying in %.0fs",
                             signal.id, self.cfg.outcome_retry_seconds)
                    self._outcome_timer = self.scheduler.call_later(
                        self.cfg.outcome_retry_seconds, self._check_outcome)
                    return
                log.warning("⚠️ Outcome for %s unavailable, unlocking without a result", signal.id)
                self._unlock()
                return
            result = Outcome.WIN if (price - signal.price) * signal.action.sign > 0 else Outcome.LOSS
            self._resolve(signal, result, price)
        except Exception as e:
            log.error("Outcome check error: %s", e, exc_info=True)
            self._unlock()

    def report_outcome(self, result: Outcome, exit_price: Optional[float] = None) -> bool:
        """External verification of the active signal. Returns False when nothing is awaiting one."""
        signal = self.active_signal
        if signal is None:
            return False
        if self._outcome_timer is not None:
            self._outcome_timer.cancel()
            self._outcome_timer = None
        self._resolve(signal, result, exit_price if exit_price is not None else self.aggregator.latest_price)
        return True

    def _resolve(self, signal: Signal, result: Outcome, exit_price: Optional[float]):
        signal.result = result
        signal.exit_price = exit_price
        signal.exit_time = self._last_tick_ms
        self.perf.record(result)
        self.agent.expiry.record_result(signal.expiry_seconds, result)

        series = self.aggregator.get_series()
        regime = self.regime_detector.update_regime(series)
        reward = self.agent.on_outcome(result, signal.confidence, series, regime,
                                       state=signal.rl_state, action=signal.rl_action)
        emoji = "✅" if result is Outcome.WIN else "❌"
        log.info("%s %s %s entry %.5f exit %s | reward %s | %s",
                 emoji, result.value, signal.action.value, signal.price,
                 f"{exit_price:.5f}" if exit_price is not None else "n/a",
                 f"{reward:+.2f}" if reward is not None else "n/a", self.perf.summary())

        self._journal(signal)
        if self.journal is not None:
            try:
                self.journal.save_snapshot(self.perf.win_rate, self.agent.total_experiences,
                                           self.agent.epsilon, self.agent.cumulative_reward,
                                           regime.label())
            except Exception as e:
                log.warning("Failed to save learning snapshot: %s", e)
        self._unlock()

    def _unlock(self):
        if self._outcome_timer is not None:
            self._outcome_timer.cancel()
            self._outcome_timer = None
        self.active_signal = None
        self.locked = False
        self._outcome_retried = False

    # ------------------------------------------------------------------
    def status(self) -> dict:
        last = self.history[-1] if self.history else None
        return {
            "candles": len(self.aggregator),
            "warmup_complete": self.warmup_complete,
            "locked": self.locked,
            "timing_state": self.timing.state.value,
            "window_remaining": self.timing.get_remaining_time() if self.timing.is_active() else None,
            "timing_score": round(self.last_timing_score, 2),
            "regime": self.regime_detector.current.label() if self.regime_detector.current else None,
            "signals": len(self.history),
            "last_signal": last.to_feed() if last else None,
            "performance": self.perf.summary(),
            "expiry": self.agent.expiry.status_line(),
            "agent": self.agent.metrics(),
        }

    def stop(self):
        self._running = False
        if self._cycle_timer is not None:
            self._cycle_timer.cancel()
            self._cycle_timer = None
        if self._outcome_timer is not None:
            self._outcome_timer.cancel()
            self._outcome_timer = None
        self.timing.stop_window()
        self.agent.save()
        self.agent.save_bandit()
        log.info("🛑 Orchestrator stopped | %s", self.perf.summary())
