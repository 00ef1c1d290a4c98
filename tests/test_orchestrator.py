"""End-to-end tests for the signal loop on a manual clock."""

import numpy as np
import pytest

from signalscout.constants import Action, Outcome, TimingState
from signalscout.core.agent import LEARNING_STATE_KEY
from signalscout.trading.orchestrator import SignalOrchestrator
from signalscout.trading.storage import MemorySink, MemoryStore, SignalSink
from signalscout.utils.candle import candle_to_ticks
from signalscout.utils.scheduler import VirtualScheduler

T0 = 1_699_999_980_000
STEP = 0.0004       # uptrend drift per minute


class UptrendFeed:
    """Pushes a steady uptrend: ``warm`` preloads whole candles, ``run`` ticks in step with the clock."""

    def __init__(self, orch: SignalOrchestrator, scheduler):
        self.orch = orch
        self.scheduler = scheduler
        self.price = 1.10
        self.base_ms = T0

    def warm(self, candles: int = 50):
        for i in range(candles):
            self.orch.push_tick(T0 + i * 60_000, self.price)
            self.price += STEP
        self.base_ms = T0 + candles * 60_000

    def run(self, seconds: float, every: float = 10.0):
        for _ in range(int(seconds // every)):
            self.scheduler.advance(every)
            self.price += STEP * every / 60
            self.orch.push_tick(self.base_ms + int(self.scheduler.now() * 1000), self.price)


class FailingSink(SignalSink):
    def publish(self, signal):
        raise OSError("disk full")


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def sink() -> MemorySink:
    return MemorySink()


@pytest.fixture
def orch(cfg, scheduler, sink, store) -> SignalOrchestrator:
    return SignalOrchestrator(cfg, scheduler, sink, store=store, rng=np.random.default_rng(3))


@pytest.fixture
def feed(orch, scheduler) -> UptrendFeed:
    return UptrendFeed(orch, scheduler)


class TestWarmup:
    def test_no_cycle_before_warmup(self, orch, feed, scheduler) -> None:
        feed.warm(49)
        assert not orch.warmup_complete
        assert scheduler.pending == 0

    def test_warmup_flips_once(self, orch, feed, scheduler) -> None:
        feed.warm(50)
        assert orch.warmup_complete
        assert orch.agent.bandit_seeded
        assert scheduler.pending == 1
        feed.warm(51)
        assert scheduler.pending == 1

    def test_invalid_ticks_dropped(self, orch) -> None:
        assert not orch.push_tick(T0, -1.0)
        assert not orch.push_tick(T0, float("nan"))
        assert len(orch.aggregator) == 0


class TestCycle:
    def test_cycle_opens_window(self, orch, feed, scheduler) -> None:
        feed.warm()
        scheduler.advance(5)
        assert orch.timing.is_active()
        assert orch.timing.state is TimingState.WINDOW_OPEN

    def test_bias_flip_cancels_window(self, orch, feed) -> None:
        feed.warm()
        assert orch.timing.start_window(Action.SELL, 70)
        feed.run(10)
        assert not orch.timing.is_active()

    def test_aligned_window_survives_ticks(self, orch, feed) -> None:
        feed.warm()
        orch.timing.start_window(Action.BUY, 70)
        feed.run(120)
        assert orch.timing.is_active()


class TestPublishAndVerify:
    def _publish(self, orch, feed):
        feed.warm()
        orch.timing.start_window(Action.BUY, 70)
        feed.run(300)

    def test_window_expiry_publishes(self, orch, feed, sink) -> None:
        self._publish(orch, feed)
        assert len(sink.published) == 1
        assert orch.locked
        assert orch.timing.state is TimingState.IDLE
        signal = orch.history[-1]
        assert signal.id == sink.last["id"]
        assert 40 <= signal.confidence <= 95
        assert signal.auto_trade == (signal.confidence >= 75)
        assert 0 <= signal.rl_action < 20
        assert len(signal.rl_state) == 16
        assert signal.gate in ("STRICT", "SOFT", "FAIL")
        assert f"Timing {signal.timing_score:.2f}" in signal.reasons
        assert orch.agent.pending == (signal.rl_state, signal.rl_action)

    def test_no_new_window_while_locked(self, orch, feed, scheduler) -> None:
        self._publish(orch, feed)
        scheduler.advance(30)
        assert not orch.timing.is_active()

    def test_outcome_verified_against_price(self, orch, feed, sink) -> None:
        self._publish(orch, feed)
        signal = orch.history[-1]
        feed.run(500)
        assert signal.result is not None
        expected = Outcome.WIN if (signal.exit_price - signal.price) * signal.action.sign > 0 else Outcome.LOSS
        assert signal.result is expected
        assert not orch.locked
        assert orch.perf.total == 1
        assert orch.agent.total_experiences == 1
        assert len(orch.agent.replay) == 1

    def test_stale_price_retries_then_unlocks(self, orch, feed, scheduler) -> None:
        self._publish(orch, feed)
        signal = orch.history[-1]
        scheduler.advance(signal.expiry_seconds + 15)
        assert orch.locked
        scheduler.advance(5)
        assert not orch.locked
        assert signal.result is None
        assert orch.perf.total == 0

    def test_manual_report_cancels_check(self, orch, feed) -> None:
        self._publish(orch, feed)
        assert orch.report_outcome(Outcome.WIN)
        assert not orch.locked
        feed.run(500)
        assert orch.perf.total == orch.agent.total_experiences
        assert orch.history[0].result is Outcome.WIN

    def test_report_without_signal(self, orch) -> None:
        assert not orch.report_outcome(Outcome.LOSS)

    def test_sink_failure_does_not_stop_loop(self, cfg, scheduler) -> None:
        orch = SignalOrchestrator(cfg, scheduler, FailingSink(), rng=np.random.default_rng(3))
        self._publish(orch, UptrendFeed(orch, scheduler))
        assert len(orch.history) == 1
        assert orch.locked


class TestLifecycle:
    def test_status_snapshot(self, orch, feed) -> None:
        feed.warm()
        status = orch.status()
        assert status["candles"] == 50
        assert status["warmup_complete"]
        assert status["timing_state"] == "IDLE"
        assert status["timing_score"] == 0.0
        assert status["last_signal"] is None

    def test_stop_saves_and_halts(self, orch, feed, scheduler, store) -> None:
        feed.warm()
        orch.stop()
        assert store.load(LEARNING_STATE_KEY)["version"] == 1
        assert scheduler.pending == 0
        assert not orch.push_tick(feed.base_ms, 1.2)


class TestTickReplay:
    def test_outcome_checked_on_market_time(self, cfg, make_series) -> None:
        closes = 1.10 + np.arange(140) * STEP
        ticks = [t for c in make_series(closes).candles for t in candle_to_ticks(c)]
        clock = VirtualScheduler(ticks[0][0] / 1000)
        orch = SignalOrchestrator(cfg, clock, MemorySink(), rng=np.random.default_rng(3))
        for ts, price in ticks:
            orch.push_tick(ts, price)
            clock.advance_to(ts / 1000)

        resolved = [s for s in orch.history if s.result is not None]
        assert resolved
        # candle ticks are 15 s apart, the check lands on the first tick past expiry + settle
        for s in resolved:
            lag_ms = s.exit_time - s.expires_at
            assert 0 <= lag_ms <= (cfg.settle_margin_seconds + 15) * 1000
