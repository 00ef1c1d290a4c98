"""
Decision-window state machine.

IDLE → WINDOW_OPEN → EXPIRED | CANCELLED → IDLE

A window opens with a candidate direction, is re-evaluated periodically
between the minimum and maximum duration, and signals expiry exactly once.
It is never closed by itself on expiry: the owner reads the final decision
and then calls ``stop_window``.
"""
from dataclasses import dataclass
from typing import Callable, Optional

from signalscout.constants import Action, TimingState, VolatilityLevel
from signalscout.core import indicators as ti
from signalscout.core.regime import RegimeDescriptor
from signalscout.utils.candle import CandleSeries
from signalscout.utils.logger import log
from signalscout.utils.scheduler import Scheduler, TimerHandle

MIN_WINDOW_SECONDS = 60.0
MAX_WINDOW_SECONDS = 300.0
EVAL_INTERVAL_SECONDS = 20.0

@dataclass(frozen=True)
class PendingWindow:
    start_time: float
    candidate_action: Optional[Action]
    initial_confidence: Optional[float]
    initial_regime: Optional[RegimeDescriptor]

class TimingController:
    def __init__(self, scheduler: Scheduler,
                 min_seconds: float = MIN_WINDOW_SECONDS,
                 max_seconds: float = MAX_WINDOW_SECONDS,
                 eval_seconds: float = EVAL_INTERVAL_SECONDS,
                 on_evaluate: Optional[Callable[[PendingWindow, float], None]] = None,
                 on_expired: Optional[Callable[[PendingWindow], None]] = None):
        self.scheduler = scheduler
        self.min_seconds = min_seconds
        self.max_seconds = max_seconds
        self.eval_seconds = eval_seconds
        self.on_evaluate = on_evaluate
        self.on_expired = on_expired

        self.state = TimingState.IDLE
        self.pending: Optional[PendingWindow] = None
        self._timer: Optional[TimerHandle] = None

    # ------------------------------------------------------------------
    def start_window(self, candidate_action: Optional[Action], initial_confidence: Optional[float] = None,
                     initial_regime: Optional[RegimeDescriptor] = None) -> bool:
        """Open a window. Refused (False) while another window is open."""
        if self.pending is not None:
            log.debug("Window already open, start refused")
            return False
        self.pending = PendingWindow(self.scheduler.now(), candidate_action, initial_confidence, initial_regime)
        self.state = TimingState.WINDOW_OPEN
        self._timer = self.scheduler.call_every(self.eval_seconds, self._evaluate)
        log.info("⏳ Window opened: candidate=%s conf=%s",
                 candidate_action.value if candidate_action else "none", initial_confidence)
        return True

    def _evaluate(self):
        if self.pending is None or self.state is not TimingState.WINDOW_OPEN:
            return
        elapsed = self.get_elapsed_time()
        if elapsed < self.min_seconds:
            return
        if elapsed >= self.max_seconds:
            self.state = TimingState.EXPIRED
            self._cancel_timer()
            log.info("⌛ Window expired after %.0fs", elapsed)
            if self.on_expired is not None:
                self.on_expired(self.pending)
            return
        if self.on_evaluate is not None:
            self.on_evaluate(self.pending, elapsed)

    def _cancel_timer(self):
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def stop_window(self):
        """Clear all window state. Safe from any state, any number of times."""
        self._cancel_timer()
        self.pending = None
        self.state = TimingState.IDLE

    def cancel(self, reason: str = ""):
        if self.pending is not None:
            log.info("✖ Window cancelled%s", f": {reason}" if reason else "")
            self.state = TimingState.CANCELLED
        self.stop_window()

    # ------------------------------------------------------------------
    def is_active(self) -> bool:
        return self.pending is not None

    def has_expired(self) -> bool:
        return self.pending is not None and self.get_elapsed_time() >= self.max_seconds

    def get_elapsed_time(self) -> float:
        if self.pending is None:
            return 0.0
        return self.scheduler.now() - self.pending.start_time

    def get_remaining_time(self) -> float:
        if self.pending is None:
            return self.max_seconds
        return max(0.0, self.max_seconds - self.get_elapsed_time())

# ------------------------------------------------------------------
_INITIAL_VOL = {VolatilityLevel.LOW: 0.3, VolatilityLevel.MEDIUM: 0.5, VolatilityLevel.HIGH: 0.7}

def timing_quality(series: CandleSeries, pending: Optional[PendingWindow],
                   current_confidence: Optional[float] = None) -> float:
    """Score in [0, 1] for how favourable the moment is to commit to the candidate."""
    if len(series) < 50 or pending is None:
        return 0.0

    closes, highs, lows = series.closes, series.highs, series.lows
    action = pending.candidate_action
    score, factors = 0.0, 0

    if current_confidence is not None and pending.initial_confidence is not None:
        change = current_confidence - pending.initial_confidence
        if change >= 0:
            score += 0.35
        elif change >= -10:
            score += 0.25
        elif change >= -15:
            score += 0.15
        factors += 1

    if action is not None:
        up = closes[-1] > closes[-2]
        if (action is Action.BUY and up) or (action is Action.SELL and not up):
            score += 0.25
        else:
            score += 0.05
        factors += 1

    ratio = ti.volatility_ratio(highs, lows, closes)
    if ratio is not None:
        current = ratio * 100
        if pending.initial_regime is not None:
            ref = _INITIAL_VOL[pending.initial_regime.volatility.level] * 100
            if current < ref or abs(current - ref) < 0.1:
                score += 0.2
                factors += 1
        elif current < 0.5:
            score += 0.2
            factors += 1

    if action is not None:
        rsi, macd = ti.rsi(closes), ti.macd(closes)
        ema12, ema26 = ti.ema(closes, 12), ti.ema(closes, 26)
        align, n = 0.0, 0
        if rsi is not None:
            if 30 < rsi < 70:
                align += 0.20; n += 1
            elif 25 < rsi < 75:
                align += 0.10; n += 1
        if macd is not None:
            h = macd.histogram * action.sign
            if h > -0.0001:
                align += 0.20; n += 1
            elif h > -0.0005:
                align += 0.10; n += 1
        if ema12 is not None and ema26 is not None:
            align += 0.20 if (ema12 - ema26) * action.sign > 0 else 0.05
            n += 1
        if n > 0:
            score += align / n * 0.35
            factors += 1

        c0, c1, c2 = closes[-3], closes[-2], closes[-1]
        pullback = (c0 - c1) / c1
        trend = (c2 - c0) / c0
        if action is Action.BUY and -0.001 < pullback < 0 and trend > 0:
            score += 0.1; factors += 1
        elif action is Action.SELL and 0 < pullback < 0.001 and trend < 0:
            score += 0.1; factors += 1

    if factors == 0:
        return 0.0
    return min(1.0, score / factors + min(0.15, factors * 0.02))
