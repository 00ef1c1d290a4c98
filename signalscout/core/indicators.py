"""
Technical indicators over candle arrays.

Every function is pure and returns ``None`` when the input is too short,
never raising on short or flat data.
"""
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from signalscout.utils.candle import Candle, CandleSeries

MIN_CANDLE_RANGE = 0.00001
BB_FLAT_BANDWIDTH = 0.0001

# Pattern score blend
PATTERN_SCORE_PER_MATCH = 0.25
PATTERN_WEIGHT = 0.6
BODY_WEIGHT = 0.4

@dataclass(frozen=True)
class MACDResult:
    macd: float
    signal: float
    histogram: float

@dataclass(frozen=True)
class BollingerBands:
    upper: float
    middle: float
    lower: float
    percent_b: float

    @property
    def width(self) -> float:
        """Band width relative to the middle band."""
        return (self.upper - self.lower) / self.middle if self.middle else 0.0

@dataclass(frozen=True)
class StochasticResult:
    k: float
    d: float

@dataclass(frozen=True)
class ADXResult:
    adx: float
    plus_di: float
    minus_di: float
    dx: float

@dataclass(frozen=True)
class PatternInfo:
    patterns: tuple = ()
    bias_score: int = 0
    score: float = 0.0

    @property
    def bias(self) -> int:
        """+1 bullish, -1 bearish, 0 none."""
        return (self.bias_score > 0) - (self.bias_score < 0)

    @property
    def bias_name(self) -> Optional[str]:
        return {1: "BULLISH", -1: "BEARISH"}.get(self.bias)

NO_PATTERNS = PatternInfo()

# ------------------------------------------------------------------
def _arr(data) -> np.ndarray:
    return np.asarray(data, dtype=float)

def sma(data, period: int) -> Optional[float]:
    data = _arr(data)
    if period <= 0 or len(data) < period:
        return None
    return float(np.mean(data[-period:]))

def ema_series(data, period: int) -> Optional[np.ndarray]:
    """EMA at every index; entries before ``period - 1`` are NaN.

    Seeded with the SMA of the first ``period`` values.
    """
    data = _arr(data)
    if period <= 0 or len(data) < period:
        return None
    alpha = 2.0 / (period + 1)
    out = np.full(len(data), np.nan)
    val = float(np.mean(data[:period]))
    out[period - 1] = val
    for i in range(period, len(data)):
        val = (data[i] - val) * alpha + val
        out[i] = val
    return out

def ema(data, period: int) -> Optional[float]:
    series = ema_series(data, period)
    return None if series is None else float(series[-1])

def rsi(closes, period: int = 14) -> Optional[float]:
    closes = _arr(closes)
    if len(closes) < period + 1:
        return None
    deltas = np.diff(closes[-(period + 1):])
    gain = float(np.sum(np.maximum(deltas, 0))) / period
    loss = float(np.sum(np.maximum(-deltas, 0))) / period
    if loss == 0:
        return 100.0
    rs = gain / loss
    return 100.0 - 100.0 / (1.0 + rs)

def macd(closes, fast: int = 12, slow: int = 26, signal: int = 9) -> Optional[MACDResult]:
    closes = _arr(closes)
    if len(closes) < slow + signal:
        return None
    fast_ema = ema_series(closes, fast)
    slow_ema = ema_series(closes, slow)
    # MACD line at every prefix end from index `slow` onward
    history = fast_ema[slow:] - slow_ema[slow:]
    if len(history) < signal:
        return None
    signal_line = ema(history, signal)
    line = float(fast_ema[-1] - slow_ema[-1])
    return MACDResult(macd=line, signal=signal_line, histogram=line - signal_line)

def bollinger_bands(closes, period: int = 20, std_dev: float = 2) -> Optional[BollingerBands]:
    closes = _arr(closes)
    if len(closes) < period:
        return None
    window = closes[-period:]
    mid = float(np.mean(window))
    std = float(np.std(window))
    bandwidth = 2 * std * std_dev
    lower = mid - std * std_dev
    pct_b = (closes[-1] - lower) / bandwidth if bandwidth > BB_FLAT_BANDWIDTH else 0.5
    return BollingerBands(upper=mid + std * std_dev, middle=mid, lower=lower, percent_b=float(pct_b))

def true_range(highs, lows, closes) -> np.ndarray:
    highs, lows, closes = _arr(highs), _arr(lows), _arr(closes)
    return np.maximum(
        highs[1:] - lows[1:],
        np.maximum(
            np.abs(highs[1:] - closes[:-1]),
            np.abs(lows[1:] - closes[:-1])
        )
    )

def atr(highs, lows, closes, period: int = 14) -> Optional[float]:
    """Mean of the trailing ``period`` true ranges."""
    if len(highs) < period + 1:
        return None
    tr = true_range(highs, lows, closes)
    return float(np.mean(tr[-period:]))

def stochastic(highs, lows, closes, k_period: int = 14, d_period: int = 3) -> Optional[StochasticResult]:
    highs, lows, closes = _arr(highs), _arr(lows), _arr(closes)
    if len(highs) < k_period + d_period:
        return None
    k_vals = []
    for i in range(len(highs) - d_period, len(highs)):
        hh = np.max(highs[i - k_period + 1: i + 1])
        ll = np.min(lows[i - k_period + 1: i + 1])
        k_vals.append(50.0 if hh == ll else (closes[i] - ll) / (hh - ll) * 100.0)
    return StochasticResult(k=float(k_vals[-1]), d=float(np.mean(k_vals)))

def adx(highs, lows, closes, period: int = 14) -> Optional[ADXResult]:
    """Wilder-smoothed DI lines; ``adx`` is the single-period DX."""
    highs, lows, closes = _arr(highs), _arr(lows), _arr(closes)
    if len(highs) < period * 2:
        return None
    tr = true_range(highs, lows, closes)
    up = highs[1:] - highs[:-1]
    down = lows[:-1] - lows[1:]
    plus_dm = np.where((up > down) & (up > 0), up, 0.0)
    minus_dm = np.where((down > up) & (down > 0), down, 0.0)

    s_tr = float(np.mean(tr[:period]))
    s_plus = float(np.mean(plus_dm[:period]))
    s_minus = float(np.mean(minus_dm[:period]))
    for i in range(period, len(tr)):
        s_tr = (s_tr * (period - 1) + tr[i]) / period
        s_plus = (s_plus * (period - 1) + plus_dm[i]) / period
        s_minus = (s_minus * (period - 1) + minus_dm[i]) / period

    plus_di = s_plus / s_tr * 100 if s_tr > 0 else 0.0
    minus_di = s_minus / s_tr * 100 if s_tr > 0 else 0.0
    di_sum = plus_di + minus_di
    dx = abs(plus_di - minus_di) / di_sum * 100 if di_sum > 0 else 0.0
    return ADXResult(adx=dx, plus_di=plus_di, minus_di=minus_di, dx=dx)

def cci(highs, lows, closes, period: int = 20) -> Optional[float]:
    if len(highs) < period:
        return None
    tp = (_arr(highs)[-period:] + _arr(lows)[-period:] + _arr(closes)[-period:]) / 3.0
    mean = float(np.mean(tp))
    mad = float(np.mean(np.abs(tp - mean)))
    if mad == 0:
        return 0.0
    return float((tp[-1] - mean) / (0.015 * mad))

def williams_r(highs, lows, closes, period: int = 14) -> Optional[float]:
    if len(highs) < period:
        return None
    hh = float(np.max(_arr(highs)[-period:]))
    ll = float(np.min(_arr(lows)[-period:]))
    if hh == ll:
        return -50.0
    return (hh - float(closes[-1])) / (hh - ll) * -100.0

def awesome_oscillator(highs, lows) -> Optional[float]:
    if len(highs) < 34 or len(lows) < 34:
        return None
    median = (_arr(highs) + _arr(lows)) / 2.0
    return sma(median, 5) - sma(median, 34)

def volatility_ratio(highs, lows, closes, atr_period: int = 14, avg_period: int = 20) -> Optional[float]:
    """ATR relative to the recent average close."""
    a = atr(highs, lows, closes, atr_period)
    avg = sma(closes, avg_period)
    if a is None or not avg:
        return None
    return a / avg

# ------------------------------------------------------------------
def _range(c: Candle) -> float:
    return max(MIN_CANDLE_RANGE, c.high - c.low)

def detect_patterns(candles: Sequence[Candle]) -> PatternInfo:
    """Candlestick patterns over the last two or three candles."""
    if candles is None or len(candles) < 2:
        return NO_PATTERNS

    recent = list(candles[-3:])
    last, prev = recent[-1], recent[-2]
    last_body, last_range = last.body, _range(last)

    found = []
    bias = 0

    if last_body / last_range < 0.1:
        found.append("DOJI")

    upper_wick = last.high - max(last.open, last.close)
    lower_wick = min(last.open, last.close) - last.low
    if last_body / last_range < 0.3 and lower_wick > upper_wick * 2 and lower_wick > last_body * 1.5:
        found.append("HAMMER")
        bias += 1
    elif last_body / last_range < 0.3 and upper_wick > lower_wick * 2 and upper_wick > last_body * 1.5:
        found.append("SHOOTING_STAR")
        bias -= 1

    bullish_engulf = (last.close > last.open and prev.close < prev.open
                      and last.close >= prev.open and last.open <= prev.close)
    bearish_engulf = (last.close < last.open and prev.close > prev.open
                      and last.open >= prev.close and last.close <= prev.open)
    if bullish_engulf:
        found.append("BULLISH_ENGULFING")
        bias += 2
    elif bearish_engulf:
        found.append("BEARISH_ENGULFING")
        bias -= 2

    if len(recent) >= 3:
        c1, c2, c3 = recent
        small_c2 = c2.body / _range(c2) < 0.3
        gap_down = c2.close < c1.close and c2.open < c1.close
        gap_up = c2.close > c1.close and c2.open > c1.close
        if gap_down and small_c2 and c3.close > c1.open:
            found.append("MORNING_STAR")
            bias += 2
        elif gap_up and small_c2 and c3.close < c1.open:
            found.append("EVENING_STAR")
            bias -= 2

    base = min(1.0, len(found) * PATTERN_SCORE_PER_MATCH)
    body_quality = max(0.0, 1.0 - last_body / last_range)
    score = min(1.0, base * PATTERN_WEIGHT + body_quality * BODY_WEIGHT)
    return PatternInfo(patterns=tuple(found), bias_score=bias, score=score)

# ------------------------------------------------------------------
@dataclass(frozen=True)
class IndicatorSnapshot:
    """Everything the groups, gates and state encoder read, computed once per series."""

    price: Optional[float]
    rsi: Optional[float]
    macd: Optional[MACDResult]
    bb: Optional[BollingerBands]
    ema8: Optional[float]
    ema9: Optional[float]
    ema13: Optional[float]
    ema12: Optional[float]
    ema21: Optional[float]
    ema26: Optional[float]
    ema50: Optional[float]
    atr: Optional[float]
    avg20: Optional[float]
    stoch: Optional[StochasticResult]
    adx: Optional[ADXResult]
    cci: Optional[float]
    williams_r: Optional[float]
    ao: Optional[float]
    patterns: PatternInfo

    @property
    def volatility_ratio(self) -> Optional[float]:
        if self.atr is None or not self.avg20:
            return None
        return self.atr / self.avg20

def snapshot(series: CandleSeries) -> IndicatorSnapshot:
    h, l, c = series.highs, series.lows, series.closes
    return IndicatorSnapshot(
        price=series.last_close,
        rsi=rsi(c, 14),
        macd=macd(c, 12, 26, 9),
        bb=bollinger_bands(c, 20, 2),
        ema8=ema(c, 8),
        ema9=ema(c, 9),
        ema13=ema(c, 13),
        ema12=ema(c, 12),
        ema21=ema(c, 21),
        ema26=ema(c, 26),
        ema50=ema(c, 50),
        atr=atr(h, l, c, 14),
        avg20=sma(c, 20),
        stoch=stochastic(h, l, c, 14, 3),
        adx=adx(h, l, c, 14),
        cci=cci(h, l, c, 20),
        williams_r=williams_r(h, l, c, 14),
        ao=awesome_oscillator(h, l),
        patterns=detect_patterns(series.candles),
    )
