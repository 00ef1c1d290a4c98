from collections import deque
from dataclasses import dataclass, field
from typing import Optional

from signalscout.constants import MomentumRegime, TrendDirection, TrendStrength, VolatilityLevel
from signalscout.core import indicators as ti
from signalscout.utils.candle import CandleSeries

MIN_CANDLES = 50
HISTORY_SIZE = 100
STABILITY_WINDOW = 10

@dataclass(frozen=True)
class VolatilityInfo:
    level: VolatilityLevel = VolatilityLevel.MEDIUM
    ratio: float = 0.5          # ATR / average close, in percent

@dataclass(frozen=True)
class TrendInfo:
    direction: TrendDirection = TrendDirection.NEUTRAL
    strength: TrendStrength = TrendStrength.MODERATE

@dataclass(frozen=True)
class MomentumInfo:
    regime: MomentumRegime = MomentumRegime.NEUTRAL
    rsi: float = 50.0

@dataclass(frozen=True)
class RegimeDescriptor:
    volatility: VolatilityInfo = field(default_factory=VolatilityInfo)
    trend: TrendInfo = field(default_factory=TrendInfo)
    momentum: MomentumInfo = field(default_factory=MomentumInfo)
    stability: float = 50.0

    @property
    def uncertainty(self) -> float:
        return max(0.0, 100.0 - self.stability)

    def label(self) -> str:
        return (f"{self.volatility.level.value}/{self.trend.direction.value}-"
                f"{self.trend.strength.value}/{self.momentum.regime.value}")

class RegimeDetector:
    """Classifies volatility, trend and momentum, and tracks how stable that classification is."""

    def __init__(self, history_size: int = HISTORY_SIZE):
        self.history: deque[RegimeDescriptor] = deque(maxlen=history_size)
        self.stability = 50.0
        self.current: Optional[RegimeDescriptor] = None

    @property
    def uncertainty(self) -> float:
        return max(0.0, 100.0 - self.stability)

    def update_regime(self, series: CandleSeries) -> RegimeDescriptor:
        if len(series) < MIN_CANDLES:
            # not recorded in history
            return RegimeDescriptor(stability=self.stability)

        closes, highs, lows = series.closes, series.highs, series.lows
        atr = ti.atr(highs, lows, closes, 14)
        avg = ti.sma(closes, 20)
        ratio = atr / avg * 100 if atr and avg > 0 else 0.5

        vol_level = VolatilityLevel.MEDIUM
        if ratio < 0.3:
            vol_level = VolatilityLevel.LOW
        elif ratio > 0.7:
            vol_level = VolatilityLevel.HIGH

        direction, strength = TrendDirection.NEUTRAL, TrendStrength.MODERATE
        ema12, ema26 = ti.ema(closes, 12), ti.ema(closes, 26)
        if ema12 is not None and ema26 is not None:
            diff = abs(ema12 - ema26) / avg
            if ema12 > ema26:
                direction = TrendDirection.BULLISH
            elif ema12 < ema26:
                direction = TrendDirection.BEARISH
            if diff > 0.002:
                strength = TrendStrength.STRONG
            elif diff < 0.0005:
                strength = TrendStrength.WEAK

        rsi = ti.rsi(closes, 14)
        momentum = MomentumRegime.NEUTRAL
        if rsi is not None:
            if rsi > 60:
                momentum = MomentumRegime.BULLISH
            elif rsi < 40:
                momentum = MomentumRegime.BEARISH

        vol = VolatilityInfo(vol_level, ratio)
        trend = TrendInfo(direction, strength)
        mom = MomentumInfo(momentum, rsi if rsi is not None else 50.0)
        self.history.append(RegimeDescriptor(vol, trend, mom))

        if len(self.history) >= STABILITY_WINDOW:
            recent = list(self.history)[-STABILITY_WINDOW:]
            same_vol = sum(1 for r in recent if r.volatility.level == vol_level)
            same_trend = sum(1 for r in recent if r.trend.direction == direction)
            self.stability = (same_vol + same_trend) / (2 * STABILITY_WINDOW) * 100

        self.current = RegimeDescriptor(vol, trend, mom, self.stability)
        return self.current
