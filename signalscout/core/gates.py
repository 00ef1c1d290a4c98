"""
Soft gates: alignment checks that adjust confidence but never block a signal.

Three checks (trend, momentum, price position) are each run at a strict and
a relaxed tolerance. Momentum thresholds depend on the volatility level.
"""
from dataclasses import dataclass, field
from typing import Optional, Union

from signalscout.constants import Action, GateLevel, VolatilityLevel
from signalscout.core.indicators import IndicatorSnapshot, snapshot
from signalscout.core.regime import RegimeDescriptor
from signalscout.utils.candle import CandleSeries
from signalscout.utils.numeric import clamp, round_half_up

GATE_SCORES = {GateLevel.STRICT: 1.0, GateLevel.SOFT: 0.65, GateLevel.FAIL: 0.45}

FLAT_TREND = 0.0005           # |EMA12 - EMA26| / price treated as no trend
HIST_TOLERANCE = 0.0001       # MACD histogram slack for the relaxed check

@dataclass(frozen=True)
class MomentumBand:
    rsi_strict: float         # BUY needs rsi below this (SELL above 100 - x)
    rsi_soft: float
    stoch_strict: float       # BUY needs %K below this (SELL above 100 - x)
    stoch_soft: float

# tighter in fast markets, looser in quiet ones
MOMENTUM_BANDS = {
    VolatilityLevel.LOW: MomentumBand(70, 78, 85, 92),
    VolatilityLevel.MEDIUM: MomentumBand(68, 75, 80, 90),
    VolatilityLevel.HIGH: MomentumBand(62, 70, 75, 85),
}

@dataclass(frozen=True)
class GateCheck:
    name: str
    strict: bool
    soft: bool
    detail: str = ""

@dataclass(frozen=True)
class GateResult:
    level: GateLevel
    checks: tuple = field(default_factory=tuple)

    @property
    def score(self) -> float:
        return GATE_SCORES[self.level]

    @property
    def strict(self) -> bool:
        return self.level is GateLevel.STRICT

    def failed(self) -> list[str]:
        return [c.name for c in self.checks if not c.strict]

def _trend_check(action: Action, ind: IndicatorSnapshot) -> GateCheck:
    if ind.ema12 is None or ind.ema26 is None or not ind.price:
        return GateCheck("trend", True, True, "n/a")
    diff = (ind.ema12 - ind.ema26) * action.sign
    strict = diff > 0
    soft = strict or abs(ind.ema12 - ind.ema26) / ind.price < FLAT_TREND
    return GateCheck("trend", strict, soft, f"ema12-ema26={ind.ema12 - ind.ema26:+.6f}")

def _momentum_check(action: Action, ind: IndicatorSnapshot, band: MomentumBand) -> GateCheck:
    strict = soft = True
    parts = []
    if ind.macd is not None:
        h = ind.macd.histogram * action.sign
        strict &= h > 0
        soft &= h > -HIST_TOLERANCE
        parts.append(f"hist={ind.macd.histogram:+.6f}")
    if ind.rsi is not None:
        # mirror the RSI scale for SELL so one threshold serves both sides
        r = ind.rsi if action is Action.BUY else 100 - ind.rsi
        strict &= r < band.rsi_strict
        soft &= r < band.rsi_soft
        parts.append(f"rsi={ind.rsi:.1f}")
    if ind.stoch is not None:
        k = ind.stoch.k if action is Action.BUY else 100 - ind.stoch.k
        strict &= k < band.stoch_strict
        soft &= k < band.stoch_soft
        parts.append(f"k={ind.stoch.k:.1f}")
    return GateCheck("momentum", strict, soft, " ".join(parts) or "n/a")

def _position_check(action: Action, ind: IndicatorSnapshot) -> GateCheck:
    refs = [r for r in (ind.bb.middle if ind.bb else None, ind.ema21) if r is not None]
    if not refs or ind.price is None:
        return GateCheck("position", True, True, "n/a")
    sides = [(ind.price - r) * action.sign > 0 for r in refs]
    return GateCheck("position", all(sides), any(sides), f"{sum(sides)}/{len(sides)} refs aligned")

def evaluate_gates(action: Action, data: Union[CandleSeries, IndicatorSnapshot],
                   regime: Optional[RegimeDescriptor] = None) -> GateResult:
    ind = data if isinstance(data, IndicatorSnapshot) else snapshot(data)
    level = regime.volatility.level if regime is not None else VolatilityLevel.MEDIUM
    checks = (
        _trend_check(action, ind),
        _momentum_check(action, ind, MOMENTUM_BANDS[level]),
        _position_check(action, ind),
    )
    if all(c.strict for c in checks):
        gate = GateLevel.STRICT
    elif all(c.soft for c in checks):
        gate = GateLevel.SOFT
    else:
        gate = GateLevel.FAIL
    return GateResult(gate, checks)

def apply_gate(base_confidence: float, gate: GateResult, auto_trade_threshold: int = 75,
               q_advantage: float = 0.0, bandit_weight: float = 1.0, elevation_floor: int = 70) -> int:
    """Final confidence after gating.

    Non-strict results are capped just below the auto-trade threshold. Strict
    results can be raised toward 95 when the Q-value advantage and the bandit
    weight both back the chosen group.
    """
    conf = base_confidence * (0.6 + 0.4 * gate.score)
    if not gate.strict:
        conf = min(conf, auto_trade_threshold - 1)
    elif q_advantage > 0 and bandit_weight >= 1.0 and conf >= elevation_floor:
        conf += (95 - conf) * min(0.5, q_advantage)
    return int(clamp(round_half_up(conf), 40, 95))
