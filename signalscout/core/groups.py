"""
Indicator groups: twenty small strategies that each combine two to four
indicators and either propose a direction or abstain.

An abstention (``None``) is never a vote. The learning agent picks which
group to trust, so a group must stay silent when its own preconditions
are not met instead of guessing weakly.
"""
from dataclasses import dataclass, field
from typing import Callable, Optional, Union

from signalscout.constants import Action, RiskLevel
from signalscout.core.indicators import IndicatorSnapshot, snapshot
from signalscout.utils.candle import CandleSeries
from signalscout.utils.numeric import clamp, round_half_up

# Volatility risk bands (ATR / average price)
VOL_RISK_LOW = 0.002
VOL_RISK_ELEVATED = 0.012
VOL_RISK_EXTREME = 0.02
VOL_RISK_CAP = 0.025
BB_SQUEEZE_THRESHOLD = 0.02
MAX_VOLATILITY_RATIO = 0.02

@dataclass(frozen=True)
class GroupProposal:
    action: Optional[Action]
    confidence: int
    reasons: list = field(default_factory=list)

@dataclass(frozen=True)
class RiskSnapshot:
    level: RiskLevel
    ratio: float
    passes: bool

def calculate_confidence(base: float, strength: float, filter_passed: bool = True,
                         adx_strength: Optional[float] = None) -> int:
    conf = base + strength * 5
    if not filter_passed:
        conf -= 10
    if adx_strength is not None and adx_strength > 25:
        conf += 3
    return int(clamp(round_half_up(conf), 60, 95))

def check_atr_filter(ind: IndicatorSnapshot, max_ratio: float = MAX_VOLATILITY_RATIO) -> bool:
    """False when ATR / average price exceeds ``max_ratio``. Missing data passes."""
    ratio = ind.volatility_ratio
    if ratio is None:
        return True
    return ratio <= max_ratio

def risk_snapshot(ind: IndicatorSnapshot) -> RiskSnapshot:
    ratio = ind.volatility_ratio
    if not ratio:
        return RiskSnapshot(RiskLevel.UNKNOWN, 0.0, True)
    if ratio < VOL_RISK_LOW:
        level = RiskLevel.LOW
    elif ratio > VOL_RISK_EXTREME:
        level = RiskLevel.EXTREME
    elif ratio > VOL_RISK_ELEVATED:
        level = RiskLevel.HIGH
    else:
        level = RiskLevel.BALANCED
    return RiskSnapshot(level, ratio, VOL_RISK_LOW <= ratio <= VOL_RISK_CAP)

def _hist_boost(hist: float) -> float:
    return min(0.5, abs(hist) * 500)

def _propose(action: Optional[Action], base: float, strength: float, filter_passed: bool,
             reasons: list, adx_strength: Optional[float] = None) -> Optional[GroupProposal]:
    if action is None:
        return None
    return GroupProposal(action, calculate_confidence(base, strength, filter_passed, adx_strength), reasons)

# ------------------------------------------------------------------
# strategies
# ------------------------------------------------------------------
def _rsi_bb(ind: IndicatorSnapshot) -> Optional[GroupProposal]:
    rsi, bb = ind.rsi, ind.bb
    if rsi is None or bb is None:
        return None
    action, strength = None, 0.0
    if rsi < 30 and bb.percent_b < 0.15:
        action = Action.BUY
        strength = (30 - rsi) / 30 + (0.15 - bb.percent_b) / 0.15
    elif rsi > 70 and bb.percent_b > 0.85:
        action = Action.SELL
        strength = (rsi - 70) / 30 + (bb.percent_b - 0.85) / 0.15
    ok = check_atr_filter(ind)
    return _propose(action, 75, strength / 2, ok, [
        f"RSI: {rsi:.1f}",
        f"BB %B: {bb.percent_b * 100:.1f}%",
        "Volatility OK" if ok else "High volatility",
    ])

def _macd_ema(ind: IndicatorSnapshot) -> Optional[GroupProposal]:
    m, e12, e26, price = ind.macd, ind.ema12, ind.ema26, ind.price
    if m is None or e12 is None or e26 is None:
        return None
    action, strength = None, 0.0
    if m.histogram > 0 and e12 > e26 and price > e12:
        action = Action.BUY
        strength = min(1, abs(m.histogram) * 1000) + 0.3
    elif m.histogram < 0 and e12 < e26 and price < e12:
        action = Action.SELL
        strength = min(1, abs(m.histogram) * 1000) + 0.3
    return _propose(action, 73, strength / 2, check_atr_filter(ind), [
        "MACD bullish" if action is Action.BUY else "MACD bearish",
        "EMA12 > EMA26" if action is Action.BUY else "EMA12 < EMA26",
        f"Price above EMA12: {price > e12}",
    ])

def _rsi_oversold(ind: IndicatorSnapshot) -> Optional[GroupProposal]:
    rsi, m = ind.rsi, ind.macd
    if rsi is None or m is None:
        return None
    action, strength = None, 0.0
    if rsi < 30 and m.histogram > -0.0001:
        action, strength = Action.BUY, (30 - rsi) / 30
    elif rsi > 70 and m.histogram < 0.0001:
        action, strength = Action.SELL, (rsi - 70) / 30
    return _propose(action, 72, strength / 2, check_atr_filter(ind),
                    [f"RSI: {rsi:.1f}", "MACD confirmation"])

def _bb_bounce(ind: IndicatorSnapshot) -> Optional[GroupProposal]:
    bb, rsi, price = ind.bb, ind.rsi, ind.price
    if bb is None or rsi is None:
        return None
    action, strength = None, 0.0
    if price <= bb.lower * 1.001 and rsi < 40:
        action, strength = Action.BUY, (40 - rsi) / 40
    elif price >= bb.upper * 0.999 and rsi > 60:
        action, strength = Action.SELL, (rsi - 60) / 40
    return _propose(action, 74, strength / 2, check_atr_filter(ind),
                    ["Price at BB extreme", f"RSI: {rsi:.1f}"])

def _ema_trend(ind: IndicatorSnapshot) -> Optional[GroupProposal]:
    e9, e21, e50, price = ind.ema9, ind.ema21, ind.ema50, ind.price
    if e9 is None or e21 is None:
        return None
    action, strength = None, 0.0
    if e9 > e21 and price > e9:
        action = Action.BUY
        strength = 0.8 if e50 is not None and price > e50 else 0.5
    elif e9 < e21 and price < e9:
        action = Action.SELL
        strength = 0.8 if e50 is not None and price < e50 else 0.5
    return _propose(action, 71, strength, check_atr_filter(ind), [
        "EMA9 > EMA21" if action is Action.BUY else "EMA9 < EMA21",
        "Price above/below EMAs",
        "EMA50 aligned" if e50 is not None else "EMA50 N/A",
    ])

def _macd_cross(ind: IndicatorSnapshot) -> Optional[GroupProposal]:
    m, e21, price = ind.macd, ind.ema21, ind.price
    if m is None or e21 is None:
        return None
    action, strength = None, 0.0
    if m.histogram > 0 and m.macd > m.signal and price > e21:
        action, strength = Action.BUY, min(1, abs(m.histogram) * 1000)
    elif m.histogram < 0 and m.macd < m.signal and price < e21:
        action, strength = Action.SELL, min(1, abs(m.histogram) * 1000)
    return _propose(action, 73, strength / 2, check_atr_filter(ind), [
        "MACD cross bullish" if action is Action.BUY else "MACD cross bearish",
        f"Price {'above' if price > e21 else 'below'} EMA21",
    ])

def _rsi_macd(ind: IndicatorSnapshot) -> Optional[GroupProposal]:
    rsi, m = ind.rsi, ind.macd
    if rsi is None or m is None:
        return None
    action, strength = None, 0.0
    if rsi < 40 and m.histogram > 0:
        action, strength = Action.BUY, (40 - rsi) / 40 + _hist_boost(m.histogram)
    elif rsi > 60 and m.histogram < 0:
        action, strength = Action.SELL, (rsi - 60) / 40 + _hist_boost(m.histogram)
    return _propose(action, 76, strength / 2, check_atr_filter(ind), [
        f"RSI: {rsi:.1f}",
        "MACD bullish" if action is Action.BUY else "MACD bearish",
    ])

def _bb_macd(ind: IndicatorSnapshot) -> Optional[GroupProposal]:
    bb, m = ind.bb, ind.macd
    if bb is None or m is None:
        return None
    action, strength = None, 0.0
    if bb.percent_b < 0.2 and m.histogram > 0:
        action, strength = Action.BUY, (0.2 - bb.percent_b) / 0.2 + _hist_boost(m.histogram)
    elif bb.percent_b > 0.8 and m.histogram < 0:
        action, strength = Action.SELL, (bb.percent_b - 0.8) / 0.2 + _hist_boost(m.histogram)
    return _propose(action, 75, strength / 2, check_atr_filter(ind), [
        "BB lower" if action is Action.BUY else "BB upper",
        "MACD bullish" if action is Action.BUY else "MACD bearish",
    ])

def _triple_ema(ind: IndicatorSnapshot) -> Optional[GroupProposal]:
    e8, e13, e21, price = ind.ema8, ind.ema13, ind.ema21, ind.price
    if e8 is None or e13 is None or e21 is None:
        return None
    action = None
    if e8 > e13 > e21 and price > e8:
        action = Action.BUY
    elif e8 < e13 < e21 and price < e8:
        action = Action.SELL
    return _propose(action, 72, 0.8, check_atr_filter(ind), [
        "EMA8 > EMA13 > EMA21" if action is Action.BUY else "EMA8 < EMA13 < EMA21",
        f"Price {'above' if price > e8 else 'below'} EMAs",
    ])

def _rsi_bb_macd(ind: IndicatorSnapshot) -> Optional[GroupProposal]:
    rsi, bb, m = ind.rsi, ind.bb, ind.macd
    if rsi is None or bb is None or m is None:
        return None
    buys = sells = 0
    strength = 0.0
    if rsi < 35:
        buys += 1; strength += 0.3
    if rsi > 65:
        sells += 1; strength += 0.3
    if bb.percent_b < 0.25:
        buys += 1; strength += 0.3
    if bb.percent_b > 0.75:
        sells += 1; strength += 0.3
    if m.histogram > 0:
        buys += 1; strength += 0.4
    if m.histogram < 0:
        sells += 1; strength += 0.4

    action = None
    if buys >= 2:
        action = Action.BUY
    elif sells >= 2:
        action = Action.SELL
    return _propose(action, 78, strength / 3, check_atr_filter(ind), [
        f"{buys or sells}/3 signals",
        f"RSI: {rsi:.1f}",
        f"BB: {bb.percent_b * 100:.1f}%",
    ])

def _atr_trend(ind: IndicatorSnapshot) -> Optional[GroupProposal]:
    e12, e26, price, ratio = ind.ema12, ind.ema26, ind.price, ind.volatility_ratio
    if ind.atr is None or e12 is None or e26 is None or ratio is None:
        return None
    # moderate volatility only
    if ratio < 0.003 or ratio > 0.02:
        return None
    action = None
    if e12 > e26 and price > e12:
        action = Action.BUY
    elif e12 < e26 and price < e12:
        action = Action.SELL
    return _propose(action, 74, 0.7, True, [
        f"ATR volatility: {ratio * 100:.3f}%",
        "EMA trend aligned",
        "Moderate volatility filter",
    ])

def _adx_macd(ind: IndicatorSnapshot) -> Optional[GroupProposal]:
    a, m = ind.adx, ind.macd
    if a is None or m is None or a.adx < 25:
        return None
    up = a.plus_di > a.minus_di
    action, strength = None, 0.0
    if up and m.histogram > 0 and m.macd > m.signal:
        action = Action.BUY
    elif not up and m.histogram < 0 and m.macd < m.signal:
        action = Action.SELL
    if action is not None:
        strength = min(1, (a.adx - 25) / 30) + _hist_boost(m.histogram)
    return _propose(action, 77, strength / 2, check_atr_filter(ind), [
        f"ADX: {a.adx:.1f} (strong trend)",
        "MACD momentum aligned",
        f"Trend: {'UP' if up else 'DOWN'}",
    ], adx_strength=a.adx)

def _stoch_rsi(ind: IndicatorSnapshot) -> Optional[GroupProposal]:
    st, rsi = ind.stoch, ind.rsi
    if st is None or rsi is None:
        return None
    action, strength = None, 0.0
    if st.k < 30 and st.d < 30 and rsi < 40:
        action, strength = Action.BUY, ((30 - st.k) / 30 + (40 - rsi) / 40) / 2
    elif st.k > 70 and st.d > 70 and rsi > 60:
        action, strength = Action.SELL, ((st.k - 70) / 30 + (rsi - 60) / 40) / 2
    return _propose(action, 76, strength, check_atr_filter(ind), [
        f"Stoch K: {st.k:.1f}, D: {st.d:.1f}",
        f"RSI: {rsi:.1f}",
        "Dual momentum confirmation",
    ])

def _atr_bb(ind: IndicatorSnapshot) -> Optional[GroupProposal]:
    bb, rsi, ratio = ind.bb, ind.rsi, ind.volatility_ratio
    if ind.atr is None or bb is None or rsi is None or ratio is None:
        return None
    if ratio < 0.003:
        return None
    action, strength = None, 0.0
    if bb.percent_b < 0.2 and rsi < 45:
        action, strength = Action.BUY, (0.2 - bb.percent_b) / 0.2 + (45 - rsi) / 45
    elif bb.percent_b > 0.8 and rsi > 55:
        action, strength = Action.SELL, (bb.percent_b - 0.8) / 0.2 + (rsi - 55) / 45
    return _propose(action, 75, strength / 2, ratio <= 0.02, [
        f"ATR vol: {ratio * 100:.3f}%",
        f"BB %B: {bb.percent_b * 100:.1f}%",
        f"RSI: {rsi:.1f}",
    ])

def _adx_ema(ind: IndicatorSnapshot) -> Optional[GroupProposal]:
    a, e12, e26, price = ind.adx, ind.ema12, ind.ema26, ind.price
    if a is None or e12 is None or e26 is None or a.adx < 25:
        return None
    up = a.plus_di > a.minus_di
    action = None
    if up and e12 > e26 and price > e12:
        action = Action.BUY
    elif not up and e12 < e26 and price < e12:
        action = Action.SELL
    strength = min(1, (a.adx - 25) / 30) + 0.3
    return _propose(action, 76, strength / 2, check_atr_filter(ind), [
        f"ADX: {a.adx:.1f} (strong)",
        "EMA alignment",
        f"Trend: {'UP' if up else 'DOWN'}",
    ], adx_strength=a.adx)

def _cci_macd(ind: IndicatorSnapshot) -> Optional[GroupProposal]:
    cci, m = ind.cci, ind.macd
    if cci is None or m is None:
        return None
    action, strength = None, 0.0
    if cci < -100 and m.histogram > 0:
        action, strength = Action.BUY, min(1, abs(cci + 100) / 100) + _hist_boost(m.histogram)
    elif cci > 100 and m.histogram < 0:
        action, strength = Action.SELL, min(1, abs(cci - 100) / 100) + _hist_boost(m.histogram)
    return _propose(action, 75, strength / 2, check_atr_filter(ind),
                    [f"CCI: {cci:.1f}", "MACD momentum", "Cyclical trend"])

def _williams_bb(ind: IndicatorSnapshot) -> Optional[GroupProposal]:
    wr, bb = ind.williams_r, ind.bb
    if wr is None or bb is None:
        return None
    action, strength = None, 0.0
    if wr < -80 and bb.percent_b < 0.25:
        action, strength = Action.BUY, abs(wr + 80) / 20 + (0.25 - bb.percent_b) / 0.25
    elif wr > -20 and bb.percent_b > 0.75:
        action, strength = Action.SELL, (wr + 20) / 20 + (bb.percent_b - 0.75) / 0.25
    return _propose(action, 74, strength / 2, check_atr_filter(ind), [
        f"Williams %R: {wr:.1f}",
        f"BB %B: {bb.percent_b * 100:.1f}%",
        "Momentum + volatility",
    ])

def _atr_macd_ema(ind: IndicatorSnapshot) -> Optional[GroupProposal]:
    m, e21, price, ratio = ind.macd, ind.ema21, ind.price, ind.volatility_ratio
    if ind.atr is None or m is None or e21 is None or ratio is None:
        return None
    if ratio > 0.02:
        return None
    calm = 0.003 <= ratio <= 0.015
    buys = (m.histogram > 0 and m.macd > m.signal) + (price > e21) + calm
    sells = (m.histogram < 0 and m.macd < m.signal) + (price < e21) + calm

    action, hits = None, 0
    if buys >= 2:
        action, hits = Action.BUY, buys
    elif sells >= 2:
        action, hits = Action.SELL, sells
    return _propose(action, 79, hits / 3, True, [
        f"{hits}/3 confirmations",
        f"ATR vol: {ratio * 100:.3f}%",
        "MACD + EMA + Volatility",
    ])

def _pattern_engulfing_rsi(ind: IndicatorSnapshot) -> Optional[GroupProposal]:
    pat, rsi = ind.patterns, ind.rsi
    if not pat.patterns or rsi is None:
        return None
    risk = risk_snapshot(ind)
    action, strength = None, pat.score
    if ("BULLISH_ENGULFING" in pat.patterns or "MORNING_STAR" in pat.patterns or pat.bias > 0) and rsi < 60:
        action = Action.BUY
        strength += (60 - rsi) / 60
    elif ("BEARISH_ENGULFING" in pat.patterns or "EVENING_STAR" in pat.patterns or pat.bias < 0) and rsi > 40:
        action = Action.SELL
        strength += (rsi - 40) / 60
    return _propose(action, 78, strength, risk.passes, [
        f"Patterns: {', '.join(pat.patterns)}",
        f"RSI: {rsi:.1f}",
        f"Volatility risk: {risk.level.value}",
    ], adx_strength=ind.adx.adx if ind.adx is not None else None)

def _vol_squeeze_breakout(ind: IndicatorSnapshot) -> Optional[GroupProposal]:
    bb, m = ind.bb, ind.macd
    if bb is None or ind.atr is None or m is None:
        return None
    bandwidth = (bb.upper - bb.lower) / (bb.middle or 1)
    if bandwidth >= BB_SQUEEZE_THRESHOLD:
        return None
    risk = risk_snapshot(ind)
    action = None
    strength = min(1, (BB_SQUEEZE_THRESHOLD - bandwidth) * 40)
    if m.histogram > 0 and m.macd > m.signal:
        action = Action.BUY
    elif m.histogram < 0 and m.macd < m.signal:
        action = Action.SELL
    strength += _hist_boost(m.histogram)
    return _propose(action, 77, strength / 2, risk.passes, [
        "Bollinger squeeze detected",
        f"ATR/price: {risk.ratio * 100:.2f}%",
        f"MACD momentum {'up' if action is Action.BUY else 'down'}",
    ])

# ------------------------------------------------------------------
@dataclass(frozen=True)
class IndicatorGroup:
    id: str
    name: str
    analyze: Callable[[IndicatorSnapshot], Optional[GroupProposal]]

    def evaluate(self, data: Union[CandleSeries, IndicatorSnapshot]) -> Optional[GroupProposal]:
        ind = data if isinstance(data, IndicatorSnapshot) else snapshot(data)
        if ind.price is None:
            return None
        return self.analyze(ind)

GROUPS: tuple = (
    IndicatorGroup("RSI_BB", "RSI + Bollinger Bands", _rsi_bb),
    IndicatorGroup("MACD_EMA", "MACD + EMA Crossover", _macd_ema),
    IndicatorGroup("RSI_OVERSOLD", "RSI Oversold/Overbought + MACD", _rsi_oversold),
    IndicatorGroup("BB_BOUNCE", "Bollinger Bands Bounce + RSI", _bb_bounce),
    IndicatorGroup("EMA_TREND", "EMA Trend + Price Position", _ema_trend),
    IndicatorGroup("MACD_CROSS", "MACD Signal Cross + Trend", _macd_cross),
    IndicatorGroup("RSI_MACD", "RSI + MACD", _rsi_macd),
    IndicatorGroup("BB_MACD", "Bollinger + MACD", _bb_macd),
    IndicatorGroup("TRIPLE_EMA", "Triple EMA + Price", _triple_ema),
    IndicatorGroup("RSI_BB_MACD", "RSI + BB + MACD", _rsi_bb_macd),
    IndicatorGroup("ATR_TREND", "ATR Volatility + EMA Trend", _atr_trend),
    IndicatorGroup("ADX_MACD", "ADX Trend Strength + MACD", _adx_macd),
    IndicatorGroup("STOCH_RSI", "Stochastic + RSI Dual Momentum", _stoch_rsi),
    IndicatorGroup("ATR_BB", "ATR Volatility + Bollinger Bands", _atr_bb),
    IndicatorGroup("ADX_EMA", "ADX Strong Trend + EMA", _adx_ema),
    IndicatorGroup("CCI_MACD", "CCI Cyclical + MACD", _cci_macd),
    IndicatorGroup("WILLIAMS_BB", "Williams %R + Bollinger Bands", _williams_bb),
    IndicatorGroup("ATR_MACD_EMA", "ATR + MACD + EMA Triple", _atr_macd_ema),
    IndicatorGroup("PATTERN_ENGULFING_RSI", "Candlestick Engulfing + RSI Filter", _pattern_engulfing_rsi),
    IndicatorGroup("VOL_SQUEEZE_BREAKOUT", "Volatility Squeeze + Momentum Bias", _vol_squeeze_breakout),
)

_INDEX = {g.id: i for i, g in enumerate(GROUPS)}

def group_count() -> int:
    return len(GROUPS)

def group_by_id(group_id: str) -> Optional[IndicatorGroup]:
    idx = _INDEX.get(group_id)
    return GROUPS[idx] if idx is not None else None

def group_index(group_id: str) -> int:
    return _INDEX[group_id]

def evaluate_all(data: Union[CandleSeries, IndicatorSnapshot]) -> list:
    """Proposal (or None) for every group, in group order."""
    ind = data if isinstance(data, IndicatorSnapshot) else snapshot(data)
    return [g.evaluate(ind) for g in GROUPS]

@dataclass(frozen=True)
class Consensus:
    action: Optional[Action]
    buy_score: float
    sell_score: float
    voters: int

def consensus(data: Union[CandleSeries, IndicatorSnapshot], weights: Optional[dict] = None) -> Consensus:
    """Weighted BUY/SELL vote; abstaining groups do not count. Ties give no action."""
    weights = weights or {}
    buy = sell = 0.0
    voters = 0
    for group, prop in zip(GROUPS, evaluate_all(data)):
        if prop is None or prop.action is None:
            continue
        voters += 1
        score = weights.get(group.id, 1.0) * prop.confidence
        if prop.action is Action.BUY:
            buy += score
        else:
            sell += score
    action = None
    if buy > sell:
        action = Action.BUY
    elif sell > buy:
        action = Action.SELL
    return Consensus(action, buy, sell, voters)
