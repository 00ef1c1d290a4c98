from enum import Enum

class Action(Enum):
    BUY = "BUY"
    SELL = "SELL"

    @property
    def sign(self) -> int:
        return 1 if self is Action.BUY else -1

    @property
    def opposite(self) -> "Action":
        return Action.SELL if self is Action.BUY else Action.BUY

class Outcome(Enum):
    WIN = "WIN"
    LOSS = "LOSS"

class VolatilityLevel(Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"

class TrendDirection(Enum):
    BULLISH = "BULLISH"
    BEARISH = "BEARISH"
    NEUTRAL = "NEUTRAL"

class TrendStrength(Enum):
    WEAK = "WEAK"
    MODERATE = "MODERATE"
    STRONG = "STRONG"

class MomentumRegime(Enum):
    BULLISH = "BULLISH"
    BEARISH = "BEARISH"
    NEUTRAL = "NEUTRAL"

class RiskLevel(Enum):
    LOW = "LOW"
    BALANCED = "BALANCED"
    HIGH = "HIGH"
    EXTREME = "EXTREME"
    UNKNOWN = "UNKNOWN"

class TimingState(Enum):
    IDLE = "IDLE"
    WINDOW_OPEN = "WINDOW_OPEN"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"

class GateLevel(Enum):
    STRICT = "STRICT"
    SOFT = "SOFT"
    FAIL = "FAIL"
