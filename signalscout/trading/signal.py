import uuid
from dataclasses import dataclass, field
from typing import Optional

from signalscout.constants import Action, Outcome

@dataclass
class Signal:
    action: Action
    confidence: int
    group_id: str
    price: float                           # entry price
    timestamp: int                         # epoch ms at publish
    expiry_seconds: int
    reasons: list = field(default_factory=list)
    group_name: str = ""
    asset: str = ""
    gate: str = ""                         # STRICT / SOFT / FAIL
    q_advantage: float = 0.0
    win_rate: float = 0.5                  # session win rate when published
    auto_trade: bool = False
    timing_score: float = 0.0
    rl_state: Optional[tuple] = None       # learning pair for this signal
    rl_action: Optional[int] = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    result: Optional[Outcome] = None
    exit_price: Optional[float] = None
    exit_time: Optional[int] = None

    @property
    def duration_minutes(self) -> int:
        return max(1, round(self.expiry_seconds / 60))

    @property
    def expires_at(self) -> int:
        return self.timestamp + self.expiry_seconds * 1000

    def to_feed(self) -> dict:
        """Record handed to the downstream consumer (camelCase keys)."""
        return {
            "id": self.id,
            "asset": self.asset,
            "action": self.action.value,
            "confidence": self.confidence,
            "duration": self.duration_minutes,
            "expiry": self.expiry_seconds,
            "expirySeconds": self.expiry_seconds,
            "timestamp": self.timestamp,
            "entryPrice": self.price,
            "price": self.price,
            "groupId": self.group_id,
            "groupName": self.group_name,
            "reasons": list(self.reasons),
            "gate": self.gate,
            "wr": round(self.win_rate * 100, 1),
            "autoTrade": self.auto_trade,
            "timingScore": round(self.timing_score, 2),
            "_rlState": list(self.rl_state) if self.rl_state is not None else None,
            "_rlAction": self.rl_action,
        }
