from typing import Optional

import numpy as np

from signalscout.constants import Outcome

DEFAULT_EXPIRY = 300

class ExpirySelector:
    """
    Chooses the signal expiry from the current volatility:
      • Low volatility  → 6-7 min (price needs time to move)
      • Normal          → 5 min
      • High volatility → 3-4 min (less exposure to reversals)

    Also keeps win/loss counts per whole-minute bucket so the status line
    shows which durations have actually been working.
    """

    def __init__(self, rng: Optional[np.random.Generator] = None):
        self.rng = rng if rng is not None else np.random.default_rng()
        self.stats: dict[int, dict] = {}

    def select(self, volatility_pct: Optional[float]) -> int:
        """``volatility_pct`` is ATR / average close in percent; None falls back to the default."""
        if volatility_pct is None:
            return DEFAULT_EXPIRY
        if volatility_pct < 0.3:
            return 360 + int(self.rng.integers(0, 60))
        if volatility_pct < 0.7:
            return 300
        return 180 + int(self.rng.integers(0, 60))

    @staticmethod
    def bucket(expiry: int) -> int:
        return int(expiry) // 60 * 60

    def record_result(self, expiry: int, result: Outcome):
        """Feed a verified outcome back into the per-duration stats."""
        st = self.stats.setdefault(self.bucket(expiry), {"wins": 0, "losses": 0})
        if result is Outcome.WIN:
            st["wins"] += 1
        else:
            st["losses"] += 1

    def status_line(self) -> str:
        parts = []
        for exp in sorted(self.stats):
            st = self.stats[exp]
            total = st["wins"] + st["losses"]
            if total > 0:
                wr = st["wins"] / total * 100
                parts.append(f"{exp // 60}m:{wr:.0f}%({total})")
        return " | ".join(parts) if parts else "no data yet"

    def save_state(self) -> dict:
        return {"stats": dict(self.stats)}

    def load_state(self, state: dict):
        for k, v in state.get("stats", {}).items():
            self.stats[int(k)] = dict(v)
