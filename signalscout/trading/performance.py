from collections import deque

from signalscout.constants import Outcome

class PerformanceTracker:
    """Verified-signal scoreboard (independent of the agent's session counters)."""

    def __init__(self, window: int = 100):
        self.wins = 0
        self.losses = 0
        self.consec_losses = 0
        self.max_consec_losses = 0
        self.recent_results: deque[Outcome] = deque(maxlen=window)

    @property
    def total(self):
        return self.wins + self.losses

    @property
    def win_rate(self):
        return self.wins / self.total if self.total > 0 else 0.5

    @property
    def recent_win_rate(self):
        if not self.recent_results:
            return 0.5
        return sum(1 for r in self.recent_results if r is Outcome.WIN) / len(self.recent_results)

    def record(self, result: Outcome):
        self.recent_results.append(result)
        if result is Outcome.WIN:
            self.wins += 1
            self.consec_losses = 0
        else:
            self.losses += 1
            self.consec_losses += 1
            self.max_consec_losses = max(self.max_consec_losses, self.consec_losses)

    def summary(self) -> str:
        return (
            f"W:{self.wins} L:{self.losses} "
            f"WR:{self.win_rate:.1%} "
            f"Recent:{self.recent_win_rate:.1%} "
            f"Streak:{'L' if self.consec_losses else 'OK'}{self.consec_losses}"
        )
