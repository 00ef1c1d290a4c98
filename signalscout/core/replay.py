from collections import deque
from dataclasses import dataclass
from typing import Optional

import numpy as np

@dataclass(frozen=True)
class ExperienceRecord:
    state: tuple
    action: int
    reward: float
    next_state: Optional[tuple] = None
    done: bool = True

    @classmethod
    def create(cls, state, action: int, reward: float, next_state=None, done: bool = True) -> "ExperienceRecord":
        return cls(
            state=tuple(float(x) for x in state),
            action=int(action),
            reward=float(reward),
            next_state=tuple(float(x) for x in next_state) if next_state is not None else None,
            done=bool(done),
        )

class ReplayBuffer:
    """Bounded experience store; the oldest record is evicted once full."""

    def __init__(self, max_size: int = 1000, batch_size: int = 32, min_experiences: int = 50,
                 rng: Optional[np.random.Generator] = None):
        self.buffer: deque[ExperienceRecord] = deque(maxlen=max_size)
        self.batch_size = batch_size
        self.min_experiences = min_experiences
        self.rng = rng if rng is not None else np.random.default_rng()

    def add(self, state, action: int, reward: float, next_state=None, done: bool = True) -> ExperienceRecord:
        exp = ExperienceRecord.create(state, action, reward, next_state, done)
        self.buffer.append(exp)
        return exp

    def sample(self, batch_size: Optional[int] = None) -> list[ExperienceRecord]:
        """Unique records drawn uniformly; never more than the buffer holds."""
        n = min(batch_size or self.batch_size, len(self.buffer))
        if n <= 0:
            return []
        idx = self.rng.choice(len(self.buffer), size=n, replace=False)
        return [self.buffer[int(i)] for i in idx]

    def can_train(self) -> bool:
        return len(self.buffer) >= self.min_experiences

    def clear(self):
        self.buffer.clear()

    def __len__(self) -> int:
        return len(self.buffer)
