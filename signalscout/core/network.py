"""
Small online Q-network: state vector → one Q-value per indicator group.

Parameters are immutable snapshots. Training builds a new snapshot and the
target network follows the online one through a pure soft update.
"""
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

STATE_DIM = 16
HIDDEN_DIM = 64
HIDDEN_DIM_2 = 32

# volatility-scaled step size
MAX_VOLATILITY_BOOST = 1.5
BASE_VOLATILITY_WEIGHT = 0.5

PARAM_KEYS = ("W1", "b1", "W2", "b2", "W3", "b3")

class WeightShapeError(ValueError):
    """Persisted weights do not match the current network layout."""

def _ro(a) -> np.ndarray:
    arr = np.array(a, dtype=float)
    arr.setflags(write=False)
    return arr

@dataclass(frozen=True)
class NetworkParams:
    W1: np.ndarray
    b1: np.ndarray
    W2: np.ndarray
    b2: np.ndarray
    W3: np.ndarray
    b3: np.ndarray

    @property
    def dims(self) -> tuple:
        return (self.W1.shape[0], self.W1.shape[1], self.W2.shape[1], self.W3.shape[1])

def _xavier(rng: np.random.Generator, rows: int, cols: int) -> np.ndarray:
    limit = np.sqrt(6.0 / (rows + cols))
    return rng.uniform(-limit, limit, size=(rows, cols))

def init_params(rng: np.random.Generator, state_dim: int = STATE_DIM, hidden1: int = HIDDEN_DIM,
                hidden2: int = HIDDEN_DIM_2, n_actions: int = 20) -> NetworkParams:
    return NetworkParams(
        W1=_ro(_xavier(rng, state_dim, hidden1)), b1=_ro(np.zeros(hidden1)),
        W2=_ro(_xavier(rng, hidden1, hidden2)), b2=_ro(np.zeros(hidden2)),
        W3=_ro(_xavier(rng, hidden2, n_actions)), b3=_ro(np.zeros(n_actions)),
    )

def forward(params: NetworkParams, state) -> np.ndarray:
    x = np.asarray(state, dtype=float)
    h1 = np.maximum(0.0, x @ params.W1 + params.b1)
    h2 = np.maximum(0.0, h1 @ params.W2 + params.b2)
    return h2 @ params.W3 + params.b3

def soft_update(online: NetworkParams, target: NetworkParams, tau: float) -> NetworkParams:
    return NetworkParams(**{
        k: _ro(tau * getattr(online, k) + (1 - tau) * getattr(target, k)) for k in PARAM_KEYS
    })

def params_to_dict(params: NetworkParams) -> dict:
    return {k: getattr(params, k).tolist() for k in PARAM_KEYS}

def params_from_dict(raw: dict, state_dim: int = STATE_DIM, hidden1: int = HIDDEN_DIM,
                     hidden2: int = HIDDEN_DIM_2, n_actions: int = 20) -> NetworkParams:
    """Rebuild params from a persisted dict, rejecting any shape mismatch."""
    expected = {
        "W1": (state_dim, hidden1), "b1": (hidden1,),
        "W2": (hidden1, hidden2), "b2": (hidden2,),
        "W3": (hidden2, n_actions), "b3": (n_actions,),
    }
    if not isinstance(raw, dict):
        raise WeightShapeError("weights must be a mapping")
    arrays = {}
    for key, shape in expected.items():
        if key not in raw:
            raise WeightShapeError(f"missing {key}")
        try:
            arr = np.array(raw[key], dtype=float)
        except (TypeError, ValueError) as e:
            raise WeightShapeError(f"{key}: {e}") from e
        if arr.shape != shape:
            raise WeightShapeError(f"{key}: expected {shape}, got {arr.shape}")
        if not np.all(np.isfinite(arr)):
            raise WeightShapeError(f"{key}: non-finite values")
        arrays[key] = _ro(arr)
    return NetworkParams(**arrays)

# ------------------------------------------------------------------
class DQNAgent:
    """Online + target network pair with a Double-DQN style update."""

    def __init__(self, n_actions: int, rng: Optional[np.random.Generator] = None,
                 state_dim: int = STATE_DIM, hidden1: int = HIDDEN_DIM, hidden2: int = HIDDEN_DIM_2,
                 learning_rate: float = 0.001, tau: float = 0.005, gamma: float = 0.95):
        self.rng = rng if rng is not None else np.random.default_rng()
        self.state_dim = state_dim
        self.hidden1 = hidden1
        self.hidden2 = hidden2
        self.n_actions = n_actions
        self.learning_rate = learning_rate
        self.tau = tau
        self.gamma = gamma
        self.online = init_params(self.rng, state_dim, hidden1, hidden2, n_actions)
        self.target = self.online
        self.train_steps = 0

    # -- inference --
    def q_values(self, state) -> np.ndarray:
        return forward(self.online, state)

    def best_action(self, state) -> tuple[int, float, np.ndarray]:
        q = self.q_values(state)
        best = int(np.argmax(q))
        return best, float(q[best]), q

    def top_actions(self, state, n: int = 3) -> list[tuple[int, float]]:
        q = self.q_values(state)
        order = np.argsort(-q, kind="stable")[:n]
        return [(int(i), float(q[i])) for i in order]

    # -- learning --
    def train(self, batch: Sequence) -> float:
        """One pass over ``batch``; returns the mean absolute TD error."""
        if not batch:
            return 0.0

        W3 = np.array(self.online.W3)
        b3 = np.array(self.online.b3)
        total = 0.0

        for exp in batch:
            state = np.asarray(exp.state, dtype=float)
            params = NetworkParams(self.online.W1, self.online.b1, self.online.W2, self.online.b2, W3, b3)
            current_q = forward(params, state)[exp.action]

            target_q = exp.reward
            if not exp.done and exp.next_state is not None:
                next_best = int(np.argmax(forward(params, exp.next_state)))
                target_q = exp.reward + self.gamma * forward(self.target, exp.next_state)[next_best]

            td = target_q - current_q
            total += abs(td)

            vol_factor = min(MAX_VOLATILITY_BOOST, BASE_VOLATILITY_WEIGHT + state[1]) if state[1] else 1.0
            adjustment = td * self.learning_rate * vol_factor * 0.1
            n = min(W3.shape[0], len(state))
            W3[:n, exp.action] += adjustment * state[:n] * 0.01
            b3[exp.action] += adjustment

        self.online = NetworkParams(self.online.W1, self.online.b1, self.online.W2, self.online.b2,
                                    _ro(W3), _ro(b3))
        self.target = soft_update(self.online, self.target, self.tau)
        self.train_steps += 1
        return total / len(batch)

    # -- persistence --
    def get_weights(self) -> dict:
        return params_to_dict(self.online)

    def set_weights(self, raw: dict):
        """Load into both networks. Raises WeightShapeError on mismatch."""
        params = params_from_dict(raw, self.state_dim, self.hidden1, self.hidden2, self.n_actions)
        self.online = params
        self.target = params

    def reset(self):
        self.online = init_params(self.rng, self.state_dim, self.hidden1, self.hidden2, self.n_actions)
        self.target = self.online
        self.train_steps = 0
