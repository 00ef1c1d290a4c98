"""Shared fixtures: synthetic candle series, a manual clock and a small config."""

import numpy as np
import pytest

from signalscout.config import ScoutConfig
from signalscout.utils.candle import MINUTE_MS, Candle, CandleSeries
from signalscout.utils.scheduler import VirtualScheduler

# minute aligned epoch ms
T0 = 1_699_999_980_000


def build_series(closes, spread: float = 0.0002, start: int = T0) -> CandleSeries:
    """One candle per close; open is the previous close, wicks ``spread`` beyond the body."""
    candles = []
    prev = float(closes[0])
    for i, c in enumerate(closes):
        c = float(c)
        candles.append(Candle(
            open_time=start + i * MINUTE_MS,
            open=prev,
            high=max(prev, c) + spread,
            low=min(prev, c) - spread,
            close=c,
        ))
        prev = c
    return CandleSeries.from_candles(candles)


@pytest.fixture
def make_series():
    return build_series


@pytest.fixture
def random_walk_series() -> CandleSeries:
    rng = np.random.default_rng(7)
    closes = 1.10 + np.cumsum(rng.normal(0, 0.0005, 200))
    return build_series(closes)


@pytest.fixture
def uptrend_series() -> CandleSeries:
    i = np.arange(120)
    closes = 1.10 + i * 0.0004 + 0.0002 * np.sin(i / 2)
    return build_series(closes)


@pytest.fixture
def downtrend_series() -> CandleSeries:
    i = np.arange(120)
    closes = 1.20 - i * 0.0004 + 0.0002 * np.sin(i / 2)
    return build_series(closes)


@pytest.fixture
def flat_series() -> CandleSeries:
    return build_series(np.full(80, 1.1), spread=0.0)


@pytest.fixture
def scheduler() -> VirtualScheduler:
    return VirtualScheduler()


@pytest.fixture
def rng() -> np.random.Generator:
    return np.random.default_rng(42)


@pytest.fixture
def cfg() -> ScoutConfig:
    return ScoutConfig(save_every=0)
