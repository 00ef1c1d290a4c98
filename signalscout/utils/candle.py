from dataclasses import dataclass, field, replace
from typing import Iterable, Optional

import numpy as np

MINUTE_MS = 60_000

def minute_bucket(timestamp_ms: float) -> int:
    return int(timestamp_ms // MINUTE_MS) * MINUTE_MS

@dataclass(frozen=True)
class Candle:
    open_time: int          # epoch ms, aligned to the minute
    open: float
    high: float
    low: float
    close: float

    @classmethod
    def from_tick(cls, timestamp_ms: float, price: float) -> "Candle":
        return cls(minute_bucket(timestamp_ms), price, price, price, price)

    def with_tick(self, price: float) -> "Candle":
        return replace(self, high=max(self.high, price), low=min(self.low, price), close=price)

    @property
    def body(self) -> float:
        return abs(self.close - self.open)

    @property
    def range(self) -> float:
        return self.high - self.low

    @property
    def is_bullish(self) -> bool:
        return self.close > self.open

    @property
    def is_bearish(self) -> bool:
        return self.close < self.open

def _frozen(values: Iterable[float], n: int) -> np.ndarray:
    arr = np.fromiter(values, dtype=float, count=n)
    arr.setflags(write=False)
    return arr

@dataclass(frozen=True)
class CandleSeries:
    """Read-only snapshot of the candle buffer, oldest first."""

    candles: tuple = ()
    opens: np.ndarray = field(default_factory=lambda: _frozen((), 0))
    highs: np.ndarray = field(default_factory=lambda: _frozen((), 0))
    lows: np.ndarray = field(default_factory=lambda: _frozen((), 0))
    closes: np.ndarray = field(default_factory=lambda: _frozen((), 0))

    @classmethod
    def from_candles(cls, candles: Iterable[Candle]) -> "CandleSeries":
        cs = tuple(candles)
        n = len(cs)
        return cls(
            candles=cs,
            opens=_frozen((c.open for c in cs), n),
            highs=_frozen((c.high for c in cs), n),
            lows=_frozen((c.low for c in cs), n),
            closes=_frozen((c.close for c in cs), n),
        )

    def __len__(self) -> int:
        return len(self.candles)

    @property
    def last_close(self) -> Optional[float]:
        return float(self.closes[-1]) if len(self.candles) else None

    def head(self, n: int) -> "CandleSeries":
        """The first ``n`` candles (everything but the tail), used for lookahead-free replays."""
        return CandleSeries.from_candles(self.candles[:n])

def _to_ms(ts: float) -> int:
    # Feeds mix epoch seconds and epoch milliseconds
    return int(ts * 1000) if ts < 1e11 else int(ts)

def parse_candle(raw) -> Candle:
    """Candle from a dict, a list or an object with time/open/high/low/close."""
    if isinstance(raw, dict):
        return Candle(
            open_time=minute_bucket(_to_ms(float(raw.get("time", raw.get("timestamp", 0)) or 0))),
            open=float(raw.get("open", 0) or 0),
            high=float(raw.get("high", 0) or 0),
            low=float(raw.get("low", 0) or 0),
            close=float(raw.get("close", 0) or 0),
        )
    elif isinstance(raw, (list, tuple)):
        return Candle(
            open_time=minute_bucket(_to_ms(float(raw[0]))),
            open=float(raw[1]),
            high=float(raw[2]),
            low=float(raw[3]),
            close=float(raw[4]),
        )
    else:
        return Candle(
            open_time=minute_bucket(_to_ms(float(getattr(raw, "time", getattr(raw, "timestamp", 0)) or 0))),
            open=float(getattr(raw, "open", 0) or 0),
            high=float(getattr(raw, "high", 0) or 0),
            low=float(getattr(raw, "low", 0) or 0),
            close=float(getattr(raw, "close", 0) or 0),
        )

def candle_to_ticks(c: Candle) -> list[tuple[int, float]]:
    """Expand an OHLC candle into four ticks inside its minute (open, extremes, close)."""
    first, second = (c.low, c.high) if c.is_bullish else (c.high, c.low)
    t = c.open_time
    return [(t, c.open), (t + 15_000, first), (t + 30_000, second), (t + 45_000, c.close)]
