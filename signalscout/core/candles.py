from collections import deque
from typing import Optional

from signalscout.utils.candle import Candle, CandleSeries, minute_bucket
from signalscout.utils.logger import log
from signalscout.utils.numeric import is_finite_number

class CandleBuffer:
    """Fixed-capacity ring of candles; appending past capacity evicts the oldest."""

    def __init__(self, capacity: int = 2000):
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self._items: deque[Candle] = deque(maxlen=capacity)

    @property
    def capacity(self) -> int:
        return self._items.maxlen

    def push(self, candle: Candle):
        self._items.append(candle)

    def replace_last(self, candle: Candle):
        self._items[-1] = candle

    def last(self) -> Optional[Candle]:
        return self._items[-1] if self._items else None

    def to_list(self) -> list[Candle]:
        return list(self._items)

    def __len__(self) -> int:
        return len(self._items)

class CandleAggregator:
    """Folds raw (timestamp_ms, price) ticks into one-minute OHLC candles."""

    def __init__(self, capacity: int = 2000):
        self.buffer = CandleBuffer(capacity)
        self._revision = 0
        self._series: Optional[CandleSeries] = None
        self._series_revision = -1
        self.dropped_ticks = 0

    # ------------------------------------------------------------------
    def push_tick(self, timestamp_ms, price) -> bool:
        """Apply one tick. Returns False when the tick was ignored."""
        if not is_finite_number(timestamp_ms) or not is_finite_number(price) or float(price) <= 0:
            self.dropped_ticks += 1
            return False

        ts, px = float(timestamp_ms), float(price)
        bucket = minute_bucket(ts)
        last = self.buffer.last()

        if last is None or bucket > last.open_time:
            self.buffer.push(Candle.from_tick(ts, px))
        elif bucket == last.open_time:
            self.buffer.replace_last(last.with_tick(px))
        else:
            log.debug("Late tick for %d ignored (latest candle %d)", bucket, last.open_time)
            self.dropped_ticks += 1
            return False

        self._revision += 1
        return True

    def get_series(self) -> CandleSeries:
        """Snapshot of the buffer, rebuilt after any accepted tick.

        Keyed on a revision counter rather than the last candle time so in-minute
        updates show up immediately; the cost is an O(capacity) rebuild per tick.
        """
        if self._series is None or self._series_revision != self._revision:
            self._series = CandleSeries.from_candles(self.buffer.to_list())
            self._series_revision = self._revision
        return self._series

    @property
    def latest_candle(self) -> Optional[Candle]:
        return self.buffer.last()

    @property
    def latest_price(self) -> Optional[float]:
        last = self.buffer.last()
        return last.close if last else None

    @property
    def capacity(self) -> int:
        return self.buffer.capacity

    def __len__(self) -> int:
        return len(self.buffer)
