import json
import os
import pickle
from abc import ABC, abstractmethod
from typing import Any, Optional

from signalscout.trading.signal import Signal
from signalscout.utils.logger import log

class KeyValueStore(ABC):
    """Where learning blobs live between sessions."""

    @abstractmethod
    def load(self, key: str) -> Optional[Any]:
        ...

    @abstractmethod
    def save(self, key: str, blob: Any):
        ...

class MemoryStore(KeyValueStore):
    def __init__(self, data: Optional[dict] = None):
        self.data: dict = dict(data or {})

    def load(self, key: str) -> Optional[Any]:
        return self.data.get(key)

    def save(self, key: str, blob: Any):
        self.data[key] = blob

class PickleFileStore(KeyValueStore):
    """All keys in one pickle file (the "brain" file)."""

    def __init__(self, path: str):
        self.path = path

    def _read(self) -> dict:
        if not os.path.exists(self.path):
            return {}
        with open(self.path, "rb") as f:
            data = pickle.load(f)
        return data if isinstance(data, dict) else {}

    def load(self, key: str) -> Optional[Any]:
        return self._read().get(key)

    def save(self, key: str, blob: Any):
        data = self._read()
        data[key] = blob
        tmp = self.path + ".tmp"
        with open(tmp, "wb") as f:
            pickle.dump(data, f)
        os.replace(tmp, self.path)

# ------------------------------------------------------------------
class SignalSink(ABC):
    """Downstream consumer of published signals."""

    @abstractmethod
    def publish(self, signal: Signal):
        ...

class MemorySink(SignalSink):
    def __init__(self):
        self.published: list[dict] = []

    def publish(self, signal: Signal):
        self.published.append(signal.to_feed())

    @property
    def last(self) -> Optional[dict]:
        return self.published[-1] if self.published else None

class FileSignalSink(SignalSink):
    """Writes the latest signal as a JSON feed file for the auto-trader to poll."""

    def __init__(self, path: str):
        self.path = path

    def publish(self, signal: Signal):
        feed = signal.to_feed()
        tmp = self.path + ".tmp"
        with open(tmp, "w", encoding="utf-8") as f:
            json.dump(feed, f, indent=2)
        os.replace(tmp, self.path)
        log.info("📤 Feed written → %s", self.path)
