"""Tests for signal records, sinks, stores, journal and the tick loader."""

import json

import pytest

from signalscout.constants import Action, Outcome
from signalscout.trading.journal import SignalJournal
from signalscout.trading.performance import PerformanceTracker
from signalscout.trading.signal import Signal
from signalscout.trading.storage import FileSignalSink, MemorySink, MemoryStore, PickleFileStore
from signalscout.utils.ticks import load_ticks

T0 = 1_699_999_980_000


@pytest.fixture
def signal() -> Signal:
    return Signal(
        action=Action.BUY, confidence=78, group_id="EMA_TREND", price=1.1, timestamp=T0,
        expiry_seconds=300, reasons=["EMA9 > EMA21"], asset="EURUSD", gate="STRICT",
        win_rate=0.6, auto_trade=True, timing_score=0.7249, rl_state=tuple([0.5] * 16), rl_action=4,
    )


class TestSignal:
    def test_feed_fields(self, signal) -> None:
        feed = signal.to_feed()
        assert feed["action"] == "BUY"
        assert feed["duration"] == 5
        assert feed["expiry"] == feed["expirySeconds"] == 300
        assert feed["entryPrice"] == 1.1
        assert feed["wr"] == 60.0
        assert feed["autoTrade"] is True
        assert feed["timingScore"] == 0.72
        assert feed["_rlAction"] == 4
        assert len(feed["_rlState"]) == 16
        json.dumps(feed)

    def test_expiry_timestamp(self, signal) -> None:
        assert signal.expires_at == T0 + 300_000

    def test_ids_are_unique(self, signal) -> None:
        other = Signal(Action.SELL, 70, "RSI_BB", 1.1, T0, 240)
        assert other.id != signal.id
        assert other.duration_minutes == 4


class TestSinks:
    def test_memory_sink(self, signal) -> None:
        sink = MemorySink()
        assert sink.last is None
        sink.publish(signal)
        assert sink.last["id"] == signal.id

    def test_file_sink_writes_json(self, signal, tmp_path) -> None:
        path = tmp_path / "feed.json"
        FileSignalSink(str(path)).publish(signal)
        assert json.loads(path.read_text())["groupId"] == "EMA_TREND"


class TestStores:
    def test_memory_store(self) -> None:
        store = MemoryStore()
        assert store.load("k") is None
        store.save("k", {"a": 1})
        assert store.load("k") == {"a": 1}

    def test_pickle_store_keeps_other_keys(self, tmp_path) -> None:
        path = str(tmp_path / "brain.pkl")
        PickleFileStore(path).save("rl_state", {"version": 1})
        PickleFileStore(path).save("bandit_weights", {"version": 1, "weights": {}})
        store = PickleFileStore(path)
        assert store.load("rl_state") == {"version": 1}
        assert store.load("bandit_weights")["weights"] == {}

    def test_pickle_store_missing_file(self, tmp_path) -> None:
        assert PickleFileStore(str(tmp_path / "none.pkl")).load("rl_state") is None


class TestJournal:
    def test_save_and_reload(self, signal, tmp_path) -> None:
        journal = SignalJournal(str(tmp_path / "j.db"))
        journal.save_signal(signal)
        assert journal.total_signals() == 1
        assert journal.load_completed() == []

        signal.result = Outcome.WIN
        signal.exit_price = 1.2
        journal.save_signal(signal)
        assert journal.total_signals() == 1
        rows = journal.load_completed()
        assert rows[0]["result"] == "WIN"
        assert journal.recent_win_rate() == 1.0
        journal.save_snapshot(1.0, 1, 0.3, 11.0, "LOW/BULLISH-STRONG/BULLISH")
        journal.close()

    def test_empty_win_rate(self, tmp_path) -> None:
        journal = SignalJournal(str(tmp_path / "j.db"))
        assert journal.recent_win_rate() == 0.5
        journal.close()


class TestPerformanceTracker:
    def test_counts_and_streaks(self) -> None:
        perf = PerformanceTracker()
        assert perf.win_rate == 0.5
        for r in (Outcome.WIN, Outcome.LOSS, Outcome.LOSS, Outcome.WIN):
            perf.record(r)
        assert perf.total == 4
        assert perf.win_rate == 0.5
        assert perf.max_consec_losses == 2
        assert perf.consec_losses == 0
        assert "W:2 L:2" in perf.summary()


class TestLoadTicks:
    def test_tick_csv(self, tmp_path) -> None:
        path = tmp_path / "ticks.csv"
        path.write_text("timestamp,price\n1700000010000,1.1\n1700000000000,1.2\nbad,1.3\n")
        assert load_ticks(str(path)) == [(1_700_000_000_000, 1.2), (1_700_000_010_000, 1.1)]

    def test_candle_csv_in_seconds(self, tmp_path) -> None:
        path = tmp_path / "candles.csv"
        path.write_text("time,open,high,low,close\n1699999980,1.0,1.3,0.9,1.2\n")
        ticks = load_ticks(str(path))
        assert [p for _, p in ticks] == [1.0, 0.9, 1.3, 1.2]
        assert ticks[0][0] == T0

    def test_histdata_format(self, tmp_path) -> None:
        path = tmp_path / "hist.csv"
        path.write_text("20240102 170000;1.2;1.3;1.1;1.15;0\n20240102 170100;1.15;1.2;1.1;1.18;0\n")
        ticks = load_ticks(str(path))
        assert len(ticks) == 8
        assert ticks[-1][1] == 1.18
