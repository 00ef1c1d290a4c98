import json
import sqlite3
import time

from signalscout.trading.signal import Signal

class SignalJournal:
    def __init__(self, db_path: str):
        self.conn = sqlite3.connect(db_path)
        self._init_db()

    def _init_db(self):
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS signals (
                id          TEXT PRIMARY KEY,
                action      TEXT,
                asset       TEXT,
                confidence  INTEGER,
                group_id    TEXT,
                gate        TEXT,
                entry_price REAL,
                entry_time  INTEGER,
                expiry      INTEGER,
                result      TEXT,
                exit_price  REAL,
                exit_time   INTEGER,
                reasons     TEXT,
                state       TEXT
            )
        """)
        self.conn.execute("""
            CREATE TABLE IF NOT EXISTS learning_snapshots (
                ts                REAL,
                win_rate          REAL,
                total_experiences INTEGER,
                epsilon           REAL,
                cumulative_reward REAL,
                regime            TEXT
            )
        """)
        self.conn.commit()

    def save_signal(self, s: Signal):
        self.conn.execute(
            "INSERT OR REPLACE INTO signals VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?,?)",
            (s.id, s.action.value, s.asset, s.confidence, s.group_id, s.gate,
             s.price, s.timestamp, s.expiry_seconds,
             s.result.value if s.result else None, s.exit_price, s.exit_time,
             json.dumps(list(s.reasons)),
             json.dumps(list(s.rl_state)) if s.rl_state is not None else None),
        )
        self.conn.commit()

    def load_completed(self, limit: int = 500) -> list[dict]:
        """Most recent verified signals, oldest first."""
        cur = self.conn.execute(
            "SELECT id, action, group_id, confidence, result, entry_time FROM signals "
            "WHERE result IN ('WIN', 'LOSS') ORDER BY entry_time DESC LIMIT ?",
            (limit,),
        )
        rows = cur.fetchall()
        return [
            {"id": r[0], "action": r[1], "group_id": r[2], "confidence": r[3],
             "result": r[4], "entry_time": r[5]}
            for r in reversed(rows)
        ]

    def save_snapshot(self, win_rate, total, epsilon, cumulative_reward, regime):
        self.conn.execute(
            "INSERT INTO learning_snapshots VALUES (?,?,?,?,?,?)",
            (time.time(), win_rate, total, epsilon, cumulative_reward, regime),
        )
        self.conn.commit()

    def recent_win_rate(self, n: int = 50) -> float:
        cur = self.conn.execute(
            "SELECT result FROM signals WHERE result IS NOT NULL ORDER BY entry_time DESC LIMIT ?",
            (n,),
        )
        rows = cur.fetchall()
        if not rows:
            return 0.5
        wins = sum(1 for r in rows if r[0] == "WIN")
        return wins / len(rows)

    def total_signals(self) -> int:
        cur = self.conn.execute("SELECT COUNT(*) FROM signals")
        return cur.fetchone()[0]

    def close(self):
        self.conn.close()
