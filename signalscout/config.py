from dataclasses import dataclass

@dataclass
class ScoutConfig:
    """All tuneable knobs in one place."""

    # --- market data ---
    asset: str = "EURUSD"                   # label carried on every signal
    candle_capacity: int = 2000             # one-minute candles kept in memory
    warmup_candles: int = 50                # candles before the first cycle
    tick_interval: float = 1.0              # replay pacing in main.py (seconds)

    # --- signal cycle ---
    signal_cycle_seconds: float = 5.0       # candidate evaluation cadence
    display_threshold: int = 60             # minimum confidence shown
    auto_trade_threshold: int = 75          # downstream auto-trader floor
    elevation_floor: int = 70               # strict-gate signals may be raised above this
    history_size: int = 50                  # recent signals kept for status

    # --- timing window ---
    window_min_seconds: float = 60.0        # earliest re-evaluation
    window_max_seconds: float = 300.0       # hard expiry
    window_eval_seconds: float = 20.0       # evaluation cadence inside a window

    # --- outcome verification ---
    settle_margin_seconds: float = 15.0     # wait after expiry before checking price
    outcome_retry_seconds: float = 5.0      # single retry when no price is available

    # --- learning ---
    replay_size: int = 1000
    batch_size: int = 32
    min_experiences: int = 50               # replay size before training starts
    epsilon_start: float = 0.30
    epsilon_min: float = 0.01
    epsilon_decay: float = 0.9995
    epsilon_fast_decay: float = 0.997
    fast_decay_after: int = 100             # experiences before switching to fast decay
    gamma: float = 0.95
    learning_rate: float = 0.001
    tau: float = 0.005                      # soft target update rate
    hidden1: int = 64
    hidden2: int = 32
    save_every: int = 10                    # persist learning state every N outcomes

    # --- persistence ---
    brain_path: str = "signalscout_brain.pkl"
    db_path: str = "signal_journal.db"
    feed_path: str = "signal_feed.json"
    ticks_path: str = ""                    # CSV to replay (optional)
    seed: int = 0                           # 0 = nondeterministic
