import asyncio
import os
import sys

import numpy as np

from signalscout.config import ScoutConfig
from signalscout.trading.journal import SignalJournal
from signalscout.trading.orchestrator import SignalOrchestrator
from signalscout.trading.storage import FileSignalSink, PickleFileStore
from signalscout.utils.logger import log
from signalscout.utils.scheduler import VirtualScheduler
from signalscout.utils.ticks import load_ticks

async def replay(cfg: ScoutConfig):
    ticks = load_ticks(cfg.ticks_path)
    if not ticks:
        log.error("No ticks parsed from %s", cfg.ticks_path)
        return

    log.info("═" * 60)
    log.info("  🔭 SignalScout | %s", cfg.asset)
    log.info("  Ticks: %d  |  Pace: %.2fs  |  Warmup: %d candles",
             len(ticks), cfg.tick_interval, cfg.warmup_candles)
    log.info("  Feed: %s  |  Brain: %s", cfg.feed_path, cfg.brain_path)
    log.info("═" * 60)

    if os.environ.get("PS_RETRAIN", "").strip() == "1" and os.path.exists(cfg.brain_path):
        log.info("🔄 Fresh start requested, ignoring saved brain.")
        os.remove(cfg.brain_path)

    rng = np.random.default_rng(cfg.seed or None)
    # timers run on market time taken from the tick timestamps
    clock = VirtualScheduler(ticks[0][0] / 1000)
    journal = SignalJournal(cfg.db_path)
    scout = SignalOrchestrator(
        cfg, clock, FileSignalSink(cfg.feed_path),
        store=PickleFileStore(cfg.brain_path), journal=journal, rng=rng,
    )
    if scout.agent.load():
        log.info("✅ Loaded saved brain")

    try:
        for i, (ts, price) in enumerate(ticks):
            scout.push_tick(ts, price)
            clock.advance_to(ts / 1000)
            if i % 500 == 0:
                log.info("📊 %d/%d ticks | %s", i, len(ticks), scout.perf.summary())
            await asyncio.sleep(cfg.tick_interval)
    finally:
        scout.stop()
        journal.close()

def main():
    # --- Load config from env or defaults ---
    cfg = ScoutConfig(
        asset=os.environ.get("PS_ASSET", "EURUSD"),
        ticks_path=os.environ.get("PS_TICKS", ""),
        tick_interval=float(os.environ.get("PS_TICK_INTERVAL", "1.0")),
        warmup_candles=int(os.environ.get("PS_WARMUP", "50")),
        auto_trade_threshold=int(os.environ.get("PS_AUTO_TRADE", "75")),
        display_threshold=int(os.environ.get("PS_DISPLAY", "60")),
        brain_path=os.environ.get("PS_BRAIN", "signalscout_brain.pkl"),
        db_path=os.environ.get("PS_DB", "signal_journal.db"),
        feed_path=os.environ.get("PS_FEED", "signal_feed.json"),
        seed=int(os.environ.get("PS_SEED", "0")),
    )

    if not cfg.ticks_path:
        print("=" * 60)
        print("  ERROR: No tick file provided!")
        print()
        print("  Point SignalScout at a CSV of ticks or candles:")
        print("    export PS_TICKS='eurusd_ticks.csv'   # Linux/Mac")
        print("    set PS_TICKS=eurusd_ticks.csv        # Windows")
        print("=" * 60)
        sys.exit(1)

    try:
        asyncio.run(replay(cfg))
    except KeyboardInterrupt:
        pass

if __name__ == "__main__":
    main()
