import csv
from datetime import datetime as dt

from signalscout.utils.candle import Candle, _to_ms, candle_to_ticks, minute_bucket
from signalscout.utils.logger import log

def _parse_time(time_str: str) -> float:
    if "-" in time_str and ":" in time_str:
        return dt.strptime(time_str, "%Y-%m-%d %H:%M:%S").timestamp()
    return float(time_str)

def load_ticks(path: str) -> list[tuple[int, float]]:
    """Read a price file as (timestamp_ms, price) ticks, oldest first.
    Supports:
      - CSV with headers: time + price (or bid/close) for ticks, or time + OHLC for candles
      - HistData semicolon format: YYYYMMDD HHMMSS;O;H;L;C;V (no headers)
    Candle rows are expanded into four ticks inside their minute.
    """
    log.info("Loading ticks from %s …", path)
    ticks: list[tuple[int, float]] = []

    with open(path, "r", encoding="utf-8-sig") as f:
        first_line = f.readline().strip()
        f.seek(0)

        # --- Detect format ---
        if ";" in first_line and not any(
            h in first_line.lower() for h in ["time", "open", "high", "date", "price"]
        ):
            log.info("Detected HistData semicolon format (no headers)")
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    parts = line.split(";")
                    if len(parts) < 5:
                        continue
                    time_str = parts[0].strip()
                    if len(time_str) >= 15:
                        parsed = dt.strptime(time_str, "%Y%m%d %H%M%S")
                    elif len(time_str) >= 8:
                        parsed = dt.strptime(time_str[:8], "%Y%m%d")
                    else:
                        continue
                    ticks.extend(candle_to_ticks(Candle(
                        open_time=minute_bucket(parsed.timestamp() * 1000),
                        open=float(parts[1]),
                        high=float(parts[2]),
                        low=float(parts[3]),
                        close=float(parts[4]),
                    )))
                except (ValueError, TypeError, IndexError):
                    continue
        else:
            delimiter = ";" if ";" in first_line else ","
            reader = csv.DictReader(f, delimiter=delimiter)
            fields = {name.lower() for name in (reader.fieldnames or [])}
            has_ohlc = {"open", "high", "low", "close"} <= fields
            log.info("CSV columns found: %s (delimiter='%s', %s)",
                     reader.fieldnames, delimiter, "candles" if has_ohlc else "ticks")

            for row in reader:
                row = {k.lower(): v for k, v in row.items() if k}
                try:
                    time_str = str(row.get("time") or row.get("timestamp") or row.get("date") or "").strip()
                    if not time_str:
                        continue
                    ts = _to_ms(_parse_time(time_str))
                    if has_ohlc:
                        ticks.extend(candle_to_ticks(Candle(
                            open_time=minute_bucket(ts),
                            open=float(row["open"]),
                            high=float(row["high"]),
                            low=float(row["low"]),
                            close=float(row["close"]),
                        )))
                    else:
                        price = row.get("price") or row.get("bid") or row.get("close")
                        if price is None:
                            continue
                        ticks.append((ts, float(price)))
                except (ValueError, TypeError, KeyError):
                    continue

    ticks.sort(key=lambda t: t[0])
    log.info("Parsed %d ticks from file.", len(ticks))
    return ticks
