import logging
import os
from typing import Optional

LOG_FMT = "%(asctime)s │ %(levelname)-7s │ %(message)s"

def setup_logger(name: str = "Scout", level: Optional[int] = None,
                 log_file: Optional[str] = None) -> logging.Logger:
    """Console logging, plus a file copy when ``log_file`` (or PS_LOG_FILE) is set.

    Level defaults to PS_LOG_LEVEL (INFO when unset or unknown).
    """
    if level is None:
        level = getattr(logging, os.environ.get("PS_LOG_LEVEL", "INFO").upper(), logging.INFO)
    log_file = log_file or os.environ.get("PS_LOG_FILE") or None
    handlers: list[logging.Handler] = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file, encoding="utf-8"))
    logging.basicConfig(level=level, format=LOG_FMT, datefmt="%H:%M:%S", handlers=handlers)
    return logging.getLogger(name)

log = setup_logger()
