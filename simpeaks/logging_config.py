"""Logging setup shared by the web host and the batch CLI.

Format examples:
    Human: 2026-03-02T10:15:42.120Z | INFO     | simpeaks.acquisition | Acquisition started (mode=SINGLE)
    JSON: {"t":"2026-03-02T10:15:42.120000+00:00","lvl":"INFO","name":"simpeaks.acquisition","msg":"..."}

Idempotent: repeated setup_logging() calls replace the handler instead of adding one.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone
from typing import List, Optional

# Track if logging has been configured (idempotency)
_handler: Optional[logging.Handler] = None


class EngineFormatter(logging.Formatter):
    """Human-readable lines or JSON lines, timestamps in UTC."""

    def __init__(self, fmt_mode: str = "human"):
        super().__init__()
        self.fmt_mode = fmt_mode

    def format(self, record: logging.LogRecord) -> str:
        ts = datetime.fromtimestamp(record.created, tz=timezone.utc)
        if self.fmt_mode == "json":
            log_dict = {
                "t": ts.isoformat(),
                "lvl": record.levelname,
                "name": record.name,
                "pid": os.getpid(),
                "thread": record.threadName,
                "msg": record.getMessage(),
            }
            if record.exc_info:
                log_dict["exc"] = self.formatException(record.exc_info)
            return json.dumps(log_dict)

        ts_str = ts.strftime("%Y-%m-%dT%H:%M:%S.%f")[:-3] + "Z"
        line = f"{ts_str} | {record.levelname:8s} | {record.name} | {record.getMessage()}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_logging(level: str = "INFO", fmt: str = "human", quiet_libs: Optional[List[str]] = None) -> logging.Handler:
    """Install a single stderr handler on the root logger and return it.

    Parameters
    ----------
    level : str
        "DEBUG", "INFO", "WARNING", "ERROR" or "CRITICAL"; unknown names fall back to INFO
    fmt : str
        "human" or "json"
    quiet_libs : list[str], optional
        Logger names capped at WARNING (defaults to uvicorn.access)
    """
    global _handler

    root = logging.getLogger()
    if _handler is not None:
        root.removeHandler(_handler)

    root.setLevel(getattr(logging, str(level).upper(), logging.INFO))
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(EngineFormatter("json" if fmt == "json" else "human"))
    root.addHandler(handler)
    _handler = handler

    for lib in (quiet_libs if quiet_libs is not None else ["uvicorn.access"]):
        logging.getLogger(lib).setLevel(logging.WARNING)
    logging.captureWarnings(True)
    return handler
