"""
Structured logging for the tender markup services.

Named loggers:
    tender-markup   step diagnostics (WARNING) and calculation traces (DEBUG)
    tender-tactics  parameter fallbacks and per-item diagnostics
    tender-perf     ``@timed`` durations (DEBUG)

JSON lines carry the markup extras passed through ``extra=`` (category,
item_id, step, base_amount, duration_ms).
"""
import logging
import json
import sys
from datetime import datetime, timezone
from typing import Optional

_EXTRA_FIELDS = ("category", "item_id", "step", "base_amount", "duration_ms")


class JSONFormatter(logging.Formatter):
    """One JSON object per record, non-ASCII category keys kept readable."""
    def format(self, record):
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)
        for name in _EXTRA_FIELDS:
            if hasattr(record, name):
                log_entry[name] = getattr(record, name)
        return json.dumps(log_entry, default=str, ensure_ascii=False)


def setup_logging(level: str = "INFO", json_output: bool = True, perf_level: Optional[str] = None):
    """
    Configure the root logger for markup hosts.

    ``tender-perf`` is held at WARNING unless ``perf_level`` is given.
    """
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    handler = logging.StreamHandler(sys.stdout)
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            "%(asctime)s [%(name)s] %(levelname)s: %(message)s"
        ))

    root.handlers = [handler]

    logging.getLogger("tender-perf").setLevel(
        getattr(logging, (perf_level or "WARNING").upper(), logging.WARNING)
    )
