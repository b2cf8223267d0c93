"""Logging setup.

Every module logs short event names (``scan_complete``, ``engine_discarded``)
and puts the context in ``extra=``. The formatter below renders one JSON
object per line with those extras merged in.
"""
from __future__ import annotations

import json
import logging
import sys

# Attributes present on every LogRecord; anything else came from ``extra=``.
_RESERVED = frozenset(
    logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys()
) | {"message", "asctime", "taskName"}


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, object] = {
            "ts": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "event": record.getMessage(),
        }
        for key, value in record.__dict__.items():
            if key not in _RESERVED and not key.startswith("_"):
                payload[key] = value
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def configure_logging(level: str = "INFO") -> None:
    """Install a single stdout JSON handler on the root logger.

    Calling it again only updates the level.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    root = logging.getLogger()
    root.setLevel(numeric_level)

    if any(getattr(h, "_gatescan", False) for h in root.handlers):
        return

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())
    handler._gatescan = True  # type: ignore[attr-defined]
    root.addHandler(handler)
