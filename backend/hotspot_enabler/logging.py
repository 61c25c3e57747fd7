import json
import logging
import os
import sys
import time
from collections import deque
from typing import Any, Deque, Dict, List, Optional, Tuple

EVENT_LOG_MAX_LINES = 200


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(record.created)),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        # Optional structured fields
        for k in ("op", "iface", "phase", "pid", "channel"):
            if hasattr(record, k):
                payload[k] = getattr(record, k)

        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)

        return json.dumps(payload, separators=(",", ":"))


class EventLogHandler(logging.Handler):
    """
    Keeps the most recent records for the dashboard's event log.
    Oldest entries are evicted once the capacity is reached.
    """

    def __init__(self, capacity: int = EVENT_LOG_MAX_LINES, level: int = logging.INFO):
        super().__init__(level=level)
        self._entries: Deque[Tuple[float, str, str]] = deque(maxlen=capacity)

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self._entries.append((record.created, record.levelname, record.getMessage()))
        except Exception:
            self.handleError(record)

    def entries(self) -> List[Tuple[float, str, str]]:
        return list(self._entries)

    def clear(self) -> None:
        self._entries.clear()


def setup_logging(level: Optional[str] = None, event_log: Optional[EventLogHandler] = None) -> None:
    lvl = (level or os.environ.get("HOTSPOT_ENABLER_LOG_LEVEL") or "INFO").upper()
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(getattr(logging, lvl, logging.INFO))

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setFormatter(JsonFormatter())
    root.addHandler(handler)

    if event_log is not None:
        root.addHandler(event_log)
