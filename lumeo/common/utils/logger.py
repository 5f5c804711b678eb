import collections
import datetime
import json
import logging
import os
import sys
import threading

HOSTNAME = os.getenv("HOSTNAME", "lumeo-local")

# Attributes callers attach through `extra=`; missing ones render as defaults
EXTRA_FIELDS = (("event", "log"), ("job_id", None), ("provider", None))


class JSONFormatter(logging.Formatter):
    """One JSON object per record, carrying the job context."""

    def format(self, record):
        entry = {
            "timestamp": datetime.datetime.fromtimestamp(record.created).isoformat(),
            "host": HOSTNAME,
            "logger": record.name,
            "level": record.levelname,
            "message": record.getMessage(),
        }
        for name, default in EXTRA_FIELDS:
            entry[name] = getattr(record, name, default)
        if record.exc_info:
            entry["error"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


class LogBuffer(logging.Handler):
    """Keeps the most recent formatted records for `GET /logs`."""

    def __init__(self, capacity=1000):
        super().__init__()
        self._entries = collections.deque(maxlen=capacity)
        self._entries_lock = threading.Lock()

    def emit(self, record):
        try:
            entry = json.loads(self.format(record))
        except Exception:
            self.handleError(record)
            return
        with self._entries_lock:
            self._entries.append(entry)

    def tail(self, limit=100, job_id=None):
        """Newest `limit` entries, oldest first, optionally for one job."""
        if limit <= 0:
            return []
        with self._entries_lock:
            entries = list(self._entries)
        if job_id:
            entries = [e for e in entries if e.get("job_id") == job_id]
        return entries[-limit:]


def setup_logger(name, level=logging.INFO, log_buffer=None):
    """
    Sends the root logger and uvicorn's loggers to stdout as JSON and into
    `log_buffer`. Returns the named logger and the buffer.
    """
    if log_buffer is None:
        log_buffer = LogBuffer()
    formatter = JSONFormatter()
    log_buffer.setFormatter(formatter)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    handlers = [console_handler, log_buffer]

    logging.basicConfig(level=level, handlers=handlers, force=True)

    for uvicorn_name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        uvicorn_logger = logging.getLogger(uvicorn_name)
        uvicorn_logger.handlers = list(handlers)
        uvicorn_logger.propagate = False

    return logging.getLogger(name), log_buffer
