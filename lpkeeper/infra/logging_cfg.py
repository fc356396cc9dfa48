"""
Process-wide log sink for the keeper.

- Console: rich handler, human-friendly mirror of every record
- File: one JSON-lines file per process run, written from a background thread
  so logging never blocks the event loop
"""

from __future__ import annotations

import atexit
import json
import logging
import queue
import sys
import threading
import time
from datetime import datetime
from pathlib import Path
from typing import Optional

from rich.logging import RichHandler


class JsonFormatter(logging.Formatter):
    """Compact JSON formatter for structured log ingestion."""

    def format(self, record: logging.LogRecord) -> str:
        ts = record.created or time.time()
        payload = {
            "ts": ts,
            "ts_iso": datetime.fromtimestamp(ts).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "name": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, separators=(",", ":"), ensure_ascii=False)


class AsyncQueueHandler(logging.Handler):
    """
    Non-blocking handler that queues log records for background processing.

    Records are written by a dedicated thread; the target handler's own lock
    serializes the "append line and flush" step.
    """

    def __init__(self, target_handler: logging.Handler, max_queue_size: int = 10000):
        super().__init__()
        self._queue: queue.Queue = queue.Queue(maxsize=max_queue_size)
        self._target = target_handler
        self._shutdown = False
        self._dropped = 0
        self._thread = threading.Thread(target=self._worker, daemon=True, name="log-writer")
        self._thread.start()
        atexit.register(self.close)

    @property
    def target(self) -> logging.Handler:
        return self._target

    def emit(self, record: logging.LogRecord) -> None:
        if self._shutdown:
            return
        try:
            self._queue.put_nowait(record)
        except queue.Full:
            self._dropped += 1

    def _worker(self) -> None:
        while not self._shutdown or not self._queue.empty():
            try:
                record = self._queue.get(timeout=0.1)
            except queue.Empty:
                continue
            try:
                self._target.handle(record)
                self._target.flush()
            except Exception:
                self._target.handleError(record)
            finally:
                self._queue.task_done()

    def close(self) -> None:
        if self._shutdown:
            return
        self._shutdown = True
        if self._thread.is_alive():
            self._thread.join(timeout=2.0)
        if self._dropped > 0:
            sys.stderr.write(f"[logging] Dropped {self._dropped} log records due to queue overflow\n")
        self._target.close()
        super().close()


def log_file_path(log_dir: str, started: Optional[datetime] = None) -> Path:
    """Per-run log file: ``<log_dir>/app_YYYY-MM-DD_HH-MM-SS.log``."""
    stamp = (started or datetime.now()).strftime("%Y-%m-%d_%H-%M-%S")
    return Path(log_dir) / f"app_{stamp}.log"


def build_logger(
    name: str = "lpkeeper",
    level: int | str = logging.INFO,
    log_dir: Optional[str] = "data/log",
    async_file: bool = True,
    console: bool = True,
) -> logging.Logger:
    """
    Build the process logger.

    Args:
        name: Logger name
        level: Minimum log level
        log_dir: Directory for the per-run log file (None to disable file logging)
        async_file: Write the file from a background thread
        console: Mirror records to the console

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Idempotent handler setup
    if logger.handlers:
        for h in logger.handlers:
            h.setLevel(level)
        return logger

    if console:
        stream_handler = RichHandler(
            rich_tracebacks=False,
            show_time=True,
            show_level=True,
            show_path=False,
            markup=False,
        )
        stream_handler.setLevel(level)
        stream_handler.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(stream_handler)

    if log_dir:
        path = log_file_path(log_dir)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path, mode="a", encoding="utf-8")
        file_handler.setFormatter(JsonFormatter())
        file_handler.setLevel(level)

        if async_file:
            async_handler = AsyncQueueHandler(file_handler, max_queue_size=10000)
            async_handler.setLevel(level)
            logger.addHandler(async_handler)
        else:
            logger.addHandler(file_handler)
        logger.info(json.dumps({"event": "log_file_created", "path": str(path)}))

    logger.propagate = False
    return logger


def close_logging(logger: logging.Logger) -> None:
    """Flush and close every handler on the logger; later records are dropped."""
    for handler in list(logger.handlers):
        try:
            handler.flush()
            handler.close()
        finally:
            logger.removeHandler(handler)


def log_event(
    logger: logging.Logger,
    event: str,
    level: int = logging.INFO,
    **data
) -> None:
    """
    Log a structured event with proper level.

    Usage:
        log_event(log, "harvest_failed", level=ERROR, pool="ABC", rc=1)
    """
    payload = {"event": event, **data}
    logger.log(level, json.dumps(payload, ensure_ascii=False, default=str))
