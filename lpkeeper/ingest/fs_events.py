"""
Bridge from watchdog filesystem notifications to an asyncio queue.

watchdog delivers events on its observer thread; handlers only translate
them into ``FsEvent`` items and hand them to the event loop with
``call_soon_threadsafe``. All real work happens on the loop.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

log = logging.getLogger("lpkeeper")


class FsEventKind(Enum):
    LEDGER_WRITE = "ledger_write"
    DOCUMENT_CREATED = "document_created"


@dataclass(frozen=True)
class FsEvent:
    kind: FsEventKind
    path: str


def _norm(path: str | Path) -> str:
    return os.path.normcase(os.path.abspath(str(path)))


def _decode(path: str | bytes) -> str:
    if isinstance(path, bytes):
        return os.fsdecode(path)
    return path


class _KeeperEventHandler(FileSystemEventHandler):
    """Classifies raw watchdog events; runs on the observer thread."""

    def __init__(self, bridge: "FsEventBridge") -> None:
        super().__init__()
        self._bridge = bridge

    def on_created(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        path = _decode(event.src_path)
        self._bridge.classify(path, created=True)

    def on_modified(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        self._bridge.classify(_decode(event.src_path), created=False)

    def on_moved(self, event: FileSystemEvent) -> None:
        # Atomic writers create a temp file and rename it into place.
        if event.is_directory:
            return
        self._bridge.classify(_decode(event.dest_path), created=True)


class FsEventBridge:
    """
    Watches the ledger file and the state directory.

    Usage:
        bridge = FsEventBridge(loop, ledger_path, data_dir)
        bridge.start()
        event = await bridge.queue.get()
        bridge.stop()
    """

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        ledger_path: str | Path,
        data_dir: str | Path,
        queue: Optional[asyncio.Queue] = None,
    ) -> None:
        self.loop = loop
        self.ledger_path = _norm(ledger_path)
        self.data_dir = _norm(data_dir)
        self.queue: asyncio.Queue = queue or asyncio.Queue()
        self._observer: Optional[Observer] = None
        self._closed = False

    def classify(self, path: str, created: bool) -> Optional[FsEvent]:
        """Map a raw path to an FsEvent and enqueue it; None if irrelevant."""
        if self._closed:
            return None
        norm = _norm(path)
        event: Optional[FsEvent] = None
        if norm == self.ledger_path:
            event = FsEvent(FsEventKind.LEDGER_WRITE, norm)
        elif created and norm.endswith(".json") and os.path.dirname(norm) == self.data_dir:
            event = FsEvent(FsEventKind.DOCUMENT_CREATED, norm)
        if event is not None:
            self._enqueue(event)
        return event

    def _enqueue(self, event: FsEvent) -> None:
        try:
            self.loop.call_soon_threadsafe(self.queue.put_nowait, event)
        except RuntimeError:
            # Loop already closed during shutdown.
            pass

    def start(self) -> None:
        handler = _KeeperEventHandler(self)
        observer = Observer()
        ledger_dir = os.path.dirname(self.ledger_path)
        observer.schedule(handler, self.data_dir, recursive=False)
        if ledger_dir != self.data_dir:
            observer.schedule(handler, ledger_dir, recursive=False)
        observer.daemon = True
        observer.start()
        self._observer = observer
        log.info(json.dumps({
            "event": "watch_started",
            "ledger": self.ledger_path,
            "data_dir": self.data_dir,
        }))

    def stop(self) -> None:
        """Stop the observer; no events are delivered afterwards."""
        self._closed = True
        if self._observer is None:
            return
        self._observer.stop()
        self._observer.join(timeout=5.0)
        self._observer = None
        log.info(json.dumps({"event": "watch_stopped"}))
