"""
SeenRegistry: process-lifetime set of document paths already dispatched.

Filesystem watchers can report the same creation more than once (create
followed by a rename, editor temp files, duplicate inotify events). The
registry turns that into at-most-once dispatch per path per process run.
It is not persisted: after a restart, previously seen files are
not re-dispatched because they produce no new create event.
"""

from __future__ import annotations

import json
import logging
import threading
from typing import Any, Callable, Dict, Optional, Set

log = logging.getLogger("lpkeeper")


class SeenRegistry:
    """
    Insert-if-absent set guarded by a lock.

    The lock makes ``insert_if_absent`` an atomic check-and-set even when
    called from the watchdog observer thread and the event loop at once.
    """

    def __init__(self, log_event: Optional[Callable[..., None]] = None) -> None:
        self._seen: Set[str] = set()
        self._lock = threading.Lock()
        self._log_event = log_event or self._default_log
        self._stats = {
            "inserted": 0,
            "duplicates": 0,
        }

    def _default_log(self, event: str, **kwargs: Any) -> None:
        log.debug(json.dumps({"event": event, **kwargs}))

    def insert_if_absent(self, key: str) -> bool:
        """
        Add key unless already present.

        Returns:
            True if the key was new and is now recorded, False if duplicate
        """
        with self._lock:
            if key in self._seen:
                self._stats["duplicates"] += 1
                duplicate = True
            else:
                self._seen.add(key)
                self._stats["inserted"] += 1
                duplicate = False
        if duplicate:
            self._log_event("dispatch_dedup_skip", key=key)
        return not duplicate

    def contains(self, key: str) -> bool:
        with self._lock:
            return key in self._seen

    def size(self) -> int:
        with self._lock:
            return len(self._seen)

    def get_stats(self) -> Dict[str, int]:
        with self._lock:
            return {**self._stats, "current_size": len(self._seen)}
