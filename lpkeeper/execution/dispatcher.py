"""
ProvisioningDispatcher: bounded fan-out of the "open position" action.

Turns "a new state document appeared" into "the provisioning action ran for
it" exactly once per document per process run, with at most
``max_concurrent`` actions running at the same time.

Architecture:
    The supervisor's event loop calls ``submit(path)`` for each document
    creation event. ``submit`` deduplicates through SeenRegistry, then blocks
    on a semaphore permit (backpressure on the event loop rather than an
    unbounded task pile) and spawns one worker task per document. The worker
    releases its permit unconditionally when done.

Cancellation:
    Cooperative. Workers check the shared stop event after the settle delay
    and before invoking the action; an action already running is allowed to
    finish or hit its own timeout. ``drain()`` waits for every worker.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Any, Awaitable, Callable, Optional, Set, TYPE_CHECKING

from lpkeeper.execution.dedup import SeenRegistry
from lpkeeper.state.store import DocumentError

if TYPE_CHECKING:
    from lpkeeper.infra.actions import ActionRunner
    from lpkeeper.monitoring.metrics import KeeperMetrics
    from lpkeeper.state.store import DocumentStore

log = logging.getLogger("lpkeeper")

DEFAULT_MAX_CONCURRENT = 20


class ProvisioningDispatcher:
    """
    Usage:
        dispatcher = ProvisioningDispatcher(store, runner, stop_event)
        await dispatcher.submit("/data/ABC123.json")
        ...
        await dispatcher.drain()
    """

    def __init__(
        self,
        store: "DocumentStore",
        runner: "ActionRunner",
        stop_event: asyncio.Event,
        max_concurrent: int = DEFAULT_MAX_CONCURRENT,
        settle_sec: float = 0.1,
        registry: Optional[SeenRegistry] = None,
        metrics: Optional["KeeperMetrics"] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if max_concurrent <= 0:
            raise ValueError("max_concurrent must be > 0")
        self.store = store
        self.runner = runner
        self.stop_event = stop_event
        self.max_concurrent = max_concurrent
        self.settle_sec = settle_sec
        self.registry = registry or SeenRegistry()
        self.metrics = metrics
        self._sleep = sleep
        self._sem = asyncio.Semaphore(max_concurrent)
        self._tasks: Set[asyncio.Task] = set()
        self._in_flight = 0
        self._peak_in_flight = 0

    def _log_event(self, event: str, level: int = logging.INFO, **kwargs: Any) -> None:
        log.log(level, json.dumps({"event": event, **kwargs}, ensure_ascii=False))

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @property
    def peak_in_flight(self) -> int:
        return self._peak_in_flight

    async def submit(self, path: str | Path) -> bool:
        """
        Dispatch provisioning for a newly created document.

        Returns:
            True if a worker was started, False for duplicates or when
            shutting down
        """
        if self.stop_event.is_set():
            return False
        key = os.path.abspath(str(path))
        if not self.registry.insert_if_absent(key):
            return False
        self._log_event("document_detected", path=key)

        await self._sem.acquire()
        if self.stop_event.is_set():
            self._sem.release()
            self._log_event("provision_skipped_shutdown", path=key)
            return False

        self._in_flight += 1
        self._peak_in_flight = max(self._peak_in_flight, self._in_flight)
        self._publish_in_flight()
        task = asyncio.create_task(self._worker(key), name=f"provision:{Path(key).stem}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return True

    async def _worker(self, path: str) -> None:
        try:
            await self._provision(path)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._log_event("provision_error", level=logging.ERROR, path=path, err=str(exc))
        finally:
            self._in_flight -= 1
            self._publish_in_flight()
            self._sem.release()

    async def _provision(self, path: str) -> None:
        # Settle: the writer may still be flushing the file.
        await self._sleep(self.settle_sec)
        if self.stop_event.is_set():
            self._log_event("provision_skipped_shutdown", path=path)
            return

        try:
            doc = self.store.read(path)
        except DocumentError as exc:
            self._log_event("provision_read_failed", level=logging.ERROR, path=path, err=str(exc))
            return

        pool = doc.pool_address
        if not pool:
            self._log_event("provision_missing_pool", level=logging.ERROR, path=path)
            return

        token = doc.ca
        last_updated_first = doc.last_updated_first
        result = await self.runner.provision(pool, token=token, last_updated_first=last_updated_first)
        if not result.ok:
            self._log_event(
                "provision_failed",
                level=logging.ERROR,
                pool=pool,
                rc=result.returncode,
                reason=result.describe(),
            )
            return
        # Schedulers pick up positionAddress by re-reading the document.
        self._log_event("provision_ok", pool=pool, token=token, duration_sec=round(result.duration_sec, 3))

    async def drain(self) -> None:
        """Wait for every in-flight worker to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _publish_in_flight(self) -> None:
        if self.metrics is not None:
            self.metrics.provision_in_flight.set(self._in_flight)
