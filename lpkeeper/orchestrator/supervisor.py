"""
Supervisor: process lifecycle for the keeper.

Wires the components together and owns the single stop event every loop
observes:

    ledger CSV --(watchdog)--> LedgerTailer --> state dir
    state dir  --(watchdog)--> ProvisioningDispatcher --> provision action
    PriceRefresh / RewardHarvest / SwapSweep --> state dir + actions

Lifecycle:
    RUNNING --(signal)--> SHUTTING_DOWN (terminal)

Shutdown is cooperative: the filesystem bridge stops first so no new work
arrives, schedulers exit at their next sleep or item boundary, in-flight
provisioning workers finish, and the log sink is closed last. Running
subprocesses are never killed by shutdown; they complete or time out.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from enum import Enum
from typing import Any, Callable, List, Optional, TYPE_CHECKING

from lpkeeper.execution.dispatcher import ProvisioningDispatcher
from lpkeeper.infra.actions import ActionRunner
from lpkeeper.infra.logging_cfg import close_logging
from lpkeeper.ingest.fs_events import FsEvent, FsEventBridge, FsEventKind
from lpkeeper.ingest.ledger_tailer import LedgerError, LedgerTailer
from lpkeeper.risk.removal_monitor import RemovalMonitor
from lpkeeper.scheduling.base import PeriodicScheduler
from lpkeeper.scheduling.harvest import RewardHarvest
from lpkeeper.scheduling.price_refresh import PriceRefresh
from lpkeeper.scheduling.swap_sweep import SwapSweep
from lpkeeper.state.store import DocumentStore

if TYPE_CHECKING:
    from lpkeeper.config.config import Settings
    from lpkeeper.monitoring.metrics import KeeperMetrics

# Exit status used when a repeated signal forces the process down
FORCED_EXIT_CODE = 130


class LifecycleState(Enum):
    RUNNING = "running"
    SHUTTING_DOWN = "shutting_down"


class StartupError(Exception):
    """The keeper cannot establish its operating contract (ledger, state dir)."""


class Supervisor:
    """
    Usage:
        sup = Supervisor(cfg)
        sup.prepare()                      # raises StartupError
        loop.add_signal_handler(SIGTERM, sup.request_shutdown)
        await sup.run()
    """

    def __init__(
        self,
        cfg: "Settings",
        runner: Optional[ActionRunner] = None,
        logger: Optional[logging.Logger] = None,
        metrics: Optional["KeeperMetrics"] = None,
        bridge_factory: Optional[Callable[[asyncio.AbstractEventLoop], FsEventBridge]] = None,
        exit_fn: Callable[[int], Any] = os._exit,
    ) -> None:
        self.cfg = cfg
        self.log = logger or logging.getLogger("lpkeeper")
        self.metrics = metrics
        self.state = LifecycleState.RUNNING
        self.stop_event = asyncio.Event()
        self._exit_fn = exit_fn
        self._bridge_factory = bridge_factory or self._default_bridge
        self._signals = 0
        self.bridge: Optional[FsEventBridge] = None

        self.store = DocumentStore(cfg.data_dir)
        self.runner = runner or ActionRunner(cfg, metrics=metrics)
        self.tailer = LedgerTailer(cfg.ledger_path, self.store,
                                   settle_sec=cfg.ledger_settle_sec, metrics=metrics)
        self.dispatcher = ProvisioningDispatcher(
            self.store,
            self.runner,
            self.stop_event,
            max_concurrent=cfg.max_concurrent,
            settle_sec=cfg.doc_settle_sec,
            metrics=metrics,
        )
        self.monitor = RemovalMonitor(cfg.removal_threshold_ratio, cfg.removal_grace_sec)
        self.schedulers: List[PeriodicScheduler] = [
            PriceRefresh(
                self.store, self.runner, self.stop_event,
                offsets=cfg.price_offsets,
                item_delay_sec=cfg.price_item_delay_sec,
                monitor=self.monitor if cfg.removal_enabled else None,
                metrics=metrics,
            ),
            RewardHarvest(
                self.store, self.runner, self.stop_event,
                offsets=cfg.harvest_offsets,
                metrics=metrics,
            ),
            SwapSweep(
                self.runner, cfg.blacklist_path, self.stop_event,
                offsets=cfg.swap_offsets,
                item_delay_sec=cfg.swap_item_delay_sec,
                max_fee=cfg.swap_max_fee,
                metrics=metrics,
            ),
        ]

    def _log_event(self, event: str, level: int = logging.INFO, **kwargs: Any) -> None:
        self.log.log(level, json.dumps({"event": event, **kwargs}, ensure_ascii=False))

    def _default_bridge(self, loop: asyncio.AbstractEventLoop) -> FsEventBridge:
        return FsEventBridge(loop, self.cfg.ledger_path, self.cfg.data_dir)

    # ========== Startup ==========

    def prepare(self) -> None:
        """Pre-flight: state directory and ledger must be usable."""
        try:
            self.store.ensure()
        except OSError as exc:
            raise StartupError(f"cannot create state directory {self.cfg.data_dir}: {exc}") from exc
        try:
            self.tailer.open()
        except LedgerError as exc:
            raise StartupError(str(exc)) from exc

    # ========== Shutdown ==========

    def request_shutdown(self, reason: str = "signal") -> None:
        """
        First call: begin graceful shutdown. A repeated call escalates to an
        immediate exit when ``force_exit_on_second_signal`` is enabled.
        """
        self._signals += 1
        if self.state is LifecycleState.RUNNING:
            self.state = LifecycleState.SHUTTING_DOWN
            self._log_event("shutdown_requested", reason=reason)
            self.stop_event.set()
            return
        if self.cfg.force_exit_on_second_signal:
            self._log_event("shutdown_forced", level=logging.WARNING, reason=reason,
                            in_flight=self.dispatcher.in_flight)
            close_logging(self.log)
            self._exit_fn(FORCED_EXIT_CODE)
            return
        self._log_event("shutdown_in_progress", reason=reason)

    # ========== Main loop ==========

    async def run(self) -> None:
        loop = asyncio.get_running_loop()
        self.bridge = self._bridge_factory(loop)
        self.bridge.start()
        tasks = [asyncio.create_task(s.run(), name=s.name) for s in self.schedulers]
        self._log_event("keeper_started", schedulers=[s.name for s in self.schedulers],
                        max_concurrent=self.cfg.max_concurrent)
        try:
            await self._consume(self.bridge.queue)
        finally:
            # No new filesystem work from here on.
            await asyncio.to_thread(self.bridge.stop)
            self.stop_event.set()
            self._log_event("shutdown_waiting", in_flight=self.dispatcher.in_flight)
            results = await asyncio.gather(*tasks, return_exceptions=True)
            for task, res in zip(tasks, results):
                if isinstance(res, Exception):
                    self._log_event("scheduler_crashed", level=logging.ERROR,
                                    scheduler=task.get_name(), err=str(res))
            await self.dispatcher.drain()
            self._log_event("shutdown_complete")
            close_logging(self.log)

    async def _consume(self, queue: asyncio.Queue) -> None:
        while not self.stop_event.is_set():
            try:
                event = await asyncio.wait_for(queue.get(), timeout=0.25)
            except asyncio.TimeoutError:
                continue
            await self.handle_event(event)

    async def handle_event(self, event: FsEvent) -> None:
        try:
            if event.kind is FsEventKind.LEDGER_WRITE:
                await self.tailer.on_write()
            elif event.kind is FsEventKind.DOCUMENT_CREATED and self.store.is_document(event.path):
                await self.dispatcher.submit(event.path)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._log_event("event_error", level=logging.ERROR,
                            kind=event.kind.value, path=event.path, err=str(exc))
