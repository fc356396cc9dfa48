"""
RewardHarvest: claim fees and rewards for every provisioned pool.

Runs twice a minute. Documents without ``positionAddress`` are not yet
provisioned and are skipped silently. One pool's failure never stops the
pass.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Iterable, Optional, TYPE_CHECKING

from lpkeeper.scheduling.base import PassReport, PeriodicScheduler

if TYPE_CHECKING:
    from lpkeeper.infra.actions import ActionRunner
    from lpkeeper.monitoring.metrics import KeeperMetrics
    from lpkeeper.state.store import DocumentStore


class RewardHarvest(PeriodicScheduler):
    name = "reward_harvest"

    def __init__(
        self,
        store: "DocumentStore",
        runner: "ActionRunner",
        stop_event: asyncio.Event,
        offsets: Iterable[int] = (2, 32),
        metrics: Optional["KeeperMetrics"] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__(offsets, stop_event, metrics=metrics, clock=clock)
        self.store = store
        self.runner = runner

    async def run_pass(self, report: PassReport) -> None:
        for doc in self.store.iter_documents():
            if self.stopping:
                report.cancelled = True
                return
            if not doc.is_actionable:
                report.skipped += 1
                continue

            pool = doc.pool_address
            report.attempted += 1
            self._log_event("harvest_start", pool=pool)
            try:
                result = await self.runner.harvest(pool)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                report.failed += 1
                report.failures.append(pool)
                self._log_event("harvest_failed", level=logging.ERROR, pool=pool, err=str(exc))
                continue

            if result.ok:
                report.succeeded += 1
                self._log_event("harvest_ok", pool=pool)
            else:
                report.failed += 1
                report.failures.append(pool)
                self._log_event("harvest_failed", level=logging.ERROR, pool=pool,
                                rc=result.returncode, reason=result.describe())
