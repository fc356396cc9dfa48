"""
PeriodicScheduler: shared loop for the wall-clock aligned sweeps.

Each scheduler:
1. computes the next aligned trigger (second-of-minute offsets),
2. sleeps until then or until the stop event fires,
3. runs one full pass, processing items sequentially,
4. repeats until stopped.

A pass never raises into the loop: item failures are counted on the
PassReport and unexpected exceptions are logged as ``pass_error``. A pass that
overruns the next trigger simply skips it; the loop recomputes from "now".
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, List, Optional, Tuple, TYPE_CHECKING

from lpkeeper.scheduling.cadence import interruptible_sleep, next_aligned, sleep_until

if TYPE_CHECKING:
    from lpkeeper.monitoring.metrics import KeeperMetrics

log = logging.getLogger("lpkeeper")


@dataclass
class PassReport:
    """Outcome counters for one scheduler pass."""
    name: str
    started_at: float = 0.0
    attempted: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    cancelled: bool = False
    failures: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "scheduler": self.name,
            "attempted": self.attempted,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
            "cancelled": self.cancelled,
        }


class PeriodicScheduler:
    """
    Base class; subclasses implement ``run_pass``.

    Usage:
        sched = RewardHarvest(store, runner, stop_event)
        task = asyncio.create_task(sched.run())
        ...
        stop_event.set()
        await task
    """

    name = "scheduler"

    def __init__(
        self,
        offsets: Iterable[int],
        stop_event: asyncio.Event,
        metrics: Optional["KeeperMetrics"] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.offsets: Tuple[int, ...] = tuple(sorted({int(o) for o in offsets}))
        if not self.offsets:
            raise ValueError(f"{self.name}: offsets must not be empty")
        self.stop_event = stop_event
        self.metrics = metrics
        self._clock = clock
        self.passes = 0

    def _log_event(self, event: str, level: int = logging.INFO, **kwargs: Any) -> None:
        payload = {"event": event, "scheduler": self.name, **kwargs}
        log.log(level, json.dumps(payload, ensure_ascii=False))

    @property
    def stopping(self) -> bool:
        return self.stop_event.is_set()

    def next_trigger(self) -> float:
        return next_aligned(self._clock(), self.offsets)

    async def run(self) -> None:
        offsets = ",".join(f":{o:02d}" for o in self.offsets)
        self._log_event("scheduler_started", offsets=offsets)
        while not self.stopping:
            deadline = self.next_trigger()
            self._log_event("scheduler_next", level=logging.DEBUG,
                            in_sec=round(max(0.0, deadline - self._clock()), 1))
            if not await sleep_until(deadline, self.stop_event, self._clock):
                break
            await self.run_once()
        self._log_event("scheduler_stopped")

    async def run_once(self) -> PassReport:
        """Run one guarded pass."""
        report = PassReport(name=self.name, started_at=self._clock())
        self._log_event("pass_start")
        try:
            await self.run_pass(report)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._log_event("pass_error", level=logging.ERROR, err=str(exc))
        self.passes += 1
        if self.metrics is not None:
            self.metrics.record_pass(report)
        self._log_event("pass_complete",
                        duration_sec=round(self._clock() - report.started_at, 2),
                        **{k: v for k, v in report.to_dict().items() if k != "scheduler"})
        return report

    async def run_pass(self, report: PassReport) -> None:
        raise NotImplementedError

    async def pause_between_items(self, seconds: float) -> bool:
        """Inter-item throttle; False when cancellation fired during the wait."""
        return await interruptible_sleep(seconds, self.stop_event)
