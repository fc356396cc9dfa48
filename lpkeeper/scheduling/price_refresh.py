"""
PriceRefresh: once a minute, fetch the oracle price for every tracked token.

Items run one at a time with a fixed delay in between, keeping the oracle
under its rate limit. Price persistence is the oracle script's own concern;
this pass only logs the parsed price and feeds it to the RemovalMonitor,
which may trigger the removal action for a provisioned pool.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Iterable, Optional, TYPE_CHECKING

from lpkeeper.infra.actions import parse_price
from lpkeeper.risk.removal_monitor import Decision, RemovalMonitor
from lpkeeper.scheduling.base import PassReport, PeriodicScheduler

if TYPE_CHECKING:
    from lpkeeper.infra.actions import ActionRunner
    from lpkeeper.monitoring.metrics import KeeperMetrics
    from lpkeeper.state.store import DocumentStore, PoolDocument

UNKNOWN_POOL_NAME = "unknown"


class PriceRefresh(PeriodicScheduler):
    name = "price_refresh"

    def __init__(
        self,
        store: "DocumentStore",
        runner: "ActionRunner",
        stop_event: asyncio.Event,
        offsets: Iterable[int] = (1,),
        item_delay_sec: float = 1.1,
        monitor: Optional[RemovalMonitor] = None,
        metrics: Optional["KeeperMetrics"] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__(offsets, stop_event, metrics=metrics, clock=clock)
        self.store = store
        self.runner = runner
        self.item_delay_sec = item_delay_sec
        self.monitor = monitor

    async def run_pass(self, report: PassReport) -> None:
        docs = [doc for doc in self.store.iter_documents() if doc.ca]
        if not docs:
            self._log_event("price_no_tokens", level=logging.WARNING)
            return
        self._log_event("price_tokens_found", count=len(docs))

        for i, doc in enumerate(docs):
            if self.stopping:
                report.cancelled = True
                return
            report.attempted += 1
            await self._refresh(doc, report)
            if i < len(docs) - 1 and not await self.pause_between_items(self.item_delay_sec):
                report.cancelled = True
                return

    async def _refresh(self, doc: "PoolDocument", report: PassReport) -> None:
        pool, token = doc.pool_address, doc.ca
        pool_name = doc.pool_name or UNKNOWN_POOL_NAME
        try:
            result = await self.runner.fetch_price(pool, token)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            report.failed += 1
            report.failures.append(pool)
            self._log_event("price_failed", level=logging.ERROR, pool=pool, ca=token,
                            pool_name=pool_name, err=str(exc))
            return

        price = parse_price(result.output)
        if price is None:
            report.failed += 1
            report.failures.append(pool)
            self._log_event("price_failed", level=logging.ERROR, pool=pool, ca=token,
                            pool_name=pool_name, reason=result.describe())
            return

        report.succeeded += 1
        self._log_event("price_ok", pool=pool, ca=token, pool_name=pool_name, price=price)
        if self.monitor is not None:
            await self._check_removal(doc, price)

    async def _check_removal(self, doc: "PoolDocument", price: float) -> None:
        reference = doc.reference_price
        position = doc.position_address
        if reference is None or reference <= 0 or position is None:
            return

        pool = doc.pool_address
        decision = self.monitor.evaluate(pool, price, reference, now=self._clock())
        target = self.monitor.target_for(reference)
        if decision is Decision.RECOVERED:
            self._log_event("price_recovered", pool=pool, price=price, target=target)
        elif decision is Decision.WATCH:
            self._log_event("price_below_target", level=logging.WARNING,
                            pool=pool, price=price, target=target)
        elif decision is Decision.REMOVE:
            self._log_event("removal_triggered", level=logging.WARNING,
                            pool=pool, position=position, price=price, target=target, c=reference)
            try:
                result = await self.runner.remove(pool, position)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self.monitor.reset(pool)
                self._log_event("removal_failed", level=logging.ERROR, pool=pool, err=str(exc))
                return
            if result.ok:
                self.monitor.mark_removed(pool, now=self._clock())
                self._log_event("removal_ok", pool=pool, position=position)
            else:
                self.monitor.reset(pool)
                self._log_event("removal_failed", level=logging.ERROR, pool=pool,
                                reason=result.describe())
        self._publish_monitor()

    def _publish_monitor(self) -> None:
        if self.metrics is None:
            return
        for state, count in self.monitor.counts().items():
            self.metrics.removal_state.labels(state=state).set(count)
