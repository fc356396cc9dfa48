"""
SwapSweep: convert every held token back to the base asset.

Each pass lists current holdings, drops blacklisted tokens (the blacklist is
re-read every pass so edits apply without a restart), then swaps the rest
one by one with a per-swap timeout and a fixed delay in between. Failed
swaps are logged, not retried; the next pass will see the token again if it
is still held. Cancellation is checked before every item.
"""

from __future__ import annotations

import asyncio
import logging
import time
from pathlib import Path
from typing import Callable, Iterable, List, Optional, TYPE_CHECKING

from lpkeeper.infra.actions import ActionError, parse_holdings
from lpkeeper.scheduling.base import PassReport, PeriodicScheduler
from lpkeeper.state.blacklist import load_blacklist

if TYPE_CHECKING:
    from lpkeeper.infra.actions import ActionRunner
    from lpkeeper.monitoring.metrics import KeeperMetrics


class SwapSweep(PeriodicScheduler):
    name = "swap_sweep"

    def __init__(
        self,
        runner: "ActionRunner",
        blacklist_path: str | Path,
        stop_event: asyncio.Event,
        offsets: Iterable[int] = (6,),
        item_delay_sec: float = 2.0,
        max_fee: Optional[int] = None,
        metrics: Optional["KeeperMetrics"] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        super().__init__(offsets, stop_event, metrics=metrics, clock=clock)
        self.runner = runner
        self.blacklist_path = Path(blacklist_path)
        self.item_delay_sec = item_delay_sec
        self.max_fee = max_fee

    async def collect_tokens(self) -> Optional[List[str]]:
        """Held tokens minus the blacklist; None if the listing failed."""
        try:
            listing = (await self.runner.list_holdings()).raise_for_status()
        except asyncio.CancelledError:
            raise
        except ActionError as exc:
            self._log_event("holdings_failed", level=logging.ERROR, reason=str(exc))
            return None
        except Exception as exc:
            self._log_event("holdings_failed", level=logging.ERROR, err=str(exc))
            return None

        held = parse_holdings(listing.output)
        blacklist = load_blacklist(self.blacklist_path)
        tokens = [t for t in held if t not in blacklist]
        self._log_event("holdings_found", held=len(held), blacklisted=len(held) - len(tokens),
                        to_swap=len(tokens))
        return tokens

    async def run_pass(self, report: PassReport) -> None:
        tokens = await self.collect_tokens()
        if tokens is None:
            report.failed += 1
            return

        for i, token in enumerate(tokens):
            if self.stopping:
                report.cancelled = True
                report.skipped += len(tokens) - i
                self._log_event("swap_sweep_interrupted", remaining=len(tokens) - i)
                return
            report.attempted += 1
            await self._swap(token, report)
            if i < len(tokens) - 1 and not await self.pause_between_items(self.item_delay_sec):
                report.cancelled = True
                report.skipped += len(tokens) - i - 1
                self._log_event("swap_sweep_interrupted", remaining=len(tokens) - i - 1)
                return

    async def _swap(self, token: str, report: PassReport) -> None:
        self._log_event("swap_start", ca=token)
        try:
            result = await self.runner.swap(token, self.max_fee)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            report.failed += 1
            report.failures.append(token)
            self._log_event("swap_failed", level=logging.ERROR, ca=token, err=str(exc))
            return
        if result.ok:
            report.succeeded += 1
            self._log_event("swap_ok", ca=token)
        else:
            report.failed += 1
            report.failures.append(token)
            self._log_event("swap_failed", level=logging.ERROR, ca=token,
                            rc=result.returncode, reason=result.describe())
