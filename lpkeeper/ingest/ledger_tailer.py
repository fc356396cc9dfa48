"""
LedgerTailer: turns appended ledger rows into state documents.

The ledger is an external append-only CSV whose first row is the header.
The tailer keeps a high-water mark (physical line count). On every write
notification it waits a short settle delay, recounts, and materializes each
newly appended record as ``<poolAddress>.json`` in the state directory.

Delivery is at-least-once: the mark only advances after a batch, so a crash
mid-batch re-ingests those rows on the next run; document writes are
idempotent overwrites.
"""

from __future__ import annotations

import asyncio
import csv
import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, TYPE_CHECKING

from lpkeeper.infra.json_utils import dumps

if TYPE_CHECKING:
    from lpkeeper.monitoring.metrics import KeeperMetrics
    from lpkeeper.state.store import DocumentStore

log = logging.getLogger("lpkeeper")

POOL_FIELD = "poolAddress"
LEDGER_ENCODING = "utf-8-sig"


class LedgerError(Exception):
    """The ledger cannot be opened or has no header row."""


@dataclass
class TailResult:
    """Outcome of one tail cycle."""
    new_lines: int = 0
    written: int = 0
    skipped: int = 0
    synthesized: int = 0


def count_lines(path: str | Path) -> int:
    """Physical line count; a trailing line without newline counts."""
    count = 0
    with open(path, "rb") as fh:
        for _ in fh:
            count += 1
    return count


def map_record(headers: List[str], record: List[str]) -> Dict[str, str]:
    """
    Zip headers with fields positionally, keeping raw strings.

    Extra headers get no entry; extra fields are only kept in the raw record.
    """
    return {headers[i]: value for i, value in enumerate(record) if i < len(headers)}


def build_document(pool: str, headers: List[str], record: List[str], data: Dict[str, str]) -> Dict[str, Any]:
    return {
        POOL_FIELD: pool,
        "headers": list(headers),
        "record": list(record),
        "data": data,
    }


class LedgerTailer:
    """
    Usage:
        tailer = LedgerTailer("auto_profit.csv", store)
        tailer.open()                 # startup: headers + high-water mark
        result = await tailer.on_write()
    """

    def __init__(
        self,
        ledger_path: str | Path,
        store: "DocumentStore",
        settle_sec: float = 0.2,
        metrics: Optional["KeeperMetrics"] = None,
        clock=time.time,
    ) -> None:
        self.ledger_path = Path(ledger_path)
        self.store = store
        self.settle_sec = settle_sec
        self.metrics = metrics
        self._clock = clock
        self.headers: List[str] = []
        self.high_water = 0
        self._lock = asyncio.Lock()

    def open(self) -> None:
        """Read the header row and record the current line count."""
        try:
            with open(self.ledger_path, newline="", encoding=LEDGER_ENCODING) as fh:
                headers = next(csv.reader(fh), None)
            count = count_lines(self.ledger_path)
        except (OSError, csv.Error, UnicodeDecodeError) as exc:
            raise LedgerError(f"cannot read ledger {self.ledger_path}: {exc}") from exc
        if not headers:
            raise LedgerError(f"ledger {self.ledger_path} has no header row")
        self.headers = [h.strip() for h in headers]
        self.high_water = count
        log.info(dumps({
            "event": "ledger_opened",
            "path": str(self.ledger_path),
            "fields": len(self.headers),
            "lines": count,
        }))

    async def on_write(self) -> TailResult:
        """Handle one write notification for the ledger."""
        async with self._lock:
            await asyncio.sleep(self.settle_sec)
            try:
                count = await asyncio.to_thread(count_lines, self.ledger_path)
            except OSError as exc:
                log.warning(dumps({"event": "ledger_count_failed", "err": str(exc)}))
                return TailResult()

            if count < self.high_water:
                # Rewritten or truncated; resume from the new end.
                log.warning(dumps({
                    "event": "ledger_truncated",
                    "previous_lines": self.high_water,
                    "lines": count,
                }))
                self.high_water = count
                return TailResult()
            if count == self.high_water:
                return TailResult()

            log.info(dumps({"event": "ledger_growth", "new_lines": count - self.high_water}))
            result = await asyncio.to_thread(self._process_new_lines, self.high_water, count)
            result.new_lines = count - self.high_water
            self.high_water = count
            log.info(dumps({
                "event": "ledger_batch_done",
                "lines": count,
                "written": result.written,
                "skipped": result.skipped,
            }))
            return result

    def _process_new_lines(self, skip_lines: int, upto: int) -> TailResult:
        """Store records ending on lines ``skip_lines+1..upto``; later lines wait for the next batch."""
        result = TailResult()
        try:
            fh = open(self.ledger_path, newline="", encoding=LEDGER_ENCODING, errors="replace")
        except OSError as exc:
            log.warning(dumps({"event": "ledger_open_failed", "err": str(exc)}))
            return result

        with fh:
            reader = csv.reader(fh)
            while True:
                before = reader.line_num
                try:
                    record = next(reader)
                except StopIteration:
                    break
                except csv.Error as exc:
                    if reader.line_num > upto:
                        break
                    if reader.line_num > skip_lines:
                        result.skipped += 1
                        self._count_row("malformed")
                        log.warning(dumps({
                            "event": "ledger_row_malformed",
                            "line": reader.line_num,
                            "err": str(exc),
                        }))
                    if reader.line_num == before:
                        break
                    continue

                line_no = reader.line_num
                if line_no > upto:
                    break
                if line_no <= skip_lines:
                    continue
                if not record:
                    continue
                self._store_record(record, line_no, result)
        return result

    def _store_record(self, record: List[str], line_no: int, result: TailResult) -> None:
        data = map_record(self.headers, record)
        pool = (data.get(POOL_FIELD) or "").strip()
        name = pool
        if not pool:
            name = f"row_{int(self._clock())}_{line_no}"
            result.synthesized += 1

        try:
            path = self.store.write(name, build_document(pool, self.headers, record, data))
        except (OSError, ValueError) as exc:
            result.skipped += 1
            self._count_row("write_failed")
            log.error(dumps({
                "event": "ledger_row_write_failed",
                "line": line_no,
                "pool": pool,
                "err": str(exc),
            }))
            return

        result.written += 1
        self._count_row("written")
        log.info(dumps({"event": "ledger_row_saved", "pool": pool, "path": str(path)}))

    def _count_row(self, outcome: str) -> None:
        if self.metrics is not None:
            self.metrics.ledger_rows.labels(outcome=outcome).inc()
