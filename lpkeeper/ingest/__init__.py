"""
Ingest package: ledger tailing and filesystem notifications.
"""

from lpkeeper.ingest.fs_events import FsEvent, FsEventBridge, FsEventKind
from lpkeeper.ingest.ledger_tailer import LedgerError, LedgerTailer, TailResult

__all__ = [
    "FsEvent",
    "FsEventBridge",
    "FsEventKind",
    "LedgerError",
    "LedgerTailer",
    "TailResult",
]
