"""
State Store: one JSON document per tracked pool.

Documents live in a single directory and are named ``<poolAddress>.json``.
They are written by the ledger tailer and by the external action scripts,
and re-read from disk on every scheduler pass; the directory is the source
of truth and nothing here caches document contents.

Fields may sit at the top level or under the nested ``data`` object. Readers
go through ``PoolDocument.get`` which prefers the top level.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, Optional

from lpkeeper.infra.json_utils import dumps_pretty, loads

log = logging.getLogger("lpkeeper")

DOCUMENT_SUFFIX = ".json"


class DocumentError(Exception):
    """A state document could not be read or parsed."""


@dataclass
class PoolDocument:
    """Parsed view of one state document."""
    pool_address: str
    path: Path
    payload: Dict[str, Any] = field(default_factory=dict)

    def get(self, key: str) -> Any:
        """Top-level value if present and non-empty, else ``data[key]``."""
        value = self.payload.get(key)
        if value not in (None, ""):
            return value
        nested = self.payload.get("data")
        if isinstance(nested, dict):
            value = nested.get(key)
            if value not in (None, ""):
                return value
        return None

    def get_str(self, key: str) -> Optional[str]:
        value = self.get(key)
        if isinstance(value, str):
            value = value.strip()
            return value or None
        return None

    @property
    def ca(self) -> Optional[str]:
        return self.get_str("ca")

    @property
    def pool_name(self) -> Optional[str]:
        return self.get_str("poolName")

    @property
    def position_address(self) -> Optional[str]:
        return self.get_str("positionAddress")

    @property
    def last_updated_first(self) -> Optional[str]:
        return self.get_str("last_updated_first")

    @property
    def reference_price(self) -> Optional[float]:
        """The ``c`` field as a float; None when missing or not numeric."""
        raw = self.get("c")
        if raw is None or isinstance(raw, bool):
            return None
        try:
            return float(raw)
        except (TypeError, ValueError):
            return None

    @property
    def is_actionable(self) -> bool:
        return self.position_address is not None


class DocumentStore:
    """
    Filesystem access for state documents.

    Usage:
        store = DocumentStore("data")
        store.ensure()
        store.write("ABC123", {"poolAddress": "ABC123", "data": {...}})
        for doc in store.iter_documents():
            ...
    """

    def __init__(self, data_dir: str | Path) -> None:
        self.data_dir = Path(data_dir)

    def ensure(self) -> None:
        """Create the directory; raises OSError if that is impossible."""
        self.data_dir.mkdir(parents=True, exist_ok=True)

    def path_for(self, name: str) -> Path:
        if not name or name in (".", "..") or "/" in name or "\\" in name:
            raise ValueError(f"invalid document name: {name!r}")
        return self.data_dir / f"{name}{DOCUMENT_SUFFIX}"

    def is_document(self, path: str | Path) -> bool:
        p = Path(path)
        if p.suffix != DOCUMENT_SUFFIX:
            return False
        try:
            return p.resolve().parent == self.data_dir.resolve()
        except OSError:
            return False

    def write(self, name: str, payload: Dict[str, Any]) -> Path:
        """
        Atomically write ``<name>.json`` (temp file + rename).

        Rewriting a document with the same content is harmless, so ingest can
        be replayed.
        """
        path = self.path_for(name)
        data = dumps_pretty(payload)
        fd, tmp = tempfile.mkstemp(prefix=f".{name}.", suffix=".tmp", dir=self.data_dir)
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(data)
            os.replace(tmp, path)
        except BaseException:
            try:
                os.unlink(tmp)
            except FileNotFoundError:
                pass
            raise
        return path

    def read(self, path: str | Path) -> PoolDocument:
        p = Path(path)
        try:
            payload = loads(p.read_bytes())
        except OSError as exc:
            raise DocumentError(f"read failed for {p}: {exc}") from exc
        except ValueError as exc:
            raise DocumentError(f"invalid JSON in {p}: {exc}") from exc
        if not isinstance(payload, dict):
            raise DocumentError(f"{p} does not contain a JSON object")
        pool = payload.get("poolAddress")
        if not isinstance(pool, str) or not pool.strip():
            pool = ""
        return PoolDocument(pool_address=pool.strip(), path=p, payload=payload)

    def iter_documents(self) -> Iterator[PoolDocument]:
        """
        Yield every readable document, sorted by file name.

        The pool address falls back to the file stem. Unreadable files are
        logged and skipped; they are retried on the next pass.
        """
        try:
            paths = sorted(
                p for p in self.data_dir.iterdir()
                if p.is_file() and p.suffix == DOCUMENT_SUFFIX
            )
        except OSError as exc:
            log.error(json.dumps({"event": "state_dir_read_error", "dir": str(self.data_dir), "err": str(exc)}))
            return
        for p in paths:
            try:
                doc = self.read(p)
            except DocumentError as exc:
                log.warning(json.dumps({"event": "state_doc_skipped", "path": str(p), "err": str(exc)}))
                continue
            if not doc.pool_address:
                doc.pool_address = p.stem
            yield doc
