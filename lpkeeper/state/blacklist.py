"""Swap blacklist: token addresses the sweep must never sell."""

from __future__ import annotations

import json
import logging
import re
from pathlib import Path
from typing import Set

log = logging.getLogger("lpkeeper")

# ASCII comma, full-width comma, or any whitespace
_SPLIT_RE = re.compile(r"[,，\s]+")


def parse_blacklist(text: str) -> Set[str]:
    return {tok for tok in _SPLIT_RE.split(text) if tok}


def load_blacklist(path: str | Path) -> Set[str]:
    """
    Read the blacklist file fresh.

    A missing file is an empty blacklist. An unreadable one is logged and
    treated as empty for this pass.
    """
    p = Path(path)
    if not p.exists():
        return set()
    try:
        text = p.read_text(encoding="utf-8-sig")
    except OSError as exc:
        log.warning(json.dumps({"event": "blacklist_read_error", "path": str(p), "err": str(exc)}))
        return set()
    return parse_blacklist(text)
