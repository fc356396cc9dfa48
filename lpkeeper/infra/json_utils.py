"""
JSON helpers for state documents.

Uses orjson for encode/decode; documents are written indented so they stay
readable and diffable by the external action scripts that also edit them.
"""

from __future__ import annotations

from typing import Any

import orjson


def dumps(obj: Any) -> str:
    """Compact JSON encode to string."""
    return orjson.dumps(obj).decode("utf-8")


def dumps_pretty(obj: Any) -> bytes:
    """Indented JSON encode to bytes, used for state documents."""
    return orjson.dumps(obj, option=orjson.OPT_INDENT_2)


def loads(s: str | bytes) -> Any:
    """JSON decode."""
    return orjson.loads(s)
