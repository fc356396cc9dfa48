"""
State package.

Per-pool JSON documents and the swap blacklist.
"""

from lpkeeper.state.blacklist import load_blacklist, parse_blacklist
from lpkeeper.state.store import DocumentError, DocumentStore, PoolDocument

__all__ = [
    "DocumentError",
    "DocumentStore",
    "PoolDocument",
    "load_blacklist",
    "parse_blacklist",
]
