"""
Configuration package.

Environment driven settings for the keeper process.
"""

from lpkeeper.config.config import Settings, env_bool, env_offsets, log_summary

__all__ = [
    "Settings",
    "env_bool",
    "env_offsets",
    "log_summary",
]
