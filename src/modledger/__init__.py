"""
Modledger - Discord moderation bot with an audited case ledger.

Package metadata lives here; the runtime entrypoint is :mod:`modledger.main`.
"""
from __future__ import annotations

from importlib import metadata as importlib_metadata


try:
    __version__ = importlib_metadata.version("modledger")
except Exception:  # pragma: no cover - fallback when not installed
    __version__ = "0.0.0"


def get_version() -> str:
    """Return the installed distribution version, or the source-tree fallback."""
    return __version__


__all__ = ["get_version", "__version__"]
