"""
Common utilities shared across gobincache modules.
"""

from __future__ import annotations

import os


def is_debug_enabled() -> bool:
    """Check whether GOBINCACHE_DEBUG=1 forces verbose tracing."""
    return os.environ.get("GOBINCACHE_DEBUG", "0") == "1"


def vlog(msg: str, verbose: bool = False) -> None:
    """
    Log a verbose trace message through the gobincache logger.

    Args:
        msg: Message to log
        verbose: Whether verbose mode is enabled
    """
    if verbose or is_debug_enabled():
        from .logging_config import get_logger
        get_logger().debug(msg)
