"""
Logging utilities for the authority service, the edge application and the
client-side sync loop.

Provides a consistent logging format and configuration.
"""

import logging
import sys

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Configure root logging with a sensible default format."""
    logging.basicConfig(
        level=level.upper(),
        format=LOG_FORMAT,
        stream=sys.stdout,
    )
    # httpx logs every request line at INFO, including query strings that may
    # carry one-time tokens.
    logging.getLogger("httpx").setLevel(logging.WARNING)


__all__ = ["LOG_FORMAT", "configure_logging"]
