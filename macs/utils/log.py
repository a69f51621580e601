"""
Logging setup for MACS.

Sends coordination logs (sends, handler failures, negotiation transitions)
to a rich stderr console so a build's agent traffic can be followed live.
"""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler


def setup_logging(level: str = "INFO") -> None:
    """
    Configure logging for the MACS loggers.

    Args:
        level: The logging level (DEBUG, INFO, WARNING, ERROR).
    """
    console = Console(stderr=True)

    # Log lines carry "[FROM → TO]" prefixes, so rich markup stays off.
    handler = RichHandler(
        console=console,
        show_time=True,
        show_path=False,
        markup=False,
        rich_tracebacks=True,
    )

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(message)s",
        handlers=[handler],
        force=True,
    )
