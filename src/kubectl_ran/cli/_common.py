"""Shared utilities for the CLI.

Provides the Rich console (on stderr, so the remote command's stdout
stays clean), logging setup, and error rendering.
"""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler
from rich.text import Text

console = Console(stderr=True)

logger = logging.getLogger("kubectl_ran")


def configure_logging(verbose: bool) -> None:
    """Route kubectl_ran logs to the console.

    Info messages are only shown with --verbose; warnings always are.

    Args:
        verbose: Enable info-level output.
    """
    handler = RichHandler(
        console=console,
        show_time=False,
        show_path=False,
        markup=False,
        rich_tracebacks=True,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))

    logger.handlers = []
    logger.addHandler(handler)
    logger.setLevel(logging.INFO if verbose else logging.WARNING)


def print_error(message: str) -> None:
    """Print a single failure line on stderr."""
    console.print(Text.assemble(("Error: ", "bold red"), message))
