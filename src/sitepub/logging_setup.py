"""Logging configuration: a single Rich handler on the root logger"""

import logging
import os

from rich.console import Console
from rich.logging import RichHandler


LOG_LEVEL_ENV = "SITEPUB_LOG_LEVEL"

console = Console(stderr=True)


def _resolve_level(verbose: bool) -> int:
    if verbose:
        return logging.DEBUG
    name = os.getenv(LOG_LEVEL_ENV, "WARNING").upper()
    return getattr(logging, name, logging.WARNING)


def configure_logging(verbose: bool = False) -> None:
    """Install the Rich handler once; later calls only adjust the level."""
    root = logging.getLogger()
    managed = [h for h in root.handlers if getattr(h, "_sitepub_managed", False)]
    if not managed:
        handler = RichHandler(console=console, show_path=False, rich_tracebacks=True)
        handler.setFormatter(logging.Formatter("%(message)s"))
        handler._sitepub_managed = True
        root.addHandler(handler)
    root.setLevel(_resolve_level(verbose))
