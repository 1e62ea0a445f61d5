"""Logging setup for the analysis engine with package filtering."""

from __future__ import annotations

import logging
from typing import List, Optional

from rich.console import Console
from rich.logging import RichHandler

PACKAGE_NAME = "pair_review"
STREAM_LOGGER_NAME = "pair_review.stream"


class PackageFilter(logging.Filter):
    """Filter to only allow logs from specified packages."""

    def __init__(self, packages: List[str]) -> None:
        super().__init__()
        self.packages = packages

    def filter(self, record: logging.LogRecord) -> bool:
        """Filter log records to only allow specified packages.

        Args:
            record: LogRecord to filter

        Returns:
            True if record should be logged, False otherwise
        """
        return any(
            record.name == pkg or record.name.startswith(pkg + ".") for pkg in self.packages
        )


def setup_logging(
    verbose: bool = False, trace_stream: bool = False, console: Optional[Console] = None
) -> RichHandler:
    """Install a RichHandler on the root logger.

    Args:
        verbose: Enable DEBUG level logging
        trace_stream: Also emit every raw reviewer stream line
        console: Console to log to (stderr console when omitted)

    Returns:
        The installed handler
    """
    level = logging.DEBUG if verbose or trace_stream else logging.INFO

    handler = RichHandler(
        console=console or Console(stderr=True),
        rich_tracebacks=True,
        show_path=verbose,
        markup=False,
    )
    handler.setLevel(level)
    handler.addFilter(PackageFilter([PACKAGE_NAME]))

    root = logging.getLogger()
    for existing in list(root.handlers):
        if isinstance(existing, RichHandler):
            root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)

    logging.getLogger(PACKAGE_NAME).setLevel(level)
    logging.getLogger(STREAM_LOGGER_NAME).setLevel(logging.DEBUG if trace_stream else logging.INFO)
    return handler


def stream_trace_enabled() -> bool:
    """Whether raw reviewer stream lines should be traced."""
    return logging.getLogger(STREAM_LOGGER_NAME).isEnabledFor(logging.DEBUG)
