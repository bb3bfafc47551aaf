"""Logging setup: Rich handler on a shared stderr console, run-scoped adapters."""

from __future__ import annotations

import logging
from pathlib import Path

from rich.console import Console

stderr_console = Console(stderr=True)

FILE_FORMAT = "%(asctime)s %(name)s %(levelname)s %(message)s"


def _parse_level(level: str) -> int:
    return getattr(logging, level.upper(), logging.INFO)


def setup_logging(level: str = "info", log_file: Path | None = None) -> logging.Logger:
    """Configure the meal_agent logger tree.

    Console output goes through RichHandler on stderr so stdout stays clean
    for JSON/markdown output. The optional file handler always logs at DEBUG.
    """
    from rich.logging import RichHandler

    logger = logging.getLogger("meal_agent")
    logger.setLevel(_parse_level(level))
    logger.handlers.clear()
    logger.propagate = False

    rich_handler = RichHandler(
        console=stderr_console,
        show_path=False,
        markup=False,
        rich_tracebacks=True,
    )
    rich_handler.setLevel(_parse_level(level))
    logger.addHandler(rich_handler)

    if log_file is not None:
        logger.setLevel(logging.DEBUG)
        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
        logger.addHandler(file_handler)

    return logger


class RunLogAdapter(logging.LoggerAdapter):
    """Prefix every record with the run it belongs to."""

    def process(self, msg, kwargs):
        return f"[run {self.extra['run_id']}] {msg}", kwargs


def run_logger(logger: logging.Logger, run_id: str) -> RunLogAdapter:
    return RunLogAdapter(logger, {"run_id": run_id})
