from __future__ import annotations
import logging
from rich.console import Console
from rich.logging import RichHandler

LOGGER_NAME = "ledgerscan"

def configure_logging(level: str | int = "INFO", console: Console | None = None) -> logging.Logger:
    """Attach a single RichHandler to the package logger (idempotent)."""
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level.upper() if isinstance(level, str) else level)
    for h in list(logger.handlers):
        if getattr(h, "_ledgerscan", False):
            logger.removeHandler(h)
    handler = RichHandler(console=console or Console(stderr=True), show_path=False, rich_tracebacks=True)
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
    handler._ledgerscan = True  # type: ignore[attr-defined]
    logger.addHandler(handler)
    logger.propagate = False
    return logger
