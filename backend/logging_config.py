"""
Logging setup shared by the CLI and any other entry point.

Console output goes through rich so log lines interleave cleanly with the
progress bar and tables.
"""

import logging
from typing import Optional

from rich.logging import RichHandler

from config import LOG_LEVEL

# Chatty third-party loggers kept at WARNING unless debugging
_NOISY_LOGGERS = ("httpx", "httpcore", "openai")


def setup_logging(level: Optional[str] = None) -> None:
    """Configure the root logger once. Safe to call repeatedly."""
    level_name = (level or LOG_LEVEL or "INFO").upper()
    numeric = getattr(logging, level_name, logging.INFO)

    root = logging.getLogger()
    root.setLevel(numeric)
    if not any(isinstance(h, RichHandler) for h in root.handlers):
        handler = RichHandler(rich_tracebacks=True, show_path=False, markup=False)
        handler.setFormatter(logging.Formatter("%(name)s: %(message)s", datefmt="[%X]"))
        root.addHandler(handler)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.DEBUG if numeric <= logging.DEBUG else logging.WARNING)
