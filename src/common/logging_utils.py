"""Shared logger setup for the CLI entry points."""

import logging
import sys
from pathlib import Path
from typing import Optional

LOG_FORMAT = "[%(asctime)s] %(message)s"
DEBUG_FORMAT = "[%(asctime)s] %(levelname)s %(name)s: %(message)s"
DATE_FORMAT = "%H:%M:%S"


def configure_logging(level: str = "INFO", log_file: Optional[Path] = None) -> logging.Logger:
    """Install console (and optional file) handlers on the ``src`` logger tree.

    Calling it twice replaces the handlers instead of stacking them.
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    fmt = DEBUG_FORMAT if numeric_level <= logging.DEBUG else LOG_FORMAT
    formatter = logging.Formatter(fmt, datefmt=DATE_FORMAT)

    logger = logging.getLogger("src")
    logger.setLevel(numeric_level)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        try:
            log_file.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_file, mode="a")
            file_handler.setLevel(numeric_level)
            file_handler.setFormatter(logging.Formatter(DEBUG_FORMAT))
            logger.addHandler(file_handler)
        except OSError as e:
            logger.warning(f"File logging disabled ({log_file}): {e}")

    return logger
