"""Logging configuration for the oracle CLI."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(level: str = "INFO", log_file: Path | None = None) -> None:
    """Configure root logging to stdout, or to `log_file` when given."""

    numeric_level = getattr(logging, level.upper(), logging.INFO)
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        logging.basicConfig(level=numeric_level, format=LOG_FORMAT, filename=log_file, force=True)
    else:
        logging.basicConfig(level=numeric_level, format=LOG_FORMAT, stream=sys.stdout, force=True)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
