# logging_config.py
"""Diagnostic logging setup.

Operator-facing output goes through the presentation sinks; this only covers
module loggers. LOSSREC_LOG_LEVEL selects the level (default WARNING).

    $ LOSSREC_LOG_LEVEL=DEBUG lossrec run --log-file debug.log
"""
from __future__ import annotations

import logging
import os
import sys
from typing import Optional

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(log_file: Optional[str] = None, quiet: bool = False) -> None:
    """Configure the root logger.

    Args:
        log_file: write to this file instead of stderr
        quiet: discard records when no log file is given (full-screen UI)
    """
    level_name = os.environ.get("LOSSREC_LOG_LEVEL", "WARNING").upper()
    level = logging.getLevelName(level_name)
    if not isinstance(level, int):
        level = logging.WARNING

    if log_file:
        handler: logging.Handler = logging.FileHandler(log_file, encoding="utf-8")
    elif quiet:
        handler = logging.NullHandler()
    else:
        handler = logging.StreamHandler(sys.stderr)

    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[handler],
        force=True,
    )
    logging.getLogger(__name__).debug("Logging configured: level=%s", logging.getLevelName(level))
