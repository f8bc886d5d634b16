"""
Logging setup shared by the CLI and the web app.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Optional


LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: Optional[str] = None) -> None:
    """
    Configure the root logger with a single stream handler.

    Args:
        level: Log level name; defaults to the LOG_LEVEL environment variable
            or INFO.
    """
    level = (level or os.getenv("LOG_LEVEL") or "INFO").upper()

    root = logging.getLogger()
    root.setLevel(level)

    # Clear existing handlers (uvicorn reload re-runs this)
    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)

    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel((os.getenv("SQL_LOG_LEVEL") or "WARNING").upper())
