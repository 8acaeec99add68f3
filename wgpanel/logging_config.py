"""
Logging setup for the service process
"""

import logging
import os

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def configure_logging(level: str = None) -> None:
    """
    Configure the root logger

    Args:
        level: Log level name; defaults to LOG_LEVEL env var or INFO
    """
    level_name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    logging.basicConfig(level=getattr(logging, level_name, logging.INFO), format=LOG_FORMAT)

    # uvicorn's per-request access log is too chatty for a long-lived panel
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
