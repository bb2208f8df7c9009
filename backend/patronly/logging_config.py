"""Logging setup shared by the API process and the scheduler jobs."""
import logging
import sys
from typing import Optional

from patronly.config import settings

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# Third-party loggers that are too chatty below WARNING
NOISY_LOGGERS = ("sqlalchemy", "httpx", "httpcore", "apscheduler", "stripe")


def setup_logging(level: Optional[str] = None) -> None:
    """
    Configure stdout logging for the service.

    Args:
        level: Logging level name (DEBUG, INFO, WARNING, ...).
               Defaults to LOG_LEVEL from settings.
    """
    log_level = (level or settings.LOG_LEVEL).upper()

    logging.basicConfig(
        level=log_level,
        format=LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=[logging.StreamHandler(sys.stdout)]
    )

    for name in ("uvicorn", "uvicorn.access", "patronly"):
        logging.getLogger(name).setLevel(log_level)
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
