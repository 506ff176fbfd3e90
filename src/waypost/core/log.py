"""Logging setup shared by the web app and the worker script."""

import logging

from waypost.core.settings import settings

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging() -> None:
    """Apply ``LOG_LEVEL`` to the root logger."""
    logging.basicConfig(level=settings.log_level.upper(), format=LOG_FORMAT)
