"""Logging configuration for applications embedding the bridge."""

import logging
from typing import Optional

from .config import Settings, settings as default_settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(settings: Optional[Settings] = None) -> None:
    """Configure root logging and quiet paramiko's transport chatter."""
    settings = settings or default_settings

    logging.basicConfig(
        level=logging.DEBUG if settings.debug else logging.INFO,
        format=LOG_FORMAT,
    )

    # paramiko logs every packet at DEBUG; only surface it when debugging
    logging.getLogger("paramiko").setLevel(
        logging.DEBUG if settings.debug else logging.WARNING
    )
