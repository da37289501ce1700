"""Logging setup shared by the API, the worker and scripts."""

import logging

from upd_loader.shared.config import Settings

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(settings: Settings) -> None:
    """Configure root logging from settings.

    Args:
        settings: Application settings with log_level field
    """
    logging.basicConfig(level=settings.log_level, format=LOG_FORMAT)
    # httpx logs every request at INFO; the MoySklad client already does that
    logging.getLogger("httpx").setLevel(logging.WARNING)
