from __future__ import annotations

import logging

from modsentry.core.config import get_settings


_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def configure_logging() -> None:
    # Idempotent so app factories and scripts can both call it.
    settings = get_settings()
    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO
    root = logging.getLogger()
    if not root.handlers:
        logging.basicConfig(level=level, format=_LOG_FORMAT)
    else:
        root.setLevel(level)
    # httpx logs every request line at INFO, including provider URLs.
    logging.getLogger("httpx").setLevel(logging.WARNING)
