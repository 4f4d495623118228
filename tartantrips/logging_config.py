"""Logging setup - configures the root logger once at startup."""

import logging

from tartantrips.config import settings


LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def setup_logging(level: str = None) -> None:
    """
    Configure console logging for the application and uvicorn.

    Safe to call more than once; handlers are only attached on the first call.
    """
    level_name = (level or settings.log_level or "INFO").upper()
    root = logging.getLogger()

    if not any(getattr(h, "_tartantrips", False) for h in root.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler._tartantrips = True
        root.addHandler(handler)

    root.setLevel(level_name)

    for logger_name in ["uvicorn", "uvicorn.error"]:
        logging.getLogger(logger_name).setLevel(level_name)

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
