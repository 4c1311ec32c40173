"""deepcheck.logging_setup – console logging for the service."""
from __future__ import annotations

import logging

LOG_FORMAT = "[%(name)s] %(levelname)s %(message)s"

_handler: logging.Handler | None = None


def configure_logging(level: str = "INFO") -> None:
    """Attach a single console handler to the ``deepcheck`` logger tree."""
    global _handler
    logger = logging.getLogger("deepcheck")
    logger.setLevel(level.upper())
    if _handler is None:
        _handler = logging.StreamHandler()
        _handler.setFormatter(logging.Formatter(LOG_FORMAT))
    if _handler not in logger.handlers:
        logger.addHandler(_handler)
