from __future__ import annotations

import logging
from typing import Any

SUSPICIOUS_ACTIVITY = "suspicious_activity"
AUTH_SUCCESS = "auth_success"
AUTH_FAILURE = "auth_failure"


def setup_logger(name: str = "breach_detection", level: int = logging.INFO) -> logging.Logger:
    logger = logging.getLogger(name)
    logger.setLevel(level)

    if not logger.handlers:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    return logger


def log_security_event(logger: logging.Logger, event: str, message: str, **fields: Any) -> None:
    """Emit a structured security event for SIEM collection.

    The event name and fields travel in ``extra`` so JSON formatters can pick
    them up; the rendered message stays human readable.
    """
    level = logging.WARNING if event == SUSPICIOUS_ACTIVITY else logging.INFO
    logger.log(level, message, extra={"security_event": event, "fields": fields})
