# pjn_sync/core/logger.py
"""
Package logger.

Usage:
    from pjn_sync.core.logger import logger
    logger.info("Case history scraped", extra={"fre": fre, "movements": 12})

Fields passed through ``extra`` are appended to the line as key=value pairs.
"""
import logging
import sys

from pjn_sync.core.config import settings

# Attributes present on every LogRecord; anything else came from ``extra``.
_RESERVED = set(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


class ExtraFieldsFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        extras = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RESERVED and not key.startswith("_")
        }
        if not extras:
            return base
        rendered = " ".join(f"{key}={value!r}" for key, value in sorted(extras.items()))
        return f"{base} | {rendered}"


def setup_logging(level: str = settings.LOG_LEVEL) -> logging.Logger:
    root = logging.getLogger()
    if not any(getattr(h, "_pjn_sync", False) for h in root.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(
            ExtraFieldsFormatter("%(asctime)s %(levelname)s [%(name)s] %(message)s")
        )
        handler._pjn_sync = True
        root.addHandler(handler)
    root.setLevel(level.upper())
    return logging.getLogger("pjn_sync")


logger = setup_logging()
