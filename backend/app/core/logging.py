"""Logging setup: JSON lines in production, plain text elsewhere.

Every record carries the current request id so API logs can be joined
with the X-Request-ID response header.
"""
import logging
import sys

from pythonjsonlogger import jsonlogger

from app.core.config import settings

LOG_FORMAT = "%(asctime)s %(name)s %(levelname)s %(request_id)s %(message)s"

# chatty at INFO, rarely useful
_QUIET_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine", "celery.redirected")


class RequestIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        from app.middleware.request_id import current_request_id

        record.request_id = current_request_id()
        return True


def setup_logging() -> None:
    handler = logging.StreamHandler(sys.stdout)
    handler.addFilter(RequestIdFilter())
    if settings.APP_ENV == "production":
        handler.setFormatter(jsonlogger.JsonFormatter(
            LOG_FORMAT,
            rename_fields={"asctime": "timestamp", "levelname": "level"},
        ))
    else:
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logging.root.handlers = [handler]
    logging.root.setLevel(settings.LOG_LEVEL.upper())
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
