import logging
import sys
from contextvars import ContextVar
from typing import Optional

from pythonjsonlogger import jsonlogger

# per-request context stamped onto every log record
TRACE_ID_CTX: ContextVar[Optional[str]] = ContextVar("trace_id", default=None)
USER_ID_CTX: ContextVar[Optional[str]] = ContextVar("user_id", default=None)

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s %(trace_id)s %(user_id)s %(service)s"

# chatty client libraries kept at WARNING unless the app itself runs at DEBUG
QUIET_LOGGERS = ("redis", "httpx", "uvicorn.access")


class RequestContextFilter(logging.Filter):
    def __init__(self, service: str):
        super().__init__()
        self.service = service

    def filter(self, record):
        record.trace_id = TRACE_ID_CTX.get()
        record.user_id = USER_ID_CTX.get()
        record.service = self.service
        return True


def setup_logging(level=logging.INFO, service: str = "rideshare-history"):
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
    root = logging.getLogger()
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(jsonlogger.JsonFormatter(LOG_FORMAT))
    handler.addFilter(RequestContextFilter(service))
    root.setLevel(level)
    root.handlers = []
    root.addHandler(handler)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(level if level == logging.DEBUG else logging.WARNING)
