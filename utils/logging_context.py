"""Request id logging context.

Every log record carries the id of the request that produced it, so one
booking call can be traced across the route, the service layer and the
notifier worker that delivers its messages.
"""

import logging
import secrets
from contextvars import ContextVar

LOG_FORMAT = "%(asctime)s %(levelname)s [%(request_id)s] %(name)s: %(message)s"

_request_id: ContextVar[str] = ContextVar("request_id", default="-")


def set_request_id(request_id=None) -> str:
    """Set the id for the current context, generating one when none is given."""
    request_id = (request_id or "").strip()[:64] or secrets.token_hex(8)
    _request_id.set(request_id)
    return request_id


def get_request_id() -> str:
    return _request_id.get()


class RequestIdFilter(logging.Filter):
    """Injects request_id into every log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = _request_id.get()
        return True


def configure_logging(level="INFO") -> None:
    root = logging.getLogger()
    root.setLevel(level)
    if any(getattr(h, "_autocare", False) for h in root.handlers):
        return
    handler = logging.StreamHandler()
    handler._autocare = True
    handler.addFilter(RequestIdFilter())
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    root.addHandler(handler)
