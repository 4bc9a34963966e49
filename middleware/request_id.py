"""
Request ID middleware.

Every request gets an id (the client's X-Request-ID header if it sent one) that is
stored on request.state, attached to each log record emitted while the request is
handled, and echoed back in the response headers. Payment providers send their own
id on webhook calls, which makes a delivery traceable end to end.
"""

import uuid
import logging
from contextvars import ContextVar
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

REQUEST_ID_HEADER = "X-Request-ID"

_current_request_id: ContextVar[str] = ContextVar("request_id", default="-")
_factory_installed = False


def _install_record_factory():
    """Stamp every log record with the id of the request being handled."""
    global _factory_installed
    if _factory_installed:
        return

    old_factory = logging.getLogRecordFactory()

    def record_factory(*args, **kwargs):
        record = old_factory(*args, **kwargs)
        record.request_id = _current_request_id.get()
        return record

    logging.setLogRecordFactory(record_factory)
    _factory_installed = True


class RequestIDMiddleware(BaseHTTPMiddleware):

    def __init__(self, app):
        super().__init__(app)
        _install_record_factory()

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        request.state.request_id = request_id

        token = _current_request_id.set(request_id)
        try:
            response: Response = await call_next(request)
            response.headers[REQUEST_ID_HEADER] = request_id
            return response
        finally:
            _current_request_id.reset(token)


def get_request_id(request: Request) -> str:
    return getattr(request.state, "request_id", "no-request-id")
