import uuid
from contextvars import ContextVar
from typing import Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from gitbridge.infrastructure.logging import bind_context, unbind_context

CORRELATION_HEADER = "X-Correlation-ID"

correlation_id_var: ContextVar[Optional[str]] = ContextVar(
    "correlation_id", default=None
)


class CorrelationIDMiddleware(BaseHTTPMiddleware):
    """Tags every request (and its log lines) with a correlation id"""

    async def dispatch(self, request: Request, call_next):
        correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid.uuid4())

        correlation_id_var.set(correlation_id)
        bind_context(correlation_id=correlation_id)

        try:
            response: Response = await call_next(request)
            response.headers[CORRELATION_HEADER] = correlation_id
            return response
        finally:
            unbind_context("correlation_id")
            correlation_id_var.set(None)


def get_correlation_id() -> Optional[str]:
    return correlation_id_var.get()
