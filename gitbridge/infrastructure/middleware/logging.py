import time
from typing import Callable, Dict, Optional

from fastapi import Request, Response
from starlette.datastructures import Headers
from starlette.middleware.base import BaseHTTPMiddleware

from gitbridge.core.git.request_classifier import SERVICE_PATTERN, request_uri
from gitbridge.infrastructure.logging import bind_context, clear_context, get_logger
from gitbridge.infrastructure.middleware.correlation import get_correlation_id

logger = get_logger(__name__)

SENSITIVE_HEADERS = {"authorization", "cookie", "set-cookie", "proxy-authorization"}


class LoggingMiddleware(BaseHTTPMiddleware):
    """Request/response logging for git traffic"""

    def __init__(self, app):
        super().__init__(app)
        self.exclude_paths = {
            "/health",  # Don't log health checks
            "/metrics",  # Don't log metrics scrapes
        }

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.time()

        if request.url.path in self.exclude_paths:
            return await call_next(request)

        bind_context(
            correlation_id=get_correlation_id(),
            request_method=request.method,
            request_path=request.url.path,
            client_ip=self._get_client_ip(request),
            user_agent=request.headers.get("user-agent", "unknown"),
        )

        service = self._extract_service(request)
        if service:
            bind_context(git_service=service)

        logger.info(
            "http_request_started",
            method=request.method,
            path=request.url.path,
            query_params=dict(request.query_params) if request.query_params else None,
            headers=self._sanitize_headers(request.headers),
            request_size=request.headers.get("content-length", 0),
        )

        try:
            response = await call_next(request)

            # For streamed git responses this is the time to first byte
            duration = time.time() - start_time
            logger.info(
                "http_request_completed",
                status_code=response.status_code,
                duration_ms=round(duration * 1000, 2),
                response_size=response.headers.get("content-length", 0),
            )

            response.headers["X-Response-Time"] = f"{round(duration * 1000, 2)}ms"
            return response

        except Exception as e:
            logger.error(
                "http_request_failed",
                duration_ms=round((time.time() - start_time) * 1000, 2),
                error_type=type(e).__name__,
                error_message=str(e),
                exc_info=True,
            )
            raise

        finally:
            clear_context()

    def _get_client_ip(self, request: Request) -> str:
        """Extract real client IP from request"""
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            return forwarded_for.split(",")[0].strip()

        real_ip = request.headers.get("X-Real-IP")
        if real_ip:
            return real_ip

        if request.client:
            return request.client.host

        return "unknown"

    def _extract_service(self, request: Request) -> Optional[str]:
        match = SERVICE_PATTERN.search(request_uri(request.url.path, request.url.query))
        return match.group(1) if match else None

    def _sanitize_headers(self, headers: Headers) -> Dict[str, str]:
        return {
            key: "***REDACTED***" if key.lower() in SENSITIVE_HEADERS else value
            for key, value in headers.items()
        }
