from typing import Dict, Optional

import structlog
from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from gitbridge.core.exceptions import BaseAPIException, InternalServerError
from gitbridge.infrastructure.git_protocol import GitHeaders
from gitbridge.infrastructure.middleware.correlation import get_correlation_id

logger = structlog.get_logger(__name__)


def _error_headers(correlation_id: Optional[str]) -> Dict[str, str]:
    # git clients must never cache an error either
    headers = GitHeaders.no_cache()
    if correlation_id:
        headers["X-Correlation-ID"] = correlation_id
    return headers


async def base_api_exception_handler(
    request: Request, exc: BaseAPIException
) -> JSONResponse:
    correlation_id = get_correlation_id()

    logger.error(
        "api_exception",
        code=exc.code,
        message=exc.message,
        status_code=exc.status_code,
        details=exc.details,
        correlation_id=correlation_id,
        path=request.url.path,
    )

    error_response = exc.to_error_response(correlation_id=correlation_id)

    return JSONResponse(
        status_code=exc.status_code,
        content=error_response.model_dump(exclude_none=True),
        headers=_error_headers(correlation_id),
    )


async def http_exception_handler(
    request: Request, exc: StarletteHTTPException
) -> JSONResponse:
    correlation_id = get_correlation_id()

    logger.error(
        "http_exception",
        status_code=exc.status_code,
        detail=exc.detail,
        correlation_id=correlation_id,
        path=request.url.path,
    )

    return JSONResponse(
        status_code=exc.status_code,
        content={
            "code": f"GITB-{exc.status_code}",
            "message": str(exc.detail),
            "correlation_id": correlation_id,
        },
        headers=_error_headers(correlation_id),
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    correlation_id = get_correlation_id()

    logger.error(
        "unhandled_exception",
        error=str(exc),
        error_type=type(exc).__name__,
        correlation_id=correlation_id,
        path=request.url.path,
        exc_info=True,
    )

    internal_error = InternalServerError(
        message="An unexpected error occurred",
        details=(
            {"error_type": type(exc).__name__}
            if not getattr(request.app.state, "is_production", True)
            else None
        ),
    )

    error_response = internal_error.to_error_response(correlation_id=correlation_id)

    return JSONResponse(
        status_code=internal_error.status_code,
        content=error_response.model_dump(exclude_none=True),
        headers=_error_headers(correlation_id),
    )
