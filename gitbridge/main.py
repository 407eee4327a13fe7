from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from starlette.exceptions import HTTPException as StarletteHTTPException

from gitbridge.api import git_http, health
from gitbridge.api.exception_handlers import (
    base_api_exception_handler,
    general_exception_handler,
    http_exception_handler,
)
from gitbridge.api.git_http import GitHTTPBridge
from gitbridge.core.config import settings
from gitbridge.core.exceptions import BaseAPIException
from gitbridge.core.server_config import ServerConfig
from gitbridge.infrastructure.logging import get_logger, setup_logging
from gitbridge.infrastructure.middleware.correlation import CorrelationIDMiddleware
from gitbridge.infrastructure.middleware.logging import LoggingMiddleware

logger = get_logger(__name__)


def create_app(server_config: Optional[ServerConfig] = None) -> FastAPI:
    """Build the ASGI app; hooks come from settings unless a config is given"""
    config = server_config or ServerConfig.from_settings(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(debug=config.debug)
        logger.info(
            "application_startup",
            app_name=settings.app_name,
            environment=settings.environment,
            storage_root=str(config.storage_root),
            debug=config.debug,
            pre_receive=config.pre_receive.name,
            pre_create=config.pre_create.name,
            post_receive=config.post_receive.name if config.post_receive else None,
        )

        yield

        logger.info("application_shutdown", app_name=settings.app_name)

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Git smart HTTP server with push hooks",
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
        lifespan=lifespan,
    )

    app.state.git_bridge = GitHTTPBridge(config, settings)
    app.state.is_production = settings.is_production

    app.add_middleware(LoggingMiddleware)
    app.add_middleware(CorrelationIDMiddleware)

    app.add_exception_handler(BaseAPIException, base_api_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)

    # Fixed routes first; the git route matches every path
    app.include_router(health.router)
    app.include_router(git_http.router)

    return app


app = create_app()
