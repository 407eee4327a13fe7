#!/usr/bin/env python3
import uvicorn

from gitbridge.core.config import settings

if __name__ == "__main__":
    uvicorn.run(
        "gitbridge.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.is_development,
        log_level=settings.effective_log_level.lower()
    )
