from gitbridge.infrastructure.middleware.correlation import (
    CorrelationIDMiddleware,
    get_correlation_id,
)
from gitbridge.infrastructure.middleware.logging import LoggingMiddleware

__all__ = ["CorrelationIDMiddleware", "LoggingMiddleware", "get_correlation_id"]
