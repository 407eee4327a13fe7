"""Health check and metrics endpoints"""

import os
import shutil
import subprocess
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict

from fastapi import APIRouter, HTTPException, Request, Response, status

from gitbridge.core.config import settings
from gitbridge.infrastructure.git_metrics import get_metrics, get_metrics_content_type
from gitbridge.infrastructure.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["health"])


class HealthChecker:
    """Service health checking utilities"""

    def __init__(self):
        self.start_time = time.time()

    def check_storage_root(self, storage_root: Path) -> tuple[bool, str]:
        """Check that the repository storage root is writable"""
        if not storage_root.exists():
            return False, "Repository storage root does not exist"

        test_file = storage_root / f".health_check_{os.getpid()}"
        try:
            test_file.touch()
            test_file.unlink()
        except OSError as e:
            return False, f"Cannot write to storage root: {e}"

        return True, "Storage root is writable"

    def check_git_binary(self, git_binary: str) -> tuple[bool, str]:
        """Check if git binary is available"""
        if shutil.which(git_binary) is None:
            return False, "Git binary not found"

        try:
            result = subprocess.run(
                [git_binary, "--version"],
                capture_output=True,
                text=True,
                timeout=5
            )
        except subprocess.TimeoutExpired:
            return False, "Git binary check timed out"
        except OSError as e:
            return False, f"Git binary check failed: {e}"

        if result.returncode != 0:
            return False, "Git binary returned non-zero exit code"
        return True, result.stdout.strip()

    def get_uptime(self) -> float:
        return time.time() - self.start_time


health_checker = HealthChecker()


@router.get("/health")
async def health_check(request: Request) -> Dict[str, Any]:
    """
    Storage root and git binary check

    Returns 503 if either is unusable.
    """
    bridge = getattr(request.app.state, "git_bridge", None)
    storage_root = bridge.config.storage_root if bridge else settings.storage_root

    fs_healthy, fs_message = health_checker.check_storage_root(Path(storage_root))
    git_healthy, git_message = health_checker.check_git_binary(settings.git_binary_path)

    healthy = fs_healthy and git_healthy
    response = {
        "status": "healthy" if healthy else "unhealthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "service": settings.app_name,
        "version": settings.app_version,
        "environment": settings.environment,
        "uptime_seconds": round(health_checker.get_uptime(), 3),
        "checks": {
            "storage_root": {"healthy": fs_healthy, "message": fs_message},
            "git_binary": {"healthy": git_healthy, "message": git_message},
        },
    }

    if not healthy:
        logger.warning("health_check_failed", **response)
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=response
        )

    logger.debug("health_check", status=response["status"])
    return response


@router.get("/metrics")
async def metrics() -> Response:
    """Prometheus exposition"""
    if not settings.metrics_enabled:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Metrics are disabled")

    return Response(content=get_metrics(), media_type=get_metrics_content_type())
