"""Prometheus metrics for git smart HTTP traffic"""

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Histogram,
    generate_latest,
)

metrics_registry = REGISTRY

git_requests_total = Counter(
    "gitbridge_git_requests_total",
    "Git smart HTTP requests by service and phase",
    ["service", "phase", "status"],
    registry=metrics_registry
)

hook_decisions_total = Counter(
    "gitbridge_hook_decisions_total",
    "Hook outcomes by hook event",
    ["event", "outcome"],
    registry=metrics_registry
)

repositories_created_total = Counter(
    "gitbridge_repositories_created_total",
    "Bare repositories initialized on push",
    registry=metrics_registry
)

git_command_duration_seconds = Histogram(
    "gitbridge_git_command_duration_seconds",
    "Wall time of git service processes",
    ["service", "status"],
    buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 300.0),
    registry=metrics_registry
)


def get_metrics() -> bytes:
    """Generate metrics in Prometheus format"""
    return generate_latest(metrics_registry)


def get_metrics_content_type() -> str:
    return CONTENT_TYPE_LATEST
