"""Logging and metrics for chatrelay.

Library code only asks for loggers and increments counters. Process-wide setup
belongs to the entry point: the CLI group calls ``init_observability`` before
any command runs, and ``watch`` additionally exposes the Prometheus counters
through ``start_metrics_server``.
"""

from __future__ import annotations

from chatrelay.observability.logging import configure_logging, conversation_context, get_logger

__all__ = [
    "configure_logging",
    "conversation_context",
    "get_logger",
    "init_observability",
    "start_metrics_server",
]

_OBSERVABILITY_INITIALIZED = False
_METRICS_PORT: int | None = None


def init_observability() -> None:
    """Configure logging from settings; later calls are no-ops."""
    global _OBSERVABILITY_INITIALIZED
    if _OBSERVABILITY_INITIALIZED:
        return
    from chatrelay.config import settings

    configure_logging(settings.log_level)
    _OBSERVABILITY_INITIALIZED = True


def start_metrics_server(port: int) -> bool:
    """Serve ``/metrics`` on ``port``; False when a server is already running."""
    global _METRICS_PORT
    if _METRICS_PORT is not None:
        return False
    from prometheus_client import start_http_server

    start_http_server(port)
    _METRICS_PORT = port
    get_logger(__name__).info("metrics_server_started", port=port)
    return True
