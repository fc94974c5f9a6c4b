"""
Observability module - Logging, Metrics, and Tracing.
"""

from quota_bridge.observability.logging import get_logger, setup_logging
from quota_bridge.observability.metrics import metrics
from quota_bridge.observability.tracing import setup_tracing

__all__ = [
    "get_logger",
    "setup_logging",
    "metrics",
    "setup_tracing",
]
