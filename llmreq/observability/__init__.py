"""
Observability module - Logging and Metrics.
"""

from llmreq.observability.logging import get_logger, log_context, setup_logging
from llmreq.observability.metrics import metrics

__all__ = [
    "get_logger",
    "log_context",
    "setup_logging",
    "metrics",
]
