"""Observability: structured logging and metrics hooks for siteassets."""

from __future__ import annotations

from .logger import StructuredFormatter, get_logger, log_security_event
from .metrics import MetricsHook, NoopMetricsHook, resolve_metrics

__all__ = [
    "MetricsHook",
    "NoopMetricsHook",
    "StructuredFormatter",
    "get_logger",
    "log_security_event",
    "resolve_metrics",
]
