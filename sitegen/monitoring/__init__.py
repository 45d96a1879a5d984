"""Monitoring and metrics."""

from .metrics import (
    record_attempt,
    record_regeneration,
    record_step_duration,
    record_workflow,
    start_metrics_server,
)

__all__ = [
    "record_attempt",
    "record_regeneration",
    "record_step_duration",
    "record_workflow",
    "start_metrics_server",
]
