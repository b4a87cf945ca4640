"""Observability helpers."""

from tasksync.observability.otel import (
    initialize,
    shutdown,
    start_span,
    record_mutation,
    record_rebuild,
)

__all__ = [
    "initialize",
    "shutdown",
    "start_span",
    "record_mutation",
    "record_rebuild",
]
