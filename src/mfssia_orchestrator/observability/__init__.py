"""Public observability primitives: structured logging and the lifecycle event log."""

from mfssia_orchestrator.observability.events import (
    DispatchError,
    EventLog,
    EventStatus,
    FlowEvent,
    FlowEventType,
)
from mfssia_orchestrator.observability.logging import (
    LoggingConfig,
    StructuredLoggingHandle,
    correlation_scope,
    default_log_redactor,
    flush_logging,
    get_active_logging_handle,
    get_correlation_context,
    setup_logging,
    setup_structured_logging,
    shutdown_logging,
)

__all__ = [
    "DispatchError",
    "EventLog",
    "EventStatus",
    "FlowEvent",
    "FlowEventType",
    "LoggingConfig",
    "StructuredLoggingHandle",
    "correlation_scope",
    "default_log_redactor",
    "flush_logging",
    "get_active_logging_handle",
    "get_correlation_context",
    "setup_logging",
    "setup_structured_logging",
    "shutdown_logging",
]
