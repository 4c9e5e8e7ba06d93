"""Public logging API for Relata components.

Wraps Python's ``logging`` module with stdout defaults, structured context
propagation, and an instrumentation decorator for service operations.
"""

from .config import (
    ContextFilter,
    JsonFormatter,
    PlainFormatter,
    configure_logging,
    configure_logging_from_settings,
    get_logger,
)
from .context import bind_context, clear_context, get_context, log_context
from .instrumentation import (
    CompletionContext,
    InstrumentationConcern,
    InvocationContext,
    OperationLoggingConcern,
    OperationTracingConcern,
    operation_instrumented,
)

__all__ = [
    "CompletionContext",
    "ContextFilter",
    "InstrumentationConcern",
    "InvocationContext",
    "JsonFormatter",
    "OperationLoggingConcern",
    "OperationTracingConcern",
    "PlainFormatter",
    "bind_context",
    "clear_context",
    "configure_logging",
    "configure_logging_from_settings",
    "get_context",
    "get_logger",
    "log_context",
    "operation_instrumented",
]
