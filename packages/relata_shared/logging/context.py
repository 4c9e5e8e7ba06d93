"""Context propagation helpers for structured logging.

Fields bound here (request id, resource type, operation, hook stage) are
attached to every log line emitted while they are active. The store is a
``ContextVar`` so nested operations and threads keep separate views.
"""

from __future__ import annotations

from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Mapping

_LOG_CONTEXT: ContextVar[dict[str, str]] = ContextVar("relata_log_context", default={})


def get_context() -> dict[str, str]:
    """Return a shallow copy of the current logging context."""
    return dict(_LOG_CONTEXT.get())


def bind_context(**values: object) -> None:
    """Bind values into the current context, stringified; ``None`` is skipped."""
    bound = {str(key): str(value) for key, value in values.items() if value is not None}
    if not bound:
        return
    _LOG_CONTEXT.set({**_LOG_CONTEXT.get(), **bound})


def clear_context(*keys: str) -> None:
    """Clear selected keys or the entire logging context."""
    if not keys:
        _LOG_CONTEXT.set({})
        return
    current = _LOG_CONTEXT.get()
    _LOG_CONTEXT.set({key: value for key, value in current.items() if key not in keys})


@contextmanager
def log_context(values: Mapping[str, object]) -> Iterator[None]:
    """Temporarily bind logging context for the duration of a block."""
    token = _LOG_CONTEXT.set(dict(_LOG_CONTEXT.get()))
    try:
        bind_context(**dict(values))
        yield
    finally:
        _LOG_CONTEXT.reset(token)
