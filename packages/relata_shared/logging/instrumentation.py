"""Instrumentation decorator for public service operations.

Each decorated method reports one invocation event and one completion event
to a set of concerns. Logging and OpenTelemetry tracing concerns ship here;
callers may add their own concerns with the same two-method contract.
"""

from __future__ import annotations

from contextvars import ContextVar
from dataclasses import dataclass
from functools import wraps
from time import perf_counter
from typing import Any, Callable, Mapping, Protocol, Sequence

from opentelemetry import trace
from opentelemetry.trace import Span, Status, StatusCode, Tracer

from . import fields
from .context import log_context

DEFAULT_TRACER_NAME = "relata.operations"


@dataclass(frozen=True)
class InvocationContext:
    """Structured metadata describing one operation invocation."""

    component_id: str
    api_name: str
    request_id: str | None
    trace_id: str | None
    principal: str | None
    references: Mapping[str, str]


@dataclass(frozen=True)
class CompletionContext:
    """Structured metadata describing one completed operation invocation."""

    invocation: InvocationContext
    success: bool
    duration_ms: float
    errors: list[str]
    error_categories: list[str]


class InstrumentationConcern(Protocol):
    """Hook contract for one instrumentation concern."""

    def on_invocation(self, context: InvocationContext) -> None:
        """Handle the start of one call."""

    def on_completion(self, context: CompletionContext) -> None:
        """Handle the end of one call."""


class OperationLoggingConcern:
    """Emit one structured log line at invocation and one at completion."""

    def __init__(self, *, logger: Any) -> None:
        self._logger = logger

    def on_invocation(self, context: InvocationContext) -> None:
        with log_context(_invocation_log_context(context)):
            self._logger.info("Operation invocation")

    def on_completion(self, context: CompletionContext) -> None:
        payload = _invocation_log_context(context.invocation)
        payload.update(
            {
                fields.EVENT: fields.OPERATION_COMPLETION_EVENT,
                fields.SUCCESS: context.success,
                fields.DURATION_MS: context.duration_ms,
                fields.ERRORS: context.errors,
            }
        )
        with log_context(payload):
            if context.success:
                self._logger.info("Operation completion")
            else:
                self._logger.warning("Operation completion")


@dataclass(frozen=True)
class _TraceScope:
    manager: Any
    span: Span


class OperationTracingConcern:
    """Open one OpenTelemetry span per invocation and close it on completion."""

    def __init__(self, *, tracer: Tracer) -> None:
        self._tracer = tracer
        self._active_scopes: ContextVar[tuple[_TraceScope, ...]] = ContextVar(
            "relata_operation_trace_scopes", default=()
        )

    def on_invocation(self, context: InvocationContext) -> None:
        manager = self._tracer.start_as_current_span(
            f"{context.component_id}.{context.api_name}"
        )
        span = manager.__enter__()
        span.set_attribute(fields.COMPONENT_ID, context.component_id)
        span.set_attribute(fields.API_NAME, context.api_name)
        if context.request_id is not None:
            span.set_attribute(fields.REQUEST_ID, context.request_id)
        if context.trace_id is not None:
            span.set_attribute(fields.TRACE_ID, context.trace_id)
        if context.principal is not None:
            span.set_attribute(fields.PRINCIPAL, context.principal)
        for key, value in context.references.items():
            span.set_attribute(f"reference.{key}", value)
        self._active_scopes.set(
            (*self._active_scopes.get(), _TraceScope(manager=manager, span=span))
        )

    def on_completion(self, context: CompletionContext) -> None:
        current = self._active_scopes.get()
        if not current:
            return
        scope = current[-1]
        self._active_scopes.set(current[:-1])

        scope.span.set_attribute(fields.SUCCESS, context.success)
        scope.span.set_attribute(fields.DURATION_MS, context.duration_ms)
        scope.span.set_attribute("errors.count", len(context.errors))
        if context.error_categories:
            scope.span.set_attribute("errors.categories", context.error_categories)
        if not context.success:
            scope.span.set_status(Status(StatusCode.ERROR))
        scope.manager.__exit__(None, None, None)


def operation_instrumented(
    *,
    component_id: str,
    api_name: str | None = None,
    id_fields: tuple[str, ...] = (),
    concerns: Sequence[InstrumentationConcern] | None = None,
    logger: Any | None = None,
    tracer_name: str = DEFAULT_TRACER_NAME,
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Decorate one public service method with instrumentation concerns.

    The wrapped method must take ``meta`` as a keyword argument. Values of the
    keyword arguments named in ``id_fields`` are attached as references to
    every event. A failing concern is logged and never affects the call.
    """
    resolved: tuple[InstrumentationConcern, ...] = (
        *(concerns or ()),
        OperationTracingConcern(tracer=trace.get_tracer(tracer_name)),
    )
    if logger is not None:
        resolved = (OperationLoggingConcern(logger=logger), *resolved)

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        method_name = api_name or func.__name__

        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            meta = kwargs.get("meta")
            invocation = InvocationContext(
                component_id=component_id,
                api_name=method_name,
                request_id=_attr_or_none(meta, "request_id"),
                trace_id=_attr_or_none(meta, "trace_id"),
                principal=_attr_or_none(meta, "principal"),
                references={
                    name: str(kwargs[name])
                    for name in id_fields
                    if kwargs.get(name) not in (None, "")
                },
            )
            _dispatch(resolved, "on_invocation", invocation, invocation, logger)

            started = perf_counter()
            try:
                result = func(*args, **kwargs)
            except Exception as exc:
                completion = CompletionContext(
                    invocation=invocation,
                    success=False,
                    duration_ms=_elapsed_ms(started),
                    errors=[f"{type(exc).__name__}: {exc}"],
                    error_categories=["internal"],
                )
                _dispatch(resolved, "on_completion", completion, invocation, logger)
                raise

            success, errors, categories = _result_summary(result)
            completion = CompletionContext(
                invocation=invocation,
                success=success,
                duration_ms=_elapsed_ms(started),
                errors=errors,
                error_categories=categories,
            )
            _dispatch(resolved, "on_completion", completion, invocation, logger)
            return result

        return wrapper

    return decorator


def _elapsed_ms(started: float) -> float:
    return round((perf_counter() - started) * 1000.0, 3)


def _attr_or_none(obj: object | None, name: str) -> str | None:
    if obj is None:
        return None
    value = getattr(obj, name, None)
    if value in (None, ""):
        return None
    return str(value)


def _result_summary(result: object) -> tuple[bool, list[str], list[str]]:
    """Infer success, error summaries, and error categories from a result."""
    errors = getattr(result, "errors", None)
    if not isinstance(errors, list):
        return True, [], []
    summaries: list[str] = []
    categories: list[str] = []
    for item in errors:
        code = getattr(item, "code", None)
        message = getattr(item, "message", None)
        category = getattr(item, "category", None)
        if message:
            summaries.append(f"{code}: {message}" if code else str(message))
        if category is not None:
            categories.append(str(getattr(category, "value", category)))
    ok = getattr(result, "ok", None)
    if isinstance(ok, bool):
        return ok, summaries, categories
    return not errors, summaries, categories


def _invocation_log_context(context: InvocationContext) -> dict[str, object]:
    return {
        fields.EVENT: fields.OPERATION_INVOCATION_EVENT,
        fields.COMPONENT_ID: context.component_id,
        fields.API_NAME: context.api_name,
        fields.REQUEST_ID: context.request_id,
        fields.TRACE_ID: context.trace_id,
        fields.PRINCIPAL: context.principal,
        **context.references,
    }


def _dispatch(
    concerns: Sequence[InstrumentationConcern],
    hook: str,
    payload: InvocationContext | CompletionContext,
    invocation: InvocationContext,
    logger: Any | None,
) -> None:
    for concern in concerns:
        try:
            getattr(concern, hook)(payload)
        except Exception as exc:  # noqa: BLE001
            if logger is None:
                continue
            with log_context(
                {
                    fields.COMPONENT_ID: invocation.component_id,
                    fields.API_NAME: invocation.api_name,
                    fields.STAGE: hook,
                    fields.ERRORS: [f"{type(exc).__name__}: {exc}"],
                }
            ):
                logger.warning("Instrumentation concern %s failed", type(concern).__name__)
