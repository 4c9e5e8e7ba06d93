"""Tests for ordered, named hook registration and dispatch."""

from __future__ import annotations

import pytest

from services.state.resource_engine.context import Method, OperationContext
from services.state.resource_engine.hooks import (
    BEFORE_DATA_CALL,
    HookOptions,
    HookPipeline,
    verb_stage,
)
from services.state.resource_engine.registry import SchemaRegistry


def _context(registry: SchemaRegistry) -> OperationContext:
    return OperationContext(method=Method.PUT, resource=registry.resource("books"))


def _recorder(calls: list[str], name: str, result: bool | None = None):
    def callback(context: OperationContext) -> bool | None:
        del context
        calls.append(name)
        return result

    return callback


def test_verb_stage_names() -> None:
    """Verb variants append the capitalized method name."""
    assert verb_stage(BEFORE_DATA_CALL, Method.PUT) == "beforeDataCallPut"
    assert verb_stage("finish", Method.POST_RELATIONSHIP) == "finishPostRelationship"


def test_handlers_run_in_registration_order_with_placement(registry: SchemaRegistry) -> None:
    """``before``/``after`` place a hook next to a named one."""
    calls: list[str] = []
    pipeline = HookPipeline()
    pipeline.register("finish", "audit", _recorder(calls, "audit"))
    pipeline.register("finish", "notify", _recorder(calls, "notify"))
    pipeline.register("finish", "first", _recorder(calls, "first"), options=HookOptions(before="audit"))
    pipeline.register("finish", "middle", _recorder(calls, "middle"), options=HookOptions(after="audit"))

    assert pipeline.run("finish", _context(registry)) is True
    assert calls == ["first", "audit", "middle", "notify"]


def test_false_stops_remaining_handlers(registry: SchemaRegistry) -> None:
    """A handler returning False short-circuits its stage."""
    calls: list[str] = []
    pipeline = HookPipeline()
    pipeline.register("finish", "gate", _recorder(calls, "gate", result=False))
    pipeline.register("finish", "after_gate", _recorder(calls, "after_gate"))

    assert pipeline.run("finish", _context(registry)) is False
    assert calls == ["gate"]


def test_registration_errors() -> None:
    """Duplicate names, unknown anchors, and sealed pipelines are refused."""
    pipeline = HookPipeline()
    pipeline.register("finish", "audit", lambda context: None)

    with pytest.raises(ValueError):
        pipeline.register("finish", "audit", lambda context: None)
    with pytest.raises(ValueError):
        pipeline.register("finish", "x", lambda context: None, options=HookOptions(before="missing"))
    with pytest.raises(ValueError):
        pipeline.register(
            "finish", "y", lambda context: None, options=HookOptions(before="audit", after="audit")
        )

    pipeline.seal()
    assert pipeline.sealed is True
    with pytest.raises(RuntimeError):
        pipeline.register("finish", "late", lambda context: None)
    assert [handler.name for handler in pipeline.handlers("finish")] == ["audit"]
