"""Behavior tests for the Result-returning resource service."""

from __future__ import annotations

import logging

import pytest
from sqlalchemy.exc import OperationalError

from packages.relata_shared.config import RelataSettings
from packages.relata_shared.envelope import RequestMeta, new_meta
from packages.relata_shared.errors import ErrorCategory, codes
from packages.relata_shared.logging import PlainFormatter, clear_context
from services.state.resource_engine.domain import ResourceObject
from services.state.resource_engine.engine import ResourceEngine
from services.state.resource_engine.implementation import DefaultResourceService
from services.state.resource_engine.registry import SchemaRegistry
from services.state.resource_engine.service import build_resource_service


def _meta() -> RequestMeta:
    return new_meta(source="test", principal="tester")


class _FailingEngine:
    """Engine stand-in whose reads raise a fixed exception."""

    def __init__(self, exc: Exception) -> None:
        self._exc = exc

    def get(self, *args: object, **kwargs: object) -> None:
        raise self._exc


def test_successful_calls_carry_payload_and_metadata(engine: ResourceEngine) -> None:
    """A successful write returns the document in an ok result."""
    service = DefaultResourceService(engine=engine)
    meta = _meta()

    result = service.post(
        meta=meta,
        resource_type="authors",
        document={"data": {"type": "authors", "attributes": {"name": "Frank"}}},
    )

    assert result.ok is True
    assert result.metadata is meta
    assert result.payload is not None
    assert isinstance(result.payload.data, ResourceObject)
    assert result.payload.data.id == "1"


def test_engine_errors_become_failed_results(engine: ResourceEngine) -> None:
    """Expected failures are returned with their category, not raised."""
    service = DefaultResourceService(engine=engine)

    missing = service.get(meta=_meta(), resource_type="books", resource_id="9")
    invalid = service.post(
        meta=_meta(),
        resource_type="books",
        document={"data": {"type": "books", "attributes": {"pages": 0}}},
    )
    malformed = service.post(meta=_meta(), resource_type="books", document={"data": None})

    assert missing.ok is False and missing.payload is None
    assert missing.errors[0].code == codes.RESOURCE_NOT_FOUND
    assert invalid.categories == [ErrorCategory.VALIDATION]
    assert {violation.rule for violation in invalid.errors[0].violations} == {
        "required",
        "greater_than_equal",
    }
    assert malformed.errors[0].category == ErrorCategory.PAYLOAD


def test_delete_and_relationship_calls_return_empty_results(engine: ResourceEngine) -> None:
    """Operations without a payload succeed with an empty result."""
    service = DefaultResourceService(engine=engine)
    service.post(
        meta=_meta(),
        resource_type="authors",
        document={"data": {"type": "authors", "attributes": {"name": "Frank"}}},
    )
    service.post(
        meta=_meta(),
        resource_type="books",
        document={"data": {"type": "books", "attributes": {"title": "Dune"}}},
    )

    linked = service.post_relationship(
        meta=_meta(),
        resource_type="books",
        resource_id="1",
        relationship="authors",
        data=[{"type": "authors", "id": "1"}],
    )
    linkage = service.get_relationship(
        meta=_meta(), resource_type="books", resource_id="1", relationship="authors"
    )
    deleted = service.delete(meta=_meta(), resource_type="books", resource_id="1")

    assert linked.ok is True and linked.payload is None
    assert linkage.payload is not None and [i.id for i in linkage.payload.identifiers] == ["1"]
    assert deleted.ok is True


def test_blank_metadata_is_rejected(engine: ResourceEngine) -> None:
    """Calls without a principal fail validation before reaching the engine."""
    service = DefaultResourceService(engine=engine)

    result = service.query(meta=new_meta(source="test", principal=" "), resource_type="books")

    assert result.ok is False
    assert result.errors[0].code == codes.INVALID_ARGUMENT


def test_storage_failures_are_normalized() -> None:
    """SQLAlchemy failures become retryable dependency errors."""
    exc = OperationalError("SELECT 1", {}, Exception("database is locked"))
    service = DefaultResourceService(engine=_FailingEngine(exc))  # type: ignore[arg-type]

    result = service.get(meta=_meta(), resource_type="books", resource_id="1")

    assert result.errors[0].category == ErrorCategory.DEPENDENCY
    assert result.errors[0].retryable is True


def test_unexpected_exceptions_propagate() -> None:
    """Programming errors are not folded into results."""
    service = DefaultResourceService(engine=_FailingEngine(RuntimeError("bug")))  # type: ignore[arg-type]

    with pytest.raises(RuntimeError):
        service.get(meta=_meta(), resource_type="books", resource_id="1")


def test_build_resource_service_wires_sql_storage(registry: SchemaRegistry) -> None:
    """The factory builds a working service over the configured database."""
    settings = RelataSettings(
        components={"service": {"resource_engine": {"default_page_size": 5}}}
    )
    service = build_resource_service(settings=settings, registry=registry)

    service.post(
        meta=_meta(),
        resource_type="publishers",
        document={"data": {"type": "publishers", "attributes": {"name": "Chilton"}}},
    )
    result = service.query(meta=_meta(), resource_type="publishers")

    assert result.payload is not None
    assert result.payload.meta["page"]["size"] == 5
    assert [item.attributes["name"] for item in result.payload.resources] == ["Chilton"]


def test_get_related_returns_target_documents(engine: ResourceEngine) -> None:
    """Related reads come back as documents; unknown relationships fail softly."""
    service = DefaultResourceService(engine=engine)
    service.post(
        meta=_meta(),
        resource_type="authors",
        document={"data": {"type": "authors", "attributes": {"name": "Frank"}}},
    )
    service.post(
        meta=_meta(),
        resource_type="books",
        document={
            "data": {
                "type": "books",
                "attributes": {"title": "Dune"},
                "relationships": {"authors": {"data": [{"type": "authors", "id": "1"}]}},
            }
        },
    )

    related = service.get_related(
        meta=_meta(), resource_type="books", resource_id="1", relationship="authors"
    )
    unknown = service.get_related(
        meta=_meta(), resource_type="books", resource_id="1", relationship="editors"
    )

    assert related.payload is not None
    assert [item.attributes["name"] for item in related.payload.resources] == ["Frank"]
    assert unknown.ok is False


def test_build_resource_service_can_configure_logging(registry: SchemaRegistry) -> None:
    """Entry points may have the factory set up root logging from settings."""
    settings = RelataSettings(logging={"level": "DEBUG", "json_output": False})
    root = logging.getLogger()
    saved_handlers, saved_level = list(root.handlers), root.level
    try:
        build_resource_service(settings=settings, registry=registry, configure_logs=True)
        handlers, level = list(root.handlers), root.level
    finally:
        root.handlers[:] = saved_handlers
        root.setLevel(saved_level)
        clear_context()

    assert level == logging.DEBUG
    assert len(handlers) == 1
    assert isinstance(handlers[0].formatter, PlainFormatter)
