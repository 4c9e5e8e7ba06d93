"""Tests for translating relationship linkage into storage changes."""

from __future__ import annotations

from typing import Any

import pytest

from services.state.resource_engine.domain import ResourceObject
from services.state.resource_engine.errors import ValidationError
from services.state.resource_engine.registry import SchemaRegistry
from services.state.resource_engine.relationships import RelationshipProcessor


def _book(relationships: dict[str, Any]) -> ResourceObject:
    return ResourceObject.model_validate(
        {"type": "books", "attributes": {"title": "Dune"}, "relationships": relationships}
    )


def test_to_one_linkage_becomes_foreign_key_value(registry: SchemaRegistry) -> None:
    """A belongs-to identifier sets the foreign-key column; null clears it."""
    processor = RelationshipProcessor()
    books = registry.resource("books")

    linked = processor.process(_book({"publisher": {"data": {"type": "publishers", "id": "4"}}}), books)
    cleared = processor.process(_book({"publisher": {"data": None}}), books)

    assert linked.belongs_to_updates == {"publisher_id": "4"}
    assert cleared.belongs_to_updates == {"publisher_id": None}


def test_entries_without_data_are_skipped(registry: SchemaRegistry) -> None:
    """Links-only or meta-only entries do not touch storage."""
    changes = RelationshipProcessor().process(
        _book({"publisher": {"meta": {"note": "x"}}, "authors": {}}),
        registry.resource("books"),
    )

    assert changes.belongs_to_updates == {}
    assert changes.many_to_many == []


def test_many_to_many_linkage_is_queued(registry: SchemaRegistry) -> None:
    """To-many linkage becomes one replace operation with every target."""
    changes = RelationshipProcessor().process(
        _book({"authors": {"data": [{"type": "authors", "id": "1"}, {"type": "authors", "id": "2"}]}}),
        registry.resource("books"),
    )

    assert len(changes.many_to_many) == 1
    operation = changes.many_to_many[0]
    assert operation.relationship.name == "authors"
    assert [target.id for target in operation.targets] == ["1", "2"]


def test_polymorphic_linkage_sets_type_and_id(registry: SchemaRegistry) -> None:
    """Polymorphic identifiers fill both columns."""
    changes = RelationshipProcessor().process(
        ResourceObject.model_validate(
            {
                "type": "comments",
                "relationships": {"commentable": {"data": {"type": "reviews", "id": "9"}}},
            }
        ),
        registry.resource("comments"),
    )

    assert changes.belongs_to_updates == {"commentable_type": "reviews", "commentable_id": "9"}


def test_polymorphic_type_outside_allowed_set_is_rejected(registry: SchemaRegistry) -> None:
    """Only declared target types may be linked."""
    with pytest.raises(ValidationError) as exc_info:
        RelationshipProcessor().process(
            ResourceObject.model_validate(
                {
                    "type": "comments",
                    "relationships": {"commentable": {"data": {"type": "authors", "id": "1"}}},
                }
            ),
            registry.resource("comments"),
        )

    violation = exc_info.value.violations[0]
    assert violation.rule == "polymorphic_type"
    assert violation.field == "data.relationships.commentable.data.type"


@pytest.mark.parametrize(
    ("relationships", "rule"),
    [
        ({"authors": {"data": {"type": "authors", "id": "1"}}}, "to_many_relationship"),
        ({"publisher": {"data": [{"type": "publishers", "id": "1"}]}}, "to_one_relationship"),
        ({"publisher": {"data": {"type": "authors", "id": "1"}}}, "relationship_type"),
        ({"authors": {"data": [{"type": "publishers", "id": "1"}]}}, "relationship_type"),
    ],
)
def test_linkage_shape_and_type_are_checked(
    registry: SchemaRegistry, relationships: dict[str, Any], rule: str
) -> None:
    """Cardinality and target type mismatches are validation errors."""
    with pytest.raises(ValidationError) as exc_info:
        RelationshipProcessor().process(_book(relationships), registry.resource("books"))

    assert exc_info.value.violations[0].rule == rule


def test_undeclared_relationships_and_has_many_are_ignored(registry: SchemaRegistry) -> None:
    """Only writable relationships produce changes."""
    changes = RelationshipProcessor().process(
        _book(
            {
                "editors": {"data": [{"type": "authors", "id": "1"}]},
                "comments": {"data": [{"type": "comments", "id": "1"}]},
            }
        ),
        registry.resource("books"),
    )

    assert changes.belongs_to_updates == {}
    assert changes.many_to_many == []


def test_clear_omitted_empties_every_absent_relationship(registry: SchemaRegistry) -> None:
    """Replacement semantics null to-one links and empty pivots not in the payload."""
    processor = RelationshipProcessor()
    books = registry.resource("books")
    book = _book({})
    changes = processor.process(book, books)

    processor.clear_omitted(book, books, changes)

    assert changes.belongs_to_updates == {"publisher_id": None}
    assert [(op.relationship.name, op.targets) for op in changes.many_to_many] == [("authors", ())]
