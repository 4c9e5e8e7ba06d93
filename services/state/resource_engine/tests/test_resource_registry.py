"""Tests for schema registration, compilation, and reference checks."""

from __future__ import annotations

from typing import Any

import pytest

from services.state.resource_engine.definitions import FieldType, RelationshipKind
from services.state.resource_engine.errors import (
    RegistryError,
    ResourceError,
    ResourceErrorKind,
)
from services.state.resource_engine.registry import SchemaRegistry


def _registry(definitions: dict[str, dict[str, Any]]) -> SchemaRegistry:
    registry = SchemaRegistry()
    for name, definition in definitions.items():
        registry.register(name, definition)
    return registry


def test_belongs_to_fields_compile_into_named_relationships(registry: SchemaRegistry) -> None:
    """A belongs_to field becomes a to-one relationship under its alias."""
    books = registry.resource("books")
    publisher = books.relationship("publisher")

    assert publisher is not None
    assert publisher.kind == RelationshipKind.BELONGS_TO
    assert publisher.foreign_key == "publisher_id"
    assert publisher.target == "publishers"
    assert "publisher_id" in books.foreign_key_columns
    assert books.fields["publisher_id"].type == FieldType.ID


def test_polymorphic_relationship_synthesizes_nullable_columns(registry: SchemaRegistry) -> None:
    """Type and id columns are added to the schema when not declared."""
    comments = registry.resource("comments")

    assert comments.fields["commentable_type"].nullable is True
    assert comments.fields["commentable_id"].type == FieldType.ID
    assert {"commentable_type", "commentable_id"} <= comments.foreign_key_columns
    assert comments.validator.path("commentable_type") == "data.relationships.commentable.data.type"


def test_many_to_many_and_has_many_resolve_targets(registry: SchemaRegistry) -> None:
    """Pivot relationships infer their target; has_many via points at the owner."""
    books = registry.resource("books")
    authors = books.relationship("authors")
    comments = books.relationship("comments")

    assert authors is not None and authors.kind == RelationshipKind.MANY_TO_MANY
    assert authors.target == "authors"
    assert authors.through == "book_authors"
    assert comments is not None and comments.kind == RelationshipKind.HAS_MANY
    assert (comments.type_field, comments.id_field) == ("commentable_type", "commentable_id")
    assert set(registry.pivot_pairs("book_authors")) == {
        ("book_id", "author_id"),
        ("author_id", "book_id"),
    }


def test_search_schema_merges_field_flags_and_explicit_filters(registry: SchemaRegistry) -> None:
    """Searchable fields and declared filters share one search schema."""
    search = registry.resource("books").search_fields

    assert search is not None
    assert {"title", "q", "min_pages", "author"} <= set(search)
    assert search["q"].columns == ("title", "genre")
    assert search["min_pages"].columns == ("pages",)
    assert search["min_pages"].type == FieldType.INTEGER
    assert registry.resource("reviews").search_fields is None


def test_search_filters_infer_types_and_default_operators(registry: SchemaRegistry) -> None:
    """Types come from the column a filter ends on; strings match by substring."""
    search = registry.resource("books").search_fields
    assert search is not None

    assert (search["title"].type, search["title"].operator) == (FieldType.STRING, "like")
    assert (search["publisher"].type, search["publisher"].operator) == (FieldType.ID, "=")
    assert (search["rated"].type, search["rated"].operator) == (FieldType.INTEGER, ">=")
    assert search["author"].columns == ("title", "authors.name")
    assert search["author"].type == FieldType.STRING


@pytest.mark.parametrize(
    ("resource_type", "column"),
    [
        ("books", "shelf"),
        ("books", "editors.name"),
        ("books", "authors.nickname"),
        ("books", "shouted_title"),
        ("comments", "commentable.title"),
    ],
)
def test_search_columns_must_resolve(
    definitions: dict[str, dict[str, Any]], resource_type: str, column: str
) -> None:
    """Every filter column, local or dotted, is checked when the registry freezes."""
    definitions[resource_type]["search_schema"] = {"lookup": {"actual_field": column}}
    registry = _registry(definitions)

    with pytest.raises(RegistryError) as exc_info:
        registry.freeze()

    assert exc_info.value.violations[0].rule == "unknown_search_field"
    assert exc_info.value.fields == (f"{resource_type}.lookup",)


def test_unknown_resource_raises_not_found(registry: SchemaRegistry) -> None:
    """Looking up an unregistered type is a not-found resource error."""
    with pytest.raises(ResourceError) as exc_info:
        registry.resource("magazines")

    assert exc_info.value.kind == ResourceErrorKind.NOT_FOUND


def test_belongs_to_without_alias_is_rejected() -> None:
    """A foreign key needs a relationship name."""
    registry = SchemaRegistry()
    registry.register("publishers", {"fields": {"name": {"type": "string"}}})

    with pytest.raises(RegistryError) as exc_info:
        registry.register("books", {"fields": {"publisher_id": {"belongs_to": "publishers"}}})

    assert exc_info.value.violations[0].rule == "missing_alias"
    assert exc_info.value.fields == ("books.publisher_id",)


def test_duplicate_registration_is_rejected(definitions: dict[str, dict[str, Any]]) -> None:
    """Each resource name may be registered once."""
    registry = _registry(definitions)

    with pytest.raises(RegistryError) as exc_info:
        registry.register("books", definitions["books"])

    assert exc_info.value.violations[0].rule == "duplicate_resource"


def test_missing_pivot_resource_fails_on_freeze(definitions: dict[str, dict[str, Any]]) -> None:
    """Cross-resource references are checked when the registry freezes."""
    del definitions["book_authors"]
    registry = _registry(definitions)

    with pytest.raises(RegistryError) as exc_info:
        registry.freeze()

    assert exc_info.value.violations[0].rule == "missing_pivot_resource"
    assert registry.frozen is False


def test_has_many_via_requires_matching_polymorphic_relationship(
    definitions: dict[str, dict[str, Any]],
) -> None:
    """``via`` must name a polymorphic relationship that accepts the owner type."""
    definitions["publishers"]["relationships"]["comments"] = {
        "has_many": "comments",
        "via": "commentable",
    }
    registry = _registry(definitions)

    with pytest.raises(RegistryError) as exc_info:
        registry.freeze()

    assert exc_info.value.violations[0].rule == "invalid_via"


def test_unknown_sortable_field_is_rejected() -> None:
    """Sortable fields must exist on the resource."""
    registry = SchemaRegistry()

    with pytest.raises(RegistryError) as exc_info:
        registry.register(
            "notes", {"fields": {"body": {"type": "string"}}, "sortable_fields": ["title"]}
        )

    assert exc_info.value.violations[0].rule == "unknown_sortable_field"


def test_frozen_registry_refuses_registration(registry: SchemaRegistry) -> None:
    """Freezing is final."""
    assert registry.frozen is True
    assert registry.freeze() is registry
    with pytest.raises(RuntimeError):
        registry.register("notes", {"fields": {}})


def test_unfrozen_registry_refuses_lookups(definitions: dict[str, dict[str, Any]]) -> None:
    """Compiled views exist only after freezing."""
    registry = _registry(definitions)

    assert registry.has("books") is True
    with pytest.raises(RuntimeError):
        registry.resource("books")
