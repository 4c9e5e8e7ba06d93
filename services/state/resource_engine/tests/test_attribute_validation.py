"""Tests for compiled attribute validators."""

from __future__ import annotations

from services.state.resource_engine.registry import SchemaRegistry
from services.state.resource_engine.validation import ValidationMode


def _rules(violations: list) -> dict[str, str]:
    return {violation.field: violation.rule for violation in violations}


def test_full_mode_requires_fields_and_fills_defaults(registry: SchemaRegistry) -> None:
    """Missing required fields are reported; declared defaults are applied."""
    validator = registry.resource("books").validator

    validated, violations = validator.validate({"pages": 10}, ValidationMode.FULL)

    assert _rules(violations) == {"data.attributes.title": "required"}
    assert validated["genre"] == "fiction"
    assert "shouted_title" not in validated


def test_partial_mode_checks_only_given_fields(registry: SchemaRegistry) -> None:
    """Partial validation neither requires fields nor applies defaults."""
    validator = registry.resource("books").validator

    validated, violations = validator.validate({"pages": "12"}, ValidationMode.PARTIAL)

    assert violations == []
    assert validated == {"pages": 12}


def test_type_bounds_and_choices_are_enforced(registry: SchemaRegistry) -> None:
    """Each offending field yields one violation with the failing rule."""
    validator = registry.resource("books").validator

    _, violations = validator.validate(
        {"title": "", "pages": 0, "genre": "poetry"},
        ValidationMode.PARTIAL,
    )

    assert _rules(violations) == {
        "data.attributes.title": "string_too_short",
        "data.attributes.pages": "greater_than_equal",
        "data.attributes.genre": "choices",
    }


def test_unknown_and_null_fields_are_rejected(registry: SchemaRegistry) -> None:
    """Undeclared fields are not allowed and non-nullable fields refuse null."""
    validator = registry.resource("books").validator

    _, violations = validator.validate({"colour": "red", "title": None}, ValidationMode.PARTIAL)

    assert _rules(violations) == {
        "data.attributes.colour": "field_not_allowed",
        "data.attributes.title": "not_nullable",
    }


def test_optional_foreign_keys_accept_null_and_coerce_ids(registry: SchemaRegistry) -> None:
    """Foreign keys hold string ids and may be cleared when optional."""
    validator = registry.resource("books").validator

    cleared, cleared_violations = validator.validate({"publisher_id": None}, ValidationMode.PARTIAL)
    linked, linked_violations = validator.validate({"publisher_id": 7}, ValidationMode.PARTIAL)

    assert cleared_violations == [] and cleared == {"publisher_id": None}
    assert linked_violations == [] and linked == {"publisher_id": "7"}


def test_foreign_key_violations_point_at_relationship_linkage(registry: SchemaRegistry) -> None:
    """Required foreign keys report the relationship path they are set through."""
    validator = registry.resource("book_authors").validator

    _, violations = validator.validate({}, ValidationMode.FULL)

    assert _rules(violations) == {
        "data.relationships.book.data.id": "required",
        "data.relationships.author.data.id": "required",
    }


def test_filter_validator_reports_filter_paths(registry: SchemaRegistry) -> None:
    """Search validators coerce filter values and report ``filters.*`` paths."""
    search_validator = registry.resource("books").search_validator
    assert search_validator is not None

    validated, violations = search_validator.validate(
        {"min_pages": "100", "shelf": "a"}, ValidationMode.PARTIAL
    )

    assert validated == {"min_pages": 100}
    assert _rules(violations) == {"filters.shelf": "field_not_allowed"}


def test_list_filters_take_sized_lists(registry: SchemaRegistry) -> None:
    """``in`` wraps a lone value; ``between`` needs exactly two bounds."""
    search_validator = registry.resource("books").search_validator
    assert search_validator is not None

    validated, violations = search_validator.validate(
        {"genres": "fiction", "pages_between": ["100", 300]}, ValidationMode.PARTIAL
    )
    _, short = search_validator.validate({"pages_between": [100]}, ValidationMode.PARTIAL)
    _, null_bound = search_validator.validate({"min_pages": None}, ValidationMode.PARTIAL)

    assert violations == []
    assert validated == {"genres": ["fiction"], "pages_between": [100, 300]}
    assert _rules(short) == {"filters.pages_between": "too_short"}
    assert _rules(null_bound) == {"filters.min_pages": "not_nullable"}
