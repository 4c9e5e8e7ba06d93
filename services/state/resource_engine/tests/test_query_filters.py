"""Tests for search filters: operators, null matching, and related-column paths."""

from __future__ import annotations

from typing import Any

import pytest

from services.state.resource_engine.domain import Document, ResourceObject
from services.state.resource_engine.engine import ResourceEngine
from services.state.resource_engine.errors import ValidationError


def _create(engine: ResourceEngine, type_name: str, attributes: dict[str, Any], **links: Any) -> str:
    data: dict[str, Any] = {"type": type_name, "attributes": attributes}
    if links:
        data["relationships"] = {name: {"data": value} for name, value in links.items()}
    created = engine.post(type_name, {"data": data})
    assert isinstance(created.data, ResourceObject) and created.data.id is not None
    return created.data.id


def _ref(type_name: str, resource_id: str) -> dict[str, str]:
    return {"type": type_name, "id": resource_id}


def _titles(engine: ResourceEngine, **filters: Any) -> list[str]:
    document: Document = engine.query("books", {"filters": filters, "sort": "title"})
    return [item.attributes["title"] for item in document.resources]


@pytest.fixture
def library(engine: ResourceEngine) -> ResourceEngine:
    chilton = _create(engine, "publishers", {"name": "Chilton"})
    ace = _create(engine, "publishers", {"name": "Ace"})
    herbert = _create(engine, "authors", {"name": "Frank Herbert"})
    austen = _create(engine, "authors", {"name": "Jane Austen"})

    dune = _create(
        engine,
        "books",
        {"title": "Dune", "pages": 412},
        publisher=_ref("publishers", chilton),
        authors=[_ref("authors", herbert)],
    )
    emma = _create(engine, "books", {"title": "Emma", "pages": 320}, authors=[_ref("authors", austen)])
    _create(
        engine,
        "books",
        {"title": "Dubliners", "pages": 150, "genre": "nonfiction"},
        publisher=_ref("publishers", ace),
    )
    ulysses = _create(
        engine, "books", {"title": "Ulysses", "pages": 730}, publisher=_ref("publishers", ace)
    )

    _create(engine, "reviews", {"rating": 5}, book=_ref("books", dune))
    _create(engine, "reviews", {"rating": 2}, book=_ref("books", emma))
    _create(engine, "comments", {"body": "Dense but rewarding"}, commentable=_ref("books", ulysses))
    return engine


def test_one_of_reaches_across_many_to_many(library: ResourceEngine) -> None:
    """A dotted ``one_of`` column matches books through their authors."""
    assert _titles(library, author="Herbert") == ["Dune"]
    assert _titles(library, author="herb") == ["Dune"]
    assert _titles(library, author="emm") == ["Emma"]


def test_paths_follow_belongs_to_and_has_many(library: ResourceEngine) -> None:
    """Paths through a foreign key, a child foreign key, and a polymorphic child all match."""
    assert _titles(library, publisher_name="Ace") == ["Dubliners", "Ulysses"]
    assert _titles(library, rated="4") == ["Dune"]
    assert _titles(library, discussed="dense") == ["Ulysses"]


def test_string_filters_default_to_substring_match(library: ResourceEngine) -> None:
    """Searchable string fields match case-insensitively; wildcards are literal."""
    assert _titles(library, title="UN") == ["Dune"]
    assert _titles(library, title="%") == []


def test_prefix_suffix_in_and_between_operators(library: ResourceEngine) -> None:
    """Each declared operator narrows the result the way its name says."""
    assert _titles(library, title_prefix="du") == ["Dubliners", "Dune"]
    assert _titles(library, title_suffix="ES") == ["Ulysses"]
    assert _titles(library, genres=["nonfiction"]) == ["Dubliners"]
    assert _titles(library, genres="fiction") == ["Dune", "Emma", "Ulysses"]
    assert _titles(library, pages_between=[300, 500]) == ["Dune", "Emma"]


def test_null_filter_matches_missing_values(library: ResourceEngine) -> None:
    """Equality against null selects records whose column is empty."""
    assert _titles(library, publisher=None) == ["Emma"]
    assert _titles(library, publisher="2") == ["Dubliners", "Ulysses"]


def test_malformed_list_and_range_filters_are_rejected(library: ResourceEngine) -> None:
    """Range bounds come in pairs and ordering comparisons refuse null."""
    with pytest.raises(ValidationError) as single_bound:
        library.query("books", {"filters": {"pages_between": [300]}})
    with pytest.raises(ValidationError) as null_bound:
        library.query("books", {"filters": {"min_pages": None}})

    assert single_bound.value.fields == ("filters.pages_between",)
    assert null_bound.value.violations[0].rule == "not_nullable"


def test_filters_combine_with_and(library: ResourceEngine) -> None:
    """Every given filter must match."""
    assert _titles(library, publisher_name="Ace", min_pages="200") == ["Ulysses"]
