"""Behavior tests for pivot maintenance against an in-memory storage fake."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

import pytest

from services.state.resource_engine.definitions import RelationshipKind
from services.state.resource_engine.domain import ResourceIdentifier
from services.state.resource_engine.errors import ResourceError, ResourceErrorKind
from services.state.resource_engine.pivots import PivotManager
from services.state.resource_engine.registry import CompiledRelationship

_TX = object()

_AUTHORS = CompiledRelationship(
    name="authors",
    kind=RelationshipKind.MANY_TO_MANY,
    target_types=("authors",),
    foreign_key="book_id",
    other_key="author_id",
    through="book_authors",
)


@dataclass
class _DeleteLinksCall:
    owner_id: str
    other_ids: tuple[str, ...] | None


@dataclass
class _FakeLinkStorage:
    """Pivot rows plus a set of existing author ids."""

    existing: set[str] = field(default_factory=lambda: {"1", "2", "3"})
    rows: list[dict[str, str]] = field(default_factory=list)
    delete_calls: list[_DeleteLinksCall] = field(default_factory=list)
    insert_calls: int = 0

    def exists(self, resource_type: str, resource_id: str, *, transaction: Any = None) -> bool:
        assert resource_type == "authors"
        return resource_id in self.existing

    def list_links(
        self,
        through: str,
        *,
        owner_key: str,
        owner_id: str,
        other_key: str,
        transaction: Any = None,
    ) -> list[str]:
        return [row[other_key] for row in self.rows if row[owner_key] == owner_id]

    def insert_links(
        self, through: str, rows: Sequence[Mapping[str, Any]], *, transaction: Any
    ) -> None:
        assert transaction is _TX
        self.insert_calls += 1
        self.rows.extend({key: str(value) for key, value in row.items()} for row in rows)

    def delete_links(
        self,
        through: str,
        *,
        owner_key: str,
        owner_id: str,
        other_key: str | None = None,
        other_ids: Sequence[str] | None = None,
        transaction: Any,
    ) -> int:
        assert transaction is _TX
        self.delete_calls.append(
            _DeleteLinksCall(owner_id=owner_id, other_ids=None if other_ids is None else tuple(other_ids))
        )
        before = len(self.rows)
        self.rows = [
            row
            for row in self.rows
            if not (
                row[owner_key] == owner_id
                and (other_ids is None or other_key is None or row[other_key] in other_ids)
            )
        ]
        return before - len(self.rows)


def _authors(*ids: str) -> list[ResourceIdentifier]:
    return [ResourceIdentifier(type="authors", id=value) for value in ids]


def _linked(storage: _FakeLinkStorage, owner_id: str = "10") -> list[str]:
    return storage.list_links(
        "book_authors", owner_key="book_id", owner_id=owner_id, other_key="author_id"
    )


def test_replace_deletes_then_inserts_exact_members() -> None:
    """Replacing leaves exactly the given members."""
    storage = _FakeLinkStorage(rows=[{"book_id": "10", "author_id": "3"}])
    manager = PivotManager(storage=storage)  # type: ignore[arg-type]

    manager.replace("10", _AUTHORS, _authors("1", "2"), transaction=_TX)

    assert _linked(storage) == ["1", "2"]
    assert storage.delete_calls == [_DeleteLinksCall(owner_id="10", other_ids=None)]


def test_replace_with_no_targets_clears_and_skips_insert() -> None:
    """An empty target list still deletes existing rows."""
    storage = _FakeLinkStorage(rows=[{"book_id": "10", "author_id": "3"}])

    PivotManager(storage=storage).replace("10", _AUTHORS, [], transaction=_TX)  # type: ignore[arg-type]

    assert _linked(storage) == []
    assert storage.insert_calls == 0


def test_replace_is_idempotent() -> None:
    """Repeating the same replacement produces the same rows."""
    storage = _FakeLinkStorage()
    manager = PivotManager(storage=storage)  # type: ignore[arg-type]

    manager.replace("10", _AUTHORS, _authors("1", "2"), transaction=_TX)
    manager.replace("10", _AUTHORS, _authors("1", "2"), transaction=_TX)

    assert _linked(storage) == ["1", "2"]


def test_missing_target_fails_before_any_write() -> None:
    """Every target must exist; nothing is deleted when one is missing."""
    storage = _FakeLinkStorage(rows=[{"book_id": "10", "author_id": "3"}])

    with pytest.raises(ResourceError) as exc_info:
        PivotManager(storage=storage).replace(  # type: ignore[arg-type]
            "10", _AUTHORS, _authors("1", "99"), transaction=_TX
        )

    assert exc_info.value.kind == ResourceErrorKind.NOT_FOUND
    assert exc_info.value.message == "Related authors with id 99 not found"
    assert _linked(storage) == ["3"]
    assert storage.delete_calls == []


def test_existence_check_can_be_disabled() -> None:
    """``validate_exists=False`` links ids without looking them up."""
    storage = _FakeLinkStorage(existing=set())
    relationship = CompiledRelationship(
        name=_AUTHORS.name,
        kind=_AUTHORS.kind,
        target_types=_AUTHORS.target_types,
        foreign_key=_AUTHORS.foreign_key,
        other_key=_AUTHORS.other_key,
        through=_AUTHORS.through,
        validate_exists=False,
    )

    PivotManager(storage=storage).replace("10", relationship, _authors("42"), transaction=_TX)  # type: ignore[arg-type]

    assert _linked(storage) == ["42"]


def test_duplicate_targets_are_a_conflict() -> None:
    """The same member may not appear twice in one request."""
    storage = _FakeLinkStorage()

    with pytest.raises(ResourceError) as exc_info:
        PivotManager(storage=storage).replace(  # type: ignore[arg-type]
            "10", _AUTHORS, _authors("1", "1"), transaction=_TX
        )

    assert exc_info.value.kind == ResourceErrorKind.CONFLICT


def test_add_keeps_existing_members_and_skips_linked_ones() -> None:
    """Adding merges new members into the current set."""
    storage = _FakeLinkStorage(rows=[{"book_id": "10", "author_id": "1"}])

    PivotManager(storage=storage).add("10", _AUTHORS, _authors("1", "2"), transaction=_TX)  # type: ignore[arg-type]

    assert _linked(storage) == ["1", "2"]


def test_remove_deletes_only_named_members() -> None:
    """Removing leaves other members linked; unknown ids are ignored."""
    storage = _FakeLinkStorage(
        rows=[{"book_id": "10", "author_id": "1"}, {"book_id": "10", "author_id": "2"}]
    )

    PivotManager(storage=storage).remove("10", _AUTHORS, _authors("2", "7"), transaction=_TX)  # type: ignore[arg-type]

    assert _linked(storage) == ["1"]
    assert storage.delete_calls == [_DeleteLinksCall(owner_id="10", other_ids=("2", "7"))]
