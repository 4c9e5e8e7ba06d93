"""Maintain pivot rows backing many-to-many relationships."""

from __future__ import annotations

from typing import Sequence

from services.state.resource_engine.domain import ResourceIdentifier
from services.state.resource_engine.errors import ResourceError, ResourceErrorKind
from services.state.resource_engine.interfaces import StorageAdapter, TransactionHandle
from services.state.resource_engine.registry import CompiledRelationship


class PivotManager:
    """Replace, add, or remove the members of one owner's many-to-many link."""

    def __init__(self, *, storage: StorageAdapter) -> None:
        self._storage = storage

    def replace(
        self,
        owner_id: str,
        relationship: CompiledRelationship,
        targets: Sequence[ResourceIdentifier],
        *,
        transaction: TransactionHandle,
    ) -> None:
        """Make the pivot rows for ``owner_id`` exactly ``targets``.

        Existing rows are always deleted first, so an empty ``targets`` clears
        the relationship.
        """
        through, owner_key, other_key = _pivot_columns(relationship)
        self._reject_duplicates(relationship, targets)
        self._require_targets(relationship, targets, transaction)
        self._storage.delete_links(
            through,
            owner_key=owner_key,
            owner_id=owner_id,
            transaction=transaction,
        )
        if targets:
            self._storage.insert_links(
                through,
                [{owner_key: owner_id, other_key: target.id} for target in targets],
                transaction=transaction,
            )

    def add(
        self,
        owner_id: str,
        relationship: CompiledRelationship,
        targets: Sequence[ResourceIdentifier],
        *,
        transaction: TransactionHandle,
    ) -> None:
        """Link ``targets`` that are not linked yet; existing members stay."""
        through, owner_key, other_key = _pivot_columns(relationship)
        self._reject_duplicates(relationship, targets)
        self._require_targets(relationship, targets, transaction)
        linked = set(
            self._storage.list_links(
                through,
                owner_key=owner_key,
                owner_id=owner_id,
                other_key=other_key,
                transaction=transaction,
            )
        )
        rows = [
            {owner_key: owner_id, other_key: target.id}
            for target in targets
            if target.id not in linked
        ]
        if rows:
            self._storage.insert_links(through, rows, transaction=transaction)

    def remove(
        self,
        owner_id: str,
        relationship: CompiledRelationship,
        targets: Sequence[ResourceIdentifier],
        *,
        transaction: TransactionHandle,
    ) -> None:
        """Unlink ``targets``; ids that are not linked are ignored."""
        through, owner_key, other_key = _pivot_columns(relationship)
        if not targets:
            return
        self._storage.delete_links(
            through,
            owner_key=owner_key,
            owner_id=owner_id,
            other_key=other_key,
            other_ids=[target.id for target in targets],
            transaction=transaction,
        )

    def _reject_duplicates(
        self, relationship: CompiledRelationship, targets: Sequence[ResourceIdentifier]
    ) -> None:
        seen: set[ResourceIdentifier] = set()
        for target in targets:
            if target in seen:
                raise ResourceError(
                    f"Duplicate {target.type} with id {target.id} in relationship {relationship.name}",
                    kind=ResourceErrorKind.CONFLICT,
                    resource_type=target.type,
                    resource_id=target.id,
                )
            seen.add(target)

    def _require_targets(
        self,
        relationship: CompiledRelationship,
        targets: Sequence[ResourceIdentifier],
        transaction: TransactionHandle,
    ) -> None:
        if not relationship.validate_exists:
            return
        for target in targets:
            if not self._storage.exists(target.type, target.id, transaction=transaction):
                raise ResourceError(
                    f"Related {target.type} with id {target.id} not found",
                    kind=ResourceErrorKind.NOT_FOUND,
                    resource_type=target.type,
                    resource_id=target.id,
                )


def _pivot_columns(relationship: CompiledRelationship) -> tuple[str, str, str]:
    if relationship.through is None or relationship.foreign_key is None or relationship.other_key is None:
        raise ValueError(f"{relationship.name} is not a many-to-many relationship")
    return relationship.through, relationship.foreign_key, relationship.other_key
