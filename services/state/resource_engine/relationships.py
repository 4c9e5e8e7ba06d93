"""Translate relationship linkage in a write payload into storage changes.

To-one linkage becomes foreign-key column values merged into the stored
attributes. Many-to-many linkage becomes queued pivot operations that run
after the main record is written.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from packages.relata_shared.logging import fields as log_fields
from packages.relata_shared.logging import get_logger, log_context
from services.state.resource_engine.definitions import RelationshipKind
from services.state.resource_engine.domain import (
    RelationshipData,
    ResourceIdentifier,
    ResourceObject,
)
from services.state.resource_engine.errors import ValidationError
from services.state.resource_engine.registry import CompiledRelationship, CompiledResource

_LOGGER = get_logger(__name__)


@dataclass(frozen=True)
class ManyToManyOperation:
    """Replace the members of one many-to-many relationship."""

    relationship: CompiledRelationship
    targets: tuple[ResourceIdentifier, ...]


@dataclass
class RelationshipChanges:
    belongs_to_updates: dict[str, Any] = field(default_factory=dict)
    many_to_many: list[ManyToManyOperation] = field(default_factory=list)


class RelationshipProcessor:
    """Stateless translator from relationship linkage to storage changes."""

    def process(self, resource_object: ResourceObject, resource: CompiledResource) -> RelationshipChanges:
        changes = RelationshipChanges()
        for name, entry in resource_object.relationships.items():
            if not entry.provided:
                continue
            relationship = resource.relationship(name)
            if relationship is None:
                with log_context({log_fields.RESOURCE_TYPE: resource.name, log_fields.RELATIONSHIP: name}):
                    _LOGGER.debug("ignoring undeclared relationship")
                continue
            self._apply(relationship, entry, changes)
        return changes

    def clear_omitted(
        self,
        resource_object: ResourceObject,
        resource: CompiledResource,
        changes: RelationshipChanges,
    ) -> None:
        """Null or empty every writable relationship absent from the payload."""
        present = set(resource_object.relationships)
        for name, relationship in resource.relationships.items():
            if name in present:
                continue
            if relationship.kind == RelationshipKind.BELONGS_TO:
                assert relationship.foreign_key is not None
                changes.belongs_to_updates[relationship.foreign_key] = None
            elif relationship.kind == RelationshipKind.BELONGS_TO_POLYMORPHIC:
                assert relationship.type_field and relationship.id_field
                changes.belongs_to_updates[relationship.type_field] = None
                changes.belongs_to_updates[relationship.id_field] = None
            elif relationship.kind == RelationshipKind.MANY_TO_MANY:
                changes.many_to_many.append(ManyToManyOperation(relationship=relationship, targets=()))

    def _apply(
        self,
        relationship: CompiledRelationship,
        entry: RelationshipData,
        changes: RelationshipChanges,
    ) -> None:
        path = f"data.relationships.{relationship.name}.data"
        if relationship.kind == RelationshipKind.HAS_MANY:
            return
        if relationship.kind == RelationshipKind.MANY_TO_MANY:
            if entry.data is not None and not isinstance(entry.data, list):
                raise ValidationError.single(
                    field=path,
                    rule="to_many_relationship",
                    message=f"Relationship '{relationship.name}' expects an array of identifiers",
                )
            targets = tuple(entry.identifiers)
            for index, target in enumerate(targets):
                if target.type != relationship.target:
                    raise ValidationError.single(
                        field=f"{path}[{index}].type",
                        rule="relationship_type",
                        message=(
                            f"Relationship '{relationship.name}' expects type "
                            f"'{relationship.target}', got '{target.type}'"
                        ),
                    )
            changes.many_to_many.append(ManyToManyOperation(relationship=relationship, targets=targets))
            return

        if isinstance(entry.data, list):
            raise ValidationError.single(
                field=path,
                rule="to_one_relationship",
                message=f"Relationship '{relationship.name}' expects a single identifier or null",
            )
        target = entry.data

        if relationship.kind == RelationshipKind.BELONGS_TO_POLYMORPHIC:
            assert relationship.type_field and relationship.id_field
            if target is None:
                changes.belongs_to_updates[relationship.type_field] = None
                changes.belongs_to_updates[relationship.id_field] = None
                return
            if target.type not in relationship.target_types:
                allowed = ", ".join(relationship.target_types)
                raise ValidationError.single(
                    field=f"{path}.type",
                    rule="polymorphic_type",
                    message=f"Type '{target.type}' is not allowed for '{relationship.name}' (allowed: {allowed})",
                )
            changes.belongs_to_updates[relationship.type_field] = target.type
            changes.belongs_to_updates[relationship.id_field] = target.id
            return

        assert relationship.foreign_key is not None
        if target is not None and target.type != relationship.target:
            raise ValidationError.single(
                field=f"{path}.type",
                rule="relationship_type",
                message=(
                    f"Relationship '{relationship.name}' expects type "
                    f"'{relationship.target}', got '{target.type}'"
                ),
            )
        changes.belongs_to_updates[relationship.foreign_key] = None if target is None else target.id
