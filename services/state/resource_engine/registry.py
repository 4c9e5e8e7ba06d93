"""Schema registry: the frozen catalogue of resource types.

Resources are registered by name, then ``freeze()`` compiles every definition
(validators, search schema, relationship map) and checks references between
resources. A frozen registry never changes and is safe to share.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from types import MappingProxyType
from typing import Any, Iterator, Mapping

from packages.relata_shared.logging import get_logger
from services.state.resource_engine.definitions import (
    NULL_MATCHING_OPERATORS,
    FieldDefinition,
    FieldKind,
    FieldType,
    RelationshipKind,
    ResourceDefinition,
    ReturnFullRecordPolicy,
    SearchFieldDefinition,
)
from services.state.resource_engine.errors import RegistryError, ResourceError, ResourceErrorKind
from services.state.resource_engine.validation import AttributeValidator

_LOGGER = get_logger(__name__)

_LIST_LENGTHS: dict[str, tuple[int, int | None]] = {"in": (1, None), "between": (2, 2)}


@dataclass(frozen=True)
class CompiledRelationship:
    """Resolved relationship with every column and target spelled out.

    ``foreign_key`` is the owner column for belongs-to, the child column for
    has-many, and the owner column of the pivot for many-to-many.
    """

    name: str
    kind: RelationshipKind
    target_types: tuple[str, ...]
    foreign_key: str | None = None
    other_key: str | None = None
    through: str | None = None
    type_field: str | None = None
    id_field: str | None = None
    via: str | None = None
    validate_exists: bool = True

    @property
    def target(self) -> str:
        return self.target_types[0]

    @property
    def is_to_many(self) -> bool:
        return self.kind in (RelationshipKind.HAS_MANY, RelationshipKind.MANY_TO_MANY)


@dataclass(frozen=True)
class CompiledResource:
    """Registration-time view of one resource used by every operation."""

    name: str
    table_name: str
    fields: Mapping[str, FieldDefinition]
    validator: AttributeValidator
    relationships: Mapping[str, CompiledRelationship]
    foreign_key_columns: frozenset[str]
    search_fields: Mapping[str, SearchFieldDefinition] | None
    search_validator: AttributeValidator | None
    sortable_fields: tuple[str, ...]
    default_sort: tuple[str, ...]
    default_page_size: int | None
    return_full_record: ReturnFullRecordPolicy | None
    load_record_on_put: bool | None
    hidden_fields: frozenset[str] = field(default_factory=frozenset)

    def relationship(self, name: str) -> CompiledRelationship | None:
        return self.relationships.get(name)

    @property
    def computed_fields(self) -> dict[str, FieldDefinition]:
        return {name: f for name, f in self.fields.items() if f.computed}

    @property
    def stored_fields(self) -> dict[str, FieldDefinition]:
        return {name: f for name, f in self.fields.items() if not f.computed}

    @property
    def belongs_to_fields(self) -> dict[str, FieldDefinition]:
        return {name: f for name, f in self.fields.items() if f.kind == FieldKind.BELONGS_TO}


class SchemaRegistry:
    """Name -> resource definition catalogue, immutable once frozen."""

    def __init__(self) -> None:
        self._definitions: dict[str, ResourceDefinition] = {}
        self._compiled: Mapping[str, CompiledResource] = MappingProxyType({})
        self._frozen = False

    @property
    def frozen(self) -> bool:
        return self._frozen

    def register(
        self, name: str, definition: ResourceDefinition | Mapping[str, Any]
    ) -> None:
        """Add one resource type; checks that need no other resource run here."""
        if self._frozen:
            raise RuntimeError("schema registry is frozen")
        if not name:
            raise RegistryError("resource name is required", resource_type="", rule="required")
        if name in self._definitions:
            raise RegistryError(
                f"resource {name} is already registered",
                resource_type=name,
                rule="duplicate_resource",
            )
        if not isinstance(definition, ResourceDefinition):
            definition = ResourceDefinition.model_validate(definition)
        _check_local(name, definition)
        self._definitions[name] = definition

    def freeze(self) -> "SchemaRegistry":
        """Compile every definition and resolve cross-resource references."""
        if self._frozen:
            return self
        compiled = {
            name: _compile(name, definition, self._definitions)
            for name, definition in self._definitions.items()
        }
        # Filter paths cross into other resources, so search compiles last.
        compiled = {
            name: _attach_search(resource, self._definitions[name], compiled)
            for name, resource in compiled.items()
        }
        self._compiled = MappingProxyType(compiled)
        self._frozen = True
        _LOGGER.debug("schema registry frozen with %d resources", len(compiled))
        return self

    def has(self, name: str) -> bool:
        return name in self._definitions

    def resource(self, name: str) -> CompiledResource:
        """Return one compiled resource or raise a not-found ``ResourceError``."""
        if not self._frozen:
            raise RuntimeError("schema registry must be frozen before use")
        compiled = self._compiled.get(name)
        if compiled is None:
            raise ResourceError(
                f"Unknown resource type {name}",
                kind=ResourceErrorKind.NOT_FOUND,
                resource_type=name,
            )
        return compiled

    def resources(self) -> Iterator[CompiledResource]:
        if not self._frozen:
            raise RuntimeError("schema registry must be frozen before use")
        return iter(self._compiled.values())

    def pivot_pairs(self, name: str) -> list[tuple[str, str]]:
        """Return ``(foreign_key, other_key)`` pairs of relationships stored in ``name``."""
        pairs: list[tuple[str, str]] = []
        for resource in self.resources():
            for relationship in resource.relationships.values():
                if relationship.through == name:
                    assert relationship.foreign_key and relationship.other_key
                    pairs.append((relationship.foreign_key, relationship.other_key))
        return pairs


def _check_local(name: str, definition: ResourceDefinition) -> None:
    aliases: set[str] = set()
    for field_name, field_def in definition.fields.items():
        if field_def.kind != FieldKind.BELONGS_TO:
            continue
        if not field_def.as_:
            raise RegistryError(
                f"belongs_to field {field_name} needs an 'as' relationship name",
                resource_type=name,
                field=field_name,
                rule="missing_alias",
            )
        if field_def.as_ in aliases or field_def.as_ in definition.relationships:
            raise RegistryError(
                f"relationship {field_def.as_} is declared twice",
                resource_type=name,
                field=field_name,
                rule="duplicate_relationship",
            )
        aliases.add(field_def.as_)

    for rel_name, rel in definition.relationships.items():
        if rel_name in definition.fields or rel_name in aliases:
            raise RegistryError(
                f"relationship {rel_name} collides with a field of the same name",
                resource_type=name,
                field=rel_name,
                rule="duplicate_field",
            )
        poly = rel.belongs_to_polymorphic
        if poly is None:
            continue
        for column in (poly.type_field, poly.id_field):
            declared = definition.fields.get(column)
            if declared is not None and declared.kind != FieldKind.SCALAR:
                raise RegistryError(
                    f"polymorphic column {column} must be a scalar field",
                    resource_type=name,
                    field=column,
                    rule="polymorphic_column",
                )

    sortable = set(definition.fields) | {"id"}
    for sort_field in (*definition.sortable_fields, *definition.default_sort):
        if sort_field.lstrip("-") not in sortable:
            raise RegistryError(
                f"sort field {sort_field} is not a field of {name}",
                resource_type=name,
                field=sort_field,
                rule="unknown_sortable_field",
            )


def _compile(
    name: str,
    definition: ResourceDefinition,
    definitions: Mapping[str, ResourceDefinition],
) -> CompiledResource:
    fields = {key: value for key, value in definition.fields.items() if key != "id"}
    field_paths: dict[str, str] = {}
    relationships: dict[str, CompiledRelationship] = {}
    foreign_key_columns: set[str] = set()

    for field_name, field_def in fields.items():
        if field_def.kind != FieldKind.BELONGS_TO:
            continue
        assert field_def.belongs_to is not None and field_def.as_ is not None
        _require_registered(name, field_name, field_def.belongs_to, definitions)
        relationships[field_def.as_] = CompiledRelationship(
            name=field_def.as_,
            kind=RelationshipKind.BELONGS_TO,
            target_types=(field_def.belongs_to,),
            foreign_key=field_name,
        )
        foreign_key_columns.add(field_name)
        field_paths[field_name] = f"data.relationships.{field_def.as_}.data.id"

    for rel_name, rel in definition.relationships.items():
        kind = rel.kind
        if kind == RelationshipKind.BELONGS_TO_POLYMORPHIC:
            poly = rel.belongs_to_polymorphic
            assert poly is not None
            for target in poly.types:
                _require_registered(name, rel_name, target, definitions)
            fields.setdefault(poly.type_field, FieldDefinition(type=FieldType.STRING, nullable=True))
            fields.setdefault(poly.id_field, FieldDefinition(type=FieldType.ID, nullable=True))
            foreign_key_columns.update((poly.type_field, poly.id_field))
            field_paths[poly.type_field] = f"data.relationships.{rel_name}.data.type"
            field_paths[poly.id_field] = f"data.relationships.{rel_name}.data.id"
            relationships[rel_name] = CompiledRelationship(
                name=rel_name,
                kind=kind,
                target_types=poly.types,
                type_field=poly.type_field,
                id_field=poly.id_field,
            )
        elif kind == RelationshipKind.MANY_TO_MANY:
            relationships[rel_name] = _compile_many_to_many(name, rel_name, rel, definitions)
        else:
            relationships[rel_name] = _compile_has_many(name, rel_name, rel, definitions)

    return CompiledResource(
        name=name,
        table_name=definition.table_name or name,
        fields=MappingProxyType(fields),
        validator=AttributeValidator(fields, field_paths=field_paths),
        relationships=MappingProxyType(relationships),
        foreign_key_columns=frozenset(foreign_key_columns),
        search_fields=None,
        search_validator=None,
        sortable_fields=definition.sortable_fields,
        default_sort=definition.default_sort,
        default_page_size=definition.default_page_size,
        return_full_record=definition.return_full_record,
        load_record_on_put=definition.load_record_on_put,
        hidden_fields=frozenset(n for n, f in fields.items() if f.hidden),
    )


def _compile_many_to_many(
    name: str,
    rel_name: str,
    rel: Any,
    definitions: Mapping[str, ResourceDefinition],
) -> CompiledRelationship:
    pivot = rel.pivot()
    assert pivot is not None
    through = definitions.get(pivot.through)
    if through is None:
        raise RegistryError(
            f"pivot resource {pivot.through} of {rel_name} is not registered",
            resource_type=name,
            field=rel_name,
            rule="missing_pivot_resource",
        )
    for column in (pivot.foreign_key, pivot.other_key):
        if column not in through.fields:
            raise RegistryError(
                f"pivot resource {pivot.through} has no field {column}",
                resource_type=name,
                field=rel_name,
                rule="missing_pivot_column",
            )
    target = pivot.target or through.fields[pivot.other_key].belongs_to
    if target is None:
        raise RegistryError(
            f"cannot infer the target type of {rel_name}; set target",
            resource_type=name,
            field=rel_name,
            rule="unknown_target",
        )
    _require_registered(name, rel_name, target, definitions)
    return CompiledRelationship(
        name=rel_name,
        kind=RelationshipKind.MANY_TO_MANY,
        target_types=(target,),
        foreign_key=pivot.foreign_key,
        other_key=pivot.other_key,
        through=pivot.through,
        validate_exists=pivot.validate_exists,
    )


def _compile_has_many(
    name: str,
    rel_name: str,
    rel: Any,
    definitions: Mapping[str, ResourceDefinition],
) -> CompiledRelationship:
    target = rel.has_many
    _require_registered(name, rel_name, target, definitions)
    child = definitions[target]
    if rel.via is not None:
        poly_rel = child.relationships.get(rel.via)
        poly = None if poly_rel is None else poly_rel.belongs_to_polymorphic
        if poly is None or name not in poly.types:
            raise RegistryError(
                f"{target}.{rel.via} is not a polymorphic relationship accepting {name}",
                resource_type=name,
                field=rel_name,
                rule="invalid_via",
            )
        return CompiledRelationship(
            name=rel_name,
            kind=RelationshipKind.HAS_MANY,
            target_types=(target,),
            type_field=poly.type_field,
            id_field=poly.id_field,
            via=rel.via,
        )
    if rel.foreign_key not in child.fields:
        raise RegistryError(
            f"{target} has no field {rel.foreign_key}",
            resource_type=name,
            field=rel_name,
            rule="missing_foreign_key",
        )
    return CompiledRelationship(
        name=rel_name,
        kind=RelationshipKind.HAS_MANY,
        target_types=(target,),
        foreign_key=rel.foreign_key,
    )


def _attach_search(
    resource: CompiledResource,
    definition: ResourceDefinition,
    compiled: Mapping[str, CompiledResource],
) -> CompiledResource:
    search_fields = _compile_search(resource, definition, compiled)
    if search_fields is None:
        return resource
    search_validator = AttributeValidator(
        {
            filter_name: FieldDefinition(
                type=search.type, nullable=search.operator in NULL_MATCHING_OPERATORS
            )
            for filter_name, search in search_fields.items()
        },
        prefix="filters",
        lengths={
            filter_name: _LIST_LENGTHS[search.operator]
            for filter_name, search in search_fields.items()
            if search.operator in _LIST_LENGTHS
        },
    )
    return replace(
        resource,
        search_fields=MappingProxyType(search_fields),
        search_validator=search_validator,
    )


def _compile_search(
    resource: CompiledResource,
    definition: ResourceDefinition,
    compiled: Mapping[str, CompiledResource],
) -> dict[str, SearchFieldDefinition] | None:
    declared_filters: dict[str, SearchFieldDefinition] = {}
    for field_name, field_def in resource.fields.items():
        declared = field_def.search
        if declared is None or declared is False:
            continue
        if declared is True:
            declared_filters[field_name] = SearchFieldDefinition(actual_field=field_name)
        elif isinstance(declared, SearchFieldDefinition):
            declared_filters[field_name] = _with_column(declared, field_name)
        else:
            for filter_name, nested in declared.items():
                declared_filters[filter_name] = _with_column(nested, field_name)
    for filter_name, explicit in (definition.search_schema or {}).items():
        declared_filters[filter_name] = _with_column(explicit, filter_name)

    search: dict[str, SearchFieldDefinition] = {}
    for filter_name, declared in declared_filters.items():
        column_types = [
            _column_type(resource, filter_name, column, compiled) for column in declared.columns
        ]
        if "type" not in declared.model_fields_set and column_types:
            declared = declared.model_copy(update={"type": column_types[0]})
        search[filter_name] = declared
    return search or None


def _with_column(search: SearchFieldDefinition, column: str) -> SearchFieldDefinition:
    if search.actual_field is None and not search.one_of:
        return search.model_copy(update={"actual_field": column})
    return search


def _column_type(
    resource: CompiledResource,
    filter_name: str,
    path: str,
    compiled: Mapping[str, CompiledResource],
) -> FieldType:
    """Follow a (possibly dotted) filter column and return the type it ends on."""
    *hops, column = path.split(".")
    current = resource
    for hop in hops:
        relationship = current.relationship(hop)
        if relationship is None or relationship.kind == RelationshipKind.BELONGS_TO_POLYMORPHIC:
            raise _unknown_search_field(resource.name, filter_name, path)
        current = compiled[relationship.target]
    if column == "id":
        return FieldType.ID
    field_def = current.fields.get(column)
    if field_def is None or field_def.computed:
        raise _unknown_search_field(resource.name, filter_name, path)
    return field_def.type


def _unknown_search_field(name: str, filter_name: str, path: str) -> RegistryError:
    return RegistryError(
        f"filter {filter_name} of {name} refers to unknown column {path}",
        resource_type=name,
        field=filter_name,
        rule="unknown_search_field",
    )


def _require_registered(
    name: str, field_name: str, target: str, definitions: Mapping[str, ResourceDefinition]
) -> None:
    if target not in definitions:
        raise RegistryError(
            f"{name}.{field_name} points at unregistered resource {target}",
            resource_type=name,
            field=field_name,
            rule="unknown_target",
        )
