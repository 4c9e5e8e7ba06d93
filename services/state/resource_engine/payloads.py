"""Structural checks for incoming documents and query parameters.

Shape problems raise ``PayloadError``; well-formed input that contradicts the
invoked operation (wrong type, unknown include path, unsortable field) raises
``ValidationError``.
"""

from __future__ import annotations

from typing import Any, Mapping

from pydantic import ValidationError as PydanticValidationError

from packages.relata_shared.errors import Violation
from services.state.resource_engine.domain import Document, QueryParams
from services.state.resource_engine.errors import PayloadError, ValidationError
from services.state.resource_engine.registry import CompiledResource, SchemaRegistry


def parse_write_document(
    raw: Document | Mapping[str, Any],
    *,
    resource_type: str,
    registry: SchemaRegistry,
) -> Document:
    """Check a write payload and return it as a ``Document``."""
    if isinstance(raw, Document):
        raw = raw.model_dump(exclude_unset=True)
    if not isinstance(raw, Mapping):
        raise PayloadError(
            "Request body must be an object",
            path="",
            expected="object",
            received=type(raw).__name__,
        )
    if "included" in raw:
        raise PayloadError(
            "Write requests cannot carry an included array",
            path="included",
            expected="absent",
            received="included",
        )

    data = raw.get("data")
    if not isinstance(data, Mapping):
        raise PayloadError(
            "Document must contain a data object",
            path="data",
            expected="object",
            received=_kind(data),
        )
    type_name = data.get("type")
    if not isinstance(type_name, str) or not type_name:
        raise PayloadError(
            "data.type must be a non-empty string",
            path="data.type",
            expected="string",
            received=_kind(type_name),
        )
    if type_name != resource_type:
        raise ValidationError.single(
            field="data.type",
            rule="resource_type_match",
            message=f"Resource type '{type_name}' does not match '{resource_type}'",
        )
    if "id" in data and not _is_id(data["id"]):
        raise PayloadError(
            "data.id must be a string or integer",
            path="data.id",
            expected="string",
            received=_kind(data["id"]),
        )
    if not isinstance(data.get("attributes", {}), Mapping):
        raise PayloadError(
            "data.attributes must be an object",
            path="data.attributes",
            expected="object",
            received=_kind(data.get("attributes")),
        )
    relationships = data.get("relationships", {})
    if not isinstance(relationships, Mapping):
        raise PayloadError(
            "data.relationships must be an object",
            path="data.relationships",
            expected="object",
            received=_kind(relationships),
        )
    for name, entry in relationships.items():
        _check_relationship(str(name), entry, registry)

    return Document.model_validate({"data": data, "meta": raw.get("meta") or {}})


def parse_linkage(raw: Any, *, path: str, registry: SchemaRegistry) -> Any:
    """Check relationship-endpoint linkage (``{"data": ...}`` or bare data)."""
    if isinstance(raw, Mapping) and "data" in raw:
        raw = raw["data"]
    _check_linkage(raw, path=path, registry=registry)
    return raw


def parse_query_params(raw: QueryParams | Mapping[str, Any] | None) -> QueryParams:
    if raw is None:
        return QueryParams()
    if isinstance(raw, QueryParams):
        return raw
    try:
        return QueryParams.model_validate(dict(raw))
    except PydanticValidationError as exc:
        violations = [
            Violation(
                field=".".join(str(part) for part in err["loc"]),
                rule=err["type"],
                message=err["msg"],
            )
            for err in exc.errors()
        ]
        raise ValidationError("Invalid query parameters", violations=violations) from None


def check_read_params(
    params: QueryParams,
    *,
    resource: CompiledResource,
    registry: SchemaRegistry,
    include_depth_limit: int,
) -> None:
    """Reject include paths, fieldsets, and sort keys the resource cannot serve."""
    violations: list[Violation] = []
    for path in params.include:
        violations.extend(_check_include(path, resource, registry, include_depth_limit))
    for type_name, names in params.fields.items():
        if not registry.has(type_name):
            violations.append(
                Violation(
                    field=f"fields.{type_name}",
                    rule="valid_resource_type",
                    message=f"Unknown resource type '{type_name}'",
                )
            )
            continue
        known = registry.resource(type_name).fields
        for name in names:
            if name not in known:
                violations.append(
                    Violation(
                        field=f"fields.{type_name}",
                        rule="field_not_allowed",
                        message=f"Field '{name}' is not a field of {type_name}",
                    )
                )
    for key in params.sort:
        name = key[1:] if key.startswith("-") else key
        if name != "id" and name not in resource.sortable_fields:
            violations.append(
                Violation(
                    field="sort",
                    rule="sortable_field",
                    message=f"Field '{name}' is not sortable",
                )
            )
    if violations:
        raise ValidationError("Invalid query parameters", violations=violations)


def _check_include(
    path: str,
    resource: CompiledResource,
    registry: SchemaRegistry,
    depth_limit: int,
) -> list[Violation]:
    segments = path.split(".")
    if len(segments) > depth_limit:
        return [
            Violation(
                field="include",
                rule="include_depth",
                message=f"Include path '{path}' is deeper than {depth_limit}",
            )
        ]
    current = [resource]
    for segment in segments:
        next_resources = []
        for owner in current:
            relationship = owner.relationship(segment)
            if relationship is None:
                return [
                    Violation(
                        field="include",
                        rule="valid_relationship",
                        message=f"'{segment}' is not a relationship of {owner.name}",
                    )
                ]
            next_resources.extend(registry.resource(t) for t in relationship.target_types)
        current = next_resources
    return []


def _check_relationship(name: str, entry: Any, registry: SchemaRegistry) -> None:
    path = f"data.relationships.{name}"
    if not isinstance(entry, Mapping):
        raise PayloadError(
            f"Relationship '{name}' must be an object",
            path=path,
            expected="object",
            received=_kind(entry),
        )
    if "data" not in entry:
        return
    _check_linkage(entry["data"], path=f"{path}.data", registry=registry)


def _check_linkage(data: Any, *, path: str, registry: SchemaRegistry) -> None:
    if data is None:
        return
    if isinstance(data, list):
        for index, item in enumerate(data):
            _check_identifier(item, path=f"{path}[{index}]", registry=registry)
        return
    _check_identifier(data, path=path, registry=registry)


def _check_identifier(item: Any, *, path: str, registry: SchemaRegistry) -> None:
    if not isinstance(item, Mapping):
        raise PayloadError(
            "Resource identifier must be an object",
            path=path,
            expected="object",
            received=_kind(item),
        )
    type_name = item.get("type")
    if not isinstance(type_name, str) or not type_name:
        raise PayloadError(
            "Resource identifier needs a type",
            path=f"{path}.type",
            expected="string",
            received=_kind(type_name),
        )
    if not _is_id(item.get("id")) or item.get("id") == "":
        raise PayloadError(
            "Resource identifier needs an id",
            path=f"{path}.id",
            expected="string",
            received=_kind(item.get("id")),
        )
    if not registry.has(type_name):
        raise ValidationError.single(
            field=f"{path}.type",
            rule="valid_resource_type",
            message=f"Unknown resource type '{type_name}'",
        )


def _is_id(value: Any) -> bool:
    return isinstance(value, str) or (isinstance(value, int) and not isinstance(value, bool))


def _kind(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, Mapping):
        return "object"
    if isinstance(value, list):
        return "array"
    return type(value).__name__
