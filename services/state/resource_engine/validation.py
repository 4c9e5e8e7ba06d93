"""Attribute and filter validation compiled from field definitions."""

from __future__ import annotations

import copy
from datetime import date, datetime
from enum import Enum
from typing import Annotated, Any, Mapping

from pydantic import BeforeValidator, Field, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from packages.relata_shared.errors import Violation
from services.state.resource_engine.definitions import FieldDefinition, FieldType


class ValidationMode(str, Enum):
    """FULL checks required fields and fills defaults; PARTIAL checks only what is given."""

    FULL = "full"
    PARTIAL = "partial"


def _coerce_id(value: object) -> object:
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return value


IdValue = Annotated[str, BeforeValidator(_coerce_id), Field(min_length=1)]

_PYTHON_TYPES: dict[FieldType, Any] = {
    FieldType.STRING: str,
    FieldType.NUMBER: float,
    FieldType.INTEGER: int,
    FieldType.BOOLEAN: bool,
    FieldType.ID: IdValue,
    FieldType.DATE: date,
    FieldType.DATETIME: datetime,
    FieldType.OBJECT: dict[str, Any],
    FieldType.ARRAY: list[Any],
}


def _as_list(value: object) -> object:
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def compile_field(
    field: FieldDefinition, *, length: tuple[int, int | None] | None = None
) -> TypeAdapter[Any]:
    """Build the pydantic adapter enforcing one field's type and bounds.

    With ``length`` the adapter accepts a list of such values (a lone scalar
    counts as a one-item list) holding between ``length[0]`` and ``length[1]``
    items.
    """
    item = _value_type(field)
    if length is None:
        return TypeAdapter(item)
    low, high = length
    return TypeAdapter(
        Annotated[
            list[item],  # type: ignore[valid-type]
            BeforeValidator(_as_list),
            Field(min_length=low, max_length=high),
        ]
    )


def _value_type(field: FieldDefinition) -> Any:
    base = _PYTHON_TYPES[field.type]
    bounds: dict[str, Any] = {}
    if field.type in (FieldType.STRING, FieldType.ARRAY):
        if field.min is not None:
            bounds["min_length"] = int(field.min)
        if field.max is not None:
            bounds["max_length"] = int(field.max)
    elif field.type in (FieldType.NUMBER, FieldType.INTEGER):
        if field.min is not None:
            bounds["ge"] = field.min
        if field.max is not None:
            bounds["le"] = field.max
    if bounds:
        return Annotated[base, Field(**bounds)]
    return base


class AttributeValidator:
    """Validate attribute bags against one resource's compiled field set.

    Violations name the offending input path: ``<prefix>.<field>`` unless
    ``field_paths`` maps the field elsewhere (foreign-key columns report the
    relationship linkage they came from). Fields named in ``lengths`` take a
    list of values instead of one.
    """

    def __init__(
        self,
        fields: Mapping[str, FieldDefinition],
        *,
        prefix: str = "data.attributes",
        field_paths: Mapping[str, str] | None = None,
        lengths: Mapping[str, tuple[int, int | None]] | None = None,
    ) -> None:
        self._fields = dict(fields)
        self._prefix = prefix
        self._field_paths = dict(field_paths or {})
        lengths = lengths or {}
        self._adapters = {
            name: compile_field(field, length=lengths.get(name))
            for name, field in self._fields.items()
            if not field.computed
        }

    def path(self, name: str) -> str:
        return self._field_paths.get(name, f"{self._prefix}.{name}")

    def validate(
        self, attributes: Mapping[str, Any], mode: ValidationMode
    ) -> tuple[dict[str, Any], list[Violation]]:
        """Return coerced values and every violation found.

        Computed fields are skipped; callers strip them before validation.
        """
        validated: dict[str, Any] = {}
        violations: list[Violation] = []

        for name, value in attributes.items():
            field = self._fields.get(name)
            if field is None:
                violations.append(
                    Violation(
                        field=self.path(name),
                        rule="field_not_allowed",
                        message=f"Field '{name}' is not allowed",
                    )
                )
                continue
            if field.computed:
                continue
            if value is None:
                if field.accepts_null:
                    validated[name] = None
                else:
                    violations.append(
                        Violation(
                            field=self.path(name),
                            rule="not_nullable",
                            message=f"Field '{name}' cannot be null",
                        )
                    )
                continue
            try:
                coerced = self._adapters[name].validate_python(value)
            except PydanticValidationError as exc:
                first = exc.errors()[0]
                violations.append(
                    Violation(field=self.path(name), rule=first["type"], message=first["msg"])
                )
                continue
            if field.choices is not None and coerced not in field.choices:
                allowed = ", ".join(str(choice) for choice in field.choices)
                violations.append(
                    Violation(
                        field=self.path(name),
                        rule="choices",
                        message=f"Field '{name}' must be one of: {allowed}",
                    )
                )
                continue
            validated[name] = coerced

        if mode == ValidationMode.FULL:
            for name, field in self._fields.items():
                if name in attributes or field.computed:
                    continue
                if field.has_default:
                    validated[name] = copy.deepcopy(field.default)
                elif field.required:
                    violations.append(
                        Violation(
                            field=self.path(name),
                            rule="required",
                            message=f"Field '{name}' is required",
                        )
                    )

        return validated, violations
