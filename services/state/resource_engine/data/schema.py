"""SQLAlchemy table definitions derived from the schema registry."""

from __future__ import annotations

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    Float,
    Integer,
    MetaData,
    String,
    Table,
    UniqueConstraint,
)
from sqlalchemy.types import TypeEngine

from services.state.resource_engine.definitions import FieldType
from services.state.resource_engine.registry import CompiledResource, SchemaRegistry

_COLUMN_TYPES: dict[FieldType, type[TypeEngine]] = {
    FieldType.STRING: String,
    FieldType.NUMBER: Float,
    FieldType.INTEGER: Integer,
    FieldType.BOOLEAN: Boolean,
    FieldType.ID: Integer,
    FieldType.DATE: Date,
    FieldType.DATETIME: DateTime,
    FieldType.OBJECT: JSON,
    FieldType.ARRAY: JSON,
}


def build_tables(registry: SchemaRegistry, metadata: MetaData) -> dict[str, Table]:
    """Return one table per registered resource, keyed by resource name."""
    return {
        resource.name: _build_table(resource, registry, metadata)
        for resource in registry.resources()
    }


def _build_table(
    resource: CompiledResource, registry: SchemaRegistry, metadata: MetaData
) -> Table:
    columns: list[Column] = [Column("id", Integer, primary_key=True, autoincrement=True)]
    for name, field in resource.stored_fields.items():
        column_type = _COLUMN_TYPES[field.type]
        columns.append(Column(name, column_type(), nullable=not field.required))

    pairs = sorted({tuple(sorted(pair)) for pair in registry.pivot_pairs(resource.name)})
    constraints = [
        UniqueConstraint(*pair, name=f"uq_{resource.table_name}_{'_'.join(pair)}")
        for pair in pairs
    ]
    return Table(resource.table_name, metadata, *columns, *constraints)
