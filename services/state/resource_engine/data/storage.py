"""SQL storage adapter for registry-defined resources.

Rows hold every stored attribute plus the foreign-key columns of to-one
relationships. Reads project those columns out of ``attributes`` into
relationship linkage, and fill to-many linkage from pivot tables and child
tables. Integer primary keys are exchanged as strings.
"""

from __future__ import annotations

import math
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, Mapping, Sequence, cast

from sqlalchemy import (
    Engine,
    Integer,
    MetaData,
    Table,
    and_,
    delete,
    exists,
    func,
    insert,
    or_,
    select,
    update,
)
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.sql.elements import ColumnElement

from packages.relata_shared.logging import get_logger
from resources.substrates.sql import create_session_factory, transactional_session
from services.state.resource_engine.data.schema import build_tables
from services.state.resource_engine.definitions import (
    LIST_OPERATORS,
    FieldType,
    RelationshipKind,
    SearchFieldDefinition,
)
from services.state.resource_engine.domain import (
    Document,
    QueryParams,
    RelationshipData,
    ResourceIdentifier,
    ResourceObject,
)
from services.state.resource_engine.errors import (
    ResourceError,
    ResourceErrorKind,
    ValidationError,
)
from services.state.resource_engine.interfaces import TransactionHandle
from services.state.resource_engine.registry import (
    CompiledRelationship,
    CompiledResource,
    SchemaRegistry,
)

_LOGGER = get_logger(__name__)


class SqlStorageAdapter:
    """Storage adapter over SQLAlchemy Core tables; transactions are sessions."""

    def __init__(
        self,
        *,
        registry: SchemaRegistry,
        engine: Engine,
        session_factory: sessionmaker[Session] | None = None,
        metadata: MetaData | None = None,
    ) -> None:
        self._registry = registry.freeze()
        self._engine = engine
        self._sessions = session_factory or create_session_factory(engine)
        self._metadata = metadata or MetaData()
        self._tables = build_tables(self._registry, self._metadata)

    @property
    def tables(self) -> Mapping[str, Table]:
        return self._tables

    def create_all(self) -> None:
        """Create every resource table that does not exist yet."""
        self._metadata.create_all(self._engine)

    def new_transaction(self) -> Session:
        return self._sessions()

    def exists(
        self, resource_type: str, resource_id: str, *, transaction: TransactionHandle | None = None
    ) -> bool:
        table = self._table(resource_type)
        key = _coerce_key(table, resource_id)
        if key is None:
            return False
        with self._session(transaction) as session:
            found = session.execute(
                select(table.c.id).where(table.c.id == key).limit(1)
            ).first()
            return found is not None

    def get(
        self,
        resource_type: str,
        resource_id: str,
        query: QueryParams,
        *,
        transaction: TransactionHandle | None = None,
    ) -> Document | None:
        resource = self._registry.resource(resource_type)
        table = self._table(resource_type)
        key = _coerce_key(table, resource_id)
        if key is None:
            return None
        with self._session(transaction) as session:
            row = session.execute(select(table).where(table.c.id == key)).mappings().one_or_none()
            if row is None:
                return None
            primary = self._to_resource(resource, row, session)
            included = self._load_includes([primary], query.include, session)
            return Document(data=primary, included=included)

    def query(
        self,
        resource_type: str,
        query: QueryParams,
        search_fields: Mapping[str, SearchFieldDefinition],
        *,
        page_size: int,
        ids: Sequence[str] | None = None,
        transaction: TransactionHandle | None = None,
    ) -> Document:
        """Read one page of matching rows; ``ids`` restricts the candidates."""
        resource = self._registry.resource(resource_type)
        table = self._table(resource_type)
        clauses = [
            self._filter_clause(resource, table, search_fields[name], value)
            for name, value in query.filters.items()
        ]
        if ids is not None:
            keys = [key for key in (_coerce_key(table, value) for value in ids) if key is not None]
            clauses.append(table.c.id.in_(keys))
        number = query.page.number

        with self._session(transaction) as session:
            total = session.execute(
                select(func.count()).select_from(table).where(*clauses)
            ).scalar_one()
            stmt = (
                select(table)
                .where(*clauses)
                .order_by(*_order_by(table, query.sort))
                .offset((number - 1) * page_size)
                .limit(page_size)
            )
            rows = session.execute(stmt).mappings().all()
            primaries = [self._to_resource(resource, row, session) for row in rows]
            included = self._load_includes(primaries, query.include, session)

        return Document(
            data=primaries,
            included=included,
            meta={
                "page": {
                    "number": number,
                    "size": page_size,
                    "total": int(total),
                    "page_count": math.ceil(total / page_size) if total else 0,
                }
            },
        )

    def insert(
        self, resource_type: str, resource: ResourceObject, *, transaction: TransactionHandle
    ) -> Document:
        compiled = self._registry.resource(resource_type)
        table = self._table(resource_type)
        values = _row_values(table, resource.attributes)
        if resource.id is not None:
            values["id"] = _require_key(table, resource.id)
        session = _as_session(transaction)
        with _conflicts(resource_type, resource.id):
            result = session.execute(insert(table).values(**values))
        new_id = str(result.inserted_primary_key[0])
        return self._reread(compiled, new_id, session)

    def replace(
        self,
        resource_type: str,
        resource_id: str,
        resource: ResourceObject,
        *,
        is_create: bool,
        transaction: TransactionHandle,
    ) -> Document:
        compiled = self._registry.resource(resource_type)
        table = self._table(resource_type)
        key = _require_key(table, resource_id)
        values = _row_values(
            table,
            {name: resource.attributes.get(name) for name in compiled.stored_fields},
        )
        session = _as_session(transaction)
        with _conflicts(resource_type, resource_id):
            if is_create:
                session.execute(insert(table).values(id=key, **values))
            else:
                session.execute(update(table).where(table.c.id == key).values(**values))
        return self._reread(compiled, resource_id, session)

    def merge(
        self,
        resource_type: str,
        resource_id: str,
        resource: ResourceObject,
        *,
        transaction: TransactionHandle,
    ) -> Document:
        compiled = self._registry.resource(resource_type)
        table = self._table(resource_type)
        key = _require_key(table, resource_id)
        values = _row_values(table, resource.attributes)
        session = _as_session(transaction)
        if values:
            with _conflicts(resource_type, resource_id):
                session.execute(update(table).where(table.c.id == key).values(**values))
        return self._reread(compiled, resource_id, session)

    def delete(
        self, resource_type: str, resource_id: str, *, transaction: TransactionHandle
    ) -> None:
        """Delete the row and every pivot row naming it on either side."""
        table = self._table(resource_type)
        key = _require_key(table, resource_id)
        session = _as_session(transaction)
        for through, column in self._pivot_references(resource_type):
            pivot = self._table(through)
            session.execute(delete(pivot).where(pivot.c[column] == _coerce(pivot.c[column], key)))
        session.execute(delete(table).where(table.c.id == key))

    def list_links(
        self,
        through: str,
        *,
        owner_key: str,
        owner_id: str,
        other_key: str,
        transaction: TransactionHandle | None = None,
    ) -> list[str]:
        pivot = self._table(through)
        with self._session(transaction) as session:
            values = session.execute(
                select(pivot.c[other_key])
                .where(pivot.c[owner_key] == _coerce(pivot.c[owner_key], owner_id))
                .order_by(pivot.c.id)
            ).scalars()
            return [str(value) for value in values if value is not None]

    def insert_links(
        self,
        through: str,
        rows: Sequence[Mapping[str, Any]],
        *,
        transaction: TransactionHandle,
    ) -> None:
        if not rows:
            return
        pivot = self._table(through)
        session = _as_session(transaction)
        with _conflicts(through, None):
            session.execute(insert(pivot), [_row_values(pivot, row) for row in rows])

    def delete_links(
        self,
        through: str,
        *,
        owner_key: str,
        owner_id: str,
        other_key: str | None = None,
        other_ids: Sequence[str] | None = None,
        transaction: TransactionHandle,
    ) -> int:
        pivot = self._table(through)
        clauses = [pivot.c[owner_key] == _coerce(pivot.c[owner_key], owner_id)]
        if other_key is not None and other_ids is not None:
            column = pivot.c[other_key]
            clauses.append(column.in_([_coerce(column, value) for value in other_ids]))
        result = _as_session(transaction).execute(delete(pivot).where(*clauses))
        return int(result.rowcount or 0)

    def _table(self, resource_type: str) -> Table:
        table = self._tables.get(resource_type)
        if table is None:
            raise ResourceError(
                f"Unknown resource type {resource_type}",
                kind=ResourceErrorKind.NOT_FOUND,
                resource_type=resource_type,
            )
        return table

    @contextmanager
    def _session(self, transaction: TransactionHandle | None) -> Iterator[Session]:
        """Use the caller's session, or a short-lived one for standalone reads."""
        if transaction is not None:
            yield _as_session(transaction)
            return
        with transactional_session(self._sessions) as session:
            yield session

    def _reread(self, resource: CompiledResource, resource_id: str, session: Session) -> Document:
        table = self._table(resource.name)
        row = (
            session.execute(select(table).where(table.c.id == _require_key(table, resource_id)))
            .mappings()
            .one()
        )
        return Document(data=self._to_resource(resource, row, session))

    def _filter_clause(
        self,
        resource: CompiledResource,
        table: Table,
        search: SearchFieldDefinition,
        value: Any,
    ) -> ColumnElement[bool]:
        clauses = [
            self._column_clause(resource, table, column, search.operator, value)
            for column in search.columns
        ]
        if len(clauses) == 1:
            return clauses[0]
        return or_(*clauses)

    def _column_clause(
        self,
        resource: CompiledResource,
        outer: Any,
        path: str,
        operator: str,
        value: Any,
    ) -> ColumnElement[bool]:
        """Compare a local column, or the column of a related row through ``EXISTS``."""
        hop, _, rest = path.partition(".")
        if not rest:
            return _compare(outer.c[hop], operator, value)
        relationship = resource.relationships[hop]
        target = self._registry.resource(relationship.target)
        inner = self._table(target.name).alias()
        matched = self._column_clause(target, inner, rest, operator, value)

        if relationship.kind == RelationshipKind.BELONGS_TO:
            assert relationship.foreign_key is not None
            return exists().where(inner.c.id == outer.c[relationship.foreign_key], matched)
        if relationship.kind == RelationshipKind.MANY_TO_MANY:
            assert relationship.through and relationship.foreign_key and relationship.other_key
            pivot = self._table(relationship.through).alias()
            return exists().where(
                pivot.c[relationship.foreign_key] == outer.c.id,
                pivot.c[relationship.other_key] == inner.c.id,
                matched,
            )
        if relationship.via is not None:
            assert relationship.type_field and relationship.id_field
            return exists().where(
                inner.c[relationship.type_field] == resource.name,
                inner.c[relationship.id_field] == outer.c.id,
                matched,
            )
        assert relationship.foreign_key is not None
        return exists().where(inner.c[relationship.foreign_key] == outer.c.id, matched)

    def _pivot_references(self, resource_type: str) -> list[tuple[str, str]]:
        references: set[tuple[str, str]] = set()
        for owner in self._registry.resources():
            for relationship in owner.relationships.values():
                if relationship.kind != RelationshipKind.MANY_TO_MANY:
                    continue
                assert relationship.through and relationship.foreign_key and relationship.other_key
                if owner.name == resource_type:
                    references.add((relationship.through, relationship.foreign_key))
                if relationship.target == resource_type:
                    references.add((relationship.through, relationship.other_key))
        return sorted(references)

    def _to_resource(
        self, resource: CompiledResource, row: Mapping[str, Any], session: Session
    ) -> ResourceObject:
        resource_id = str(row["id"])
        attributes = {
            name: _read_value(resource, name, row.get(name))
            for name in resource.stored_fields
            if name not in resource.foreign_key_columns
        }
        relationships = {
            name: self._linkage(relationship, resource, resource_id, row, session)
            for name, relationship in resource.relationships.items()
        }
        return ResourceObject(
            type=resource.name,
            id=resource_id,
            attributes=attributes,
            relationships=relationships,
        )

    def _linkage(
        self,
        relationship: CompiledRelationship,
        owner: CompiledResource,
        owner_id: str,
        row: Mapping[str, Any],
        session: Session,
    ) -> RelationshipData:
        if relationship.kind == RelationshipKind.BELONGS_TO:
            assert relationship.foreign_key is not None
            value = row.get(relationship.foreign_key)
            if value is None:
                return RelationshipData(data=None)
            return RelationshipData(data=ResourceIdentifier(type=relationship.target, id=str(value)))

        if relationship.kind == RelationshipKind.BELONGS_TO_POLYMORPHIC:
            assert relationship.type_field and relationship.id_field
            type_value = row.get(relationship.type_field)
            id_value = row.get(relationship.id_field)
            if type_value is None or id_value is None:
                return RelationshipData(data=None)
            return RelationshipData(data=ResourceIdentifier(type=str(type_value), id=str(id_value)))

        if relationship.kind == RelationshipKind.MANY_TO_MANY:
            assert relationship.through and relationship.foreign_key and relationship.other_key
            ids = self.list_links(
                relationship.through,
                owner_key=relationship.foreign_key,
                owner_id=owner_id,
                other_key=relationship.other_key,
                transaction=session,
            )
        else:
            child = self._table(relationship.target)
            if relationship.via is not None:
                assert relationship.type_field and relationship.id_field
                id_column = child.c[relationship.id_field]
                clauses = [
                    child.c[relationship.type_field] == owner.name,
                    id_column == _coerce(id_column, owner_id),
                ]
            else:
                assert relationship.foreign_key is not None
                fk_column = child.c[relationship.foreign_key]
                clauses = [fk_column == _coerce(fk_column, owner_id)]
            ids = [
                str(value)
                for value in session.execute(
                    select(child.c.id).where(and_(*clauses)).order_by(child.c.id)
                ).scalars()
            ]
        return RelationshipData(
            data=[ResourceIdentifier(type=relationship.target, id=value) for value in ids]
        )

    def _load_includes(
        self,
        primaries: Sequence[ResourceObject],
        paths: Sequence[str],
        session: Session,
    ) -> list[ResourceObject]:
        """Follow each dotted include path; return the distinct related resources."""
        seen = {item.identifier for item in primaries}
        loaded: dict[ResourceIdentifier, ResourceObject] = {}
        included: list[ResourceObject] = []

        for path in paths:
            frontier = list(primaries)
            for segment in path.split("."):
                wanted: list[ResourceIdentifier] = []
                for item in frontier:
                    entry = item.relationships.get(segment)
                    if entry is None:
                        continue
                    wanted.extend(i for i in entry.identifiers if i not in wanted)
                self._fetch_missing(wanted, loaded, session)
                frontier = [loaded[i] for i in wanted if i in loaded]
                for item in frontier:
                    if item.identifier not in seen:
                        seen.add(item.identifier)
                        included.append(item)
        return included

    def _fetch_missing(
        self,
        identifiers: Sequence[ResourceIdentifier],
        loaded: dict[ResourceIdentifier, ResourceObject],
        session: Session,
    ) -> None:
        by_type: dict[str, list[str]] = {}
        for identifier in identifiers:
            if identifier not in loaded:
                by_type.setdefault(identifier.type, []).append(identifier.id)
        for type_name, ids in by_type.items():
            resource = self._registry.resource(type_name)
            table = self._table(type_name)
            keys = [key for key in (_coerce_key(table, value) for value in ids) if key is not None]
            rows = session.execute(select(table).where(table.c.id.in_(keys))).mappings().all()
            for row in rows:
                item = self._to_resource(resource, row, session)
                loaded[item.identifier] = item
            if len(rows) < len(ids):
                _LOGGER.debug("%d linked %s records are missing", len(ids) - len(rows), type_name)


def _as_session(transaction: TransactionHandle) -> Session:
    return cast(Session, transaction)


@contextmanager
def _conflicts(resource_type: str, resource_id: str | None) -> Iterator[None]:
    """Surface unique-constraint violations as resource conflicts."""
    try:
        yield
    except IntegrityError as exc:
        label = resource_type if resource_id is None else f"{resource_type} with id {resource_id}"
        raise ResourceError(
            f"{label} conflicts with an existing record",
            kind=ResourceErrorKind.CONFLICT,
            resource_type=resource_type,
            resource_id=resource_id,
        ) from exc


def _coerce(column: Any, value: Any) -> Any:
    """Convert string ids to integers for integer columns; other values pass."""
    if value is None or not isinstance(column.type, Integer) or not isinstance(value, str):
        return value
    try:
        return int(value)
    except ValueError:
        return value


def _coerce_key(table: Table, value: str) -> Any | None:
    key = _coerce(table.c.id, value)
    if isinstance(table.c.id.type, Integer) and not isinstance(key, int):
        return None
    return key


def _require_key(table: Table, value: str) -> Any:
    key = _coerce_key(table, value)
    if key is None:
        raise ValidationError.single(
            field="data.id",
            rule="id_format",
            message=f"Resource id '{value}' must be an integer",
        )
    return key


def _row_values(table: Table, attributes: Mapping[str, Any]) -> dict[str, Any]:
    return {
        name: _coerce(table.c[name], value)
        for name, value in attributes.items()
        if name in table.c and name != "id"
    }


def _read_value(resource: CompiledResource, name: str, value: Any) -> Any:
    field = resource.fields[name]
    if value is not None and field.type == FieldType.ID:
        return str(value)
    return value


def _compare(column: Any, operator: str, value: Any) -> ColumnElement[bool]:
    if value is None:
        return column.is_(None)
    if operator == "like":
        return column.icontains(value, autoescape=True)
    if operator == "startswith":
        return column.istartswith(value, autoescape=True)
    if operator == "endswith":
        return column.iendswith(value, autoescape=True)
    if operator in LIST_OPERATORS:
        values = [_coerce(column, item) for item in value]
        if operator == "between":
            low, high = values
            return column.between(low, high)
        return column.in_(values)
    value = _coerce(column, value)
    if operator == ">":
        return column > value
    if operator == ">=":
        return column >= value
    if operator == "<":
        return column < value
    if operator == "<=":
        return column <= value
    return column == value


def _order_by(table: Table, sort: Sequence[str]) -> list[Any]:
    ordering: list[Any] = []
    for key in sort:
        descending = key.startswith("-")
        column = table.c[key.lstrip("-")]
        ordering.append(column.desc() if descending else column.asc())
    if not any(key.lstrip("-") == "id" for key in sort):
        ordering.append(table.c.id.asc())
    return ordering
