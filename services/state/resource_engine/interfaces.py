"""Protocol interfaces the resource engine depends on."""

from __future__ import annotations

from typing import Any, Mapping, Protocol, Sequence

from services.state.resource_engine.definitions import SearchFieldDefinition
from services.state.resource_engine.domain import Document, QueryParams, ResourceObject


class TransactionHandle(Protocol):
    """Unit of work that groups storage calls; SQLAlchemy sessions qualify."""

    def commit(self) -> None:
        """Make every write performed through this handle durable."""

    def rollback(self) -> None:
        """Discard every write performed through this handle."""

    def close(self) -> None:
        """Release the handle's connection."""


class StorageAdapter(Protocol):
    """Persistence operations for resources and pivot rows.

    Write methods always receive the active transaction. Read methods use it
    when given and open a short-lived one otherwise.
    """

    def new_transaction(self) -> TransactionHandle:
        """Open a new unit of work."""

    def exists(
        self, resource_type: str, resource_id: str, *, transaction: TransactionHandle | None = None
    ) -> bool:
        """Return True when the record exists."""

    def get(
        self,
        resource_type: str,
        resource_id: str,
        query: QueryParams,
        *,
        transaction: TransactionHandle | None = None,
    ) -> Document | None:
        """Read one record with linkage and requested includes."""

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
        """Read a filtered, sorted page of records with includes.

        ``ids`` limits the candidates to those records when given.
        """

    def insert(
        self, resource_type: str, resource: ResourceObject, *, transaction: TransactionHandle
    ) -> Document:
        """Create one record and return it with its assigned id."""

    def replace(
        self,
        resource_type: str,
        resource_id: str,
        resource: ResourceObject,
        *,
        is_create: bool,
        transaction: TransactionHandle,
    ) -> Document:
        """Overwrite every stored column, creating the record when ``is_create``."""

    def merge(
        self,
        resource_type: str,
        resource_id: str,
        resource: ResourceObject,
        *,
        transaction: TransactionHandle,
    ) -> Document:
        """Update only the given columns."""

    def delete(
        self, resource_type: str, resource_id: str, *, transaction: TransactionHandle
    ) -> None:
        """Remove one record."""

    def list_links(
        self,
        through: str,
        *,
        owner_key: str,
        owner_id: str,
        other_key: str,
        transaction: TransactionHandle | None = None,
    ) -> list[str]:
        """Return ``other_key`` values of pivot rows belonging to the owner."""

    def insert_links(
        self,
        through: str,
        rows: Sequence[Mapping[str, Any]],
        *,
        transaction: TransactionHandle,
    ) -> None:
        """Insert pivot rows."""

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
        """Delete the owner's pivot rows, optionally only those naming ``other_ids``."""
