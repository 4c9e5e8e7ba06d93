"""Authoritative in-process Python API for the resource engine."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Mapping

from packages.relata_shared.config import RelataSettings
from packages.relata_shared.envelope import RequestMeta, Result
from services.state.resource_engine.domain import Document, QueryParams, RelationshipData
from services.state.resource_engine.hooks import HookPipeline
from services.state.resource_engine.interfaces import StorageAdapter, TransactionHandle
from services.state.resource_engine.registry import SchemaRegistry

DocumentInput = Document | Mapping[str, Any]
QueryInput = QueryParams | Mapping[str, Any] | None


class ResourceService(ABC):
    """Public API for reading and writing registered resources."""

    @abstractmethod
    def query(
        self,
        *,
        meta: RequestMeta,
        resource_type: str,
        query: QueryInput = None,
        transaction: TransactionHandle | None = None,
    ) -> Result[Document]:
        """Return one filtered, sorted page of resources."""

    @abstractmethod
    def get(
        self,
        *,
        meta: RequestMeta,
        resource_type: str,
        resource_id: str,
        query: QueryInput = None,
        transaction: TransactionHandle | None = None,
    ) -> Result[Document]:
        """Return one resource with requested includes."""

    @abstractmethod
    def post(
        self,
        *,
        meta: RequestMeta,
        resource_type: str,
        document: DocumentInput,
        query: QueryInput = None,
        transaction: TransactionHandle | None = None,
        return_full_record: bool | None = None,
    ) -> Result[Document]:
        """Create one resource."""

    @abstractmethod
    def put(
        self,
        *,
        meta: RequestMeta,
        resource_type: str,
        document: DocumentInput,
        resource_id: str | None = None,
        query: QueryInput = None,
        transaction: TransactionHandle | None = None,
        return_full_record: bool | None = None,
    ) -> Result[Document]:
        """Replace (or create) one resource; omitted relationships are cleared."""

    @abstractmethod
    def patch(
        self,
        *,
        meta: RequestMeta,
        resource_type: str,
        document: DocumentInput,
        resource_id: str | None = None,
        query: QueryInput = None,
        transaction: TransactionHandle | None = None,
        return_full_record: bool | None = None,
    ) -> Result[Document]:
        """Update given attributes and relationships of one resource."""

    @abstractmethod
    def delete(
        self,
        *,
        meta: RequestMeta,
        resource_type: str,
        resource_id: str,
        transaction: TransactionHandle | None = None,
    ) -> Result[None]:
        """Delete one resource."""

    @abstractmethod
    def get_relationship(
        self,
        *,
        meta: RequestMeta,
        resource_type: str,
        resource_id: str,
        relationship: str,
        transaction: TransactionHandle | None = None,
    ) -> Result[RelationshipData]:
        """Return the linkage of one relationship."""

    @abstractmethod
    def get_related(
        self,
        *,
        meta: RequestMeta,
        resource_type: str,
        resource_id: str,
        relationship: str,
        query: QueryInput = None,
        transaction: TransactionHandle | None = None,
    ) -> Result[Document]:
        """Return the resources one relationship points at."""

    @abstractmethod
    def post_relationship(
        self,
        *,
        meta: RequestMeta,
        resource_type: str,
        resource_id: str,
        relationship: str,
        data: Any,
        transaction: TransactionHandle | None = None,
    ) -> Result[None]:
        """Add members to one to-many relationship."""

    @abstractmethod
    def patch_relationship(
        self,
        *,
        meta: RequestMeta,
        resource_type: str,
        resource_id: str,
        relationship: str,
        data: Any,
        transaction: TransactionHandle | None = None,
    ) -> Result[None]:
        """Replace the linkage of one relationship."""

    @abstractmethod
    def delete_relationship(
        self,
        *,
        meta: RequestMeta,
        resource_type: str,
        resource_id: str,
        relationship: str,
        data: Any,
        transaction: TransactionHandle | None = None,
    ) -> Result[None]:
        """Remove members from one to-many relationship."""


def build_resource_service(
    *,
    settings: RelataSettings,
    registry: SchemaRegistry,
    hooks: HookPipeline | None = None,
    storage: StorageAdapter | None = None,
    configure_logs: bool = False,
) -> ResourceService:
    """Build the default resource service from typed settings.

    With ``configure_logs`` the root logger is set up from ``settings.logging``
    first; process entry points pass it, embedding applications usually do not.
    """
    from packages.relata_shared.logging import configure_logging_from_settings
    from services.state.resource_engine.config import resolve_resource_engine_settings
    from services.state.resource_engine.data import ResourceSqlRuntime
    from services.state.resource_engine.engine import ResourceEngine
    from services.state.resource_engine.implementation import DefaultResourceService

    if configure_logs:
        configure_logging_from_settings(settings)
    if storage is None:
        storage = ResourceSqlRuntime.from_settings(settings, registry=registry).storage
    engine = ResourceEngine(
        registry=registry,
        storage=storage,
        settings=resolve_resource_engine_settings(settings),
        hooks=hooks,
    )
    return DefaultResourceService(engine=engine)
