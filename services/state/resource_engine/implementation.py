"""Concrete resource service over the resource engine."""

from __future__ import annotations

from typing import Any, Callable, TypeVar

from packages.relata_shared.envelope import (
    RequestMeta,
    Result,
    empty,
    failure,
    success,
    validate_meta,
)
from packages.relata_shared.errors import exception_to_error
from packages.relata_shared.logging import get_logger, operation_instrumented
from resources.substrates.sql import is_sql_error, normalize_sql_error
from services.state.resource_engine.config import SERVICE_COMPONENT_ID
from services.state.resource_engine.domain import Document, RelationshipData
from services.state.resource_engine.engine import ResourceEngine
from services.state.resource_engine.errors import EngineError
from services.state.resource_engine.interfaces import TransactionHandle
from services.state.resource_engine.service import DocumentInput, QueryInput, ResourceService

_LOGGER = get_logger(__name__)

T = TypeVar("T")

_ID_FIELDS = ("resource_type", "resource_id", "relationship")


class DefaultResourceService(ResourceService):
    """Result-returning facade; engine exceptions become failed results."""

    def __init__(self, *, engine: ResourceEngine) -> None:
        self._engine = engine

    @property
    def engine(self) -> ResourceEngine:
        return self._engine

    @operation_instrumented(logger=_LOGGER, component_id=SERVICE_COMPONENT_ID, id_fields=_ID_FIELDS)
    def query(
        self,
        *,
        meta: RequestMeta,
        resource_type: str,
        query: QueryInput = None,
        transaction: TransactionHandle | None = None,
    ) -> Result[Document]:
        """Return one page of resources."""
        return self._call(
            meta,
            lambda: self._engine.query(resource_type, query, meta=meta, transaction=transaction),
        )

    @operation_instrumented(logger=_LOGGER, component_id=SERVICE_COMPONENT_ID, id_fields=_ID_FIELDS)
    def get(
        self,
        *,
        meta: RequestMeta,
        resource_type: str,
        resource_id: str,
        query: QueryInput = None,
        transaction: TransactionHandle | None = None,
    ) -> Result[Document]:
        """Return one resource."""
        return self._call(
            meta,
            lambda: self._engine.get(
                resource_type, resource_id, query, meta=meta, transaction=transaction
            ),
        )

    @operation_instrumented(logger=_LOGGER, component_id=SERVICE_COMPONENT_ID, id_fields=_ID_FIELDS)
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
        return self._call(
            meta,
            lambda: self._engine.post(
                resource_type,
                document,
                query,
                meta=meta,
                transaction=transaction,
                return_full_record=return_full_record,
            ),
        )

    @operation_instrumented(logger=_LOGGER, component_id=SERVICE_COMPONENT_ID, id_fields=_ID_FIELDS)
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
        """Replace or create one resource."""
        return self._call(
            meta,
            lambda: self._engine.put(
                resource_type,
                document,
                query,
                resource_id=resource_id,
                meta=meta,
                transaction=transaction,
                return_full_record=return_full_record,
            ),
        )

    @operation_instrumented(logger=_LOGGER, component_id=SERVICE_COMPONENT_ID, id_fields=_ID_FIELDS)
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
        """Update one resource."""
        return self._call(
            meta,
            lambda: self._engine.patch(
                resource_type,
                document,
                query,
                resource_id=resource_id,
                meta=meta,
                transaction=transaction,
                return_full_record=return_full_record,
            ),
        )

    @operation_instrumented(logger=_LOGGER, component_id=SERVICE_COMPONENT_ID, id_fields=_ID_FIELDS)
    def delete(
        self,
        *,
        meta: RequestMeta,
        resource_type: str,
        resource_id: str,
        transaction: TransactionHandle | None = None,
    ) -> Result[None]:
        """Delete one resource."""
        return self._call_empty(
            meta,
            lambda: self._engine.delete(
                resource_type, resource_id, meta=meta, transaction=transaction
            ),
        )

    @operation_instrumented(logger=_LOGGER, component_id=SERVICE_COMPONENT_ID, id_fields=_ID_FIELDS)
    def get_relationship(
        self,
        *,
        meta: RequestMeta,
        resource_type: str,
        resource_id: str,
        relationship: str,
        transaction: TransactionHandle | None = None,
    ) -> Result[RelationshipData]:
        """Return one relationship's linkage."""
        return self._call(
            meta,
            lambda: self._engine.get_relationship(
                resource_type, resource_id, relationship, meta=meta, transaction=transaction
            ),
        )

    @operation_instrumented(logger=_LOGGER, component_id=SERVICE_COMPONENT_ID, id_fields=_ID_FIELDS)
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
        """Return related resources."""
        return self._call(
            meta,
            lambda: self._engine.get_related(
                resource_type, resource_id, relationship, query, meta=meta, transaction=transaction
            ),
        )

    @operation_instrumented(logger=_LOGGER, component_id=SERVICE_COMPONENT_ID, id_fields=_ID_FIELDS)
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
        """Add relationship members."""
        return self._call_empty(
            meta,
            lambda: self._engine.post_relationship(
                resource_type, resource_id, relationship, data, meta=meta, transaction=transaction
            ),
        )

    @operation_instrumented(logger=_LOGGER, component_id=SERVICE_COMPONENT_ID, id_fields=_ID_FIELDS)
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
        """Replace relationship linkage."""
        return self._call_empty(
            meta,
            lambda: self._engine.patch_relationship(
                resource_type, resource_id, relationship, data, meta=meta, transaction=transaction
            ),
        )

    @operation_instrumented(logger=_LOGGER, component_id=SERVICE_COMPONENT_ID, id_fields=_ID_FIELDS)
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
        """Remove relationship members."""
        return self._call_empty(
            meta,
            lambda: self._engine.delete_relationship(
                resource_type, resource_id, relationship, data, meta=meta, transaction=transaction
            ),
        )

    def _call(self, meta: RequestMeta, operation: Callable[[], T]) -> Result[T]:
        """Run one engine call and fold expected failures into a failed result."""
        try:
            validate_meta(meta)
        except ValueError as exc:
            return failure(meta=meta, errors=[exception_to_error(exc)])
        try:
            payload = operation()
        except EngineError as exc:
            return failure(meta=meta, errors=[exc.to_error()])
        except Exception as exc:
            if is_sql_error(exc):
                _LOGGER.warning("storage call failed: %s", type(exc).__name__)
                return failure(meta=meta, errors=[normalize_sql_error(exc)])
            raise
        return success(meta=meta, payload=payload)

    def _call_empty(self, meta: RequestMeta, operation: Callable[[], None]) -> Result[None]:
        result = self._call(meta, operation)
        if not result.ok:
            return result
        return empty(meta=meta)
