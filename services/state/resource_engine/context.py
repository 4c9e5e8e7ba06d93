"""Request-scoped state shared by the engine, hooks, and enrichment."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from packages.relata_shared.envelope import RequestMeta
from services.state.resource_engine.domain import Document, QueryParams
from services.state.resource_engine.interfaces import TransactionHandle
from services.state.resource_engine.registry import CompiledResource
from services.state.resource_engine.relationships import RelationshipChanges


class Method(str, Enum):
    QUERY = "query"
    GET = "get"
    POST = "post"
    PUT = "put"
    PATCH = "patch"
    DELETE = "delete"
    GET_RELATED = "getRelated"
    GET_RELATIONSHIP = "getRelationship"
    POST_RELATIONSHIP = "postRelationship"
    DELETE_RELATIONSHIP = "deleteRelationship"

    @property
    def suffix(self) -> str:
        """Stage-name suffix for verb-specific hooks, e.g. ``Put``."""
        return self.value[:1].upper() + self.value[1:]


@dataclass
class OperationContext:
    """Mutable per-call state; hooks read and adjust it in place.

    ``attributes`` and ``enrichment_type`` are only set while the
    ``enrichAttributes`` stage runs. ``state`` is scratch space for hooks.
    """

    method: Method
    resource: CompiledResource
    meta: RequestMeta | None = None
    resource_id: str | None = None
    input_document: Document | None = None
    query: QueryParams = field(default_factory=QueryParams)
    transaction: TransactionHandle | None = None
    owns_transaction: bool = False
    exists: bool | None = None
    is_create: bool = False
    original_record: Document | None = None
    attributes_to_store: dict[str, Any] = field(default_factory=dict)
    changes: RelationshipChanges = field(default_factory=RelationshipChanges)
    record: Document | None = None
    response: Document | None = None
    relationship_name: str | None = None
    attributes: dict[str, Any] | None = None
    enrichment_type: str | None = None
    state: dict[str, Any] = field(default_factory=dict)

    @property
    def resource_type(self) -> str:
        return self.resource.name
