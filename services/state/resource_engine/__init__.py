"""Resource engine native package exports."""

from packages.relata_shared.envelope import RequestMeta, Result
from packages.relata_shared.errors import ErrorCategory, ErrorDetail
from services.state.resource_engine.config import (
    SERVICE_COMPONENT_ID,
    ResourceEngineSettings,
)
from services.state.resource_engine.context import Method, OperationContext
from services.state.resource_engine.definitions import (
    BelongsToPolymorphic,
    FieldDefinition,
    FieldType,
    ManyToMany,
    RelationshipDefinition,
    ResourceDefinition,
    ReturnFullRecordPolicy,
    SearchFieldDefinition,
)
from services.state.resource_engine.domain import (
    Document,
    PageParams,
    QueryParams,
    RelationshipData,
    ResourceIdentifier,
    ResourceObject,
)
from services.state.resource_engine.engine import ResourceEngine
from services.state.resource_engine.errors import (
    EngineError,
    PayloadError,
    RegistryError,
    ResourceError,
    ResourceErrorKind,
    ValidationError,
)
from services.state.resource_engine.hooks import HookOptions, HookPipeline
from services.state.resource_engine.implementation import DefaultResourceService
from services.state.resource_engine.registry import SchemaRegistry
from services.state.resource_engine.service import ResourceService, build_resource_service

__all__ = [
    "SERVICE_COMPONENT_ID",
    "BelongsToPolymorphic",
    "DefaultResourceService",
    "Document",
    "EngineError",
    "ErrorCategory",
    "ErrorDetail",
    "FieldDefinition",
    "FieldType",
    "HookOptions",
    "HookPipeline",
    "ManyToMany",
    "Method",
    "OperationContext",
    "PageParams",
    "PayloadError",
    "QueryParams",
    "RegistryError",
    "RelationshipData",
    "RelationshipDefinition",
    "RequestMeta",
    "ResourceDefinition",
    "ResourceEngine",
    "ResourceEngineSettings",
    "ResourceError",
    "ResourceErrorKind",
    "ResourceIdentifier",
    "ResourceObject",
    "ResourceService",
    "Result",
    "ReturnFullRecordPolicy",
    "SchemaRegistry",
    "SearchFieldDefinition",
    "ValidationError",
    "build_resource_service",
]
