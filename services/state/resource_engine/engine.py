"""Operation state machines for reading and writing resources.

Every write runs inside one transaction (joined or owned) and walks the same
stages: ``beforeProcessing``, schema validation, ``checkPermissions``,
``beforeDataCall``, the storage call, ``afterDataCall``, pivot maintenance,
the response read, and ``finish``. ``afterCommit``/``afterRollback`` fire
only for owned transactions. Reads walk ``checkPermissions``, ``beforeData``,
the storage call, ``checkDataPermissions``, ``enrichRecord``, attribute
enrichment, and ``finish``.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, Mapping

from packages.relata_shared.envelope import RequestMeta
from packages.relata_shared.errors import Violation
from packages.relata_shared.logging import fields as log_fields
from packages.relata_shared.logging import get_logger, log_context
from services.state.resource_engine.config import ResourceEngineSettings
from services.state.resource_engine.context import Method, OperationContext
from services.state.resource_engine.definitions import RelationshipKind
from services.state.resource_engine.domain import (
    Document,
    QueryParams,
    RelationshipData,
    ResourceIdentifier,
    ResourceObject,
)
from services.state.resource_engine.enrichment import AttributeEnricher
from services.state.resource_engine.errors import (
    EngineError,
    PayloadError,
    ResourceError,
    ResourceErrorKind,
    ValidationError,
)
from services.state.resource_engine.hooks import (
    AFTER_COMMIT,
    AFTER_DATA_CALL,
    AFTER_ROLLBACK,
    AFTER_SCHEMA_VALIDATE,
    BEFORE_DATA,
    BEFORE_DATA_CALL,
    BEFORE_PROCESSING,
    BEFORE_SCHEMA_VALIDATE,
    CHECK_DATA_PERMISSIONS,
    CHECK_PERMISSIONS,
    ENRICH_RECORD,
    FINISH,
    HookPipeline,
    verb_stage,
)
from services.state.resource_engine.interfaces import StorageAdapter, TransactionHandle
from services.state.resource_engine.payloads import (
    check_read_params,
    parse_linkage,
    parse_query_params,
    parse_write_document,
)
from services.state.resource_engine.pivots import PivotManager
from services.state.resource_engine.registry import (
    CompiledRelationship,
    CompiledResource,
    SchemaRegistry,
)
from services.state.resource_engine.relationships import RelationshipProcessor
from services.state.resource_engine.transactions import TransactionCoordinator
from services.state.resource_engine.validation import ValidationMode

_LOGGER = get_logger(__name__)

DocumentInput = Document | Mapping[str, Any]
QueryInput = QueryParams | Mapping[str, Any] | None


class ResourceEngine:
    """Run resource operations against a frozen registry and a storage adapter.

    Expected failures raise ``EngineError`` subclasses; owned transactions are
    rolled back before the exception leaves the engine.
    """

    def __init__(
        self,
        *,
        registry: SchemaRegistry,
        storage: StorageAdapter,
        settings: ResourceEngineSettings | None = None,
        hooks: HookPipeline | None = None,
        processor: RelationshipProcessor | None = None,
        pivots: PivotManager | None = None,
        transactions: TransactionCoordinator | None = None,
    ) -> None:
        self._registry = registry.freeze()
        self._storage = storage
        self._settings = settings or ResourceEngineSettings()
        self._hooks = hooks or HookPipeline()
        self._processor = processor or RelationshipProcessor()
        self._pivots = pivots or PivotManager(storage=storage)
        self._transactions = transactions or TransactionCoordinator(storage.new_transaction)
        self._enricher = AttributeEnricher(registry=self._registry, hooks=self._hooks)

    @property
    def registry(self) -> SchemaRegistry:
        return self._registry

    @property
    def hooks(self) -> HookPipeline:
        return self._hooks

    # Reads

    def query(
        self,
        resource_type: str,
        query: QueryInput = None,
        *,
        meta: RequestMeta | None = None,
        transaction: TransactionHandle | None = None,
    ) -> Document:
        """Return one page of resources matching the filters."""
        return self._query(resource_type, query, meta=meta, transaction=transaction)

    def _query(
        self,
        resource_type: str,
        query: QueryInput,
        *,
        meta: RequestMeta | None,
        transaction: TransactionHandle | None,
        ids: list[str] | None = None,
    ) -> Document:
        resource = self._registry.resource(resource_type)
        params = self._read_params(query, resource)

        if params.filters:
            if resource.search_validator is None:
                raise ValidationError.single(
                    field="filters",
                    rule="filtering_not_enabled",
                    message=f"Filtering is not enabled for {resource_type}",
                )
            filters, violations = resource.search_validator.validate(
                params.filters, ValidationMode.PARTIAL
            )
            if violations:
                raise ValidationError("Invalid filter parameters", violations=violations)
            params = params.model_copy(update={"filters": filters})

        page_size = params.page.size or resource.default_page_size or self._settings.default_page_size
        if page_size > self._settings.max_page_size:
            raise ValidationError.single(
                field="page.size",
                rule="max_page_size",
                message=f"Page size cannot exceed {self._settings.max_page_size}",
            )
        if not params.sort and resource.default_sort:
            params = params.model_copy(update={"sort": resource.default_sort})

        context = OperationContext(
            method=Method.QUERY,
            resource=resource,
            meta=meta,
            query=params,
            transaction=transaction,
        )
        with self._operation_log(context):
            self._run_before(CHECK_PERMISSIONS, context)
            self._run_before(BEFORE_DATA, context)
            context.record = self._storage.query(
                resource_type,
                context.query,
                resource.search_fields or {},
                page_size=page_size,
                ids=ids,
                transaction=context.transaction,
            )
            return self._finish_read(context)

    def get(
        self,
        resource_type: str,
        resource_id: str | int,
        query: QueryInput = None,
        *,
        meta: RequestMeta | None = None,
        transaction: TransactionHandle | None = None,
    ) -> Document:
        """Return one resource with requested includes."""
        resource = self._registry.resource(resource_type)
        context = OperationContext(
            method=Method.GET,
            resource=resource,
            meta=meta,
            resource_id=str(resource_id),
            query=self._read_params(query, resource),
            transaction=transaction,
        )
        with self._operation_log(context):
            return self._read_one(context)

    # Writes

    def post(
        self,
        resource_type: str,
        document: DocumentInput,
        query: QueryInput = None,
        *,
        meta: RequestMeta | None = None,
        transaction: TransactionHandle | None = None,
        return_full_record: bool | None = None,
    ) -> Document:
        """Create one resource and link its many-to-many relationships."""
        context = self._write_context(Method.POST, resource_type, document, query, meta)
        assert context.input_document is not None
        context.resource_id = _primary(context.input_document).id

        with self._write_scope(context, transaction):
            self._run_before(BEFORE_PROCESSING, context)
            self._prepare_attributes(context, ValidationMode.FULL)
            self._run_before(CHECK_PERMISSIONS, context)
            self._run_before(BEFORE_DATA_CALL, context)
            context.record = self._storage.insert(
                resource_type, self._stored_object(context), transaction=self._tx(context)
            )
            context.resource_id = _primary(context.record).id
            self._run_after(AFTER_DATA_CALL, context)
            self._apply_pivots(context)
            context.response = self._respond(context, return_full_record)
            self._run_before(FINISH, context)
        assert context.response is not None
        return context.response

    def put(
        self,
        resource_type: str,
        document: DocumentInput,
        query: QueryInput = None,
        *,
        resource_id: str | int | None = None,
        meta: RequestMeta | None = None,
        transaction: TransactionHandle | None = None,
        return_full_record: bool | None = None,
    ) -> Document:
        """Replace one resource, creating it when it does not exist.

        Relationships missing from the payload are cleared.
        """
        context = self._write_context(Method.PUT, resource_type, document, query, meta)
        context.resource_id = _resolve_id(context, resource_id)
        resource = context.resource

        with self._write_scope(context, transaction):
            self._run_before(BEFORE_PROCESSING, context)
            load_record = resource.load_record_on_put
            if load_record is None:
                load_record = self._settings.load_record_on_put
            if load_record:
                context.original_record = self._storage.get(
                    resource_type, context.resource_id, QueryParams(), transaction=self._tx(context)
                )
                context.exists = context.original_record is not None
            else:
                context.exists = self._storage.exists(
                    resource_type, context.resource_id, transaction=self._tx(context)
                )
            context.is_create = not context.exists

            self._prepare_attributes(context, ValidationMode.FULL, clear_omitted=True)
            self._run_before(CHECK_PERMISSIONS, context)
            self._run_before(BEFORE_DATA_CALL, context)
            context.record = self._storage.replace(
                resource_type,
                context.resource_id,
                self._stored_object(context),
                is_create=context.is_create,
                transaction=self._tx(context),
            )
            self._run_after(AFTER_DATA_CALL, context)
            self._apply_pivots(context)
            context.response = self._respond(context, return_full_record)
            self._run_before(FINISH, context)
        assert context.response is not None
        return context.response

    def patch(
        self,
        resource_type: str,
        document: DocumentInput,
        query: QueryInput = None,
        *,
        resource_id: str | int | None = None,
        meta: RequestMeta | None = None,
        transaction: TransactionHandle | None = None,
        return_full_record: bool | None = None,
    ) -> Document:
        """Update the given attributes and relationships of one resource."""
        context = self._write_context(Method.PATCH, resource_type, document, query, meta)
        context.resource_id = _resolve_id(context, resource_id)

        with self._write_scope(context, transaction):
            self._run_before(BEFORE_PROCESSING, context)
            context.exists = self._storage.exists(
                resource_type, context.resource_id, transaction=self._tx(context)
            )
            if not context.exists:
                raise ResourceError.not_found(resource_type, context.resource_id)
            self._prepare_attributes(context, ValidationMode.PARTIAL)
            self._run_before(CHECK_PERMISSIONS, context)
            self._run_before(BEFORE_DATA_CALL, context)
            context.record = self._storage.merge(
                resource_type,
                context.resource_id,
                self._stored_object(context),
                transaction=self._tx(context),
            )
            self._run_after(AFTER_DATA_CALL, context)
            self._apply_pivots(context)
            context.response = self._respond(context, return_full_record)
            self._run_before(FINISH, context)
        assert context.response is not None
        return context.response

    def delete(
        self,
        resource_type: str,
        resource_id: str | int,
        *,
        meta: RequestMeta | None = None,
        transaction: TransactionHandle | None = None,
    ) -> None:
        """Remove one resource."""
        context = OperationContext(
            method=Method.DELETE,
            resource=self._registry.resource(resource_type),
            meta=meta,
            resource_id=str(resource_id),
        )
        with self._write_scope(context, transaction):
            assert context.resource_id is not None
            context.exists = self._storage.exists(
                resource_type, context.resource_id, transaction=self._tx(context)
            )
            if not context.exists:
                raise ResourceError.not_found(resource_type, context.resource_id)
            self._run_before(CHECK_PERMISSIONS, context)
            self._run_before(BEFORE_DATA_CALL, context)
            self._storage.delete(resource_type, context.resource_id, transaction=self._tx(context))
            self._run_after(AFTER_DATA_CALL, context)
            self._run_before(FINISH, context)

    # Relationship endpoints

    def get_relationship(
        self,
        resource_type: str,
        resource_id: str | int,
        relationship_name: str,
        *,
        meta: RequestMeta | None = None,
        transaction: TransactionHandle | None = None,
    ) -> RelationshipData:
        """Return the linkage of one relationship."""
        resource = self._registry.resource(resource_type)
        relationship = self._relationship(resource, relationship_name)
        context = OperationContext(
            method=Method.GET_RELATIONSHIP,
            resource=resource,
            meta=meta,
            resource_id=str(resource_id),
            transaction=transaction,
            relationship_name=relationship_name,
        )
        with self._operation_log(context):
            document = self._read_one(context)
        linkage = _primary(document).relationships.get(relationship_name)
        if linkage is not None:
            return linkage
        return RelationshipData(data=[] if relationship.is_to_many else None)

    def get_related(
        self,
        resource_type: str,
        resource_id: str | int,
        relationship_name: str,
        query: QueryInput = None,
        *,
        meta: RequestMeta | None = None,
        transaction: TransactionHandle | None = None,
    ) -> Document:
        """Return the resources one relationship points at.

        A to-one relationship answers like ``get`` on its target, or with
        ``data: None`` when unset. A to-many relationship answers like
        ``query`` on the target type restricted to the linked records, so
        filters, sorting, paging and includes all apply.
        """
        resource = self._registry.resource(resource_type)
        relationship = self._relationship(resource, relationship_name)
        context = OperationContext(
            method=Method.GET_RELATED,
            resource=resource,
            meta=meta,
            resource_id=str(resource_id),
            transaction=transaction,
            relationship_name=relationship_name,
        )
        with self._operation_log(context):
            owner = self._read_one(context)
        linkage = _primary(owner).relationships.get(relationship_name)
        targets = [] if linkage is None else linkage.identifiers

        if relationship.is_to_many:
            return self._query(
                relationship.target,
                query,
                meta=meta,
                transaction=transaction,
                ids=[target.id for target in targets],
            )
        if not targets:
            return Document(data=None)
        return self.get(targets[0].type, targets[0].id, query, meta=meta, transaction=transaction)

    def post_relationship(
        self,
        resource_type: str,
        resource_id: str | int,
        relationship_name: str,
        data: Any,
        *,
        meta: RequestMeta | None = None,
        transaction: TransactionHandle | None = None,
    ) -> None:
        """Add members to a to-many relationship; present members are kept."""
        resource = self._registry.resource(resource_type)
        relationship = self._relationship(resource, relationship_name)
        targets = self._to_many_targets(relationship, data)
        context = OperationContext(
            method=Method.POST_RELATIONSHIP,
            resource=resource,
            meta=meta,
            resource_id=str(resource_id),
            relationship_name=relationship_name,
        )
        with self._write_scope(context, transaction):
            self._require_owner(context)
            self._run_before(CHECK_PERMISSIONS, context)
            self._run_before(BEFORE_DATA_CALL, context)
            if relationship.kind == RelationshipKind.MANY_TO_MANY:
                self._pivots.add(_owner_id(context), relationship, targets, transaction=self._tx(context))
            else:
                for target in targets:
                    self._point_child(context, relationship, target, linked=True)
            self._run_after(AFTER_DATA_CALL, context)
            self._run_before(FINISH, context)

    def delete_relationship(
        self,
        resource_type: str,
        resource_id: str | int,
        relationship_name: str,
        data: Any,
        *,
        meta: RequestMeta | None = None,
        transaction: TransactionHandle | None = None,
    ) -> None:
        """Remove members from a to-many relationship."""
        resource = self._registry.resource(resource_type)
        relationship = self._relationship(resource, relationship_name)
        targets = self._to_many_targets(relationship, data)
        context = OperationContext(
            method=Method.DELETE_RELATIONSHIP,
            resource=resource,
            meta=meta,
            resource_id=str(resource_id),
            relationship_name=relationship_name,
        )
        with self._write_scope(context, transaction):
            self._require_owner(context)
            self._run_before(CHECK_PERMISSIONS, context)
            self._run_before(BEFORE_DATA_CALL, context)
            if relationship.kind == RelationshipKind.MANY_TO_MANY:
                self._pivots.remove(_owner_id(context), relationship, targets, transaction=self._tx(context))
            else:
                current = self._storage.get(
                    resource_type, _owner_id(context), QueryParams(), transaction=self._tx(context)
                )
                linked = set()
                if current is not None:
                    entry = _primary(current).relationships.get(relationship_name)
                    linked = set(entry.identifiers) if entry is not None else set()
                for target in targets:
                    if target in linked:
                        self._point_child(context, relationship, target, linked=False)
            self._run_after(AFTER_DATA_CALL, context)
            self._run_before(FINISH, context)

    def patch_relationship(
        self,
        resource_type: str,
        resource_id: str | int,
        relationship_name: str,
        data: Any,
        *,
        meta: RequestMeta | None = None,
        transaction: TransactionHandle | None = None,
    ) -> None:
        """Replace one relationship through a patch carrying only that linkage."""
        resource = self._registry.resource(resource_type)
        relationship = self._relationship(resource, relationship_name)
        if relationship.kind == RelationshipKind.HAS_MANY:
            raise ValidationError.single(
                field="data",
                rule="read_only_relationship",
                message=(
                    f"Relationship '{relationship_name}' is owned by {relationship.target}; "
                    "add or remove members instead"
                ),
            )
        linkage = parse_linkage(data, path="data", registry=self._registry)
        self.patch(
            resource_type,
            {
                "data": {
                    "type": resource_type,
                    "id": str(resource_id),
                    "relationships": {relationship_name: {"data": linkage}},
                }
            },
            resource_id=resource_id,
            meta=meta,
            transaction=transaction,
            return_full_record=False,
        )

    # Internals

    def _read_params(self, query: QueryInput, resource: CompiledResource) -> QueryParams:
        params = parse_query_params(query)
        check_read_params(
            params,
            resource=resource,
            registry=self._registry,
            include_depth_limit=self._settings.include_depth_limit,
        )
        return params

    def _read_one(self, context: OperationContext) -> Document:
        assert context.resource_id is not None
        if not self._storage.exists(
            context.resource_type, context.resource_id, transaction=context.transaction
        ):
            raise ResourceError.not_found(context.resource_type, context.resource_id)
        self._run_before(CHECK_PERMISSIONS, context)
        self._run_before(BEFORE_DATA, context)
        context.record = self._storage.get(
            context.resource_type,
            context.resource_id,
            context.query,
            transaction=context.transaction,
        )
        if context.record is None:
            raise ResourceError.not_found(context.resource_type, context.resource_id)
        return self._finish_read(context)

    def _finish_read(self, context: OperationContext) -> Document:
        assert context.record is not None
        self._run_before(CHECK_DATA_PERMISSIONS, context)
        self._run_before(ENRICH_RECORD, context)
        context.response = self._enricher.enrich_document(context.record, context)
        self._run_before(FINISH, context)
        return context.response

    def _write_context(
        self,
        method: Method,
        resource_type: str,
        document: DocumentInput,
        query: QueryInput,
        meta: RequestMeta | None,
    ) -> OperationContext:
        resource = self._registry.resource(resource_type)
        parsed = parse_write_document(document, resource_type=resource_type, registry=self._registry)
        return OperationContext(
            method=method,
            resource=resource,
            meta=meta,
            input_document=parsed,
            query=self._read_params(query, resource),
        )

    def _prepare_attributes(
        self,
        context: OperationContext,
        mode: ValidationMode,
        *,
        clear_omitted: bool = False,
    ) -> None:
        """Merge relationship columns into the attributes and validate them."""
        resource = context.resource
        assert context.input_document is not None
        incoming = _primary(context.input_document)
        attributes = dict(incoming.attributes)

        foreign_keys = sorted(set(attributes) & resource.foreign_key_columns)
        if foreign_keys:
            raise ValidationError(
                "Foreign keys must be set through relationships",
                violations=[
                    Violation(
                        field=f"data.attributes.{name}",
                        rule="foreign_key_in_attributes",
                        message=f"Field '{name}' is set through its relationship",
                    )
                    for name in foreign_keys
                ],
            )
        for name in [n for n in attributes if n in resource.computed_fields]:
            _LOGGER.warning("dropping computed field %s sent by the client", name)
            del attributes[name]

        context.changes = self._processor.process(incoming, resource)
        if clear_omitted:
            self._processor.clear_omitted(incoming, resource, context.changes)
        context.attributes_to_store = {**attributes, **context.changes.belongs_to_updates}

        self._run_before(BEFORE_SCHEMA_VALIDATE, context)
        validated, violations = resource.validator.validate(context.attributes_to_store, mode)
        if violations:
            raise ValidationError(
                "Schema validation failed for resource attributes", violations=violations
            )
        for name, field_def in resource.fields.items():
            if field_def.setter is not None and validated.get(name) is not None:
                validated[name] = field_def.setter(validated[name], context)
        context.attributes_to_store = validated
        self._run_after(AFTER_SCHEMA_VALIDATE, context)

    def _stored_object(self, context: OperationContext) -> ResourceObject:
        return ResourceObject(
            type=context.resource_type,
            id=context.resource_id,
            attributes=context.attributes_to_store,
        )

    def _apply_pivots(self, context: OperationContext) -> None:
        for operation in context.changes.many_to_many:
            self._pivots.replace(
                _owner_id(context),
                operation.relationship,
                operation.targets,
                transaction=self._tx(context),
            )

    def _respond(self, context: OperationContext, override: bool | None) -> Document:
        """Re-read the record or answer with its identifier, per policy."""
        policy = context.resource.return_full_record or self._settings.return_full_record
        full = bool(getattr(policy, context.method.value))
        if override is not None:
            remote = context.meta is not None and context.meta.remote
            if not remote or policy.allow_remote_override:
                full = override
        if not full:
            return Document(data=ResourceObject(type=context.resource_type, id=context.resource_id))
        read_context = OperationContext(
            method=Method.GET,
            resource=context.resource,
            meta=context.meta,
            resource_id=context.resource_id,
            query=context.query,
            transaction=context.transaction,
            state=context.state,
        )
        return self._read_one(read_context)

    def _relationship(self, resource: CompiledResource, name: str) -> CompiledRelationship:
        relationship = resource.relationship(name)
        if relationship is None:
            raise ResourceError(
                f"Relationship {name} not found on {resource.name}",
                kind=ResourceErrorKind.RELATIONSHIP_NOT_FOUND,
                resource_type=resource.name,
            )
        return relationship

    def _to_many_targets(
        self, relationship: CompiledRelationship, data: Any
    ) -> list[ResourceIdentifier]:
        if not relationship.is_to_many:
            raise ValidationError.single(
                field="data",
                rule="to_many_relationship",
                message=f"Relationship '{relationship.name}' is to-one; replace it instead",
            )
        linkage = parse_linkage(data, path="data", registry=self._registry)
        if not isinstance(linkage, list):
            raise ValidationError.single(
                field="data",
                rule="to_many_relationship",
                message=f"Relationship '{relationship.name}' expects an array of identifiers",
            )
        targets = [ResourceIdentifier.model_validate(item) for item in linkage]
        for index, target in enumerate(targets):
            if target.type != relationship.target:
                raise ValidationError.single(
                    field=f"data[{index}].type",
                    rule="relationship_type",
                    message=(
                        f"Relationship '{relationship.name}' expects type "
                        f"'{relationship.target}', got '{target.type}'"
                    ),
                )
        return targets

    def _require_owner(self, context: OperationContext) -> None:
        context.exists = self._storage.exists(
            context.resource_type, _owner_id(context), transaction=self._tx(context)
        )
        if not context.exists:
            raise ResourceError.not_found(context.resource_type, _owner_id(context))

    def _point_child(
        self,
        context: OperationContext,
        relationship: CompiledRelationship,
        target: ResourceIdentifier,
        *,
        linked: bool,
    ) -> None:
        """Set (or clear) the back-reference a has-many child holds to the owner."""
        transaction = self._tx(context)
        if not self._storage.exists(target.type, target.id, transaction=transaction):
            raise ResourceError(
                f"Related {target.type} with id {target.id} not found",
                kind=ResourceErrorKind.NOT_FOUND,
                resource_type=target.type,
                resource_id=target.id,
            )
        child = self._registry.resource(target.type)
        if relationship.via is not None:
            assert relationship.type_field and relationship.id_field
            columns = (relationship.type_field, relationship.id_field)
            values = (context.resource_type, _owner_id(context)) if linked else (None, None)
        else:
            assert relationship.foreign_key is not None
            columns = (relationship.foreign_key,)
            values = (_owner_id(context),) if linked else (None,)
        if not linked:
            for column in columns:
                if child.fields[column].required:
                    raise ValidationError.single(
                        field="data",
                        rule="required",
                        message=f"{target.type}.{column} is required and cannot be cleared",
                    )
        self._storage.merge(
            target.type,
            target.id,
            ResourceObject(type=target.type, id=target.id, attributes=dict(zip(columns, values))),
            transaction=transaction,
        )

    def _run_before(self, stage: str, context: OperationContext) -> None:
        self._hooks.run(stage, context)
        self._hooks.run(verb_stage(stage, context.method), context)

    def _run_after(self, stage: str, context: OperationContext) -> None:
        self._hooks.run(verb_stage(stage, context.method), context)
        self._hooks.run(stage, context)

    def _tx(self, context: OperationContext) -> TransactionHandle:
        assert context.transaction is not None
        return context.transaction

    @contextmanager
    def _operation_log(self, context: OperationContext) -> Iterator[None]:
        with log_context(
            {
                log_fields.METHOD: context.method.value,
                log_fields.RESOURCE_TYPE: context.resource_type,
                log_fields.RESOURCE_ID: context.resource_id,
            }
        ):
            yield

    @contextmanager
    def _write_scope(
        self, context: OperationContext, transaction: TransactionHandle | None
    ) -> Iterator[None]:
        """Open or join the transaction and fire commit/rollback hooks."""
        with self._operation_log(context):
            try:
                with self._transactions.scope(transaction) as scope:
                    context.transaction = scope.transaction
                    context.owns_transaction = scope.owns
                    yield
            except Exception as exc:
                with log_context({log_fields.OWNS_TRANSACTION: context.owns_transaction}):
                    if isinstance(exc, EngineError):
                        _LOGGER.info("write rejected: %s", exc)
                    else:
                        _LOGGER.warning("write failed: %s: %s", type(exc).__name__, exc)
                if context.owns_transaction:
                    self._hooks.run(AFTER_ROLLBACK, context)
                raise
            if context.owns_transaction:
                self._hooks.run(AFTER_COMMIT, context)


def _primary(document: Document) -> ResourceObject:
    data = document.data
    if not isinstance(data, ResourceObject):
        raise PayloadError(
            "Document must contain a single resource object",
            path="data",
            expected="object",
            received="array" if isinstance(data, list) else "null",
        )
    return data


def _owner_id(context: OperationContext) -> str:
    assert context.resource_id is not None
    return context.resource_id


def _resolve_id(context: OperationContext, path_id: str | int | None) -> str:
    """Reconcile the id given by the caller with the id in the payload."""
    assert context.input_document is not None
    body_id = _primary(context.input_document).id
    if path_id is not None and body_id is not None and str(path_id) != body_id:
        raise ValidationError.single(
            field="data.id",
            rule="id_consistency",
            message=f"Resource id '{body_id}' does not match '{path_id}'",
        )
    resolved = str(path_id) if path_id is not None else body_id
    if resolved is None:
        raise PayloadError(
            f"{context.method.value} requires a resource id",
            path="data.id",
            expected="string",
            received="null",
        )
    return resolved
