"""Shape outgoing attribute bags.

For every returned resource (primary data and included): drop hidden fields,
compute computed fields, apply the sparse fieldset for its type, then run the
``enrichAttributes`` hooks. Relationship linkage is never modified.
"""

from __future__ import annotations

from services.state.resource_engine.context import OperationContext
from services.state.resource_engine.domain import Document, ResourceObject
from services.state.resource_engine.hooks import ENRICH_ATTRIBUTES, HookPipeline
from services.state.resource_engine.registry import SchemaRegistry


class AttributeEnricher:
    def __init__(self, *, registry: SchemaRegistry, hooks: HookPipeline) -> None:
        self._registry = registry
        self._hooks = hooks

    def enrich_document(self, document: Document, context: OperationContext) -> Document:
        data = document.data
        if isinstance(data, list):
            data = [self.enrich(item, context) for item in data]
        elif data is not None:
            data = self.enrich(data, context)
        included = [self.enrich(item, context) for item in document.included]
        return document.model_copy(update={"data": data, "included": included})

    def enrich(self, resource_object: ResourceObject, context: OperationContext) -> ResourceObject:
        resource = self._registry.resource(resource_object.type)
        requested = context.query.fields.get(resource_object.type)

        attributes = {
            name: value
            for name, value in resource_object.attributes.items()
            if name not in resource.hidden_fields
        }
        for name, field in resource.computed_fields.items():
            if field.hidden or (requested is not None and name not in requested):
                continue
            assert field.compute is not None
            attributes[name] = field.compute(dict(attributes), context)
        if requested is not None:
            attributes = {name: value for name, value in attributes.items() if name in requested}

        context.attributes = attributes
        context.enrichment_type = resource_object.type
        try:
            self._hooks.run(ENRICH_ATTRIBUTES, context)
            enriched = context.attributes
        finally:
            context.attributes = None
            context.enrichment_type = None
        return resource_object.model_copy(update={"attributes": dict(enriched or {})})
