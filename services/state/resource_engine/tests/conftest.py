"""Shared fixtures: a small library schema backed by in-memory SQLite."""

from __future__ import annotations

from typing import Any

import pytest

from resources.substrates.sql import SqlSettings, create_sql_engine
from services.state.resource_engine.config import ResourceEngineSettings
from services.state.resource_engine.data import SqlStorageAdapter
from services.state.resource_engine.engine import ResourceEngine
from services.state.resource_engine.hooks import HookPipeline
from services.state.resource_engine.registry import SchemaRegistry


def _shout(attributes: dict[str, Any], context: object) -> str:
    del context
    return str(attributes.get("title", "")).upper()


def _normalize_email(value: str, context: object) -> str:
    del context
    return value.strip().lower()


def library_definitions() -> dict[str, dict[str, Any]]:
    """Resource definitions used across engine and storage tests."""
    return {
        "publishers": {
            "fields": {"name": {"type": "string", "required": True, "search": True}},
            "relationships": {"books": {"has_many": "books", "foreign_key": "publisher_id"}},
            "sortable_fields": ["name"],
        },
        "authors": {
            "fields": {
                "name": {"type": "string", "required": True, "search": True},
                "email": {"type": "string", "hidden": True, "setter": _normalize_email},
            },
            "relationships": {
                "books": {
                    "many_to_many": {
                        "through": "book_authors",
                        "foreign_key": "author_id",
                        "other_key": "book_id",
                    }
                }
            },
            "sortable_fields": ["name"],
        },
        "books": {
            "fields": {
                "title": {"type": "string", "required": True, "min": 1, "search": True},
                "pages": {"type": "integer", "min": 1},
                "genre": {
                    "type": "string",
                    "choices": ["fiction", "nonfiction"],
                    "default": "fiction",
                },
                "internal_code": {"type": "string", "hidden": True},
                "shouted_title": {"computed": True, "compute": _shout},
                "publisher_id": {"belongs_to": "publishers", "as": "publisher"},
            },
            "relationships": {
                "authors": {
                    "many_to_many": {
                        "through": "book_authors",
                        "foreign_key": "book_id",
                        "other_key": "author_id",
                    }
                },
                "comments": {"has_many": "comments", "via": "commentable"},
                "reviews": {"has_many": "reviews", "foreign_key": "book_id"},
            },
            "search_schema": {
                "q": {"one_of": ["title", "genre"], "filter_operator": "like"},
                "min_pages": {
                    "type": "integer",
                    "actual_field": "pages",
                    "filter_operator": ">=",
                },
                "author": {"one_of": ["title", "authors.name"]},
                "publisher_name": {"actual_field": "publisher.name", "filter_operator": "="},
                "publisher": {"actual_field": "publisher_id"},
                "rated": {"actual_field": "reviews.rating", "filter_operator": ">="},
                "discussed": {"actual_field": "comments.body"},
                "genres": {"actual_field": "genre", "filter_operator": "in"},
                "pages_between": {"actual_field": "pages", "filter_operator": "between"},
                "title_prefix": {"actual_field": "title", "filter_operator": "startswith"},
                "title_suffix": {"actual_field": "title", "filter_operator": "endswith"},
            },
            "sortable_fields": ["title", "pages"],
        },
        "book_authors": {
            "fields": {
                "book_id": {"belongs_to": "books", "as": "book", "required": True},
                "author_id": {"belongs_to": "authors", "as": "author", "required": True},
            },
        },
        "reviews": {
            "fields": {
                "rating": {"type": "integer", "required": True, "min": 1, "max": 5},
                "book_id": {"belongs_to": "books", "as": "book", "required": True},
            },
            "relationships": {"comments": {"has_many": "comments", "via": "commentable"}},
        },
        "comments": {
            "fields": {"body": {"type": "string", "required": True}},
            "relationships": {
                "commentable": {
                    "belongs_to_polymorphic": {
                        "types": ["books", "reviews"],
                        "type_field": "commentable_type",
                        "id_field": "commentable_id",
                    }
                }
            },
        },
    }


def build_library_registry() -> SchemaRegistry:
    registry = SchemaRegistry()
    for name, definition in library_definitions().items():
        registry.register(name, definition)
    return registry.freeze()


@pytest.fixture
def registry() -> SchemaRegistry:
    return build_library_registry()


@pytest.fixture
def storage(registry: SchemaRegistry) -> SqlStorageAdapter:
    adapter = SqlStorageAdapter(registry=registry, engine=create_sql_engine(SqlSettings()))
    adapter.create_all()
    return adapter


@pytest.fixture
def hooks() -> HookPipeline:
    return HookPipeline()


@pytest.fixture
def engine(
    registry: SchemaRegistry, storage: SqlStorageAdapter, hooks: HookPipeline
) -> ResourceEngine:
    return ResourceEngine(
        registry=registry,
        storage=storage,
        settings=ResourceEngineSettings(max_page_size=50),
        hooks=hooks,
    )


@pytest.fixture
def definitions() -> dict[str, dict[str, Any]]:
    return library_definitions()
