"""Data-layer exports for the resource engine."""

from services.state.resource_engine.data.runtime import ResourceSqlRuntime
from services.state.resource_engine.data.schema import build_tables
from services.state.resource_engine.data.storage import SqlStorageAdapter

__all__ = ["ResourceSqlRuntime", "SqlStorageAdapter", "build_tables"]
