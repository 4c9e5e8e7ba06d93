"""SQL runtime wiring for the resource engine."""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import Engine
from sqlalchemy.orm import Session, sessionmaker

from packages.relata_shared.config import RelataSettings
from resources.substrates.sql import (
    create_session_factory,
    create_sql_engine,
    ping,
    resolve_sql_settings,
)
from services.state.resource_engine.data.storage import SqlStorageAdapter
from services.state.resource_engine.registry import SchemaRegistry


@dataclass(frozen=True)
class ResourceSqlRuntime:
    """Engine, session factory, and storage adapter for one registry."""

    engine: Engine
    session_factory: sessionmaker[Session]
    storage: SqlStorageAdapter

    @classmethod
    def from_settings(
        cls,
        settings: RelataSettings,
        *,
        registry: SchemaRegistry,
        create_tables: bool = True,
    ) -> "ResourceSqlRuntime":
        """Build the SQL runtime from typed application settings."""
        engine = create_sql_engine(resolve_sql_settings(settings))
        session_factory = create_session_factory(engine)
        storage = SqlStorageAdapter(
            registry=registry,
            engine=engine,
            session_factory=session_factory,
        )
        if create_tables:
            storage.create_all()
        return cls(engine=engine, session_factory=session_factory, storage=storage)

    def is_healthy(self) -> bool:
        """Return ``True`` when the backing database is reachable."""
        return ping(self.engine)
