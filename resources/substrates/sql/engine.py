"""SQLAlchemy engine construction for the shared SQL substrate."""

from __future__ import annotations

from typing import Any

from sqlalchemy import Engine, create_engine
from sqlalchemy.pool import StaticPool

from resources.substrates.sql.config import SqlSettings


def create_sql_engine(config: SqlSettings) -> Engine:
    """Construct a configured SQLAlchemy engine.

    In-memory SQLite databases live inside a single connection, so they are
    served from a ``StaticPool`` shared by every session.
    """
    kwargs: dict[str, Any] = {
        "echo": config.echo,
        "pool_pre_ping": config.pool_pre_ping,
    }
    if config.is_sqlite:
        kwargs["connect_args"] = {"check_same_thread": False}
        if config.is_memory:
            kwargs["poolclass"] = StaticPool
    else:
        kwargs["pool_size"] = config.pool_size
        kwargs["max_overflow"] = config.max_overflow
        kwargs["pool_timeout"] = config.pool_timeout_seconds
    return create_engine(config.url, **kwargs)
