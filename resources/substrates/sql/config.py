"""Configuration model for the shared SQL substrate."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field, field_validator

from packages.relata_shared.config import RelataSettings, resolve_component_settings

RESOURCE_COMPONENT_ID = "substrate_sql"


class SqlSettings(BaseModel):
    """Runtime settings for constructing SQLAlchemy engines and pools."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    url: str = "sqlite+pysqlite:///:memory:"
    echo: bool = False
    pool_pre_ping: bool = True
    pool_size: int = Field(default=5, gt=0)
    max_overflow: int = Field(default=10, ge=0)
    pool_timeout_seconds: float = Field(default=30.0, gt=0)

    @field_validator("url")
    @classmethod
    def _require_url(cls, value: str) -> str:
        normalized = value.strip()
        if normalized == "":
            raise ValueError("sql.url is required")
        return normalized

    @property
    def is_sqlite(self) -> bool:
        return self.url.startswith("sqlite")

    @property
    def is_memory(self) -> bool:
        """True for SQLite URLs that open a private in-memory database."""
        if not self.is_sqlite:
            return False
        database = self.url.partition("://")[2].lstrip("/")
        return database in ("", ":memory:") or "mode=memory" in database


def resolve_sql_settings(settings: RelataSettings) -> SqlSettings:
    """Resolve SQL substrate settings from ``components.substrate.sql``."""
    return resolve_component_settings(
        settings=settings,
        component_id=RESOURCE_COMPONENT_ID,
        model=SqlSettings,
    )
