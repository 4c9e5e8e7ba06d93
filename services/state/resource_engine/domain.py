"""Document and query contracts exchanged with the resource engine."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _coerce_id(value: object) -> object:
    if isinstance(value, int) and not isinstance(value, bool):
        return str(value)
    return value


def _split_csv(value: object) -> object:
    if isinstance(value, str):
        return tuple(part.strip() for part in value.split(",") if part.strip())
    return value


class ResourceIdentifier(BaseModel):
    """Type and id pair naming one resource."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    type: str = Field(min_length=1)
    id: str = Field(min_length=1)

    @field_validator("id", mode="before")
    @classmethod
    def _normalize_id(cls, value: object) -> object:
        return _coerce_id(value)


class RelationshipData(BaseModel):
    """Linkage for one relationship of a resource object.

    ``data`` may be a single identifier (to-one), a list (to-many) or ``None``.
    An entry whose ``data`` key was never supplied is not ``provided`` and is
    skipped on writes, while an explicit ``None`` clears the relationship.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    data: ResourceIdentifier | list[ResourceIdentifier] | None = None

    @property
    def provided(self) -> bool:
        return "data" in self.model_fields_set

    @property
    def identifiers(self) -> list[ResourceIdentifier]:
        if self.data is None:
            return []
        if isinstance(self.data, list):
            return list(self.data)
        return [self.data]


class ResourceObject(BaseModel):
    """One resource: type, id, attribute bag, and relationship linkage."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    type: str = Field(min_length=1)
    id: str | None = None
    attributes: dict[str, Any] = Field(default_factory=dict)
    relationships: dict[str, RelationshipData] = Field(default_factory=dict)

    @field_validator("id", mode="before")
    @classmethod
    def _normalize_id(cls, value: object) -> object:
        return _coerce_id(value)

    @property
    def identifier(self) -> ResourceIdentifier:
        if self.id is None:
            raise ValueError(f"{self.type} resource has no id")
        return ResourceIdentifier(type=self.type, id=self.id)


class Document(BaseModel):
    """Top-level document: primary data plus optional included resources."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    data: ResourceObject | list[ResourceObject] | None = None
    included: list[ResourceObject] = Field(default_factory=list)
    meta: dict[str, Any] = Field(default_factory=dict)

    @property
    def resources(self) -> list[ResourceObject]:
        """Primary resources as a list regardless of document cardinality."""
        if self.data is None:
            return []
        if isinstance(self.data, list):
            return list(self.data)
        return [self.data]

    def to_dict(self) -> dict[str, Any]:
        """Serialize into the wire shape, omitting empty ``included``/``meta``."""
        body = self.model_dump(mode="json")
        if not self.included:
            body.pop("included")
        if not self.meta:
            body.pop("meta")
        return body


class PageParams(BaseModel):
    """1-based page number and optional page size."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    number: int = Field(default=1, ge=1)
    size: int | None = Field(default=None, ge=1)


class QueryParams(BaseModel):
    """Read options: includes, sparse fieldsets, filters, sort, and paging."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    include: tuple[str, ...] = ()
    fields: dict[str, tuple[str, ...]] = Field(default_factory=dict)
    filters: dict[str, Any] = Field(default_factory=dict)
    sort: tuple[str, ...] = ()
    page: PageParams = Field(default_factory=PageParams)

    @field_validator("include", "sort", mode="before")
    @classmethod
    def _split_lists(cls, value: object) -> object:
        return _split_csv(value)

    @field_validator("fields", mode="before")
    @classmethod
    def _split_fields(cls, value: object) -> object:
        if isinstance(value, dict):
            return {key: _split_csv(names) for key, names in value.items()}
        return value
