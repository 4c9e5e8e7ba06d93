"""Declarative resource definitions accepted by the schema registry.

Definitions are plain pydantic models validated once at registration. Field
definitions are tagged by ``kind`` (scalar or belongs-to); relationship
definitions are tagged by ``kind`` (polymorphic belongs-to, has-many, or
many-to-many).
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Callable, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

FilterOperator = Literal[
    "=", "like", "startswith", "endswith", "in", "between", ">", ">=", "<", "<="
]

LIST_OPERATORS: frozenset[str] = frozenset({"in", "between"})
NULL_MATCHING_OPERATORS: frozenset[str] = frozenset({"=", "like", "startswith", "endswith", "in"})


class FieldType(str, Enum):
    """Storage-level attribute types."""

    STRING = "string"
    NUMBER = "number"
    INTEGER = "integer"
    BOOLEAN = "boolean"
    ID = "id"
    DATE = "date"
    DATETIME = "datetime"
    OBJECT = "object"
    ARRAY = "array"


class FieldKind(str, Enum):
    SCALAR = "scalar"
    BELONGS_TO = "belongs_to"


class RelationshipKind(str, Enum):
    BELONGS_TO = "belongs_to"
    BELONGS_TO_POLYMORPHIC = "belongs_to_polymorphic"
    HAS_MANY = "has_many"
    MANY_TO_MANY = "many_to_many"


class SearchFieldDefinition(BaseModel):
    """One filter accepted by ``query``.

    ``actual_field`` names the column the filter applies to (defaults to the
    filter name); ``one_of`` applies the operator across several columns and
    matches when any of them does. Either may name a column of a related
    resource as a dotted path such as ``authors.name``. Without an explicit
    ``filter_operator`` string filters match by substring and others by
    equality.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    type: FieldType = FieldType.STRING
    actual_field: str | None = None
    filter_operator: FilterOperator | None = None
    one_of: tuple[str, ...] = ()

    @property
    def columns(self) -> tuple[str, ...]:
        if self.one_of:
            return self.one_of
        return (self.actual_field,) if self.actual_field else ()

    @property
    def operator(self) -> str:
        if self.filter_operator is not None:
            return self.filter_operator
        return "like" if self.type == FieldType.STRING else "="


class FieldDefinition(BaseModel):
    """Schema entry for one stored (or computed) attribute."""

    model_config = ConfigDict(
        frozen=True,
        extra="forbid",
        populate_by_name=True,
        arbitrary_types_allowed=True,
    )

    type: FieldType = FieldType.STRING
    required: bool = False
    nullable: bool = False
    default: Any = None
    min: float | None = None
    max: float | None = None
    choices: tuple[Any, ...] | None = None
    belongs_to: str | None = None
    as_: str | None = Field(default=None, alias="as")
    search: bool | SearchFieldDefinition | dict[str, SearchFieldDefinition] | None = None
    hidden: bool = False
    computed: bool = False
    compute: Callable[..., Any] | None = None
    setter: Callable[..., Any] | None = None

    @model_validator(mode="before")
    @classmethod
    def _default_foreign_key_type(cls, value: object) -> object:
        """Foreign-key columns hold ids unless a type is given."""
        if isinstance(value, dict) and value.get("belongs_to") and "type" not in value:
            return {**value, "type": FieldType.ID}
        return value

    @model_validator(mode="after")
    def _check_flags(self) -> "FieldDefinition":
        if self.computed and self.compute is None:
            raise ValueError("computed fields need a compute callable")
        if self.computed and self.required:
            raise ValueError("computed fields cannot be required")
        if self.computed and self.setter is not None:
            raise ValueError("computed fields are never stored and cannot have a setter")
        if self.belongs_to is None and self.as_ is not None:
            raise ValueError("'as' is only valid together with belongs_to")
        return self

    @property
    def kind(self) -> FieldKind:
        return FieldKind.BELONGS_TO if self.belongs_to else FieldKind.SCALAR

    @property
    def has_default(self) -> bool:
        return "default" in self.model_fields_set

    @property
    def accepts_null(self) -> bool:
        """Optional foreign keys may always be cleared."""
        return self.nullable or (self.kind == FieldKind.BELONGS_TO and not self.required)


class BelongsToPolymorphic(BaseModel):
    """To-one link whose target type is stored next to the target id."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    types: tuple[str, ...] = Field(min_length=1)
    type_field: str
    id_field: str


class ManyToMany(BaseModel):
    """To-many link stored as rows of a pivot resource."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    through: str
    foreign_key: str
    other_key: str
    validate_exists: bool = True
    target: str | None = None


class RelationshipDefinition(BaseModel):
    """Relationship declared outside the field schema.

    ``has_many`` together with ``through``/``other_key`` is accepted as an
    alternative spelling of a many-to-many relationship. A plain ``has_many``
    reads children whose ``foreign_key`` (or polymorphic relationship named by
    ``via``) points back at the owner.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    belongs_to_polymorphic: BelongsToPolymorphic | None = None
    many_to_many: ManyToMany | None = None
    has_many: str | None = None
    foreign_key: str | None = None
    via: str | None = None
    through: str | None = None
    other_key: str | None = None
    validate_exists: bool = True

    @model_validator(mode="after")
    def _check_shape(self) -> "RelationshipDefinition":
        declared = [
            value
            for value in (self.belongs_to_polymorphic, self.many_to_many, self.has_many)
            if value is not None
        ]
        if len(declared) != 1:
            raise ValueError(
                "declare exactly one of belongs_to_polymorphic, many_to_many, has_many"
            )
        if self.through is not None and (self.foreign_key is None or self.other_key is None):
            raise ValueError("has_many through a pivot needs foreign_key and other_key")
        if self.has_many is not None and self.through is None:
            if (self.foreign_key is None) == (self.via is None):
                raise ValueError("has_many needs exactly one of foreign_key or via")
        return self

    @property
    def kind(self) -> RelationshipKind:
        if self.belongs_to_polymorphic is not None:
            return RelationshipKind.BELONGS_TO_POLYMORPHIC
        if self.many_to_many is not None or self.through is not None:
            return RelationshipKind.MANY_TO_MANY
        return RelationshipKind.HAS_MANY

    def pivot(self) -> ManyToMany | None:
        """Return the many-to-many shape for either accepted spelling."""
        if self.many_to_many is not None:
            return self.many_to_many
        if self.through is None:
            return None
        assert self.foreign_key is not None and self.other_key is not None
        return ManyToMany(
            through=self.through,
            foreign_key=self.foreign_key,
            other_key=self.other_key,
            validate_exists=self.validate_exists,
            target=self.has_many,
        )


class ReturnFullRecordPolicy(BaseModel):
    """Whether writes answer with the re-read record or a minimal identifier."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    post: bool = False
    put: bool = False
    patch: bool = False
    allow_remote_override: bool = False


class ResourceDefinition(BaseModel):
    """Everything the engine needs to know about one resource type."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    fields: dict[str, FieldDefinition] = Field(default_factory=dict)
    relationships: dict[str, RelationshipDefinition] = Field(default_factory=dict)
    search_schema: dict[str, SearchFieldDefinition] | None = None
    sortable_fields: tuple[str, ...] = ()
    default_sort: tuple[str, ...] = ()
    default_page_size: int | None = Field(default=None, ge=1)
    table_name: str | None = None
    return_full_record: ReturnFullRecordPolicy | None = None
    load_record_on_put: bool | None = None
