"""Exceptions raised inside the resource engine.

Every engine exception converts to a shared ``ErrorDetail`` through
``to_error()``; the public service layer returns that detail in a failed
``Result`` instead of raising.
"""

from __future__ import annotations

from enum import Enum
from typing import Iterable

from packages.relata_shared.errors import (
    ErrorDetail,
    Violation,
    codes,
    conflict_error,
    not_found_error,
    payload_error,
    policy_error,
    validation_error,
)


class EngineError(Exception):
    """Base class for expected resource-engine failures."""

    def to_error(self) -> ErrorDetail:
        raise NotImplementedError


class ValidationError(EngineError):
    """Input violates declared schema or semantic rules."""

    def __init__(self, message: str, *, violations: Iterable[Violation] = ()) -> None:
        super().__init__(message)
        self.message = message
        self.violations = tuple(violations)

    @property
    def fields(self) -> tuple[str, ...]:
        return tuple(dict.fromkeys(violation.field for violation in self.violations))

    @classmethod
    def single(cls, *, field: str, rule: str, message: str) -> "ValidationError":
        """Build an error carrying exactly one violation."""
        return cls(message, violations=[Violation(field=field, rule=rule, message=message)])

    def to_error(self) -> ErrorDetail:
        return validation_error(
            self.message,
            code=codes.SCHEMA_VIOLATION if self.violations else codes.VALIDATION_ERROR,
            violations=self.violations,
        )


class ResourceErrorKind(str, Enum):
    """Subtypes of ``ResourceError``."""

    NOT_FOUND = "not_found"
    CONFLICT = "conflict"
    FORBIDDEN = "forbidden"
    RELATIONSHIP_NOT_FOUND = "relationship_not_found"


class ResourceError(EngineError):
    """A referenced resource is missing, duplicated, or not accessible."""

    def __init__(
        self,
        message: str,
        *,
        kind: ResourceErrorKind,
        resource_type: str,
        resource_id: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.kind = kind
        self.resource_type = resource_type
        self.resource_id = resource_id

    @classmethod
    def not_found(cls, resource_type: str, resource_id: str) -> "ResourceError":
        return cls(
            f"{resource_type} with id {resource_id} not found",
            kind=ResourceErrorKind.NOT_FOUND,
            resource_type=resource_type,
            resource_id=resource_id,
        )

    def to_error(self) -> ErrorDetail:
        metadata = {"resource_type": self.resource_type}
        if self.resource_id is not None:
            metadata["resource_id"] = self.resource_id
        if self.kind == ResourceErrorKind.NOT_FOUND:
            return not_found_error(self.message, code=codes.RESOURCE_NOT_FOUND, metadata=metadata)
        if self.kind == ResourceErrorKind.RELATIONSHIP_NOT_FOUND:
            return not_found_error(
                self.message, code=codes.RELATIONSHIP_NOT_FOUND, metadata=metadata
            )
        if self.kind == ResourceErrorKind.FORBIDDEN:
            return policy_error(self.message, code=codes.PERMISSION_DENIED, metadata=metadata)
        return conflict_error(self.message, code=codes.CONFLICT, metadata=metadata)


class PayloadError(EngineError):
    """The request document is structurally malformed."""

    def __init__(
        self,
        message: str,
        *,
        path: str,
        expected: str | None = None,
        received: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.path = path
        self.expected = expected
        self.received = received

    def to_error(self) -> ErrorDetail:
        metadata = {"path": self.path}
        if self.expected is not None:
            metadata["expected"] = self.expected
        if self.received is not None:
            metadata["received"] = self.received
        return payload_error(self.message, metadata=metadata)


class RegistryError(ValidationError):
    """A resource definition is inconsistent; raised during registration."""

    def __init__(self, message: str, *, resource_type: str, field: str = "", rule: str) -> None:
        path = f"{resource_type}.{field}" if field else resource_type
        super().__init__(message, violations=[Violation(field=path, rule=rule, message=message)])
        self.resource_type = resource_type
