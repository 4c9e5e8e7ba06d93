"""Typed result model returned across the public service boundary."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Generic, TypeVar

from packages.relata_shared.errors import ErrorCategory, ErrorDetail

from .meta import RequestMeta


T = TypeVar("T")


@dataclass(frozen=True)
class Result(Generic[T]):
    """Payload-or-errors response for in-process service calls."""

    metadata: RequestMeta
    payload: T | None
    errors: list[ErrorDetail] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        """Return True when no errors are present."""
        return len(self.errors) == 0

    @property
    def has_payload(self) -> bool:
        """Return True when payload is present."""
        return self.payload is not None

    @property
    def categories(self) -> list[ErrorCategory]:
        return [error.category for error in self.errors]
