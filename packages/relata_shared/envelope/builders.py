"""Convenience constructors for typed results."""

from __future__ import annotations

from typing import Iterable, TypeVar

from packages.relata_shared.errors import ErrorDetail

from .meta import RequestMeta
from .result import Result


T = TypeVar("T")


def success(*, meta: RequestMeta, payload: T) -> Result[T]:
    """Build a successful result with payload and no errors."""
    return Result(metadata=meta, payload=payload, errors=[])


def failure(
    *,
    meta: RequestMeta,
    errors: Iterable[ErrorDetail],
    payload: T | None = None,
) -> Result[T]:
    """Build a failed result with one or more errors."""
    return Result(metadata=meta, payload=payload, errors=list(errors))


def empty(*, meta: RequestMeta) -> Result[None]:
    """Build an empty successful result."""
    return Result(metadata=meta, payload=None, errors=[])
