"""Canonical shared error types for Relata components.

This module defines a transport-agnostic error taxonomy used by the resource
engine, its storage adapters, and the public service boundary.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Mapping


class ErrorCategory(str, Enum):
    """High-level error categories shared across component boundaries."""

    UNSPECIFIED = "unspecified"
    VALIDATION = "validation"
    PAYLOAD = "payload"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"
    POLICY = "policy"
    DEPENDENCY = "dependency"
    INTERNAL = "internal"


@dataclass(frozen=True)
class Violation:
    """One field-level rule failure reported by attribute or filter validation."""

    field: str
    rule: str
    message: str


@dataclass(frozen=True)
class ErrorDetail:
    """Structured error object carried by ``Result`` responses."""

    code: str
    message: str
    category: ErrorCategory
    retryable: bool = False
    metadata: Mapping[str, str] = field(default_factory=dict)
    violations: tuple[Violation, ...] = ()
