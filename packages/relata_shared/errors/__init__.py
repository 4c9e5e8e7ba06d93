"""Public shared error API for Relata components."""

from . import codes
from .factories import (
    conflict_error,
    dependency_error,
    internal_error,
    not_found_error,
    payload_error,
    policy_error,
    validation_error,
)
from .normalize import exception_to_error
from .types import ErrorCategory, ErrorDetail, Violation

__all__ = [
    "ErrorCategory",
    "ErrorDetail",
    "Violation",
    "codes",
    "conflict_error",
    "dependency_error",
    "exception_to_error",
    "internal_error",
    "not_found_error",
    "payload_error",
    "policy_error",
    "validation_error",
]
