"""Public shared result API for Relata components."""

from .builders import empty, failure, success
from .meta import RequestMeta, new_meta, validate_meta
from .result import Result

__all__ = [
    "RequestMeta",
    "Result",
    "empty",
    "failure",
    "new_meta",
    "success",
    "validate_meta",
]
