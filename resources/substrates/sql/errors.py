"""SQLAlchemy exception normalization helpers."""

from __future__ import annotations

from sqlalchemy.exc import (
    DBAPIError,
    IntegrityError,
    InterfaceError,
    OperationalError,
    ProgrammingError,
    SQLAlchemyError,
)

from packages.relata_shared.errors import (
    ErrorDetail,
    codes,
    conflict_error,
    dependency_error,
    internal_error,
)


def is_sql_error(exc: BaseException) -> bool:
    """Return True when ``exc`` was raised by SQLAlchemy or a DB-API driver."""
    return isinstance(exc, SQLAlchemyError)


def normalize_sql_error(exc: Exception) -> ErrorDetail:
    """Map low-level DB exceptions into shared structured error semantics."""
    metadata = {"exception_type": type(exc).__name__}
    if isinstance(exc, DBAPIError) and exc.orig is not None:
        metadata["driver_exception_type"] = type(exc.orig).__name__

    if isinstance(exc, IntegrityError):
        return conflict_error(
            "resource already exists",
            code=codes.ALREADY_EXISTS,
            metadata=metadata,
        )

    if isinstance(exc, OperationalError) or "timeout" in str(exc).lower():
        return dependency_error(
            "database unavailable",
            code=codes.DEPENDENCY_UNAVAILABLE,
            retryable=True,
            metadata=metadata,
        )

    if isinstance(exc, (InterfaceError, ProgrammingError)):
        return dependency_error(
            "database request failed",
            code=codes.DEPENDENCY_FAILURE,
            retryable=False,
            metadata=metadata,
        )

    return internal_error(
        "unexpected database failure",
        code=codes.UNEXPECTED_EXCEPTION,
        metadata=metadata,
    )
