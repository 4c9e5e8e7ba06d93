"""Request metadata carried through every public service call."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from uuid import uuid4


@dataclass(frozen=True)
class RequestMeta:
    """Correlation and caller identity attached to one service invocation.

    ``remote`` marks calls that arrived through a transport adapter rather
    than from in-process code; some per-call overrides are only honored for
    in-process callers.
    """

    request_id: str
    trace_id: str
    parent_id: str
    timestamp: datetime
    source: str
    principal: str
    remote: bool = False


def new_meta(
    *,
    source: str,
    principal: str,
    remote: bool = False,
    trace_id: str | None = None,
    parent_id: str = "",
    request_id: str | None = None,
    timestamp: datetime | None = None,
) -> RequestMeta:
    """Build ``RequestMeta`` with generated IDs and a UTC timestamp."""
    return RequestMeta(
        request_id=request_id or _new_id(),
        trace_id=trace_id or _new_id(),
        parent_id=parent_id,
        timestamp=_utc_now() if timestamp is None else _normalize_utc(timestamp),
        source=source,
        principal=principal,
        remote=remote,
    )


def validate_meta(meta: RequestMeta) -> None:
    """Raise ``ValueError`` when required metadata fields are blank."""
    for name in ("request_id", "trace_id", "source", "principal"):
        if not str(getattr(meta, name)).strip():
            raise ValueError(f"metadata.{name} is required")


def _new_id() -> str:
    return uuid4().hex


def _utc_now() -> datetime:
    return datetime.now(UTC)


def _normalize_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)
