"""Transaction ownership for multi-step writes.

An operation either joins a transaction supplied by its caller or opens its
own. Only an owned transaction is committed, rolled back, and closed here.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable

from packages.relata_shared.logging import get_logger
from services.state.resource_engine.interfaces import TransactionHandle

_LOGGER = get_logger(__name__)


@dataclass(frozen=True)
class TransactionScope:
    transaction: TransactionHandle
    owns: bool


class TransactionCoordinator:
    """Open or join transactions and settle the ones it opened."""

    def __init__(self, factory: Callable[[], TransactionHandle]) -> None:
        self._factory = factory

    def begin(self, existing: TransactionHandle | None = None) -> TransactionScope:
        if existing is not None:
            return TransactionScope(transaction=existing, owns=False)
        return TransactionScope(transaction=self._factory(), owns=True)

    @contextmanager
    def scope(self, existing: TransactionHandle | None = None) -> Iterator[TransactionScope]:
        """Yield a scope; commit on normal exit, roll back on any exception."""
        scope = self.begin(existing)
        if not scope.owns:
            yield scope
            return
        try:
            yield scope
            scope.transaction.commit()
        except Exception:
            _LOGGER.debug("rolling back owned transaction")
            scope.transaction.rollback()
            raise
        finally:
            scope.transaction.close()
