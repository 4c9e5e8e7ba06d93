"""Tests for transaction ownership: only owned handles are settled."""

from __future__ import annotations

import pytest

from services.state.resource_engine.transactions import TransactionCoordinator


class _FakeHandle:
    def __init__(self) -> None:
        self.calls: list[str] = []

    def commit(self) -> None:
        self.calls.append("commit")

    def rollback(self) -> None:
        self.calls.append("rollback")

    def close(self) -> None:
        self.calls.append("close")


def test_owned_transaction_commits_and_closes() -> None:
    """A transaction opened by the scope is committed on success."""
    opened: list[_FakeHandle] = []

    def factory() -> _FakeHandle:
        opened.append(_FakeHandle())
        return opened[-1]

    with TransactionCoordinator(factory).scope() as scope:
        assert scope.owns is True

    assert opened[0].calls == ["commit", "close"]


def test_owned_transaction_rolls_back_on_error() -> None:
    """Any exception rolls back and is re-raised."""
    handle = _FakeHandle()

    with pytest.raises(KeyError):
        with TransactionCoordinator(lambda: handle).scope():
            raise KeyError("boom")

    assert handle.calls == ["rollback", "close"]


def test_joined_transaction_is_never_settled() -> None:
    """A caller-supplied transaction is left for the caller to settle."""
    handle = _FakeHandle()
    coordinator = TransactionCoordinator(lambda: pytest.fail("must not open"))

    with coordinator.scope(handle) as scope:
        assert scope.owns is False
        assert scope.transaction is handle
    with pytest.raises(RuntimeError):
        with coordinator.scope(handle):
            raise RuntimeError("boom")

    assert handle.calls == []
