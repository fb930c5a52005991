"""Tests for the per-connection correlation table."""

from __future__ import annotations

import pytest

from sybaselink.correlation import CorrelationTable
from sybaselink.models import PendingRequest


def _request(msg_id: int) -> PendingRequest:
    return PendingRequest(msg_id=msg_id, sql=f"SELECT {msg_id}", callback=None)


def test_resolve_removes_the_matching_request() -> None:
    table = CorrelationTable()
    table.register(_request(1))
    table.register(_request(2))

    resolved = table.resolve(2)

    assert resolved is not None and resolved.sql == "SELECT 2"
    assert 2 not in table
    assert 1 in table
    assert len(table) == 1


def test_resolve_unknown_or_repeated_id_returns_none() -> None:
    table = CorrelationTable()
    table.register(_request(1))

    assert table.resolve(1) is not None
    assert table.resolve(1) is None
    assert table.resolve(42) is None


def test_register_rejects_duplicate_ids() -> None:
    table = CorrelationTable()
    table.register(_request(1))

    with pytest.raises(ValueError):
        table.register(_request(1))


def test_drain_all_empties_the_table_in_order() -> None:
    table = CorrelationTable()
    for msg_id in (3, 1, 2):
        table.register(_request(msg_id))

    drained = table.drain_all()

    assert [request.msg_id for request in drained] == [3, 1, 2]
    assert len(table) == 0
    assert table.drain_all() == []


def test_tables_are_independent() -> None:
    first = CorrelationTable()
    second = CorrelationTable()
    first.register(_request(1))

    assert 1 not in second
