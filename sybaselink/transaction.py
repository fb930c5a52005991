"""Transactions layered on plain queries via a shared transaction id."""

from __future__ import annotations

import asyncio
import inspect
import logging
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable

from .errors import TransactionClosed

if TYPE_CHECKING:
    from .connection import Connection
    from .models import QueryCallback

LOG = logging.getLogger(__name__)

BEGIN_SQL = "BEGIN TRANSACTION"
COMMIT_SQL = "COMMIT TRANSACTION"
ROLLBACK_SQL = "ROLLBACK TRANSACTION"


class TransactionState(str, Enum):
    STARTED = "Started"
    COMMITTED = "Committed"
    ROLLED_BACK = "RolledBack"


class Transaction:
    """Handle passed to a transaction body; tags queries with its id."""

    def __init__(self, connection: Connection, trans_id: int) -> None:
        self.connection = connection
        self.trans_id = trans_id
        self.state = TransactionState.STARTED

    @property
    def finished(self) -> bool:
        return self.state is not TransactionState.STARTED

    async def execute(self, sql: str) -> Any:
        """Run ``sql`` inside this transaction and wait for its result."""

        self._ensure_open()
        return await self.connection.execute(sql, self.trans_id)

    def query(self, sql: str, callback: QueryCallback | None = None) -> int | None:
        """Dispatch ``sql`` inside this transaction without waiting."""

        self._ensure_open()
        return self.connection.dispatch(sql, self.trans_id, callback=callback)

    async def _finish(self, sql: str, state: TransactionState) -> Any:
        self._ensure_open()
        self.state = state
        return await self.connection.execute(sql, self.trans_id, finish_transaction=True)

    def _rollback_nowait(self) -> None:
        self._ensure_open()
        self.state = TransactionState.ROLLED_BACK

        def _logged(error: BaseException | None, _result: Any) -> None:
            if error is not None:
                LOG.warning("Rollback of transaction %s failed: %s", self.trans_id, error)

        self.connection.dispatch(ROLLBACK_SQL, self.trans_id, True, callback=_logged)

    def _ensure_open(self) -> None:
        if self.finished:
            raise TransactionClosed(f"Transaction {self.trans_id} is already {self.state.value}.")


async def run_transaction(
    connection: Connection,
    body: Callable[[Transaction], Awaitable[Any] | Any],
) -> Any:
    """Run ``body`` between BEGIN and COMMIT.

    Any failure in BEGIN or the body sends ROLLBACK and re-raises the original
    error; a failing rollback never replaces it. Exactly one finishing
    message is sent per transaction.
    """

    transaction = Transaction(connection, connection.next_transaction_id())
    try:
        await connection.execute(BEGIN_SQL, transaction.trans_id)
        result = body(transaction)
        if inspect.isawaitable(result):
            result = await result
    except asyncio.CancelledError:
        transaction._rollback_nowait()
        raise
    except Exception as exc:
        await _rollback(transaction, exc)
        raise
    await transaction._finish(COMMIT_SQL, TransactionState.COMMITTED)
    return result


async def _rollback(transaction: Transaction, cause: BaseException) -> None:
    try:
        await transaction._finish(ROLLBACK_SQL, TransactionState.ROLLED_BACK)
    except Exception as exc:
        LOG.warning("Rollback of transaction %s failed: %s", transaction.trans_id, exc)
        cause.add_note(f"Rollback of transaction {transaction.trans_id} also failed: {exc}")


__all__ = [
    "BEGIN_SQL",
    "COMMIT_SQL",
    "ROLLBACK_SQL",
    "Transaction",
    "TransactionState",
    "run_transaction",
]
