"""Connection to the database through the helper's stdio protocol."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Mapping

from .config import BridgeConfig
from .correlation import CorrelationTable
from .decoder import StreamingDecoder, decode_stream
from .errors import ChannelFailure, DecodeError, NotConnected, QueryFailed, SybaseLinkError, TransactionClosed
from .log import enable_console_logging
from .models import (
    NO_TRANSACTION,
    ConnectionState,
    PendingRequest,
    QueryCallback,
    QueryTiming,
    ResponseRecord,
    epoch_ms,
)
from .supervisor import HANDSHAKE_LINE, ProcessSupervisor
from .transaction import Transaction, run_transaction

LOG = logging.getLogger(__name__)

VERSION_QUERY = "SELECT @@version AS version"

SupervisorFactory = Callable[[BridgeConfig], ProcessSupervisor]
ConnectCallback = Callable[[BaseException | None, str | None], None]


class Connection:
    """Issue SQL through a helper process and match responses by message id.

    Every request is registered under the id it was given at creation time;
    responses may arrive in any order. If the channel breaks, every pending
    request is failed with the same :class:`ChannelFailure`.
    """

    def __init__(
        self,
        config: BridgeConfig | Mapping[str, Any],
        *,
        supervisor_factory: SupervisorFactory | None = None,
    ) -> None:
        self._config = config if isinstance(config, BridgeConfig) else BridgeConfig.model_validate(config)
        self._supervisor_factory = supervisor_factory
        self._supervisor: ProcessSupervisor | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._requests = CorrelationTable()
        self._state = ConnectionState.DISCONNECTED
        self._query_count = 0
        self._transaction_count = 0
        self._finished_transactions: set[int] = set()
        if self._config.logs:
            enable_console_logging()

    @property
    def config(self) -> BridgeConfig:
        return self._config

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def pending_count(self) -> int:
        """Number of requests still waiting for a response."""

        return len(self._requests)

    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    async def __aenter__(self) -> Connection:
        await self.connect()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.disconnect()

    async def connect(self) -> str:
        """Start the helper and wait for its handshake."""

        if self._state is ConnectionState.CONNECTED:
            return HANDSHAKE_LINE
        if self._state is not ConnectionState.DISCONNECTED:
            raise ChannelFailure(f"Cannot connect while {self._state.value.lower()}.")
        self._state = ConnectionState.CONNECTING
        factory = self._supervisor_factory or ProcessSupervisor
        supervisor = factory(self._config)
        try:
            if self._supervisor is not None:
                # Left behind by a channel failure.
                stale, self._supervisor = self._supervisor, None
                await stale.kill()
            await supervisor.start()
        except BaseException:
            self._state = ConnectionState.DISCONNECTED
            raise
        self._supervisor = supervisor
        self._state = ConnectionState.CONNECTED
        self._reader_task = asyncio.create_task(self._read_responses(supervisor))
        LOG.info("Connected to %s:%s/%s", self._config.host, self._config.port, self._config.database)
        return HANDSHAKE_LINE

    def connect_nowait(self, callback: ConnectCallback) -> asyncio.Task[str]:
        """Connect in the background and report through ``callback(error, status)``."""

        task = asyncio.ensure_future(self.connect())

        def _done(finished: asyncio.Future[str]) -> None:
            if finished.cancelled():
                callback(asyncio.CancelledError(), None)
            elif finished.exception() is not None:
                callback(finished.exception(), None)
            else:
                callback(None, finished.result())

        task.add_done_callback(_done)
        return task

    async def disconnect(self) -> None:
        """Stop the helper; a no-op when it is not running."""

        supervisor = self._supervisor
        if supervisor is None:
            self._state = ConnectionState.DISCONNECTED
            return
        self._state = ConnectionState.DISCONNECTING
        try:
            await supervisor.stop()
        finally:
            self._supervisor = None
            self._state = ConnectionState.DISCONNECTED
            reader = self._reader_task
            self._reader_task = None
            if reader is not None and reader is not asyncio.current_task():
                reader.cancel()
                await asyncio.gather(reader, return_exceptions=True)
            self._broadcast_failure(ChannelFailure("Connection closed before the response arrived."))

    def dispatch(
        self,
        sql: str,
        trans_id: int = NO_TRANSACTION,
        finish_transaction: bool = False,
        callback: QueryCallback | None = None,
    ) -> int | None:
        """Send one request and return its message id.

        When not connected, or when ``trans_id`` names a transaction that has
        already sent its finishing message, the error is raised, or handed to
        ``callback`` if one is given; nothing is registered or written. A write
        failure fails every pending request and is re-raised when there is no
        ``callback`` to receive it.
        """

        error: SybaseLinkError | None = None
        if not self.is_connected() or self._supervisor is None:
            error = NotConnected()
        elif trans_id in self._finished_transactions:
            error = TransactionClosed(f"Transaction {trans_id} has already finished.")
        if error is not None:
            if callback is None:
                raise error
            callback(error, None)
            return None

        self._query_count += 1
        request = PendingRequest(
            msg_id=self._query_count,
            sql=sql,
            callback=callback,
            trans_id=trans_id,
            sent_at=epoch_ms(),
            started=time.perf_counter(),
        )
        self._requests.register(request)
        if finish_transaction and trans_id != NO_TRANSACTION:
            self._finished_transactions.add(trans_id)
        wire = request.to_message(finish_trans=finish_transaction).to_wire()
        LOG.debug(
            "prepareQuery: msgId: %s pending: %s transId: %s",
            request.msg_id,
            len(self._requests),
            trans_id,
        )
        try:
            self._supervisor.write(wire)
        except ChannelFailure as exc:
            self._broadcast_failure(exc)
            if callback is None:
                raise
        return request.msg_id

    def query(self, sql: str, callback: QueryCallback | None = None) -> int | None:
        """Fire-and-forget query; ``callback(error, result)`` runs on completion."""

        return self.dispatch(sql, callback=callback)

    async def execute(
        self,
        sql: str,
        trans_id: int = NO_TRANSACTION,
        finish_transaction: bool = False,
    ) -> Any:
        """Send a query and wait for its own response."""

        if not self.is_connected():
            raise NotConnected()
        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()

        def _complete(error: BaseException | None, result: Any) -> None:
            if future.done():
                return
            if error is not None:
                future.set_exception(error)
            else:
                future.set_result(result)

        self.dispatch(sql, trans_id, finish_transaction, callback=_complete)
        supervisor = self._supervisor
        if not future.done() and supervisor is not None:
            try:
                await supervisor.drain()
            except ChannelFailure as exc:
                self._broadcast_failure(exc)
        return await future

    async def transaction(self, body: Callable[[Transaction], Awaitable[Any] | Any]) -> Any:
        """Run ``body`` between BEGIN and COMMIT, rolling back on failure."""

        return await run_transaction(self, body)

    def next_transaction_id(self) -> int:
        trans_id = self._transaction_count
        self._transaction_count += 1
        return trans_id

    async def get_version(self) -> str:
        """Return the server's ``@@version`` string."""

        if not self.is_connected():
            raise NotConnected("Not connected to the Sybase database.")
        try:
            rows = await self.execute(VERSION_QUERY)
        except SybaseLinkError as exc:
            raise QueryFailed(f"Failed to retrieve Sybase version due to: {exc}", sql=VERSION_QUERY) from exc
        if rows and isinstance(rows[0], Mapping) and rows[0].get("version"):
            return str(rows[0]["version"])
        raise QueryFailed("Failed to retrieve Sybase version.", sql=VERSION_QUERY)

    async def _read_responses(self, supervisor: ProcessSupervisor) -> None:
        decoder = StreamingDecoder(self._config.encoding)
        try:
            async for payload in decode_stream(supervisor.stdout, decoder):
                record = ResponseRecord.from_payload(payload)
                if record is None:
                    LOG.warning("Ignoring unexpected helper output: %r", payload)
                    continue
                self._on_response(record)
        except DecodeError as exc:
            LOG.error("Helper output could not be decoded: %s", exc)
            self._broadcast_failure(exc)
            return
        except (ConnectionError, OSError) as exc:
            self._broadcast_failure(ChannelFailure(f"Lost connection to helper: {exc}"))
            return
        except Exception as exc:
            LOG.exception("Response reader stopped")
            failure = ChannelFailure(f"Response reader stopped: {exc!r}")
            failure.__cause__ = exc
            self._broadcast_failure(failure)
            return
        if self._state is not ConnectionState.DISCONNECTING:
            self._broadcast_failure(
                ChannelFailure(f"Helper process exited unexpectedly (code {supervisor.returncode}).")
            )

    def _on_response(self, record: ResponseRecord) -> None:
        request = self._requests.resolve(record.msg_id)
        if request is None:
            return
        if record.error is not None:
            error: BaseException | None = QueryFailed(record.error, sql=request.sql, msg_id=request.msg_id)
            result = None
        else:
            error = None
            result = record.value()
        if self._config.log_timing:
            timing = QueryTiming.measure(request, record)
            LOG.info(
                "Execution time: %.3fms dbTime: %sms dbSendTime: %sms sql=%s",
                timing.elapsed_ms,
                timing.helper_ms,
                timing.send_ms,
                request.sql,
            )
        self._complete(request, error, result)

    def _broadcast_failure(self, error: ChannelFailure) -> None:
        """Fail every pending request with ``error`` and leave the connected state."""

        pending = self._requests.drain_all()
        if self._state is ConnectionState.CONNECTED:
            self._state = ConnectionState.DISCONNECTED
        if pending:
            LOG.warning("Failing %d pending request(s): %s", len(pending), error)
        for request in pending:
            self._complete(request, error, None)

    @staticmethod
    def _complete(request: PendingRequest, error: BaseException | None, result: Any) -> None:
        if request.callback is None:
            return
        try:
            request.callback(error, result)
        except Exception:
            LOG.exception("Callback for msgId %s raised", request.msg_id)


__all__ = ["Connection", "VERSION_QUERY"]
