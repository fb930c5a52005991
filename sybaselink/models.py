"""Shared dataclasses describing the helper's wire protocol."""

from __future__ import annotations

import json
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Mapping

NO_TRANSACTION = -1

Row = Mapping[str, Any]
ResultSet = list[Row]
QueryCallback = Callable[[BaseException | None, Any], None]


class ConnectionState(str, Enum):
    """Lifecycle of a connection to the helper process."""

    DISCONNECTED = "Disconnected"
    CONNECTING = "Connecting"
    CONNECTED = "Connected"
    DISCONNECTING = "Disconnecting"


@dataclass(frozen=True, slots=True)
class RequestMessage:
    """Outbound request written to the helper's stdin."""

    msg_id: int
    trans_id: int
    finish_trans: bool
    sql: str
    sent_time: int

    def to_wire(self) -> bytes:
        """Serialize to a single newline-terminated JSON line."""

        payload = {
            "msgId": self.msg_id,
            "transId": self.trans_id,
            "finishTrans": self.finish_trans,
            "sql": self.sql,
            "sentTime": self.sent_time,
        }
        # The helper reads one request per line.
        line = json.dumps(payload, separators=(",", ":")).replace("\n", "\\n")
        return (line + "\n").encode("utf-8")


@dataclass(frozen=True, slots=True)
class ResponseRecord:
    """Inbound record decoded from the helper's stdout."""

    msg_id: int
    result: list[ResultSet]
    java_start_time: int | None = None
    java_end_time: int | None = None
    error: str | None = None

    @classmethod
    def from_payload(cls, payload: object) -> ResponseRecord | None:
        """Build a record from a decoded JSON value; ``None`` if it is not one."""

        if not isinstance(payload, dict):
            return None
        msg_id = payload.get("msgId")
        if not isinstance(msg_id, int) or isinstance(msg_id, bool):
            return None
        result = payload.get("result")
        error = payload.get("error")
        return cls(
            msg_id=msg_id,
            result=list(result) if isinstance(result, list) else [],
            java_start_time=_as_int(payload.get("javaStartTime")),
            java_end_time=_as_int(payload.get("javaEndTime")),
            error=None if error is None else str(error),
        )

    def value(self) -> Any:
        """Return the delivered result.

        A payload holding exactly one result set is unwrapped to that set;
        anything else is returned as the full list of result sets.
        """

        if len(self.result) == 1:
            return self.result[0]
        return self.result


@dataclass(slots=True)
class PendingRequest:
    """A request waiting for its response in the correlation table."""

    msg_id: int
    sql: str
    callback: QueryCallback | None
    trans_id: int = NO_TRANSACTION
    sent_at: int = 0
    started: float = 0.0

    def to_message(self, *, finish_trans: bool = False) -> RequestMessage:
        return RequestMessage(
            msg_id=self.msg_id,
            trans_id=self.trans_id,
            finish_trans=finish_trans,
            sql=self.sql,
            sent_time=self.sent_at,
        )


@dataclass(frozen=True, slots=True)
class QueryTiming:
    """Diagnostics for a completed request; never affects the result."""

    elapsed_ms: float
    helper_ms: int | None
    send_ms: int | None

    @classmethod
    def measure(cls, request: PendingRequest, record: ResponseRecord) -> QueryTiming:
        now_ms = epoch_ms()
        helper_ms = None
        send_ms = None
        if record.java_start_time is not None and record.java_end_time is not None:
            helper_ms = record.java_end_time - record.java_start_time
        if record.java_end_time is not None:
            send_ms = now_ms - record.java_end_time
        return cls(
            elapsed_ms=(time.perf_counter() - request.started) * 1000,
            helper_ms=helper_ms,
            send_ms=send_ms,
        )


def epoch_ms() -> int:
    return int(time.time() * 1000)


def _as_int(value: object) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    return None


__all__ = [
    "ConnectionState",
    "NO_TRANSACTION",
    "PendingRequest",
    "QueryCallback",
    "QueryTiming",
    "RequestMessage",
    "ResponseRecord",
    "ResultSet",
    "Row",
    "epoch_ms",
]
