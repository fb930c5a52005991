"""Error taxonomy shared by the supervisor, dispatcher and transactions."""

from __future__ import annotations


class SybaseLinkError(RuntimeError):
    """Base class for every error raised by sybaselink."""


class StartupFailure(SybaseLinkError):
    """Raised when the helper never completes its startup handshake."""


class NotConnected(SybaseLinkError):
    """Raised when an operation needs a connected helper and there is none."""

    def __init__(self, message: str = "Database isn't connected.") -> None:
        super().__init__(message)


class QueryFailed(SybaseLinkError):
    """Raised when the helper reports an error for a specific query."""

    def __init__(self, message: str, *, sql: str | None = None, msg_id: int | None = None) -> None:
        super().__init__(message)
        self.sql = sql
        self.msg_id = msg_id


class ChannelFailure(SybaseLinkError):
    """Raised for every pending request once the stdio channel breaks."""


class DecodeError(ChannelFailure):
    """Raised when the helper's stdout is not a valid JSON stream."""


class AbnormalExit(SybaseLinkError):
    """Raised by disconnect when the helper exits with an unexpected code."""

    def __init__(self, returncode: int | None) -> None:
        super().__init__(f"Java process exited with code {returncode}")
        self.returncode = returncode


class TransactionClosed(SybaseLinkError):
    """Raised when a finished transaction handle is used again."""


__all__ = [
    "AbnormalExit",
    "ChannelFailure",
    "DecodeError",
    "NotConnected",
    "QueryFailed",
    "StartupFailure",
    "SybaseLinkError",
    "TransactionClosed",
]
