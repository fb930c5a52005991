"""Per-connection table of in-flight requests keyed by message id."""

from __future__ import annotations

import logging
from typing import Iterator

from .models import PendingRequest

LOG = logging.getLogger(__name__)


class CorrelationTable:
    """Track requests until their response arrives or the channel fails.

    Requests are matched only by the id captured when they were created, so
    responses may arrive in any order.
    """

    def __init__(self) -> None:
        self._pending: dict[int, PendingRequest] = {}

    def __len__(self) -> int:
        return len(self._pending)

    def __contains__(self, msg_id: object) -> bool:
        return msg_id in self._pending

    def __iter__(self) -> Iterator[PendingRequest]:
        return iter(tuple(self._pending.values()))

    def register(self, request: PendingRequest) -> None:
        """Start tracking ``request``; ids may never be reused."""

        if request.msg_id in self._pending:
            raise ValueError(f"Request id {request.msg_id} is already pending.")
        self._pending[request.msg_id] = request

    def resolve(self, msg_id: int) -> PendingRequest | None:
        """Remove and return the request for ``msg_id``.

        Unknown ids (stale or already resolved) return ``None``.
        """

        request = self._pending.pop(msg_id, None)
        if request is None:
            LOG.debug("Dropping response for unknown msgId %s", msg_id)
        return request

    def drain_all(self) -> list[PendingRequest]:
        """Empty the table and return everything that was pending."""

        drained = list(self._pending.values())
        self._pending.clear()
        return drained


__all__ = ["CorrelationTable"]
