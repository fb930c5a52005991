"""Shared fixtures: an in-memory stand-in for the helper process."""

from __future__ import annotations

import asyncio
import json
from typing import Any, Callable

import pytest

from sybaselink.config import BridgeConfig
from sybaselink.connection import Connection
from sybaselink.errors import ChannelFailure

Responder = Callable[[dict[str, Any]], "dict[str, Any] | None"]


def echo_responder(message: dict[str, Any]) -> dict[str, Any]:
    """Answer every request with a single result set describing it."""

    return {
        "msgId": message["msgId"],
        "result": [[{"sql": message["sql"], "transId": message["transId"]}]],
        "javaStartTime": message["sentTime"],
        "javaEndTime": message["sentTime"] + 3,
    }


class FakeSupervisor:
    """Records stdin writes and lets tests push stdout bytes."""

    def __init__(self, responder: Responder | None = echo_responder) -> None:
        self.responder = responder
        self.raw = bytearray()
        self.written: list[dict[str, Any]] = []
        self.fail_writes = False
        self.returncode: int | None = None
        self.started = False
        self.stopped = False
        self._stdout: asyncio.StreamReader | None = None

    @property
    def stdout(self) -> asyncio.StreamReader:
        assert self._stdout is not None
        return self._stdout

    @property
    def sql(self) -> list[str]:
        return [message["sql"] for message in self.written]

    async def start(self) -> None:
        self._stdout = asyncio.StreamReader()
        self.started = True

    def write(self, data: bytes) -> None:
        if self.fail_writes:
            raise ChannelFailure("Broken pipe")
        self.raw += data
        for line in data.decode("utf-8").splitlines():
            message = json.loads(line)
            self.written.append(message)
            if self.responder is not None:
                reply = self.responder(message)
                if reply is not None:
                    asyncio.get_running_loop().call_soon(self.send, reply)

    async def drain(self) -> None:
        return None

    def send(self, *payloads: dict[str, Any]) -> None:
        self.send_raw(b"".join(json.dumps(payload).encode("utf-8") for payload in payloads))

    def send_raw(self, data: bytes) -> None:
        self.stdout.feed_data(data)

    def crash(self, code: int = 1) -> None:
        self.returncode = code
        self.stdout.feed_eof()

    async def stop(self) -> None:
        self.stopped = True
        self.returncode = -15
        self.stdout.feed_eof()

    async def kill(self) -> None:
        await self.stop()

    async def wait_for_writes(self, count: int) -> None:
        """Yield to the loop until ``count`` requests have been written."""

        for _ in range(100):
            if len(self.written) >= count:
                return
            await asyncio.sleep(0)
        raise AssertionError(f"expected {count} writes, saw {len(self.written)}")


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def bridge_config() -> BridgeConfig:
    return BridgeConfig(host="db.local", port=5000, database="sales", username="sa", password="secret")


@pytest.fixture
def helper() -> FakeSupervisor:
    return FakeSupervisor()


@pytest.fixture
def connection(bridge_config: BridgeConfig, helper: FakeSupervisor) -> Connection:
    return Connection(bridge_config, supervisor_factory=lambda _config: helper)  # type: ignore[arg-type, return-value]
