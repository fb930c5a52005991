"""Lifecycle management for the helper process."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal

from .config import BridgeConfig
from .errors import AbnormalExit, ChannelFailure, StartupFailure

LOG = logging.getLogger(__name__)

HANDSHAKE_LINE = "connected"

# Pool lifecycle chatter and warnings the helper prints on stderr.
INFORMATIONAL_MARKERS = ("[main] INFO", "[Thread-", "HikariPool", "WARN")

# asyncio reports signal deaths as -signum; shells report 128 + signum.
CLEAN_EXIT_CODES = frozenset({0, -signal.SIGTERM, 128 + signal.SIGTERM})


def is_informational(line: str) -> bool:
    """Return True if a stderr line is harmless helper chatter."""

    return any(marker in line for marker in INFORMATIONAL_MARKERS)


class ProcessSupervisor:
    """Start the helper, wait for its handshake, and own its pipes."""

    def __init__(self, config: BridgeConfig) -> None:
        self._config = config
        self._encoding = config.encoding
        self._process: asyncio.subprocess.Process | None = None
        self._stderr_task: asyncio.Task[None] | None = None
        self._drain_lock = asyncio.Lock()

    @property
    def running(self) -> bool:
        return self._process is not None and self._process.returncode is None

    @property
    def returncode(self) -> int | None:
        if self._process is None:
            return None
        return self._process.returncode

    @property
    def stdout(self) -> asyncio.StreamReader:
        """Helper stdout, positioned just past the handshake line."""

        if self._process is None or self._process.stdout is None:
            raise ChannelFailure("Helper process is not running.")
        return self._process.stdout

    async def start(self) -> None:
        """Spawn the helper and return once it reports ``connected``."""

        if self.running:
            raise StartupFailure("Helper process is already running.")
        LOG.debug("Starting helper: %s", " ".join(self._config.redacted_command()))
        try:
            self._process = await asyncio.create_subprocess_exec(
                *self._config.launch_command(),
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except (FileNotFoundError, PermissionError, OSError) as exc:
            raise StartupFailure(f"Failed to launch helper: {exc}") from exc

        try:
            await asyncio.wait_for(self._handshake(self._process), timeout=self._config.startup_timeout)
        except asyncio.TimeoutError:
            await self.kill()
            raise StartupFailure("Timed out waiting for the helper to connect.") from None
        except BaseException:
            await self.kill()
            raise

        assert self._process.stderr is not None
        self._stderr_task = asyncio.create_task(self._drain_stderr(self._process.stderr))
        LOG.debug("Helper connected (pid %s)", self._process.pid)

    def write(self, data: bytes) -> None:
        """Queue bytes on the helper's stdin."""

        stdin = self._process.stdin if self._process else None
        if stdin is None or stdin.is_closing() or not self.running:
            raise ChannelFailure("Helper process is not accepting input.")
        try:
            stdin.write(data)
        except (ConnectionError, OSError) as exc:
            raise ChannelFailure(f"Failed to write to helper: {exc}") from exc

    async def drain(self) -> None:
        """Wait until queued stdin bytes have been flushed to the pipe."""

        stdin = self._process.stdin if self._process else None
        if stdin is None:
            raise ChannelFailure("Helper process is not accepting input.")
        async with self._drain_lock:
            try:
                await stdin.drain()
            except (ConnectionError, OSError) as exc:
                raise ChannelFailure(f"Failed to write to helper: {exc}") from exc

    async def stop(self) -> None:
        """Terminate the helper and wait for it to exit."""

        process = self._process
        if process is None:
            return
        if process.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                process.terminate()
        code = await process.wait()
        await self._cleanup()
        LOG.debug("Helper exited with code %s", code)
        if code not in CLEAN_EXIT_CODES:
            raise AbnormalExit(code)

    async def kill(self) -> None:
        """Kill the helper without judging its exit code."""

        process = self._process
        if process is None:
            return
        if process.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                process.kill()
        await process.wait()
        await self._cleanup()

    async def _cleanup(self) -> None:
        if self._stderr_task is not None:
            self._stderr_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._stderr_task
            self._stderr_task = None
        self._process = None

    async def _handshake(self, process: asyncio.subprocess.Process) -> None:
        assert process.stdout is not None and process.stderr is not None
        stdout_task = asyncio.create_task(self._read_handshake(process.stdout))
        stderr_task = asyncio.create_task(self._watch_stderr(process.stderr))
        try:
            done, _ = await asyncio.wait({stdout_task, stderr_task}, return_when=asyncio.FIRST_COMPLETED)
            if stderr_task in done:
                # Raises on a fatal line; a clean EOF leaves stdout to decide.
                stderr_task.result()
                await stdout_task
                return
            try:
                stdout_task.result()
            except StartupFailure:
                # Raises the helper's own error line instead, if one is on its way.
                with contextlib.suppress(asyncio.TimeoutError):
                    await asyncio.wait_for(asyncio.shield(stderr_task), timeout=1.0)
                raise
        finally:
            for task in (stdout_task, stderr_task):
                if not task.done():
                    task.cancel()
                    with contextlib.suppress(asyncio.CancelledError):
                        await task

    async def _read_handshake(self, stdout: asyncio.StreamReader) -> None:
        while True:
            line = await stdout.readline()
            if not line:
                raise StartupFailure("Helper exited before reporting a connection.")
            text = line.decode(self._encoding, errors="replace").strip()
            if text == HANDSHAKE_LINE:
                return
            LOG.debug("Helper stdout before handshake: %s", text)

    async def _watch_stderr(self, stderr: asyncio.StreamReader) -> None:
        while True:
            line = await stderr.readline()
            if not line:
                return
            text = line.decode(self._encoding, errors="replace").rstrip()
            if not text:
                continue
            if is_informational(text):
                LOG.debug("Helper: %s", text)
                continue
            raise StartupFailure(text)

    async def _drain_stderr(self, stderr: asyncio.StreamReader) -> None:
        while True:
            line = await stderr.readline()
            if not line:
                return
            LOG.debug("Helper: %s", line.decode(self._encoding, errors="replace").rstrip())


__all__ = [
    "CLEAN_EXIT_CODES",
    "HANDSHAKE_LINE",
    "INFORMATIONAL_MARKERS",
    "ProcessSupervisor",
    "is_informational",
]
