"""Gerrit event stream sessions over SSH, with reconnect and a debug tee."""

import asyncio
import logging
from datetime import datetime
from logging.handlers import RotatingFileHandler
from typing import Awaitable, Callable, Optional, Protocol

from pydantic import ValidationError

from gerrit_notifier.models.event import Event
from gerrit_notifier.utils.errors import StreamSessionError
from gerrit_notifier.utils.logging import content_preview, get_structured_logger
from gerrit_notifier.utils.settings import Settings

logger = get_structured_logger(__name__)

STREAM_COMMAND = ("gerrit", "stream-events")
# Events carry full commit messages; the asyncio default of 64 KiB is too small.
STREAM_LINE_LIMIT = 4 * 1024 * 1024
TEARDOWN_TIMEOUT = 5.0
DEFAULT_RETRY_DELAY = 3.0

DEBUG_LOG_MAX_BYTES = 100 * 1024 * 1024
DEBUG_LOG_BACKUPS = 3


class StreamProcess(Protocol):
    """The parts of asyncio.subprocess.Process a session uses."""

    stdout: asyncio.StreamReader
    returncode: Optional[int]

    async def wait(self) -> int:
        ...

    def terminate(self) -> None:
        ...

    def kill(self) -> None:
        ...


LineHandler = Callable[[bytes], Awaitable[None]]
ProcessFactory = Callable[[], Awaitable[StreamProcess]]


def ssh_command(settings: Settings) -> list[str]:
    """Build the ssh invocation that runs stream-events on the server."""
    args = [
        "ssh",
        "-p", str(settings.gerrit_ssh_port),
        "-i", settings.gerrit_ssh_private_key_path,
        "-o", "BatchMode=yes",
        "-o", "ServerAliveInterval=30",
    ]
    if settings.gerrit_ssh_known_hosts:
        args += [
            "-o", f"UserKnownHostsFile={settings.gerrit_ssh_known_hosts}",
            "-o", "StrictHostKeyChecking=yes",
        ]
    args.append(f"{settings.gerrit_username}@{settings.gerrit_ssh_host}")
    args.extend(STREAM_COMMAND)
    return args


def ssh_process_factory(settings: Settings) -> ProcessFactory:
    """Return a factory that opens a new ssh stream-events process per call."""
    args = ssh_command(settings)

    async def spawn() -> StreamProcess:
        return await asyncio.create_subprocess_exec(
            *args,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            limit=STREAM_LINE_LIMIT,
        )

    return spawn


class StreamSession:
    """
    One subscription to the event stream.

    ``run()`` blocks until the remote command exits, the read loop ends, or
    the task is cancelled. It never returns normally: a session that ends
    without an explicit error raises a generic StreamSessionError so callers
    always have a failure to act on.
    """

    def __init__(self, spawn: ProcessFactory, on_line: LineHandler, name: str = "events"):
        self._spawn = spawn
        self._on_line = on_line
        self.name = name
        self.log = logger.bind(stream=name)

    def __repr__(self) -> str:
        return f"<StreamSession {self.name}>"

    async def _read_lines(self, stdout: asyncio.StreamReader) -> None:
        while True:
            line = await stdout.readline()
            if not line:
                return
            line = line.strip()
            if line:
                await self._on_line(line)

    async def run(self) -> None:
        try:
            process = await self._spawn()
        except OSError as e:
            raise StreamSessionError(f"Failed to start stream session: {e}") from e

        self.log.info("Stream session started")
        wait_task = asyncio.create_task(process.wait())
        read_task = asyncio.create_task(self._read_lines(process.stdout))
        error: Optional[StreamSessionError] = None

        try:
            done, _ = await asyncio.wait({wait_task, read_task}, return_when=asyncio.FIRST_COMPLETED)
            if wait_task in done and wait_task.result():
                error = StreamSessionError(f"Remote command exited with status {wait_task.result()}")
            elif read_task in done and read_task.exception() is not None:
                cause = read_task.exception()
                error = StreamSessionError(f"Error reading event stream: {cause}")
                error.__cause__ = cause
        finally:
            await self._teardown(process, wait_task, read_task)

        raise error or StreamSessionError("Stream session ended unexpectedly")

    async def _teardown(self, process: StreamProcess, wait_task: asyncio.Task, read_task: asyncio.Task) -> None:
        if process.returncode is None:
            try:
                process.terminate()
            except ProcessLookupError:
                pass

        _, pending = await asyncio.wait({wait_task, read_task}, timeout=TEARDOWN_TIMEOUT)
        for task in pending:
            task.cancel()
        if process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass
        await asyncio.gather(wait_task, read_task, return_exceptions=True)
        self.log.info("Stream session closed", returncode=process.returncode)


async def run_forever(session: StreamSession, retry_delay: float = DEFAULT_RETRY_DELAY) -> None:
    """Keep a session alive: rerun it after every failure, with a fixed delay."""
    while True:
        try:
            await session.run()
        except StreamSessionError as e:
            session.log.error("Error streaming events", error=str(e))
        await asyncio.sleep(retry_delay)


def decode_event(line: bytes) -> Event:
    """Decode one JSON record from the stream."""
    return Event.model_validate_json(line)


def event_queue_writer(queue: "asyncio.Queue[Event]") -> LineHandler:
    """Line handler that decodes events onto a queue; bad records are logged and skipped."""

    async def on_line(line: bytes) -> None:
        try:
            event = decode_event(line)
        except ValidationError as e:
            logger.error("Error decoding event", error=str(e), line_preview=content_preview(line.decode("utf-8", "replace")))
            return
        logger.info("Gerrit event", **event.log_fields())
        await queue.put(event)

    return on_line


class DebugEventWriter:
    """Writes raw stream lines, timestamped, to a size-rotated file."""

    def __init__(self, path: str, max_bytes: int = DEBUG_LOG_MAX_BYTES, backup_count: int = DEBUG_LOG_BACKUPS):
        self.path = path
        self._logger = logging.getLogger(f"{__name__}.debug_tee")
        self._logger.propagate = False
        self._logger.setLevel(logging.INFO)
        self._handler = RotatingFileHandler(path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8")
        self._handler.setFormatter(logging.Formatter("%(message)s"))
        self._logger.addHandler(self._handler)

    def close(self) -> None:
        self._logger.removeHandler(self._handler)
        self._handler.close()

    async def __call__(self, line: bytes) -> None:
        stamp = datetime.now().astimezone().strftime("%d %b %y %H:%M %Z")
        # Rollover renames and reopens files; keep it off the event loop.
        await asyncio.to_thread(self._logger.info, "%s: %s", stamp, line.decode("utf-8", "replace"))
