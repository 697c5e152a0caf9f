"""Tests for event stream sessions."""

import asyncio
import json
import re

import pytest
from unittest.mock import AsyncMock, Mock

from gerrit_notifier.services.event_stream import (
    DebugEventWriter,
    StreamSession,
    decode_event,
    event_queue_writer,
    run_forever,
    ssh_command,
)
from gerrit_notifier.utils.errors import StreamSessionError
from gerrit_notifier.utils.settings import Settings
from tests.fixtures.gerrit_events import change_merged_event, patchset_created_event


class FakeProcess:
    """Stands in for an ssh subprocess; the test decides when it exits."""

    def __init__(self, lines=(), eof=False):
        self.stdout = asyncio.StreamReader()
        for line in lines:
            self.stdout.feed_data(line)
        if eof:
            self.stdout.feed_eof()
        self.returncode = None
        self.terminated = False
        self._exited = asyncio.Event()

    def exit(self, code: int) -> None:
        self.returncode = code
        if not self.stdout.at_eof():
            self.stdout.feed_eof()
        self._exited.set()

    async def wait(self) -> int:
        await self._exited.wait()
        return self.returncode

    def terminate(self) -> None:
        self.terminated = True
        self.exit(-15)

    def kill(self) -> None:
        self.exit(-9)


def line(payload: dict) -> bytes:
    return json.dumps(payload).encode("utf-8") + b"\n"


def spawner(process: FakeProcess):
    async def spawn():
        return process
    return spawn


@pytest.mark.unit
@pytest.mark.asyncio
async def test_clean_exit_still_raises():
    """Test a session that ends without an explicit error still fails."""
    process = FakeProcess([line(change_merged_event()), b"\n", line(patchset_created_event())])
    received = []

    async def on_line(raw):
        received.append(raw)

    session = StreamSession(spawner(process), on_line)
    run = asyncio.create_task(session.run())
    await asyncio.sleep(0)
    process.exit(0)

    with pytest.raises(StreamSessionError, match="ended unexpectedly"):
        await run

    assert len(received) == 2
    assert all(not raw.endswith(b"\n") for raw in received)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_remote_exit_status_reported():
    """Test a failing remote command surfaces its status."""
    process = FakeProcess()
    session = StreamSession(spawner(process), AsyncMock())
    run = asyncio.create_task(session.run())
    await asyncio.sleep(0)
    process.exit(255)

    with pytest.raises(StreamSessionError, match="status 255"):
        await run


@pytest.mark.unit
@pytest.mark.asyncio
async def test_eof_tears_down_process():
    """Test the read loop ending first terminates the remote command."""
    process = FakeProcess([line(change_merged_event())], eof=True)
    on_line = AsyncMock()

    with pytest.raises(StreamSessionError, match="ended unexpectedly"):
        await StreamSession(spawner(process), on_line).run()

    assert process.terminated is True
    on_line.assert_awaited_once()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_read_error_reported():
    """Test a failing line handler ends the session with its error."""
    process = FakeProcess([line(change_merged_event())])
    on_line = AsyncMock(side_effect=RuntimeError("sink closed"))

    with pytest.raises(StreamSessionError, match="sink closed") as exc_info:
        await StreamSession(spawner(process), on_line).run()

    assert isinstance(exc_info.value.__cause__, RuntimeError)
    assert process.terminated is True


@pytest.mark.unit
@pytest.mark.asyncio
async def test_spawn_failure_reported():
    """Test that failing to start ssh is a session error."""
    async def spawn():
        raise FileNotFoundError("ssh")

    with pytest.raises(StreamSessionError, match="Failed to start"):
        await StreamSession(spawn, AsyncMock()).run()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_cancel_terminates_process():
    """Test cancellation unblocks the session and stops the process."""
    process = FakeProcess()
    run = asyncio.create_task(StreamSession(spawner(process), AsyncMock()).run())
    await asyncio.sleep(0)

    run.cancel()
    with pytest.raises(asyncio.CancelledError):
        await run

    assert process.terminated is True


@pytest.mark.unit
@pytest.mark.asyncio
async def test_malformed_line_skipped():
    """Test bad records are logged and the next one still arrives."""
    queue = asyncio.Queue()
    on_line = event_queue_writer(queue)

    await on_line(b"{not json")
    await on_line(b'{"change": {"project": "no-type"}}')
    await on_line(line(change_merged_event()).strip())

    assert queue.qsize() == 1
    assert queue.get_nowait().type == "change-merged"


@pytest.mark.unit
def test_decode_event():
    """Test decoding one record."""
    event = decode_event(line(patchset_created_event(number=4)))

    assert event.type == "patchset-created"
    assert event.patch_set.number == 4


@pytest.mark.unit
@pytest.mark.asyncio
async def test_run_forever_reconnects_after_failures():
    """Test every failure is followed by another attempt."""
    session = Mock()
    session.name = "events"
    session.run = AsyncMock(side_effect=[
        StreamSessionError("Stream session ended unexpectedly"),
        StreamSessionError("Remote command exited with status 255"),
        asyncio.CancelledError(),
    ])

    with pytest.raises(asyncio.CancelledError):
        await run_forever(session, retry_delay=0)

    assert session.run.await_count == 3
    assert session.log.error.call_count == 2


@pytest.mark.unit
def test_ssh_command(ssh_key_file):
    """Test the ssh invocation, with and without a pinned host key."""
    settings = Settings(
        gerrit_http_url="https://gerrit.test",
        gerrit_username="notifier",
        gerrit_password="secret",
        gerrit_ssh_host="gerrit.test",
        gerrit_ssh_port=29418,
        gerrit_ssh_private_key_path=ssh_key_file,
    )

    args = ssh_command(settings)

    assert args[0] == "ssh"
    assert args[args.index("-p") + 1] == "29418"
    assert args[args.index("-i") + 1] == ssh_key_file
    assert args[-3:] == ["notifier@gerrit.test", "gerrit", "stream-events"]
    assert not any("StrictHostKeyChecking" in arg for arg in args)

    pinned = ssh_command(settings.model_copy(update={"gerrit_ssh_known_hosts": "/etc/gerrit/known_hosts"}))

    assert "UserKnownHostsFile=/etc/gerrit/known_hosts" in pinned
    assert "StrictHostKeyChecking=yes" in pinned


@pytest.mark.unit
@pytest.mark.asyncio
async def test_debug_event_writer(tmp_path):
    """Test raw lines are written with a timestamp prefix."""
    path = tmp_path / "events.log"
    writer = DebugEventWriter(str(path))
    try:
        await writer(b'{"type":"change-merged"}')
        await writer(b'{"type":"ref-updated"}')
    finally:
        writer.close()

    lines = path.read_text(encoding="utf-8").splitlines()
    assert len(lines) == 2
    assert re.match(r'^\d{2} \w{3} \d{2} \d{2}:\d{2} ?\S*: \{"type":"change-merged"\}$', lines[0])
    assert lines[1].endswith(': {"type":"ref-updated"}')


@pytest.mark.unit
@pytest.mark.asyncio
async def test_debug_event_writer_rolls_over_off_the_loop(tmp_path, monkeypatch):
    """Test writes, rollover included, run in a worker thread."""
    to_thread = AsyncMock(side_effect=lambda func, *args: func(*args))
    monkeypatch.setattr("gerrit_notifier.services.event_stream.asyncio.to_thread", to_thread)
    path = tmp_path / "events.log"
    writer = DebugEventWriter(str(path), max_bytes=64, backup_count=1)
    try:
        for number in range(3):
            await writer(json.dumps({"type": "ref-updated", "n": number}).encode("utf-8"))
    finally:
        writer.close()

    assert to_thread.await_count == 3
    assert (tmp_path / "events.log.1").exists()
    assert path.read_text(encoding="utf-8").rstrip().endswith('"n": 2}')
