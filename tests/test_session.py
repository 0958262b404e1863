import asyncio
import time

import pytest
from websockets.exceptions import ConnectionClosedError, ConnectionClosedOK

from webtail.config import TailSettings
from webtail.session import SessionState, TailSession
from webtail.sources import FileSource, SourceIOError, SourceNotFound

FAST = TailSettings(poll_interval=0.01, liveness_timeout=0.5, heartbeat_ratio=0.2, write_timeout=0.5)


class FakeConnection:
    """In-memory stand-in for a websockets ServerConnection."""

    def __init__(self, answer_pings=True):
        self.answer_pings = answer_pings
        self.messages = []
        self.pings = 0
        self.ping_payloads = []
        self.close_calls = []
        self.fail_sends = False
        self.writers = 0
        self.max_writers = 0
        self._inbox = asyncio.Queue()

    async def _write(self):
        self.writers += 1
        self.max_writers = max(self.max_writers, self.writers)
        try:
            await asyncio.sleep(0)
        finally:
            self.writers -= 1

    async def send(self, message):
        if self.fail_sends:
            raise ConnectionClosedError(None, None)
        await self._write()
        self.messages.append(message)

    async def ping(self, data=None):
        await self._write()
        self.pings += 1
        self.ping_payloads.append(data)
        waiter = asyncio.get_running_loop().create_future()
        if self.answer_pings:
            waiter.set_result(0.0)
        return waiter

    async def recv(self):
        item = await self._inbox.get()
        if isinstance(item, Exception):
            raise item
        return item

    async def close(self, code=1000, reason=""):
        self.close_calls.append((code, reason))

    def peer_sends(self, message):
        self._inbox.put_nowait(message)

    def peer_closes(self):
        self._inbox.put_nowait(ConnectionClosedOK(None, None))


class ScriptedSource:
    name = "scripted"

    def __init__(self, script=()):
        self.script = list(script)
        self.polls = 0
        self.closed = False

    def poll(self):
        self.polls += 1
        if not self.script:
            return b""
        item = self.script.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def close(self):
        self.closed = True


async def wait_until(cond, timeout=3.0):
    deadline = time.monotonic() + timeout
    while not cond():
        if time.monotonic() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.01)


def test_note_error_reports_each_distinct_text_once():
    session = TailSession(FakeConnection(), ScriptedSource, FAST)
    assert session.note_error("gone")
    assert not session.note_error("gone")
    assert session.note_error("other")
    session.clear_error()
    assert session.last_error is None
    assert session.note_error("other")


def test_heartbeat_interval_tracks_liveness_timeout():
    assert FAST.heartbeat_interval == pytest.approx(0.1)


@pytest.mark.asyncio
async def test_idle_source_sends_heartbeats_but_no_data():
    conn = FakeConnection()
    source = ScriptedSource()
    session = TailSession(conn, lambda: source, FAST)
    task = asyncio.create_task(session.run())
    await wait_until(lambda: conn.pings >= 2)
    assert session.state is SessionState.ACTIVE
    assert source.polls > 2
    assert conn.messages == []

    conn.peer_closes()
    await asyncio.wait_for(task, 2)
    assert session.state is SessionState.CLOSED
    assert source.closed
    assert len(conn.close_calls) == 1


@pytest.mark.asyncio
async def test_repeated_errors_are_sent_once_per_run():
    conn = FakeConnection()
    source = ScriptedSource([
        SourceIOError("gone"),
        SourceIOError("gone"),
        SourceIOError("gone"),
        b"x\n",
        SourceIOError("gone"),
        SourceIOError("other"),
        SourceIOError("other"),
    ])
    session = TailSession(conn, lambda: source, FAST)
    task = asyncio.create_task(session.run())
    await wait_until(lambda: not source.script and source.polls > 10)
    assert conn.messages == ["gone", "x\n", "gone", "other"]
    assert session.last_error is None

    conn.peer_closes()
    await asyncio.wait_for(task, 2)


@pytest.mark.asyncio
async def test_silent_peer_times_out_and_releases_source():
    conn = FakeConnection(answer_pings=False)
    source = ScriptedSource()
    settings = TailSettings(poll_interval=0.01, liveness_timeout=0.3, heartbeat_ratio=0.45, write_timeout=0.5)
    session = TailSession(conn, lambda: source, settings)
    started = time.monotonic()
    await asyncio.wait_for(session.run(), 3)
    elapsed = time.monotonic() - started

    assert 0.25 <= elapsed < 1.5
    assert conn.pings >= 1
    assert session.state is SessionState.CLOSED
    assert source.closed
    assert len(conn.close_calls) == 1


@pytest.mark.asyncio
async def test_inbound_frames_keep_session_alive():
    conn = FakeConnection(answer_pings=False)
    source = ScriptedSource()
    settings = TailSettings(poll_interval=0.01, liveness_timeout=0.3, heartbeat_ratio=0.45, write_timeout=0.5)
    session = TailSession(conn, lambda: source, settings)
    task = asyncio.create_task(session.run())
    for _ in range(8):
        await asyncio.sleep(0.1)
        conn.peer_sends("hello")
    assert session.state is SessionState.ACTIVE
    await asyncio.wait_for(task, 2)
    assert session.state is SessionState.CLOSED


@pytest.mark.asyncio
async def test_write_failure_ends_session():
    conn = FakeConnection()
    conn.fail_sends = True
    source = ScriptedSource([b"data\n"])
    session = TailSession(conn, lambda: source, FAST)
    await asyncio.wait_for(session.run(), 2)
    assert session.state is SessionState.CLOSED
    assert source.closed
    assert len(conn.close_calls) == 1


@pytest.mark.asyncio
async def test_unopenable_source_never_becomes_active():
    conn = FakeConnection()

    def opener():
        raise SourceNotFound("No such file or directory: /tmp/nope")

    session = TailSession(conn, opener, FAST)
    await session.run()
    assert session.state is SessionState.CLOSED
    assert session.source is None
    assert conn.close_calls == [(1011, "No such file or directory: /tmp/nope")]
    assert conn.messages == []


@pytest.mark.asyncio
async def test_data_keeps_order_and_frames_never_interleave():
    conn = FakeConnection()
    chunks = [b"%d\n" % i for i in range(50)]
    source = ScriptedSource(chunks)
    settings = TailSettings(poll_interval=0.001, liveness_timeout=0.5, heartbeat_ratio=0.02, write_timeout=0.5)
    session = TailSession(conn, lambda: source, settings)
    task = asyncio.create_task(session.run())
    await wait_until(lambda: len(conn.messages) == 50)
    conn.peer_closes()
    await asyncio.wait_for(task, 2)

    assert conn.messages == [c.decode() for c in chunks]
    assert conn.pings > 0
    assert conn.max_writers == 1


@pytest.mark.asyncio
async def test_deleted_file_is_reported_once_and_recovers(tmp_path):
    path = tmp_path / "app.log"
    path.write_bytes(b"a\n")
    conn = FakeConnection()
    session = TailSession(conn, lambda: FileSource(str(path)), FAST)
    task = asyncio.create_task(session.run())

    await wait_until(lambda: conn.messages == ["a\n"])
    path.unlink()
    await wait_until(lambda: len(conn.messages) == 2)
    assert str(path) in conn.messages[1]
    await asyncio.sleep(0.1)
    assert len(conn.messages) == 2

    path.write_bytes(b"b\n")
    await wait_until(lambda: len(conn.messages) == 3)
    assert conn.messages[2] == "b\n"

    conn.peer_closes()
    await asyncio.wait_for(task, 2)


@pytest.mark.asyncio
async def test_unanswered_ping_is_not_repeated():
    conn = FakeConnection(answer_pings=False)
    source = ScriptedSource()
    settings = TailSettings(poll_interval=0.01, liveness_timeout=1.0, heartbeat_ratio=0.1, write_timeout=0.5)
    session = TailSession(conn, lambda: source, settings)
    task = asyncio.create_task(session.run())
    await asyncio.sleep(0.45)
    assert conn.ping_payloads == [b""]

    conn.peer_closes()
    await asyncio.wait_for(task, 2)


@pytest.mark.asyncio
async def test_heartbeats_carry_empty_payload():
    conn = FakeConnection()
    session = TailSession(conn, ScriptedSource, FAST)
    task = asyncio.create_task(session.run())
    await wait_until(lambda: conn.pings >= 3)
    assert set(conn.ping_payloads) == {b""}

    conn.peer_closes()
    await asyncio.wait_for(task, 2)


@pytest.mark.asyncio
async def test_character_split_across_polls_arrives_intact(tmp_path):
    path = tmp_path / "utf8.log"
    path.write_bytes(b"caf\xc3")
    conn = FakeConnection()
    session = TailSession(conn, lambda: FileSource(str(path)), FAST)
    task = asyncio.create_task(session.run())

    await wait_until(lambda: conn.messages == ["caf"])
    with open(path, "ab") as f:
        f.write(b"\xa9\n")
    await wait_until(lambda: "".join(conn.messages) == "café\n")
    assert "\ufffd" not in "".join(conn.messages)

    conn.peer_closes()
    await asyncio.wait_for(task, 2)
