"""
One live tail per WebSocket connection.

A session runs two loops against the same connection: the outbound loop
polls the source and sends heartbeats, the inbound loop reads frames and
watches the liveness deadline. Each direction of the connection is driven
by exactly one loop. Whichever loop stops first ends the session; the other
is cancelled, the source is closed and the connection is closed once.
"""

import asyncio
import codecs
import enum
from typing import Callable, Optional

from websockets.exceptions import ConnectionClosed

from .config import TailSettings
from .logger import get_logger
from .sources import SourceError, SourceIOError

log = get_logger("session")

TRANSPORT_ERRORS = (ConnectionClosed, OSError, asyncio.TimeoutError)
CLOSE_INTERNAL_ERROR = 1011


class SessionState(str, enum.Enum):
    INITIALIZING = "initializing"
    ACTIVE = "active"
    CLOSING = "closing"
    CLOSED = "closed"


class PeerTimeout(Exception):
    """No frame or pong arrived before the liveness deadline."""


def _close_reason(text: str) -> str:
    # close reasons are limited to 123 bytes on the wire
    return text.encode("utf-8")[:120].decode("utf-8", errors="ignore")


class TailSession:
    def __init__(self, connection, opener: Callable, settings: TailSettings, peer: str = "-"):
        self.connection = connection
        self.opener = opener
        self.settings = settings
        self.peer = peer
        self.state = SessionState.INITIALIZING
        self.source = None
        self.last_error: Optional[str] = None
        self.alive_until = 0.0
        self._send_lock = asyncio.Lock()
        self._connection_closed = False
        self._pong_waiter: Optional[asyncio.Future] = None
        # multibyte characters may straddle two polls
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    def note_error(self, text: str) -> bool:
        """Remember a read error; True when it differs from the last one seen."""
        if text == self.last_error:
            return False
        self.last_error = text
        return True

    def clear_error(self):
        self.last_error = None

    async def run(self):
        try:
            self.source = self.opener()
        except SourceError as e:
            log.warning("[%s] cannot open source: %s", self.peer, e)
            await self._close_connection(CLOSE_INTERNAL_ERROR, _close_reason(str(e)))
            self.state = SessionState.CLOSED
            return

        self.state = SessionState.ACTIVE
        self._touch()
        log.info("[%s] tailing %s", self.peer, self.source.name)
        outbound = asyncio.create_task(self._outbound(), name=f"outbound {self.peer}")
        inbound = asyncio.create_task(self._inbound(), name=f"inbound {self.peer}")
        reason = "shutdown"
        try:
            done, _ = await asyncio.wait({outbound, inbound}, return_when=asyncio.FIRST_COMPLETED)
            task = done.pop()
            if task.exception() is not None:
                log.error("[%s] %s loop crashed", self.peer, task.get_name().split()[0],
                          exc_info=task.exception())
                reason = "internal error"
            else:
                reason = task.result()
        finally:
            self.state = SessionState.CLOSING
            for task in (outbound, inbound):
                task.cancel()
            await asyncio.gather(outbound, inbound, return_exceptions=True)
            self.source.close()
            await self._close_connection()
            self.state = SessionState.CLOSED
            log.info("[%s] session closed: %s", self.peer, reason)

    def _touch(self):
        self.alive_until = asyncio.get_running_loop().time() + self.settings.liveness_timeout

    def _on_pong(self, waiter: asyncio.Future):
        if waiter.cancelled() or waiter.exception() is not None:
            return
        self._touch()

    async def _close_connection(self, code: int = 1000, reason: str = ""):
        if self._connection_closed:
            return
        self._connection_closed = True
        await self.connection.close(code, reason)

    async def _send(self, message: str):
        async with self._send_lock:
            await asyncio.wait_for(self.connection.send(message), self.settings.write_timeout)

    async def _heartbeat(self):
        if self._pong_waiter is not None and not self._pong_waiter.done():
            # the unanswered ping still guards alive_until
            return
        async with self._send_lock:
            waiter = await asyncio.wait_for(self.connection.ping(b""), self.settings.write_timeout)
        self._pong_waiter = asyncio.ensure_future(waiter)
        self._pong_waiter.add_done_callback(self._on_pong)

    async def _poll_once(self):
        try:
            data = self.source.poll()
        except SourceIOError as e:
            text = str(e)
            self._decoder.reset()
            if self.note_error(text):
                log.warning("[%s] %s", self.peer, text)
                await self._send(text)
            return
        if self.last_error is not None:
            log.info("[%s] %s is readable again", self.peer, self.source.name)
            self.clear_error()
        text = self._decoder.decode(data) if data else ""
        if text:
            await self._send(text)

    async def _outbound(self) -> str:
        loop = asyncio.get_running_loop()
        poll_every = self.settings.poll_interval
        beat_every = self.settings.heartbeat_interval
        next_poll = loop.time()
        next_beat = next_poll + beat_every
        try:
            while True:
                now = loop.time()
                if now >= next_beat:
                    next_beat = now + beat_every
                    await self._heartbeat()
                if now >= next_poll:
                    next_poll = now + poll_every
                    await self._poll_once()
                await asyncio.sleep(max(0.0, min(next_poll, next_beat) - loop.time()))
        except TRANSPORT_ERRORS as e:
            return f"write failed: {e!r}"

    async def _inbound(self) -> str:
        loop = asyncio.get_running_loop()
        try:
            while True:
                remaining = self.alive_until - loop.time()
                if remaining <= 0:
                    raise PeerTimeout(f"no pong within {self.settings.liveness_timeout:g}s")
                try:
                    message = await asyncio.wait_for(self.connection.recv(), remaining)
                except asyncio.TimeoutError:
                    continue
                self._touch()
                log.debug("[%s] message from client: %r", self.peer, message[:80],
                          extra={"sample_key": self.peer})
        except PeerTimeout as e:
            return str(e)
        except ConnectionClosed as e:
            return f"connection closed ({e})"
        except OSError as e:
            return f"read failed: {e!r}"
