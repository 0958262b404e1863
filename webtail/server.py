"""
WebSocket front end: serves the landing page on ``/`` and upgrades ``/ws``
into a :class:`TailSession`.
"""

import asyncio
import email.utils
from http import HTTPStatus
from typing import Optional, Set
from urllib.parse import parse_qs, urlparse

from websockets.asyncio.server import ServerConnection, serve
from websockets.datastructures import Headers
from websockets.http11 import Request, Response

from .config import Config
from .logger import get_logger
from .page import render_home
from .session import TailSession
from .sources import SourceCatalog, SourceNotFound, SourcePermissionDenied

log = get_logger("server")

WS_PATH = "/ws"


def _peer(connection: ServerConnection) -> str:
    addr = connection.remote_address
    if not addr:
        return "-"
    return f"{addr[0]}:{addr[1]}"


def _requested_file(path: str) -> Optional[str]:
    values = parse_qs(urlparse(path).query).get("file")
    return values[0] if values else None


class TailServer:
    def __init__(self, config: Config, catalog: SourceCatalog):
        self.config = config
        self.catalog = catalog
        self.sessions: Set[TailSession] = set()
        self.port: Optional[int] = None

    def _html(self, body: str) -> Response:
        raw = body.encode("utf-8")
        headers = Headers([
            ("Date", email.utils.formatdate(usegmt=True)),
            ("Connection", "close"),
            ("Content-Length", str(len(raw))),
            ("Content-Type", "text/html; charset=utf-8"),
        ])
        return Response(HTTPStatus.OK.value, HTTPStatus.OK.phrase, headers, raw)

    def process_request(self, connection: ServerConnection, request: Request) -> Optional[Response]:
        path = urlparse(request.path).path
        if path == "/":
            return self._html(render_home(self.catalog.names))
        if path != WS_PATH:
            return connection.respond(HTTPStatus.NOT_FOUND, "Not found\n")
        try:
            self.catalog.resolve(_requested_file(request.path))
        except SourceNotFound as e:
            log.info("[%s] rejected: %s", _peer(connection), e)
            return connection.respond(HTTPStatus.NOT_FOUND, f"{e}\n")
        except SourcePermissionDenied as e:
            log.info("[%s] rejected: %s", _peer(connection), e)
            return connection.respond(HTTPStatus.FORBIDDEN, f"{e}\n")
        return None

    async def handler(self, connection: ServerConnection):
        requested = _requested_file(connection.request.path)

        def opener():
            return self.catalog.open(self.catalog.resolve(requested))

        session = TailSession(connection, opener, self.config.tail, peer=_peer(connection))
        self.sessions.add(session)
        try:
            await session.run()
        finally:
            self.sessions.discard(session)

    async def serve_forever(self, stop: asyncio.Future, started: Optional[asyncio.Future] = None):
        async with serve(
            self.handler,
            self.config.host or None,
            self.config.port,
            process_request=self.process_request,
            ping_interval=None,
            ping_timeout=None,
            max_size=self.config.tail.max_message_size,
            logger=get_logger("websockets"),
        ) as server:
            self.port = next(iter(server.sockets)).getsockname()[1]
            log.info("Listening on %s:%d", self.config.host or "*", self.port)
            if started is not None and not started.done():
                started.set_result(self.port)
            await stop
            log.info("shutting down, closing %d session(s)", len(self.sessions))
