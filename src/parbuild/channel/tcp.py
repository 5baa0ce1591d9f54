"""
TCP channel implementation (asyncio streams, one JSON object per line).

Manifesto:
    Workers are separate OS processes, so the bus needs a real transport.
    The coordinator listens on a loopback port chosen at run start and
    hands the address to every worker through its environment.

The coordinator reads each connection in its own task but the inbound
handler is synchronous, so messages are still handled one at a time.
Broadcast writes the same frame to every open connection without waiting
for it to drain.

Tags:
    parbuild, channel, tcp, asyncio, streams, json-lines
"""

from __future__ import annotations

import asyncio

from parbuild.channel import InboundHandler
from parbuild.core.errors import ProtocolError
from parbuild.core.logging import get_logger
from parbuild.protocol import Message, decode_message, encode_message, is_addressed_to

__all__ = ["SocketChannel", "SocketEndpoint", "FRAME_LIMIT"]

logger = get_logger(__name__)

#: Longest accepted frame; build output can be large.
FRAME_LIMIT = 16 * 1024 * 1024


class SocketChannel:
    """Coordinator-side TCP server.

    Args:
        host: Interface to bind (loopback by default).
        port: Port to bind; ``0`` picks a free one.
    """

    def __init__(self, host: str = "127.0.0.1", port: int = 0) -> None:
        self._host = host
        self._port = port
        self._server: asyncio.AbstractServer | None = None
        self._handler: InboundHandler | None = None
        self._writers: set[asyncio.StreamWriter] = set()
        self._closed = False

    @property
    def host(self) -> str:
        return self._host

    @property
    def port(self) -> int:
        """Configured port before ``start``, bound port after."""
        return self._port

    @property
    def address(self) -> tuple[str, int]:
        if self._server is None:
            raise RuntimeError("SocketChannel has not been started")
        return (self._host, self._port)

    @property
    def connection_count(self) -> int:
        return len(self._writers)

    async def start(self, handler: InboundHandler) -> None:
        self._handler = handler
        self._server = await asyncio.start_server(
            self._on_connection, self._host, self._port, limit=FRAME_LIMIT,
        )
        self._port = self._server.sockets[0].getsockname()[1]
        logger.debug("channel.listening", host=self._host, port=self._port)

    def broadcast(self, message: Message) -> None:
        if self._closed:
            logger.debug("channel.broadcast_dropped", kind=message.kind, target=message.target)
            return
        frame = encode_message(message)
        for writer in list(self._writers):
            if writer.is_closing():
                self._writers.discard(writer)
                continue
            writer.write(frame)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        for writer in list(self._writers):
            writer.close()
        self._writers.clear()
        if self._server is not None:
            self._server.close()
            await self._server.wait_closed()
        logger.debug("channel.closed", port=self._port)

    async def _on_connection(
        self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter,
    ) -> None:
        if self._closed:
            writer.close()
            return
        self._writers.add(writer)
        peer = writer.get_extra_info("peername")
        logger.debug("channel.connected", peer=str(peer))
        try:
            while True:
                line = await reader.readline()
                if not line:
                    break
                try:
                    message = decode_message(line)
                except ProtocolError as exc:
                    logger.warning("channel.bad_frame", peer=str(peer), error=exc.message)
                    continue
                self._dispatch(message)
        except (ConnectionError, asyncio.IncompleteReadError, ValueError) as exc:
            # ValueError: frame longer than FRAME_LIMIT
            logger.warning("channel.connection_error", peer=str(peer), error=str(exc))
        finally:
            self._writers.discard(writer)
            writer.close()
            logger.debug("channel.disconnected", peer=str(peer))

    def _dispatch(self, message: Message) -> None:
        if self._handler is None:
            return
        try:
            self._handler(message)
        except Exception as exc:
            logger.exception(
                "channel.handler_error",
                kind=message.kind,
                target=message.target,
                error=str(exc),
            )


class SocketEndpoint:
    """Worker-side TCP connection, filtering broadcasts by target."""

    def __init__(
        self,
        target: str,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        self.target = target
        self._reader = reader
        self._writer = writer

    @classmethod
    async def connect(cls, target: str, host: str, port: int) -> SocketEndpoint:
        """Open a connection to the coordinator at ``host:port``."""
        reader, writer = await asyncio.open_connection(host, port, limit=FRAME_LIMIT)
        return cls(target, reader, writer)

    async def send(self, message: Message) -> None:
        self._writer.write(encode_message(message))
        await self._writer.drain()

    async def receive(self) -> Message:
        """Next message for this target.

        Raises:
            ConnectionError: the coordinator closed the connection.
        """
        while True:
            line = await self._reader.readline()
            if not line:
                raise ConnectionError("Coordinator closed the channel")
            try:
                message = decode_message(line)
            except ProtocolError as exc:
                logger.warning("channel.bad_frame", target=self.target, error=exc.message)
                continue
            if is_addressed_to(message, self.target):
                return message

    async def close(self) -> None:
        self._writer.close()
        try:
            await self._writer.wait_closed()
        except ConnectionError:
            pass
