"""
In-memory channel implementation.

Manifesto:
    Tests and embedded runs need the full coordinator/worker conversation
    without sockets or child processes.  Worker endpoints are plain objects
    in the same event loop; the bus itself is a set of asyncio queues.

Every message is round-tripped through the wire codec, so anything that
passes here is also valid on a socket.

Tags:
    parbuild, channel, in-memory, asyncio, testing, single-process
"""

from __future__ import annotations

import asyncio

from parbuild.channel import InboundHandler
from parbuild.core.logging import get_logger
from parbuild.protocol import Message, decode_message, encode_message, is_addressed_to

__all__ = ["InMemoryChannel", "InMemoryEndpoint"]

logger = get_logger(__name__)


def _wire_copy(message: Message) -> Message:
    return decode_message(encode_message(message))


class InMemoryEndpoint:
    """A worker's connection to an :class:`InMemoryChannel`."""

    def __init__(self, channel: InMemoryChannel, target: str) -> None:
        self.target = target
        self._channel = channel
        self._inbox: asyncio.Queue[Message] = asyncio.Queue()
        self._closed = False

    async def send(self, message: Message) -> None:
        """Queue a message for the coordinator."""
        if self._closed:
            raise ConnectionError(f"Endpoint for {self.target} is closed")
        self._channel._deliver(_wire_copy(message))

    async def receive(self) -> Message:
        """Wait for the next broadcast addressed to this target."""
        while True:
            message = await self._inbox.get()
            if is_addressed_to(message, self.target):
                return message

    def pending(self) -> list[Message]:
        """Drain and return everything queued for this endpoint (unfiltered)."""
        items = []
        while not self._inbox.empty():
            items.append(self._inbox.get_nowait())
        return items

    async def close(self) -> None:
        self._closed = True
        self._channel._detach(self)


class InMemoryChannel:
    """In-process broadcast bus.

    Example::

        channel = InMemoryChannel()
        await channel.start(coordinator.handle)
        worker = channel.connect("/src/app")
        await worker.send(ReadyMessage(target="/src/app"))
        await channel.drain()
    """

    def __init__(self) -> None:
        self._handler: InboundHandler | None = None
        self._inbound: asyncio.Queue[Message] = asyncio.Queue()
        self._endpoints: list[InMemoryEndpoint] = []
        self._pump: asyncio.Task | None = None
        self._closed = False
        self.sent: list[Message] = []

    @property
    def address(self) -> tuple[str, int]:
        return ("memory", 0)

    @property
    def connection_count(self) -> int:
        return len(self._endpoints)

    async def start(self, handler: InboundHandler) -> None:
        self._handler = handler
        self._pump = asyncio.create_task(self._run_pump())

    def connect(self, target: str) -> InMemoryEndpoint:
        """Attach a worker endpoint for ``target``."""
        endpoint = InMemoryEndpoint(self, target)
        self._endpoints.append(endpoint)
        return endpoint

    def broadcast(self, message: Message) -> None:
        if self._closed:
            logger.debug("channel.broadcast_dropped", kind=message.kind, target=message.target)
            return
        message = _wire_copy(message)
        self.sent.append(message)
        for endpoint in list(self._endpoints):
            endpoint._inbox.put_nowait(message)

    async def drain(self) -> None:
        """Wait until every queued inbound message has been handled."""
        await self._inbound.join()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._pump is not None:
            self._pump.cancel()
            try:
                await self._pump
            except asyncio.CancelledError:
                pass
        self._endpoints.clear()

    def _deliver(self, message: Message) -> None:
        if self._closed:
            return
        self._inbound.put_nowait(message)

    def _detach(self, endpoint: InMemoryEndpoint) -> None:
        if endpoint in self._endpoints:
            self._endpoints.remove(endpoint)

    async def _run_pump(self) -> None:
        while True:
            message = await self._inbound.get()
            try:
                if self._handler is not None:
                    self._handler(message)
            except Exception as exc:
                logger.exception(
                    "channel.handler_error",
                    kind=message.kind,
                    target=message.target,
                    error=str(exc),
                )
            finally:
                self._inbound.task_done()
