"""Message channel between one coordinator and N worker processes.

Why This Package Exists
-----------------------
The coordinator must reach every worker and hear back from each of them,
without the workers ever talking to each other.  The channel is a broadcast
bus: an Assign goes to *every* connected worker, and each worker keeps only
the messages carrying its own target.  Inbound messages are handed to the
coordinator one at a time on the event loop, so the coordinator never needs
a lock.

Delivery is per-connection FIFO with no acknowledgement, deduplication,
backpressure or retry.  A lost message stalls that target.

Usage::

    from parbuild.channel import get_channel

    channel = get_channel("socket", host="127.0.0.1", port=0)
    await channel.start(coordinator.handle)
    channel.broadcast(AssignMessage(target="/src/app"))

    # worker process
    endpoint = await SocketEndpoint.connect("/src/app", host, port)
    await endpoint.send(ReadyMessage(target="/src/app"))
    assign = await endpoint.receive()

Modules
-------
memory      InMemoryChannel -- asyncio queues, single process
tcp         SocketChannel / SocketEndpoint -- asyncio TCP streams, JSON lines
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Protocol, runtime_checkable

from parbuild.protocol import Message

__all__ = [
    "Channel",
    "InboundHandler",
    "WorkerEndpoint",
    "get_channel",
]


# ── Type Aliases ─────────────────────────────────────────────────────────

InboundHandler = Callable[[Message], None]


# ── Protocols ────────────────────────────────────────────────────────────


@runtime_checkable
class Channel(Protocol):
    """Coordinator side of the bus."""

    @property
    def address(self) -> tuple[str, int]:
        """Where workers connect; passed to them through the environment."""
        ...

    async def start(self, handler: InboundHandler) -> None:
        """Begin delivering inbound worker messages to ``handler``.

        Messages are delivered one at a time; ``handler`` is synchronous.
        """
        ...

    def broadcast(self, message: Message) -> None:
        """Send ``message`` to every connected worker. Never blocks."""
        ...

    async def close(self) -> None:
        """Stop the channel and drop all connections. Idempotent."""
        ...


@runtime_checkable
class WorkerEndpoint(Protocol):
    """Worker side of the bus, bound to one target."""

    target: str

    async def send(self, message: Message) -> None:
        """Send a message to the coordinator."""
        ...

    async def receive(self) -> Message:
        """Next broadcast message addressed to this worker's target."""
        ...

    async def close(self) -> None:
        """Disconnect."""
        ...


# ── Factory ──────────────────────────────────────────────────────────────


def get_channel(kind: str = "socket", **kwargs: Any) -> Channel:
    """Create a coordinator channel by name (``socket`` or ``memory``)."""
    if kind == "socket":
        from parbuild.channel.tcp import SocketChannel

        return SocketChannel(**kwargs)
    if kind == "memory":
        from parbuild.channel.memory import InMemoryChannel

        return InMemoryChannel(**kwargs)
    raise ValueError(f"Unknown channel kind: {kind!r}")
