"""Wire protocol - the four messages exchanged between coordinator and workers.

WHY
───
The coordinator and its workers live in different processes and only share
a byte stream.  Each message is one JSON object on its own line, tagged with
a ``kind`` discriminator so a single decoder can rebuild the right model.

ARCHITECTURE
────────────
::

    worker ──► coordinator     ReadyMessage      {"kind": "ready", "target"}
    coordinator ──► workers    AssignMessage     {"kind": "assign", "target",
                                                  "watch", "watchOptions"}
    worker ──► coordinator     CompletedMessage  {"kind": "completed", "target", "result"}
    worker ──► coordinator     FailedMessage     {"kind": "failed", "target", "error"}

    encode_message(msg) -> b'{"kind": ...}\\n'
    decode_message(frame) -> Message            (raises ProtocolError)

Assign is broadcast to every connected worker; a worker acts only on
messages whose ``target`` equals its own (see :func:`is_addressed_to`).

Related modules:
    channel/    - moves encoded frames between processes
    coordinator - consumes Ready/Completed/Failed, produces Assign
"""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from parbuild.core.errors import ProtocolError


class WatchOptions(BaseModel):
    """Watch-mode tuning carried inside an Assign message.

    ``aggregate_timeout`` is the debounce window in milliseconds: after a
    change is detected the worker waits this long for the tree to settle
    before rebuilding.  ``poll`` is the change-detection interval in
    milliseconds; ``None`` lets the worker use its default.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    aggregate_timeout: int = Field(default=300, ge=0, alias="aggregateTimeout")
    poll: int | None = Field(default=None, gt=0)


class _BaseMessage(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    target: str


class ReadyMessage(_BaseMessage):
    """Worker is alive and connected."""

    kind: Literal["ready"] = "ready"


class AssignMessage(_BaseMessage):
    """Coordinator asks the worker for ``target`` to build."""

    kind: Literal["assign"] = "assign"
    watch: bool = False
    watch_options: dict[str, Any] | None = Field(default=None, alias="watchOptions")

    def options(self) -> WatchOptions:
        """Parsed watch options (defaults when none were sent)."""
        return WatchOptions.model_validate(self.watch_options or {})


class CompletedMessage(_BaseMessage):
    """A build of ``target`` succeeded; ``result`` is the tool's summary."""

    kind: Literal["completed"] = "completed"
    result: str = ""


class FailedMessage(_BaseMessage):
    """A build of ``target`` failed; ``error`` is the tool's error text."""

    kind: Literal["failed"] = "failed"
    error: str = ""


Message = Annotated[
    ReadyMessage | AssignMessage | CompletedMessage | FailedMessage,
    Field(discriminator="kind"),
]

_MESSAGE_ADAPTER: TypeAdapter[Message] = TypeAdapter(Message)


def encode_message(message: _BaseMessage) -> bytes:
    """Serialise a message to one newline-terminated JSON frame."""
    return message.model_dump_json(by_alias=True).encode("utf-8") + b"\n"


def decode_message(frame: bytes | str) -> Message:
    """Parse one frame back into its message model.

    Raises:
        ProtocolError: the frame is not valid JSON or not a known message.
    """
    if isinstance(frame, bytes):
        frame = frame.decode("utf-8", errors="replace")
    frame = frame.strip()
    if not frame:
        raise ProtocolError("Empty frame")
    try:
        return _MESSAGE_ADAPTER.validate_json(frame)
    except ValidationError as exc:
        raise ProtocolError(f"Malformed message: {frame[:200]}", cause=exc) from exc


def is_addressed_to(message: Message, target: str) -> bool:
    """Whether a broadcast message concerns the worker for ``target``."""
    return message.target == target


__all__ = [
    "AssignMessage",
    "CompletedMessage",
    "FailedMessage",
    "Message",
    "ReadyMessage",
    "WatchOptions",
    "decode_message",
    "encode_message",
    "is_addressed_to",
]
