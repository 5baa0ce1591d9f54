"""Coordinator - run-level state machine over N build workers.

WHY
───
Many workers report asynchronously; the caller wants one answer.  The
coordinator owns every :class:`WorkerRecord`, funnels every inbound message
through :meth:`Coordinator.handle`, gates build work behind the concurrency
limit, and turns the stream of worker outcomes into a single future.

ARCHITECTURE
────────────
::

    start()
      ├── channel.start(handle)
      ├── spawner.spawn(target) × N        (process pool = all targets)
      ├── barrier timer (optional)
      └── returns Future[RunSummary]

    handle(message)                        (single entry point, event loop)
      Ready      ─ mark ready; all ready → RUNNING, dispatch once
      Completed  ─ finish record; one-shot & all finished → SUCCEEDED
                   else dispatch
      Failed     ─ finish record; one-shot → FAILED (first failure wins)
                   watch → log, dispatch
      *          ─ ignored once SUCCEEDED / FAILED

    dispatch()
      select_targets(records, concurrency) → active=True, broadcast Assign

    terminal outcome → terminate every handle → settle the future

Watch mode never settles the future through completion traffic; the run
ends when the caller calls :meth:`close`.

Related modules:
    dispatch.py - selection of idle targets
    handle.py   - worker processes
    channel/    - transport for the protocol messages
"""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Iterable, Sequence
from datetime import UTC, datetime
from typing import Any

from parbuild.channel import Channel
from parbuild.core.errors import (
    BarrierTimeoutError,
    BuildFailedError,
    CoordinationError,
    InvalidConfigError,
)
from parbuild.core.logging import LogContext, get_logger
from parbuild.dispatch import active_count, select_targets
from parbuild.handle import ProcessSpawner
from parbuild.models import BuildOutcome, RunState, RunSummary, WorkerRecord
from parbuild.protocol import (
    AssignMessage,
    CompletedMessage,
    FailedMessage,
    Message,
    ReadyMessage,
    WatchOptions,
)

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def unique_targets(targets: Iterable[str]) -> list[str]:
    """Drop repeated targets, keeping the first occurrence's position."""
    seen: dict[str, None] = {}
    for target in targets:
        if target in seen:
            logger.warning("coordinator.duplicate_target", target=target)
            continue
        seen[target] = None
    return list(seen)


class Coordinator:
    """Drives one build run.

    Parameters
    ----------
    targets : Sequence[str]
        Build targets in priority order.
    channel : Channel
        Bus to the workers (not yet started).
    spawner : ProcessSpawner
        Launches one worker per target.
    concurrency : int
        Maximum simultaneously active builds (>= 1).
    watch : bool
        Watch mode: workers rebuild on change and the run never settles.
    watch_options : WatchOptions | None
        Sent to every worker inside its Assign message in watch mode.
    barrier_timeout : float | None
        Seconds to wait for every worker to announce readiness; ``None``
        waits forever.
    """

    def __init__(
        self,
        targets: Sequence[str],
        *,
        channel: Channel,
        spawner: ProcessSpawner,
        concurrency: int = 1,
        watch: bool = False,
        watch_options: WatchOptions | None = None,
        barrier_timeout: float | None = None,
        run_id: str | None = None,
    ) -> None:
        if concurrency < 1:
            raise InvalidConfigError("concurrency", concurrency, "concurrency must be at least 1")
        if barrier_timeout is not None and barrier_timeout <= 0:
            raise InvalidConfigError("barrier_timeout", barrier_timeout)

        self._run_id = run_id or str(uuid.uuid4())
        self._targets = unique_targets(targets)
        self._records: dict[str, WorkerRecord] = {
            target: WorkerRecord(target=target) for target in self._targets
        }
        self._channel = channel
        self._spawner = spawner
        self._concurrency = concurrency
        self._watch = watch
        self._watch_options = watch_options or WatchOptions()
        self._barrier_timeout = barrier_timeout

        self._state = RunState.AWAITING_READY
        self._future: asyncio.Future[RunSummary] | None = None
        self._barrier_timer: asyncio.TimerHandle | None = None
        self._started_at: datetime | None = None
        self._closed = False

    # ── Inspection ───────────────────────────────────────────────────

    @property
    def run_id(self) -> str:
        return self._run_id

    @property
    def state(self) -> RunState:
        return self._state

    @property
    def targets(self) -> list[str]:
        return list(self._targets)

    @property
    def concurrency(self) -> int:
        return self._concurrency

    @property
    def watch(self) -> bool:
        return self._watch

    def record(self, target: str) -> WorkerRecord:
        """The record for ``target`` (read it, don't mutate it)."""
        return self._records[target]

    @property
    def records(self) -> list[WorkerRecord]:
        """Records in target order."""
        return [self._records[target] for target in self._targets]

    @property
    def active_count(self) -> int:
        return active_count(self._records.values())

    def snapshot(self) -> dict[str, Any]:
        """Serialisable view of the run for logging and status output."""
        return {
            "run_id": self._run_id,
            "state": self._state.value,
            "concurrency": self._concurrency,
            "watch": self._watch,
            "workers": [record.to_dict() for record in self.records],
        }

    # ── Lifecycle ────────────────────────────────────────────────────

    async def start(self) -> asyncio.Future[RunSummary]:
        """Start the channel, spawn every worker and return the completion signal.

        The future resolves with a :class:`RunSummary` when every target
        built (one-shot), rejects with :class:`BuildFailedError` on the first
        failure or :class:`BarrierTimeoutError` if workers never became
        ready, and stays pending in watch mode.
        """
        if self._future is not None:
            raise RuntimeError("Coordinator already started")

        loop = asyncio.get_running_loop()
        self._future = loop.create_future()
        self._started_at = _utcnow()

        with LogContext(run_id=self._run_id):
            logger.info(
                "coordinator.start",
                targets=len(self._targets),
                concurrency=self._concurrency,
                watch=self._watch,
            )

            if not self._targets:
                if not self._watch:
                    self._succeed()
                return self._future

            await self._channel.start(self.handle)

            for target in self._targets:
                handle = await self._spawner.spawn(target, self._channel.address)
                self._records[target].handle = handle
                # close() or settlement during the await missed this handle
                if self._closed or self._state.is_terminal:
                    handle.terminate()
                    logger.info("coordinator.spawn_aborted", target=target)
                    break

            if (
                not self._closed
                and self._barrier_timeout is not None
                and self._state is RunState.AWAITING_READY
            ):
                self._barrier_timer = loop.call_later(
                    self._barrier_timeout, self._on_barrier_timeout,
                )

        return self._future

    async def close(self) -> None:
        """End the run from outside: kill workers, close the channel.

        Used to stop watch runs and to clean up after a settled one-shot
        run.  A still-pending completion signal is cancelled.
        """
        if self._closed:
            return
        self._closed = True
        self._cancel_barrier_timer()
        self._terminate_all()
        await self._channel.close()
        if self._future is not None and not self._future.done():
            self._future.cancel()
        logger.info("coordinator.closed", run_id=self._run_id, state=self._state.value)

    # ── Message handling ─────────────────────────────────────────────

    def handle(self, message: Message) -> None:
        """Single entry point for every inbound worker message."""
        with LogContext(run_id=self._run_id):
            if self._state.is_terminal:
                logger.debug(
                    "coordinator.ignored",
                    reason="run settled",
                    kind=message.kind,
                    target=message.target,
                )
                return

            record = self._records.get(message.target)
            if record is None:
                logger.warning("coordinator.unknown_target", kind=message.kind, target=message.target)
                return

            if isinstance(message, ReadyMessage):
                self._on_ready(record)
            elif isinstance(message, CompletedMessage):
                self._on_completed(record, message.result)
            elif isinstance(message, FailedMessage):
                self._on_failed(record, message.error)
            else:
                logger.warning("coordinator.unexpected_message", kind=message.kind, target=message.target)

    def _on_ready(self, record: WorkerRecord) -> None:
        if record.ready:
            logger.debug("coordinator.ready_repeated", target=record.target)
            return
        record.ready = True
        ready = sum(1 for r in self._records.values() if r.ready)
        logger.info("coordinator.ready", target=record.target, ready=ready, total=len(self._records))

        if self._state is RunState.AWAITING_READY and ready == len(self._records):
            self._cancel_barrier_timer()
            self._state = RunState.RUNNING
            logger.info("coordinator.barrier_complete", targets=len(self._records))
            self.dispatch()

    def _on_completed(self, record: WorkerRecord, result: str) -> None:
        if not self._accepts_results(record):
            return
        record.complete(BuildOutcome.succeeded(result))
        logger.info("coordinator.completed", target=record.target, builds=record.builds)
        if result:
            logger.debug("coordinator.result", target=record.target, result=result)

        if not self._watch and all(r.finished for r in self._records.values()):
            self._succeed()
            return

        self.dispatch()

    def _on_failed(self, record: WorkerRecord, error: str) -> None:
        if not self._accepts_results(record):
            return
        record.complete(BuildOutcome.failed(error))
        logger.error("coordinator.failed", target=record.target, error=error, watch=self._watch)

        if not self._watch:
            self._fail(BuildFailedError(record.target, error))
            return

        self.dispatch()

    def _accepts_results(self, record: WorkerRecord) -> bool:
        if self._state is not RunState.RUNNING:
            logger.warning("coordinator.early_result", target=record.target, state=self._state.value)
            return False
        if not self._watch and not record.active:
            logger.warning("coordinator.unassigned_result", target=record.target)
            return False
        return True

    # ── Dispatch ─────────────────────────────────────────────────────

    def dispatch(self) -> list[str]:
        """Assign builds to idle targets for every free slot.

        Returns:
            The targets that were just activated.
        """
        if self._state is not RunState.RUNNING:
            return []

        selected = select_targets(self.records, self._concurrency)
        for target in selected:
            self._records[target].active = True
            self._channel.broadcast(
                AssignMessage(
                    target=target,
                    watch=self._watch,
                    watch_options=self._watch_options.model_dump(by_alias=True) if self._watch else None,
                )
            )
            logger.info("coordinator.dispatch", target=target, active=self.active_count)
        return selected

    # ── Outcomes ─────────────────────────────────────────────────────

    def _succeed(self) -> None:
        self._state = RunState.SUCCEEDED
        self._terminate_all()
        summary = RunSummary(
            run_id=self._run_id,
            targets=list(self._targets),
            outcomes={
                r.target: r.last_outcome for r in self._records.values() if r.last_outcome is not None
            },
            started_at=self._started_at or _utcnow(),
            completed_at=_utcnow(),
        )
        logger.info(
            "coordinator.succeeded",
            targets=summary.total,
            duration_seconds=round(summary.duration_seconds, 3),
        )
        if self._future is not None and not self._future.done():
            self._future.set_result(summary)

    def _fail(self, error: CoordinationError) -> None:
        self._state = RunState.FAILED
        self._cancel_barrier_timer()
        self._terminate_all()
        error.with_context(run_id=self._run_id)
        logger.error("coordinator.run_failed", **error.to_dict())
        if self._future is not None and not self._future.done():
            self._future.set_exception(error)

    def _on_barrier_timeout(self) -> None:
        self._barrier_timer = None
        if self._state is not RunState.AWAITING_READY:
            return
        missing = [r.target for r in self.records if not r.ready]
        with LogContext(run_id=self._run_id):
            for target in missing:
                handle = self._records[target].handle
                if handle is not None and handle.spawn_error is not None:
                    logger.error("coordinator.never_spawned", target=target, error=handle.spawn_error.message)
            self._fail(BarrierTimeoutError(missing, self._barrier_timeout or 0))

    def _cancel_barrier_timer(self) -> None:
        if self._barrier_timer is not None:
            self._barrier_timer.cancel()
            self._barrier_timer = None

    def _terminate_all(self) -> None:
        for record in self._records.values():
            if record.handle is not None:
                record.handle.terminate()


async def run_build(
    targets: Sequence[str],
    *,
    concurrency: int = 1,
    watch: bool = False,
    watch_options: WatchOptions | None = None,
    barrier_timeout: float | None = 30.0,
    channel: Channel | None = None,
    spawner: ProcessSpawner | None = None,
) -> RunSummary:
    """Build every target and wait for the run-level result.

    Creates a TCP channel and the default worker spawner unless given.
    Always closes the coordinator (killing any remaining workers) before
    returning or raising.

    Raises:
        BuildFailedError: one-shot run, first worker failure.
        BarrierTimeoutError: some workers never became ready.
    """
    if channel is None:
        from parbuild.channel.tcp import SocketChannel

        channel = SocketChannel()

    coordinator = Coordinator(
        targets,
        channel=channel,
        spawner=spawner or ProcessSpawner(),
        concurrency=concurrency,
        watch=watch,
        watch_options=watch_options,
        barrier_timeout=barrier_timeout,
    )
    try:
        future = await coordinator.start()
        return await future
    finally:
        await coordinator.close()


__all__ = ["Coordinator", "run_build", "unique_targets"]
