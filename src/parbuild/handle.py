"""Worker handles - one OS process per build target.

Every target gets its own worker process at run start, whether or not it
will be dispatched soon: process startup is paid upfront for all targets,
while the concurrency limit only gates the build work itself.

Architecture:

    .. code-block:: text

        ProcessSpawner.spawn(target, address)
            │
            ├── asyncio.create_subprocess_exec(python -m parbuild.worker,
            │                                  cwd=target, env=PARBUILD_*)
            ├── relay tasks: child stdout/stderr lines → coordinator log
            └── WorkerHandle(target, process)

        WorkerHandle.terminate()
            SIGTERM, best-effort, non-blocking, idempotent.
            Already-exited or never-started processes are fine.

A spawn failure does not raise.  The handle is returned without a process
and the target will never announce readiness; the coordinator's barrier
timeout reports it.
"""

from __future__ import annotations

import asyncio
import os
import sys
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime

from parbuild.core.errors import SpawnError
from parbuild.core.logging import get_logger
from parbuild.core.settings import (
    ENV_CHANNEL_HOST,
    ENV_CHANNEL_PORT,
    ENV_CONFIG_FILENAME,
    ENV_LOG_LEVEL,
    ENV_TARGET,
)

logger = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(UTC)


def default_worker_command() -> list[str]:
    """The command every worker process runs."""
    return [sys.executable, "-m", "parbuild.worker"]


@dataclass
class WorkerHandle:
    """Owns the external process building one target."""

    target: str
    process: asyncio.subprocess.Process | None = None
    spawn_error: SpawnError | None = None
    started_at: datetime = field(default_factory=_utcnow)
    terminate_requested: bool = False
    _relays: list[asyncio.Task] = field(default_factory=list, repr=False)

    @property
    def pid(self) -> int | None:
        return self.process.pid if self.process else None

    @property
    def returncode(self) -> int | None:
        return self.process.returncode if self.process else None

    @property
    def alive(self) -> bool:
        """Process started and has not exited (as far as asyncio knows)."""
        return self.process is not None and self.process.returncode is None

    def terminate(self) -> None:
        """Request process termination.

        Never raises: a missing, exited or vanished process is logged and
        ignored.  Does not wait for the process to exit.
        """
        if self.process is None:
            logger.debug("worker.terminate_skipped", target=self.target, reason="no process")
            return
        if self.process.returncode is not None:
            logger.debug(
                "worker.terminate_skipped",
                target=self.target,
                reason="exited",
                returncode=self.process.returncode,
            )
            return

        self.terminate_requested = True
        try:
            self.process.terminate()
            logger.debug("worker.terminate_requested", target=self.target, pid=self.pid)
        except ProcessLookupError:
            logger.debug("worker.terminate_skipped", target=self.target, reason="gone")
        except OSError as exc:
            logger.warning("worker.terminate_failed", target=self.target, pid=self.pid, error=str(exc))

    async def wait(self) -> int | None:
        """Wait for the process to exit and its output to drain."""
        if self.process is None:
            return None
        returncode = await self.process.wait()
        if self._relays:
            await asyncio.gather(*self._relays, return_exceptions=True)
        return returncode


class ProcessSpawner:
    """Launches worker processes bound to a target's working directory.

    Args:
        command: argv of the worker program. Defaults to
            ``python -m parbuild.worker`` using the current interpreter.
        env: Extra environment variables for every worker.
        inherit_env: If True, workers inherit the coordinator's environment
            (with ``env`` and the channel variables overlaid).
        config_filename: Build configuration file name each worker loads.
        log_level: Worker log level.
    """

    def __init__(
        self,
        command: Sequence[str] | None = None,
        *,
        env: dict[str, str] | None = None,
        inherit_env: bool = True,
        config_filename: str = "parbuild.toml",
        log_level: str = "INFO",
    ) -> None:
        self._command = list(command) if command else default_worker_command()
        self._env = dict(env or {})
        self._inherit_env = inherit_env
        self._config_filename = config_filename
        self._log_level = log_level

    @property
    def command(self) -> list[str]:
        return list(self._command)

    def build_env(self, target: str, address: tuple[str, int]) -> dict[str, str]:
        """Environment for the worker of ``target``.

        Workers run in the target directory and never see the coordinator's
        ``.env``, so the settings they share are passed explicitly.
        """
        env = dict(os.environ) if self._inherit_env else {}
        env[ENV_CONFIG_FILENAME] = self._config_filename
        env[ENV_LOG_LEVEL] = self._log_level
        env.update(self._env)
        host, port = address
        env[ENV_TARGET] = target
        env[ENV_CHANNEL_HOST] = host
        env[ENV_CHANNEL_PORT] = str(port)
        return env

    async def spawn(self, target: str, address: tuple[str, int]) -> WorkerHandle:
        """Start the worker for ``target``; never raises on spawn failure."""
        logger.info("worker.spawning", target=target)
        handle = WorkerHandle(target=target)

        try:
            process = await asyncio.create_subprocess_exec(
                *self._command,
                cwd=target,
                env=self.build_env(target, address),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            handle.spawn_error = SpawnError(
                f"Failed to start worker: {exc}", cause=exc
            ).with_context(target=target)
            logger.error("worker.spawn_failed", target=target, error=str(exc))
            return handle

        handle.process = process
        handle._relays = [
            asyncio.create_task(_relay(process.stdout, target, "stdout")),
            asyncio.create_task(_relay(process.stderr, target, "stderr")),
        ]
        logger.debug("worker.spawned", target=target, pid=process.pid)
        return handle


async def _relay(stream: asyncio.StreamReader | None, target: str, name: str) -> None:
    """Forward a child output stream into the coordinator log, line by line."""
    if stream is None:
        return
    while True:
        line = await stream.readline()
        if not line:
            break
        text = line.decode(errors="replace").rstrip()
        if text:
            logger.info("worker.output", target=target, stream=name, line=text)


__all__ = ["ProcessSpawner", "WorkerHandle", "default_worker_command"]
