"""Worker process runtime - ``python -m parbuild.worker``.

One worker runs per target, started by the coordinator with the target
directory as its cwd and the channel address in its environment.

Lifecycle::

    connect ──► send Ready ──► wait for Assign(target == mine)
                                   │
                  ┌────────────────┴────────────────┐
              watch=False                       watch=True
              build once                        build, then rebuild on change
              send Completed | Failed           send Completed | Failed per cycle
              exit 0 | 1                        run until terminated

A configuration problem (missing or invalid ``parbuild.toml``) is reported
as Failed and the process exits 1.
"""

from __future__ import annotations

import asyncio
import sys

from parbuild.builder import BuildConfig, CommandBuilder
from parbuild.channel import WorkerEndpoint
from parbuild.channel.tcp import SocketEndpoint
from parbuild.core.errors import BuildError, ConfigError
from parbuild.core.logging import LogContext, configure_logging, get_logger
from parbuild.core.settings import WorkerSettings
from parbuild.protocol import AssignMessage, CompletedMessage, FailedMessage, ReadyMessage

logger = get_logger(__name__)


async def serve(
    endpoint: WorkerEndpoint,
    *,
    config_filename: str = "parbuild.toml",
) -> int:
    """Run the worker protocol over an already-connected endpoint.

    Returns:
        Process exit code (0 success, 1 failure).  Watch mode only returns
        if the channel closes.
    """
    target = endpoint.target

    async def report(success: bool, payload: str) -> None:
        if success:
            await endpoint.send(CompletedMessage(target=target, result=payload))
        else:
            await endpoint.send(FailedMessage(target=target, error=payload))

    await endpoint.send(ReadyMessage(target=target))
    logger.debug("worker.ready", target=target)

    try:
        assign = await _next_assign(endpoint)
    except ConnectionError:
        logger.info("worker.channel_closed", target=target)
        return 1

    logger.info("worker.assigned", target=target, watch=assign.watch)

    try:
        builder = CommandBuilder(target, BuildConfig.load(target, config_filename))
    except ConfigError as exc:
        logger.error("worker.config_error", target=target, error=exc.message)
        await report(False, exc.message)
        return 1

    if not assign.watch:
        try:
            result = await builder.run()
        except BuildError as exc:
            await report(False, exc.message)
            return 1
        await report(True, result)
        return 0

    watching = asyncio.create_task(builder.watch(assign.options(), report))
    try:
        # Keep reading so a closed channel ends the worker; repeat
        # assignments for a target that is already watching are ignored.
        while True:
            await _next_assign(endpoint)
            logger.debug("worker.assign_ignored", target=target, reason="already watching")
    except ConnectionError:
        logger.info("worker.channel_closed", target=target)
        return 0
    finally:
        watching.cancel()
        try:
            await watching
        except (asyncio.CancelledError, ConnectionError):
            pass


async def _next_assign(endpoint: WorkerEndpoint) -> AssignMessage:
    while True:
        message = await endpoint.receive()
        if isinstance(message, AssignMessage):
            return message


async def run_worker(settings: WorkerSettings) -> int:
    """Connect to the coordinator described by ``settings`` and serve."""
    async with LogContext(target=settings.target):
        endpoint = await SocketEndpoint.connect(
            settings.target, settings.channel_host, settings.channel_port,
        )
        try:
            return await serve(endpoint, config_filename=settings.config_filename)
        finally:
            await endpoint.close()


def main() -> None:
    """Console entry point for worker processes."""
    settings = WorkerSettings()
    configure_logging(level=settings.log_level, json_format=False, stream=sys.stderr, add_timestamp=False)
    try:
        code = asyncio.run(run_worker(settings))
    except KeyboardInterrupt:
        code = 130
    except OSError as exc:
        logger.error("worker.connect_failed", target=settings.target, error=str(exc))
        code = 1
    sys.exit(code)


if __name__ == "__main__":
    main()
