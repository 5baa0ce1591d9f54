"""
CLI: ``parbuild build`` - build or watch every target in parallel.
"""

from __future__ import annotations

import asyncio
from pathlib import Path

import typer

from parbuild.cli.utils import console, err_console, print_summary
from parbuild.core.errors import ConfigError, CoordinationError
from parbuild.core.logging import configure_logging
from parbuild.core.settings import get_settings


def build(
    root: Path | None = typer.Option(  # noqa: UP007
        None, "--root", help="Root directory (defaults to cwd)", file_okay=False,
    ),
    watch: bool = typer.Option(False, "--watch", help="Toggle watch mode"),
    with_paths: list[str] | None = typer.Option(  # noqa: UP007
        None, "--with", help="Include paths into build (repeatable)",
    ),
    with_packages: bool = typer.Option(
        False, "--with-packages", help="Build packages (off by default)",
    ),
    concurrency: int | None = typer.Option(  # noqa: UP007
        None, "--concurrency", "-c", min=1, help="Maximum parallel builds (default: 1)",
    ),
    barrier_timeout: float | None = typer.Option(  # noqa: UP007
        None, "--barrier-timeout", help="Seconds to wait for all workers to start (0 waits forever)",
    ),
) -> None:
    """Builds or watches all packages etc.

    Example::

        parbuild build --with-packages --concurrency 4
        parbuild build --root ./site --with ../shared --watch
    """
    from parbuild.channel.tcp import SocketChannel
    from parbuild.coordinator import run_build
    from parbuild.discovery import resolve_targets
    from parbuild.handle import ProcessSpawner
    from parbuild.protocol import WatchOptions

    settings = get_settings()
    configure_logging(level=settings.log_level, json_format=settings.json_logs())

    concurrency = concurrency or settings.concurrency
    watch = watch or settings.watch
    if barrier_timeout is None:
        barrier_timeout = settings.barrier_timeout_seconds
    elif barrier_timeout <= 0:
        barrier_timeout = None

    try:
        targets = resolve_targets(
            root,
            with_paths=with_paths or [],
            with_packages=with_packages,
            packages_file=settings.packages_file,
            config_filename=settings.config_filename,
        )
    except ConfigError as exc:
        err_console.print(f"[bold red]Error[/bold red]: {exc.message}")
        raise typer.Exit(code=1)

    console.print(
        f"[bold green]Starting parallel build[/bold green] "
        f"(concurrency: {concurrency}, watch: {str(watch).lower()})"
    )

    try:
        summary = asyncio.run(
            run_build(
                targets,
                concurrency=concurrency,
                watch=watch,
                watch_options=WatchOptions(
                    aggregate_timeout=settings.aggregate_timeout_ms,
                    poll=settings.poll_interval_ms,
                ),
                barrier_timeout=barrier_timeout,
                channel=SocketChannel(settings.channel_host, settings.channel_port),
                spawner=ProcessSpawner(
                    config_filename=settings.config_filename,
                    log_level=settings.log_level,
                ),
            )
        )
    except KeyboardInterrupt:
        console.print("\n[yellow]Build stopped by user[/yellow]")
        return
    except CoordinationError as exc:
        err_console.print(f"[bold red]an error occurred while building[/bold red]: {exc.message}")
        raise typer.Exit(code=1)

    print_summary(summary)
