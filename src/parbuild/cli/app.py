"""
Root Typer application for the parbuild CLI.
"""

from __future__ import annotations

import typer
from typer import Typer

from parbuild import __version__

app = Typer(
    name="parbuild",
    help="parbuild - build many targets in parallel worker processes.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"parbuild {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """parbuild CLI - coordinate parallel one-shot and watch builds."""


# ── Command registration ─────────────────────────────────────────────────

from parbuild.cli.build import build  # noqa: E402

app.command("build", help="Builds or watches all packages etc.")(build)
