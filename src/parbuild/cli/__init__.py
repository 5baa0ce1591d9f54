"""
CLI layer for parbuild.

Provides a Typer application whose ``build`` command resolves targets and
hands them to the coordinator (``parbuild.coordinator``).  This package
handles only terminal transport: argument parsing and coloured output.

Entry point::

    parbuild --help
"""

from parbuild.cli.app import app

__all__ = ["app"]
