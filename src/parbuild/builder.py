"""Build adapter - what a worker actually runs for its target.

The coordinator treats a build as opaque.  This module is the worker-side
adapter that makes it concrete: it reads the target's ``parbuild.toml``,
runs the configured command in the target directory, and reports a result
string or a :class:`~parbuild.core.errors.BuildError`.

Example ``parbuild.toml``::

    [build]
    command = ["python", "-m", "compileall", "-q", "src"]

    [watch]
    paths = ["src"]
    ignore = [".git", "__pycache__"]

Watch mode polls a content fingerprint of the watched paths.  When it
changes, the builder waits ``aggregate_timeout`` milliseconds and checks
again, repeating until the tree is stable, then rebuilds.  Every cycle's
outcome goes to the ``on_result`` callback; the loop runs until cancelled.
"""

from __future__ import annotations

import asyncio
import hashlib
import os
import shlex
import time
import tomllib
from collections.abc import Awaitable, Callable
from pathlib import Path

from pydantic import BaseModel, Field, ValidationError, field_validator

from parbuild.core.errors import BuildError, InvalidConfigError, MissingConfigError
from parbuild.core.logging import get_logger
from parbuild.protocol import WatchOptions

logger = get_logger(__name__)

DEFAULT_CONFIG_FILENAME = "parbuild.toml"
DEFAULT_POLL_INTERVAL_MS = 500
DEFAULT_IGNORE = [".git", ".hg", ".svn", "__pycache__", ".mypy_cache", ".pytest_cache", ".venv"]

#: Lines of command output kept in result and error payloads.
OUTPUT_TAIL_LINES = 200

ResultCallback = Callable[[bool, str], Awaitable[None]]


class WatchConfig(BaseModel):
    """Which files a watch build observes."""

    paths: list[str] = Field(default_factory=lambda: ["."])
    ignore: list[str] = Field(default_factory=lambda: list(DEFAULT_IGNORE))


class BuildConfig(BaseModel):
    """A target's build configuration."""

    command: list[str]
    env: dict[str, str] = Field(default_factory=dict)
    watch: WatchConfig = Field(default_factory=WatchConfig)

    @field_validator("command", mode="before")
    @classmethod
    def _split_command(cls, value: object) -> object:
        if isinstance(value, str):
            return shlex.split(value)
        return value

    @field_validator("command")
    @classmethod
    def _non_empty(cls, value: list[str]) -> list[str]:
        if not value:
            raise ValueError("command must not be empty")
        return value

    @classmethod
    def load(cls, target: str | Path, filename: str = DEFAULT_CONFIG_FILENAME) -> BuildConfig:
        """Read ``<target>/<filename>``.

        Raises:
            MissingConfigError: the file does not exist.
            InvalidConfigError: the file is not valid TOML or lacks a command.
        """
        path = Path(target) / filename
        if not path.is_file():
            raise MissingConfigError(str(path), f"No build configuration at {path}")
        try:
            data = tomllib.loads(path.read_text(encoding="utf-8"))
        except (OSError, tomllib.TOMLDecodeError) as exc:
            raise InvalidConfigError(str(path), None, f"Cannot read {path}: {exc}", cause=exc) from exc

        build = data.get("build", {})
        try:
            return cls.model_validate({
                "command": build.get("command", []),
                "env": build.get("env", {}),
                "watch": data.get("watch", {}),
            })
        except ValidationError as exc:
            raise InvalidConfigError(str(path), build, f"Invalid build configuration in {path}: {exc}", cause=exc) from exc


def has_build_config(directory: str | Path, filename: str = DEFAULT_CONFIG_FILENAME) -> bool:
    """Whether ``directory`` contains a build configuration file."""
    return (Path(directory) / filename).is_file()


def _tail(text: str, lines: int = OUTPUT_TAIL_LINES) -> str:
    return "\n".join(text.splitlines()[-lines:])


def fingerprint(root: str | Path, config: WatchConfig) -> str:
    """Digest of every watched file's path, mtime and size."""
    root = Path(root)
    ignore = set(config.ignore)
    digest = hashlib.sha256()

    for entry in sorted(config.paths):
        base = (root / entry).resolve()
        if base.is_file():
            stat = base.stat()
            digest.update(f"{entry}|{stat.st_mtime_ns}|{stat.st_size}\n".encode())
            continue
        for dirpath, dirnames, filenames in os.walk(base):
            dirnames[:] = sorted(d for d in dirnames if d not in ignore)
            for name in sorted(filenames):
                if name in ignore:
                    continue
                path = Path(dirpath) / name
                try:
                    stat = path.stat()
                except OSError:
                    continue  # removed between walk and stat
                rel = path.relative_to(root) if path.is_relative_to(root) else path
                digest.update(f"{rel}|{stat.st_mtime_ns}|{stat.st_size}\n".encode())

    return digest.hexdigest()


class CommandBuilder:
    """Runs a target's build command, once or on every change.

    Args:
        target: Target directory; the command runs with it as cwd.
        config: The target's :class:`BuildConfig`.
    """

    def __init__(self, target: str | Path, config: BuildConfig) -> None:
        self._target = Path(target)
        self._config = config
        self._builds = 0

    @property
    def builds(self) -> int:
        return self._builds

    async def run(self) -> str:
        """Build once.

        Returns:
            Result summary (output tail plus a timing line).

        Raises:
            BuildError: the command could not start or exited non-zero.
        """
        started = time.monotonic()
        env = dict(os.environ)
        env.update(self._config.env)

        logger.info("build.start", target=str(self._target), command=self._config.command)
        try:
            process = await asyncio.create_subprocess_exec(
                *self._config.command,
                cwd=str(self._target),
                env=env,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
            )
        except OSError as exc:
            raise BuildError(
                f"Cannot run {self._config.command[0]}: {exc}", cause=exc,
            ).with_context(target=str(self._target)) from exc

        stdout, _ = await process.communicate()
        self._builds += 1
        output = _tail(stdout.decode(errors="replace") if stdout else "")
        elapsed = time.monotonic() - started

        if process.returncode != 0:
            logger.warning("build.failed", target=str(self._target), returncode=process.returncode)
            message = output or f"{shlex.join(self._config.command)} exited with {process.returncode}"
            raise BuildError(message, returncode=process.returncode).with_context(target=str(self._target))

        logger.info("build.done", target=str(self._target), seconds=round(elapsed, 3))
        summary = f"Built {self._target} in {elapsed:.2f}s"
        return f"{output}\n{summary}" if output else summary

    async def watch(self, options: WatchOptions, on_result: ResultCallback) -> None:
        """Build now and again after every settled change. Runs until cancelled.

        The fingerprint is retaken after every build, so files the build
        itself writes under the watched paths do not trigger a rebuild.
        """
        poll = (options.poll or DEFAULT_POLL_INTERVAL_MS) / 1000
        aggregate = options.aggregate_timeout / 1000

        await self._report(on_result)
        current = await self._fingerprint()

        while True:
            await asyncio.sleep(poll)
            latest = await self._fingerprint()
            if latest == current:
                continue

            # Wait for the tree to stop changing before rebuilding
            while True:
                await asyncio.sleep(aggregate)
                settled = await self._fingerprint()
                if settled == latest:
                    break
                latest = settled

            logger.info("build.change_detected", target=str(self._target))
            await self._report(on_result)
            current = await self._fingerprint()

    async def _fingerprint(self) -> str:
        # Tree walk runs off the event loop so the channel reader stays live
        return await asyncio.to_thread(fingerprint, self._target, self._config.watch)

    async def _report(self, on_result: ResultCallback) -> None:
        try:
            result = await self.run()
        except BuildError as exc:
            await on_result(False, exc.message)
        else:
            await on_result(True, result)


__all__ = [
    "BuildConfig",
    "CommandBuilder",
    "WatchConfig",
    "fingerprint",
    "has_build_config",
]
