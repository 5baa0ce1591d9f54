"""
Shared pytest fixtures and configuration for parbuild tests.

This module provides:
- Settings/logging reset fixtures for test isolation
- Fake worker handles and spawners (no child processes)
- An in-process spawner that runs the real worker protocol as tasks
- Helpers for writing target directories with a ``parbuild.toml``
"""

import asyncio
import json
import sys
from pathlib import Path
from typing import Generator

import pytest
import structlog

# Ensure parbuild package is importable
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from parbuild.channel.memory import InMemoryChannel
from parbuild.core.settings import clear_settings_cache
from parbuild.protocol import CompletedMessage, FailedMessage, ReadyMessage


# =============================================================================
# Test Markers Configuration
# =============================================================================


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    """Auto-mark tests based on their location."""
    for item in items:
        test_path = Path(item.fspath).relative_to(Path(__file__).parent)

        if "integration" in str(test_path):
            item.add_marker(pytest.mark.integration)

        markers = {mark.name for mark in item.iter_markers()}
        if not markers.intersection({"unit", "integration", "slow"}):
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Isolation Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def reset_process_state() -> Generator[None, None, None]:
    """
    Clear cached settings and structlog configuration around each test.

    CLI tests configure logging against a stream that CliRunner closes
    afterwards; a leftover configuration would write to it.
    """
    clear_settings_cache()
    yield
    clear_settings_cache()
    structlog.reset_defaults()


# =============================================================================
# Fake Workers
# =============================================================================


class FakeHandle:
    """Stands in for WorkerHandle without a process."""

    def __init__(self, target: str) -> None:
        self.target = target
        self.pid = None
        self.spawn_error = None
        self.terminate_calls = 0

    def terminate(self) -> None:
        self.terminate_calls += 1


class FakeSpawner:
    """Records spawn calls and hands out FakeHandles."""

    def __init__(self) -> None:
        self.handles: dict[str, FakeHandle] = {}
        self.spawned: list[str] = []

    async def spawn(self, target: str, address: tuple[str, int]) -> FakeHandle:
        self.spawned.append(target)
        handle = FakeHandle(target)
        self.handles[target] = handle
        return handle


class TaskHandle(FakeHandle):
    """A worker running as an asyncio task; terminate cancels it."""

    def __init__(self, target: str, task: asyncio.Task) -> None:
        super().__init__(target)
        self.task = task

    def terminate(self) -> None:
        super().terminate()
        self.task.cancel()


class InProcessSpawner:
    """Runs the real worker protocol for each target inside the event loop."""

    def __init__(self, channel: InMemoryChannel, config_filename: str = "parbuild.toml") -> None:
        self._channel = channel
        self._config_filename = config_filename
        self.handles: dict[str, TaskHandle] = {}

    async def spawn(self, target: str, address: tuple[str, int]) -> TaskHandle:
        from parbuild.worker import serve

        endpoint = self._channel.connect(target)
        task = asyncio.create_task(serve(endpoint, config_filename=self._config_filename))
        handle = TaskHandle(target, task)
        self.handles[target] = handle
        return handle


@pytest.fixture
def spawner() -> FakeSpawner:
    return FakeSpawner()


@pytest.fixture
def channel() -> InMemoryChannel:
    return InMemoryChannel()


# =============================================================================
# Message Helpers
# =============================================================================


def ready(target: str) -> ReadyMessage:
    return ReadyMessage(target=target)


def completed(target: str, result: str = "ok") -> CompletedMessage:
    return CompletedMessage(target=target, result=result)


def failed(target: str, error: str = "boom") -> FailedMessage:
    return FailedMessage(target=target, error=error)


# =============================================================================
# Target Directories
# =============================================================================


def python_command(code: str) -> list[str]:
    """Build command running ``code`` with the current interpreter."""
    return [sys.executable, "-c", code]


def write_target(directory: Path, command: list[str], *, watch_paths: list[str] | None = None) -> Path:
    """Create ``directory`` with a ``parbuild.toml`` running ``command``."""
    directory.mkdir(parents=True, exist_ok=True)
    lines = ["[build]", f"command = {json.dumps(command)}"]
    if watch_paths is not None:
        lines += ["", "[watch]", f"paths = {json.dumps(watch_paths)}"]
    (directory / "parbuild.toml").write_text("\n".join(lines) + "\n", encoding="utf-8")
    return directory
