"""Tests for WorkerHandle and ProcessSpawner."""

from __future__ import annotations

import asyncio
import sys
from unittest.mock import MagicMock

import pytest

from parbuild.core.errors import SpawnError
from parbuild.core.settings import (
    ENV_CHANNEL_HOST,
    ENV_CHANNEL_PORT,
    ENV_CONFIG_FILENAME,
    ENV_LOG_LEVEL,
    ENV_TARGET,
)
from parbuild.handle import ProcessSpawner, WorkerHandle, default_worker_command


# ── WorkerHandle.terminate ───────────────────────────────────────────────


class TestTerminate:
    def test_no_process_is_noop(self):
        handle = WorkerHandle(target="a")
        handle.terminate()
        handle.terminate()
        assert handle.terminate_requested is False
        assert handle.alive is False

    def test_exited_process_not_signalled(self):
        process = MagicMock(returncode=0, pid=42)
        handle = WorkerHandle(target="a", process=process)
        handle.terminate()
        process.terminate.assert_not_called()

    def test_running_process_signalled(self):
        process = MagicMock(returncode=None, pid=42)
        handle = WorkerHandle(target="a", process=process)
        assert handle.alive
        assert handle.pid == 42
        handle.terminate()
        process.terminate.assert_called_once()
        assert handle.terminate_requested

    def test_vanished_process_swallowed(self):
        process = MagicMock(returncode=None, pid=42)
        process.terminate.side_effect = ProcessLookupError()
        handle = WorkerHandle(target="a", process=process)
        handle.terminate()
        handle.terminate()
        assert process.terminate.call_count == 2

    def test_os_error_swallowed(self):
        process = MagicMock(returncode=None, pid=42)
        process.terminate.side_effect = PermissionError("denied")
        WorkerHandle(target="a", process=process).terminate()

    @pytest.mark.asyncio
    async def test_wait_without_process(self):
        assert await WorkerHandle(target="a").wait() is None


# ── ProcessSpawner ───────────────────────────────────────────────────────


class TestSpawner:
    def test_default_command_uses_current_interpreter(self):
        assert default_worker_command() == [sys.executable, "-m", "parbuild.worker"]
        assert ProcessSpawner().command == default_worker_command()

    def test_build_env(self):
        spawner = ProcessSpawner(["true"], env={"EXTRA": "1"}, inherit_env=False)
        env = spawner.build_env("/src/app", ("127.0.0.1", 4567))
        assert env == {
            "EXTRA": "1",
            ENV_CONFIG_FILENAME: "parbuild.toml",
            ENV_LOG_LEVEL: "INFO",
            ENV_TARGET: "/src/app",
            ENV_CHANNEL_HOST: "127.0.0.1",
            ENV_CHANNEL_PORT: "4567",
        }

    def test_build_env_forwards_worker_settings(self, monkeypatch):
        monkeypatch.setenv(ENV_LOG_LEVEL, "ERROR")
        spawner = ProcessSpawner(["true"], config_filename="build.toml", log_level="DEBUG")
        env = spawner.build_env("/src/app", ("127.0.0.1", 4567))
        assert env[ENV_CONFIG_FILENAME] == "build.toml"
        assert env[ENV_LOG_LEVEL] == "DEBUG"

    def test_explicit_env_overrides_worker_settings(self):
        spawner = ProcessSpawner(["true"], env={ENV_LOG_LEVEL: "WARNING"}, log_level="DEBUG")
        assert spawner.build_env("/src/app", ("127.0.0.1", 1))[ENV_LOG_LEVEL] == "WARNING"

    @pytest.mark.asyncio
    async def test_spawn_failure_returns_handle(self, tmp_path):
        spawner = ProcessSpawner([str(tmp_path / "no-such-program")])
        handle = await spawner.spawn(str(tmp_path), ("127.0.0.1", 1))
        assert handle.process is None
        assert isinstance(handle.spawn_error, SpawnError)
        assert handle.spawn_error.context.target == str(tmp_path)
        handle.terminate()

    @pytest.mark.asyncio
    async def test_spawn_runs_in_target_with_env(self, tmp_path):
        code = (
            "import os, pathlib; "
            f"pathlib.Path('seen.txt').write_text(os.environ['{ENV_TARGET}'] + '|' + os.environ['{ENV_CHANNEL_PORT}'])"
        )
        spawner = ProcessSpawner([sys.executable, "-c", code])
        handle = await spawner.spawn(str(tmp_path), ("127.0.0.1", 9999))

        assert handle.pid is not None
        assert await asyncio.wait_for(handle.wait(), timeout=30) == 0
        assert (tmp_path / "seen.txt").read_text() == f"{tmp_path}|9999"
        handle.terminate()

    @pytest.mark.asyncio
    async def test_terminate_stops_running_worker(self, tmp_path):
        spawner = ProcessSpawner([sys.executable, "-c", "import time; time.sleep(60)"])
        handle = await spawner.spawn(str(tmp_path), ("127.0.0.1", 1))
        assert handle.alive

        handle.terminate()
        returncode = await asyncio.wait_for(handle.wait(), timeout=30)
        assert returncode != 0
        assert not handle.alive
        handle.terminate()
