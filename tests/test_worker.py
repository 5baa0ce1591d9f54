"""Tests for the worker protocol loop (``parbuild.worker.serve``)."""

from __future__ import annotations

import asyncio

import pytest

from conftest import python_command, write_target
from parbuild.channel.memory import InMemoryChannel
from parbuild.protocol import AssignMessage, CompletedMessage, FailedMessage, ReadyMessage, WatchOptions
from parbuild.worker import serve


# ── Helpers ──────────────────────────────────────────────────────────────


async def _connected(target: str) -> tuple[InMemoryChannel, list, object]:
    received: list = []
    channel = InMemoryChannel()
    await channel.start(received.append)
    return channel, received, channel.connect(target)


async def _wait_for_kind(channel: InMemoryChannel, received: list, kind: str, timeout: float = 30.0) -> None:
    deadline = asyncio.get_running_loop().time() + timeout
    while not any(m.kind == kind for m in received):
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError(f"no {kind} message received")
        await asyncio.sleep(0.01)
    await channel.drain()


class _ClosedEndpoint:
    target = "/src/app"

    def __init__(self) -> None:
        self.sent = []

    async def send(self, message) -> None:
        self.sent.append(message)

    async def receive(self):
        raise ConnectionError("closed")

    async def close(self) -> None:
        pass


# ── One-shot ─────────────────────────────────────────────────────────────


class TestOneShot:
    @pytest.mark.asyncio
    async def test_ready_then_completed(self, tmp_path):
        target = str(write_target(tmp_path / "app", python_command("print('bundle ok')")))
        channel, received, endpoint = await _connected(target)

        channel.broadcast(AssignMessage(target=target))
        code = await asyncio.wait_for(serve(endpoint), timeout=30)
        await channel.drain()

        assert code == 0
        assert [m.kind for m in received] == ["ready", "completed"]
        assert isinstance(received[1], CompletedMessage)
        assert "bundle ok" in received[1].result
        await channel.close()

    @pytest.mark.asyncio
    async def test_build_failure_reported(self, tmp_path):
        code = "import sys; print('Module not found: ./missing'); sys.exit(1)"
        target = str(write_target(tmp_path / "app", python_command(code)))
        channel, received, endpoint = await _connected(target)

        channel.broadcast(AssignMessage(target=target))
        assert await asyncio.wait_for(serve(endpoint), timeout=30) == 1
        await channel.drain()

        assert isinstance(received[-1], FailedMessage)
        assert "Module not found" in received[-1].error
        await channel.close()

    @pytest.mark.asyncio
    async def test_missing_config_reported_as_failure(self, tmp_path):
        target = str(tmp_path)
        channel, received, endpoint = await _connected(target)

        channel.broadcast(AssignMessage(target=target))
        assert await asyncio.wait_for(serve(endpoint), timeout=30) == 1
        await channel.drain()

        assert isinstance(received[-1], FailedMessage)
        assert "No build configuration" in received[-1].error
        await channel.close()

    @pytest.mark.asyncio
    async def test_ignores_assignments_for_other_targets(self, tmp_path):
        target = str(write_target(tmp_path / "app", python_command("pass")))
        channel, received, endpoint = await _connected(target)
        other = channel.connect(str(tmp_path / "other"))

        channel.broadcast(AssignMessage(target=str(tmp_path / "other")))
        channel.broadcast(AssignMessage(target=target))
        assert await asyncio.wait_for(serve(endpoint), timeout=30) == 0
        await channel.drain()

        assert [m.target for m in received] == [target, target]
        assert len(other.pending()) == 2
        await channel.close()

    @pytest.mark.asyncio
    async def test_channel_closed_before_assignment(self):
        endpoint = _ClosedEndpoint()
        assert await serve(endpoint) == 1
        assert endpoint.sent == [ReadyMessage(target="/src/app")]


# ── Watch ────────────────────────────────────────────────────────────────


class TestWatch:
    @pytest.mark.asyncio
    async def test_keeps_running_after_first_build(self, tmp_path):
        target = str(write_target(tmp_path / "app", python_command("print('watching')")))
        channel, received, endpoint = await _connected(target)

        options = WatchOptions(aggregate_timeout=10, poll=20)
        channel.broadcast(
            AssignMessage(target=target, watch=True, watch_options=options.model_dump(by_alias=True))
        )
        task = asyncio.create_task(serve(endpoint))
        try:
            await _wait_for_kind(channel, received, "completed")
            assert not task.done()

            # Repeat assignments are ignored while watching
            channel.broadcast(AssignMessage(target=target, watch=True))
            await asyncio.sleep(0.05)
            assert not task.done()
        finally:
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task
            await channel.close()

    @pytest.mark.asyncio
    async def test_watch_ends_when_channel_closes(self, tmp_path):
        target = str(write_target(tmp_path / "app", python_command("pass")))
        sent = []
        assigned = asyncio.Event()

        class _Endpoint:
            def __init__(self) -> None:
                self.target = target
                self._calls = 0

            async def send(self, message) -> None:
                sent.append(message)

            async def receive(self):
                self._calls += 1
                if self._calls == 1:
                    return AssignMessage(target=target, watch=True, watch_options={"poll": 10})
                await assigned.wait()
                raise ConnectionError("closed")

            async def close(self) -> None:
                pass

        task = asyncio.create_task(serve(_Endpoint()))
        for _ in range(3000):
            if any(m.kind == "completed" for m in sent):
                break
            await asyncio.sleep(0.01)
        assigned.set()

        assert await asyncio.wait_for(task, timeout=30) == 0
        assert [m.kind for m in sent][:2] == ["ready", "completed"]
