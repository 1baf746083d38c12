"""
Tests de `WorkerHandle` con procesos reales.
"""
from __future__ import annotations

import asyncio

import pytest

from forkpool.worker import WorkerHandle, describe_exit
from forkpool.worker import handle as handle_mod
from forkpool.worker.utils import _stream_reader

TIMEOUT = 15


def test_describe_exit() -> None:
    assert describe_exit(0) == "Worker exited with code 0"
    assert describe_exit(3) == "Worker exited with code 3"
    assert describe_exit(-9) == "Worker exited due to signal SIGKILL"


@pytest.mark.asyncio
async def test_ready_run_and_kill(echo_worker) -> None:
    handle = WorkerHandle(echo_worker)
    messages: asyncio.Queue = asyncio.Queue()
    exits = []
    handle.on_message(messages.put_nowait)
    handle.on_exit(exits.append)

    handle.spawn()
    assert await asyncio.wait_for(messages.get(), TIMEOUT) == {"type": "ready"}
    assert handle.alive
    assert handle.pid is not None

    assert handle.send({"type": "run", "id": "1", "command": "hola"})
    assert await asyncio.wait_for(messages.get(), TIMEOUT) == {"type": "end", "result": "hola"}

    handle.kill()
    assert await asyncio.wait_for(handle.wait(), TIMEOUT) == -9
    assert exits == ["Worker exited due to signal SIGKILL"]
    assert handle.killed
    assert not handle.alive
    assert handle.send({"type": "run", "command": "x"}) is False


@pytest.mark.asyncio
async def test_messages_are_delivered_before_exit(echo_worker) -> None:
    handle = WorkerHandle(echo_worker)
    order = []
    handle.on_message(lambda m: order.append(m["type"]))
    handle.on_exit(lambda reason: order.append(reason))
    handle.spawn()
    while "ready" not in order:
        await asyncio.sleep(0.01)

    handle.send({"type": "run", "id": "1", "command": "crash"})
    await asyncio.wait_for(handle.wait(), TIMEOUT)

    assert order == ["ready", "Worker exited with code 3"]


@pytest.mark.asyncio
async def test_spawn_failure_notifies_error(tmp_path) -> None:
    handle = WorkerHandle(tmp_path / "worker.py", executable=str(tmp_path / "no-existe"))
    errors = []
    handle.on_error(errors.append)

    handle.spawn()
    await asyncio.wait_for(handle.wait(), TIMEOUT)

    assert len(errors) == 1
    assert isinstance(errors[0], OSError)
    assert not handle.alive


@pytest.mark.asyncio
async def test_failing_listener_goes_to_loop_exception_handler(echo_worker) -> None:
    loop = asyncio.get_running_loop()
    reported = []
    previous = loop.get_exception_handler()
    loop.set_exception_handler(lambda _loop, context: reported.append(context["exception"]))
    try:
        handle = WorkerHandle(echo_worker)
        delivered = asyncio.Event()

        def broken(message):
            raise RuntimeError("listener roto")

        handle.on_message(broken)
        handle.on_message(lambda m: delivered.set())
        handle.spawn()
        await asyncio.wait_for(delivered.wait(), TIMEOUT)

        assert [str(e) for e in reported] == ["listener roto"]
        handle.kill()
        await asyncio.wait_for(handle.wait(), TIMEOUT)
    finally:
        loop.set_exception_handler(previous)


@pytest.mark.asyncio
async def test_stream_reader_reports_overlong_line() -> None:
    stream = asyncio.StreamReader(limit=16)
    stream.feed_data(b"corta\n" + b"x" * 64 + b"\n")
    stream.feed_eof()
    lines = []

    assert await _stream_reader(stream, lines.append, "w", "stdout") is False
    assert lines == ["corta"]

    stream = asyncio.StreamReader()
    stream.feed_data(b"una\ndos\n")
    stream.feed_eof()
    assert await _stream_reader(stream, lines.append, "w", "stdout") is True
    assert lines == ["corta", "una", "dos"]


@pytest.mark.asyncio
async def test_unreadable_stdout_kills_worker(echo_worker, monkeypatch) -> None:
    monkeypatch.setattr(handle_mod, "_STREAM_LIMIT", 1024)
    handle = WorkerHandle(echo_worker)
    messages: asyncio.Queue = asyncio.Queue()
    exits = []
    handle.on_message(messages.put_nowait)
    handle.on_exit(exits.append)

    handle.spawn()
    assert await asyncio.wait_for(messages.get(), TIMEOUT) == {"type": "ready"}
    handle.send({"type": "run", "id": "1", "command": "x" * 8192})

    assert await asyncio.wait_for(handle.wait(), TIMEOUT) == -9
    assert exits == ["Worker exited due to signal SIGKILL"]
    assert not handle.killed
    assert messages.empty()
