"""
Fixtures y _monkey-patches_ compartidos por toda la suite PyTest.

* `fake_workers` sustituye `WorkerHandle` por una versión en memoria para
  probar la máquina de estados del pool de forma determinista.
* `echo_worker` / `broken_worker` apuntan a scripts reales de
  `tests/workers/` para las pruebas de punta a punta.
"""
from __future__ import annotations

import asyncio
import itertools
from pathlib import Path
from typing import Any, Callable

import pytest

import forkpool.pool as poolmod

WORKERS_DIR = Path(__file__).parent / "workers"


async def tick(n: int = 1) -> None:
    """Deja correr `n` vueltas del event loop."""
    for _ in range(n):
        await asyncio.sleep(0)


# ════════════════════════════════════════════════════════════════════════════
# Worker falso
# ════════════════════════════════════════════════════════════════════════════
class FakeWorkerHandle:
    """
    Mismo API que `WorkerHandle`, sin procesos. Los tests deciden cuándo
    llega `ready`, qué responde el worker y cuándo muere.
    """

    _ids = itertools.count()

    def __init__(self, path, arguments=(), executable=None):
        self.id = f"fake-{next(self._ids)}"
        self.path = str(path)
        self.arguments = list(arguments)
        self.executable = executable
        self.pid = 10_000 + int(self.id.split("-")[1])
        self.spawned = False
        self.killed = False
        self.exited = False
        self.sent: list[dict[str, Any]] = []
        self._message_listeners: list[Callable] = []
        self._exit_listeners: list[Callable] = []
        self._error_listeners: list[Callable] = []

    @property
    def alive(self) -> bool:
        return self.spawned and not self.exited

    @property
    def message_listeners(self):
        return tuple(self._message_listeners)

    def on_message(self, listener):
        self._message_listeners.append(listener)

    def off_message(self, listener):
        if listener in self._message_listeners:
            self._message_listeners.remove(listener)

    def on_exit(self, listener):
        self._exit_listeners.append(listener)

    def on_error(self, listener):
        self._error_listeners.append(listener)

    def spawn(self):
        self.spawned = True
        _CREATED.append(self)

    def send(self, message):
        if not self.alive:
            return False
        self.sent.append(message)
        return True

    def kill(self):
        self.killed = True
        if self.alive:
            asyncio.get_running_loop().call_soon(self.exit, "Worker exited due to signal SIGKILL")

    async def wait(self):
        return None

    # ── helpers de test ─────────────────────────────────────────────────────
    @property
    def commands(self) -> list[Any]:
        return [m["command"] for m in self.sent if m["type"] == "run"]

    def reply(self, message: dict[str, Any]) -> None:
        for listener in list(self._message_listeners):
            listener(message)

    def ready(self) -> None:
        self.reply({"type": "ready"})

    def end(self, result: Any = None) -> None:
        self.reply({"type": "end", "result": result})

    def fail(self, message: str = "boom") -> None:
        self.reply({"type": "error", "message": message})

    def exit(self, reason: str = "Worker exited with code 1") -> None:
        if self.exited:
            return
        self.exited = True
        for listener in list(self._exit_listeners):
            listener(reason)

    def error(self, exc: BaseException) -> None:
        for listener in list(self._error_listeners):
            listener(exc)


_CREATED: list[FakeWorkerHandle] = []


@pytest.fixture
def fake_workers(monkeypatch: pytest.MonkeyPatch) -> list[FakeWorkerHandle]:
    """Lista (en orden de creación) de los workers falsos lanzados por el pool."""
    _CREATED.clear()
    monkeypatch.setattr(poolmod, "WorkerHandle", FakeWorkerHandle)
    yield _CREATED
    _CREATED.clear()


# ════════════════════════════════════════════════════════════════════════════
# Scripts worker reales
# ════════════════════════════════════════════════════════════════════════════
@pytest.fixture
def echo_worker() -> Path:
    return WORKERS_DIR / "echo_worker.py"


@pytest.fixture
def broken_worker() -> Path:
    return WORKERS_DIR / "broken_worker.py"
