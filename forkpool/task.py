# forkpool/task.py
from __future__ import annotations

import asyncio
import logging
import uuid
from enum import Enum
from typing import TYPE_CHECKING, Any

from .errors import TaskError
from .events import (
    EventBus,
    EventKind,
    Listener,
    TaskEnded,
    TaskFailed,
    TaskMessage,
    TaskStarted,
)

if TYPE_CHECKING:  # pragma: no cover
    from .worker import WorkerHandle

logger = logging.getLogger(__name__)


class TaskState(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    ENDED = "ended"
    FAILED = "failed"


class Task:
    """
    Una unidad de trabajo y su ciclo de vida.

    Protocolo con el worker (JSON por línea):

    * pool → worker: `{"type": "run", "id": ..., "command": ...}`
      y `{"type": "input", "data": ...}` para `send()`.
    * worker → pool: `{"type": "end", "result": ...}`,
      `{"type": "error", "message": ...}` o cualquier otro `type` con
      `data`, que se emite como `TaskMessage`.
    """

    def __init__(self, command: Any) -> None:
        self.id: str = uuid.uuid4().hex[:8]
        self.command = command
        self.state = TaskState.QUEUED
        self.result: Any = None
        self.error: Any = None
        self.worker: WorkerHandle | None = None
        self._events = EventBus()
        self._finished = asyncio.Event()

    def __repr__(self) -> str:
        return f"<Task id={self.id} state={self.state.value} command={self.command!r}>"

    @property
    def done(self) -> bool:
        return self.state in (TaskState.ENDED, TaskState.FAILED)

    # ── suscripción ──────────────────────────────────────────────────────────
    def on(self, kind: EventKind | str, listener: Listener) -> Task:
        self._events.on(kind, listener)
        return self

    def off(self, kind: EventKind | str, listener: Listener) -> Task:
        self._events.off(kind, listener)
        return self

    def subscribe(self, listener: Listener) -> Task:
        """Recibe todos los eventos de la tarea."""
        self._events.subscribe(listener)
        return self

    def unsubscribe(self, listener: Listener) -> Task:
        self._events.unsubscribe(listener)
        return self

    # ── ejecución ────────────────────────────────────────────────────────────
    def run(self, worker: WorkerHandle) -> None:
        """Empieza la tarea en `worker`."""
        if self.state is not TaskState.QUEUED:
            raise RuntimeError(f"Task {self.id} ya fue ejecutada ({self.state.value})")
        self.worker = worker
        self.state = TaskState.RUNNING
        worker.on_message(self._on_message)
        logger.debug("[%s] task %s → %r", worker.id, self.id, self.command)
        worker.send({"type": "run", "id": self.id, "command": self.command})
        self._events.emit(TaskStarted(self))

    def abort(self, reason: Any) -> None:
        """Falla una tarea que nunca llegó a un worker (p. ej. arranque fallido)."""
        if self.done:
            return
        self.error = str(reason)
        self._finish(TaskState.FAILED)
        self._events.emit(TaskFailed(self.error, self))

    def send(self, data: Any) -> bool:
        """Envía `data` al worker que ejecuta la tarea."""
        if self.worker is None or self.done:
            return False
        return self.worker.send({"type": "input", "data": data})

    def _on_message(self, message: dict[str, Any]) -> None:
        if self.done:
            return
        match message.get("type"):
            case "end":
                self.result = message.get("result")
                self._finish(TaskState.ENDED)
                self._events.emit(TaskEnded(self.result, self))
            case "error":
                self.error = message.get("message")
                self._finish(TaskState.FAILED)
                self._events.emit(TaskFailed(self.error, self))
            case str(name):
                self._events.emit(TaskMessage(name, message.get("data"), self))

    def _finish(self, state: TaskState) -> None:
        self.state = state
        if self.worker is not None:
            self.worker.off_message(self._on_message)
        self._finished.set()

    async def wait(self) -> Any:
        """Espera el final de la tarea; devuelve `result` o lanza `TaskError`."""
        await self._finished.wait()
        if self.state is TaskState.FAILED:
            raise TaskError(self.error, task_id=self.id)
        return self.result
