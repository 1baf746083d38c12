"""
forkpool.events
===============

Eventos emitidos por `Task` y `Pool`.

El conjunto es **cerrado**: cada variante es una dataclass inmutable y los
consumidores las distinguen con `match` en lugar de comparar strings.

* `TaskStarted`  – la tarea empezó a ejecutarse en un worker.
* `TaskEnded`    – la tarea terminó bien (lleva el `result`).
* `TaskFailed`   – la tarea terminó con error (o su worker murió).
* `TaskMessage`  – cualquier otro mensaje del worker (progreso, logs…).
* `QueueEmpty`   – se sacó una tarea de la cola.
* `PoolDrained`  – todos los workers están ociosos y no hay cola.
* `PoolSaturated`– se encoló una tarea sin poder lanzar más workers.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Union

if TYPE_CHECKING:  # pragma: no cover
    from .task import Task

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    START = "start"
    END = "end"
    ERROR = "error"
    MESSAGE = "message"
    EMPTY = "empty"
    DRAIN = "drain"
    SATURATED = "saturated"


# ──────────────────────────────────────────────────────────────────────────────
# Variantes
# ──────────────────────────────────────────────────────────────────────────────
@dataclass(frozen=True, slots=True)
class TaskStarted:
    task: Task
    kind = EventKind.START


@dataclass(frozen=True, slots=True)
class TaskEnded:
    result: Any
    task: Task
    kind = EventKind.END


@dataclass(frozen=True, slots=True)
class TaskFailed:
    error: Any
    task: Task
    kind = EventKind.ERROR


@dataclass(frozen=True, slots=True)
class TaskMessage:
    name: str
    data: Any
    task: Task
    kind = EventKind.MESSAGE


@dataclass(frozen=True, slots=True)
class QueueEmpty:
    kind = EventKind.EMPTY


@dataclass(frozen=True, slots=True)
class PoolDrained:
    kind = EventKind.DRAIN


@dataclass(frozen=True, slots=True)
class PoolSaturated:
    kind = EventKind.SATURATED


TaskEvent = Union[TaskStarted, TaskEnded, TaskFailed, TaskMessage]
PoolEvent = Union[TaskEvent, QueueEmpty, PoolDrained, PoolSaturated]
Listener = Callable[[Any], None]


# ──────────────────────────────────────────────────────────────────────────────
# Pub/sub
# ──────────────────────────────────────────────────────────────────────────────
class EventBus:
    """
    Publicador síncrono: `emit()` llama a los suscriptores en el orden en
    que se registraron, primero los de la variante y luego los globales.
    Una excepción de un listener se registra con `logger.exception` y no
    llega a quien llamó a `emit()`.
    """

    def __init__(self) -> None:
        self._by_kind: dict[EventKind, list[Listener]] = {}
        self._any: list[Listener] = []

    def on(self, kind: EventKind | str, listener: Listener) -> None:
        self._by_kind.setdefault(EventKind(kind), []).append(listener)

    def off(self, kind: EventKind | str, listener: Listener) -> None:
        listeners = self._by_kind.get(EventKind(kind), [])
        if listener in listeners:
            listeners.remove(listener)

    def subscribe(self, listener: Listener) -> None:
        """Suscribe `listener` a todas las variantes."""
        self._any.append(listener)

    def unsubscribe(self, listener: Listener) -> None:
        if listener in self._any:
            self._any.remove(listener)

    def listener_count(self, kind: EventKind | None = None) -> int:
        if kind is None:
            return len(self._any) + sum(len(ls) for ls in self._by_kind.values())
        return len(self._by_kind.get(EventKind(kind), [])) + len(self._any)

    def emit(self, event: PoolEvent) -> None:
        # Copias: un listener puede des-suscribirse mientras se emite.
        for listener in list(self._by_kind.get(event.kind, ())):
            self._call(listener, event)
        for listener in list(self._any):
            self._call(listener, event)

    @staticmethod
    def _call(listener: Listener, event: PoolEvent) -> None:
        # El fallo de un suscriptor no corta la emisión ni a quien emite.
        try:
            listener(event)
        except Exception:
            logger.exception("listener %r falló con %s", listener, type(event).__name__)

    def clear(self) -> None:
        self._by_kind.clear()
        self._any.clear()


__all__ = [
    "EventKind",
    "TaskStarted",
    "TaskEnded",
    "TaskFailed",
    "TaskMessage",
    "QueueEmpty",
    "PoolDrained",
    "PoolSaturated",
    "TaskEvent",
    "PoolEvent",
    "EventBus",
]
