# forkpool/pool.py
from __future__ import annotations

import asyncio
import logging
import os
from collections import deque
from dataclasses import dataclass
from typing import Any

from .config import PoolConfig
from .errors import PoolClosedError, WorkerStartupError
from .events import (
    EventBus,
    EventKind,
    Listener,
    PoolDrained,
    PoolEvent,
    PoolSaturated,
    QueueEmpty,
    TaskEnded,
    TaskFailed,
    TaskMessage,
    TaskStarted,
)
from .task import Task
from .worker import WorkerHandle

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _Slot:
    handle: WorkerHandle
    ready: bool = False
    completed: int = 0
    retiring: bool = False


class Pool:
    """
    Pool que reparte tareas entre un número acotado de procesos worker.

    Todo el estado (`_workers`, `_idle`, `_tasks`) vive en el hilo del event
    loop y sólo lo modifican los métodos del pool. Un worker cuenta como
    ocupado desde que se lanza hasta que completa el handshake `ready` y
    queda ocioso.
    """

    def __init__(self, path: str | os.PathLike[str], cfg: PoolConfig | None = None) -> None:
        self.path = os.fspath(path)
        self._cfg = cfg or PoolConfig()
        self._workers: dict[str, _Slot] = {}
        self._idle: deque[str] = deque()
        self._tasks: deque[Task] = deque()
        self._events = EventBus()
        self._dispatching = 0
        self._closed = False
        self._stopping: list[WorkerHandle] = []
        self._joiners: list[asyncio.Future[None]] = []
        self.failure: WorkerStartupError | None = None

    def __repr__(self) -> str:
        return (
            f"<Pool path='{self.path}' workers={len(self._workers)}/{self._cfg.workers} "
            f"idle={len(self._idle)} queued={len(self._tasks)}>"
        )

    async def __aenter__(self) -> Pool:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()

    # ── vistas de sólo lectura ───────────────────────────────────────────────
    @property
    def config(self) -> PoolConfig:
        return self._cfg

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def worker_ids(self) -> tuple[str, ...]:
        return tuple(self._workers)

    @property
    def idle_ids(self) -> tuple[str, ...]:
        return tuple(self._idle)

    @property
    def pending(self) -> tuple[Task, ...]:
        return tuple(self._tasks)

    def busy_count(self) -> int:
        return len(self._workers) - len(self._idle)

    def available_capacity(self) -> int:
        return self._cfg.workers - self.busy_count()

    def total_capacity(self) -> int:
        return self._cfg.workers

    # ── suscripción ──────────────────────────────────────────────────────────
    def on(self, kind: EventKind | str, listener: Listener) -> Pool:
        self._events.on(kind, listener)
        return self

    def off(self, kind: EventKind | str, listener: Listener) -> Pool:
        self._events.off(kind, listener)
        return self

    def subscribe(self, listener: Listener) -> Pool:
        self._events.subscribe(listener)
        return self

    def unsubscribe(self, listener: Listener) -> Pool:
        self._events.unsubscribe(listener)
        return self

    def _emit(self, event: PoolEvent) -> None:
        self._events.emit(event)
        self._check_joiners()

    # ── API pública ──────────────────────────────────────────────────────────
    def submit(self, command: Any) -> Task:
        """
        Crea la tarea y la devuelve de inmediato.

        La decisión de dónde ejecutarla se toma en la siguiente vuelta del
        loop, así quien llama puede registrar sus listeners antes de que la
        tarea emita nada.
        """
        if self.failure is not None:
            raise self.failure
        if self._closed:
            raise PoolClosedError("Pool cerrado; no admite más tareas.")
        task = Task(command)
        self._dispatching += 1
        asyncio.get_running_loop().call_soon(self._dispatch, task)
        return task

    def _dispatch(self, task: Task) -> None:
        self._dispatching -= 1
        if self._closed:
            logger.debug("Pool cerrado; tarea %s descartada.", task.id)
            return
        if self.failure is not None:
            task.abort(self.failure)
            return
        if self._idle:
            self._start(self._idle.popleft(), task)
        elif len(self._workers) < self._cfg.workers:
            self._tasks.append(task)
            self._spawn()
        else:
            self._tasks.append(task)
            self._emit(PoolSaturated())

    def shutdown(self) -> None:
        """Vacía la cola, quita los listeners y mata todos los workers sin esperar."""
        if self._closed:
            return
        self._closed = True
        logger.info(
            "Pool.shutdown(): %s workers, %s tareas en cola descartadas.",
            len(self._workers), len(self._tasks),
        )
        self._tasks.clear()
        self._events.clear()
        for slot in list(self._workers.values()):
            self._stopping.append(slot.handle)
            slot.handle.kill()
        for fut in self._joiners:
            if not fut.done():
                fut.set_exception(PoolClosedError("Pool cerrado."))
        self._joiners.clear()

    async def aclose(self) -> None:
        """`shutdown()` y espera a que terminen todos los procesos."""
        self.shutdown()
        await asyncio.gather(*(h.wait() for h in self._stopping))
        logger.info("Pool terminado.")

    async def join(self) -> None:
        """Espera hasta que no quede trabajo en curso ni en cola."""
        if self.failure is not None:
            raise self.failure
        if self._closed:
            raise PoolClosedError("Pool cerrado.")
        if self._is_drained():
            return
        fut: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._joiners.append(fut)
        await fut

    def _is_drained(self) -> bool:
        return not self._tasks and not self._dispatching and len(self._idle) == len(self._workers)

    def _check_joiners(self) -> None:
        if not self._joiners or not self._is_drained():
            return
        joiners, self._joiners = self._joiners, []
        for fut in joiners:
            if not fut.done():
                fut.set_result(None)

    # ── workers ──────────────────────────────────────────────────────────────
    def _spawn(self) -> str:
        handle = WorkerHandle(self.path, self._cfg.arguments, self._cfg.executable)
        slot = _Slot(handle)
        worker_id = handle.id

        # Hasta recibir `ready` el worker no puede recibir trabajo.
        def ready_listener(message: dict[str, Any]) -> None:
            if message.get("type") != "ready":
                return
            handle.off_message(ready_listener)
            slot.ready = True
            if self._closed or worker_id not in self._workers:
                return
            logger.info("[%s] listo (PID=%s).", worker_id, handle.pid)
            self._allocate(worker_id)

        handle.on_message(ready_listener)
        handle.on_exit(lambda reason: self._cleanup(worker_id, reason))
        handle.on_error(lambda exc: self._cleanup(worker_id, exc))
        self._workers[worker_id] = slot
        handle.spawn()
        return worker_id

    def _allocate(self, worker_id: str) -> None:
        slot = self._workers[worker_id]
        limit = self._cfg.max_tasks_per_worker
        if limit is not None and slot.completed >= limit:
            # La salida del proceso pasa por _cleanup, que lo reemplaza si hay cola.
            logger.info("[%s] %s tareas completadas; se retira el worker.", worker_id, slot.completed)
            slot.retiring = True
            slot.handle.kill()
        elif self._tasks:
            task = self._tasks.popleft()
            self._emit(QueueEmpty())
            self._start(worker_id, task)
        else:
            self._idle.append(worker_id)
            if len(self._workers) == len(self._idle):
                self._emit(PoolDrained())

    def _start(self, worker_id: str, task: Task) -> None:
        slot = self._workers[worker_id]
        slot.completed += 1

        def proxy(event: PoolEvent) -> None:
            match event:
                case TaskEnded() | TaskFailed():
                    self._complete(worker_id)
                case TaskStarted() | TaskMessage():
                    pass
            self._emit(event)

        task.subscribe(proxy)
        task.run(slot.handle)

    def _complete(self, worker_id: str, was_busy: bool = True) -> None:
        """Tras una tarea (o la caída de un worker): reutilizar o reemplazar."""
        if self._closed:
            return
        if worker_id in self._workers:
            self._allocate(worker_id)
        elif self._tasks:
            logger.info("[%s] reemplazando worker; %s tareas en cola.", worker_id, len(self._tasks))
            self._spawn()
        elif was_busy and not self._dispatching and len(self._idle) == len(self._workers):
            # El último worker ocupado se fue (retirado o caído) sin trabajo pendiente.
            self._emit(PoolDrained())

    def _cleanup(self, worker_id: str, reason: object) -> None:
        """Salida o error del proceso. Idempotente: sólo actúa si el worker sigue registrado."""
        slot = self._workers.pop(worker_id, None)
        if slot is None:
            return
        was_idle = worker_id in self._idle
        if was_idle:
            self._idle.remove(worker_id)
        handle = slot.handle
        try:
            if not slot.ready:
                if self._closed or handle.killed:
                    logger.info("[%s] detenido antes del handshake.", worker_id)
                    return
                self._fail_startup(worker_id, reason)

            listeners = handle.message_listeners
            if listeners:
                # Tarea en curso: se entera de la caída como un error.
                logger.warning("[%s] caído con una tarea en curso: %s", worker_id, reason)
                failure = {"type": "error", "message": str(reason)}
                for listener in listeners:
                    listener(failure)
                return

            if slot.retiring:
                logger.info("[%s] retirado tras %s tareas.", worker_id, slot.completed)
            elif self._closed or handle.killed:
                logger.debug("[%s] detenido: %s", worker_id, reason)
            else:
                logger.warning("[%s] terminó inesperadamente: %s", worker_id, reason)
            self._complete(worker_id, was_busy=not was_idle)
        finally:
            self._check_joiners()

    def _fail_startup(self, worker_id: str, reason: object) -> None:
        error = WorkerStartupError(worker_id, str(reason))
        self.failure = error
        logger.error("%s", error)
        # Sin reintentos: lo que esperaba en cola falla con el mismo motivo.
        queued, self._tasks = self._tasks, deque()
        for task in queued:
            task.abort(error)
        joiners, self._joiners = self._joiners, []
        for fut in joiners:
            if not fut.done():
                fut.set_exception(error)
        raise error
