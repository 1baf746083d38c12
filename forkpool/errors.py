# forkpool/errors.py
from __future__ import annotations


class PoolError(Exception):
    """Base de todas las excepciones de forkpool."""


class WorkerStartupError(PoolError):
    """Un worker terminó antes de completar el handshake `ready`."""

    def __init__(self, worker_id: str, reason: str) -> None:
        super().__init__(f"[{worker_id}] Worker process could not start: {reason}")
        self.worker_id = worker_id
        self.reason = reason


class PoolClosedError(PoolError):
    """Se intentó usar un pool después de `shutdown()`."""


class TaskError(PoolError):
    """La tarea terminó con un evento `error`."""

    def __init__(self, message: object, task_id: str | None = None) -> None:
        super().__init__(str(message))
        self.task_id = task_id


__all__ = ["PoolError", "WorkerStartupError", "PoolClosedError", "TaskError"]
