# forkpool/worker/__init__.py
from __future__ import annotations

from .handle import WorkerHandle, describe_exit

__all__ = ["WorkerHandle", "describe_exit"]
