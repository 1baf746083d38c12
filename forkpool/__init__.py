"""
forkpool – pool de procesos worker
==================================

Paquete raíz.  Mantiene metadatos de la distribución y expone la API
pública (`Pool`, `Task`, eventos y excepciones) sin cargar la parte
HTTP ni la CLI.
"""
from __future__ import annotations

from importlib.metadata import PackageNotFoundError, version as _pkg_version

# ---------------------------------------------------------------------------#
# Metadatos
# ---------------------------------------------------------------------------#
try:
    __version__: str = _pkg_version(__name__)
except PackageNotFoundError:  # running from source tree
    __version__ = "0.0.0.dev0"

# ---------------------------------------------------------------------------#
# API pública
# ---------------------------------------------------------------------------#
from .config import Config, PoolConfig  # noqa: E402
from .errors import PoolClosedError, PoolError, TaskError, WorkerStartupError  # noqa: E402
from .events import (  # noqa: E402
    EventKind,
    PoolDrained,
    PoolSaturated,
    QueueEmpty,
    TaskEnded,
    TaskFailed,
    TaskMessage,
    TaskStarted,
)
from .pool import Pool  # noqa: E402
from .task import Task, TaskState  # noqa: E402


def run_cli() -> None:
    """
    Punto de entrada “amigable” para lanzar la CLI desde código:

    ```python
    import forkpool
    forkpool.run_cli()
    ```
    """
    # Importación diferida para no forzar Typer si sólo se usa el `Pool`.
    from .cli import cli  # noqa: WPS433, E402 (importación diferida)

    cli()


__all__ = [
    "__version__",
    "Config",
    "PoolConfig",
    "Pool",
    "Task",
    "TaskState",
    "EventKind",
    "TaskStarted",
    "TaskEnded",
    "TaskFailed",
    "TaskMessage",
    "QueueEmpty",
    "PoolDrained",
    "PoolSaturated",
    "PoolError",
    "PoolClosedError",
    "TaskError",
    "WorkerStartupError",
    "run_cli",
]
