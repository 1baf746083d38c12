# forkpool/config.py

from __future__ import annotations

import logging
import os
import shlex
import sys
from dataclasses import dataclass, field
from pathlib import Path

LOG_FORMAT = "%(asctime)s | %(levelname)8s | %(name)s | %(message)s"


# --- Funciones de ayuda ---
def _getenv_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None: return default
    try: return int(raw)
    except (TypeError, ValueError): return default

def _getenv_args(name: str) -> list[str]:
    raw = os.getenv(name)
    return shlex.split(raw) if raw else []

def _cpu_count() -> int:
    return os.cpu_count() or 1


def configure_logging(level: str | None = None) -> None:
    """Configura el logging raíz con `LOG_LEVEL` (INFO por defecto)."""
    level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    logging.basicConfig(level=level, format=LOG_FORMAT, datefmt="%H:%M:%S")


@dataclass(slots=True)
class PoolConfig:
    """Opciones de un `Pool`."""
    workers: int = field(default_factory=_cpu_count)
    arguments: list[str] = field(default_factory=list)
    # None → sin rotación de workers
    max_tasks_per_worker: int | None = None
    executable: str = field(default_factory=lambda: sys.executable)

    def __post_init__(self) -> None:
        if self.workers < 0:
            raise ValueError(f"`workers` no puede ser negativo ({self.workers}).")
        if self.max_tasks_per_worker is not None and self.max_tasks_per_worker < 1:
            raise ValueError("`max_tasks_per_worker` debe ser >= 1 o None.")
        self.arguments = [str(a) for a in self.arguments]


@dataclass(slots=True)
class Config:
    # --- Parámetros del Pool ---
    worker_path: str = field(default_factory=lambda: os.getenv("WORKER_PATH", ""))
    workers: int = field(default_factory=lambda: _getenv_int("WORKERS", _cpu_count()))
    worker_args: list[str] = field(default_factory=lambda: _getenv_args("WORKER_ARGS"))
    # 0 → sin rotación
    max_tasks_per_worker: int = field(default_factory=lambda: _getenv_int("MAX_TASKS_PER_WORKER", 0))

    # --- Parámetros del Servidor ---
    host: str = field(default_factory=lambda: os.getenv("HOST", "127.0.0.1"))
    port: int = field(default_factory=lambda: _getenv_int("PORT", 8000))
    api_key: str = field(default_factory=lambda: os.getenv("API_KEY", "changeme"))

    def __post_init__(self) -> None:
        """Valida la ruta del worker para que falle rápido."""
        if not self.worker_path:
            raise ValueError("No se ha especificado un worker. Usa --worker o la variable de entorno WORKER_PATH.")
        p = Path(self.worker_path).expanduser()
        if not p.is_file():
            raise FileNotFoundError(f"Worker no encontrado en {p.resolve()}")
        self.worker_path = str(p.resolve())
        if self.workers < 0:
            raise ValueError(f"WORKERS no puede ser negativo ({self.workers}).")

    def pool_config(self) -> PoolConfig:
        return PoolConfig(
            workers=self.workers,
            arguments=list(self.worker_args),
            max_tasks_per_worker=self.max_tasks_per_worker or None,
        )

    def __repr__(self) -> str:
        rotation = f", max_tasks={self.max_tasks_per_worker}" if self.max_tasks_per_worker else ""
        params = (
            f"worker='{self.worker_path}', workers={self.workers}, "
            f"args={self.worker_args!r}, host='{self.host}:{self.port}'{rotation}"
        )
        return f"<Config {params}>"
