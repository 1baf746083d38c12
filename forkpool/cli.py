# forkpool/cli.py

from __future__ import annotations

import asyncio
import json
import os
import shlex
import subprocess
import sys
from pathlib import Path
from typing import Annotated, List, Optional

import typer

from .config import PoolConfig, configure_logging
from .errors import WorkerStartupError
from .pool import Pool
from .task import Task, TaskState

cli = typer.Typer(
    add_completion=False,
    help="CLI principal de forkpool. Usa ‘forkpool <comando> --help’ para detalles.",
    no_args_is_help=True,
)

# ───────────────── Opciones ─────────────────

WorkerArg = Annotated[Path, typer.Argument(exists=True, dir_okay=False, help="Script worker (ver `forkpool.child.serve`).")]
WorkersOpt = Annotated[Optional[int], typer.Option("--workers", "-w", min=1, help="Máximo de procesos worker (por defecto, núcleos de CPU).", rich_help_panel="Parámetros del Pool")]
MaxTasksOpt = Annotated[int, typer.Option("--max-tasks", min=0, help="Tareas por worker antes de reemplazarlo (0 = sin límite).", rich_help_panel="Parámetros del Pool")]
ArgOpt = Annotated[Optional[List[str]], typer.Option("--arg", "-a", help="Argumento extra para cada worker (repetible).", rich_help_panel="Parámetros del Pool")]
HostOpt = Annotated[str, typer.Option("--host", "-H", help="Interfaz de red para el servidor.", rich_help_panel="Parámetros del Servidor")]
PortOpt = Annotated[int, typer.Option("--port", "-p", help="Puerto HTTP para el servidor.", rich_help_panel="Parámetros del Servidor")]


# ─────────────── Comandos ───────────────

@cli.command()
def run(
    worker: WorkerArg,
    commands: Annotated[List[str], typer.Argument(help="Comandos a ejecutar, uno por tarea.")],
    workers: WorkersOpt = None,
    max_tasks: MaxTasksOpt = 0,
    arg: ArgOpt = None,
) -> None:
    """Ejecuta cada COMANDO como una tarea del pool y muestra los resultados."""
    configure_logging(os.getenv("LOG_LEVEL", "WARNING"))
    cfg = PoolConfig(
        arguments=arg or [],
        max_tasks_per_worker=max_tasks or None,
    )
    if workers:
        cfg.workers = workers

    try:
        tasks = asyncio.run(_run_commands(worker, cfg, commands))
    except WorkerStartupError as e:
        typer.secho(f"💥 {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(1)

    failed = 0
    for task in tasks:
        if task.state is TaskState.ENDED:
            typer.echo(f"✅  {task.command}: {json.dumps(task.result, ensure_ascii=False)}")
        else:
            failed += 1
            typer.secho(f"❌  {task.command}: {task.error}", fg=typer.colors.RED)
    if failed:
        raise typer.Exit(1)


async def _run_commands(path: Path, cfg: PoolConfig, commands: List[str]) -> List[Task]:
    async with Pool(path, cfg) as pool:
        tasks = [pool.submit(command) for command in commands]
        await pool.join()
    return tasks


@cli.command()
def serve(
    worker: WorkerArg,
    workers: WorkersOpt = None,
    max_tasks: MaxTasksOpt = 0,
    arg: ArgOpt = None,
    host: HostOpt = "127.0.0.1",
    port: PortOpt = 8000,
) -> None:
    """Lanza la API REST delante de un pool de workers."""
    # La configuración llega al proceso de Uvicorn por variables de entorno.
    env = os.environ.copy()
    env.update({
        "WORKER_PATH": str(worker.resolve()),
        "MAX_TASKS_PER_WORKER": str(max_tasks),
        "HOST": host,
        "PORT": str(port),
    })
    if workers:
        env["WORKERS"] = str(workers)
    if arg:
        env["WORKER_ARGS"] = shlex.join(arg)

    typer.echo(f"🚀  Levantando forkpool en http://{host}:{port}")
    typer.echo(f"   • Worker: {worker.name}")
    typer.echo(f"   • Workers: {workers or 'núcleos de CPU'}, rotación: {max_tasks or 'no'}")

    try:
        subprocess.run(
            [sys.executable, "-m", "uvicorn", "forkpool.server.api:app", "--host", host, "--port", str(port)],
            check=True,
            env=env,
        )
    except subprocess.CalledProcessError:
        # Uvicorn usualmente es interrumpido con Ctrl+C, lo cual es normal.
        typer.echo("\n👋  Servidor detenido.")
    except Exception as e:
        typer.secho(f"💥 Error inesperado al lanzar Uvicorn: {e}", fg="red")
        raise typer.Exit(1)


def _main() -> None:
    cli()

if __name__ == "__main__":
    _main()
