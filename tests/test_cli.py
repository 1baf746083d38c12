"""
Pruebas de la CLI (Typer).

`run` lanza workers reales (`tests/workers/echo_worker.py`); `serve`
se prueba parcheando `subprocess.run`.
"""
from __future__ import annotations

import os
import subprocess
from typing import Any, Dict

from typer.testing import CliRunner

from forkpool.cli import cli

runner = CliRunner()


# ════════════════════════════════════════════════════════════════════════════
# --help debe listar los sub-comandos básicos
# ════════════════════════════════════════════════════════════════════════════
def test_cli_help() -> None:
    result = runner.invoke(cli, ["--help"])
    assert result.exit_code == 0
    assert "run" in result.stdout
    assert "serve" in result.stdout


# ════════════════════════════════════════════════════════════════════════════
# `run` ejecuta cada comando como una tarea
# ════════════════════════════════════════════════════════════════════════════
def test_run_prints_results(echo_worker) -> None:
    res = runner.invoke(cli, ["run", str(echo_worker), "hola", "adiós", "--workers", "2"])

    assert res.exit_code == 0, res.output
    assert 'hola: "hola"' in res.stdout
    assert 'adiós: "adiós"' in res.stdout


def test_run_exits_1_when_a_task_fails(echo_worker) -> None:
    res = runner.invoke(cli, ["run", str(echo_worker), "ok", "error", "-w", "1", "--max-tasks", "1"])

    assert res.exit_code == 1
    assert 'ok: "ok"' in res.stdout
    assert "error: boom" in res.stdout


def test_run_reports_startup_failure(broken_worker) -> None:
    res = runner.invoke(cli, ["run", str(broken_worker), "hola", "-w", "1"])
    assert res.exit_code == 1


# ════════════════════════════════════════════════════════════════════════════
# El sub-comando `serve` debe invocar uvicorn con las env-vars correctas
# ════════════════════════════════════════════════════════════════════════════
def test_serve_invokes_uvicorn(monkeypatch, echo_worker) -> None:
    captured: Dict[str, Any] = {}

    def _fake_run(cmd, check, env, **kwargs):  # noqa: D401
        captured["cmd"] = cmd
        captured["env"] = env
        return subprocess.CompletedProcess(cmd, 0)

    monkeypatch.setattr(subprocess, "run", _fake_run)

    res = runner.invoke(
        cli,
        [
            "serve",
            str(echo_worker),
            "--workers", "1",
            "--port", "9000",
            "--max-tasks", "5",
            "--arg=--modo",
            "--arg", "dos palabras",
        ],
    )

    assert res.exit_code == 0, res.output
    # comando lanzado
    assert captured["cmd"][:4] == [
        os.sys.executable,
        "-m",
        "uvicorn",
        "forkpool.server.api:app",
    ]
    # variables de entorno
    assert captured["env"]["WORKER_PATH"] == str(echo_worker.resolve())
    assert captured["env"]["PORT"] == "9000"
    assert captured["env"]["WORKERS"] == "1"
    assert captured["env"]["MAX_TASKS_PER_WORKER"] == "5"
    assert captured["env"]["WORKER_ARGS"] == "--modo 'dos palabras'"
