"""
Worker de pruebas.

Comandos:
  wait        – espera un `Task.send()` y devuelve su `data`
  error       – lanza una excepción (evento `error`)
  crash       – el proceso muere con código 3 a mitad de tarea
  pid         – devuelve el PID del proceso
  progress    – emite un mensaje `progress` y termina
  sleep:<s>   – duerme <s> segundos y devuelve "slept"
  args        – devuelve los argumentos de línea de comandos
  <otro>      – eco del comando
"""
from __future__ import annotations

import os
import sys
import time
from pathlib import Path

# Permite ejecutar la suite sin instalar el paquete.
sys.path.insert(0, str(Path(__file__).resolve().parents[2]))

from forkpool.child import serve  # noqa: E402


def handler(command, channel):
    if command == "wait":
        return channel.receive_input()
    if command == "error":
        raise RuntimeError("boom")
    if command == "crash":
        sys.stderr.flush()
        os._exit(3)
    if command == "pid":
        return os.getpid()
    if command == "progress":
        channel.progress(50)
        return "done"
    if command == "args":
        return sys.argv[1:]
    if isinstance(command, str) and command.startswith("sleep:"):
        time.sleep(float(command.split(":", 1)[1]))
        return "slept"
    return command


if __name__ == "__main__":
    serve(handler)
