"""
forkpool.child
==============

Lado *worker* del protocolo. Un script worker mínimo:

```python
from forkpool.child import serve

def handler(command, channel):
    return command.upper()

if __name__ == "__main__":
    serve(handler)
```

`serve()` anuncia `ready`, espera mensajes `run` y responde `end` con el
valor devuelto o `error` con el mensaje de la excepción. Mientras sirve,
`sys.stdout` apunta a stderr para que un `print()` no corrompa el canal.
"""
from __future__ import annotations

import json
import logging
import sys
from typing import Any, Callable, TextIO

logger = logging.getLogger(__name__)


class Channel:
    """Canal JSON-por-línea hacia el pool."""

    def __init__(self, stdin: TextIO, stdout: TextIO) -> None:
        self._stdin = stdin
        self._stdout = stdout

    def send(self, type_: str, **fields: Any) -> None:
        self._stdout.write(json.dumps({"type": type_, **fields}) + "\n")
        self._stdout.flush()

    def progress(self, data: Any) -> None:
        """Mensaje intermedio; el pool lo emite como `TaskMessage("progress")`."""
        self.send("progress", data=data)

    def receive(self) -> dict[str, Any] | None:
        """Siguiente mensaje del pool, o `None` si el pool cerró el canal."""
        while True:
            line = self._stdin.readline()
            if not line:
                return None
            line = line.strip()
            if not line:
                continue
            try:
                message = json.loads(line)
            except json.JSONDecodeError:
                logger.warning("mensaje no válido ignorado: %r", line[:200])
                continue
            if isinstance(message, dict):
                return message

    def receive_input(self) -> Any:
        """Bloquea hasta el siguiente `Task.send()` y devuelve su `data`."""
        while (message := self.receive()) is not None:
            if message.get("type") == "input":
                return message.get("data")
        raise EOFError("canal cerrado por el pool")


Handler = Callable[[Any, Channel], Any]


def serve(handler: Handler, stdin: TextIO | None = None, stdout: TextIO | None = None) -> None:
    channel = Channel(stdin or sys.stdin, stdout or sys.stdout)
    real_stdout, sys.stdout = sys.stdout, sys.stderr
    try:
        channel.send("ready")
        while (message := channel.receive()) is not None:
            if message.get("type") != "run":
                # `input` fuera de una tarea: nadie lo espera.
                continue
            try:
                result = handler(message.get("command"), channel)
            except Exception as exc:
                logger.debug("la tarea %s falló", message.get("id"), exc_info=True)
                channel.send("error", message=str(exc) or type(exc).__name__)
                continue
            try:
                channel.send("end", result=result)
            except TypeError as exc:
                channel.send("error", message=f"resultado no serializable: {exc}")
    finally:
        sys.stdout = real_stdout
