"""
forkpool.worker.utils
=====================

Funciones utilitarias compartidas por `WorkerHandle`.

Por ahora se limita a:

* `_stream_reader` – corrutina que lee un `asyncio.StreamReader`
  (stdout/stderr del worker) y entrega cada línea a un callback en
  cuanto llega.
* `decode_message` / `encode_message` – el canal es JSON, un mensaje
  por línea.
"""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Callable

logger = logging.getLogger(__name__)


# ──────────────────────────────────────────────────────────────────────────────
# Codec del canal
# ──────────────────────────────────────────────────────────────────────────────
def encode_message(message: dict[str, Any]) -> bytes:
    return (json.dumps(message, separators=(",", ":")) + "\n").encode("utf-8")


def decode_message(line: str) -> dict[str, Any] | None:
    """Devuelve el mensaje o `None` si la línea no es un objeto JSON con `type`."""
    try:
        data = json.loads(line)
    except json.JSONDecodeError:
        return None
    if not isinstance(data, dict) or not isinstance(data.get("type"), str):
        return None
    return data


# ──────────────────────────────────────────────────────────────────────────────
# Stream reader
# ──────────────────────────────────────────────────────────────────────────────
async def _stream_reader(
    stream: asyncio.StreamReader,
    on_line: Callable[[str], None],
    worker_id: str,
    stream_name: str,
) -> bool:
    """
    Lee el `stream` línea-a-línea y llama `on_line(texto)` por cada una.

    * Las líneas se decodifican como UTF-8 (`errors="replace"`) y se les
      quita el salto final.
    * La corrutina finaliza al llegar EOF y devuelve `True`.
    * Si ocurre una **excepción** de lectura (p. ej. una línea mayor que el
      `limit` del stream) se registra y devuelve `False`; las excepciones
      de `on_line` se propagan.
    """
    while True:
        try:
            raw = await stream.readline()
        except (ConnectionError, ValueError) as exc:
            logger.error("[%s/%s] ERROR_READER: %r", worker_id, stream_name, exc)
            return False

        if not raw:
            logger.debug("[%s/%s] EOF", worker_id, stream_name)
            return True

        on_line(raw.decode("utf-8", errors="replace").rstrip("\r\n"))
