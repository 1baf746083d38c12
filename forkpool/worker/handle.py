# forkpool/worker/handle.py
from __future__ import annotations

import asyncio
import logging
import os
import signal
import sys
import uuid
from typing import Any, Callable, Iterable

from .utils import _stream_reader, decode_message, encode_message

logger = logging.getLogger(__name__)

# Límite de línea del StreamReader (un mensaje JSON por línea).
_STREAM_LIMIT = 16 * 1024 * 1024

MessageListener = Callable[[dict[str, Any]], None]
ExitListener = Callable[[str], None]
ErrorListener = Callable[[BaseException], None]


def describe_exit(returncode: int) -> str:
    """Texto legible para el código de salida de un worker."""
    if returncode >= 0:
        return f"Worker exited with code {returncode}"
    try:
        name = signal.Signals(-returncode).name
    except ValueError:
        name = str(-returncode)
    return f"Worker exited due to signal {name}"


class WorkerHandle:
    """
    Referencia a un proceso worker y a su canal de mensajes.

    El proceso se lanza como `[executable, path, *arguments]`; los mensajes
    viajan como JSON (uno por línea) por stdin → worker y worker → stdout.
    El stderr del worker sólo se registra en el log.

    No decide nada por sí mismo: notifica `message`, `exit` y `error` a sus
    listeners y el `Pool` es quien gestiona el ciclo de vida.
    """

    def __init__(
        self,
        path: str | os.PathLike[str],
        arguments: Iterable[str] = (),
        executable: str | None = None,
    ) -> None:
        self.id: str = uuid.uuid4().hex[:8]
        self.path = os.fspath(path)
        self.arguments = [str(a) for a in arguments]
        self.executable = executable or sys.executable
        self.proc: asyncio.subprocess.Process | None = None
        self.killed = False
        self.returncode: int | None = None
        self._message_listeners: list[MessageListener] = []
        self._exit_listeners: list[ExitListener] = []
        self._error_listeners: list[ErrorListener] = []
        self._runner: asyncio.Task | None = None
        self._exited = asyncio.Event()

    def __repr__(self) -> str:
        return f"<WorkerHandle id={self.id} pid={self.pid} alive={self.alive}>"

    # ── propiedades ──────────────────────────────────────────────────────────
    @property
    def cmd(self) -> list[str]:
        return [self.executable, self.path, *self.arguments]

    @property
    def pid(self) -> int | None:
        return self.proc.pid if self.proc else None

    @property
    def alive(self) -> bool:
        return self.proc is not None and self.proc.returncode is None

    @property
    def message_listeners(self) -> tuple[MessageListener, ...]:
        return tuple(self._message_listeners)

    # ── listeners ────────────────────────────────────────────────────────────
    def on_message(self, listener: MessageListener) -> None:
        self._message_listeners.append(listener)

    def off_message(self, listener: MessageListener) -> None:
        if listener in self._message_listeners:
            self._message_listeners.remove(listener)

    def on_exit(self, listener: ExitListener) -> None:
        self._exit_listeners.append(listener)

    def on_error(self, listener: ErrorListener) -> None:
        self._error_listeners.append(listener)

    def _emit(self, listeners: list[Callable[[Any], None]], payload: Any) -> None:
        loop = asyncio.get_running_loop()
        for listener in list(listeners):
            try:
                listener(payload)
            except Exception as exc:
                # Igual que un callback de `loop.call_soon`: el error llega al
                # exception handler del loop y la lectura del canal continúa.
                loop.call_exception_handler({
                    "message": f"[{self.id}] listener {listener!r} failed",
                    "exception": exc,
                })

    # ── ciclo de vida ────────────────────────────────────────────────────────
    def spawn(self) -> None:
        """Lanza el proceso en segundo plano; requiere un loop en marcha."""
        if self._runner is not None:
            raise RuntimeError(f"[{self.id}] worker ya lanzado")
        logger.info("[%s] spawn → %s", self.id, " ".join(self.cmd))
        self._runner = asyncio.get_running_loop().create_task(
            self._run(), name=f"forkpool-worker-{self.id}"
        )

    async def _run(self) -> None:
        try:
            self.proc = await asyncio.create_subprocess_exec(
                *self.cmd,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                limit=_STREAM_LIMIT,
                start_new_session=os.name != "nt",
            )
        except OSError as exc:
            logger.error("[%s] no se pudo lanzar el worker: %s", self.id, exc)
            self._exited.set()
            self._emit(self._error_listeners, exc)
            return

        logger.debug("[%s] proceso lanzado (PID=%s)", self.id, self.proc.pid)
        if self.killed:
            # kill() llegó antes de que el proceso existiera.
            self._signal_kill()

        assert self.proc.stdout and self.proc.stderr
        # Todo el stdout se despacha antes de notificar la salida.
        await asyncio.gather(
            self._read_stdout(),
            _stream_reader(self.proc.stderr, self._on_stderr, self.id, "stderr"),
        )
        self.returncode = await self.proc.wait()
        self._exited.set()
        logger.info("[%s] proceso %s detenido (RC=%s)", self.id, self.proc.pid, self.returncode)
        self._emit(self._exit_listeners, describe_exit(self.returncode))

    async def _read_stdout(self) -> None:
        assert self.proc and self.proc.stdout
        if not await _stream_reader(self.proc.stdout, self._on_stdout, self.id, "stdout"):
            # Sin canal el proceso ya no puede entregar resultados.
            logger.error("[%s] canal stdout ilegible; se mata el worker.", self.id)
            self._signal_kill()

    def _on_stdout(self, line: str) -> None:
        message = decode_message(line)
        if message is None:
            logger.warning("[%s] línea no válida en el canal, se ignora: %r", self.id, line[:200])
            return
        self._emit(self._message_listeners, message)

    def _on_stderr(self, line: str) -> None:
        logger.debug("[%s/stderr] %s", self.id, line)

    def send(self, message: dict[str, Any]) -> bool:
        """Escribe `message` en el canal. Devuelve `False` si el worker ya no escucha."""
        if not self.alive or self.proc is None or self.proc.stdin is None:
            logger.warning("[%s] send() sobre un worker no operativo; mensaje descartado.", self.id)
            return False
        if self.proc.stdin.is_closing():
            logger.warning("[%s] canal cerrado; mensaje descartado.", self.id)
            return False
        try:
            self.proc.stdin.write(encode_message(message))
        except (BrokenPipeError, ConnectionResetError) as exc:
            logger.warning("[%s] canal roto (%s); mensaje descartado.", self.id, exc)
            return False
        return True

    def kill(self) -> None:
        """Termina el proceso de forma forzada (SIGKILL)."""
        self.killed = True
        self._signal_kill()

    def _signal_kill(self) -> None:
        if self.proc is None or self.proc.returncode is not None:
            return
        try:
            self.proc.kill()
        except ProcessLookupError:
            pass

    async def wait(self) -> int | None:
        """Espera a que el proceso termine y devuelve su código de salida."""
        if self._runner is None:
            return None
        await self._exited.wait()
        return self.returncode
