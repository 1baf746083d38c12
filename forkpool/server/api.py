# forkpool/server/api.py
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field

from ..config import Config
from ..errors import PoolClosedError, TaskError, WorkerStartupError
from ..pool import Pool
from .security import api_key_auth

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Crea el pool al arrancar y mata sus workers al apagar."""
    app.state.config = Config()
    app.state.pool = Pool(app.state.config.worker_path, app.state.config.pool_config())
    logger.info("Pool listo: %r", app.state.config)
    yield
    if app.state.pool:
        await app.state.pool.aclose()

app = FastAPI(
    title="forkpool – pool de procesos worker",
    version="1.0.0",
    lifespan=lifespan,
)


class TaskRequest(BaseModel):
    command: Any = Field(..., description="Comando que recibirá el worker (cualquier valor JSON).")


class TaskResponse(BaseModel):
    task_id: str
    state: str
    result: Any = None


class CapacityResponse(BaseModel):
    total: int = Field(..., description="Límite configurado de workers.")
    available: int = Field(..., description="Límite menos workers ocupados.")
    workers: int = Field(..., description="Workers vivos (incluye los que arrancan).")
    idle: int
    queued: int


def get_pool(request: Request) -> Pool:
    pool: Pool | None = getattr(request.app.state, "pool", None)
    if pool is None or pool.closed:
        raise HTTPException(status_code=503, detail="Worker pool not available")
    return pool


@app.get("/health", response_class=PlainTextResponse)
async def health(pool: Pool = Depends(get_pool)) -> str:
    return f"ok – capacidad libre: {pool.available_capacity()}/{pool.total_capacity()}"


@app.get("/capacity", response_model=CapacityResponse, dependencies=[Depends(api_key_auth)])
async def capacity(pool: Pool = Depends(get_pool)) -> CapacityResponse:
    return CapacityResponse(
        total=pool.total_capacity(),
        available=pool.available_capacity(),
        workers=len(pool.worker_ids),
        idle=len(pool.idle_ids),
        queued=len(pool.pending),
    )


@app.post("/tasks", response_model=TaskResponse, dependencies=[Depends(api_key_auth)])
async def run_task(req: TaskRequest, pool: Pool = Depends(get_pool)) -> TaskResponse:
    """
    Ejecuta `req.command` en el pool y espera su resultado.
    """
    try:
        task = pool.submit(req.command)
        result = await task.wait()
    except TaskError as e:
        if pool.failure is not None and task.error == str(pool.failure):
            # La tarea esperaba en cola cuando el pool no pudo arrancar workers.
            raise HTTPException(status_code=503, detail=str(pool.failure))
        raise HTTPException(status_code=502, detail=f"Task failed: {e}")
    except (PoolClosedError, WorkerStartupError) as e:
        raise HTTPException(status_code=503, detail=str(e))
    return TaskResponse(task_id=task.id, state=task.state.value, result=result)


@app.get("/", response_class=PlainTextResponse, include_in_schema=False)
def root() -> str:
    return "forkpool is running."
