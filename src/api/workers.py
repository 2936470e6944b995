"""Worker endpoints invoked by the delivery queue."""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from pymongo.errors import PyMongoError

from src.core.auth import verify_service_token
from src.core.errors import TaskConflictError
from src.core.jobs import run_task
from src.core.settings import get_settings
from src.models.task_models import TaskType

log = structlog.get_logger(__name__)

router = APIRouter(prefix="/workers", tags=["workers"])


class WorkerInvocation(BaseModel):
    data: dict[str, Any] = Field(default_factory=dict)


def _bearer_token(request: Request) -> str:
    header = request.headers.get("authorization") or ""
    scheme, _, token = header.partition(" ")
    return token.strip() if scheme.lower() == "bearer" else ""


@router.post("/{queue_name}")
async def run_worker(queue_name: str, body: WorkerInvocation, request: Request):
    """Run the delivered task. Any 2xx acknowledges it; 503 asks the queue to retry."""
    settings = get_settings()
    if not verify_service_token(
        _bearer_token(request),
        settings.TASK_SIGNING_SECRET,
        principal=settings.SERVICE_PRINCIPAL,
        audience=settings.WORKER_AUDIENCE,
    ):
        raise HTTPException(status_code=401, detail="Unauthorized")

    task_type = TaskType.from_queue(queue_name)
    if task_type is None:
        raise HTTPException(status_code=404, detail=f"Unknown queue: {queue_name}")

    state = request.app.state
    try:
        outcome = await run_task(
            task_type,
            body.data,
            mongo=state.mongo,
            registry=state.registry,
            settings=settings,
        )
    except (PyMongoError, TaskConflictError) as e:
        log.warning("worker_store_unavailable", queue=queue_name, task_id=body.data.get("taskId"), error=str(e))
        return JSONResponse(status_code=503, content={"detail": "Task store unavailable"})

    return {"taskId": body.data.get("taskId"), "outcome": outcome}
