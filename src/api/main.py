"""FastAPI application entrypoint and HTTP endpoints."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import Any

import redis
import structlog
from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from pymongo.errors import PyMongoError

from src.api.workers import router as workers_router
from src.core.dispatcher import TaskDispatcher, enqueue_question_import
from src.core.errors import DispatchError
from src.core.logging import configure_logging
from src.core.provider_registry import ProviderRegistry, build_providers
from src.core.queue import get_redis_connection
from src.core.rate_limiter import RateLimiter, RateLimiterConfig
from src.core.settings import get_settings
from src.core.similarity import DUPLICATE_THRESHOLD, find_duplicates
from src.core.task_maintenance import (
    StuckTaskTimeouts,
    delete_old_tasks,
    delete_task,
    delete_tasks,
    reap_stuck_tasks,
    stop_task,
    stop_tasks,
)
from src.db.mongo import Mongo
from src.models.provider_models import ProviderSettings
from src.models.task_models import (
    BatchRegenerateEmojisPayload,
    BatchValidationPayload,
    CreateTaskRequest,
    CreateTaskResponse,
    GenerationPayload,
    RegenerateEmojiPayload,
    TaskIdsRequest,
    TaskReadResponse,
    TaskStatus,
    TaskType,
    ValidationPayload,
)

log = structlog.get_logger(__name__)

# Payload shape per task type; migration takes no payload.
PAYLOAD_MODELS = {
    TaskType.generation: GenerationPayload,
    TaskType.validation: ValidationPayload,
    TaskType.batchvalidation: BatchValidationPayload,
    TaskType.regenerateemoji: RegenerateEmojiPayload,
    TaskType.batchregenerateemojis: BatchRegenerateEmojisPayload,
}


@asynccontextmanager
async def lifespan(application: FastAPI):
    """FastAPI lifespan hook: configure logging and wire Mongo, providers and the dispatcher."""
    settings = get_settings()
    configure_logging(settings.LOG_LEVEL)
    mongo = Mongo(
        settings.MONGODB_URL,
        database=settings.MONGODB_DATABASE,
        transactions=settings.MONGODB_TRANSACTIONS,
        batch_threshold=settings.BATCH_WRITE_THRESHOLD,
        batch_cap=settings.BATCH_WRITE_CAP,
    )
    application.state.mongo = mongo
    application.state.registry = ProviderRegistry(
        build_providers(settings, recorder=mongo.create_provider_log),
        settings_loader=mongo.get_provider_settings,
        status_ttl_s=settings.PROVIDER_STATUS_TTL_S,
    )
    application.state.dispatcher = TaskDispatcher(mongo, settings)
    application.state.rate_limiter = None
    if settings.RATE_LIMIT_ENABLED:
        application.state.rate_limiter = RateLimiter(
            RateLimiterConfig(
                redis_url=settings.REDIS_URL,
                requests_per_min=settings.RATE_LIMIT_REQUESTS_PER_MIN,
                burst=settings.RATE_LIMIT_BURST,
            )
        )
    await mongo.ping()
    await mongo.ensure_indexes()
    log.info("api_startup_complete")
    yield
    if getattr(application.state, "rate_limiter", None) is not None:
        await application.state.rate_limiter.close()
    await mongo.close()
    log.info("api_shutdown_complete")


app = FastAPI(title="Quiz AI Task Service", version="1.0.0", lifespan=lifespan)
app.include_router(workers_router)


def _client_identity(request: Request, api_key_header: str) -> str:
    api_key = request.headers.get(api_key_header)
    if api_key:
        return f"key:{api_key}"
    xff = request.headers.get("x-forwarded-for")
    if xff:
        return f"ip:{xff.split(',')[0].strip()}"
    host = getattr(getattr(request, "client", None), "host", None)
    return f"ip:{host or 'unknown'}"


@app.middleware("http")
async def security_and_rate_limit(request: Request, call_next):
    # Worker callbacks carry their own service identity; health and docs stay open.
    if not request.url.path.startswith("/v1/"):
        return await call_next(request)

    settings = get_settings()

    if settings.API_KEY:
        provided = request.headers.get(settings.API_KEY_HEADER)
        if provided != settings.API_KEY:
            return JSONResponse(status_code=401, content={"detail": "Unauthorized"})

    limiter: RateLimiter | None = getattr(request.app.state, "rate_limiter", None)
    if limiter is not None:
        identity = _client_identity(request, settings.API_KEY_HEADER)
        result = await limiter.allow(identity)
        if not result.allowed:
            headers = {
                "Retry-After": str(int(result.retry_after_s) + 1),
                "X-RateLimit-Limit": str(result.limit),
                "X-RateLimit-Remaining": "0",
            }
            return JSONResponse(status_code=429, content={"detail": "Too Many Requests"}, headers=headers)

    return await call_next(request)


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


@app.post("/v1/tasks", status_code=202, response_model=CreateTaskResponse)
async def create_task(request: CreateTaskRequest) -> CreateTaskResponse:
    """Validate the payload for its task type, persist the task and queue it."""
    model = PAYLOAD_MODELS.get(request.task_type)
    if model is not None:
        try:
            model.model_validate(request.payload)
        except ValidationError as e:
            raise HTTPException(
                status_code=422,
                detail=e.errors(include_url=False, include_context=False, include_input=False),
            ) from e

    dispatcher: TaskDispatcher = app.state.dispatcher
    try:
        task_id = await dispatcher.enqueue_task(request.task_type, request.payload, request.user_id)
    except DispatchError as e:
        return JSONResponse(status_code=502, content={"detail": str(e), "taskId": e.task_id})
    return CreateTaskResponse(task_id=task_id, status=TaskStatus.queued)


@app.get("/v1/tasks", response_model=list[TaskReadResponse])
async def list_tasks(
    user_id: str | None = Query(default=None, alias="userId"),
    status: TaskStatus | None = None,
    limit: int = Query(default=50, ge=1, le=500),
) -> list[TaskReadResponse]:
    mongo: Mongo = app.state.mongo
    docs = await mongo.list_tasks(user_id=user_id, status=status.value if status else None, limit=limit)
    return [TaskReadResponse.model_validate(doc) for doc in docs]


@app.get("/v1/tasks/{task_id}", response_model=TaskReadResponse)
async def get_task(task_id: str) -> TaskReadResponse:
    """Fetch a task with its progress and result."""
    mongo: Mongo = app.state.mongo
    doc = await mongo.get_task(task_id)
    if not doc:
        raise HTTPException(status_code=404, detail="Task not found")
    return TaskReadResponse.model_validate(doc)


@app.post("/v1/tasks/stop")
async def stop_many(request: TaskIdsRequest) -> dict[str, Any]:
    return await stop_tasks(app.state.mongo, request.task_ids)


@app.post("/v1/tasks/delete")
async def delete_many(request: TaskIdsRequest) -> dict[str, Any]:
    deleted = await delete_tasks(app.state.mongo, request.task_ids)
    return {"deleted": deleted}


@app.post("/v1/tasks/cleanup-stuck")
async def cleanup_stuck() -> dict[str, Any]:
    return await reap_stuck_tasks(app.state.mongo, StuckTaskTimeouts.from_settings(get_settings()))


@app.post("/v1/tasks/scheduled-import", status_code=202)
async def scheduled_import() -> dict[str, Any]:
    """Entry point for the external scheduler that imports new questions every 6 hours."""
    settings = get_settings()
    return await enqueue_question_import(
        app.state.dispatcher,
        total=settings.IMPORT_TOTAL_QUESTIONS,
        batch_size=settings.IMPORT_BATCH_SIZE,
    )


@app.delete("/v1/tasks")
async def delete_old(older_than_hours: int = Query(default=24, ge=1, alias="olderThanHours")) -> dict[str, Any]:
    return await delete_old_tasks(app.state.mongo, older_than_hours=older_than_hours)


@app.post("/v1/tasks/{task_id}/stop")
async def stop_one(task_id: str) -> dict[str, Any]:
    if not await stop_task(app.state.mongo, task_id):
        mongo: Mongo = app.state.mongo
        if await mongo.get_task(task_id) is None:
            raise HTTPException(status_code=404, detail="Task not found")
        raise HTTPException(status_code=409, detail="Task has already finished")
    return {"taskId": task_id, "status": TaskStatus.cancelled.value}


@app.delete("/v1/tasks/{task_id}")
async def delete_one(task_id: str) -> dict[str, Any]:
    if not await delete_task(app.state.mongo, task_id):
        raise HTTPException(status_code=404, detail="Task not found")
    return {"taskId": task_id, "deleted": True}


# ---------------------------------------------------------------------------
# Providers and questions
# ---------------------------------------------------------------------------


@app.get("/v1/providers/status")
async def provider_status(force: bool = False) -> dict[str, Any]:
    registry: ProviderRegistry = app.state.registry
    snapshot = await registry.status(force=force)
    return snapshot.model_dump(by_alias=True, exclude_none=True)


@app.get("/v1/providers/settings")
async def get_provider_settings() -> dict[str, Any]:
    registry: ProviderRegistry = app.state.registry
    return (await registry.provider_settings()).model_dump()


@app.put("/v1/providers/settings")
async def update_provider_settings(settings: ProviderSettings, request: Request) -> dict[str, Any]:
    mongo: Mongo = app.state.mongo
    updated_by = request.headers.get("x-user-id")
    await mongo.update_provider_settings(settings.model_dump(), updated_by=updated_by)
    log.info("provider_settings_updated", updated_by=updated_by)
    return settings.model_dump()


@app.get("/v1/providers/logs")
async def provider_logs(
    task_id: str | None = Query(default=None, alias="taskId"),
    limit: int = Query(default=200, ge=1, le=1000),
) -> list[dict[str, Any]]:
    mongo: Mongo = app.state.mongo
    return await mongo.list_provider_logs(task_id=task_id, limit=limit)


@app.get("/v1/questions/duplicates")
async def question_duplicates(
    language: str = Query(default="sv", pattern="^(sv|en)$"),
    threshold: float = Query(default=DUPLICATE_THRESHOLD, gt=0.0, le=1.0),
) -> dict[str, Any]:
    mongo: Mongo = app.state.mongo
    questions = await mongo.load_questions()
    # O(N^2) comparison; run it off the event loop.
    pairs = await asyncio.to_thread(find_duplicates, questions, language, threshold)
    return {
        "total": len(questions),
        "count": len(pairs),
        "duplicates": [p.model_dump(by_alias=True) for p in pairs],
    }


@app.get("/health")
async def health() -> JSONResponse:
    """Health check: verifies Mongo ping and Redis connectivity."""
    mongo: Mongo = app.state.mongo
    mongo_ok = True
    mongo_error: str | None = None
    try:
        await mongo.ping()
    except (PyMongoError, TimeoutError, OSError, ConnectionError, RuntimeError) as e:
        mongo_ok = False
        mongo_error = str(e)

    redis_ok = True
    redis_error: str | None = None
    try:
        # Avoid blocking the event loop with a sync ping.
        await asyncio.to_thread(lambda: get_redis_connection().ping())
    except (redis.exceptions.RedisError, TimeoutError, OSError, ConnectionError, RuntimeError) as e:
        redis_ok = False
        redis_error = str(e)

    overall = "healthy" if mongo_ok and redis_ok else "degraded"
    payload: dict[str, Any] = {
        "status": overall,
        "mongo": {"ok": mongo_ok, "error": mongo_error},
        "redis": {"ok": redis_ok, "error": redis_error},
    }
    status_code = 200 if overall == "healthy" else 503
    return JSONResponse(status_code=status_code, content=payload)
