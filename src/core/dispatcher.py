"""Create task documents and hand them to the delivery queue."""

from __future__ import annotations

import asyncio
from contextlib import suppress
from datetime import timedelta
from typing import Any, Callable
from uuid import uuid4

import redis
import structlog
from pymongo.errors import PyMongoError
from rq import Queue

from src.core.delivery import deliver_task_job
from src.core.errors import DispatchError, TaskConflictError
from src.core.queue import QueueConfig, build_retry, ensure_queue, get_queue, get_redis_connection
from src.core.settings import Settings
from src.db.mongo import Mongo
from src.models.task_models import TaskType

log = structlog.get_logger(__name__)


def sanitize_payload(value: Any) -> Any:
    """Drop ``None`` values from dicts and lists, recursively."""
    if isinstance(value, dict):
        return {k: sanitize_payload(v) for k, v in value.items() if v is not None}
    if isinstance(value, list):
        return [sanitize_payload(v) for v in value if v is not None]
    return value


def task_labels(task_type: TaskType, payload: dict[str, Any]) -> tuple[str, str]:
    """Human label and description shown in the task list."""
    if task_type is TaskType.generation:
        amount = payload.get("amount", 10)
        description = f"Generating {amount} questions"
        if payload.get("category"):
            description += f" about {payload['category']}"
        return "AI generation", description + "."
    if task_type is TaskType.validation:
        return "AI validation", "Validating one question."
    if task_type is TaskType.batchvalidation:
        return "AI batch validation", f"Validating {len(payload.get('questions') or [])} questions."
    if task_type is TaskType.migration:
        return "AI migration", "Categorizing and illustrating existing questions."
    if task_type is TaskType.regenerateemoji:
        return "Emoji regeneration", "Regenerating the emoji for one question."
    return "Batch emoji regeneration", f"Regenerating emojis for {len(payload.get('questionIds') or [])} questions."


class TaskDispatcher:
    def __init__(
        self,
        mongo: Mongo,
        settings: Settings,
        *,
        connection_factory: Callable[[], Any] = get_redis_connection,
        queue_factory: Callable[[str, Any], Queue] = get_queue,
    ) -> None:
        self._mongo = mongo
        self._settings = settings
        self._connection_factory = connection_factory
        self._queue_factory = queue_factory

    async def enqueue_task(self, task_type: TaskType, payload: dict[str, Any], user_id: str) -> str:
        """Persist a pending task, schedule its delivery and mark it queued.

        If scheduling fails the task is marked failed and ``DispatchError`` is raised.
        """
        task_id = str(uuid4())
        payload = sanitize_payload(payload)
        label, description = task_labels(task_type, payload)

        await self._mongo.create_task(
            task_id,
            task_type.value,
            payload=payload,
            user_id=user_id,
            label=label,
            description=description,
        )

        try:
            job_id = await asyncio.to_thread(self._schedule, task_type, task_id, payload)
            await self._mongo.mark_queued(task_id, job_id)
        except (redis.exceptions.RedisError, PyMongoError, TaskConflictError, ConnectionError, TimeoutError, OSError, ValueError) as e:
            log.error("task_dispatch_failed", task_id=task_id, task_type=task_type.value, error=str(e))
            message = f"Failed to queue task: {e}"
            with suppress(PyMongoError, TaskConflictError, ConnectionError, TimeoutError, OSError):
                await self._mongo.fail_task(task_id, message, progress={"phase": "failed", "details": message})
            raise DispatchError(message, task_id) from e

        log.info("task_enqueued", task_id=task_id, task_type=task_type.value, delivery_handle=job_id)
        return task_id

    def _schedule(self, task_type: TaskType, task_id: str, payload: dict[str, Any]) -> str:
        settings = self._settings
        connection = self._connection_factory()
        config = QueueConfig(
            name=task_type.queue_name,
            max_dispatches_per_second=settings.QUEUE_MAX_DISPATCHES_PER_SECOND,
            max_retry_duration_s=settings.QUEUE_MAX_RETRY_DURATION_S,
        )
        if ensure_queue(connection, config):
            log.info("task_queue_created", queue=config.name)

        queue = self._queue_factory(config.name, connection)
        job = queue.enqueue_in(
            timedelta(seconds=settings.DISPATCH_DELAY_S),
            deliver_task_job,
            url=f"{settings.WORKER_BASE_URL.rstrip('/')}/workers/{config.name}",
            body={"data": {"taskId": task_id, **payload}},
            queue_name=config.name,
            max_dispatches_per_second=config.max_dispatches_per_second,
            log_level=settings.LOG_LEVEL,
            job_id=f"{config.name}-{task_id}",
            retry=build_retry(config.max_retry_duration_s),
            job_timeout=int(settings.DELIVERY_TIMEOUT_S) + 60,
        )
        return job.id


SCHEDULED_IMPORT_USER = "system"


async def enqueue_question_import(dispatcher: TaskDispatcher, *, total: int, batch_size: int) -> dict[str, Any]:
    """Queue the periodic question import as generation tasks of ``batch_size`` questions.

    Each task screens its questions against the bank before importing them. A
    batch that cannot be queued is counted and the rest are still queued.
    """
    if batch_size < 1:
        raise ValueError("batch_size must be at least 1")
    task_ids: list[str] = []
    failed = 0
    remaining = total
    while remaining > 0:
        amount = min(batch_size, remaining)
        remaining -= amount
        try:
            task_id = await dispatcher.enqueue_task(TaskType.generation, {"amount": amount}, SCHEDULED_IMPORT_USER)
            task_ids.append(task_id)
        except DispatchError as e:
            failed += 1
            log.error("question_import_batch_not_queued", amount=amount, task_id=e.task_id, error=str(e))
    log.info("question_import_queued", queued=len(task_ids), failed=failed, total=total)
    return {"queued": len(task_ids), "failed": failed, "taskIds": task_ids}
