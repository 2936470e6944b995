"""Worker job execution: drive one task through its pipeline and persist the outcome."""

from __future__ import annotations

import random
from typing import Any

import structlog
from pymongo.errors import PyMongoError

from src.core.errors import TaskConflictError, TaskStopped
from src.core.provider_registry import ProviderRegistry
from src.core.settings import Settings
from src.db.mongo import Mongo
from src.models.task_models import TaskType
from src.pipelines.base import Pipeline, ProgressReporter, TaskContext
from src.pipelines.generation import run_generation
from src.pipelines.illustration import run_batch_regenerate_emojis, run_regenerate_emoji
from src.pipelines.migration import run_migration
from src.pipelines.validation import run_batch_validation, run_validation
from src.providers.base import current_task_id

log = structlog.get_logger(__name__)

PIPELINES: dict[TaskType, Pipeline] = {
    TaskType.generation: run_generation,
    TaskType.validation: run_validation,
    TaskType.batchvalidation: run_batch_validation,
    TaskType.migration: run_migration,
    TaskType.regenerateemoji: run_regenerate_emoji,
    TaskType.batchregenerateemojis: run_batch_regenerate_emojis,
}


async def run_task(
    task_type: TaskType,
    data: dict[str, Any],
    *,
    mongo: Mongo,
    registry: ProviderRegistry,
    settings: Settings,
    rng: random.Random | None = None,
) -> str:
    """Run one delivered task; returns ``completed``, ``failed``, ``stopped`` or ``skipped``.

    Delivery is at-least-once. A task that is missing, already running or
    terminal is acknowledged without running. Store errors propagate so the
    caller can ask the queue to redeliver; any other error fails the task.
    """
    task_id = data.get("taskId")
    if not task_id:
        log.warning("worker_missing_task_id", task_type=task_type.value)
        return "skipped"

    structlog.contextvars.bind_contextvars(task_id=task_id, task_type=task_type.value)
    token = current_task_id.set(task_id)
    try:
        log.info("worker_received_task")
        started = await mongo.start_task(task_id, details=f"Processing {task_type.value} task")
        if started is None:
            log.info("worker_task_skipped", reason="missing, already running or finished")
            return "skipped"

        progress = ProgressReporter(mongo, task_id)
        ctx = TaskContext(
            task_id=task_id,
            data={k: v for k, v in data.items() if k != "taskId"},
            mongo=mongo,
            registry=registry,
            settings=settings,
            progress=progress,
            rng=rng,
        )

        try:
            result = await PIPELINES[task_type](ctx)
        except TaskStopped:
            log.info("worker_task_stopped")
            return "stopped"
        except (TaskConflictError, PyMongoError):
            raise
        except Exception as e:
            stage = getattr(e, "stage", "unknown")
            log.error("worker_failed_task", error=str(e), stage=stage, exc_info=True)
            failure_progress = {**progress.last, "phase": "failed", "details": f"Failed: {e}"}
            await mongo.fail_task(
                task_id,
                str(e),
                result=getattr(e, "result", None) or {"error": str(e), "stage": stage},
                progress=failure_progress,
            )
            return "failed"

        if not await mongo.complete_task(task_id, result):
            log.info("worker_task_finished_after_stop")
            return "stopped"
        log.info("worker_completed_task")
        return "completed"
    finally:
        current_task_id.reset(token)
        structlog.contextvars.unbind_contextvars("task_id", "task_type")
