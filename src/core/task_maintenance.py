"""Operator controls: stop, delete and clean up background tasks."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

import structlog

from src.core.settings import Settings
from src.core.task_state import CANCELLED_BY_USER
from src.db.mongo import Mongo, stale_update
from src.models.task_models import TaskType

log = structlog.get_logger(__name__)


@dataclass(frozen=True)
class StuckTaskTimeouts:
    processing_min: int = 30
    batch_validation_min: int = 180
    queued_min: int = 30

    @classmethod
    def from_settings(cls, settings: Settings) -> StuckTaskTimeouts:
        return cls(
            processing_min=settings.PROCESSING_TIMEOUT_MIN,
            batch_validation_min=settings.BATCH_VALIDATION_TIMEOUT_MIN,
            queued_min=settings.QUEUED_TIMEOUT_MIN,
        )

    def processing_limit(self, task_type: str | None) -> int:
        if task_type == TaskType.batchvalidation.value:
            return self.batch_validation_min
        return self.processing_min


async def stop_task(mongo: Mongo, task_id: str) -> bool:
    """Cancel a non-terminal task. The worker notices on its next progress write."""
    stopped = await mongo.cancel_task(task_id, CANCELLED_BY_USER)
    log.info("task_stop_requested", task_id=task_id, stopped=stopped)
    return stopped


async def stop_tasks(mongo: Mongo, task_ids: list[str]) -> dict[str, Any]:
    stopped = [task_id for task_id in task_ids if await mongo.cancel_task(task_id, CANCELLED_BY_USER)]
    log.info("tasks_stop_requested", requested=len(task_ids), stopped=len(stopped))
    return {"stopped": len(stopped), "skipped": len(task_ids) - len(stopped), "taskIds": stopped}


async def delete_task(mongo: Mongo, task_id: str) -> bool:
    return await mongo.delete_task(task_id)


async def delete_tasks(mongo: Mongo, task_ids: list[str]) -> int:
    deleted = await mongo.delete_tasks(task_ids)
    log.info("tasks_deleted", requested=len(task_ids), deleted=deleted)
    return deleted


async def delete_old_tasks(mongo: Mongo, *, older_than_hours: int = 24, now: datetime | None = None) -> dict[str, Any]:
    """Delete completed and failed tasks that finished more than ``older_than_hours`` ago."""
    cutoff = (now or datetime.now(timezone.utc)) - timedelta(hours=older_than_hours)
    completed = await mongo.delete_finished_before("completed", cutoff)
    failed = await mongo.delete_finished_before("failed", cutoff)
    log.info("old_tasks_deleted", completed=completed, failed=failed, hours_old=older_than_hours)
    return {
        "deleted": completed + failed,
        "completedDeleted": completed,
        "failedDeleted": failed,
        "hoursOld": older_than_hours,
    }


async def reap_stuck_tasks(
    mongo: Mongo,
    timeouts: StuckTaskTimeouts | None = None,
    *,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Force-fail tasks stuck in processing or queued past their timeout.

    Each update only applies while the task still has the status and version
    it was read with, so running this concurrently with workers, or twice, is safe.
    """
    timeouts = timeouts or StuckTaskTimeouts()
    now = now or datetime.now(timezone.utc)
    writer = mongo.batch_writer("background_tasks")

    for task in await mongo.find_tasks({"status": "processing"}):
        limit = timeouts.processing_limit(task.get("task_type"))
        reference = task.get("started_at") or task.get("created_at")
        if reference is not None and reference < now - timedelta(minutes=limit):
            writer.add(stale_update(task, f"Task timed out after {limit} minutes", now))

    queued_cutoff = now - timedelta(minutes=timeouts.queued_min)
    for task in await mongo.find_tasks({"status": "queued", "created_at": {"$lt": queued_cutoff}}):
        message = f"Task stuck in queue for more than {timeouts.queued_min} minutes"
        writer.add(stale_update(task, message, now))

    candidates = writer.pending
    results = await writer.flush()
    cleaned = sum(getattr(r, "modified_count", 0) for r in results)
    log.info("stuck_tasks_cleaned", candidates=candidates, cleaned=cleaned)
    return {"cleaned": cleaned, "candidates": candidates}
