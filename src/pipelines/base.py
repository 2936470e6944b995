"""Shared plumbing for task pipelines."""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

from src.core.errors import TaskStopped
from src.core.provider_registry import ProviderRegistry
from src.core.settings import Settings
from src.db.mongo import Mongo


class ProgressReporter:
    """Writes monotonic progress for one task and stops the pipeline once the task is terminal."""

    def __init__(self, mongo: Mongo, task_id: str) -> None:
        self._mongo = mongo
        self._task_id = task_id
        self.last: dict[str, Any] = {}

    async def report(
        self,
        phase: str,
        *,
        completed: int = 0,
        total: int = 0,
        details: str = "",
        counters: dict[str, int] | None = None,
    ) -> None:
        update = {
            "phase": phase,
            "completed": completed,
            "total": total,
            "details": details,
            "counters": dict(counters or {}),
        }
        self.last = update
        if not await self._mongo.update_progress(self._task_id, update):
            raise TaskStopped(f"Task {self._task_id} is no longer running")


@dataclass
class TaskContext:
    task_id: str
    data: dict[str, Any]
    mongo: Mongo
    registry: ProviderRegistry
    settings: Settings
    progress: ProgressReporter
    rng: random.Random | None = None
    now: Callable[[], datetime] = field(default=lambda: datetime.now(timezone.utc))


Pipeline = Callable[[TaskContext], Awaitable[dict[str, Any]]]
