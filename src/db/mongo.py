"""MongoDB repository for background tasks, questions and provider data."""

from __future__ import annotations

from datetime import datetime, timezone
from functools import partial
from typing import Any, Callable

import structlog
from pymongo import ASCENDING, DESCENDING, AsyncMongoClient, UpdateOne

from src.core.batch_writer import DEFAULT_CAP, DEFAULT_THRESHOLD, BatchedWriter
from src.core.errors import TaskConflictError
from src.core.task_state import CANCELLED_BY_USER, CLAIMABLE_STATUSES, plan_progress, plan_transition
from src.models.provider_logs import ProviderCallLog

log = structlog.get_logger(__name__)

PROVIDER_SETTINGS_ID = "config"

# Compare-and-set attempts before a write gives up with TaskConflictError.
MAX_CAS_ATTEMPTS = 5


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Mongo:
    """Async MongoDB repository.

    Every task write goes through ``_compare_and_set``: read the document, let
    a pure planner decide the change, then ``update_one`` filtered on the
    ``version`` that was read. A lost race re-reads and re-plans, so a write
    can never land on top of a terminal status set by someone else.
    """

    def __init__(
        self,
        mongo_url: str,
        *,
        database: str = "quiz_tasks",
        transactions: bool = True,
        batch_threshold: int = DEFAULT_THRESHOLD,
        batch_cap: int = DEFAULT_CAP,
        client: Any | None = None,
    ) -> None:
        self.client = client or AsyncMongoClient(mongo_url, tz_aware=True)
        self.db = self.client[database]
        self.tasks = self.db.background_tasks
        self.questions = self.db.questions
        self.provider_settings = self.db.provider_settings
        self.provider_logs = self.db.provider_call_logs
        self._transactions = transactions
        self._batch_threshold = batch_threshold
        self._batch_cap = batch_cap

    async def ping(self) -> None:
        await self.client.admin.command("ping")

    async def close(self) -> None:
        await self.client.close()

    async def ensure_indexes(self) -> None:
        await self.tasks.create_index("task_id", unique=True)
        await self.tasks.create_index([("status", ASCENDING), ("created_at", ASCENDING)])
        await self.tasks.create_index([("user_id", ASCENDING), ("created_at", DESCENDING)])
        await self.questions.create_index("id", unique=True)
        await self.provider_logs.create_index([("task_id", ASCENDING), ("created_at", DESCENDING)])

    # ------------------------------------------------------------------
    # Tasks
    # ------------------------------------------------------------------

    async def create_task(
        self,
        task_id: str,
        task_type: str,
        *,
        payload: dict[str, Any],
        user_id: str,
        label: str,
        description: str,
    ) -> dict[str, Any]:
        now = _now()
        doc = {
            "task_id": task_id,
            "task_type": task_type,
            "status": "pending",
            "label": label,
            "description": description,
            "user_id": user_id,
            "payload": payload,
            "progress": {
                "phase": "",
                "completed": 0,
                "total": 0,
                "details": "Waiting to be queued",
                "counters": {},
                "updated_at": now,
            },
            "created_at": now,
            "updated_at": now,
            "version": 0,
        }
        await self.tasks.insert_one(dict(doc))
        return doc

    async def get_task(self, task_id: str) -> dict[str, Any] | None:
        return await self.tasks.find_one({"task_id": task_id}, projection={"_id": 0})

    async def list_tasks(
        self,
        *,
        user_id: str | None = None,
        status: str | None = None,
        limit: int = 50,
    ) -> list[dict[str, Any]]:
        """List tasks, most recent first."""
        query: dict[str, Any] = {}
        if user_id:
            query["user_id"] = user_id
        if status:
            query["status"] = status
        cursor = self.tasks.find(query, projection={"_id": 0}).sort("created_at", DESCENDING).limit(limit)
        return [doc async for doc in cursor]

    async def find_tasks(self, query: dict[str, Any], *, limit: int = 1000) -> list[dict[str, Any]]:
        cursor = self.tasks.find(query, projection={"_id": 0}).sort("created_at", ASCENDING).limit(limit)
        return [doc async for doc in cursor]

    async def _compare_and_set(
        self,
        task_id: str,
        plan: Callable[[dict[str, Any]], dict[str, Any] | None],
    ) -> dict[str, Any] | None:
        """Apply ``plan`` atomically; returns the updated document or ``None`` for a no-op."""
        for attempt in range(MAX_CAS_ATTEMPTS):
            doc = await self.get_task(task_id)
            if doc is None:
                return None
            changes = plan(doc)
            if changes is None:
                return None
            version = doc.get("version", 0)
            res = await self.tasks.update_one(
                {"task_id": task_id, "version": version},
                {"$set": changes, "$inc": {"version": 1}},
            )
            if res.matched_count:
                return {**doc, **changes, "version": version + 1}
            log.debug("task_write_conflict", task_id=task_id, attempt=attempt + 1)
        raise TaskConflictError(f"Task {task_id} kept changing; gave up after {MAX_CAS_ATTEMPTS} attempts")

    async def mark_queued(self, task_id: str, delivery_handle: str) -> dict[str, Any] | None:
        return await self._compare_and_set(
            task_id,
            lambda doc: plan_transition(
                doc,
                "queued",
                _now(),
                fields={"delivery_handle": delivery_handle},
                progress={"details": "Queued for processing"},
            ),
        )

    async def start_task(self, task_id: str, *, details: str = "Starting") -> dict[str, Any] | None:
        """Claim the task for a worker.

        ``None`` when it is missing, terminal or already processing, so a
        redelivered task is never run twice.
        """

        def plan(doc: dict[str, Any]) -> dict[str, Any] | None:
            if doc.get("status") not in CLAIMABLE_STATUSES:
                return None
            return plan_transition(doc, "processing", _now(), progress={"phase": "starting", "details": details})

        return await self._compare_and_set(task_id, plan)

    async def update_progress(self, task_id: str, progress: dict[str, Any]) -> bool:
        """Merge a progress update; ``False`` when the task is missing or terminal."""
        updated = await self._compare_and_set(task_id, lambda doc: plan_progress(doc, progress, _now()))
        return updated is not None

    async def complete_task(self, task_id: str, result: Any, *, progress: dict[str, Any] | None = None) -> bool:
        updated = await self._compare_and_set(
            task_id,
            lambda doc: plan_transition(
                doc,
                "completed",
                _now(),
                fields={"result": result},
                progress=_final_progress(doc, progress),
            ),
        )
        return updated is not None

    async def fail_task(
        self,
        task_id: str,
        error: str,
        *,
        result: Any | None = None,
        progress: dict[str, Any] | None = None,
        expected_status: str | None = None,
    ) -> bool:
        fields: dict[str, Any] = {"error": error}
        if result is not None:
            fields["result"] = result
        updated = await self._compare_and_set(
            task_id,
            lambda doc: plan_transition(
                doc,
                "failed",
                _now(),
                expected_status=expected_status,
                fields=fields,
                progress=progress,
            ),
        )
        return updated is not None

    async def cancel_task(self, task_id: str, error: str = CANCELLED_BY_USER) -> bool:
        updated = await self._compare_and_set(
            task_id,
            lambda doc: plan_transition(
                doc,
                "cancelled",
                _now(),
                fields={"error": error},
                progress={"phase": "cancelled", "details": error},
            ),
        )
        return updated is not None

    async def delete_task(self, task_id: str) -> bool:
        res = await self.tasks.delete_one({"task_id": task_id})
        return res.deleted_count > 0

    async def delete_tasks(self, task_ids: list[str]) -> int:
        res = await self.tasks.delete_many({"task_id": {"$in": task_ids}})
        return res.deleted_count

    async def delete_finished_before(self, status: str, cutoff: datetime) -> int:
        res = await self.tasks.delete_many({"status": status, "finished_at": {"$lt": cutoff}})
        return res.deleted_count

    # ------------------------------------------------------------------
    # Batched writes
    # ------------------------------------------------------------------

    def batch_writer(self, collection: str) -> BatchedWriter[Any]:
        """A writer whose batches are applied with ``bulk_write`` on ``collection``."""
        return BatchedWriter(
            partial(self._commit_batch, collection),
            threshold=self._batch_threshold,
            cap=self._batch_cap,
        )

    async def _commit_batch(self, collection: str, ops: list[Any]) -> Any:
        coll = self.db[collection]
        if not self._transactions:
            return await coll.bulk_write(ops, ordered=False)

        async def _apply(session):
            return await coll.bulk_write(ops, ordered=False, session=session)

        async with self.client.start_session() as session:
            return await session.with_transaction(_apply)

    # ------------------------------------------------------------------
    # Questions
    # ------------------------------------------------------------------

    async def load_questions(self, *, limit: int = 0) -> list[dict[str, Any]]:
        cursor = self.questions.find({}, projection={"_id": 0})
        if limit:
            cursor = cursor.limit(limit)
        return [doc async for doc in cursor]

    async def get_questions(self, question_ids: list[str]) -> list[dict[str, Any]]:
        cursor = self.questions.find({"id": {"$in": question_ids}}, projection={"_id": 0})
        return [doc async for doc in cursor]

    async def get_question(self, question_id: str) -> dict[str, Any] | None:
        return await self.questions.find_one({"id": question_id}, projection={"_id": 0})

    async def update_question(self, question_id: str, fields: dict[str, Any]) -> bool:
        res = await self.questions.update_one(
            {"id": question_id},
            {"$set": {**fields, "updated_at": _now()}},
        )
        return res.matched_count > 0

    # ------------------------------------------------------------------
    # Provider settings and call logs
    # ------------------------------------------------------------------

    async def get_provider_settings(self) -> dict[str, Any] | None:
        doc = await self.provider_settings.find_one({"_id": PROVIDER_SETTINGS_ID})
        if doc is None:
            return None
        doc.pop("_id", None)
        doc.pop("updated_at", None)
        doc.pop("updated_by", None)
        return doc

    async def update_provider_settings(self, settings: dict[str, Any], *, updated_by: str | None = None) -> None:
        await self.provider_settings.update_one(
            {"_id": PROVIDER_SETTINGS_ID},
            {"$set": {**settings, "updated_at": _now(), "updated_by": updated_by}},
            upsert=True,
        )

    async def create_provider_log(self, entry: ProviderCallLog) -> None:
        doc = entry.model_dump()
        doc["created_at"] = doc.get("created_at") or _now()
        await self.provider_logs.insert_one(doc)

    async def list_provider_logs(self, *, task_id: str | None = None, limit: int = 200) -> list[dict[str, Any]]:
        """Recent provider calls, most recent first."""
        query = {"task_id": task_id} if task_id else {}
        cursor = self.provider_logs.find(query, projection={"_id": 0}).sort("created_at", DESCENDING).limit(limit)
        return [doc async for doc in cursor]


def _final_progress(doc: dict[str, Any], progress: dict[str, Any] | None) -> dict[str, Any]:
    """Completion progress: the stored total (or the incoming one) counted as done."""
    stored = doc.get("progress") or {}
    incoming = dict(progress or {})
    total = max(int(stored.get("total", 0)), int(incoming.get("total", 0)))
    incoming.setdefault("phase", "completed")
    incoming.setdefault("details", "Done")
    incoming["total"] = total
    incoming["completed"] = total
    return incoming


def stale_update(task: dict[str, Any], error: str, now: datetime) -> UpdateOne:
    """Force-fail ``task`` only if it is still in the status and version it was read with."""
    return UpdateOne(
        {"task_id": task["task_id"], "status": task["status"], "version": task.get("version", 0)},
        {
            "$set": {
                "status": "failed",
                "error": error,
                "finished_at": now,
                "updated_at": now,
                "progress.phase": "failed",
                "progress.details": error,
                "progress.updated_at": now,
            },
            "$inc": {"version": 1},
        },
    )
