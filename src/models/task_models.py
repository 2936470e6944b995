"""Pydantic models for task persistence and API responses."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class TaskStatus(str, Enum):
    pending = "pending"
    queued = "queued"
    processing = "processing"
    completed = "completed"
    failed = "failed"
    cancelled = "cancelled"


class TaskType(str, Enum):
    generation = "generation"
    validation = "validation"
    batchvalidation = "batchvalidation"
    migration = "migration"
    regenerateemoji = "regenerateemoji"
    batchregenerateemojis = "batchregenerateemojis"

    @property
    def queue_name(self) -> str:
        return f"runai{self.value}"

    @classmethod
    def from_queue(cls, queue_name: str) -> TaskType | None:
        for task_type in cls:
            if task_type.queue_name == queue_name:
                return task_type
        return None


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TaskProgress(_CamelModel):
    phase: str = ""
    completed: int = 0
    total: int = 0
    details: str = ""
    counters: dict[str, int] = Field(default_factory=dict)
    updated_at: datetime | None = None


class TaskReadResponse(_CamelModel):
    task_id: str
    task_type: str
    status: TaskStatus
    label: str | None = None
    description: str | None = None
    user_id: str | None = None
    payload: dict[str, Any] = Field(default_factory=dict)
    progress: TaskProgress | None = None
    result: Any | None = None
    error: str | None = None
    delivery_handle: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    started_at: datetime | None = None
    finished_at: datetime | None = None


class CreateTaskRequest(_CamelModel):
    task_type: TaskType
    payload: dict[str, Any] = Field(default_factory=dict)
    user_id: str = Field(..., min_length=1)


class CreateTaskResponse(_CamelModel):
    task_id: str
    status: TaskStatus


class TaskIdsRequest(_CamelModel):
    task_ids: list[str] = Field(..., min_length=1)


# Per-type payloads, validated by the worker before a pipeline runs.


class GenerationPayload(_CamelModel):
    amount: int = Field(default=10, ge=1, le=50)
    category: str | None = None
    age_group: str | None = None
    provider: str | None = None


class ValidationPayload(_CamelModel):
    question: str = Field(..., min_length=1)
    options: list[str] = Field(..., min_length=4, max_length=4)
    correct_option: int = Field(..., ge=0, le=3)
    explanation: str = ""
    question_id: str | None = None


class BatchValidationItem(_CamelModel):
    id: str
    question: str
    options: list[str]
    correct_option: int
    explanation: str = ""


class BatchValidationPayload(_CamelModel):
    questions: list[BatchValidationItem] = Field(..., min_length=1)


class RegenerateEmojiPayload(_CamelModel):
    question_id: str = Field(..., min_length=1)
    provider: str | None = None


class BatchRegenerateEmojisPayload(_CamelModel):
    question_ids: list[str] = Field(..., min_length=1)
