"""Pydantic models for provider call logs (one document per AI call)."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator

# Excerpts larger than this are cut before they reach MongoDB.
MAX_EXCERPT_CHARS = 20_000


class ProviderCallLog(BaseModel):
    """A single provider interaction persisted to MongoDB."""

    task_id: str | None = None
    phase: str = Field(..., min_length=1)
    provider: str = Field(..., min_length=1)
    model: str | None = None
    status: Literal["success", "error"] = "success"

    request: str | None = None
    response: str | None = None
    error: str | None = None

    duration_ms: float | None = Field(default=None, ge=0.0)
    extra: dict[str, Any] | None = None

    created_at: datetime | None = None

    @field_validator("request", "response", "error")
    @classmethod
    def _truncate(cls, value: str | None) -> str | None:
        if value is not None and len(value) > MAX_EXCERPT_CHARS:
            return value[:MAX_EXCERPT_CHARS]
        return value
