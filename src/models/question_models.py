"""Pydantic models for quiz questions as seen by the AI pipelines."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

AgeGroup = Literal["children", "youth", "adults"]


class QuestionPayload(BaseModel):
    """The slice of a question sent to a provider (one language)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    question: str
    options: list[str] = Field(default_factory=list)
    correct_option: int | None = None
    explanation: str = ""

    @classmethod
    def from_document(cls, doc: dict[str, Any], language: str = "sv") -> QuestionPayload:
        """Build a payload from a stored question, tolerating legacy layouts."""
        lang = (doc.get("languages") or {}).get(language) or {}
        text = lang.get("text") or doc.get("question") or doc.get("text") or ""
        if isinstance(text, dict):
            text = text.get(language) or ""
        options = lang.get("options") or doc.get("options") or []
        if isinstance(options, dict):
            options = options.get(language) or list(options.values())
        if isinstance(options, str):
            options = [options]
        explanation = lang.get("explanation") or doc.get("explanation") or ""
        if isinstance(explanation, dict):
            explanation = explanation.get(language) or ""
        return cls(
            question=str(text),
            options=[str(o) for o in options if str(o or "").strip()],
            correct_option=doc.get("correct_option", doc.get("correctOption")),
            explanation=str(explanation),
        )


class GenerationRequest(BaseModel):
    amount: int = Field(..., ge=1, le=50)
    category: str | None = None
    age_group: str | None = None
    target_audience: str = "swedish"


class Categorization(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    age_groups: list[AgeGroup] = Field(..., min_length=1)
    categories: list[str] = Field(..., min_length=1)
    reasoning: str | None = None


class DuplicatePair(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    question1: dict[str, Any]
    question2: dict[str, Any]
    similarity: int = Field(..., ge=0, le=100)
    text1: str
    text2: str
    pair_id: str


class StructureValidation(BaseModel):
    question_id: str | None = None
    valid: bool
    errors: list[str] = Field(default_factory=list)


class ImportStats(BaseModel):
    total_incoming: int = 0
    duplicates_blocked: int = 0
    invalid_count: int = 0
