"""Pydantic models for per-provider verdicts and the majority aggregate."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ValidationVerdict(_CamelModel):
    """One provider's judgement. ``valid=None`` means the provider did not answer."""

    valid: bool | None = None
    issues: list[str] = Field(default_factory=list)
    suggested_correct_option: int | None = Field(default=None, ge=0, le=3)
    reasoning: str = ""
    error: str | None = None
    unavailable: bool = False


class ConsensusSummary(_CamelModel):
    valid: int
    invalid: int
    total: int
    method: Literal["majority"] = "majority"


class ProviderErrorEntry(_CamelModel):
    provider: str
    error: str


class AggregateVerdict(_CamelModel):
    valid: bool
    consensus: ConsensusSummary
    issues: list[str] = Field(default_factory=list)
    suggested_correct_option: int | None = None
    reasoning: str = ""
    provider_results: dict[str, ValidationVerdict] = Field(default_factory=dict)
    provider_errors: list[ProviderErrorEntry] = Field(default_factory=list)
    providers_checked: int

    def to_document(self) -> dict[str, Any]:
        """Storage/wire form (camelCase, unset optionals dropped)."""
        return self.model_dump(by_alias=True, exclude_none=True)
