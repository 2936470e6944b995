"""Pydantic models for provider health and per-purpose operator toggles."""

from __future__ import annotations

from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

PROVIDER_PRIORITY: tuple[str, ...] = ("anthropic", "openai", "gemini")


class Purpose(str, Enum):
    generation = "generation"
    validation = "validation"
    migration = "migration"
    illustration = "illustration"


class ProviderState(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    configured: bool = False
    available: bool = False
    model: str | None = None
    error: str | None = None
    error_status: int | None = None


class ProviderStatusSnapshot(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    providers: dict[str, ProviderState] = Field(default_factory=dict)
    primary_provider: str | None = None
    message: str = "No AI provider configured"


def _all_enabled() -> dict[str, bool]:
    return {name: True for name in PROVIDER_PRIORITY}


class ProviderSettings(BaseModel):
    """Which providers an operator allows for each purpose."""

    generation: dict[str, bool] = Field(default_factory=_all_enabled)
    validation: dict[str, bool] = Field(default_factory=_all_enabled)
    migration: dict[str, bool] = Field(
        default_factory=lambda: {"anthropic": True, "openai": False, "gemini": False}
    )
    illustration: dict[str, bool] = Field(default_factory=_all_enabled)

    def is_enabled(self, purpose: Purpose, provider: str) -> bool:
        toggles = getattr(self, purpose.value, None) or self.generation
        # A provider missing from the toggles counts as enabled.
        return toggles.get(provider, True) is not False
