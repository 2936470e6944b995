"""Provider registry: which AI providers may serve which purpose right now.

A provider is usable for a purpose when it has a credential, the operator has
not switched it off for that purpose, and (for migration only) its last health
probe succeeded. For every other purpose health is advisory: an unconfirmed
provider is logged but still offered, and the fallback executor routes around
it if it really is down.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable

import structlog
from pydantic import ValidationError
from pymongo.errors import PyMongoError

from src.core.settings import Settings
from src.models.provider_models import (
    PROVIDER_PRIORITY,
    ProviderSettings,
    ProviderState,
    ProviderStatusSnapshot,
    Purpose,
)
from src.providers.anthropic_provider import AnthropicProvider
from src.providers.base import (
    CallRecorder,
    Categorizer,
    HealthProbe,
    Illustrator,
    QuestionGenerator,
    QuestionValidator,
)
from src.providers.gemini_provider import GeminiProvider
from src.providers.openai_provider import OpenAIProvider

log = structlog.get_logger(__name__)

PURPOSE_CAPABILITIES: dict[Purpose, frozenset[type]] = {
    Purpose.generation: frozenset({QuestionGenerator}),
    Purpose.validation: frozenset({QuestionValidator}),
    Purpose.migration: frozenset({Categorizer, Illustrator}),
    Purpose.illustration: frozenset({Illustrator}),
}


@dataclass(frozen=True)
class ProviderHandle:
    """A provider as granted to one purpose; only the granted capabilities are usable."""

    name: str
    label: str
    purpose: Purpose
    adapter: Any
    capabilities: frozenset[type]

    def supports(self, capability: type) -> bool:
        return capability in self.capabilities and isinstance(self.adapter, capability)


class ProviderStatusCache:
    """TTL cache around a status probe with single-flight refresh.

    Concurrent callers that miss the cache await one shared probe. A failed
    probe clears the cache and the error reaches every waiter.
    """

    def __init__(
        self,
        probe: Callable[[], Awaitable[ProviderStatusSnapshot]],
        *,
        ttl_s: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._probe = probe
        self._ttl_s = ttl_s
        self._clock = clock
        self._value: ProviderStatusSnapshot | None = None
        self._fetched_at = 0.0
        self._inflight: asyncio.Future[ProviderStatusSnapshot] | None = None
        self._lock = asyncio.Lock()

    async def get(self, *, force: bool = False) -> ProviderStatusSnapshot:
        async with self._lock:
            if not force and self._value is not None and self._clock() - self._fetched_at < self._ttl_s:
                return self._value
            if self._inflight is None:
                self._inflight = asyncio.ensure_future(self._refresh())
            inflight = self._inflight
        # A cancelled waiter must not cancel the probe the others are sharing.
        return await asyncio.shield(inflight)

    def invalidate(self) -> None:
        self._value = None
        self._fetched_at = 0.0

    async def _refresh(self) -> ProviderStatusSnapshot:
        try:
            value = await self._probe()
        except Exception:
            self.invalidate()
            raise
        else:
            self._value = value
            self._fetched_at = self._clock()
            return value
        finally:
            self._inflight = None


def _ordered(adapters: Iterable[Any]) -> list[Any]:
    rank = {name: i for i, name in enumerate(PROVIDER_PRIORITY)}
    return sorted(adapters, key=lambda a: rank.get(a.name, len(rank)))


async def evaluate_provider_status(adapters: Iterable[Any]) -> ProviderStatusSnapshot:
    """Probe every provider concurrently and pick the primary one in priority order."""
    ordered = _ordered(adapters)
    states = await asyncio.gather(*(_probe_one(a) for a in ordered))
    providers = {a.name: state for a, state in zip(ordered, states)}

    primary = next((a for a in ordered if providers[a.name].available), None)
    if primary is not None:
        suffix = "" if primary is ordered[0] else " fallback"
        message = f"AI generation available ({primary.label}{suffix})"
    elif any(state.configured for state in providers.values()):
        message = "All AI services unavailable - check API keys"
    else:
        message = "No AI provider configured"

    return ProviderStatusSnapshot(
        providers=providers,
        primary_provider=primary.name if primary is not None else None,
        message=message,
    )


async def _probe_one(adapter: Any) -> ProviderState:
    configured = bool(getattr(adapter, "configured", False))
    if not isinstance(adapter, HealthProbe):
        return ProviderState(configured=configured, available=False)
    try:
        return await adapter.check_health()
    except Exception as e:
        log.warning("provider_health_probe_failed", provider=adapter.name, error=str(e))
        return ProviderState(configured=configured, available=False, error=str(e))


class ProviderRegistry:
    def __init__(
        self,
        adapters: Iterable[Any],
        *,
        settings_loader: Callable[[], Awaitable[dict[str, Any] | None]] | None = None,
        status_ttl_s: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._adapters = _ordered(adapters)
        self._settings_loader = settings_loader
        self.status_cache = ProviderStatusCache(
            lambda: evaluate_provider_status(self._adapters),
            ttl_s=status_ttl_s,
            clock=clock,
        )

    @property
    def adapters(self) -> list[Any]:
        return list(self._adapters)

    async def status(self, *, force: bool = False) -> ProviderStatusSnapshot:
        return await self.status_cache.get(force=force)

    async def provider_settings(self) -> ProviderSettings:
        """Operator toggles; falls back to the defaults when they cannot be loaded."""
        if self._settings_loader is None:
            return ProviderSettings()
        try:
            stored = await self._settings_loader()
            return ProviderSettings.model_validate(stored) if stored else ProviderSettings()
        except (PyMongoError, ValidationError, TimeoutError, OSError) as e:
            log.warning("provider_settings_load_failed_using_defaults", error=str(e))
            return ProviderSettings()

    async def providers_for(self, purpose: Purpose) -> list[ProviderHandle]:
        """Usable providers for ``purpose`` in priority order."""
        toggles = await self.provider_settings()
        snapshot = await self.status()
        require_available = purpose is Purpose.migration

        handles: list[ProviderHandle] = []
        for adapter in self._adapters:
            if not getattr(adapter, "configured", False):
                continue
            if not toggles.is_enabled(purpose, adapter.name):
                continue
            state = snapshot.providers.get(adapter.name)
            if require_available and not (state is not None and state.available):
                continue
            if state is not None and not state.available:
                log.warning(
                    "provider_health_unconfirmed",
                    provider=adapter.name,
                    purpose=purpose.value,
                    error=state.error,
                )
            capabilities = frozenset(c for c in PURPOSE_CAPABILITIES[purpose] if isinstance(adapter, c))
            if not capabilities:
                continue
            handles.append(
                ProviderHandle(
                    name=adapter.name,
                    label=getattr(adapter, "label", adapter.name),
                    purpose=purpose,
                    adapter=adapter,
                    capabilities=capabilities,
                )
            )
        return handles


def build_providers(settings: Settings, *, recorder: CallRecorder | None = None) -> list[Any]:
    """Instantiate every known provider; the ones without a key report ``configured=False``."""
    return [
        AnthropicProvider(api_key=settings.ANTHROPIC_API_KEY, model=settings.ANTHROPIC_MODEL, recorder=recorder),
        OpenAIProvider(api_key=settings.OPENAI_API_KEY, model=settings.OPENAI_MODEL, recorder=recorder),
        GeminiProvider(api_key=settings.GOOGLE_API_KEY, model=settings.GEMINI_MODEL, recorder=recorder),
    ]
