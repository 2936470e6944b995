from __future__ import annotations

import asyncio

import pytest
from pymongo.errors import ServerSelectionTimeoutError

from src.core.provider_registry import (
    ProviderRegistry,
    ProviderStatusCache,
    build_providers,
    evaluate_provider_status,
)
from src.models.provider_models import ProviderStatusSnapshot, Purpose
from src.providers.anthropic_provider import AnthropicProvider
from src.providers.base import Categorizer, Illustrator, QuestionValidator
from tests.fakes import DummyProvider, ValidatorOnly


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


@pytest.mark.asyncio
async def test_status_cache_single_flight():
    calls = 0
    release = asyncio.Event()

    async def probe():
        nonlocal calls
        calls += 1
        await release.wait()
        return ProviderStatusSnapshot(message=f"probe {calls}")

    cache = ProviderStatusCache(probe, ttl_s=60)
    waiters = [asyncio.create_task(cache.get()) for _ in range(10)]
    await asyncio.sleep(0)
    release.set()
    results = await asyncio.gather(*waiters)

    assert calls == 1
    assert {r.message for r in results} == {"probe 1"}


@pytest.mark.asyncio
async def test_status_cache_ttl_and_force():
    clock = FakeClock()
    calls = 0

    async def probe():
        nonlocal calls
        calls += 1
        return ProviderStatusSnapshot(message=str(calls))

    cache = ProviderStatusCache(probe, ttl_s=60, clock=clock)
    assert (await cache.get()).message == "1"
    clock.now += 59
    assert (await cache.get()).message == "1"
    clock.now += 2
    assert (await cache.get()).message == "2"
    assert (await cache.get(force=True)).message == "3"


@pytest.mark.asyncio
async def test_status_cache_failure_reaches_waiters_and_resets():
    attempts = 0

    async def probe():
        nonlocal attempts
        attempts += 1
        if attempts == 1:
            raise RuntimeError("probe exploded")
        return ProviderStatusSnapshot(message="recovered")

    cache = ProviderStatusCache(probe, ttl_s=60)
    results = await asyncio.gather(cache.get(), cache.get(), return_exceptions=True)
    assert all(isinstance(r, RuntimeError) for r in results)
    assert attempts == 1

    # The next caller starts a fresh probe instead of reusing the failure.
    assert (await cache.get()).message == "recovered"
    assert attempts == 2


@pytest.mark.asyncio
async def test_evaluate_status_prefers_priority_order():
    snapshot = await evaluate_provider_status(
        [
            DummyProvider("gemini", "Google Gemini"),
            DummyProvider("anthropic", "Anthropic Claude", available=False),
            DummyProvider("openai", "OpenAI"),
        ]
    )
    assert snapshot.primary_provider == "openai"
    assert snapshot.message == "AI generation available (OpenAI fallback)"
    assert snapshot.providers["anthropic"].error == "down"


@pytest.mark.asyncio
async def test_evaluate_status_messages():
    primary = await evaluate_provider_status([DummyProvider("anthropic", "Anthropic Claude")])
    assert primary.message == "AI generation available (Anthropic Claude)"

    down = await evaluate_provider_status([DummyProvider("openai", available=False)])
    assert down.primary_provider is None
    assert down.message == "All AI services unavailable - check API keys"

    none = await evaluate_provider_status([DummyProvider("openai", configured=False)])
    assert none.message == "No AI provider configured"


@pytest.mark.asyncio
async def test_unprobed_provider_counts_as_unavailable():
    snapshot = await evaluate_provider_status([ValidatorOnly("openai")])
    assert snapshot.providers["openai"].configured is True
    assert snapshot.providers["openai"].available is False


@pytest.mark.asyncio
async def test_crashing_health_probe_only_marks_that_provider_down():
    class Crashing(DummyProvider):
        async def check_health(self):
            raise KeyError("usage")

    registry = ProviderRegistry([Crashing("anthropic"), DummyProvider("openai")])

    status = await registry.status()
    assert status.providers["anthropic"].configured is True
    assert status.providers["anthropic"].available is False
    assert "usage" in status.providers["anthropic"].error
    assert status.primary_provider == "openai"

    generation = await registry.providers_for(Purpose.generation)
    assert [h.name for h in generation] == ["anthropic", "openai"]


@pytest.mark.asyncio
async def test_providers_for_skips_unconfigured_and_disabled():
    async def loader():
        return {"validation": {"openai": False}}

    registry = ProviderRegistry(
        [
            DummyProvider("openai"),
            DummyProvider("gemini"),
            DummyProvider("anthropic", configured=False),
        ],
        settings_loader=loader,
    )
    handles = await registry.providers_for(Purpose.validation)
    assert [h.name for h in handles] == ["gemini"]
    assert handles[0].supports(QuestionValidator)
    assert not handles[0].supports(Illustrator)

    generation = await registry.providers_for(Purpose.generation)
    assert [h.name for h in generation] == ["openai", "gemini"]


@pytest.mark.asyncio
async def test_health_is_advisory_except_for_migration():
    registry = ProviderRegistry([DummyProvider("anthropic", available=False), DummyProvider("openai")])

    validation = await registry.providers_for(Purpose.validation)
    assert [h.name for h in validation] == ["anthropic", "openai"]

    # Migration defaults allow anthropic only, and it must be healthy.
    assert await registry.providers_for(Purpose.migration) == []


@pytest.mark.asyncio
async def test_migration_uses_healthy_enabled_providers():
    async def loader():
        return {"migration": {"anthropic": True, "openai": True}}

    registry = ProviderRegistry(
        [DummyProvider("anthropic", available=False), DummyProvider("openai")],
        settings_loader=loader,
    )
    handles = await registry.providers_for(Purpose.migration)
    assert [h.name for h in handles] == ["openai"]
    assert handles[0].supports(Categorizer)
    assert handles[0].supports(Illustrator)


@pytest.mark.asyncio
async def test_settings_load_failure_falls_back_to_defaults():
    async def loader():
        raise ServerSelectionTimeoutError("no mongo")

    registry = ProviderRegistry([DummyProvider("openai")], settings_loader=loader)
    toggles = await registry.provider_settings()
    assert toggles.is_enabled(Purpose.generation, "openai") is True
    assert toggles.is_enabled(Purpose.migration, "openai") is False


@pytest.mark.asyncio
async def test_status_is_cached_between_calls():
    provider = DummyProvider("openai")
    registry = ProviderRegistry([provider])
    await registry.providers_for(Purpose.validation)
    await registry.providers_for(Purpose.generation)
    await registry.status()
    assert provider.health_checks == 1
    await registry.status(force=True)
    assert provider.health_checks == 2


def test_build_providers_reports_configuration(settings):
    providers = build_providers(settings.model_copy(update={"ANTHROPIC_API_KEY": "k", "OPENAI_API_KEY": None, "GOOGLE_API_KEY": ""}))
    assert [p.name for p in providers] == ["anthropic", "openai", "gemini"]
    assert [p.configured for p in providers] == [True, False, False]
    assert isinstance(providers[0], AnthropicProvider)
