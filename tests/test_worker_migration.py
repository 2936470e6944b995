"""Worker tests for re-categorizing and re-illustrating the question bank."""
from __future__ import annotations

import pytest

from src.core.jobs import run_task
from src.core.provider_registry import ProviderRegistry
from src.models.task_models import TaskType
from src.pipelines.migration import MIGRATION_VERSION
from tests.fakes import OCEAN, DummyProvider, queued_task

LEGACY = {
    "id": "legacy",
    "text": "Hur många ben har en spindel?",
    "options": ["Åtta", "Sex", "Tio", "Fyra"],
    "explanation": "Spindlar har åtta ben.",
    "correctOption": 0,
    "difficulty": "kid",
    "category": "Animals",
}
MIGRATED = {
    **OCEAN,
    "id": "modern",
    "age_groups": ["adults"],
    "categories": ["Geography"],
    "target_audience": "swedish",
}


async def _run(mongo, settings, registry):
    task_id = await queued_task(mongo, "migration", {})
    outcome = await run_task(TaskType.migration, {"taskId": task_id}, mongo=mongo, registry=registry, settings=settings)
    return outcome, await mongo.get_task(task_id)


@pytest.mark.asyncio
async def test_migration_recategorizes_and_illustrates(mongo, settings):
    await mongo.questions.insert_one(LEGACY)
    await mongo.questions.insert_one(MIGRATED)
    provider = DummyProvider(
        "anthropic",
        categorization={"ageGroups": ["children"], "categories": ["Animals"], "reasoning": "Spiders."},
        emoji="🕷️",
    )

    outcome, task = await _run(mongo, settings, ProviderRegistry([provider]))

    assert outcome == "completed"
    assert task["result"] == {
        "total": 2,
        "migrated": 2,
        "previouslyMigrated": 1,
        "failed": 0,
        "emojiGenerated": 2,
        "emojiFailed": 0,
        "providers": ["anthropic"],
    }

    legacy = await mongo.get_question("legacy")
    assert legacy["age_groups"] == ["children"]
    assert legacy["categories"] == ["Animals"]
    assert legacy["migration_provider"] == "anthropic"
    assert legacy["migration_version"] == MIGRATION_VERSION
    assert legacy["illustration"] == "🕷️"
    assert legacy["languages"]["sv"]["text"] == "Hur många ben har en spindel?"
    for field in ("difficulty", "category", "correctOption"):
        assert field not in legacy


@pytest.mark.asyncio
async def test_categorization_failure_applies_defaults(mongo, settings):
    await mongo.questions.insert_one(LEGACY)
    provider = DummyProvider("anthropic", categorize_error="bad json")

    outcome, task = await _run(mongo, settings, ProviderRegistry([provider]))

    assert outcome == "completed"
    assert task["result"]["failed"] == 1
    assert task["result"]["migrated"] == 0
    legacy = await mongo.get_question("legacy")
    assert legacy["migration_provider"] == "fallback"
    assert legacy["migration_error"] == "categorization_failed"
    assert legacy["age_groups"] == ["children"]
    assert "emoji" not in provider.calls


@pytest.mark.asyncio
async def test_migration_requires_a_healthy_enabled_provider(mongo, settings):
    await mongo.questions.insert_one(LEGACY)
    # Defaults enable anthropic only for migration.
    registry = ProviderRegistry([DummyProvider("anthropic", available=False), DummyProvider("openai")])

    outcome, task = await _run(mongo, settings, registry)

    assert outcome == "failed"
    assert task["result"]["stage"] == "config"
    assert "migrated" not in await mongo.get_question("legacy")


@pytest.mark.asyncio
async def test_migration_honours_operator_toggles(mongo, settings):
    await mongo.questions.insert_one(LEGACY)
    await mongo.update_provider_settings({"migration": {"anthropic": False, "openai": True}})
    openai = DummyProvider("openai")
    registry = ProviderRegistry([DummyProvider("anthropic"), openai], settings_loader=mongo.get_provider_settings)

    outcome, task = await _run(mongo, settings, registry)

    assert outcome == "completed"
    assert task["result"]["providers"] == ["openai"]
    assert openai.calls == ["categorize", "emoji"]
