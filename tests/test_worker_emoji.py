"""Worker tests for emoji regeneration."""
from __future__ import annotations

import pytest

from src.core.jobs import run_task
from src.core.provider_registry import ProviderRegistry
from src.models.task_models import TaskType
from tests.fakes import CAPITAL, OCEAN, DummyProvider, queued_task


async def _run(mongo, settings, registry, task_type: TaskType, payload: dict):
    task_id = await queued_task(mongo, task_type.value, payload)
    outcome = await run_task(task_type, {"taskId": task_id, **payload}, mongo=mongo, registry=registry, settings=settings)
    return outcome, await mongo.get_task(task_id)


@pytest.mark.asyncio
async def test_regenerate_emoji_with_preferred_provider(mongo, settings):
    await mongo.questions.insert_one({**CAPITAL, "id": "q1", "illustration": "❓"})
    registry = ProviderRegistry([DummyProvider("openai", emoji="🏙️"), DummyProvider("gemini", emoji="👑")])

    outcome, task = await _run(
        mongo, settings, registry, TaskType.regenerateemoji, {"questionId": "q1", "provider": "gemini"}
    )

    assert outcome == "completed"
    assert task["result"] == {"questionId": "q1", "emoji": "👑", "provider": "gemini"}
    question = await mongo.get_question("q1")
    assert question["illustration"] == "👑"
    assert question["illustration_type"] == "emoji"
    assert question["illustration_provider"] == "gemini"


@pytest.mark.asyncio
async def test_regenerate_emoji_for_missing_question_fails(mongo, settings):
    registry = ProviderRegistry([DummyProvider("openai")])

    outcome, task = await _run(mongo, settings, registry, TaskType.regenerateemoji, {"questionId": "nope"})

    assert outcome == "failed"
    assert task["error"] == "Question nope was not found"


@pytest.mark.asyncio
async def test_batch_regenerate_counts_missing_and_failed(mongo, settings):
    await mongo.questions.insert_one({**CAPITAL, "id": "q1"})
    await mongo.questions.insert_one({**OCEAN, "id": "q2"})
    registry = ProviderRegistry([DummyProvider("openai", emoji="✨")])

    outcome, task = await _run(
        mongo, settings, registry, TaskType.batchregenerateemojis, {"questionIds": ["q1", "q2", "ghost", "q1"]}
    )

    assert outcome == "completed"
    assert task["result"] == {"total": 3, "generated": 2, "failed": 1, "missing": ["ghost"]}
    assert task["progress"]["counters"] == {"generated": 2, "failed": 1}
    assert (await mongo.get_question("q2"))["illustration"] == "✨"


@pytest.mark.asyncio
async def test_batch_regenerate_with_nothing_generated_fails(mongo, settings):
    await mongo.questions.insert_one({**CAPITAL, "id": "q1"})
    registry = ProviderRegistry([DummyProvider("openai", emoji_error="refused")])

    outcome, task = await _run(mongo, settings, registry, TaskType.batchregenerateemojis, {"questionIds": ["q1"]})

    assert outcome == "failed"
    assert task["result"]["stage"] == "pipeline"
    assert "illustration" not in await mongo.get_question("q1")
