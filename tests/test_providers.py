from __future__ import annotations

from types import SimpleNamespace

import httpx
import pytest

from src.core.errors import ProviderError
from src.models.question_models import GenerationRequest, QuestionPayload
from src.providers.base import current_task_id, parse_json_response
from src.providers.gemini_provider import GeminiProvider
from src.providers.openai_provider import OpenAIProvider

QUESTION = QuestionPayload(
    question="Vilken är Sveriges huvudstad?",
    options=["Stockholm", "Göteborg", "Malmö", "Uppsala"],
    correct_option=0,
    explanation="Stockholm.",
)


class DummyLLM:
    def __init__(self, *replies) -> None:
        self.replies = list(replies)
        self.messages = []

    async def ainvoke(self, messages):
        self.messages.append(messages)
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return SimpleNamespace(content=reply)


def _provider(*replies, recorder=None) -> tuple[OpenAIProvider, DummyLLM]:
    llm = DummyLLM(*replies)
    return OpenAIProvider(api_key="k", model="gpt-test", llm=llm, recorder=recorder), llm


def test_parse_json_response_tolerates_fences_and_chatter():
    assert parse_json_response('```json\n{"valid": true}\n```') == {"valid": True}
    assert parse_json_response('Sure! Here it is: {"a": [1, 2]} Hope that helps.') == {"a": [1, 2]}
    with pytest.raises(ValueError):
        parse_json_response("no json here")


@pytest.mark.asyncio
async def test_validate_question_records_call_for_current_task():
    logs = []

    async def recorder(entry):
        logs.append(entry)

    provider, llm = _provider('```json\n{"valid": false, "issues": ["Two answers fit"], "suggestedCorrectOption": 2}\n```', recorder=recorder)
    token = current_task_id.set("task-42")
    try:
        verdict = await provider.validate_question(QUESTION)
    finally:
        current_task_id.reset(token)

    assert verdict.valid is False
    assert verdict.issues == ["Two answers fit"]
    assert verdict.suggested_correct_option == 2
    assert "Vilken är Sveriges huvudstad?" in llm.messages[0][1].content
    assert len(logs) == 1
    assert logs[0].task_id == "task-42"
    assert logs[0].phase == "validation"
    assert logs[0].provider == "openai"
    assert logs[0].status == "success"


@pytest.mark.asyncio
async def test_verdict_without_decision_is_an_error():
    provider, _ = _provider('{"issues": []}')
    with pytest.raises(ProviderError):
        await provider.validate_question(QUESTION)


@pytest.mark.asyncio
async def test_failed_call_is_wrapped_and_logged():
    logs = []

    async def recorder(entry):
        logs.append(entry)

    provider, _ = _provider(RuntimeError("connection reset"), recorder=recorder)
    with pytest.raises(ProviderError, match="connection reset"):
        await provider.categorize_question(QUESTION)
    assert logs[0].status == "error"
    assert "connection reset" in logs[0].error


@pytest.mark.asyncio
async def test_empty_reply_is_an_error():
    provider, _ = _provider("   ")
    with pytest.raises(ProviderError, match="empty content"):
        await provider.generate_emoji(QUESTION)


@pytest.mark.asyncio
async def test_recorder_failure_does_not_fail_the_call():
    async def recorder(entry):
        raise RuntimeError("mongo down")

    provider, _ = _provider("🏰\n", recorder=recorder)
    assert await provider.generate_emoji(QUESTION) == "🏰"


@pytest.mark.asyncio
async def test_emoji_with_text_is_rejected():
    provider, _ = _provider("Castle 🏰")
    with pytest.raises(ProviderError):
        await provider.generate_emoji(QUESTION)


@pytest.mark.asyncio
async def test_generate_questions_tags_source():
    provider, _ = _provider('{"questions": [{"categories": ["History"]}, "junk"]}')
    questions = await provider.generate_questions(GenerationRequest(amount=1))
    assert len(questions) == 1
    assert questions[0]["source"] == "ai-generated-openai"
    assert questions[0]["provider"] == "openai"
    assert questions[0]["generated_at"] is not None


@pytest.mark.asyncio
async def test_categorize_question_parses_camel_case():
    provider, _ = _provider('{"ageGroups": ["children", "youth"], "categories": ["Animals"], "reasoning": "Pets."}')
    categorization = await provider.categorize_question(QUESTION)
    assert categorization.age_groups == ["children", "youth"]
    assert categorization.categories == ["Animals"]


@pytest.mark.asyncio
async def test_check_health_reports_failures_without_raising():
    provider, _ = _provider(RuntimeError("401 invalid api key"))
    state = await provider.check_health()
    assert state.configured is True
    assert state.available is False
    assert "401" in state.error

    healthy, _ = _provider("Hello")
    assert (await healthy.check_health()).model == "gpt-test"

    unconfigured = OpenAIProvider(api_key=None, model="gpt-test")
    state = await unconfigured.check_health()
    assert state.configured is False
    with pytest.raises(ProviderError):
        await unconfigured.generate_emoji(QUESTION)


@pytest.mark.asyncio
async def test_gemini_health_lists_models():
    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.params["key"] == "g-key"
        return httpx.Response(
            200,
            json={
                "models": [
                    {"name": "models/embedding-001", "supportedGenerationMethods": ["embedContent"]},
                    {"name": "models/gemini-2.5-flash", "supportedGenerationMethods": ["generateContent"]},
                ]
            },
        )

    provider = GeminiProvider(api_key="g-key", model="gemini-9", transport=httpx.MockTransport(handler))
    state = await provider.check_health()
    assert state.available is True
    assert state.model == "gemini-2.5-flash"


@pytest.mark.asyncio
async def test_gemini_health_reports_http_errors():
    transport = httpx.MockTransport(lambda request: httpx.Response(403, text="API key not valid"))
    provider = GeminiProvider(api_key="bad", model="gemini-2.5-flash", transport=transport)
    state = await provider.check_health()
    assert state.available is False
    assert state.error_status == 403
    assert "API key not valid" in state.error
