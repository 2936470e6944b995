"""Provider capability interfaces and the shared chat-model adapter.

A provider advertises what it can do by implementing the capability ABCs
below. The registry and the fallback/consensus engines select providers with
``isinstance`` checks against these interfaces, never by probing for methods.
"""

from __future__ import annotations

import json
import re
import time
from abc import ABC, abstractmethod
from contextvars import ContextVar
from contextlib import suppress
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable

import httpx
import structlog
from langchain_core.messages import HumanMessage, SystemMessage
from pydantic import ValidationError

from src.core.errors import ProviderError
from src.models.provider_logs import ProviderCallLog
from src.models.provider_models import ProviderState
from src.models.question_models import Categorization, GenerationRequest, QuestionPayload
from src.models.validation_models import ValidationVerdict
from src.providers import prompts

log = structlog.get_logger(__name__)

CallRecorder = Callable[[ProviderCallLog], Awaitable[None]]

_JSON_BLOCK = re.compile(r"(\{.*\}|\[.*\])", re.DOTALL)

# Task the current coroutine works on; stamped on provider call logs.
current_task_id: ContextVar[str | None] = ContextVar("current_task_id", default=None)


class QuestionGenerator(ABC):
    @abstractmethod
    async def generate_questions(self, request: GenerationRequest) -> list[dict[str, Any]]:
        """Return raw bilingual question documents."""


class QuestionValidator(ABC):
    @abstractmethod
    async def validate_question(self, question: QuestionPayload) -> ValidationVerdict:
        """Judge whether the marked answer is the single correct one."""


class Categorizer(ABC):
    @abstractmethod
    async def categorize_question(self, question: QuestionPayload) -> Categorization:
        """Assign age groups and categories."""


class Illustrator(ABC):
    @abstractmethod
    async def generate_emoji(self, question: QuestionPayload) -> str:
        """Return a short emoji illustration."""


class HealthProbe(ABC):
    @abstractmethod
    async def check_health(self) -> ProviderState:
        """Probe the vendor; never raises, failures are reported in the state."""


def _extract_llm_content(content: Any) -> str:
    """Extract text from a chat response.

    Newer Gemini and Anthropic models may return a list of content blocks
    (``[{"type": "text", "text": "..."}]``) instead of a plain string.
    """
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        texts = []
        for block in content:
            if isinstance(block, dict) and block.get("type") == "text":
                texts.append(block.get("text", ""))
            elif isinstance(block, str):
                texts.append(block)
        return "\n".join(texts)
    return ""


def parse_json_response(raw: str) -> Any:
    """Parse a JSON reply, tolerating markdown fences and chatter around the payload."""
    text = raw.strip()
    if text.startswith("```"):
        parts = text.split("```")
        if len(parts) >= 2:
            text = parts[1]
            if text.startswith("json"):
                text = text[4:]
            text = text.strip()
    match = _JSON_BLOCK.search(text)
    if not match:
        raise ValueError("Could not find JSON in the model response")
    return json.loads(match.group(1))


class ChatModelProvider(QuestionGenerator, QuestionValidator, Categorizer, Illustrator, HealthProbe):
    """A provider backed by a LangChain chat model.

    Subclasses pick the vendor chat model and the vendor error types; prompts,
    parsing and call logging live here.
    """

    name: str = ""
    label: str = ""
    vendor_errors: tuple[type[BaseException], ...] = ()

    def __init__(
        self,
        *,
        api_key: str | None,
        model: str,
        llm: Any | None = None,
        recorder: CallRecorder | None = None,
    ) -> None:
        self._api_key = api_key
        self.model = model
        self._llm = llm
        self._recorder = recorder

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    @abstractmethod
    def _build_llm(self, *, temperature: float, max_tokens: int) -> Any:
        """Create the vendor chat model."""

    def _chat(self) -> Any:
        if self._llm is None:
            if not self.configured:
                raise ProviderError(self.name, "API key is not configured")
            self._llm = self._build_llm(temperature=0.7, max_tokens=4096)
        return self._llm

    async def _complete(self, phase: str, system: str, user: str) -> str:
        start = time.perf_counter()
        raw = ""
        error: str | None = None
        try:
            resp = await self._chat().ainvoke([SystemMessage(content=system), HumanMessage(content=user)])
            raw = _extract_llm_content(getattr(resp, "content", None))
            if not raw.strip():
                raise ProviderError(self.name, "model returned empty content")
            return raw
        except ProviderError as e:
            error = str(e)
            raise
        except (httpx.HTTPError, TimeoutError, OSError, ValueError, RuntimeError, *self.vendor_errors) as e:
            error = str(e)
            raise ProviderError(self.name, f"{phase} call failed: {e}") from e
        finally:
            await self._record(phase, user, raw, error, (time.perf_counter() - start) * 1000.0)

    async def _record(self, phase: str, request: str, response: str, error: str | None, duration_ms: float) -> None:
        if self._recorder is None:
            return
        entry = ProviderCallLog(
            task_id=current_task_id.get(),
            phase=phase,
            provider=self.name,
            model=self.model,
            status="error" if error else "success",
            request=request,
            response=response or None,
            error=error,
            duration_ms=duration_ms,
        )
        # Call logs are observability only; a failed write must not fail the call.
        with suppress(Exception):
            await self._recorder(entry)

    async def generate_questions(self, request: GenerationRequest) -> list[dict[str, Any]]:
        raw = await self._complete(
            "generation",
            prompts.generation_system_prompt(request),
            prompts.generation_user_prompt(request),
        )
        try:
            parsed = parse_json_response(raw)
        except ValueError as e:
            raise ProviderError(self.name, f"unparseable generation response: {e}") from e

        questions = parsed.get("questions") if isinstance(parsed, dict) else parsed
        if not isinstance(questions, list) or not questions:
            raise ProviderError(self.name, "no questions generated")

        generated_at = datetime.now(timezone.utc)
        return [
            {**q, "source": f"ai-generated-{self.name}", "provider": self.name, "generated_at": generated_at}
            for q in questions
            if isinstance(q, dict)
        ]

    async def validate_question(self, question: QuestionPayload) -> ValidationVerdict:
        raw = await self._complete(
            "validation",
            prompts.VALIDATION_SYSTEM_PROMPT,
            prompts.validation_user_prompt(question),
        )
        try:
            data = parse_json_response(raw)
            verdict = ValidationVerdict.model_validate(data)
        except (ValueError, ValidationError) as e:
            raise ProviderError(self.name, f"unparseable validation response: {e}") from e
        if verdict.valid is None:
            raise ProviderError(self.name, "validation response had no verdict")
        return verdict

    async def categorize_question(self, question: QuestionPayload) -> Categorization:
        raw = await self._complete(
            "categorization",
            prompts.CATEGORIZATION_SYSTEM_PROMPT,
            prompts.categorization_user_prompt(question),
        )
        try:
            return Categorization.model_validate(parse_json_response(raw))
        except (ValueError, ValidationError) as e:
            raise ProviderError(self.name, f"unparseable categorization response: {e}") from e

    async def generate_emoji(self, question: QuestionPayload) -> str:
        raw = await self._complete("illustration", prompts.EMOJI_SYSTEM_PROMPT, prompts.emoji_user_prompt(question))
        emoji = raw.strip().splitlines()[0].strip() if raw.strip() else ""
        if not emoji or len(emoji) > 16 or any(ch.isalnum() for ch in emoji):
            raise ProviderError(self.name, f"unusable emoji response: {raw[:80]!r}")
        return emoji

    async def check_health(self) -> ProviderState:
        if not self.configured:
            return ProviderState(configured=False, available=False)
        try:
            probe = self._build_llm(temperature=0.0, max_tokens=10) if self._llm is None else self._llm
            await probe.ainvoke([HumanMessage(content="Hi")])
        except (httpx.HTTPError, TimeoutError, OSError, ValueError, RuntimeError, *self.vendor_errors) as e:
            log.warning("provider_unavailable", provider=self.name, error=str(e))
            return ProviderState(
                configured=True,
                available=False,
                error=str(e),
                error_status=getattr(e, "status_code", None),
            )
        return ProviderState(configured=True, available=True, model=self.model)
