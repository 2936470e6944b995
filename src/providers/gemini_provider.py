"""Google Gemini provider."""

from __future__ import annotations

from typing import Any

import httpx
import structlog
from langchain_google_genai import ChatGoogleGenerativeAI
from langchain_google_genai.chat_models import ChatGoogleGenerativeAIError

from src.models.provider_models import ProviderState
from src.providers.base import ChatModelProvider

log = structlog.get_logger(__name__)

MODELS_URL = "https://generativelanguage.googleapis.com/v1beta/models"


class GeminiProvider(ChatModelProvider):
    name = "gemini"
    label = "Google Gemini"
    vendor_errors = (ChatGoogleGenerativeAIError,)

    def __init__(self, *, transport: httpx.AsyncBaseTransport | None = None, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self._transport = transport

    def _build_llm(self, *, temperature: float, max_tokens: int) -> Any:
        # Gemini 3 models are tuned for the default temperature of 1.0.
        if self.model.startswith("gemini-3"):
            temperature = 1.0
        return ChatGoogleGenerativeAI(
            model=self.model,
            google_api_key=self._api_key,
            temperature=temperature,
            max_output_tokens=max_tokens,
        )

    async def check_health(self) -> ProviderState:
        """List the models this key can use; no tokens are spent."""
        if not self.configured:
            return ProviderState(configured=False, available=False)
        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=10.0) as client:
                resp = await client.get(MODELS_URL, params={"key": self._api_key})
            if resp.status_code >= 400:
                return self._unavailable(f"Failed to list models: {resp.text[:500]}", resp.status_code)
            models = resp.json().get("models") or []
        except (httpx.HTTPError, ValueError) as e:
            return self._unavailable(str(e), None)

        names = [
            str(m.get("name", "")).removeprefix("models/")
            for m in models
            if "generateContent" in (m.get("supportedGenerationMethods") or [])
        ]
        if not names:
            return self._unavailable("No compatible Gemini models found", None)
        model = self.model if self.model in names else names[0]
        return ProviderState(configured=True, available=True, model=model)

    def _unavailable(self, error: str, status: int | None) -> ProviderState:
        log.warning("provider_unavailable", provider=self.name, error=error)
        return ProviderState(configured=True, available=False, error=error, error_status=status)
