"""OpenAI provider."""

from __future__ import annotations

from typing import Any

import openai
from langchain_openai import ChatOpenAI

from src.providers.base import ChatModelProvider


class OpenAIProvider(ChatModelProvider):
    name = "openai"
    label = "OpenAI"
    vendor_errors = (openai.OpenAIError,)

    def _build_llm(self, *, temperature: float, max_tokens: int) -> Any:
        return ChatOpenAI(
            model=self.model,
            api_key=self._api_key,
            temperature=temperature,
            max_tokens=max_tokens,
        )
