"""Anthropic Claude provider."""

from __future__ import annotations

from typing import Any

import anthropic
from langchain_anthropic import ChatAnthropic

from src.providers.base import ChatModelProvider


class AnthropicProvider(ChatModelProvider):
    name = "anthropic"
    label = "Anthropic Claude"
    vendor_errors = (anthropic.APIError,)

    def _build_llm(self, *, temperature: float, max_tokens: int) -> Any:
        return ChatAnthropic(
            model=self.model,
            api_key=self._api_key,
            temperature=temperature,
            max_tokens=max_tokens,
        )
