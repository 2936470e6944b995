"""Majority-vote validation across every available validator provider."""

from __future__ import annotations

import asyncio
from typing import Sequence

import structlog

from src.core.errors import ConfigurationError, ConsensusUnavailableError
from src.core.provider_registry import ProviderHandle
from src.models.question_models import QuestionPayload
from src.models.validation_models import (
    AggregateVerdict,
    ConsensusSummary,
    ProviderErrorEntry,
    ValidationVerdict,
)
from src.providers.base import QuestionValidator

log = structlog.get_logger(__name__)


class ConsensusValidator:
    """Ask every validator concurrently and aggregate the verdicts by majority.

    Only boolean verdicts vote. A tie is invalid. When no provider produced a
    verdict the result is ``ConsensusUnavailableError``, never "invalid".
    """

    def __init__(self, providers: Sequence[ProviderHandle]) -> None:
        self._validators = [h for h in providers if h.supports(QuestionValidator)]

    @property
    def providers(self) -> list[ProviderHandle]:
        return list(self._validators)

    async def _ask(self, handle: ProviderHandle, question: QuestionPayload) -> ValidationVerdict:
        try:
            return await handle.adapter.validate_question(question)
        except Exception as e:
            log.warning("validation_provider_failed", provider=handle.name, error=str(e))
            return ValidationVerdict(valid=None, error=str(e), unavailable=True)

    async def validate(self, question: QuestionPayload) -> AggregateVerdict:
        if not self._validators:
            raise ConfigurationError("No AI provider is available for validation")

        verdicts = await asyncio.gather(*(self._ask(h, question) for h in self._validators))
        pairs = list(zip(self._validators, verdicts))
        answered = [(h, v) for h, v in pairs if v.valid is not None]

        errors = [ProviderErrorEntry(provider=h.label, error=v.error) for h, v in pairs if v.error]
        if not answered:
            raise ConsensusUnavailableError(
                "AI validation was aborted: no AI provider could validate the question",
                {e.provider: e.error for e in errors},
            )

        approving = [(h, v) for h, v in answered if v.valid is True]
        dissenting = [(h, v) for h, v in answered if v.valid is False]

        issues: list[str] = []
        for handle, verdict in dissenting:
            if verdict.issues:
                issues.extend(f"[{handle.label}] {issue}" for issue in verdict.issues)
            else:
                issues.append(f"[{handle.label}] reported a problem without details")

        suggested = next(
            (v.suggested_correct_option for _, v in dissenting if v.suggested_correct_option is not None),
            None,
        )
        reasoning = "\n\n".join(
            f"**{h.label}:** {v.reasoning.strip()}" for h, v in answered if v.reasoning.strip()
        )

        return AggregateVerdict(
            valid=len(approving) > len(dissenting),
            consensus=ConsensusSummary(valid=len(approving), invalid=len(dissenting), total=len(answered)),
            issues=issues,
            suggested_correct_option=suggested,
            reasoning=reasoning,
            provider_results={h.name: v for h, v in pairs},
            provider_errors=errors,
            providers_checked=len(answered),
        )
