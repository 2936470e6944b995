"""Consensus validation pipelines (single question and batch)."""

from __future__ import annotations

from typing import Any

import structlog
from pymongo import UpdateOne

from src.core.consensus import ConsensusValidator
from src.core.errors import ConfigurationError, ConsensusUnavailableError
from src.models.provider_models import Purpose
from src.models.question_models import QuestionPayload
from src.models.task_models import BatchValidationPayload, ValidationPayload
from src.models.validation_models import AggregateVerdict
from src.pipelines.base import TaskContext

log = structlog.get_logger(__name__)


def verdict_fields(verdict: AggregateVerdict, now) -> dict[str, Any]:
    """Question fields that record an AI verdict."""
    return {
        "ai_validated": verdict.valid,
        "ai_validation_result": {**verdict.to_document(), "validationType": "ai-consensus"},
        "ai_validated_at": now,
    }


async def _validator(ctx: TaskContext) -> ConsensusValidator:
    validator = ConsensusValidator(await ctx.registry.providers_for(Purpose.validation))
    if not validator.providers:
        raise ConfigurationError("No AI provider is enabled for validation")
    return validator


async def run_validation(ctx: TaskContext) -> dict[str, Any]:
    payload = ValidationPayload.model_validate(ctx.data)
    validator = await _validator(ctx)

    await ctx.progress.report(
        "validating",
        completed=0,
        total=1,
        details=f"Asking {len(validator.providers)} AI providers",
    )
    verdict = await validator.validate(
        QuestionPayload(
            question=payload.question,
            options=payload.options,
            correct_option=payload.correct_option,
            explanation=payload.explanation,
        )
    )

    if payload.question_id:
        stored = await ctx.mongo.update_question(payload.question_id, verdict_fields(verdict, ctx.now()))
        if not stored:
            log.warning("validated_question_not_found", task_id=ctx.task_id, question_id=payload.question_id)

    result = verdict.to_document()
    if payload.question_id:
        result["questionId"] = payload.question_id
    return result


async def run_batch_validation(ctx: TaskContext) -> dict[str, Any]:
    """Validate every question; one question's failure is counted, not fatal.

    The task only fails when no provider answered for any question at all.
    """
    payload = BatchValidationPayload.model_validate(ctx.data)
    validator = await _validator(ctx)
    total = len(payload.questions)

    writer = ctx.mongo.batch_writer("questions")
    counters = {"validated": 0, "failed": 0, "valid": 0, "invalid": 0}
    results: list[dict[str, Any]] = []
    provider_errors: dict[str, str] = {}

    await ctx.progress.report("validating", completed=0, total=total, details=f"0 of {total} questions validated")
    for index, item in enumerate(payload.questions, start=1):
        question = QuestionPayload(
            question=item.question,
            options=item.options,
            correct_option=item.correct_option,
            explanation=item.explanation,
        )
        try:
            verdict = await validator.validate(question)
        except ConsensusUnavailableError as e:
            counters["failed"] += 1
            provider_errors.update(e.provider_errors)
            results.append({"questionId": item.id, "error": str(e)})
            log.warning("batch_validation_item_failed", task_id=ctx.task_id, question_id=item.id, error=str(e))
        else:
            counters["validated"] += 1
            counters["valid" if verdict.valid else "invalid"] += 1
            writer.add(UpdateOne({"id": item.id}, {"$set": verdict_fields(verdict, ctx.now())}))
            results.append({"questionId": item.id, "valid": verdict.valid, "issues": verdict.issues})

        await ctx.progress.report(
            "validating",
            completed=index,
            total=total,
            details=f"{counters['validated']} of {total} questions validated, {counters['failed']} failed",
            counters=counters,
        )

    if counters["validated"] == 0:
        raise ConsensusUnavailableError(
            "Batch validation was aborted: no AI provider answered for any question",
            provider_errors,
        )

    await ctx.progress.report("saving", completed=total, total=total, details="Saving verdicts")
    await writer.flush()
    return {"total": total, **counters, "results": results}
