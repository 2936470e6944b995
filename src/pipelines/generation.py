"""Question generation: generate, screen, illustrate, store, validate."""

from __future__ import annotations

from typing import Any

import structlog
from pymongo import ReplaceOne, UpdateOne

from src.core.consensus import ConsensusValidator
from src.core.errors import ConfigurationError, ConsensusUnavailableError, PipelineError
from src.core.fallback import run_with_fallback
from src.core.question_import import prepare_questions_for_import
from src.models.provider_models import Purpose
from src.models.question_models import GenerationRequest, QuestionPayload
from src.models.task_models import GenerationPayload
from src.pipelines.base import TaskContext
from src.pipelines.illustration import illustrate, illustration_fields
from src.pipelines.validation import verdict_fields
from src.providers.base import QuestionGenerator

log = structlog.get_logger(__name__)


async def run_generation(ctx: TaskContext) -> dict[str, Any]:
    payload = GenerationPayload.model_validate(ctx.data)
    request = GenerationRequest(amount=payload.amount, category=payload.category, age_group=payload.age_group)

    generators = await ctx.registry.providers_for(Purpose.generation)
    if not generators:
        raise ConfigurationError("No AI provider is enabled for question generation")

    await ctx.progress.report(
        "generating",
        completed=0,
        total=payload.amount,
        details=f"Generating {payload.amount} questions",
    )
    outcome = await run_with_fallback(
        QuestionGenerator,
        lambda adapter: adapter.generate_questions(request),
        generators,
        preferred=payload.provider,
        rng=ctx.rng,
    )
    if outcome is None:
        raise PipelineError("Every AI provider failed to generate questions")
    generated = outcome.result[: payload.amount]
    log.info("questions_generated", task_id=ctx.task_id, provider=outcome.provider, count=len(generated))

    await ctx.progress.report("screening", total=len(generated), details="Checking structure and duplicates")
    existing = await ctx.mongo.load_questions()
    questions, stats = prepare_questions_for_import(generated, existing)
    if not questions:
        raise PipelineError(
            f"None of the {len(generated)} generated questions survived the duplicate check"
        )
    total = len(questions)

    # Illustration failures are counted; the question is stored without an emoji.
    illustrators = await ctx.registry.providers_for(Purpose.illustration)
    illustrated = 0
    illustration_failed = 0
    for index, question in enumerate(questions, start=1):
        result = await illustrate(question, illustrators, rng=ctx.rng) if illustrators else None
        if result is None:
            illustration_failed += 1
        else:
            question.update(illustration_fields(result, ctx.now()))
            illustrated += 1
        await ctx.progress.report(
            "illustrating",
            completed=index,
            total=total,
            details=f"{illustrated} of {total} emojis generated",
            counters={"illustrated": illustrated, "illustrationFailed": illustration_failed},
        )

    await ctx.progress.report("saving", completed=total, total=total, details=f"Saving {total} questions")
    now = ctx.now()
    writer = ctx.mongo.batch_writer("questions")
    for question in questions:
        doc = {**question, "created_at": now, "created_by_task": ctx.task_id}
        writer.add(ReplaceOne({"id": question["id"]}, doc, upsert=True))
    await writer.flush()

    validation = await _validate_generated(ctx, questions)

    return {
        "requested": payload.amount,
        "generated": len(generated),
        "imported": total,
        "duplicatesBlocked": stats.duplicates_blocked,
        "invalid": stats.invalid_count,
        "illustrated": illustrated,
        "illustrationFailed": illustration_failed,
        "validation": validation,
        "provider": outcome.provider,
        "questionIds": [q["id"] for q in questions],
    }


async def _validate_generated(ctx: TaskContext, questions: list[dict[str, Any]]) -> dict[str, Any]:
    """Consensus-validate the structurally valid questions and store each verdict."""
    validator = ConsensusValidator(await ctx.registry.providers_for(Purpose.validation))
    candidates = [q for q in questions if q.get("ai_validated")]
    summary = {"valid": 0, "invalid": 0, "failed": 0, "skipped": len(questions) - len(candidates)}
    if not validator.providers:
        log.warning("generation_validation_skipped", task_id=ctx.task_id, reason="no validation providers")
        summary["skipped"] = len(questions)
        return summary

    writer = ctx.mongo.batch_writer("questions")
    total = len(candidates)
    for index, question in enumerate(candidates, start=1):
        try:
            verdict = await validator.validate(QuestionPayload.from_document(question, "sv"))
        except ConsensusUnavailableError as e:
            summary["failed"] += 1
            log.warning("generated_question_validation_failed", task_id=ctx.task_id, question_id=question["id"], error=str(e))
        else:
            summary["valid" if verdict.valid else "invalid"] += 1
            writer.add(UpdateOne({"id": question["id"]}, {"$set": verdict_fields(verdict, ctx.now())}))

        await ctx.progress.report(
            "validating",
            completed=index,
            total=total,
            details=f"{index} of {total} questions validated",
            counters={"validated": summary["valid"] + summary["invalid"], "validationFailed": summary["failed"]},
        )

    await writer.flush()
    return summary
