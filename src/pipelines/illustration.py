"""Emoji illustration pipelines (single question and batch)."""

from __future__ import annotations

import random
from datetime import datetime
from typing import Any, Sequence

import structlog
from pymongo import UpdateOne

from src.core.errors import ConfigurationError, PipelineError
from src.core.fallback import FallbackOutcome, run_with_fallback
from src.core.provider_registry import ProviderHandle
from src.models.provider_models import Purpose
from src.models.question_models import QuestionPayload
from src.models.task_models import BatchRegenerateEmojisPayload, RegenerateEmojiPayload
from src.pipelines.base import TaskContext
from src.providers.base import Illustrator

log = structlog.get_logger(__name__)


async def illustrate(
    question: dict[str, Any],
    illustrators: Sequence[ProviderHandle],
    *,
    preferred: str | None = None,
    rng: random.Random | None = None,
) -> FallbackOutcome[str] | None:
    payload = QuestionPayload.from_document(question, "sv")
    return await run_with_fallback(
        Illustrator,
        lambda adapter: adapter.generate_emoji(payload),
        illustrators,
        preferred=preferred,
        rng=rng,
    )


def illustration_fields(outcome: FallbackOutcome[str], now: datetime) -> dict[str, Any]:
    return {
        "illustration": outcome.result,
        "illustration_type": "emoji",
        "illustration_provider": outcome.provider,
        "illustration_generated_at": now,
    }


async def _illustrators(ctx: TaskContext) -> list[ProviderHandle]:
    handles = await ctx.registry.providers_for(Purpose.illustration)
    if not handles:
        raise ConfigurationError("No AI provider is enabled for illustration")
    return handles


async def run_regenerate_emoji(ctx: TaskContext) -> dict[str, Any]:
    payload = RegenerateEmojiPayload.model_validate(ctx.data)
    illustrators = await _illustrators(ctx)

    await ctx.progress.report("illustrating", completed=0, total=1, details="Generating a new emoji")
    question = await ctx.mongo.get_question(payload.question_id)
    if question is None:
        raise PipelineError(f"Question {payload.question_id} was not found")

    outcome = await illustrate(question, illustrators, preferred=payload.provider, rng=ctx.rng)
    if outcome is None:
        raise PipelineError("Every AI provider failed to generate an emoji")

    await ctx.mongo.update_question(payload.question_id, illustration_fields(outcome, ctx.now()))
    return {"questionId": payload.question_id, "emoji": outcome.result, "provider": outcome.provider}


async def run_batch_regenerate_emojis(ctx: TaskContext) -> dict[str, Any]:
    payload = BatchRegenerateEmojisPayload.model_validate(ctx.data)
    illustrators = await _illustrators(ctx)
    question_ids = list(dict.fromkeys(payload.question_ids))
    total = len(question_ids)

    found = {q["id"]: q for q in await ctx.mongo.get_questions(question_ids)}
    writer = ctx.mongo.batch_writer("questions")
    generated = 0
    failed = 0
    missing: list[str] = []

    await ctx.progress.report("illustrating", completed=0, total=total, details=f"0 of {total} emojis generated")
    for index, question_id in enumerate(question_ids, start=1):
        question = found.get(question_id)
        if question is None:
            missing.append(question_id)
            failed += 1
        else:
            outcome = await illustrate(question, illustrators, rng=ctx.rng)
            if outcome is None:
                failed += 1
            else:
                writer.add(UpdateOne({"id": question_id}, {"$set": illustration_fields(outcome, ctx.now())}))
                generated += 1

        await ctx.progress.report(
            "illustrating",
            completed=index,
            total=total,
            details=f"{generated} of {total} emojis generated, {failed} failed",
            counters={"generated": generated, "failed": failed},
        )

    if generated == 0:
        raise PipelineError(f"No emoji could be generated for any of the {total} questions")

    await ctx.progress.report("saving", completed=total, total=total, details="Saving emojis")
    await writer.flush()
    if missing:
        log.warning("emoji_regeneration_missing_questions", task_id=ctx.task_id, missing=len(missing))
    return {"total": total, "generated": generated, "failed": failed, "missing": missing}
