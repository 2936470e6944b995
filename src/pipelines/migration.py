"""Re-categorize and re-illustrate every stored question."""

from __future__ import annotations

from typing import Any

import structlog
from pymongo import UpdateOne

from src.core.errors import ConfigurationError
from src.core.fallback import run_with_fallback
from src.core.question_import import DEFAULT_AGE_GROUP, DEFAULT_CATEGORY, ensure_language_structure
from src.models.provider_models import Purpose
from src.models.question_models import QuestionPayload
from src.pipelines.base import TaskContext
from src.pipelines.illustration import illustrate, illustration_fields
from src.providers.base import Categorizer

log = structlog.get_logger(__name__)

MIGRATION_VERSION = "v2-reprocess"
LEGACY_FIELDS = ("difficulty", "category", "audience", "ageGroups", "targetAudience", "correctOption")


def _was_migrated(question: dict[str, Any]) -> bool:
    return (
        isinstance(question.get("age_groups"), list)
        and isinstance(question.get("categories"), list)
        and bool(question.get("target_audience"))
    )


async def run_migration(ctx: TaskContext) -> dict[str, Any]:
    # Migration rewrites the whole bank, so only providers with a confirmed health check take part.
    providers = await ctx.registry.providers_for(Purpose.migration)
    if not providers:
        raise ConfigurationError("AI migration requires at least one healthy provider enabled for migration")
    provider_names = [h.name for h in providers]

    questions = await ctx.mongo.load_questions()
    total = len(questions)
    counters = {"migrated": 0, "previouslyMigrated": 0, "failed": 0, "emojiGenerated": 0, "emojiFailed": 0}
    writer = ctx.mongo.batch_writer("questions")

    def details() -> str:
        return (
            f"{counters['migrated']} updated, {counters['emojiGenerated']} emojis created, "
            f"{counters['failed']} failed"
        )

    await ctx.progress.report("categorizing", completed=0, total=total, details=f"Migrating {total} questions")
    for index, question in enumerate(questions, start=1):
        if _was_migrated(question):
            counters["previouslyMigrated"] += 1

        normalized = ensure_language_structure(question)
        payload = QuestionPayload.from_document(normalized, "sv")
        outcome = await run_with_fallback(
            Categorizer,
            lambda adapter: adapter.categorize_question(payload),
            providers,
            rng=ctx.rng,
        )

        now = ctx.now()
        fields: dict[str, Any] = {
            "languages": normalized["languages"],
            "target_audience": "swedish",
            "migrated": True,
            "migrated_at": now,
            "migration_version": MIGRATION_VERSION,
        }
        if outcome is None:
            log.error("migration_categorization_failed", task_id=ctx.task_id, question_id=question.get("id"))
            counters["failed"] += 1
            fields.update(
                age_groups=normalized.get("age_groups") or [DEFAULT_AGE_GROUP],
                categories=normalized.get("categories") or [DEFAULT_CATEGORY],
                migration_provider="fallback",
                migration_error="categorization_failed",
            )
        else:
            categorization = outcome.result
            fields.update(
                age_groups=list(categorization.age_groups),
                categories=list(categorization.categories),
                migration_provider=outcome.provider,
                migration_reasoning=categorization.reasoning,
            )
            emoji = await illustrate(normalized, providers, rng=ctx.rng)
            if emoji is None:
                counters["emojiFailed"] += 1
            else:
                fields.update(illustration_fields(emoji, now))
                counters["emojiGenerated"] += 1
            counters["migrated"] += 1

        writer.add(
            UpdateOne(
                {"id": question.get("id")},
                {"$set": fields, "$unset": {name: "" for name in LEGACY_FIELDS}},
            )
        )
        await ctx.progress.report(
            "categorizing",
            completed=index,
            total=total,
            details=details(),
            counters=counters,
        )

    await ctx.progress.report("saving", completed=total, total=total, details="Saving migrated questions")
    await writer.flush()
    log.info("migration_summary", task_id=ctx.task_id, providers=provider_names, **counters)
    return {"total": total, **counters, "providers": provider_names}
