"""Prepare incoming questions for import: normalize, validate structure, block duplicates."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from src.core.question_validation import validate_questions
from src.core.similarity import DUPLICATE_THRESHOLD, find_duplicates
from src.models.question_models import ImportStats

DEFAULT_CATEGORY = "General"
DEFAULT_AGE_GROUP = "adults"

_AUDIENCE_TO_AGE_GROUP = {
    "kid": "children",
    "children": "children",
    "youth": "youth",
    "medium": "youth",
    "adult": "adults",
    "adults": "adults",
    "difficult": "adults",
}


def _language_block(block: dict[str, Any] | None) -> dict[str, Any]:
    block = block or {}
    return {
        "text": block.get("text") or "",
        "options": block.get("options") if isinstance(block.get("options"), list) else [],
        "explanation": block.get("explanation") or "",
    }


def ensure_language_structure(question: dict[str, Any]) -> dict[str, Any]:
    """Return a copy with both ``sv`` and ``en`` blocks and normalized metadata.

    A language missing a field borrows it from the other language, so a
    single-language question still passes through the bilingual pipeline.
    """
    normalized = dict(question)
    languages = normalized.get("languages")
    if not languages:
        languages = {
            "sv": {
                "text": normalized.get("text"),
                "options": normalized.get("options"),
                "explanation": normalized.get("explanation"),
            }
        }

    sv = _language_block(languages.get("sv"))
    en = _language_block(languages.get("en"))
    normalized["languages"] = {
        "sv": {
            "text": sv["text"] or en["text"],
            "options": sv["options"] if len(sv["options"]) == 4 else en["options"],
            "explanation": sv["explanation"] or en["explanation"],
        },
        "en": {
            "text": en["text"] or sv["text"],
            "options": en["options"] if len(en["options"]) == 4 else sv["options"],
            "explanation": en["explanation"] or sv["explanation"],
        },
    }

    categories = normalized.get("categories")
    if not isinstance(categories, list) or not categories:
        single = normalized.get("category")
        categories = [single] if isinstance(single, str) else []
    categories = [c.strip() for c in categories if isinstance(c, str) and c.strip()]
    normalized["categories"] = categories or [DEFAULT_CATEGORY]

    age_groups = normalized.get("age_groups") or normalized.get("ageGroups")
    if not isinstance(age_groups, list) or not age_groups:
        audience = normalized.get("audience") or normalized.get("difficulty")
        mapped = _AUDIENCE_TO_AGE_GROUP.get(str(audience or ""))
        age_groups = [mapped] if mapped else []
    normalized["age_groups"] = list(dict.fromkeys(age_groups)) or [DEFAULT_AGE_GROUP]

    normalized["target_audience"] = (
        normalized.get("target_audience") or normalized.get("targetAudience") or "swedish"
    )

    correct_option = normalized.get("correct_option", normalized.get("correctOption"))
    if isinstance(correct_option, str):
        try:
            correct_option = int(correct_option)
        except ValueError:
            pass
    normalized["correct_option"] = correct_option

    for legacy in ("ageGroups", "targetAudience", "correctOption"):
        normalized.pop(legacy, None)
    return normalized


def prepare_questions_for_import(
    raw_questions: list[dict[str, Any]],
    existing_questions: list[dict[str, Any]],
    *,
    language: str = "sv",
    threshold: float = DUPLICATE_THRESHOLD,
) -> tuple[list[dict[str, Any]], ImportStats]:
    """Assign ids, tag structural validity and drop duplicates of the existing bank.

    Structurally invalid questions are still imported, flagged with
    ``ai_validated=False`` and a structure verdict, so an operator can fix them.
    """
    existing = [ensure_language_structure(q) for q in existing_questions]
    incoming = [
        ensure_language_structure(q if q.get("id") else {**q, "id": str(uuid4())})
        for q in raw_questions
    ]

    structure = validate_questions(incoming, language)
    invalid_by_id = {r.question_id: r for r in structure["results"] if r.question_id}

    incoming_ids = {q["id"] for q in incoming}
    existing_ids = {q["id"] for q in existing}
    duplicate_ids: set[str] = set()
    for pair in find_duplicates(existing + incoming, language, threshold):
        id1 = pair.question1.get("id")
        id2 = pair.question2.get("id")
        # Existing questions come first, so an incoming question is usually question2.
        if id2 in incoming_ids:
            duplicate_ids.add(id2)
        if id1 in incoming_ids and id2 in existing_ids:
            duplicate_ids.add(id1)

    now = datetime.now(timezone.utc)
    to_import: list[dict[str, Any]] = []
    for question in incoming:
        if question["id"] in duplicate_ids:
            continue
        invalid = invalid_by_id.get(question["id"])
        if invalid is not None:
            errors = invalid.errors or ["Structure validation failed"]
            to_import.append(
                {
                    **question,
                    "ai_validated": False,
                    "ai_validation_result": {
                        "valid": False,
                        "validation_type": "structure",
                        "issues": errors,
                        "reasoning": f"Structure validation: {', '.join(errors)}",
                    },
                }
            )
        else:
            to_import.append(
                {
                    **question,
                    "ai_validated": True,
                    "ai_validated_at": now,
                    "ai_validation_result": {
                        "valid": True,
                        "validation_type": "structure",
                        "issues": [],
                        "reasoning": "Structure validation: passed at import",
                    },
                }
            )

    stats = ImportStats(
        total_incoming=len(incoming),
        duplicates_blocked=len(duplicate_ids),
        invalid_count=len(invalid_by_id),
    )
    return to_import, stats
