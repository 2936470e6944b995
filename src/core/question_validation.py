"""Structural (non-AI) validation of quiz questions."""

from __future__ import annotations

from typing import Any

from src.core.similarity import find_similar_options
from src.models.question_models import StructureValidation

_LANGUAGE_NAMES = {"sv": "Swedish", "en": "English"}


def validate_question(question: dict[str, Any], language: str = "sv") -> StructureValidation:
    """Check one question's shape in ``language``; every problem is reported, not just the first."""
    errors: list[str] = []
    question_id = question.get("id")

    languages = question.get("languages")
    if languages is not None:
        lang = languages.get(language)
        if not lang:
            errors.append(f"Question is missing its {_LANGUAGE_NAMES.get(language, language)} translation")
            return StructureValidation(question_id=question_id, valid=False, errors=errors)
    else:
        lang = question

    text = lang.get("text") or ""
    options = lang.get("options")
    explanation = lang.get("explanation") or ""
    correct_option = question.get("correct_option")

    if len(text.strip()) < 10:
        errors.append("Question text must be at least 10 characters long")

    if not isinstance(options, list):
        errors.append("Question must have answer options")
    elif len(options) != 4:
        errors.append(f"Question must have exactly 4 answer options (has {len(options)})")
    else:
        for index, option in enumerate(options):
            if not str(option or "").strip():
                errors.append(f"Option {index + 1} is empty")

        unique = {str(option or "").strip().lower() for option in options}
        if len(unique) != len(options):
            errors.append("Several answer options are identical")

        similar = find_similar_options(str(option or "") for option in options)
        if similar:
            errors.append(f"Warning: these options look alike: {', '.join(similar)}")

    option_count = len(options) if isinstance(options, list) else 0
    if isinstance(correct_option, bool) or not isinstance(correct_option, int):
        errors.append("Question must declare its correct answer (correct_option)")
    elif not 0 <= correct_option < option_count:
        errors.append(f"Correct answer ({correct_option}) is out of range (0-{max(option_count, 1) - 1})")

    if len(explanation.strip()) < 10:
        errors.append("Explanation must be at least 10 characters long")

    if not question.get("categories"):
        errors.append("Question must have at least one category")

    if languages is not None:
        for code in ("sv", "en"):
            if not languages.get(code):
                errors.append(f"Question is missing its {_LANGUAGE_NAMES[code]} translation")

    return StructureValidation(question_id=question_id, valid=not errors, errors=errors)


def validate_questions(questions: list[dict[str, Any]], language: str = "sv") -> dict[str, Any]:
    """Validate a batch; only the failing results are returned in ``results``."""
    results = [validate_question(q, language) for q in questions]
    invalid = [r for r in results if not r.valid]
    return {
        "total": len(questions),
        "valid": len(results) - len(invalid),
        "invalid": len(invalid),
        "results": invalid,
    }
