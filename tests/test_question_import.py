from __future__ import annotations

from src.core.question_import import (
    DEFAULT_AGE_GROUP,
    DEFAULT_CATEGORY,
    ensure_language_structure,
    prepare_questions_for_import,
)
from tests.fakes import CAPITAL, OCEAN, SPIDER


def test_ensure_language_structure_from_flat_question():
    normalized = ensure_language_structure(
        {
            "id": "x",
            "text": "Hur många ben har en spindel?",
            "options": ["Åtta", "Sex", "Tio", "Fyra"],
            "explanation": "Spindlar har åtta ben.",
            "correctOption": "0",
            "difficulty": "kid",
        }
    )

    assert normalized["languages"]["sv"]["text"] == "Hur många ben har en spindel?"
    # The missing language borrows from the present one.
    assert normalized["languages"]["en"] == normalized["languages"]["sv"]
    assert normalized["correct_option"] == 0
    assert normalized["age_groups"] == ["children"]
    assert normalized["categories"] == [DEFAULT_CATEGORY]
    assert normalized["target_audience"] == "swedish"
    assert "correctOption" not in normalized


def test_ensure_language_structure_defaults():
    normalized = ensure_language_structure({"id": "y", "category": " History ", "languages": {"sv": {"text": "t"}}})
    assert normalized["categories"] == ["History"]
    assert normalized["age_groups"] == [DEFAULT_AGE_GROUP]
    assert normalized["languages"]["en"]["options"] == []


def test_prepare_assigns_ids_and_marks_structure_valid():
    to_import, stats = prepare_questions_for_import([CAPITAL, SPIDER], [])

    assert len(to_import) == 2
    assert all(q["id"] for q in to_import)
    assert len({q["id"] for q in to_import}) == 2
    assert all(q["ai_validated"] is True for q in to_import)
    assert to_import[0]["ai_validation_result"]["validation_type"] == "structure"
    assert stats.total_incoming == 2
    assert stats.duplicates_blocked == 0
    assert stats.invalid_count == 0


def test_prepare_blocks_duplicates_of_existing_bank():
    existing = [{**CAPITAL, "id": "existing-1"}]
    to_import, stats = prepare_questions_for_import([CAPITAL, OCEAN], existing)

    assert stats.duplicates_blocked == 1
    assert [q["languages"]["sv"]["text"] for q in to_import] == ["Vilket är världens största hav?"]


def test_prepare_flags_invalid_structure_but_keeps_question():
    broken = {**SPIDER, "id": "broken", "categories": ["Animals"]}
    broken["languages"] = {
        "sv": {"text": "Ben?", "options": ["Åtta", "Sex", "Tio", "Fyra"], "explanation": "Spindlar har åtta ben."},
        "en": SPIDER["languages"]["en"],
    }
    to_import, stats = prepare_questions_for_import([broken], [])

    assert stats.invalid_count == 1
    assert to_import[0]["ai_validated"] is False
    result = to_import[0]["ai_validation_result"]
    assert result["valid"] is False
    assert "Question text must be at least 10 characters long" in result["issues"]


def test_prepare_blocks_duplicates_within_the_batch():
    to_import, stats = prepare_questions_for_import([{**OCEAN, "id": "first"}, {**OCEAN, "id": "second"}], [])
    assert stats.duplicates_blocked == 1
    assert [q["id"] for q in to_import] == ["first"]
