"""Text similarity and duplicate detection for quiz questions.

Pure functions, no I/O. ``similarity`` is a normalized Levenshtein ratio over
lowercased, trimmed strings.
"""

from __future__ import annotations

from typing import Any, Iterable

from src.models.question_models import DuplicatePair

DUPLICATE_THRESHOLD = 0.85
SIMILAR_OPTION_THRESHOLD = 0.8


def levenshtein(a: str, b: str) -> int:
    """Edit distance (insert/delete/substitute, unit cost)."""
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)

    # Two-row DP: previous[j] is the distance between a[:i-1] and b[:j].
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i] + [0] * len(b)
        for j, cb in enumerate(b, start=1):
            if ca == cb:
                current[j] = previous[j - 1]
            else:
                current[j] = 1 + min(previous[j], current[j - 1], previous[j - 1])
        previous = current
    return previous[-1]


def similarity(a: str, b: str) -> float:
    """Return similarity in [0, 1]; 1.0 iff the trimmed strings match case-insensitively."""
    s1 = (a or "").strip().lower()
    s2 = (b or "").strip().lower()
    if s1 == s2:
        return 1.0
    return 1.0 - levenshtein(s1, s2) / max(len(s1), len(s2))


def find_similar_options(options: Iterable[str], threshold: float = SIMILAR_OPTION_THRESHOLD) -> list[str]:
    """Pairs of answer options that look alike, formatted for display."""
    items = list(options)
    similar: list[str] = []
    for i in range(len(items)):
        for j in range(i + 1, len(items)):
            if similarity(items[i], items[j]) > threshold:
                similar.append(f'"{items[i]}" ~ "{items[j]}"')
    return similar


def question_text(question: dict[str, Any], language: str) -> str:
    languages = question.get("languages") or {}
    return ((languages.get(language) or {}).get("text") or "").strip()


def find_duplicates(
    questions: list[dict[str, Any]],
    language: str = "sv",
    threshold: float = DUPLICATE_THRESHOLD,
) -> list[DuplicatePair]:
    """Find question pairs whose text in ``language`` is at least ``threshold`` similar.

    Every unordered pair is compared once (keyed by the sorted id pair). Pairs
    where either side lacks text in the language are skipped. The result is
    sorted by similarity, highest first.

    This is O(N^2) in the number of questions.
    """
    duplicates: list[DuplicatePair] = []
    seen: set[str] = set()

    for i in range(len(questions)):
        for j in range(i + 1, len(questions)):
            q1 = questions[i]
            q2 = questions[j]

            pair_id = "-".join(sorted([str(q1.get("id")), str(q2.get("id"))]))
            if pair_id in seen:
                continue
            seen.add(pair_id)

            text1 = question_text(q1, language)
            text2 = question_text(q2, language)
            if not text1 or not text2:
                continue

            score = similarity(text1, text2)
            if score >= threshold:
                duplicates.append(
                    DuplicatePair(
                        question1=q1,
                        question2=q2,
                        similarity=round(score * 100),
                        text1=text1,
                        text2=text2,
                        pair_id=pair_id,
                    )
                )

    duplicates.sort(key=lambda d: d.similarity, reverse=True)
    return duplicates
