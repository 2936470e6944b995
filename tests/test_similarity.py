from __future__ import annotations

import pytest

from src.core.similarity import find_duplicates, find_similar_options, levenshtein, similarity


def _q(qid: str, sv: str | None, en: str | None = None) -> dict:
    languages = {}
    if sv is not None:
        languages["sv"] = {"text": sv}
    if en is not None:
        languages["en"] = {"text": en}
    return {"id": qid, "languages": languages}


def test_levenshtein_basics():
    assert levenshtein("", "") == 0
    assert levenshtein("abc", "") == 3
    assert levenshtein("", "abcd") == 4
    assert levenshtein("kitten", "sitting") == 3
    assert levenshtein("flaw", "lawn") == 2


def test_similarity_is_case_and_whitespace_insensitive():
    assert similarity("  Stockholm ", "stockholm") == 1.0
    assert similarity("", "") == 1.0
    assert similarity("abc", "") == 0.0


def test_similarity_ratio():
    assert similarity("kitten", "sitting") == pytest.approx(1 - 3 / 7)
    assert similarity("abcd", "abce") == pytest.approx(0.75)
    assert similarity("abc", "abd") == pytest.approx(2 / 3)


def test_similarity_is_symmetric():
    assert similarity("Vilken är huvudstaden?", "Vilken är staden?") == similarity(
        "Vilken är staden?", "Vilken är huvudstaden?"
    )


def test_find_similar_options_flags_lookalikes():
    similar = find_similar_options(["Stockholm", "Stockholms", "Oslo", "Paris"])
    assert similar == ['"Stockholm" ~ "Stockholms"']
    assert find_similar_options(["Åtta", "Sex", "Tio", "Fyra"]) == []


def test_find_duplicates_sorted_by_similarity():
    questions = [
        _q("1", "Vilken är Sveriges huvudstad?"),
        _q("2", "Vilken är Sveriges huvudstad"),
        _q("3", "Vilken är Norges huvudstad?"),
        _q("4", "Hur många ben har en spindel?"),
    ]
    pairs = find_duplicates(questions, "sv", 0.85)

    assert [p.pair_id for p in pairs][0] == "1-2"
    assert all(p.similarity >= 85 for p in pairs)
    assert [p.similarity for p in pairs] == sorted((p.similarity for p in pairs), reverse=True)
    assert not any("4" in p.pair_id.split("-") for p in pairs)


def test_find_duplicates_exact_match_is_100():
    pairs = find_duplicates([_q("b", "Samma fråga här"), _q("a", "samma fråga här ")], "sv")
    assert len(pairs) == 1
    assert pairs[0].similarity == 100
    assert pairs[0].pair_id == "a-b"
    assert pairs[0].text1 == "Samma fråga här"


def test_find_duplicates_skips_missing_language():
    questions = [_q("1", "Vilken är Sveriges huvudstad?"), _q("2", None, "Vilken är Sveriges huvudstad?")]
    assert find_duplicates(questions, "sv") == []
    assert find_duplicates(questions, "en") == []


def test_find_duplicates_each_pair_once():
    questions = [_q("1", "Samma text"), _q("1", "Samma text"), _q("2", "Samma text")]
    pairs = find_duplicates(questions, "sv")
    assert sorted(p.pair_id for p in pairs) == ["1-1", "1-2"]


def test_duplicate_pair_serializes_camel_case():
    pairs = find_duplicates([_q("1", "Samma text"), _q("2", "Samma text")], "sv")
    dumped = pairs[0].model_dump(by_alias=True)
    assert dumped["pairId"] == "1-2"
    assert dumped["question1"]["id"] == "1"
