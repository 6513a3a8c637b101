from __future__ import annotations

import allure

from unit_pipeline.extraction.patterns import match_spans, matched_categories, normalize_text

pytestmark = [
    allure.epic("Extraction"),
    allure.feature("Span Detection"),
]


def test_deadline_and_commitment_phrases_are_matched() -> None:
    text = "I need to finish the report by Friday for my manager Sarah."

    matches = match_spans(text)

    by_pattern = {match.pattern_id: match for match in matches}
    deadline = by_pattern["deadline"]
    assert deadline.text_excerpt == "by Friday"
    assert text[deadline.char_start : deadline.char_end] == "by Friday"
    assert by_pattern["need_to"].text_excerpt == "I need to"
    assert by_pattern["relationship"].text_excerpt == "my manager"
    assert matched_categories(matches) == {"commitment", "relationship"}


def test_matches_are_ordered_by_position() -> None:
    matches = match_spans("Maybe I will call her. I'm so worried about it.")

    starts = [match.char_start for match in matches]
    assert starts == sorted(starts)
    assert {match.pattern_id for match in matches} >= {"hedge", "will", "emotion_word"}


def test_text_without_signals_yields_no_spans() -> None:
    assert match_spans("The weather report mentioned clouds.") == []


def test_normalize_collapses_whitespace() -> None:
    assert normalize_text("  I   need\n\tto   go  ") == "I need to go"
