"""Tests for the word-count token heuristic."""

from __future__ import annotations

from onyx.tokens import estimate_tokens, truncate_to_tokens


def test_estimate_tokens_empty() -> None:
    assert estimate_tokens("") == 0
    assert estimate_tokens("   \n\t ") == 0


def test_estimate_tokens_rounds_up() -> None:
    assert estimate_tokens("one two three") == 4  # 3 / 0.75
    assert estimate_tokens("a b c d") == 6  # ceil(5.33)
    assert estimate_tokens("word") == 2  # ceil(1.33)


def test_estimate_tokens_ignores_whitespace_runs() -> None:
    assert estimate_tokens("a\n\nb   c") == estimate_tokens("a b c")


def test_truncate_fits_returns_input_unchanged() -> None:
    text = "keep   this\nspacing"
    assert truncate_to_tokens(text, 100) is text


def test_truncate_keeps_floor_of_budget_in_words() -> None:
    # floor(4 * 0.75) = 3 words
    assert truncate_to_tokens("a b c d e f", 4) == "a b c"


def test_truncate_rejoins_with_single_spaces() -> None:
    assert truncate_to_tokens("a\n\nb   c d", 2) == "a"


def test_truncate_zero_budget() -> None:
    assert truncate_to_tokens("a b", 0) == ""


def test_truncated_text_fits_budget() -> None:
    text = " ".join(f"w{i}" for i in range(500))
    for budget in (1, 7, 64, 200):
        assert estimate_tokens(truncate_to_tokens(text, budget)) <= budget
