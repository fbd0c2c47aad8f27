"""Word-count token heuristic.

One token ≈ 0.75 words. Used everywhere a token budget matters (chunk sizing,
context packing) instead of a real tokenizer.
"""

from __future__ import annotations

import math

_WORDS_PER_TOKEN = 0.75


def _words(text: str) -> list[str]:
    return text.split()


def estimate_tokens(text: str) -> int:
    """Return ``ceil(word_count / 0.75)`` for *text* (0 for blank text)."""
    return math.ceil(len(_words(text)) / _WORDS_PER_TOKEN)


def truncate_to_tokens(text: str, max_tokens: int) -> str:
    """Keep the first ``floor(max_tokens * 0.75)`` words of *text*.

    Text that already fits is returned unchanged. Truncated text is re-joined
    with single spaces; original inter-word whitespace is not preserved.
    """
    words = _words(text)
    max_words = math.floor(max_tokens * _WORDS_PER_TOKEN)
    if len(words) <= max_words:
        return text
    return " ".join(words[:max(0, max_words)])
