"""
Token budget helpers.

Prompt budgets across the platform use the same character-based estimate:
one token is roughly four characters of English text.
"""

from __future__ import annotations

import math

CHARS_PER_TOKEN = 4
TRUNCATION_MARKER = "[truncated]"


def estimate_tokens(text: str) -> int:
    """Estimate the token count of `text`."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def char_budget(max_tokens: int) -> int:
    """Character ceiling for a token budget."""
    return max(max_tokens, 0) * CHARS_PER_TOKEN


def escape_marker(text: str) -> str:
    """Rewrite the truncation marker inside user text so it cannot pass for a cut."""
    return text.replace(TRUNCATION_MARKER, "(truncated)")


def truncate_to_budget(text: str, max_tokens: int) -> tuple[str, bool]:
    """
    Cut `text` to fit `max_tokens` and mark the cut.

    The result is at most ``char_budget(max_tokens) + len(TRUNCATION_MARKER)``
    characters long and ends with the marker exactly when something was cut.

    Returns:
        A ``(text, truncated)`` tuple.
    """
    budget = char_budget(max_tokens)
    if len(text) <= budget:
        return text, False
    # One character of the budget goes to the newline before the marker.
    head = text[: max(budget - 1, 0)].rstrip()
    if not head:
        return TRUNCATION_MARKER, True
    return f"{head}\n{TRUNCATION_MARKER}", True
