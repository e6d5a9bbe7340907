"""Web search placeholder (no external dependency)."""

from __future__ import annotations

from ..schemas import SearchInput

SEARCH_RESULT = "It's sunny in San Francisco, but you better look out if you're a Gemini 😈."


def search(_payload: SearchInput) -> str:
    return SEARCH_RESULT
