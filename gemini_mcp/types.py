"""Typed response definitions for GeminiClient.

These TypedDicts document the shape of dicts returned by public API methods.
They are optional — runtime behavior is unchanged (plain dicts).
"""

from __future__ import annotations

from typing import Any, TypedDict


class GeminiResponse(TypedDict):
    """Return type of GeminiClient.generate()."""

    text: str
    finish_reason: str | None
    safety_ratings: list[dict[str, Any]] | None
