"""Text helpers for search-index construction."""

from __future__ import annotations

from typing import Iterable, List


def tokenize(text: str) -> List[str]:
    """Lower-case and split on whitespace. No stemming, no stopword removal."""

    if not text:
        return []
    return text.lower().split()


def dedupe(values: Iterable[str]) -> List[str]:
    """Drop empty and repeated values, keeping first-seen order."""

    return list(dict.fromkeys(value for value in values if value))
