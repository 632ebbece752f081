"""Prompt safety classification."""

from __future__ import annotations

import re
from typing import Iterable, Pattern, Protocol

DEFAULT_DENYLIST: tuple[str, ...] = (
    r"\b(nude|naked|sex|porn|explicit)\b",
    r"\b(violence|kill|murder|death)\b",
    r"\b(hate|racist|discriminat)\b",
)


class ContentClassifier(Protocol):
    def is_unsafe(self, text: str) -> bool:
        ...


class RegexDenylistClassifier:
    """Flags text matching any of a fixed set of case-insensitive patterns.

    Trivially bypassed by misspellings; swap in a model-backed classifier with
    the same ``is_unsafe`` method for anything stronger.
    """

    def __init__(self, patterns: Iterable[str] = DEFAULT_DENYLIST) -> None:
        self._patterns: list[Pattern[str]] = [re.compile(p, re.IGNORECASE) for p in patterns]

    def is_unsafe(self, text: str) -> bool:
        return any(pattern.search(text) for pattern in self._patterns)
