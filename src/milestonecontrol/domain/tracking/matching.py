"""Free-text target resolution for commands."""

from __future__ import annotations

from typing import Callable, Iterable, List, Optional, Sequence, TypeVar

T = TypeVar("T")

MIN_PHRASE_WORDS = 2


def _phrases(target: str) -> List[str]:
    words = target.split()
    phrases: List[str] = []
    for size in range(len(words) - 1, MIN_PHRASE_WORDS - 1, -1):
        for start in range(0, len(words) - size + 1):
            phrases.append(" ".join(words[start : start + size]))
    return phrases


def fuzzy_find(target: str, candidates: Iterable[T], text: Callable[[T], str]) -> Optional[T]:
    """Return the first candidate whose text contains ``target`` (case-insensitive).

    ``candidates`` must already be in creation order; the earliest match wins.
    When the whole target matches nothing, its contiguous sub-phrases of at
    least two words are tried, longest first and left to right, so
    ``"Cockpit file oversight"`` still resolves ``"File oversight system"``.
    """

    needle = " ".join(target.lower().split())
    if not needle:
        return None
    ordered: Sequence[T] = list(candidates)
    haystacks = [" ".join(text(item).lower().split()) for item in ordered]
    for item, haystack in zip(ordered, haystacks):
        if needle in haystack:
            return item
    for phrase in _phrases(needle):
        for item, haystack in zip(ordered, haystacks):
            if phrase in haystack:
                return item
    return None


__all__ = ["MIN_PHRASE_WORDS", "fuzzy_find"]
