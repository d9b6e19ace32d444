from __future__ import annotations

import re
from functools import lru_cache
from typing import List, Pattern

_QUOTE_MAP = str.maketrans({"‘": "'", "’": "'", "“": '"', "”": '"'})
_NON_WORD = re.compile(r"[^\w\s]")


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def normalize_text(text: str) -> str:
    return (text or "").translate(_QUOTE_MAP).lower()


def tokenize(text: str) -> List[str]:
    cleaned = _NON_WORD.sub(" ", normalize_text(text))
    return [word for word in cleaned.split() if len(word) > 2]


def count_words(text: str) -> int:
    return len((text or "").split())


def find_occurrences(text: str, phrase: str) -> List[int]:
    """Start offsets of non-overlapping occurrences of ``phrase`` in ``text``."""
    if not phrase:
        return []
    offsets: List[int] = []
    start = text.find(phrase)
    while start != -1:
        offsets.append(start)
        start = text.find(phrase, start + len(phrase))
    return offsets


@lru_cache(maxsize=512)
def _bounded(phrase: str) -> Pattern[str]:
    return re.compile(r"(?<!\w)" + re.escape(phrase) + r"(?!\w)")


def contains_phrase(text: str, phrase: str) -> bool:
    """Whole-word phrase test; ``so`` does not match inside ``also``."""
    return _bounded(phrase).search(text) is not None


def matched_phrases(text: str, phrases: List[str], whole_word: bool = False) -> List[str]:
    if whole_word:
        hits = [phrase for phrase in phrases if contains_phrase(text, phrase)]
    else:
        hits = [phrase for phrase in phrases if phrase in text]
    return list(dict.fromkeys(hits))
