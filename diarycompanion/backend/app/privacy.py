from __future__ import annotations

import re
from typing import List, Pattern, Tuple

EMAIL_RE = re.compile(r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b")
SSN_RE = re.compile(r"\b\d{3}-\d{2}-\d{4}\b")
CARD_RE = re.compile(r"\b\d{4}[-\s]?\d{4}[-\s]?\d{4}[-\s]?\d{4}\b")
PHONE_RE = re.compile(r"\b\d{3}[-.]?\d{3}[-.]?\d{4}\b")
ADDRESS_RE = re.compile(
    r"\b\d+\s+(?:[A-Za-z]+\s+){1,3}"
    r"(?:street|st|avenue|ave|road|rd|highway|hwy|square|sq|trail|trl|drive|dr|court|ct|"
    r"parkway|pkwy|circle|cir|boulevard|blvd)\b",
    re.I,
)
FULL_NAME_RE = re.compile(r"\b[A-Z][a-z]+\s[A-Z][a-z]+\b")

# Card numbers before phone numbers: a card contains phone-shaped runs.
PATTERNS: List[Tuple[str, Pattern[str]]] = [
    ("email", EMAIL_RE),
    ("ssn", SSN_RE),
    ("credit_card", CARD_RE),
    ("phone", PHONE_RE),
    ("address", ADDRESS_RE),
]


def find_pii(text: str, include_names: bool = True) -> List[str]:
    found = [kind for kind, pattern in PATTERNS if pattern.search(text or "")]
    if include_names and FULL_NAME_RE.search(text or ""):
        found.append("name")
    return found


def anonymize(text: str, include_names: bool = True) -> str:
    content = text or ""
    for kind, pattern in PATTERNS:
        content = pattern.sub(f"[{kind}]", content)
    if include_names:
        content = FULL_NAME_RE.sub("[name]", content)
    return content
