from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Dict, List, Optional, get_args

from .schemas import ConcernType

logger = logging.getLogger(__name__)

DEFAULT_PATH = Path(__file__).resolve().parent / "data" / "lexicon.json"
REQUIRED_SECTIONS = ("emotions", "intensifiers", "diminishers", "themes", "concerns", "crisis", "intents")
CONCERN_TYPES = set(get_args(ConcernType))


class LexiconError(ValueError):
    pass


@dataclass(frozen=True)
class CrisisTables:
    tiers: Dict[str, Dict[str, List[str]]]
    severity: Dict[str, int]
    flag_types: Dict[str, str]
    urgency: Dict[str, List[str]]
    protective: List[str]


@dataclass(frozen=True)
class Lexicon:
    """Keyword tables driving every classifier in the app.

    Tables are plain data so a deployment can point ``DIARY_LEXICON_PATH``
    at an edited copy of ``data/lexicon.json`` without touching code.
    """

    emotions: Dict[str, Dict[str, List[str]]]
    colors: Dict[str, str]
    default_color: str
    intensifiers: List[str]
    diminishers: List[str]
    themes: Dict[str, List[str]]
    concerns: Dict[str, List[str]]
    concern_types: Dict[str, str]
    positive_indicators: Dict[str, List[str]]
    coping: List[str]
    crisis: CrisisTables
    intents: Dict[str, List[str]]
    intent_confidence: Dict[str, float]
    version: int = 1
    _categories: Dict[str, str] = field(default_factory=dict, repr=False, compare=False)

    def __post_init__(self) -> None:
        for category, emotions in self.emotions.items():
            for name in emotions:
                self._categories[name] = category

    def category_of(self, emotion: str) -> str:
        return self._categories.get(emotion, "neutral")

    def color_of(self, emotion: str) -> str:
        return self.colors.get(emotion, self.default_color)

    def keywords_for(self, polarity: str) -> List[str]:
        return [keyword for keywords in self.emotions.get(polarity, {}).values() for keyword in keywords]


def _lower_all(values: List[str]) -> List[str]:
    return [str(value).lower() for value in values]


def parse_lexicon(payload: dict) -> Lexicon:
    missing = [section for section in REQUIRED_SECTIONS if section not in payload]
    if missing:
        raise LexiconError(f"Lexicon is missing sections: {', '.join(missing)}")
    concern_types = payload.get("concern_types", {})
    if not isinstance(concern_types, dict):
        raise LexiconError("Lexicon concern_types must be a mapping")
    unknown_types = sorted(set(concern_types.values()) - CONCERN_TYPES)
    if unknown_types:
        raise LexiconError(f"Lexicon has unknown concern types: {', '.join(unknown_types)}")
    crisis = payload["crisis"]
    try:
        tables = CrisisTables(
            tiers={
                tier: {category: _lower_all(words) for category, words in categories.items()}
                for tier, categories in crisis["tiers"].items()
            },
            severity={key: int(value) for key, value in crisis["severity"].items()},
            flag_types=dict(crisis.get("flag_types", {})),
            urgency={key: _lower_all(words) for key, words in crisis.get("urgency", {}).items()},
            protective=_lower_all(crisis.get("protective", [])),
        )
        return Lexicon(
            emotions={
                polarity: {name: _lower_all(words) for name, words in emotions.items()}
                for polarity, emotions in payload["emotions"].items()
            },
            colors=dict(payload.get("colors", {})),
            default_color=payload.get("default_color", "#808080"),
            intensifiers=_lower_all(payload["intensifiers"]),
            diminishers=_lower_all(payload["diminishers"]),
            themes={name: _lower_all(words) for name, words in payload["themes"].items()},
            concerns={name: _lower_all(words) for name, words in payload["concerns"].items()},
            concern_types=dict(payload.get("concern_types", {})),
            positive_indicators={
                name: _lower_all(words) for name, words in payload.get("positive_indicators", {}).items()
            },
            coping=_lower_all(payload.get("coping", [])),
            crisis=tables,
            intents={name: _lower_all(words) for name, words in payload["intents"].items()},
            intent_confidence={key: float(value) for key, value in payload.get("intent_confidence", {}).items()},
            version=int(payload.get("version", 1)),
        )
    except (KeyError, TypeError, AttributeError, ValueError) as exc:
        raise LexiconError(f"Malformed lexicon: {exc}") from exc


def read_lexicon(path: Path) -> Lexicon:
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise LexiconError(f"Unable to read lexicon at {path}: {exc}") from exc
    return parse_lexicon(payload)


@lru_cache(maxsize=4)
def load_lexicon(path: Optional[str] = None) -> Lexicon:
    if path:
        try:
            return read_lexicon(Path(path))
        except LexiconError as exc:
            logger.warning("Falling back to bundled lexicon: %s", exc)
    return read_lexicon(DEFAULT_PATH)
