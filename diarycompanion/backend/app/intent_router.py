from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional

from .lexicon import Lexicon, load_lexicon
from .text_utils import matched_phrases, normalize_text

INTENT_ORDER = ["crisis_help", "celebration", "guidance_request", "emotional_support", "reflection"]
DEFAULT_INTENT = "casual_chat"
DEFAULT_CONFIDENCE = {
    "crisis_help": 0.9,
    "celebration": 0.8,
    "guidance_request": 0.7,
    "emotional_support": 0.8,
    "reflection": 0.6,
    "casual_chat": 0.5,
}


@dataclass
class IntentResult:
    intent: str
    confidence: float
    entities: List[str] = field(default_factory=list)


class IntentRouter:
    def __init__(self, lexicon: Optional[Lexicon] = None) -> None:
        self.lexicon = lexicon or load_lexicon()

    def confidence_for(self, intent: str) -> float:
        return self.lexicon.intent_confidence.get(intent, DEFAULT_CONFIDENCE.get(intent, 0.5))

    def route(self, message: str) -> IntentResult:
        text = normalize_text(message)
        for intent in INTENT_ORDER:
            hits = matched_phrases(text, self.lexicon.intents.get(intent, []), whole_word=True)
            if hits:
                return IntentResult(intent=intent, confidence=self.confidence_for(intent), entities=hits)
        return IntentResult(intent=DEFAULT_INTENT, confidence=self.confidence_for(DEFAULT_INTENT))


def route_intent(message: str) -> IntentResult:
    return IntentRouter().route(message)
