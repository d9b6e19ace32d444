from __future__ import annotations

import statistics
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, List, Optional

from .lexicon import Lexicon, load_lexicon
from .schemas import ConcernLevel, Emotion, EmotionalAnalysis, SentimentScore
from .text_utils import clamp, contains_phrase, find_occurrences, matched_phrases, normalize_text

BASE_INTENSITY = 5
MODIFIER_STEP = 2
CONTEXT_WINDOW = 50
MAX_EMOTIONS = 5
MIN_THEME_MATCHES = 2


@dataclass
class TextAnalysis:
    emotions: List[Emotion] = field(default_factory=list)
    sentiment: SentimentScore = field(default_factory=SentimentScore)
    intensity: int = 0
    confidence: float = 0.0


class EmotionAnalyzer:
    def __init__(self, lexicon: Optional[Lexicon] = None) -> None:
        self.lexicon = lexicon or load_lexicon()

    def analyze(self, text: str) -> TextAnalysis:
        content = normalize_text(text)
        if not content.strip():
            return TextAnalysis()
        emotions = self.detect_emotions(content)
        sentiment = self.score_sentiment(content)
        return TextAnalysis(
            emotions=emotions,
            sentiment=sentiment,
            intensity=overall_intensity(emotions, sentiment),
            confidence=confidence_score(emotions, len(content.strip())),
        )

    def analyze_entry(
        self,
        entry_id: Optional[int],
        content: str,
        entry_date: Optional[date] = None,
    ) -> EmotionalAnalysis:
        result = self.analyze(content)
        text = normalize_text(content)
        return EmotionalAnalysis(
            entry_id=entry_id,
            primary_emotions=result.emotions,
            sentiment=result.sentiment,
            intensity=result.intensity,
            themes=self.extract_themes(text),
            concerns=self.detect_concerns(text),
            positive_indicators=self.detect_positive_indicators(text),
            coping_mechanisms=self.detect_coping(text),
            confidence=result.confidence,
            analyzed_at=datetime.utcnow(),
            entry_date=entry_date,
        )

    def keyword_intensity(self, content: str, start: int) -> int:
        window = content[max(0, start - CONTEXT_WINDOW):start + CONTEXT_WINDOW]
        intensity = BASE_INTENSITY
        for word in self.lexicon.intensifiers:
            if contains_phrase(window, word):
                intensity += MODIFIER_STEP
        for word in self.lexicon.diminishers:
            if contains_phrase(window, word):
                intensity -= MODIFIER_STEP
        return int(clamp(intensity, 1, 10))

    def detect_emotions(self, content: str) -> List[Emotion]:
        scores: Dict[str, List[int]] = {}
        for emotions in self.lexicon.emotions.values():
            for name, keywords in emotions.items():
                for keyword in keywords:
                    for start in find_occurrences(content, keyword):
                        scores.setdefault(name, []).append(self.keyword_intensity(content, start))
        detected = [
            Emotion(
                name=name,
                intensity=int(clamp(round(statistics.mean(values)), 1, 10)),
                category=self.lexicon.category_of(name),
                color=self.lexicon.color_of(name),
            )
            for name, values in scores.items()
        ]
        detected.sort(key=lambda emotion: emotion.intensity, reverse=True)
        return detected[:MAX_EMOTIONS]

    def score_sentiment(self, content: str) -> SentimentScore:
        positive_hits = sum(content.count(word) for word in self.lexicon.keywords_for("positive"))
        negative_hits = sum(content.count(word) for word in self.lexicon.keywords_for("negative"))
        total = positive_hits + negative_hits
        if total == 0:
            return SentimentScore()
        positive = positive_hits / total
        negative = negative_hits / total
        return SentimentScore(
            positive=round(positive, 4),
            negative=round(negative, 4),
            neutral=round(max(0.0, 1 - positive - negative), 4),
            compound=round(clamp(positive - negative, -1.0, 1.0), 4),
        )

    def extract_themes(self, content: str) -> List[str]:
        return [
            theme
            for theme, keywords in self.lexicon.themes.items()
            if len(matched_phrases(content, keywords)) >= MIN_THEME_MATCHES
        ]

    def detect_concerns(self, content: str) -> List[ConcernLevel]:
        concerns: List[ConcernLevel] = []
        for category, indicators in self.lexicon.concerns.items():
            matches = matched_phrases(content, indicators)
            if not matches:
                continue
            if len(matches) > 2:
                severity = "high"
            elif len(matches) > 1:
                severity = "moderate"
            else:
                severity = "low"
            concerns.append(
                ConcernLevel(
                    type=self.lexicon.concern_types.get(category, "other"),
                    category=category,
                    severity=severity,
                    indicators=matches,
                    confidence=round(min(0.9, len(matches) * 0.3), 2),
                )
            )
        return concerns

    def detect_positive_indicators(self, content: str) -> List[str]:
        indicators: List[str] = []
        for category, keywords in self.lexicon.positive_indicators.items():
            indicators.extend(f"{category}: {keyword}" for keyword in matched_phrases(content, keywords))
        return indicators

    def detect_coping(self, content: str) -> List[str]:
        return matched_phrases(content, self.lexicon.coping)


def overall_intensity(emotions: List[Emotion], sentiment: SentimentScore) -> int:
    if not emotions:
        return 0
    average = statistics.mean(emotion.intensity for emotion in emotions)
    return int(clamp(round((average + abs(sentiment.compound) * 10) / 2), 0, 10))


def confidence_score(emotions: List[Emotion], content_length: int) -> float:
    emotion_confidence = min(1.0, len(emotions) * 0.2) if emotions else 0.0
    length_confidence = min(1.0, content_length / 500)
    return round(clamp((emotion_confidence + length_confidence) / 2, 0.0, 1.0), 3)
