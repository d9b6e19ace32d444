from __future__ import annotations

import statistics
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence

from .lexicon import Lexicon, load_lexicon
from .schemas import (
    DataPoint,
    EmotionalAnalysis,
    EmotionalInsights,
    EmotionalPatterns,
    EmotionalTrend,
    EmotionalTrigger,
    GrowthCelebration,
    GrowthIndicators,
    PatternInsight,
    ResilienceMetrics,
)
from .text_utils import clamp

STABLE_DELTA = 0.5
RECOVERY_THRESHOLD = -0.3
NEUTRAL_SCORE = 5.0
REGENERATE_AFTER_HOURS = {"daily": 24, "weekly": 168, "monthly": 720}


def observed_at(analysis: EmotionalAnalysis) -> datetime:
    if analysis.entry_date is not None:
        return datetime.combine(analysis.entry_date, analysis.analyzed_at.time())
    return analysis.analyzed_at


def trend_direction(values: List[float]) -> str:
    if len(values) < 2:
        return "stable"
    middle = len(values) // 2
    delta = statistics.mean(values[middle:]) - statistics.mean(values[:middle])
    if abs(delta) < STABLE_DELTA:
        return "stable"
    return "increasing" if delta > 0 else "decreasing"


def trend_strength(values: List[float]) -> float:
    if len(values) < 2:
        return 0.0
    return round(min(1.0, statistics.pvariance(values) / 10), 3)


def compute_trends(analyses: Sequence[EmotionalAnalysis], timeframe: str = "weekly") -> List[EmotionalTrend]:
    points: Dict[str, List[DataPoint]] = {}
    for analysis in analyses:
        for emotion in analysis.primary_emotions:
            points.setdefault(emotion.name, []).append(
                DataPoint(date=observed_at(analysis), value=emotion.intensity)
            )
    trends: List[EmotionalTrend] = []
    for emotion, data_points in points.items():
        data_points.sort(key=lambda point: point.date)
        values = [point.value for point in data_points]
        trends.append(
            EmotionalTrend(
                emotion=emotion,
                direction=trend_direction(values),
                strength=trend_strength(values),
                timeframe=timeframe,
                data_points=data_points,
            )
        )
    return trends


def compute_triggers(analyses: Sequence[EmotionalAnalysis]) -> List[EmotionalTrigger]:
    triggers: Dict[str, EmotionalTrigger] = {}
    for analysis in analyses:
        negative = [emotion.name for emotion in analysis.primary_emotions if emotion.category == "negative"]
        if not negative:
            continue
        for theme in analysis.themes:
            trigger = triggers.setdefault(theme, EmotionalTrigger(trigger=theme, context=[theme]))
            trigger.emotions = list(dict.fromkeys(trigger.emotions + negative))
            trigger.frequency += 1
            trigger.intensity += analysis.intensity
            trigger.last_occurrence = observed_at(analysis)
    for trigger in triggers.values():
        trigger.intensity = round(trigger.intensity / trigger.frequency, 2)
    return list(triggers.values())


def recovery_speed(analyses: Sequence[EmotionalAnalysis]) -> float:
    rebounds: List[float] = []
    for previous, current in zip(analyses, analyses[1:]):
        before = previous.sentiment.compound
        after = current.sentiment.compound
        if before < RECOVERY_THRESHOLD and after > before:
            rebounds.append(after - before)
    if not rebounds:
        return NEUTRAL_SCORE
    return round(min(10.0, statistics.mean(rebounds) * 10), 2)


def coping_effectiveness(analyses: Sequence[EmotionalAnalysis]) -> float:
    coping = [analysis.sentiment.compound for analysis in analyses if analysis.coping_mechanisms]
    if not coping:
        return NEUTRAL_SCORE
    return round(clamp((statistics.mean(coping) + 1) * 5, 0.0, 10.0), 2)


def distinct_emotions(analyses: Sequence[EmotionalAnalysis]) -> set:
    return {emotion.name for analysis in analyses for emotion in analysis.primary_emotions}


def stability_score(analyses: Sequence[EmotionalAnalysis]) -> float:
    if len(analyses) < 2:
        return NEUTRAL_SCORE
    variance = statistics.pvariance([analysis.sentiment.compound for analysis in analyses])
    return round(clamp(10 - variance * 5, 0.0, 10.0), 2)


def compute_resilience(analyses: Sequence[EmotionalAnalysis]) -> ResilienceMetrics:
    if not analyses:
        return ResilienceMetrics()
    return ResilienceMetrics(
        recovery_speed=recovery_speed(analyses),
        coping_effectiveness=coping_effectiveness(analyses),
        emotional_range=float(min(10, len(distinct_emotions(analyses)))),
        stability_score=stability_score(analyses),
    )


def positive_patterns(analyses: Sequence[EmotionalAnalysis]) -> List[str]:
    counts: Dict[str, int] = {}
    for analysis in analyses:
        for indicator in analysis.positive_indicators:
            counts[indicator] = counts.get(indicator, 0) + 1
    threshold = max(2, len(analyses) * 0.3)
    return [f"Consistent {indicator}" for indicator, count in counts.items() if count >= threshold]


def growth_areas(analyses: Sequence[EmotionalAnalysis]) -> List[str]:
    counts: Dict[str, int] = {}
    for analysis in analyses:
        for concern_type in {concern.type for concern in analysis.concerns}:
            counts[concern_type] = counts.get(concern_type, 0) + 1
    threshold = max(2, len(analyses) * 0.2)
    areas = [f"Managing {concern}" for concern, count in counts.items() if count >= threshold]
    if statistics.mean(len(analysis.coping_mechanisms) for analysis in analyses) < 1:
        areas.append("Developing coping strategies")
    return areas


def compute_growth(analyses: Sequence[EmotionalAnalysis]) -> GrowthIndicators:
    if not analyses:
        return GrowthIndicators()
    insight_count = sum(
        1 for analysis in analyses for indicator in analysis.positive_indicators if indicator.startswith("insight")
    )
    complexity = statistics.mean(len(analysis.primary_emotions) for analysis in analyses)
    mechanisms = {mechanism for analysis in analyses for mechanism in analysis.coping_mechanisms}
    return GrowthIndicators(
        self_awareness=round(min(10.0, (insight_count + complexity) * 2), 2),
        emotional_vocabulary=round(min(10.0, len(distinct_emotions(analyses)) * 0.5), 2),
        coping_skills=float(min(10, len(mechanisms))),
        positive_patterns=positive_patterns(analyses),
        areas_for_growth=growth_areas(analyses),
    )


class PatternAggregator:
    """Recomputes a user's emotional patterns from their full analysis history."""

    def __init__(self, timeframe: str = "weekly") -> None:
        self.timeframe = timeframe

    def aggregate(self, analyses: Sequence[EmotionalAnalysis], user_id: int) -> EmotionalPatterns:
        ordered = sorted(analyses, key=observed_at)
        return EmotionalPatterns(
            user_id=user_id,
            trends=compute_trends(ordered, self.timeframe),
            triggers=compute_triggers(ordered),
            resilience=compute_resilience(ordered),
            growth=compute_growth(ordered),
            analysis_count=len(ordered),
            last_updated=datetime.utcnow(),
        )


def trend_outlook(trend: EmotionalTrend, lexicon: Lexicon) -> str:
    positive = lexicon.category_of(trend.emotion) == "positive"
    if trend.direction == "increasing":
        return "improving" if positive else "worsening"
    if trend.direction == "decreasing":
        return "worsening" if positive else "improving"
    return "stable"


def trend_recommendations(trend: EmotionalTrend, lexicon: Lexicon) -> List[str]:
    positive = lexicon.category_of(trend.emotion) == "positive"
    if trend.direction == "increasing" and positive:
        return [
            f"Continue the activities that bring you {trend.emotion}",
            "Reflect on what's contributing to this positive trend",
        ]
    if trend.direction == "decreasing" and not positive:
        return [
            f"Great progress in managing {trend.emotion}",
            "Consider what coping strategies have been most helpful",
        ]
    if trend.direction == "increasing" and not positive:
        return [
            f"Consider reaching out for support with {trend.emotion}",
            "Practice self-care and stress management techniques",
        ]
    return []


def build_recommendations(patterns: EmotionalPatterns) -> List[str]:
    messages: List[str] = []
    for area in patterns.growth.areas_for_growth:
        if area == "Developing coping strategies":
            messages.append("Try one small coping practice this week, like a short walk or deep breathing.")
        else:
            messages.append(f"{area} has come up repeatedly. Talking it through with someone you trust can help.")
    for trigger in sorted(patterns.triggers, key=lambda item: item.frequency, reverse=True)[:2]:
        messages.append(f"Notice how {trigger.trigger.replace('_', ' ')} affects you and plan a small reset afterwards.")
    if patterns.resilience.stability_score < 4:
        messages.append("Your mood has been swinging lately. Regular sleep and routines can steady things.")
    if not messages:
        messages.append("Your patterns look steady. Keep journaling to track how things change.")
    return messages[:5]


def generate_insights(
    patterns: Optional[EmotionalPatterns],
    user_id: int,
    timeframe: str = "weekly",
    lexicon: Optional[Lexicon] = None,
) -> EmotionalInsights:
    lexicon = lexicon or load_lexicon()
    insights = EmotionalInsights(user_id=user_id, timeframe=timeframe)
    if patterns is None or patterns.analysis_count == 0:
        insights.summary = "Not enough journal entries yet to find patterns."
        return insights
    insights.pattern_insights = [
        PatternInsight(
            pattern=f"{trend.emotion} trend",
            description=f"Your {trend.emotion} levels have been {trend.direction} over the {trend.timeframe} view",
            strength=trend.strength,
            trend=trend_outlook(trend, lexicon),
            timeframe=trend.timeframe,
            recommendations=trend_recommendations(trend, lexicon),
        )
        for trend in patterns.trends
    ]
    insights.growth_celebrations = [
        GrowthCelebration(achievement=pattern, description=f"You've been consistently showing {pattern.lower()}")
        for pattern in patterns.growth.positive_patterns
    ]
    insights.recommendations = build_recommendations(patterns)
    improving = sum(1 for item in insights.pattern_insights if item.trend == "improving")
    worsening = sum(1 for item in insights.pattern_insights if item.trend == "worsening")
    insights.summary = (
        f"Based on {patterns.analysis_count} analyzed entries: "
        f"{improving} improving and {worsening} worsening emotional trends."
    )
    return insights


def should_regenerate(insights: Optional[EmotionalInsights], timeframe: str, now: Optional[datetime] = None) -> bool:
    if insights is None or insights.timeframe != timeframe:
        return True
    now = now or datetime.utcnow()
    hours = REGENERATE_AFTER_HOURS.get(timeframe, REGENERATE_AFTER_HOURS["weekly"])
    return now - insights.generated_at > timedelta(hours=hours)
