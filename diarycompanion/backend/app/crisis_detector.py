from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence, Tuple

from .lexicon import Lexicon, load_lexicon
from .schemas import (
    CrisisResource,
    EmotionalAnalysis,
    RiskAssessment,
    RiskIndicator,
    SafetyFlagRecord,
    SafetyResponse,
)
from .text_utils import matched_phrases, normalize_text

logger = logging.getLogger(__name__)

LEVEL_ORDER = {"low": 0, "moderate": 1, "high": 2, "critical": 3}
LEVELS = ["low", "moderate", "high", "critical"]
TIER_CONFIDENCE = 0.9

CRISIS_RESOURCES = [
    CrisisResource(
        type="hotline",
        name="988 Suicide & Crisis Lifeline",
        contact="988",
        availability="24/7",
        specialization=["suicide prevention", "crisis support"],
        language=["English", "Spanish"],
        description="Free and confidential support for people in suicidal crisis or emotional distress.",
        priority=10,
    ),
    CrisisResource(
        type="emergency",
        name="Emergency Services",
        contact="911",
        availability="24/7",
        specialization=["emergency response", "immediate crisis"],
        language=["English"],
        description="Emergency services for immediate life-threatening situations.",
        priority=10,
    ),
    CrisisResource(
        type="chat",
        name="Crisis Text Line",
        contact="Text HOME to 741741",
        availability="24/7",
        specialization=["crisis support", "mental health"],
        language=["English"],
        description="Free, 24/7 support for those in crisis via text message.",
        priority=9,
    ),
    CrisisResource(
        type="hotline",
        name="SAMHSA National Helpline",
        contact="1-800-662-4357",
        availability="24/7",
        specialization=["mental health", "substance abuse"],
        language=["English", "Spanish"],
        description="Treatment referral and information for mental health and substance use disorders.",
        priority=8,
    ),
]

MIN_PRIORITY = {"critical": 9, "high": 8, "moderate": 7}

SAFETY_MESSAGES = {
    "critical": (
        "I'm very concerned about your safety right now. You mentioned some thoughts that worry me deeply. "
        "Your life has value, and there are people who want to help you through this. "
        "Please reach out to emergency services or a crisis line immediately."
    ),
    "high": (
        "I'm concerned about some of the things you've shared. It sounds like you're going through an "
        "incredibly difficult time. You don't have to face this alone, and there are people trained to "
        "help you through it."
    ),
    "moderate": (
        "I can hear that you're struggling right now. It's important to take these feelings seriously and "
        "reach out for support. You deserve care during this difficult time."
    ),
    "low": (
        "I'm here to support you through whatever you're experiencing. It's okay to have difficult "
        "emotions, and I'm glad you're sharing them with me."
    ),
}

FOLLOW_UP_ACTIONS = {
    "critical": [
        "Contact emergency services (911) if you're in immediate danger",
        "Call or text the 988 Suicide & Crisis Lifeline",
        "Go to your nearest emergency room",
        "Stay with a trusted friend or family member",
    ],
    "high": [
        "Consider calling a crisis line to talk with someone",
        "Reach out to a trusted friend, family member, or therapist",
        "Remove any means of self-harm from your immediate environment",
        "Create a safety plan with specific coping strategies",
    ],
    "moderate": [
        "Consider speaking with a mental health professional",
        "Reach out to supportive friends or family",
        "Practice self-care and stress management techniques",
        "Monitor your mood and seek help if it worsens",
    ],
    "low": [
        "Continue practicing self-care",
        "Stay connected with supportive people",
        "Consider journaling or other healthy coping strategies",
    ],
}

ESCALATION_TRIGGERS = {
    "critical": [
        "If you have a specific plan to harm yourself",
        "If you have access to means of self-harm",
        "If you feel you cannot keep yourself safe",
    ],
    "high": [
        "If thoughts of self-harm become more frequent or intense",
        "If you start making specific plans",
        "If you feel unable to cope or stay safe",
    ],
    "moderate": [
        "If your mood continues to decline",
        "If you start having thoughts of self-harm",
        "If you feel overwhelmed and unable to cope",
    ],
    "low": [],
}

IMMEDIATE_ACTIONS = {
    "critical": [
        "Contact emergency services (911) immediately",
        "Call or text 988",
        "Go to the nearest emergency room",
        "Remove means of self-harm",
        "Stay with a trusted person",
    ],
    "high": [
        "Call a crisis line for immediate support",
        "Contact a mental health professional",
        "Reach out to a trusted friend or family member",
        "Create a safety plan",
        "Remove potential means of harm",
    ],
    "moderate": [
        "Schedule an appointment with a mental health professional",
        "Increase social support",
        "Practice coping strategies",
        "Monitor mood closely",
    ],
    "low": [
        "Continue self-care practices",
        "Maintain social connections",
        "Use healthy coping strategies",
    ],
}

MONITORING_RECOMMENDATIONS = {
    "critical": [
        "Continuous supervision required",
        "Immediate professional intervention",
        "Safety plan implementation",
        "Follow-up within 24 hours",
    ],
    "high": [
        "Daily check-ins recommended",
        "Professional assessment within 48 hours",
        "Safety planning session",
        "Increased support system activation",
    ],
    "moderate": [
        "Regular check-ins (2-3 times per week)",
        "Professional consultation recommended",
        "Mood monitoring",
        "Coping strategy review",
    ],
    "low": [
        "Weekly check-ins",
        "Continue current support",
        "Self-monitoring encouraged",
    ],
}


def max_level(first: str, second: str) -> str:
    return first if LEVEL_ORDER[first] >= LEVEL_ORDER[second] else second


def step_level(level: str, delta: int) -> str:
    index = max(0, min(len(LEVELS) - 1, LEVEL_ORDER[level] + delta))
    return LEVELS[index]


def crisis_resources(level: str) -> List[CrisisResource]:
    threshold = MIN_PRIORITY.get(level)
    if threshold is None:
        return []
    resources = [resource for resource in CRISIS_RESOURCES if resource.priority >= threshold]
    return sorted(resources, key=lambda resource: resource.priority, reverse=True)


def generate_safety_response(level: str) -> SafetyResponse:
    return SafetyResponse(
        level=level,
        message=SAFETY_MESSAGES[level],
        resources=crisis_resources(level),
        follow_up_actions=list(FOLLOW_UP_ACTIONS[level]),
        escalation_triggers=list(ESCALATION_TRIGGERS[level]),
    )


def escalate_if_needed(assessment: RiskAssessment) -> Tuple[bool, str]:
    if assessment.level == "critical":
        return True, "Critical risk level detected; immediate intervention required."
    if assessment.level == "high":
        acute = [
            indicator
            for indicator in assessment.indicators
            if "suicidal" in indicator.type or "self_harm" in indicator.type
        ]
        if acute:
            return True, "High risk with suicidal or self-harm indicators detected."
    return False, ""


class CrisisDetector:
    """Rule-based risk tiering over diary text and recent chat messages.

    ``urgency_requires_indicator`` keeps urgency phrases ("tonight", "have a
    plan") from raising a text with no crisis indicator above ``low``; they
    only push an already elevated level up one step.
    """

    def __init__(
        self,
        lexicon: Optional[Lexicon] = None,
        window: int = 5,
        urgency_window: int = 3,
        urgency_requires_indicator: bool = True,
        min_protective_factors: int = 2,
    ) -> None:
        self.lexicon = lexicon or load_lexicon()
        self.tables = self.lexicon.crisis
        self.window = max(1, window)
        self.urgency_window = max(1, urgency_window)
        self.urgency_requires_indicator = urgency_requires_indicator
        self.min_protective_factors = min_protective_factors

    def _scan_text(self, current_text: str, recent_messages: Sequence[str], size: int) -> str:
        texts = [message for message in recent_messages if message][-(size - 1):] if size > 1 else []
        texts.append(current_text or "")
        return normalize_text(" ".join(texts))

    def tier_indicators(self, text: str) -> Tuple[str, List[RiskIndicator]]:
        level = "low"
        indicators: List[RiskIndicator] = []
        for tier, categories in self.tables.tiers.items():
            for category, phrases in categories.items():
                for phrase in matched_phrases(text, phrases):
                    indicators.append(
                        RiskIndicator(
                            type=category,
                            description=f'Crisis indicator detected: "{phrase}"',
                            severity=self.tables.severity.get(category, 5),
                            confidence=TIER_CONFIDENCE,
                        )
                    )
                    level = max_level(level, tier)
        return level, indicators

    def analysis_indicators(self, analysis: EmotionalAnalysis) -> Tuple[str, List[RiskIndicator]]:
        level = "low"
        indicators: List[RiskIndicator] = []
        for concern in analysis.concerns:
            if concern.severity not in {"high", "critical"}:
                continue
            # Only crisis concerns may lift the level past moderate.
            if concern.type == "crisis":
                concern_level = concern.severity
                severity = 10 if concern.severity == "critical" else 8
            else:
                concern_level = "moderate"
                severity = 6
            indicators.append(
                RiskIndicator(
                    type=concern.category,
                    description=f"High concern detected: {concern.type}",
                    severity=severity,
                    confidence=concern.confidence,
                )
            )
            level = max_level(level, concern_level)
        if analysis.sentiment.compound < -0.8 and analysis.intensity > 8:
            indicators.append(
                RiskIndicator(
                    type="severe_negative_sentiment",
                    description="Extremely negative emotional state detected",
                    severity=7,
                    confidence=0.8,
                )
            )
            level = max_level(level, "moderate")
        return level, indicators

    def urgency_factors(self, text: str) -> Dict[str, List[str]]:
        return {
            kind: matched_phrases(text, phrases, whole_word=True)
            for kind, phrases in self.tables.urgency.items()
        }

    def protective_factors(self, text: str) -> List[str]:
        return matched_phrases(text, self.tables.protective, whole_word=True)

    def apply_urgency(self, level: str, urgency: Dict[str, List[str]]) -> str:
        immediate = urgency.get("immediate") or []
        elevated = urgency.get("elevated") or []
        if not immediate and not elevated:
            return level
        if level == "low":
            if self.urgency_requires_indicator:
                logger.warning("Urgency phrase without a crisis indicator; level left at low")
                return level
            return "critical" if immediate else "high"
        if immediate and level in {"moderate", "high"}:
            return step_level(level, 1)
        if elevated and level == "moderate":
            return "high"
        return level

    def apply_protective(self, level: str, protective: List[str]) -> str:
        if level == "critical" or len(protective) < self.min_protective_factors:
            return level
        return step_level(level, -1)

    def assess_risk(
        self,
        current_text: str,
        recent_messages: Sequence[str] = (),
        analysis: Optional[EmotionalAnalysis] = None,
    ) -> RiskAssessment:
        scanned = self._scan_text(current_text, recent_messages, self.window)
        level, indicators = self.tier_indicators(scanned)
        if analysis is not None:
            analysis_level, analysis_found = self.analysis_indicators(analysis)
            indicators.extend(analysis_found)
            level = max_level(level, analysis_level)

        urgency = self.urgency_factors(self._scan_text(current_text, recent_messages, self.urgency_window))
        level = self.apply_urgency(level, urgency)

        protective = self.protective_factors(scanned)
        level = self.apply_protective(level, protective)

        response = generate_safety_response(level)
        assessment = RiskAssessment(
            level=level,
            indicators=indicators,
            urgency_factors=[phrase for phrases in urgency.values() for phrase in phrases],
            protective_factors=protective,
            message=response.message,
            resources=response.resources,
            immediate_actions=list(IMMEDIATE_ACTIONS[level]),
            follow_up_actions=response.follow_up_actions,
            escalation_triggers=response.escalation_triggers,
            monitoring_recommendations=list(MONITORING_RECOMMENDATIONS[level]),
        )
        assessment.should_escalate, assessment.escalation_reason = escalate_if_needed(assessment)
        if level != "low":
            logger.info(
                "Risk assessed at %s (%d indicators, %d protective factors)",
                level,
                len(indicators),
                len(protective),
            )
        return assessment

    def generate_safety_response(self, level: str) -> SafetyResponse:
        return generate_safety_response(level)

    def crisis_resources(self, level: str = "high") -> List[CrisisResource]:
        return crisis_resources(level)

    def create_safety_flags(self, assessment: RiskAssessment) -> List[SafetyFlagRecord]:
        flags: List[SafetyFlagRecord] = []
        for indicator in assessment.indicators:
            flag_type = self.tables.flag_types.get(indicator.type)
            if flag_type is None:
                continue
            flags.append(
                SafetyFlagRecord(
                    type=flag_type,
                    severity=assessment.level,
                    indicators=[indicator.description],
                )
            )
        return flags
