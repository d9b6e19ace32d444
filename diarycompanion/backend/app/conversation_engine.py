from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence, Tuple

from .crisis_detector import CrisisDetector
from .intent_router import IntentResult, IntentRouter
from .llm_client import ChatCompletionClient, LLMResult, fallback
from .personality_adapter import adapt_response_style, default_preferences
from .privacy import anonymize
from .schemas import (
    CompanionPreferences,
    CompanionResponse,
    EmotionalPatterns,
    PersonalizationElement,
    ResponseMetadata,
    RiskAssessment,
    SafetyCheck,
)

logger = logging.getLogger(__name__)

HISTORY_WINDOW = 10
PROMPT_HISTORY = 3
SESSION_IDLE_TIMEOUT = timedelta(hours=2)

TEMPLATES: Dict[str, Dict[str, object]] = {
    "emotional_support": {
        "tone": "supportive",
        "confidence": 0.8,
        "responses": [
            "I hear you, and I want you to know that what you're feeling is completely valid.",
            "It sounds like you're going through something difficult right now. I'm here to listen.",
            "Thank you for sharing that with me. It takes courage to express these feelings.",
            "I can sense that this is weighing on you. You don't have to carry this alone.",
            "Your feelings matter, and I'm glad you felt comfortable sharing them with me.",
        ],
        "follow_ups": [
            "Can you tell me more about what's contributing to these feelings?",
            "How long have you been feeling this way?",
            "What usually helps you when you're going through tough times?",
            "Is there anything specific that triggered these feelings today?",
        ],
    },
    "celebration": {
        "tone": "celebratory",
        "confidence": 0.9,
        "responses": [
            "That's wonderful! I'm so happy to hear about this positive moment in your life.",
            "What fantastic news! You should feel proud of yourself.",
            "I love hearing about the good things happening for you. This is worth celebrating!",
            "That's amazing! It's beautiful to see you experiencing joy.",
            "This is such great news! Thank you for sharing this happiness with me.",
        ],
        "follow_ups": [
            "What does this achievement mean to you?",
            "How are you planning to celebrate?",
            "What contributed to this positive outcome?",
            "How does this make you feel about your journey?",
        ],
    },
    "guidance_request": {
        "tone": "gentle",
        "confidence": 0.7,
        "responses": [
            "I can hear that you're looking for some direction. Let's explore this together.",
            "It sounds like you're at a crossroads. Sometimes talking through options can help clarify things.",
            "I appreciate you coming to me for guidance. Let's think through this step by step.",
            "Decision-making can be challenging. What aspects of this situation are you most uncertain about?",
            "I'm here to help you think through this. What feels most important to you right now?",
        ],
        "follow_ups": [
            "What options are you considering?",
            "What would your ideal outcome look like?",
            "What's holding you back from making a decision?",
            "What would you advise a friend in this situation?",
        ],
    },
    "reflection": {
        "tone": "reflective",
        "confidence": 0.7,
        "responses": [
            "It sounds like you're doing some deep thinking. Reflection is such a valuable practice.",
            "I appreciate you sharing your thoughts with me. What insights are emerging for you?",
            "It's wonderful that you're taking time to reflect. What's becoming clearer to you?",
            "Self-reflection shows real wisdom. What patterns are you noticing?",
            "Thank you for letting me into your thought process. What's resonating most with you?",
        ],
        "follow_ups": [
            "What new perspectives are you gaining?",
            "How has your understanding changed?",
            "What patterns are you starting to see?",
            "What would you like to explore further?",
        ],
    },
    "casual_chat": {
        "tone": "warm",
        "confidence": 0.6,
        "responses": [
            "Thanks for sharing that with me. How are you feeling about everything today?",
            "I'm glad you're here to chat. What's on your mind?",
            "It's nice to connect with you. How has your day been treating you?",
            "I appreciate you taking the time to talk with me. What would you like to explore?",
            "I'm here and listening. What's been going through your thoughts lately?",
        ],
        "follow_ups": [
            "What's been the highlight of your day?",
            "How are you taking care of yourself lately?",
            "What's been on your mind recently?",
            "Is there anything you'd like to talk through?",
        ],
    },
}

CRISIS_FOLLOW_UPS = [
    "Can you tell me if you're in a safe place right now?",
    "Would it help to reach out to one of the resources below together?",
    "Have you been able to talk to anyone else about these feelings?",
]
FALLBACK_MESSAGE = "I'm here with you. Would you like to tell me a little more about what's on your mind?"
WRAP_UP_FOLLOW_UP = "We've been talking for a while. Would you like to pause here and pick this up later?"

RESPONSE_TYPES = {
    "emotional_support": "empathetic_listening",
    "celebration": "celebration",
    "guidance_request": "gentle_guidance",
    "reflection": "curiosity_question",
    "crisis_help": "crisis_support",
}
SUPPORT_STRATEGIES = {
    "emotional_support": "emotional_validation",
    "celebration": "strength_based",
    "guidance_request": "solution_focused",
    "reflection": "mindfulness_based",
    "crisis_help": "crisis_intervention",
}
INTENT_GUIDANCE = {
    "emotional_support": "Focus on validation and emotional support. Help the user feel heard and understood.",
    "celebration": "Share in their joy and help them reflect on positive experiences and growth.",
    "guidance_request": "Provide gentle guidance while encouraging the user to find their own answers.",
    "reflection": "Ask thoughtful questions that encourage deeper self-reflection and insight.",
    "casual_chat": "Engage in warm, friendly conversation while staying attuned to emotional undertones.",
    "crisis_help": "Prioritize safety and point to immediate support resources while keeping a caring tone.",
}
SYSTEM_PROMPT = """You are a caring journaling companion. You give empathetic, supportive replies that help people process their emotions and feel heard.

Key principles:
- Be warm, genuine, and non-judgmental
- Validate emotions without trying to fix everything
- Ask thoughtful follow-up questions
- Offer gentle guidance when appropriate
- Keep replies conversational and short
- You are not a therapist; suggest professional help when it fits

Communication preferences:
- Style: {style}
- Response length: {length}
- Empathy style: {empathy}"""


@dataclass
class HistoryMessage:
    role: str
    content: str


@dataclass
class SessionContext:
    session_id: str
    started_at: datetime = field(default_factory=datetime.utcnow)
    last_active: datetime = field(default_factory=datetime.utcnow)
    message_count: int = 0

    def should_wrap_up(self, max_minutes: int, now: Optional[datetime] = None) -> bool:
        now = now or datetime.utcnow()
        return self.message_count > 1 and now - self.started_at >= timedelta(minutes=max_minutes)


def select_template(responses: Sequence[str], response_length: str) -> str:
    if response_length == "brief":
        return min(responses, key=len)
    if response_length == "detailed":
        return max(responses, key=len)
    return responses[len(responses) // 2]


def select_follow_ups(questions: Sequence[str], response_length: str) -> List[str]:
    count = {"brief": 1, "detailed": 3}.get(response_length, 2)
    return list(questions[:count])


def build_personalization(patterns: Optional[EmotionalPatterns]) -> List[PersonalizationElement]:
    if patterns is None:
        return []
    elements: List[PersonalizationElement] = []
    if patterns.trends:
        trend = max(patterns.trends, key=lambda item: len(item.data_points))
        elements.append(
            PersonalizationElement(
                type="pattern_reference",
                content=f"I've noticed {trend.emotion} showing up in your recent entries.",
                confidence=0.7,
            )
        )
    if patterns.growth.positive_patterns:
        elements.append(
            PersonalizationElement(
                type="growth_acknowledgment",
                content=f"I've seen your growth: {patterns.growth.positive_patterns[0].lower()}.",
                confidence=0.8,
            )
        )
    return elements


class ConversationEngine:
    """Produces one companion reply per user message, gated by the crisis detector."""

    def __init__(
        self,
        router: IntentRouter,
        crisis_detector: CrisisDetector,
        llm_client: Optional[ChatCompletionClient] = None,
        adapt_style: bool = True,
    ) -> None:
        self.router = router
        self.crisis_detector = crisis_detector
        self.llm_client = llm_client
        self.adapt_style = adapt_style
        self.sessions: Dict[str, SessionContext] = {}

    def session(self, conversation_id: str) -> SessionContext:
        self.prune_sessions()
        if conversation_id not in self.sessions:
            self.sessions[conversation_id] = SessionContext(session_id=conversation_id)
        return self.sessions[conversation_id]

    def prune_sessions(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.utcnow()
        idle = [key for key, context in self.sessions.items() if now - context.last_active > SESSION_IDLE_TIMEOUT]
        for key in idle:
            del self.sessions[key]
        if idle:
            logger.debug("Dropped %d idle companion sessions", len(idle))
        return len(idle)

    def end_session(self, conversation_id: str) -> None:
        self.sessions.pop(conversation_id, None)

    def build_context(self, history: Sequence[HistoryMessage], patterns: Optional[EmotionalPatterns]) -> str:
        parts: List[str] = []
        if patterns is not None and patterns.trends:
            trends = ", ".join(f"{trend.emotion} trending {trend.direction}" for trend in patterns.trends[:3])
            parts.append(f"Recent emotional trends: {trends}")
        if history:
            recent = "\n".join(f"{item.role}: {anonymize(item.content)}" for item in history[-PROMPT_HISTORY:])
            parts.append(f"Recent conversation:\n{recent}")
        return "\n\n".join(parts)

    def system_prompt(self, intent: str, preferences: CompanionPreferences) -> str:
        base = SYSTEM_PROMPT.format(
            style=preferences.communication_style,
            length=preferences.response_length,
            empathy=preferences.empathy_style,
        )
        avoid = preferences.boundary_settings.topics_to_avoid
        if avoid:
            base += f"\n- Do not bring up: {', '.join(avoid)}"
        return f"{base}\n\nCurrent situation: {INTENT_GUIDANCE.get(intent, INTENT_GUIDANCE['casual_chat'])}"

    def ask_llm(
        self,
        message: str,
        intent: IntentResult,
        history: Sequence[HistoryMessage],
        preferences: CompanionPreferences,
        patterns: Optional[EmotionalPatterns],
    ) -> LLMResult:
        if self.llm_client is None or not self.llm_client.is_available():
            return fallback("not_configured")
        if not preferences.boundary_settings.allow_external_ai:
            return fallback("not_permitted")
        context = self.build_context(history, patterns)
        content = anonymize(message)
        if context:
            content = f"{context}\n\nUser: {content}"
        return self.llm_client.complete(self.system_prompt(intent.intent, preferences), content)

    def crisis_reply(self, assessment: RiskAssessment) -> Tuple[str, List[str]]:
        return assessment.message, list(CRISIS_FOLLOW_UPS)

    def generate_response(
        self,
        message: str,
        conversation_id: str,
        history: Sequence[HistoryMessage] = (),
        preferences: Optional[CompanionPreferences] = None,
        patterns: Optional[EmotionalPatterns] = None,
    ) -> CompanionResponse:
        started = time.monotonic()
        preferences = preferences or default_preferences()
        try:
            return self._respond(message, conversation_id, list(history)[-HISTORY_WINDOW:], preferences, patterns, started)
        except Exception:
            logger.exception("Companion response failed; using fallback reply")
            return CompanionResponse(
                message=FALLBACK_MESSAGE,
                intent="casual_chat",
                metadata=ResponseMetadata(
                    confidence=0.5,
                    response_type="check_in",
                    support_strategy="active_listening",
                    source="template",
                    fallback_used=True,
                ),
                safety=SafetyCheck(level="low", requires_intervention=False),
            )

    def _respond(
        self,
        message: str,
        conversation_id: str,
        history: List[HistoryMessage],
        preferences: CompanionPreferences,
        patterns: Optional[EmotionalPatterns],
        started: float,
    ) -> CompanionResponse:
        session = self.session(conversation_id)
        session.message_count += 1
        intent = self.router.route(message)
        prior_user_messages = [item.content for item in history if item.role == "user"]
        assessment = self.crisis_detector.assess_risk(message, prior_user_messages)
        urgent = assessment.level in {"high", "critical"}

        source = "template"
        fallback_used = False
        if urgent and preferences.boundary_settings.crisis_intervention_enabled:
            reply, follow_ups = self.crisis_reply(assessment)
            tone, confidence = "concerned", 0.95
            response_intent = "crisis_help"
        else:
            response_intent = intent.intent
            template = TEMPLATES.get(response_intent, TEMPLATES["casual_chat"])
            if response_intent == "crisis_help":
                template = TEMPLATES["emotional_support"]
            follow_ups = select_follow_ups(template["follow_ups"], preferences.response_length)
            tone = template["tone"]
            result = self.ask_llm(message, intent, history, preferences, patterns)
            if result.ok:
                reply, confidence, source = result.text, 0.8, "external"
            else:
                reply = select_template(template["responses"], preferences.response_length)
                if self.adapt_style:
                    reply = adapt_response_style(reply, preferences)
                confidence = template["confidence"]
                fallback_used = result.error not in {"not_configured", "not_permitted"}

        if response_intent != "crisis_help" and session.should_wrap_up(
            preferences.boundary_settings.max_session_length
        ):
            follow_ups.append(WRAP_UP_FOLLOW_UP)
        session.last_active = datetime.utcnow()

        return CompanionResponse(
            message=reply,
            intent=response_intent,
            suggested_follow_ups=follow_ups,
            emotional_tone=tone,
            metadata=ResponseMetadata(
                confidence=confidence,
                response_type=RESPONSE_TYPES.get(response_intent, "check_in"),
                support_strategy=SUPPORT_STRATEGIES.get(response_intent, "active_listening"),
                source=source,
                fallback_used=fallback_used,
                generation_time_ms=int((time.monotonic() - started) * 1000),
                personalization_elements=build_personalization(patterns),
            ),
            safety=SafetyCheck(
                level=assessment.level,
                requires_intervention=urgent,
                message=assessment.message if assessment.level != "low" else "",
                resources=assessment.resources if assessment.level != "low" else [],
            ),
        )
