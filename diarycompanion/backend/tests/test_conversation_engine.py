import unittest
from datetime import datetime, timedelta
from typing import List, Tuple

from diarycompanion.backend.app.conversation_engine import (
    FALLBACK_MESSAGE,
    SESSION_IDLE_TIMEOUT,
    TEMPLATES,
    WRAP_UP_FOLLOW_UP,
    ConversationEngine,
    HistoryMessage,
    build_personalization,
    select_follow_ups,
    select_template,
)
from diarycompanion.backend.app.crisis_detector import CrisisDetector, generate_safety_response
from diarycompanion.backend.app.intent_router import IntentRouter
from diarycompanion.backend.app.llm_client import EXTERNAL, LLMResult, fallback
from diarycompanion.backend.app.schemas import (
    BoundarySettings,
    CompanionPreferences,
    EmotionalPatterns,
    EmotionalTrend,
    GrowthIndicators,
)


class FakeLLM:
    def __init__(self, result: LLMResult, available: bool = True) -> None:
        self.result = result
        self.available = available
        self.calls: List[Tuple[str, str]] = []

    def is_available(self) -> bool:
        return self.available

    def complete(self, system_prompt: str, user_content: str) -> LLMResult:
        self.calls.append((system_prompt, user_content))
        return self.result


class BrokenRouter:
    def route(self, message):
        raise RuntimeError("router exploded")


def make_engine(llm=None, router=None):
    return ConversationEngine(router or IntentRouter(), CrisisDetector(), llm)


class ConversationEngineTests(unittest.TestCase):
    def test_template_reply_without_llm(self):
        response = make_engine().generate_response("Congratulations, I got the job!", "c1")
        responses = TEMPLATES["celebration"]["responses"]
        self.assertEqual(response.intent, "celebration")
        self.assertEqual(response.message, responses[len(responses) // 2])
        self.assertEqual(response.metadata.source, "template")
        self.assertFalse(response.metadata.fallback_used)
        self.assertEqual(len(response.suggested_follow_ups), 2)
        self.assertEqual(response.safety.level, "low")
        self.assertEqual(response.safety.resources, [])

    def test_crisis_reply_replaces_llm(self):
        llm = FakeLLM(LLMResult(source=EXTERNAL, text="should not be used"))
        response = make_engine(llm).generate_response("I want to end it all", "c1")
        self.assertEqual(response.intent, "crisis_help")
        self.assertEqual(response.message, generate_safety_response("critical").message)
        self.assertTrue(response.safety.requires_intervention)
        self.assertTrue(response.safety.resources)
        self.assertEqual(response.emotional_tone, "concerned")
        self.assertEqual(llm.calls, [])

    def test_history_feeds_crisis_check(self):
        history = [HistoryMessage(role="user", content="I want to end it all")]
        response = make_engine().generate_response("ok", "c1", history=history)
        self.assertEqual(response.safety.level, "critical")

    def test_disabled_intervention_still_attaches_resources(self):
        preferences = CompanionPreferences(boundary_settings=BoundarySettings(crisis_intervention_enabled=False))
        response = make_engine().generate_response("I can't go on", "c1", preferences=preferences)
        self.assertEqual(response.safety.level, "high")
        self.assertTrue(response.safety.resources)
        self.assertIn(response.message, TEMPLATES["emotional_support"]["responses"])

    def test_external_reply_is_anonymized(self):
        llm = FakeLLM(LLMResult(source=EXTERNAL, text="Glad you reached out."))
        response = make_engine(llm).generate_response("Call me at 555-123-4567, I feel a bit off", "c1")
        self.assertEqual(response.message, "Glad you reached out.")
        self.assertEqual(response.metadata.source, "external")
        system_prompt, content = llm.calls[0]
        self.assertIn("[phone]", content)
        self.assertNotIn("555-123-4567", content)
        self.assertIn("Style: warm", system_prompt)

    def test_failed_external_call_uses_template(self):
        llm = FakeLLM(fallback("network_error"))
        response = make_engine(llm).generate_response("I feel sad", "c1")
        self.assertEqual(response.metadata.source, "template")
        self.assertTrue(response.metadata.fallback_used)
        self.assertIn(response.message, TEMPLATES["emotional_support"]["responses"])

    def test_external_ai_can_be_disallowed(self):
        llm = FakeLLM(LLMResult(source=EXTERNAL, text="nope"))
        preferences = CompanionPreferences(boundary_settings=BoundarySettings(allow_external_ai=False))
        response = make_engine(llm).generate_response("I feel sad", "c1", preferences=preferences)
        self.assertEqual(llm.calls, [])
        self.assertFalse(response.metadata.fallback_used)

    def test_brief_preference_shortens_reply(self):
        preferences = CompanionPreferences(response_length="brief")
        response = make_engine().generate_response("I feel sad", "c1", preferences=preferences)
        self.assertEqual(len(response.suggested_follow_ups), 1)
        shortest = min(TEMPLATES["emotional_support"]["responses"], key=len)
        self.assertTrue(shortest.startswith(response.message))

    def test_internal_error_returns_fallback(self):
        response = make_engine(router=BrokenRouter()).generate_response("hello", "c1")
        self.assertEqual(response.message, FALLBACK_MESSAGE)
        self.assertTrue(response.metadata.fallback_used)
        self.assertEqual(response.safety.level, "low")

    def test_sessions_are_tracked_and_ended(self):
        engine = make_engine()
        engine.generate_response("hello", "c1")
        engine.generate_response("I feel sad", "c1")
        self.assertEqual(engine.session("c1").message_count, 2)
        engine.end_session("c1")
        self.assertNotIn("c1", engine.sessions)

    def test_idle_sessions_are_dropped(self):
        engine = make_engine()
        engine.generate_response("hello", "old")
        engine.generate_response("hello", "fresh")
        engine.sessions["old"].last_active = datetime.utcnow() - SESSION_IDLE_TIMEOUT - timedelta(minutes=1)
        self.assertEqual(engine.prune_sessions(), 1)
        self.assertEqual(list(engine.sessions), ["fresh"])

    def test_long_session_offers_wrap_up(self):
        engine = make_engine()
        preferences = CompanionPreferences(boundary_settings=BoundarySettings(max_session_length=5))
        first = engine.generate_response("hello", "c1", preferences=preferences)
        self.assertNotIn(WRAP_UP_FOLLOW_UP, first.suggested_follow_ups)
        engine.sessions["c1"].started_at = datetime.utcnow() - timedelta(minutes=6)
        second = engine.generate_response("I feel sad", "c1", preferences=preferences)
        self.assertEqual(second.suggested_follow_ups[-1], WRAP_UP_FOLLOW_UP)


def test_template_and_follow_up_selection():
    responses = ["a", "bbb", "cc"]
    assert select_template(responses, "brief") == "a"
    assert select_template(responses, "detailed") == "bbb"
    assert select_template(responses, "moderate") == "bbb"
    assert select_follow_ups(["1", "2", "3", "4"], "detailed") == ["1", "2", "3"]


def test_personalization_from_patterns():
    assert build_personalization(None) == []
    patterns = EmotionalPatterns(
        user_id=1,
        trends=[EmotionalTrend(emotion="joy", direction="increasing", strength=0.2)],
        growth=GrowthIndicators(positive_patterns=["Consistent coping: exercise"]),
    )
    kinds = [element.type for element in build_personalization(patterns)]
    assert kinds == ["pattern_reference", "growth_acknowledgment"]


if __name__ == "__main__":
    unittest.main()
