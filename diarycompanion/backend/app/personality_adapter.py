from __future__ import annotations

import random
import re
from datetime import datetime
from typing import Dict, List, Optional, Sequence

from .schemas import CompanionPreferences, FeedbackRecord, SupportPreference, TopicSensitivity
from .text_utils import clamp

MIN_FEEDBACK_FOR_LEARNING = 5
LEARNING_RATE = 0.1
SENSITIVE_TOPICS = ["work", "family", "relationships", "health", "money"]

GREETINGS = {
    "casual": [
        "Hey there! How's it going?",
        "Hi! What's on your mind today?",
        "Hello! How are you feeling right now?",
    ],
    "formal": [
        "Good day. How may I support you today?",
        "Hello. I'm here to support you. How are you doing?",
        "Greetings. What would you like to discuss today?",
    ],
    "warm": [
        "Hello, friend! I'm so glad you're here. How are you feeling today?",
        "Hi there! It's wonderful to see you. What's been on your heart lately?",
        "Hello! It's good to hear from you. How has your day been treating you?",
    ],
    "direct": [
        "Hi. What's going on with you today?",
        "Hello. What do you need to talk about?",
        "Hi there. How can I help you right now?",
    ],
    "gentle": [
        "Hello. I'm here for you. How are you feeling in this moment?",
        "Hi. I hope you're being kind to yourself today. What's on your mind?",
        "Hello. Take a deep breath. I'm here to listen. How are you?",
    ],
}

STYLE_WORDS = {
    "casual": ("casual", "relaxed"),
    "formal": ("formal", "professional"),
    "warm": ("warm", "caring"),
    "direct": ("direct", "straight"),
    "gentle": ("gentle", "soft"),
}
EMPATHY_WORDS = {
    "validating": ("validate", "understand"),
    "solution_focused": ("solution", "fix"),
    "exploratory": ("explore", "deeper"),
    "strength_based": ("strength", "positive"),
}
SUPPORT_WORDS = {
    "emotional_support": ("listen", "hear"),
    "practical_guidance": ("advice", "guidance"),
    "celebration": ("celebrate", "happy"),
    "reflection_prompt": ("reflect", "think"),
}


def default_preferences() -> CompanionPreferences:
    return CompanionPreferences(
        support_preferences=[SupportPreference(type=support_type) for support_type in SUPPORT_WORDS]
    )


def _comment(feedback: FeedbackRecord) -> str:
    return (feedback.comment or "").lower()


def infer_style(feedback: FeedbackRecord) -> Optional[str]:
    comment = _comment(feedback)
    for style, words in STYLE_WORDS.items():
        if any(word in comment for word in words):
            return style
    return None


def infer_empathy_style(feedback: FeedbackRecord) -> Optional[str]:
    comment = _comment(feedback)
    for style, words in EMPATHY_WORDS.items():
        if any(word in comment for word in words):
            return style
    return None


def infer_support_type(feedback: FeedbackRecord) -> str:
    comment = _comment(feedback)
    for support_type, words in SUPPORT_WORDS.items():
        if any(word in comment for word in words):
            return support_type
    return "emotional_support"


def infer_length(feedback: FeedbackRecord) -> str:
    comment = _comment(feedback)
    if "short" in comment or "brief" in comment:
        return "brief"
    if "long" in comment or "detailed" in comment:
        return "detailed"
    return "moderate"


def infer_topic(feedback: FeedbackRecord) -> Optional[str]:
    comment = _comment(feedback)
    for topic in SENSITIVE_TOPICS:
        if topic in comment:
            return topic
    return None


def _support_entry(preferences: CompanionPreferences, support_type: str) -> SupportPreference:
    for entry in preferences.support_preferences:
        if entry.type == support_type:
            return entry
    entry = SupportPreference(type=support_type)
    preferences.support_preferences.append(entry)
    return entry


def _best(scores: Dict[str, int]) -> Optional[str]:
    if not scores or max(scores.values()) <= 0:
        return None
    return max(scores, key=lambda key: scores[key])


def update_preferences_from_feedback(
    feedback: FeedbackRecord,
    preferences: CompanionPreferences,
) -> CompanionPreferences:
    """Apply one piece of explicit feedback to a copy of the preferences."""
    updated = preferences.model_copy(deep=True)
    if "tone" in feedback.categories:
        updated.communication_style = infer_style(feedback) or updated.communication_style
    if feedback.type == "too_casual":
        updated.communication_style = "formal"
    elif feedback.type == "too_clinical":
        updated.communication_style = "warm"
    if "length" in feedback.categories:
        updated.response_length = infer_length(feedback)
    if "helpfulness" in feedback.categories:
        entry = _support_entry(updated, infer_support_type(feedback))
        step = 1 if feedback.helpful else -1
        entry.effectiveness = clamp(entry.effectiveness + step, 1, 10)
        entry.frequency += 1
        entry.last_used = feedback.created_at
    updated.updated_at = datetime.utcnow()
    return updated


def learn_from_feedback(
    feedback_items: Sequence[FeedbackRecord],
    preferences: CompanionPreferences,
) -> CompanionPreferences:
    """Nudge preferences from accumulated feedback once enough has been collected."""
    if len(feedback_items) < MIN_FEEDBACK_FOR_LEARNING:
        return preferences
    updated = preferences.model_copy(deep=True)
    liked = [item for item in feedback_items if item.helpful and item.rating >= 4]

    style_scores = {style: 0 for style in STYLE_WORDS}
    for item in liked:
        style = infer_style(item) if "tone" in item.categories else None
        if style:
            style_scores[style] += 1
    updated.communication_style = _best(style_scores) or updated.communication_style

    for item in feedback_items:
        if "helpfulness" not in item.categories:
            continue
        entry = _support_entry(updated, infer_support_type(item))
        step = LEARNING_RATE * 2 if item.helpful else -LEARNING_RATE * 2
        entry.effectiveness = round(clamp(entry.effectiveness + step, 1, 10), 2)
        entry.frequency += 1
        entry.last_used = item.created_at

    length_scores = {"brief": 0, "moderate": 0, "detailed": 0}
    for item in liked:
        if "length" in item.categories:
            length_scores[infer_length(item)] += 1
    updated.response_length = _best(length_scores) or updated.response_length

    empathy_scores = {style: 0 for style in EMPATHY_WORDS}
    for item in liked:
        if "helpfulness" in item.categories or "tone" in item.categories:
            style = infer_empathy_style(item)
            if style:
                empathy_scores[style] += 1
    updated.empathy_style = _best(empathy_scores) or updated.empathy_style

    for item in feedback_items:
        if item.helpful or item.type != "inappropriate":
            continue
        topic = infer_topic(item)
        if topic is None:
            continue
        existing = next((entry for entry in updated.topic_sensitivities if entry.topic == topic), None)
        if existing is None:
            updated.topic_sensitivities.append(TopicSensitivity(topic=topic, sensitivity_level="high"))
        else:
            existing.sensitivity_level = "high"

    for item in feedback_items:
        comment = _comment(item)
        step = 1 if item.helpful else -1
        if "funny" in comment or "humor" in comment:
            updated.humor_level = int(clamp(updated.humor_level + step, 0, 10))
        if "direct" in comment or "straight" in comment:
            updated.directness_level = int(clamp(updated.directness_level + step, 0, 10))

    updated.updated_at = datetime.utcnow()
    return updated


def first_sentence(text: str) -> str:
    match = re.match(r"(.+?[.!?])(\s|$)", text.strip())
    return match.group(1) if match else text.strip()


def adapt_response_style(text: str, preferences: CompanionPreferences) -> str:
    adapted = text
    style = preferences.communication_style
    if style == "casual":
        adapted = re.sub(r"\b(Hello|Good day)\b", "Hey", adapted)
        adapted = re.sub(r"\bHow are you\b", "How's it going", adapted)
    elif style == "formal":
        adapted = re.sub(r"\b(Hey|Hi)\b", "Hello", adapted)
    elif style == "direct":
        adapted = first_sentence(adapted)
    elif style == "gentle":
        adapted = re.sub(r"\byou (should|need to)\b", "you might consider", adapted)

    if preferences.response_length == "brief":
        adapted = first_sentence(adapted)
    elif preferences.response_length == "detailed" and not adapted.endswith("?"):
        adapted = f"{adapted} Would you like to explore this further?"

    if preferences.directness_level > 7:
        adapted = re.sub(r"\b(might|perhaps|maybe)\b", "can", adapted)
        adapted = re.sub(r"\bI think\b", "I believe", adapted)
    elif preferences.directness_level < 3:
        adapted = re.sub(r"\bshould\b", "might", adapted)
        adapted = re.sub(r"\bI know\b", "I think", adapted)
    return adapted


def generate_greeting(
    preferences: CompanionPreferences,
    last_topic: Optional[str] = None,
    rng: Optional[random.Random] = None,
) -> str:
    rng = rng or random.Random()
    options: List[str] = GREETINGS.get(preferences.communication_style, GREETINGS["warm"])
    greeting = rng.choice(options)
    if preferences.response_length == "brief":
        greeting = first_sentence(greeting)
    elif preferences.response_length == "detailed" and last_topic:
        greeting = f"{greeting} Last time we talked about {last_topic.replace('_', ' ')}."
    return greeting
