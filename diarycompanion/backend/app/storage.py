from __future__ import annotations

import json
import logging
import uuid
from datetime import date, datetime, timedelta
from typing import List, Optional, Sequence, Type, TypeVar

from pydantic import BaseModel, ValidationError
from sqlalchemy import func
from sqlalchemy.orm import Session

from .database import (
    CompanionPreferenceRecord,
    Conversation,
    ConversationMessage,
    DiaryEntry,
    EmotionalAnalysisRecord,
    EmotionalInsightRecord,
    EmotionalPatternRecord,
    SafetyFlag,
    User,
    UserFeedback,
)
from .personality_adapter import default_preferences
from .schemas import (
    CompanionPreferences,
    EmotionalAnalysis,
    EmotionalInsights,
    EmotionalPatterns,
    FeedbackRecord,
    SafetyFlagRecord,
)
from .text_utils import count_words

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


def load_payload(model: Type[ModelT], payload: Optional[dict], **overrides) -> Optional[ModelT]:
    if payload is None:
        return None
    try:
        return model.model_validate({**payload, **overrides})
    except ValidationError as exc:
        logger.warning("Discarding unreadable %s payload: %s", model.__name__, exc.error_count())
        return None


# Entries

def create_entry(db: Session, user_id: int, content: str, entry_date: Optional[date] = None) -> DiaryEntry:
    now = datetime.utcnow()
    entry = DiaryEntry(
        user_id=user_id,
        content=content,
        entry_date=entry_date or date.today(),
        word_count=count_words(content),
        created_at=now,
        updated_at=now,
    )
    db.add(entry)
    db.commit()
    db.refresh(entry)
    return entry


def update_entry(db: Session, entry: DiaryEntry, content: str) -> DiaryEntry:
    entry.content = content
    entry.word_count = count_words(content)
    entry.updated_at = datetime.utcnow()
    db.commit()
    db.refresh(entry)
    return entry


def get_entry(db: Session, user_id: int, entry_id: int) -> Optional[DiaryEntry]:
    return db.query(DiaryEntry).filter(DiaryEntry.id == entry_id, DiaryEntry.user_id == user_id).first()


def list_entries(db: Session, user_id: int, days: Optional[int] = None, limit: int = 200) -> List[DiaryEntry]:
    query = db.query(DiaryEntry).filter(DiaryEntry.user_id == user_id)
    if days is not None:
        query = query.filter(DiaryEntry.entry_date >= date.today() - timedelta(days=days - 1))
    return query.order_by(DiaryEntry.created_at.desc()).limit(limit).all()


def delete_entry(db: Session, entry: DiaryEntry) -> None:
    db.delete(entry)
    db.commit()


# Analyses

def store_analysis(db: Session, user_id: int, analysis: EmotionalAnalysis) -> EmotionalAnalysis:
    record = EmotionalAnalysisRecord(
        entry_id=analysis.entry_id,
        user_id=user_id,
        payload=analysis.model_dump(mode="json", exclude={"id"}),
        analyzed_at=analysis.analyzed_at,
    )
    db.add(record)
    db.commit()
    db.refresh(record)
    return analysis.model_copy(update={"id": record.id})


def _analysis_from_record(record: EmotionalAnalysisRecord) -> Optional[EmotionalAnalysis]:
    return load_payload(EmotionalAnalysis, record.payload, id=record.id, entry_id=record.entry_id)


def list_analyses(db: Session, user_id: int) -> List[EmotionalAnalysis]:
    records = (
        db.query(EmotionalAnalysisRecord)
        .filter(EmotionalAnalysisRecord.user_id == user_id)
        .order_by(EmotionalAnalysisRecord.analyzed_at.asc())
        .all()
    )
    analyses = [_analysis_from_record(record) for record in records]
    return [analysis for analysis in analyses if analysis is not None]


def latest_analysis(db: Session, entry_id: int) -> Optional[EmotionalAnalysis]:
    record = (
        db.query(EmotionalAnalysisRecord)
        .filter(EmotionalAnalysisRecord.entry_id == entry_id)
        .order_by(EmotionalAnalysisRecord.analyzed_at.desc(), EmotionalAnalysisRecord.id.desc())
        .first()
    )
    return _analysis_from_record(record) if record else None


def current_analyses(db: Session, user_id: int) -> List[EmotionalAnalysis]:
    """Latest analysis per entry; edited entries contribute only their newest one."""
    latest = {}
    for analysis in list_analyses(db, user_id):
        latest[analysis.entry_id] = analysis
    return list(latest.values())


# Patterns and insights

def replace_patterns(db: Session, patterns: EmotionalPatterns) -> EmotionalPatterns:
    record = db.query(EmotionalPatternRecord).filter(EmotionalPatternRecord.user_id == patterns.user_id).first()
    if record is None:
        record = EmotionalPatternRecord(user_id=patterns.user_id)
        db.add(record)
    record.payload = patterns.model_dump(mode="json")
    record.updated_at = patterns.last_updated
    db.commit()
    return patterns


def latest_patterns(db: Session, user_id: int) -> Optional[EmotionalPatterns]:
    record = db.query(EmotionalPatternRecord).filter(EmotionalPatternRecord.user_id == user_id).first()
    return load_payload(EmotionalPatterns, record.payload) if record else None


def store_insights(db: Session, insights: EmotionalInsights) -> EmotionalInsights:
    db.query(EmotionalInsightRecord).filter(
        EmotionalInsightRecord.user_id == insights.user_id,
        EmotionalInsightRecord.timeframe == insights.timeframe,
    ).delete()
    db.add(
        EmotionalInsightRecord(
            user_id=insights.user_id,
            timeframe=insights.timeframe,
            payload=insights.model_dump(mode="json"),
            generated_at=insights.generated_at,
        )
    )
    db.commit()
    return insights


def latest_insights(db: Session, user_id: int, timeframe: str) -> Optional[EmotionalInsights]:
    record = (
        db.query(EmotionalInsightRecord)
        .filter(EmotionalInsightRecord.user_id == user_id, EmotionalInsightRecord.timeframe == timeframe)
        .order_by(EmotionalInsightRecord.generated_at.desc())
        .first()
    )
    return load_payload(EmotionalInsights, record.payload) if record else None


# Preferences

def get_preferences(db: Session, user_id: int) -> CompanionPreferences:
    record = db.query(CompanionPreferenceRecord).filter(CompanionPreferenceRecord.user_id == user_id).first()
    if record is not None:
        preferences = load_payload(CompanionPreferences, record.payload)
        if preferences is not None:
            return preferences
    return save_preferences(db, user_id, default_preferences())


def save_preferences(db: Session, user_id: int, preferences: CompanionPreferences) -> CompanionPreferences:
    record = db.query(CompanionPreferenceRecord).filter(CompanionPreferenceRecord.user_id == user_id).first()
    if record is None:
        record = CompanionPreferenceRecord(user_id=user_id)
        db.add(record)
    preferences = preferences.model_copy(update={"updated_at": datetime.utcnow()})
    record.payload = preferences.model_dump(mode="json")
    record.updated_at = preferences.updated_at
    db.commit()
    return preferences


# Conversations

def create_conversation(db: Session, user_id: int, title: Optional[str] = None) -> Conversation:
    conversation = Conversation(
        id=uuid.uuid4().hex,
        user_id=user_id,
        title=(title or "").strip() or f"Conversation {datetime.utcnow():%Y-%m-%d %H:%M}",
        started_at=datetime.utcnow(),
    )
    db.add(conversation)
    db.commit()
    db.refresh(conversation)
    return conversation


def get_conversation(db: Session, user_id: int, conversation_id: str) -> Optional[Conversation]:
    return (
        db.query(Conversation)
        .filter(Conversation.id == conversation_id, Conversation.user_id == user_id)
        .first()
    )


def list_conversations(db: Session, user_id: int, include_archived: bool = False) -> List[Conversation]:
    query = db.query(Conversation).filter(Conversation.user_id == user_id)
    if not include_archived:
        query = query.filter(Conversation.archived.is_(False))
    return query.order_by(Conversation.started_at.desc()).all()


def archive_conversation(db: Session, conversation: Conversation) -> Conversation:
    conversation.archived = True
    db.commit()
    db.refresh(conversation)
    return conversation


def append_message(
    db: Session,
    conversation: Conversation,
    role: str,
    content: str,
    metadata: Optional[dict] = None,
) -> ConversationMessage:
    now = datetime.utcnow()
    message = ConversationMessage(
        conversation_id=conversation.id,
        role=role,
        content=content,
        metadata_json=json.dumps(metadata or {}),
        created_at=now,
    )
    conversation.last_message_at = now
    db.add(message)
    db.commit()
    db.refresh(message)
    return message


def count_messages(db: Session, conversation_id: str) -> int:
    return (
        db.query(func.count(ConversationMessage.id))
        .filter(ConversationMessage.conversation_id == conversation_id)
        .scalar()
        or 0
    )


def conversation_history(db: Session, conversation_id: str, limit: int = 10) -> List[ConversationMessage]:
    messages = (
        db.query(ConversationMessage)
        .filter(ConversationMessage.conversation_id == conversation_id)
        .order_by(ConversationMessage.id.desc())
        .limit(limit)
        .all()
    )
    return list(reversed(messages))


# Safety flags

def record_safety_flags(
    db: Session,
    user_id: int,
    flags: Sequence[SafetyFlagRecord],
    source: str,
    conversation_id: Optional[str] = None,
    entry_id: Optional[int] = None,
) -> List[SafetyFlag]:
    rows: List[SafetyFlag] = []
    seen = set()
    for flag in flags:
        key = (flag.type, flag.severity)
        if key in seen:
            continue
        seen.add(key)
        indicators = [item for other in flags if (other.type, other.severity) == key for item in other.indicators]
        rows.append(
            SafetyFlag(
                user_id=user_id,
                conversation_id=conversation_id,
                entry_id=entry_id,
                source=source,
                flag_type=flag.type,
                severity=flag.severity,
                indicators_json=json.dumps(list(dict.fromkeys(indicators))),
                detected_at=flag.detected_at,
                resolved=flag.resolved,
            )
        )
    db.add_all(rows)
    db.commit()
    return rows


def list_safety_flags(db: Session, user_id: int, days: int = 30) -> List[SafetyFlag]:
    cutoff = datetime.utcnow() - timedelta(days=days)
    return (
        db.query(SafetyFlag)
        .filter(SafetyFlag.user_id == user_id, SafetyFlag.detected_at >= cutoff)
        .order_by(SafetyFlag.detected_at.desc())
        .limit(100)
        .all()
    )


# Feedback

def record_feedback(db: Session, user_id: int, feedback: FeedbackRecord) -> UserFeedback:
    row = UserFeedback(
        user_id=user_id,
        message_id=feedback.message_id,
        feedback_type=feedback.type,
        rating=feedback.rating,
        comment=feedback.comment,
        helpful=feedback.helpful,
        categories_json=json.dumps(feedback.categories),
        created_at=feedback.created_at,
    )
    db.add(row)
    db.commit()
    db.refresh(row)
    return row


def list_feedback(db: Session, user_id: int, limit: int = 100) -> List[FeedbackRecord]:
    rows = (
        db.query(UserFeedback)
        .filter(UserFeedback.user_id == user_id)
        .order_by(UserFeedback.created_at.desc())
        .limit(limit)
        .all()
    )
    return [
        FeedbackRecord(
            message_id=row.message_id,
            type=row.feedback_type,
            rating=row.rating,
            comment=row.comment,
            helpful=row.helpful,
            categories=json.loads(row.categories_json or "[]"),
            created_at=row.created_at,
        )
        for row in rows
    ]


# Retention

def purge_expired(db: Session, user_id: int, retention_days: int, now: Optional[datetime] = None) -> dict:
    if retention_days < 1:
        raise ValueError(f"Retention period must be at least one day, got {retention_days}")
    cutoff = (now or datetime.utcnow()) - timedelta(days=retention_days)
    expired_entries = (
        db.query(DiaryEntry).filter(DiaryEntry.user_id == user_id, DiaryEntry.created_at < cutoff).all()
    )
    for entry in expired_entries:
        db.delete(entry)
    expired_conversations = (
        db.query(Conversation)
        .filter(
            Conversation.user_id == user_id,
            Conversation.started_at < cutoff,
            (Conversation.last_message_at.is_(None)) | (Conversation.last_message_at < cutoff),
        )
        .all()
    )
    for conversation in expired_conversations:
        db.delete(conversation)
    feedback = (
        db.query(UserFeedback)
        .filter(UserFeedback.user_id == user_id, UserFeedback.created_at < cutoff)
        .delete(synchronize_session=False)
    )
    flags = (
        db.query(SafetyFlag)
        .filter(SafetyFlag.user_id == user_id, SafetyFlag.detected_at < cutoff)
        .delete(synchronize_session=False)
    )
    db.commit()
    return {
        "safety_flags": flags,
        "entries": len(expired_entries),
        "conversations": len(expired_conversations),
        "feedback": feedback,
    }


def delete_user_data(db: Session, user_id: int) -> dict:
    counts = {}
    for label, model in (
        ("analyses", EmotionalAnalysisRecord),
        ("patterns", EmotionalPatternRecord),
        ("insights", EmotionalInsightRecord),
        ("preferences", CompanionPreferenceRecord),
        ("safety_flags", SafetyFlag),
        ("feedback", UserFeedback),
    ):
        counts[label] = db.query(model).filter(model.user_id == user_id).delete(synchronize_session=False)
    db.expire_all()
    entries = db.query(DiaryEntry).filter(DiaryEntry.user_id == user_id).all()
    for entry in entries:
        db.delete(entry)
    counts["entries"] = len(entries)
    conversations = db.query(Conversation).filter(Conversation.user_id == user_id).all()
    for conversation in conversations:
        db.delete(conversation)
    counts["conversations"] = len(conversations)
    db.commit()
    return counts


def get_user_by_email(db: Session, email: str) -> Optional[User]:
    return db.query(User).filter(User.email == email).first()
