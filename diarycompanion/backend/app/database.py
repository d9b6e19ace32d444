from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Iterator, Optional

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Integer, String, Text, create_engine
from sqlalchemy.orm import Session, declarative_base, relationship, sessionmaker
from sqlalchemy.types import TypeDecorator

from .config import get_settings
from .encryption import DecryptionError, EncryptionService

logger = logging.getLogger(__name__)

settings = get_settings()
DB_PATH = settings.db_path
DATABASE_URL = f"sqlite:///{DB_PATH}"

engine = create_engine(DATABASE_URL, connect_args={"check_same_thread": False})
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()

_cipher: Optional[EncryptionService] = None


def configure_encryption(service: EncryptionService) -> None:
    global _cipher
    _cipher = service


def get_cipher() -> EncryptionService:
    global _cipher
    if _cipher is None:
        _cipher = EncryptionService(settings.storage_password, settings.kdf_iterations)
    return _cipher


class EncryptedJSON(TypeDecorator):
    """JSON value stored as an AES-GCM envelope.

    Unreadable rows load as ``None`` instead of raising.
    """

    impl = Text
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        return get_cipher().encrypt_json(value)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        try:
            return get_cipher().decrypt_json(value)
        except DecryptionError as exc:
            logger.warning("Unable to decrypt stored value: %s", exc)
            return None


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    entries = relationship("DiaryEntry", back_populates="user", cascade="all, delete-orphan")


class DiaryEntry(Base):
    __tablename__ = "diary_entries"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    content = Column(EncryptedJSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    entry_date = Column(Date, default=date.today, nullable=True)
    word_count = Column(Integer, default=0, nullable=False)

    user = relationship("User", back_populates="entries")
    analyses = relationship(
        "EmotionalAnalysisRecord",
        back_populates="entry",
        cascade="all, delete-orphan",
        order_by="EmotionalAnalysisRecord.analyzed_at",
    )


class EmotionalAnalysisRecord(Base):
    __tablename__ = "emotional_analyses"

    id = Column(Integer, primary_key=True, index=True)
    entry_id = Column(Integer, ForeignKey("diary_entries.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    payload = Column(EncryptedJSON, nullable=True)
    analyzed_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    entry = relationship("DiaryEntry", back_populates="analyses")


class EmotionalPatternRecord(Base):
    __tablename__ = "emotional_patterns"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, unique=True)
    payload = Column(EncryptedJSON, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class EmotionalInsightRecord(Base):
    __tablename__ = "emotional_insights"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    timeframe = Column(String, nullable=False)
    payload = Column(EncryptedJSON, nullable=True)
    generated_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class CompanionPreferenceRecord(Base):
    __tablename__ = "companion_preferences"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, unique=True)
    payload = Column(EncryptedJSON, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)


class Conversation(Base):
    __tablename__ = "conversations"

    id = Column(String, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    title = Column(String, nullable=False, default="Conversation")
    started_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    last_message_at = Column(DateTime, nullable=True)
    archived = Column(Boolean, default=False, nullable=False)

    messages = relationship(
        "ConversationMessage",
        back_populates="conversation",
        cascade="all, delete-orphan",
        order_by="ConversationMessage.id",
    )


class ConversationMessage(Base):
    __tablename__ = "conversation_messages"

    id = Column(Integer, primary_key=True, index=True)
    conversation_id = Column(String, ForeignKey("conversations.id", ondelete="CASCADE"), nullable=False, index=True)
    role = Column(String, nullable=False)
    content = Column(EncryptedJSON, nullable=True)
    metadata_json = Column(String, nullable=False, default="{}")
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    conversation = relationship("Conversation", back_populates="messages")


class SafetyFlag(Base):
    __tablename__ = "safety_flags"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    conversation_id = Column(String, nullable=True)
    entry_id = Column(Integer, nullable=True)
    source = Column(String, nullable=False)
    flag_type = Column(String, nullable=False)
    severity = Column(String, nullable=False)
    indicators_json = Column(String, nullable=False, default="[]")
    detected_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    resolved = Column(Boolean, default=False, nullable=False)


class UserFeedback(Base):
    __tablename__ = "user_feedback"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    message_id = Column(Integer, nullable=True)
    feedback_type = Column(String, nullable=False)
    rating = Column(Integer, nullable=False, default=3)
    comment = Column(EncryptedJSON, nullable=True)
    helpful = Column(Boolean, default=False, nullable=False)
    categories_json = Column(String, nullable=False, default="[]")
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)


def get_db() -> Iterator[Session]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
