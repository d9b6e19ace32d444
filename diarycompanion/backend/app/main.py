from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional, Tuple

from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.security import OAuth2PasswordBearer, OAuth2PasswordRequestForm
from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy import text
from sqlalchemy.orm import Session

from . import storage
from .config import APP_VERSION, Settings, configure_logging, get_settings
from .conversation_engine import ConversationEngine, HistoryMessage
from .crisis_detector import CrisisDetector, crisis_resources
from .database import Base, Conversation, ConversationMessage, DiaryEntry, SafetyFlag, User, engine, get_db
from .emotion_analyzer import EmotionAnalyzer
from .intent_router import IntentRouter
from .lexicon import Lexicon, load_lexicon
from .llm_client import ChatCompletionClient
from .pattern_engine import PatternAggregator, generate_insights, should_regenerate
from .personality_adapter import generate_greeting, learn_from_feedback, update_preferences_from_feedback
from .schemas import (
    COMMUNICATION_STYLES,
    EMPATHY_STYLES,
    RESPONSE_LENGTHS,
    ChatTurnResponse,
    CompanionPreferences,
    ConversationCreate,
    ConversationDetail,
    ConversationSummary,
    CrisisResource,
    EmotionalAnalysis,
    EmotionalInsights,
    EmotionalPatterns,
    EntryCreate,
    EntryResponse,
    EntryUpdate,
    FeedbackCreate,
    FeedbackRecord,
    MessageCreate,
    MessageResponse,
    PreferencesUpdate,
    RegisterRequest,
    RiskAssessment,
    RiskAssessmentRequest,
    TextAnalysisRequest,
    TokenResponse,
)

logger = logging.getLogger(__name__)

settings = get_settings()
SECRET_KEY = settings.secret_key
ALGORITHM = "HS256"
ACCESS_TOKEN_EXPIRE_MINUTES = 60 * 24

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


@dataclass
class Services:
    lexicon: Lexicon
    analyzer: EmotionAnalyzer
    crisis_detector: CrisisDetector
    router: IntentRouter
    llm_client: ChatCompletionClient
    engine: ConversationEngine
    min_analysis_chars: int = 20


def build_services(app_settings: Settings) -> Services:
    lexicon = load_lexicon(app_settings.lexicon_path)
    crisis_detector = CrisisDetector(lexicon)
    router = IntentRouter(lexicon)
    llm_client = ChatCompletionClient.from_settings(app_settings)
    return Services(
        lexicon=lexicon,
        analyzer=EmotionAnalyzer(lexicon),
        crisis_detector=crisis_detector,
        router=router,
        llm_client=llm_client,
        engine=ConversationEngine(router, crisis_detector, llm_client),
        min_analysis_chars=app_settings.min_analysis_chars,
    )


app = FastAPI(title="Diary Companion API", version=APP_VERSION)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"]
)

app.state.services = build_services(settings)


@app.on_event("startup")
def on_startup() -> None:
    configure_logging(settings.log_level)
    Base.metadata.create_all(bind=engine)
    if settings.llm_api_key is None:
        logger.info("No LLM API key configured; companion replies use local templates")


def get_services(request: Request) -> Services:
    return request.app.state.services


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    to_encode = data.copy()
    expire = datetime.utcnow() + (expires_delta or timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES))
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)


def get_current_user(
    token: str = Depends(oauth2_scheme),
    db: Session = Depends(get_db)
) -> User:
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])
        user_id = payload.get("sub")
        if user_id is None:
            raise credentials_exception
    except JWTError as exc:
        raise credentials_exception from exc

    user = db.query(User).filter(User.id == int(user_id)).first()
    if user is None:
        raise credentials_exception
    return user


def require_dev_mode() -> None:
    if not settings.dev_mode:
        raise HTTPException(status_code=403, detail="Developer mode disabled")


def require_content(content: str) -> str:
    if not content or not content.strip():
        raise HTTPException(status_code=400, detail="Content must not be empty")
    return content


def analyze_and_flag(
    db: Session,
    services: Services,
    user: User,
    entry: DiaryEntry,
) -> Tuple[Optional[EmotionalAnalysis], RiskAssessment]:
    content = entry.content or ""
    analysis: Optional[EmotionalAnalysis] = None
    if len(content.strip()) >= services.min_analysis_chars:
        analysis = services.analyzer.analyze_entry(entry.id, content, entry.entry_date)
        analysis = storage.store_analysis(db, user.id, analysis)
    assessment = services.crisis_detector.assess_risk(content, analysis=analysis)
    flags = services.crisis_detector.create_safety_flags(assessment)
    if flags:
        storage.record_safety_flags(db, user.id, flags, source="entry", entry_id=entry.id)
    return analysis, assessment


def entry_response(
    entry: DiaryEntry,
    analysis: Optional[EmotionalAnalysis] = None,
    risk: Optional[RiskAssessment] = None,
) -> EntryResponse:
    return EntryResponse(
        id=entry.id,
        content=entry.content,
        created_at=entry.created_at,
        updated_at=entry.updated_at,
        entry_date=entry.entry_date,
        word_count=entry.word_count,
        analysis=analysis,
        risk=risk if risk is not None and risk.level != "low" else None,
    )


def message_response(message: ConversationMessage) -> MessageResponse:
    try:
        metadata = json.loads(message.metadata_json or "{}")
    except json.JSONDecodeError:
        metadata = None
    return MessageResponse(
        id=message.id,
        role=message.role,
        content=message.content,
        created_at=message.created_at,
        metadata=metadata,
    )


def conversation_summary(db: Session, conversation: Conversation) -> ConversationSummary:
    return ConversationSummary(
        id=conversation.id,
        title=conversation.title,
        started_at=conversation.started_at,
        last_message_at=conversation.last_message_at,
        archived=conversation.archived,
        message_count=storage.count_messages(db, conversation.id),
    )


def get_entry_or_404(db: Session, user: User, entry_id: int) -> DiaryEntry:
    entry = storage.get_entry(db, user.id, entry_id)
    if entry is None:
        raise HTTPException(status_code=404, detail="Entry not found")
    return entry


def get_conversation_or_404(db: Session, user: User, conversation_id: str) -> Conversation:
    conversation = storage.get_conversation(db, user.id, conversation_id)
    if conversation is None:
        raise HTTPException(status_code=404, detail="Conversation not found")
    return conversation


def refresh_patterns(
    db: Session,
    user: User,
    timeframe: str = "weekly",
) -> EmotionalPatterns:
    analyses = storage.current_analyses(db, user.id)
    patterns = PatternAggregator(timeframe).aggregate(analyses, user.id)
    return storage.replace_patterns(db, patterns)


@app.get("/health")
def health() -> dict:
    db_status = "ok"
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
    except Exception:
        logger.exception("Database health check failed")
        db_status = "error"
    return {"status": "ok" if db_status == "ok" else "degraded", "db": db_status, "version": APP_VERSION}


@app.get("/meta")
def meta(services: Services = Depends(get_services)) -> dict:
    return {
        "version": APP_VERSION,
        "dev_mode": settings.dev_mode,
        "llm_configured": services.llm_client.is_available(),
        "min_analysis_chars": services.min_analysis_chars,
    }


@app.post("/auth/register", response_model=TokenResponse)
def register_user(payload: RegisterRequest, db: Session = Depends(get_db)) -> TokenResponse:
    existing = storage.get_user_by_email(db, payload.email)
    if existing:
        raise HTTPException(status_code=400, detail="Email already registered")
    password_bytes = payload.password.encode("utf-8")
    if len(password_bytes) > 72:
        raise HTTPException(
            status_code=400,
            detail="Password too long (bcrypt limit is 72 bytes). Use a shorter password.",
        )
    try:
        hashed_password = get_password_hash(payload.password)
    except Exception as exc:
        logger.exception("Password hashing failed")
        raise HTTPException(
            status_code=500,
            detail="Unable to process password at this time.",
        ) from exc
    user = User(email=payload.email, hashed_password=hashed_password)
    db.add(user)
    db.commit()
    db.refresh(user)
    token = create_access_token({"sub": str(user.id), "email": user.email})
    return TokenResponse(access_token=token, token_type="bearer")


@app.post("/auth/login", response_model=TokenResponse)
def login_user(
    form_data: OAuth2PasswordRequestForm = Depends(),
    db: Session = Depends(get_db)
) -> TokenResponse:
    user = storage.get_user_by_email(db, form_data.username)
    if not user or not verify_password(form_data.password, user.hashed_password):
        raise HTTPException(status_code=400, detail="Invalid email or password")
    token = create_access_token({"sub": str(user.id), "email": user.email})
    return TokenResponse(access_token=token, token_type="bearer")


@app.post("/entries", response_model=EntryResponse)
def create_entry(
    payload: EntryCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> EntryResponse:
    content = require_content(payload.content)
    entry = storage.create_entry(db, current_user.id, content, payload.entry_date)
    analysis, assessment = analyze_and_flag(db, services, current_user, entry)
    return entry_response(entry, analysis, assessment)


@app.get("/entries", response_model=List[EntryResponse])
def list_entries(
    days: Optional[int] = Query(None, ge=1, le=3650),
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> List[EntryResponse]:
    entries = storage.list_entries(db, current_user.id, days=days, limit=limit)
    return [entry_response(entry, storage.latest_analysis(db, entry.id)) for entry in entries]


@app.get("/entries/{entry_id}", response_model=EntryResponse)
def get_entry(
    entry_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> EntryResponse:
    entry = get_entry_or_404(db, current_user, entry_id)
    return entry_response(entry, storage.latest_analysis(db, entry.id))


@app.put("/entries/{entry_id}", response_model=EntryResponse)
def update_entry(
    entry_id: int,
    payload: EntryUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> EntryResponse:
    entry = get_entry_or_404(db, current_user, entry_id)
    entry = storage.update_entry(db, entry, require_content(payload.content))
    analysis, assessment = analyze_and_flag(db, services, current_user, entry)
    return entry_response(entry, analysis, assessment)


@app.delete("/entries/{entry_id}")
def delete_entry(
    entry_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> dict:
    entry = get_entry_or_404(db, current_user, entry_id)
    storage.delete_entry(db, entry)
    return {"deleted": True, "id": entry_id}


@app.get("/entries/{entry_id}/analysis", response_model=EmotionalAnalysis)
def get_entry_analysis(
    entry_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> EmotionalAnalysis:
    entry = get_entry_or_404(db, current_user, entry_id)
    analysis = storage.latest_analysis(db, entry.id)
    if analysis is None:
        raise HTTPException(status_code=404, detail="No analysis for this entry")
    return analysis


@app.post("/analysis/text", response_model=EmotionalAnalysis)
def analyze_text(
    payload: TextAnalysisRequest,
    current_user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> EmotionalAnalysis:
    return services.analyzer.analyze_entry(None, payload.content)


@app.get("/patterns", response_model=EmotionalPatterns)
def get_patterns(
    timeframe: str = Query("weekly", pattern="^(daily|weekly|monthly)$"),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> EmotionalPatterns:
    return refresh_patterns(db, current_user, timeframe)


@app.get("/insights", response_model=EmotionalInsights)
def get_insights(
    timeframe: str = Query("weekly", pattern="^(daily|weekly|monthly)$"),
    refresh: bool = Query(False),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> EmotionalInsights:
    preferences = storage.get_preferences(db, current_user.id)
    if not preferences.boundary_settings.share_insights_with_user:
        raise HTTPException(status_code=403, detail="Insights are turned off in your preferences")
    cached = storage.latest_insights(db, current_user.id, timeframe)
    if not refresh and not should_regenerate(cached, timeframe):
        return cached
    patterns = refresh_patterns(db, current_user, timeframe)
    insights = generate_insights(patterns, current_user.id, timeframe, services.lexicon)
    return storage.store_insights(db, insights)


@app.post("/safety/assess", response_model=RiskAssessment)
def assess_safety(
    payload: RiskAssessmentRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> RiskAssessment:
    assessment = services.crisis_detector.assess_risk(payload.text, payload.recent_messages)
    flags = services.crisis_detector.create_safety_flags(assessment)
    if flags:
        storage.record_safety_flags(db, current_user.id, flags, source="assessment")
    return assessment


@app.get("/safety/resources", response_model=List[CrisisResource])
def get_safety_resources(
    level: str = Query("high", pattern="^(low|moderate|high|critical)$"),
) -> List[CrisisResource]:
    return crisis_resources(level)


@app.get("/safety/flags")
def get_safety_flags(
    days: int = Query(30, ge=1, le=365),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> List[dict]:
    flags: List[SafetyFlag] = storage.list_safety_flags(db, current_user.id, days=days)
    return [
        {
            "id": flag.id,
            "source": flag.source,
            "type": flag.flag_type,
            "severity": flag.severity,
            "indicators": json.loads(flag.indicators_json or "[]"),
            "entry_id": flag.entry_id,
            "conversation_id": flag.conversation_id,
            "detected_at": flag.detected_at.isoformat(),
            "resolved": flag.resolved,
        }
        for flag in flags
    ]


@app.post("/conversations", response_model=ConversationSummary)
def create_conversation(
    payload: ConversationCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ConversationSummary:
    conversation = storage.create_conversation(db, current_user.id, payload.title)
    return conversation_summary(db, conversation)


@app.get("/conversations", response_model=List[ConversationSummary])
def list_conversations(
    include_archived: bool = Query(False),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> List[ConversationSummary]:
    conversations = storage.list_conversations(db, current_user.id, include_archived=include_archived)
    return [conversation_summary(db, conversation) for conversation in conversations]


@app.get("/conversations/{conversation_id}", response_model=ConversationDetail)
def get_conversation(
    conversation_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> ConversationDetail:
    conversation = get_conversation_or_404(db, current_user, conversation_id)
    summary = conversation_summary(db, conversation)
    return ConversationDetail(
        **summary.model_dump(),
        messages=[message_response(message) for message in conversation.messages],
    )


@app.post("/conversations/{conversation_id}/messages", response_model=ChatTurnResponse)
def send_message(
    conversation_id: str,
    payload: MessageCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> ChatTurnResponse:
    conversation = get_conversation_or_404(db, current_user, conversation_id)
    if conversation.archived:
        raise HTTPException(status_code=400, detail="Conversation is archived")
    content = require_content(payload.content)
    history = [
        HistoryMessage(role=message.role, content=message.content or "")
        for message in storage.conversation_history(db, conversation.id)
    ]
    user_message = storage.append_message(db, conversation, "user", content)

    response = services.engine.generate_response(
        content,
        conversation.id,
        history=history,
        preferences=storage.get_preferences(db, current_user.id),
        patterns=storage.latest_patterns(db, current_user.id),
    )
    if response.safety.level != "low":
        prior = [item.content for item in history if item.role == "user"]
        assessment = services.crisis_detector.assess_risk(content, prior)
        flags = services.crisis_detector.create_safety_flags(assessment)
        if flags:
            storage.record_safety_flags(
                db, current_user.id, flags, source="conversation", conversation_id=conversation.id
            )

    metadata = response.metadata.model_dump(mode="json")
    metadata.update({"intent": response.intent, "safety_level": response.safety.level})
    companion_message = storage.append_message(db, conversation, "companion", response.message, metadata)
    return ChatTurnResponse(
        conversation_id=conversation.id,
        user_message=message_response(user_message),
        companion_message=message_response(companion_message),
        response=response,
    )


@app.post("/conversations/{conversation_id}/archive", response_model=ConversationSummary)
def archive_conversation(
    conversation_id: str,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> ConversationSummary:
    conversation = get_conversation_or_404(db, current_user, conversation_id)
    conversation = storage.archive_conversation(db, conversation)
    services.engine.end_session(conversation.id)
    return conversation_summary(db, conversation)


@app.get("/preferences", response_model=CompanionPreferences)
def get_preferences(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> CompanionPreferences:
    return storage.get_preferences(db, current_user.id)


@app.patch("/preferences", response_model=CompanionPreferences)
def update_preferences(
    payload: PreferencesUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> CompanionPreferences:
    preferences = storage.get_preferences(db, current_user.id)
    changes = payload.model_dump(exclude_unset=True, exclude_none=True)
    for field, allowed in (
        ("communication_style", COMMUNICATION_STYLES),
        ("response_length", RESPONSE_LENGTHS),
        ("empathy_style", EMPATHY_STYLES),
    ):
        if field in changes and changes[field] not in allowed:
            raise HTTPException(status_code=400, detail=f"Invalid {field}: {changes[field]}")
    try:
        updated = CompanionPreferences.model_validate({**preferences.model_dump(), **changes})
    except ValueError as exc:
        raise HTTPException(status_code=400, detail="Invalid preferences") from exc
    return storage.save_preferences(db, current_user.id, updated)


@app.post("/feedback", response_model=CompanionPreferences)
def submit_feedback(
    payload: FeedbackCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> CompanionPreferences:
    feedback = FeedbackRecord(**payload.model_dump())
    storage.record_feedback(db, current_user.id, feedback)
    preferences = update_preferences_from_feedback(feedback, storage.get_preferences(db, current_user.id))
    preferences = learn_from_feedback(storage.list_feedback(db, current_user.id), preferences)
    return storage.save_preferences(db, current_user.id, preferences)


@app.get("/companion/greeting")
def get_greeting(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> dict:
    preferences = storage.get_preferences(db, current_user.id)
    patterns = storage.latest_patterns(db, current_user.id)
    last_topic = None
    if patterns is not None and patterns.triggers:
        last_topic = max(patterns.triggers, key=lambda item: item.frequency).trigger
    return {"greeting": generate_greeting(preferences, last_topic)}


@app.post("/privacy/purge")
def purge_expired_data(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> dict:
    preferences = storage.get_preferences(db, current_user.id)
    retention_days = preferences.boundary_settings.data_retention_period
    try:
        removed = storage.purge_expired(db, current_user.id, retention_days)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    logger.info("Purged data older than %d days for user %s", retention_days, current_user.id)
    return {"retention_days": retention_days, "removed": removed}


@app.delete("/privacy/data")
def delete_all_data(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> dict:
    for conversation in storage.list_conversations(db, current_user.id, include_archived=True):
        services.engine.end_session(conversation.id)
    removed = storage.delete_user_data(db, current_user.id)
    return {"deleted": True, "removed": removed}


@app.post("/dev/reanalyze")
def reanalyze_entries(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    services: Services = Depends(get_services),
) -> dict:
    require_dev_mode()
    count = 0
    for entry in storage.list_entries(db, current_user.id, limit=10_000):
        if entry.content and len(entry.content.strip()) >= services.min_analysis_chars:
            analysis = services.analyzer.analyze_entry(entry.id, entry.content, entry.entry_date)
            storage.store_analysis(db, current_user.id, analysis)
            count += 1
    refresh_patterns(db, current_user)
    return {"reanalyzed": count}
