from __future__ import annotations

from datetime import date, datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field

RiskLevel = Literal["low", "moderate", "high", "critical"]
ConcernType = Literal["anxiety", "depression", "stress", "isolation", "crisis", "other"]
FeedbackType = Literal["helpful", "not_helpful", "inappropriate", "too_clinical", "too_casual", "perfect"]

COMMUNICATION_STYLES = ["casual", "formal", "warm", "direct", "gentle"]
RESPONSE_LENGTHS = ["brief", "moderate", "detailed"]
EMPATHY_STYLES = ["validating", "solution_focused", "exploratory", "strength_based"]


class Emotion(BaseModel):
    name: str
    intensity: int
    category: str
    color: str = "#808080"


class SentimentScore(BaseModel):
    positive: float = 0.0
    negative: float = 0.0
    neutral: float = 0.0
    compound: float = 0.0


class ConcernLevel(BaseModel):
    type: ConcernType
    category: str
    severity: RiskLevel
    indicators: List[str] = Field(default_factory=list)
    confidence: float = 0.0


class EmotionalAnalysis(BaseModel):
    id: Optional[int] = None
    entry_id: Optional[int] = None
    primary_emotions: List[Emotion] = Field(default_factory=list)
    sentiment: SentimentScore = Field(default_factory=SentimentScore)
    intensity: int = 0
    themes: List[str] = Field(default_factory=list)
    concerns: List[ConcernLevel] = Field(default_factory=list)
    positive_indicators: List[str] = Field(default_factory=list)
    coping_mechanisms: List[str] = Field(default_factory=list)
    confidence: float = 0.0
    analyzed_at: datetime = Field(default_factory=datetime.utcnow)
    entry_date: Optional[date] = None


class DataPoint(BaseModel):
    date: datetime
    value: float


class EmotionalTrend(BaseModel):
    emotion: str
    direction: str
    strength: float
    timeframe: str = "weekly"
    data_points: List[DataPoint] = Field(default_factory=list)


class EmotionalTrigger(BaseModel):
    trigger: str
    emotions: List[str] = Field(default_factory=list)
    frequency: int = 0
    intensity: float = 0.0
    context: List[str] = Field(default_factory=list)
    last_occurrence: Optional[datetime] = None


class ResilienceMetrics(BaseModel):
    recovery_speed: float = 5.0
    coping_effectiveness: float = 5.0
    emotional_range: float = 5.0
    stability_score: float = 5.0


class GrowthIndicators(BaseModel):
    self_awareness: float = 5.0
    emotional_vocabulary: float = 5.0
    coping_skills: float = 5.0
    positive_patterns: List[str] = Field(default_factory=list)
    areas_for_growth: List[str] = Field(default_factory=list)


class EmotionalPatterns(BaseModel):
    user_id: int
    trends: List[EmotionalTrend] = Field(default_factory=list)
    triggers: List[EmotionalTrigger] = Field(default_factory=list)
    resilience: ResilienceMetrics = Field(default_factory=ResilienceMetrics)
    growth: GrowthIndicators = Field(default_factory=GrowthIndicators)
    analysis_count: int = 0
    last_updated: datetime = Field(default_factory=datetime.utcnow)


class PatternInsight(BaseModel):
    pattern: str
    description: str
    strength: float = 0.0
    trend: str = "stable"
    timeframe: str = "weekly"
    recommendations: List[str] = Field(default_factory=list)


class GrowthCelebration(BaseModel):
    achievement: str
    description: str


class EmotionalInsights(BaseModel):
    user_id: int
    timeframe: str
    generated_at: datetime = Field(default_factory=datetime.utcnow)
    summary: str = ""
    pattern_insights: List[PatternInsight] = Field(default_factory=list)
    growth_celebrations: List[GrowthCelebration] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)


class RiskIndicator(BaseModel):
    type: str
    description: str
    severity: int
    confidence: float


class CrisisResource(BaseModel):
    type: str
    name: str
    contact: str
    availability: str
    specialization: List[str] = Field(default_factory=list)
    language: List[str] = Field(default_factory=list)
    description: str = ""
    priority: int = 0


class SafetyResponse(BaseModel):
    level: RiskLevel
    message: str
    resources: List[CrisisResource] = Field(default_factory=list)
    follow_up_actions: List[str] = Field(default_factory=list)
    escalation_triggers: List[str] = Field(default_factory=list)


class RiskAssessment(BaseModel):
    level: RiskLevel = "low"
    indicators: List[RiskIndicator] = Field(default_factory=list)
    urgency_factors: List[str] = Field(default_factory=list)
    protective_factors: List[str] = Field(default_factory=list)
    message: str = ""
    resources: List[CrisisResource] = Field(default_factory=list)
    immediate_actions: List[str] = Field(default_factory=list)
    follow_up_actions: List[str] = Field(default_factory=list)
    escalation_triggers: List[str] = Field(default_factory=list)
    monitoring_recommendations: List[str] = Field(default_factory=list)
    should_escalate: bool = False
    escalation_reason: str = ""


class SafetyFlagRecord(BaseModel):
    type: str
    severity: RiskLevel
    indicators: List[str] = Field(default_factory=list)
    detected_at: datetime = Field(default_factory=datetime.utcnow)
    resolved: bool = False


class SupportPreference(BaseModel):
    type: str
    effectiveness: float = 5.0
    frequency: int = 0
    last_used: Optional[datetime] = None


class TopicSensitivity(BaseModel):
    topic: str
    sensitivity_level: str = "moderate"
    approach: str = "gentle"


class BoundarySettings(BaseModel):
    topics_to_avoid: List[str] = Field(default_factory=list)
    max_session_length: int = Field(default=30, ge=1, le=24 * 60)
    crisis_intervention_enabled: bool = True
    data_retention_period: int = Field(default=365, ge=1, le=3650)
    share_insights_with_user: bool = True
    allow_external_ai: bool = True


class CompanionPreferences(BaseModel):
    communication_style: str = "warm"
    response_length: str = "moderate"
    empathy_style: str = "validating"
    humor_level: int = 5
    directness_level: int = 5
    support_preferences: List[SupportPreference] = Field(default_factory=list)
    topic_sensitivities: List[TopicSensitivity] = Field(default_factory=list)
    boundary_settings: BoundarySettings = Field(default_factory=BoundarySettings)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class FeedbackRecord(BaseModel):
    message_id: Optional[int] = None
    type: FeedbackType
    rating: int = 3
    comment: Optional[str] = None
    helpful: bool = False
    categories: List[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=datetime.utcnow)


class PersonalizationElement(BaseModel):
    type: str
    content: str
    confidence: float


class ResponseMetadata(BaseModel):
    confidence: float
    response_type: str
    support_strategy: str
    source: str = "template"
    fallback_used: bool = False
    generation_time_ms: int = 0
    personalization_elements: List[PersonalizationElement] = Field(default_factory=list)


class SafetyCheck(BaseModel):
    level: RiskLevel
    requires_intervention: bool
    message: str = ""
    resources: List[CrisisResource] = Field(default_factory=list)


class CompanionResponse(BaseModel):
    message: str
    intent: str
    suggested_follow_ups: List[str] = Field(default_factory=list)
    emotional_tone: str = "supportive"
    metadata: ResponseMetadata
    safety: SafetyCheck
    created_at: datetime = Field(default_factory=datetime.utcnow)


class TokenResponse(BaseModel):
    access_token: str
    token_type: str


class RegisterRequest(BaseModel):
    email: str
    password: str


class EntryCreate(BaseModel):
    content: str
    entry_date: Optional[date] = None


class EntryUpdate(BaseModel):
    content: str


class EntryResponse(BaseModel):
    id: int
    content: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    entry_date: Optional[date] = None
    word_count: int = 0
    analysis: Optional[EmotionalAnalysis] = None
    risk: Optional[RiskAssessment] = None


class TextAnalysisRequest(BaseModel):
    content: str


class RiskAssessmentRequest(BaseModel):
    text: str
    recent_messages: List[str] = Field(default_factory=list)


class ConversationCreate(BaseModel):
    title: Optional[str] = None


class ConversationSummary(BaseModel):
    id: str
    title: str
    started_at: datetime
    last_message_at: Optional[datetime] = None
    archived: bool = False
    message_count: int = 0


class MessageCreate(BaseModel):
    content: str


class MessageResponse(BaseModel):
    id: int
    role: str
    content: Optional[str] = None
    created_at: datetime
    metadata: Optional[Dict[str, object]] = None


class ConversationDetail(ConversationSummary):
    messages: List[MessageResponse] = Field(default_factory=list)


class ChatTurnResponse(BaseModel):
    conversation_id: str
    user_message: MessageResponse
    companion_message: MessageResponse
    response: CompanionResponse


class PreferencesUpdate(BaseModel):
    communication_style: Optional[str] = None
    response_length: Optional[str] = None
    empathy_style: Optional[str] = None
    humor_level: Optional[int] = Field(default=None, ge=0, le=10)
    directness_level: Optional[int] = Field(default=None, ge=0, le=10)
    topic_sensitivities: Optional[List[TopicSensitivity]] = None
    boundary_settings: Optional[BoundarySettings] = None


class FeedbackCreate(BaseModel):
    message_id: Optional[int] = None
    type: FeedbackType
    rating: int = Field(default=3, ge=1, le=5)
    comment: Optional[str] = None
    helpful: bool = False
    categories: List[str] = Field(default_factory=list)
