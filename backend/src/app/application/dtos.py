"""Data Transfer Objects — Pydantic models for API boundaries.

DTOs handle serialisation, validation, and documentation.  They live in the
application layer because they are *not* domain objects — they adapt between
the external world and the domain.  The structured feature results double as
the parsers' return types and as the cached representation.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.domain.entities import Attachment
from app.domain.enums import CefrLevel, ExerciseType, FeatureKey, ProviderKind


# ═══════════════════════════════════════════════════════════════
#  Common
# ═══════════════════════════════════════════════════════════════
class ErrorResponse(BaseModel):
    code: str
    message: str
    details: dict | None = None  # type: ignore[type-arg]


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str = "0.1.0"
    environment: str = "development"
    services: dict[str, str] = Field(default_factory=dict)


class TextResponse(BaseModel):
    text: str


class AttachmentIn(BaseModel):
    data: str = Field(..., min_length=1, description="Base64-encoded payload")
    mime_type: str = Field("audio/webm", examples=["audio/webm", "audio/wav"])

    def to_domain(self) -> Attachment:
        return Attachment(data=self.data, mime_type=self.mime_type)


class UserScoped(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    user_id: str | None = Field(None, max_length=64)


# ═══════════════════════════════════════════════════════════════
#  Generic generation
# ═══════════════════════════════════════════════════════════════
class GenerateRequest(UserScoped):
    prompt: str = Field("", max_length=20_000)
    context: str = Field("", max_length=20_000)
    feature: str = Field(FeatureKey.GENERAL.value, max_length=64)
    model: str | None = Field(None, max_length=100)
    attachment: AttachmentIn | None = None

    @model_validator(mode="after")
    def _require_content(self) -> GenerateRequest:
        if not self.prompt and self.attachment is None:
            raise ValueError("prompt or attachment is required")
        return self


class GenerateResponse(BaseModel):
    text: str
    credential: str
    attempts: int
    latency_ms: float


# ═══════════════════════════════════════════════════════════════
#  Learning features — requests
# ═══════════════════════════════════════════════════════════════
class TranslateRequest(UserScoped):
    sentence: str = Field(..., min_length=1, max_length=2000)


class HintsRequest(UserScoped):
    sentence: str = Field(..., min_length=1, max_length=2000)
    difficulty: str = Field("A1", max_length=10, examples=["A1", "B2", "easy"])


class UpgradeRequest(UserScoped):
    sentence: str = Field(..., min_length=1, max_length=2000)
    grammar_level: CefrLevel = CefrLevel.C1
    vocabulary_level: CefrLevel = CefrLevel.C1


class GrammarExercisesRequest(UserScoped):
    tense: str = Field(..., min_length=1, max_length=100, examples=["Present Simple"])
    count: int = Field(15, ge=1, le=50)


class EvaluateTranslationRequest(UserScoped):
    vietnamese: str = Field(..., min_length=1, max_length=2000)
    english: str = Field(..., min_length=1, max_length=2000)
    grammar_difficulty: str = Field("General", max_length=20)


class PronunciationRequest(UserScoped):
    target_sentence: str = Field(..., min_length=1, max_length=1000)
    transcript: str | None = Field(None, max_length=2000)
    audio: AttachmentIn | None = None

    @model_validator(mode="after")
    def _exactly_one_input(self) -> PronunciationRequest:
        if (self.transcript is None) == (self.audio is None):
            raise ValueError("provide exactly one of transcript or audio")
        return self


class ChatTurn(BaseModel):
    role: str = Field(..., pattern="^(user|assistant)$")
    content: str


class RoleplayRespondRequest(UserScoped):
    scenario: str = Field(..., min_length=1, max_length=500)
    role: str = Field(..., min_length=1, max_length=100)
    history: list[ChatTurn] = Field(default_factory=list)
    message: str = Field("", max_length=4000)
    audio: AttachmentIn | None = None

    @model_validator(mode="after")
    def _require_turn(self) -> RoleplayRespondRequest:
        if not self.message and self.audio is None:
            raise ValueError("message or audio is required")
        return self


class RoleplayReportRequest(UserScoped):
    scenario: str = Field(..., min_length=1, max_length=500)
    role: str = Field(..., min_length=1, max_length=100)
    history: list[ChatTurn] = Field(..., min_length=1)


class PracticeSentenceRequest(UserScoped):
    level: CefrLevel = CefrLevel.A1


# ═══════════════════════════════════════════════════════════════
#  Learning features — structured results
# ═══════════════════════════════════════════════════════════════
class SentenceHints(BaseModel):
    vocabulary_hints: list[str] = Field(default_factory=list)
    grammar_structures: list[str] = Field(default_factory=list)


class Improvement(BaseModel):
    original: str = ""
    improved: str = ""
    explanation: str = ""


class UpgradeResult(BaseModel):
    upgraded_sentence: str
    improvements: list[Improvement] = Field(default_factory=list)


class GrammarExercise(BaseModel):
    type: ExerciseType
    question: str
    correct_answer: str | None = None
    explanation: str | None = None
    options: dict[str, str] = Field(default_factory=dict)
    words: list[str] = Field(default_factory=list)


class GrammarExercisesResponse(BaseModel):
    exercises: list[GrammarExercise]


class TranslationEvaluation(BaseModel):
    score: int = 0
    feedback: str = ""
    corrections: list[str] = Field(default_factory=list)
    better_version: str | None = None


class PronunciationMistake(BaseModel):
    word: str
    sounded_like: str
    advice: str


class PronunciationAnalysis(BaseModel):
    score: int = 0
    feedback: str = ""
    mistakes: list[PronunciationMistake] = Field(default_factory=list)
    transcript: str = ""


class RoleplayReport(BaseModel):
    model_config = ConfigDict(extra="allow")

    naturalness: float = 0
    grammar_errors: list[dict[str, Any]] = Field(default_factory=list)
    vocabulary_suggestions: list[dict[str, Any]] = Field(default_factory=list)
    overall_comment: str = ""


# ═══════════════════════════════════════════════════════════════
#  Administration
# ═══════════════════════════════════════════════════════════════
class CredentialTestRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    key: str = Field(..., min_length=1)
    model: str = Field("gemini-2.5-flash", max_length=100)
    provider: ProviderKind = ProviderKind.GEMINI


class CredentialTestResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    success: bool
    message: str
    key_deactivated: bool = False


class CredentialTestSummaryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total: int
    success: int
    failed: int
    details: list[dict[str, Any]]


class CredentialHealthResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    name: str
    masked_key: str
    provider: ProviderKind
    model: str
    use_count: int
    failure_count: int
    last_used_at: float | None = None
    cooling_down: bool
    cooldown_remaining_s: float


class ConfigResponse(BaseModel):
    config: dict[str, str]
    models: list[dict[str, str]]


class UpdateSettingRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    key: str = Field(..., min_length=1, max_length=100)
    value: str = Field(..., min_length=1, max_length=200)


class UsageResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: str
    month: str
    total_requests: int
    success_requests: int
    failed_requests: int
    features: dict[str, int]
    last_active: datetime
