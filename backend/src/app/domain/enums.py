"""Domain enumerations for the AI request dispatcher."""

from __future__ import annotations

import enum


class ProviderKind(str, enum.Enum):
    """Provider family a credential belongs to."""

    GEMINI = "gemini"
    OPENAI = "openai"


class AttemptOutcome(str, enum.Enum):
    """Classification of a single credential attempt."""

    SUCCESS = "success"
    RATE_LIMITED = "rate_limited"
    FAILED = "failed"


class FeatureKey(str, enum.Enum):
    """Logical operation names used for model lookup and usage accounting."""

    GENERAL = "general"
    TRANSLATION = "translation"
    HINTS = "hints"
    UPGRADE = "upgrade"
    GRAMMAR_EXERCISE = "grammar_exercise"
    TRANSLATION_EVAL = "translation_eval"
    PRONUNCIATION_EVAL_TEXT = "pronunciation_eval_text"
    PRONUNCIATION_EVAL_AUDIO = "pronunciation_eval_audio"
    ROLEPLAY_CHAT = "roleplay_chat"
    ROLEPLAY_REPORT = "roleplay_report"
    PRACTICE_SENTENCE = "practice_sentence"


class ExerciseType(str, enum.Enum):
    """Grammar exercise formats."""

    MCQ = "mcq"
    FILL = "fill"
    FIND_ERROR = "find_error"
    REORDER = "reorder"
    REWRITE = "rewrite"


class CefrLevel(str, enum.Enum):
    A1 = "A1"
    A2 = "A2"
    B1 = "B1"
    B2 = "B2"
    C1 = "C1"
    C2 = "C2"
