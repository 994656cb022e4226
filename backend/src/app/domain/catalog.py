"""Model catalog: feature → setting key → default model."""

from __future__ import annotations

from app.domain.enums import FeatureKey

FALLBACK_MODEL = "gemini-2.5-flash-lite"

# Setting key (as stored in the settings source) → default model id.
DEFAULT_MODELS: dict[str, str] = {
    "chatbot_model": "gemini-2.5-flash-lite",
    "translation_model": "gemini-2.5-flash-lite",
    "translation_eval_model": "gemini-2.5-flash-lite",
    "roleplay_chat_model": "gemini-2.5-flash-lite",
    "roleplay_report_model": "gemini-2.5-pro",
    "upgrade_model": "gemini-2.5-pro",
    "vocabulary_model": "gemini-2.5-flash-lite",
    "grammar_model": "gemini-2.5-flash-lite",
    "pronunciation_eval_model": "gemini-2.5-flash-lite",
    "pronunciation_gen_model": "gemini-2.5-flash-lite",
}

# Models offered to administrators when editing feature settings.
AVAILABLE_MODELS: list[dict[str, str]] = [
    {"value": "gemini-3-flash-preview", "label": "Gemini 3 Flash (Preview)"},
    {"value": "gemini-3-pro-preview", "label": "Gemini 3 Pro (Preview)"},
    {"value": "gemini-2.5-flash-lite", "label": "Gemini 2.5 Flash-Lite (Recommended)"},
    {
        "value": "gemini-2.5-flash-native-audio-preview-12-2025",
        "label": "Gemini 2.5 Flash Native Audio",
    },
    {"value": "gemini-2.5-flash", "label": "Gemini 2.5 Flash"},
    {"value": "gemini-2.5-pro", "label": "Gemini 2.5 Pro"},
    {"value": "gemini-2.0-flash-exp", "label": "Gemini 2.0 Flash (Native Audio)"},
    {"value": "gemini-2.0-flash", "label": "Gemini 2.0 Flash"},
]

FEATURE_MODEL_SETTINGS: dict[str, str] = {
    FeatureKey.GENERAL.value: "chatbot_model",
    FeatureKey.TRANSLATION.value: "translation_model",
    FeatureKey.HINTS.value: "vocabulary_model",
    FeatureKey.UPGRADE.value: "upgrade_model",
    FeatureKey.GRAMMAR_EXERCISE.value: "grammar_model",
    FeatureKey.TRANSLATION_EVAL.value: "translation_eval_model",
    FeatureKey.PRONUNCIATION_EVAL_TEXT.value: "pronunciation_eval_model",
    FeatureKey.PRONUNCIATION_EVAL_AUDIO.value: "pronunciation_eval_model",
    FeatureKey.ROLEPLAY_CHAT.value: "roleplay_chat_model",
    FeatureKey.ROLEPLAY_REPORT.value: "roleplay_report_model",
    FeatureKey.PRACTICE_SENTENCE.value: "pronunciation_gen_model",
}

# Placeholder names for native-audio models and what they resolve to.
NATIVE_AUDIO_ALIASES = frozenset(
    {"gemini-2.5-flash-native", "gemini-2.5-flash-native-audio-preview-12-2025"}
)
NATIVE_AUDIO_MODEL = "gemini-2.0-flash-exp"
NATIVE_AUDIO_TEXT_FALLBACK = "gemini-2.5-flash"


def setting_key_for(feature: str) -> str:
    """Setting key consulted for ``feature``; unknown features use their own name."""
    return FEATURE_MODEL_SETTINGS.get(feature, feature)


def default_model_for(setting_key: str) -> str:
    return DEFAULT_MODELS.get(setting_key, FALLBACK_MODEL)


def effective_audio_model(model: str, *, has_audio: bool) -> str:
    if model not in NATIVE_AUDIO_ALIASES:
        return model
    return NATIVE_AUDIO_MODEL if has_audio else NATIVE_AUDIO_TEXT_FALLBACK
