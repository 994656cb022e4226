"""Learning feature operations built on the AI gateway.

Every structured feature is a dispatch-plus-parse pipeline wrapped in
``with_retry``: a response that does not parse is asked for again, whatever
credential produced it.  Features whose answer is only a nicety (hints,
evaluation, roleplay report, practice sentence) degrade to a neutral value
when every provider credential fails; the rest propagate.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

import structlog
from pydantic import BaseModel, TypeAdapter

from app.application import parsers
from app.application.dtos import (
    ChatTurn,
    GrammarExercise,
    PronunciationAnalysis,
    RoleplayReport,
    SentenceHints,
    TranslationEvaluation,
    UpgradeResult,
)
from app.application.services import AIGatewayService
from app.domain.catalog import effective_audio_model
from app.domain.entities import Attachment
from app.domain.enums import CefrLevel, FeatureKey
from app.domain.exceptions import AllCredentialsFailedError, ParseError
from app.ports.outbound import CachePort
from app.shared.providers import with_retry

logger = structlog.get_logger(__name__)

T = TypeVar("T")
M = TypeVar("M", bound=BaseModel)

# Degradable failures: provider outage or output that never parsed
_DEGRADABLE = (AllCredentialsFailedError, ParseError)

_EXERCISE_LIST = TypeAdapter(list[GrammarExercise])

PRACTICE_FALLBACKS: dict[str, str] = {
    CefrLevel.A1.value: "I like to eat apples and bananas.",
    CefrLevel.B1.value: "The weather today is perfect for a picnic in the park.",
    CefrLevel.C1.value: "Sustainability is crucial for the long-term well-being of our planet.",
}

_HINT_FORMAT = (
    "Output text format per line:\n"
    "VOCAB: [word] - [Vietnamese meaning]\n"
    "GRAMMAR: [Specific Structure Formula/Pattern for this sentence]"
)

_EXERCISE_FORMAT = """Return plain text, exercises separated by "---".
Each exercise must follow EXACTLY this structure:

TYPE: [mcq | fill | find_error | reorder | rewrite]
QUESTION: [question text]
OPTIONS: [A | B | C | D for mcq, empty for fill/find_error/rewrite, word list for reorder]
ANSWER: [correct answer]
EXPLAIN: [short explanation in Vietnamese]
---

For find_error, separate the sentence parts with "|" in QUESTION.
For reorder, keep the capitalisation of the first word in OPTIONS."""


def _history_text(history: Sequence[ChatTurn], role: str) -> str:
    return "\n".join(
        f"{'User' if turn.role == 'user' else role}: {turn.content}" for turn in history
    )


class LearningFeatureService:
    """Vietnamese-to-English learning features over ``AIGatewayService``."""

    def __init__(
        self,
        gateway: AIGatewayService,
        cache: CachePort,
        *,
        retry_attempts: int = 2,
        cache_ttl_s: int = 3600,
    ) -> None:
        self._gateway = gateway
        self._cache = cache
        self._attempts = retry_attempts
        self._cache_ttl = cache_ttl_s

    # ── Plumbing ─────────────────────────────────────────────
    async def _ask(
        self,
        feature: FeatureKey,
        prompt: str,
        parse: Callable[[str], T],
        *,
        context: str = "",
        user_id: str | None = None,
        attachment: Attachment | None = None,
        model: str | None = None,
    ) -> T:
        async def operation() -> T:
            text = await self._gateway.send_request(
                prompt,
                context,
                feature.value,
                attachment,
                user_id,
                model,
            )
            return parse(text)

        return await with_retry(operation, self._attempts, operation_name=feature.value)

    async def _cached(
        self, key: str, load: Callable[[str], M], compute: Callable[[], Awaitable[M]]
    ) -> M:
        raw = await self._cache.get(key)
        if raw is not None:
            try:
                return load(raw)
            except ValueError:
                logger.warning("feature_cache_entry_invalid", key=key)
        result = await compute()
        await self._cache.set(key, result.model_dump_json(), ttl_seconds=self._cache_ttl)
        return result

    # ── Translation ──────────────────────────────────────────
    async def translate(self, sentence: str, user_id: str | None = None) -> str:
        prompt = (
            "Translate this Vietnamese sentence to English. "
            f'Provide only the translation, nothing else:\n"{sentence}"'
        )
        text = await self._gateway.send_request(
            prompt, feature=FeatureKey.TRANSLATION.value, user_id=user_id
        )
        return text.strip()

    async def sentence_hints(
        self, sentence: str, difficulty: str = "A1", user_id: str | None = None
    ) -> SentenceHints:
        """Vocabulary and grammar hints; empty hints when unavailable."""
        level = difficulty.upper()
        if level in ("A1", "A2", "EASY"):
            brief = (
                "Provide simple hints (A1-A2).\n"
                "1. Key Vocabulary (Format: English word - Vietnamese meaning).\n"
                "2. Specific grammar structure needed for THIS sentence "
                '(e.g. "Can + Subject + Verb...?" for questions).'
            )
        elif level in ("B1", "B2", "MEDIUM"):
            brief = (
                "Provide intermediate hints (B1-B2).\n"
                "1. Key Vocabulary (English word - Vietnamese meaning).\n"
                "2. Specific grammar structure (Pattern Name or Formula). concise."
            )
        else:
            brief = (
                "Provide advanced hints (C1-C2).\n"
                "1. Synonyms/Idioms (English word - Vietnamese meaning).\n"
                "2. Advanced structure required."
            )
        prompt = f'For Vietnamese sentence: "{sentence}"\n{brief}\n{_HINT_FORMAT}\nNo markdown.'

        async def compute() -> SentenceHints:
            return await self._ask(FeatureKey.HINTS, prompt, parsers.parse_hints, user_id=user_id)

        try:
            return await self._cached(
                f"hints:{level}:{sentence.strip()}", SentenceHints.model_validate_json, compute
            )
        except _DEGRADABLE as exc:
            logger.warning("hints_degraded", error=str(exc))
            return SentenceHints()

    async def upgrade_sentence(
        self,
        sentence: str,
        grammar_level: str = "C1",
        vocabulary_level: str = "C1",
        user_id: str | None = None,
    ) -> UpgradeResult:
        prompt = (
            f"Upgrade this English sentence to Grammar={grammar_level}, "
            f"Vocab={vocabulary_level}.\n"
            f'Original: "{sentence}"\n'
            "Output TEXT ONLY (No JSON, No Markdown). Format:\n"
            "UPGRADED: [The full new sentence]\n"
            "---\n"
            "ORIGINAL: [substring from old]\n"
            "IMPROVED: [substring in new]\n"
            "EXPLAIN: [Reason]\n"
            "---"
        )

        async def compute() -> UpgradeResult:
            return await self._ask(
                FeatureKey.UPGRADE, prompt, parsers.parse_upgrade, user_id=user_id
            )

        return await self._cached(
            f"upgrade:{grammar_level}:{vocabulary_level}:{sentence.strip()}",
            UpgradeResult.model_validate_json,
            compute,
        )

    async def grammar_exercises(
        self, tense: str, count: int = 15, user_id: str | None = None
    ) -> list[GrammarExercise]:
        prompt = (
            "You are an English grammar expert. Create "
            f'{count} exercises on the "{tense}" tense covering 5 types: '
            "'mcq' (multiple choice), 'fill' (fill in the blank), "
            "'find_error' (find the mistake), 'reorder' (reorder words), "
            "'rewrite' (rewrite keeping the meaning).\n\n"
            f"{_EXERCISE_FORMAT}"
        )
        key = f"exercises:{tense}:{count}"

        cached = await self._cache.get(key)
        if cached is not None:
            try:
                return _EXERCISE_LIST.validate_json(cached)
            except ValueError:
                logger.warning("feature_cache_entry_invalid", key=key)

        exercises = await self._ask(
            FeatureKey.GRAMMAR_EXERCISE, prompt, parsers.parse_exercises, user_id=user_id
        )
        await self._cache.set(
            key, _EXERCISE_LIST.dump_json(exercises).decode(), ttl_seconds=self._cache_ttl
        )
        return exercises

    async def evaluate_translation(
        self,
        vietnamese: str,
        english: str,
        grammar_difficulty: str = "General",
        user_id: str | None = None,
    ) -> TranslationEvaluation:
        """Scored feedback; a zero score with "Error" feedback when unavailable."""
        prompt = (
            "Act as an English teacher evaluating a translation from Vietnamese to English.\n"
            f'Vietnamese: "{vietnamese}"\n'
            f'User English: "{english}"\n'
            f"Target Grammar Level: {grammar_difficulty} (Evaluate strictness based on this level)\n\n"
            "Task:\n"
            "1. Score from 0 to 100 based on Accuracy, Grammar, and Vocabulary.\n"
            "2. Provide feedback in Vietnamese, but keep English terms in English.\n"
            f"3. Provide a better version if necessary (Native {grammar_difficulty} level).\n"
            "4. List specific corrections.\n\n"
            "Output Format (text only, no markdown):\n"
            "SCORE: [number 0-100]\n"
            "FEEDBACK: [Vietnamese text, concise]\n"
            "BETTER: [English text or NONE]\n"
            "CORRECTION: [Explanation of error and fix]\n"
            "CORRECTION: ..."
        )
        try:
            return await self._ask(
                FeatureKey.TRANSLATION_EVAL,
                prompt,
                parsers.parse_translation_evaluation,
                user_id=user_id,
            )
        except _DEGRADABLE as exc:
            logger.warning("evaluation_degraded", error=str(exc))
            return TranslationEvaluation(score=0, feedback="Error")

    async def analyze_pronunciation(
        self,
        target_sentence: str,
        *,
        transcript: str | None = None,
        audio: Attachment | None = None,
        user_id: str | None = None,
    ) -> PronunciationAnalysis:
        """Score either a transcript or a recording of ``target_sentence``."""
        has_audio = audio is not None
        feature = (
            FeatureKey.PRONUNCIATION_EVAL_AUDIO if has_audio else FeatureKey.PRONUNCIATION_EVAL_TEXT
        )
        configured = await self._gateway.resolve_model(feature.value)
        model = effective_audio_model(configured, has_audio=has_audio)

        if has_audio:
            prompt = (
                "Act as an expert linguistic examiner for an IELTS Speaking test "
                "(Band 9.0 standard).\n"
                "Analyze the pronunciation of the following English sentence based on "
                "the audio provided.\n\n"
                f'Target Sentence: "{target_sentence}"\n\n'
                "Task:\n"
                "1. Transcribe EXACTLY what you hear.\n"
                "2. Evaluate individual sounds, word stress, sentence stress and rhythm, "
                "intonation, and connected speech.\n"
                "3. Score strictly from 0 to 100 (where 90+ is native-like).\n"
                "4. Provide feedback in Vietnamese, professional and detailed.\n\n"
                "Output Format (text only):\n"
                "TRANSCRIPT: [What user said]\n"
                "SCORE: [number]\n"
                "FEEDBACK: [Vietnamese feedback]\n"
                "MISTAKE: [word] -> [sounded like] -> [advice in Vietnamese]\n"
                "MISTAKE: ..."
            )
        else:
            prompt = (
                "Analyze this English pronunciation attempt.\n"
                f'Target Sentence: "{target_sentence}"\n'
                f'Transcribed Spoken Text: "{transcript or ""}"\n\n'
                "Task:\n"
                "1. Compare meaning and phonetics (inferred).\n"
                "2. Score from 0 to 100.\n"
                "3. Provide encouraging feedback in Vietnamese.\n"
                "4. Identify specific mistakes if any.\n\n"
                "Output Format (text only):\n"
                "SCORE: [number]\n"
                "FEEDBACK: [Vietnamese feedback]\n"
                "MISTAKE: [word] -> [sounded like/error] -> [advice in Vietnamese]\n"
                "MISTAKE: ..."
            )

        return await self._ask(
            feature,
            prompt,
            parsers.parse_pronunciation,
            user_id=user_id,
            attachment=audio,
            model=model,
        )

    # ── Roleplay ─────────────────────────────────────────────
    async def roleplay_response(
        self,
        scenario: str,
        role: str,
        history: Sequence[ChatTurn],
        message: str,
        *,
        audio: Attachment | None = None,
        user_id: str | None = None,
    ) -> str:
        context = (
            f'You are roleplaying as a "{role}" in a "{scenario}" scenario.\n'
            "Your goal is to have a natural conversation with the user to help them "
            "practice English.\n"
            "- Stay in character at all times.\n"
            "- Keep responses concise and natural (1-3 sentences typically).\n"
            "- Correct crucial misunderstanding only if necessary for the flow, "
            "otherwise just chat.\n"
            "- Do not give feedback yet, just roleplay.\n"
        )
        if audio is not None:
            context += "- The user has sent an AUDIO message. Listen to it and respond naturally.\n"
        context += f"\nPrevious conversation:\n{_history_text(history, role)}"

        text = await self._gateway.send_request(
            message,
            context,
            FeatureKey.ROLEPLAY_CHAT.value,
            audio,
            user_id,
        )
        return text.strip()

    async def roleplay_report(
        self,
        scenario: str,
        role: str,
        history: Sequence[ChatTurn],
        user_id: str | None = None,
    ) -> RoleplayReport:
        """Feedback report for a finished roleplay; neutral when unavailable."""
        prompt = (
            "Analyze this roleplay conversation:\n"
            f"Scenario: {scenario}\n"
            f"Role: {role}\n\n"
            f"Conversation:\n{_history_text(history, role)}\n\n"
            "Task: Provide a feedback report in JSON format.\n"
            '1. "naturalness": score 0-10.\n'
            '2. "grammar_errors": array of objects '
            '{ "original": "...", "correction": "...", "explanation": "..." }.\n'
            '3. "vocabulary_suggestions": array of objects '
            '{ "original": "...", "better_word": "...", "context": "..." }.\n'
            '4. "overall_comment": general feedback.\n\n'
            "Output JSON ONLY."
        )
        try:
            return await self._ask(
                FeatureKey.ROLEPLAY_REPORT,
                prompt,
                parsers.parse_roleplay_report,
                user_id=user_id,
            )
        except _DEGRADABLE as exc:
            logger.warning("roleplay_report_degraded", error=str(exc))
            return RoleplayReport(
                overall_comment="Could not generate report due to an error."
            )

    # ── Pronunciation practice ───────────────────────────────
    async def practice_sentence(
        self, level: str = CefrLevel.A1.value, user_id: str | None = None
    ) -> str:
        """A practice sentence for ``level``; a canned one when unavailable."""
        prompt = (
            "Generate a random English sentence for pronunciation practice.\n"
            f"Level: {level} (A1, A2, B1, B2, C1, or C2).\n\n"
            "Requirements:\n"
            "1. The sentence should be natural and grammatically correct.\n"
            "2. Fit the selected CEFR level complexity.\n"
            "3. Length: 8-15 words.\n\n"
            "Output: ONLY the English sentence. No markdown, no quotes, no extra text."
        )
        try:
            return await self._ask(
                FeatureKey.PRACTICE_SENTENCE, prompt, parsers.clean_sentence, user_id=user_id
            )
        except _DEGRADABLE as exc:
            logger.warning("practice_sentence_degraded", level=level, error=str(exc))
            return PRACTICE_FALLBACKS.get(level, PRACTICE_FALLBACKS[CefrLevel.A1.value])
