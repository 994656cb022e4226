"""Parsers for the line- and block-delimited formats the prompts ask for.

Models decorate labels unpredictably (``**SCORE:** 80``, ``- FEEDBACK``), so
labels are matched leniently.  Each parser raises ``ParseError`` when the
text carries none of the structure it expects; the caller retries the whole
dispatch-plus-parse pipeline.
"""

from __future__ import annotations

import random
import re

import orjson
from pydantic import ValidationError as SchemaError

from app.application.dtos import (
    GrammarExercise,
    Improvement,
    PronunciationAnalysis,
    PronunciationMistake,
    RoleplayReport,
    SentenceHints,
    TranslationEvaluation,
    UpgradeResult,
)
from app.domain.enums import ExerciseType
from app.domain.exceptions import ParseError

_DECORATION = r"(?:\*\*|#|-|\s)*"
_LABEL_CACHE: dict[str, re.Pattern[str]] = {}
_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


def _label(name: str) -> re.Pattern[str]:
    pattern = _LABEL_CACHE.get(name)
    if pattern is None:
        pattern = re.compile(
            rf"^{_DECORATION}{name}(?:\*\*)?\s*:?\s*(?:\*\*)?\s*(.*)$",
            re.IGNORECASE,
        )
        _LABEL_CACHE[name] = pattern
    return pattern


def _field(line: str, name: str) -> str | None:
    match = _label(name).match(line.strip())
    return match.group(1).strip() if match else None


def _block_field(block: str, name: str) -> str | None:
    for line in block.splitlines():
        value = _field(line, name)
        if value is not None:
            return value
    return None


def _score(value: str | None) -> int | None:
    if value is None:
        return None
    match = re.match(r"(\d+)", value)
    return int(match.group(1)) if match else None


def _blocks(text: str) -> list[str]:
    return [b.strip() for b in text.split("---") if b.strip()]


# ── Hints ────────────────────────────────────────────────────
def parse_hints(text: str) -> SentenceHints:
    """``VOCAB:`` and ``GRAMMAR:`` lines."""
    hints = SentenceHints()
    for line in text.splitlines():
        stripped = line.strip()
        if stripped.upper().startswith("VOCAB:"):
            hints.vocabulary_hints.append(stripped[len("VOCAB:"):].strip())
        elif stripped.upper().startswith("GRAMMAR:"):
            hints.grammar_structures.append(stripped[len("GRAMMAR:"):].strip())
    if not hints.vocabulary_hints and not hints.grammar_structures:
        raise ParseError("No VOCAB or GRAMMAR lines in hints response")
    return hints


# ── Sentence upgrade ─────────────────────────────────────────
def parse_upgrade(text: str) -> UpgradeResult:
    """``UPGRADED:`` block followed by ``ORIGINAL/IMPROVED/EXPLAIN`` blocks."""
    blocks = _blocks(text)
    if not blocks:
        raise ParseError("Empty upgrade response")

    head = blocks[0]
    upgraded = _block_field(head, "UPGRADED")
    if upgraded is None:
        upgraded = head.strip()
    if not upgraded:
        raise ParseError("Parsed empty result for upgrade")

    improvements: list[Improvement] = []
    for block in blocks[1:]:
        original = _block_field(block, "ORIGINAL") or ""
        improved = _block_field(block, "IMPROVED") or ""
        explanation = _block_field(block, "EXPLAIN") or ""
        if original or improved:
            improvements.append(
                Improvement(original=original, improved=improved, explanation=explanation)
            )
    return UpgradeResult(upgraded_sentence=upgraded, improvements=improvements)


# ── Grammar exercises ────────────────────────────────────────
_TYPE_HINTS: list[tuple[str, ExerciseType]] = [
    ("mcq", ExerciseType.MCQ),
    ("multiple choice", ExerciseType.MCQ),
    ("fill", ExerciseType.FILL),
    ("error", ExerciseType.FIND_ERROR),
    ("reorder", ExerciseType.REORDER),
    ("rewrite", ExerciseType.REWRITE),
]
_OPTION_KEYS = ("A", "B", "C", "D")


def _exercise_type(raw: str | None) -> ExerciseType | None:
    if not raw:
        return None
    lowered = raw.lower()
    for needle, kind in _TYPE_HINTS:
        if needle in lowered:
            return kind
    return None


def _split_words(raw: str) -> list[str]:
    if "|" in raw:
        words = raw.split("|")
    elif "," in raw:
        words = raw.split(",")
    else:
        words = raw.split()
    return [w.strip() for w in words if w.strip()]


def _parse_exercise(block: str, rng: random.Random) -> GrammarExercise | None:
    kind = _exercise_type(_block_field(block, "TYPE"))
    question = _block_field(block, "QUESTION")
    if kind is None or not question:
        return None

    answer = _block_field(block, "ANSWER") or None
    explanation = _block_field(block, "EXPLAIN") or None
    options_raw = _block_field(block, "OPTIONS") or ""
    exercise = GrammarExercise(
        type=kind, question=question, correct_answer=answer, explanation=explanation
    )

    if kind is ExerciseType.MCQ:
        opts = [o.strip() for o in options_raw.split("|") if o.strip()]
        if len(opts) < 4:
            return None
        exercise.options = dict(zip(_OPTION_KEYS, opts[:4]))
        key = next((k for k, v in exercise.options.items() if v == answer), None)
        if key is None and answer in _OPTION_KEYS:
            key = answer
        exercise.correct_answer = key or "A"
    elif kind is ExerciseType.REORDER:
        words = _split_words(options_raw) if options_raw else []
        if not words and answer:
            words = answer.split()
            rng.shuffle(words)
        exercise.words = words
    elif kind is ExerciseType.FIND_ERROR:
        if "|" in question:
            raw = question.replace("**", "")
            exercise.question = " ".join(
                f"**{s.strip()}**" for s in raw.split("|") if s.strip()
            )
        elif "**" not in question:
            exercise.question = " ".join(f"**{w}**" for w in question.split())
    return exercise


def parse_exercises(text: str, *, rng: random.Random | None = None) -> list[GrammarExercise]:
    """``TYPE/QUESTION/OPTIONS/ANSWER/EXPLAIN`` blocks separated by ``---``.

    Malformed blocks are skipped; an answer with no usable block is an error.
    """
    rng = rng or random.Random()
    exercises = [
        exercise
        for exercise in (_parse_exercise(block, rng) for block in _blocks(text))
        if exercise is not None
    ]
    if not exercises:
        raise ParseError("Parsed 0 exercises")
    return exercises


# ── Translation evaluation ───────────────────────────────────
def parse_translation_evaluation(text: str) -> TranslationEvaluation:
    """``SCORE/FEEDBACK/BETTER`` lines plus repeated ``CORRECTION`` lines."""
    result = TranslationEvaluation()
    seen_score = False
    for line in text.splitlines():
        if not line.strip():
            continue
        if (score := _score(_field(line, "SCORE"))) is not None:
            result.score = min(score, 100)
            seen_score = True
        elif (feedback := _field(line, "FEEDBACK")) is not None:
            result.feedback = feedback
        elif (better := _field(line, "BETTER")) is not None:
            if better and better.upper() != "NONE":
                result.better_version = better
        elif (correction := _field(line, "CORRECTION")) is not None:
            if correction:
                result.corrections.append(correction)
    if not seen_score:
        raise ParseError("No SCORE line in evaluation response")
    return result


# ── Pronunciation ────────────────────────────────────────────
def parse_pronunciation(text: str) -> PronunciationAnalysis:
    """``TRANSCRIPT/SCORE/FEEDBACK`` plus ``MISTAKE: word -> heard -> advice``.

    Unlabelled lines directly after ``FEEDBACK`` continue the feedback.
    """
    result = PronunciationAnalysis()
    seen_score = False
    in_feedback = False
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped:
            continue
        if (transcript := _field(stripped, "TRANSCRIPT")) is not None:
            result.transcript = transcript
            in_feedback = False
        elif (score := _score(_field(stripped, "SCORE"))) is not None:
            result.score = min(score, 100)
            seen_score = True
            in_feedback = False
        elif (feedback := _field(stripped, "FEEDBACK")) is not None:
            result.feedback = feedback
            in_feedback = True
        elif (mistake := _field(stripped, "MISTAKE")) is not None:
            in_feedback = False
            parts = [p.strip() for p in mistake.replace("**", "").split("->")]
            if len(parts) >= 3:
                result.mistakes.append(
                    PronunciationMistake(word=parts[0], sounded_like=parts[1], advice=parts[2])
                )
        elif in_feedback:
            result.feedback = f"{result.feedback}\n{stripped}" if result.feedback else stripped
    if not seen_score and not result.feedback:
        raise ParseError("No SCORE or FEEDBACK in pronunciation response")
    return result


# ── Roleplay report ──────────────────────────────────────────
def parse_roleplay_report(text: str) -> RoleplayReport:
    """First ``{...}`` span in the text, decoded as JSON."""
    match = _JSON_OBJECT.search(text)
    payload = match.group(0) if match else text
    try:
        data = orjson.loads(payload)
    except orjson.JSONDecodeError as exc:
        raise ParseError(f"Roleplay report is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ParseError("Roleplay report JSON is not an object")
    try:
        return RoleplayReport.model_validate(data)
    except SchemaError as exc:
        raise ParseError(f"Roleplay report has unexpected fields: {exc}") from exc


# ── Practice sentence ────────────────────────────────────────
def clean_sentence(text: str) -> str:
    """Strip whitespace and one pair of surrounding double quotes."""
    sentence = text.strip()
    if sentence.startswith('"'):
        sentence = sentence[1:]
    if sentence.endswith('"'):
        sentence = sentence[:-1]
    sentence = sentence.strip()
    if not sentence:
        raise ParseError("Empty practice sentence")
    return sentence
