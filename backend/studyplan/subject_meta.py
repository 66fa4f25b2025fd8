"""Keyword-driven inference of subject area, level, exam weight and tier."""

from __future__ import annotations

import unicodedata
from typing import Optional

from .models import Subject

AREA_MATH = "math"
AREA_LANGUAGES = "languages"
AREA_SCIENCES = "sciences"
AREA_HUMANITIES = "humanities"

AREA_ROTATION = (
    AREA_MATH,
    AREA_LANGUAGES,
    AREA_SCIENCES,
    AREA_HUMANITIES,
    AREA_MATH,
    AREA_LANGUAGES,
    AREA_SCIENCES,
    AREA_HUMANITIES,
)

_MATH_KEYWORDS = ("matematica", "math", "algebra", "geometria", "geometry", "calculo", "calculus", "exatas")
_PRIMARY_LANGUAGE_KEYWORDS = ("portugues", "portuguese")
_WRITING_KEYWORDS = ("redacao", "essay", "writing")
_LANGUAGE_KEYWORDS = ("ling", "literatura", "literature", "ingles", "english", "espanhol", "spanish", "grammar")
_SCIENCE_KEYWORDS = ("natureza", "science", "ciencia", "fisica", "physics", "quimica", "chemistry", "biologia", "biology")
_HUMANITIES_KEYWORDS = ("human", "historia", "history", "geografia", "geography", "filosofia", "philosophy", "sociologia", "sociology")

_AREA_WEIGHT = {
    AREA_MATH: 1.0,
    AREA_LANGUAGES: 0.5,
    AREA_SCIENCES: 0.75,
    AREA_HUMANITIES: 0.7,
}
DEFAULT_EXAM_WEIGHT = 0.5


def normalize_text(value: Optional[str]) -> str:
    """Lowercase, strip accents and parentheses so keyword matching is stable."""
    if not value:
        return ""
    decomposed = unicodedata.normalize("NFKD", value)
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return stripped.replace("(", " ").replace(")", " ").lower().strip()


def _contains_any(text: str, keywords) -> bool:
    return any(keyword in text for keyword in keywords)


def normalize_area(value: Optional[str]) -> Optional[str]:
    text = normalize_text(value)
    if not text:
        return None
    if _contains_any(text, _MATH_KEYWORDS):
        return AREA_MATH
    if _contains_any(text, _SCIENCE_KEYWORDS):
        return AREA_SCIENCES
    if _contains_any(text, _HUMANITIES_KEYWORDS):
        return AREA_HUMANITIES
    if _contains_any(text, _LANGUAGE_KEYWORDS + _PRIMARY_LANGUAGE_KEYWORDS + _WRITING_KEYWORDS):
        return AREA_LANGUAGES
    return None


def infer_area(subject: Subject) -> Optional[str]:
    """Declared area wins; otherwise fall back to the subject name."""
    return normalize_area(subject.area) or normalize_area(subject.name)


def infer_level(subject: Subject) -> str:
    if subject.level:
        return subject.level
    if subject.difficulty <= 4:
        return "basic"
    if subject.difficulty <= 7:
        return "intermediate"
    return "advanced"


def exam_weight(subject: Subject) -> float:
    """Importance of the subject to the target exam on a 0.1-1 scale."""
    if subject.exam_weight is not None:
        return max(0.1, min(1.0, float(subject.exam_weight)))

    name = normalize_text(subject.name)
    if _contains_any(name, ("matematica", "math")):
        return 1.0
    if _contains_any(name, _PRIMARY_LANGUAGE_KEYWORDS):
        return 0.95
    if _contains_any(name, _WRITING_KEYWORDS):
        return 0.9

    area = normalize_area(subject.area)
    if area is None:
        area = normalize_area(subject.name)
    return _AREA_WEIGHT.get(area, DEFAULT_EXAM_WEIGHT)


def exam_tier(subject: Subject) -> int:
    """Integer 1-5 weight of the subject inside the exam."""
    if subject.exam_tier is not None:
        return subject.exam_tier
    return max(1, min(5, int(round(subject.priority / 2))))


def keyword_bonus(subject: Subject) -> int:
    name = normalize_text(subject.name)
    if _contains_any(name, ("matematica", "math")):
        return 14
    if _contains_any(name, _PRIMARY_LANGUAGE_KEYWORDS):
        return 12
    if _contains_any(name, _WRITING_KEYWORDS):
        return 10
    return 0


__all__ = [
    "AREA_HUMANITIES",
    "AREA_LANGUAGES",
    "AREA_MATH",
    "AREA_ROTATION",
    "AREA_SCIENCES",
    "DEFAULT_EXAM_WEIGHT",
    "exam_tier",
    "exam_weight",
    "infer_area",
    "infer_level",
    "keyword_bonus",
    "normalize_area",
    "normalize_text",
]
