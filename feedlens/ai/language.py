"""
Language detection and language-aware model selection.

Detection is script-based: the dominant Unicode script decides the language
directly (Han, kana, Hangul, Cyrillic, Arabic) and Latin text is split into
English and the major Romance/Germanic languages by stop-word counts.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, List

from ..config.settings import AnalysisSettings, ModelTierSettings

_SCRIPT_PATTERNS = {
    "hanzi": re.compile(r"[一-龥]"),
    "kana": re.compile(r"[぀-ゟ゠-ヿ]"),
    "hangul": re.compile(r"[가-힯]"),
    "cyrillic": re.compile(r"[Ѐ-ӿ]"),
    "arabic": re.compile(r"[؀-ۿ]"),
    "latin": re.compile(r"[a-zA-Z]"),
}

_SCRIPT_LANGUAGE = {
    "hanzi": "zh",
    "kana": "ja",
    "hangul": "ko",
    "cyrillic": "ru",
    "arabic": "ar",
}

_SCRIPT_BONUS = {
    "hanzi": 0.2,
    "kana": 0.2,
    "hangul": 0.2,
    "cyrillic": 0.15,
    "arabic": 0.15,
    "latin": 0.1,
    "other": 0.0,
}


def _words(*words: str) -> re.Pattern:
    return re.compile(r"\b(?:" + "|".join(words) + r")\b")


_LATIN_PATTERNS: Dict[str, List[re.Pattern]] = {
    "en": [
        _words("the", "and", "is", "in", "at", "of", "to", "a", "an", "be", "are", "was", "were", "been"),
        _words("this", "that", "these", "those", "with", "from", "for", "about", "as", "into", "like"),
    ],
    "es": [
        _words("el", "la", "de", "que", "y", "en", "un", "una", "es", "son", "con", "por", "para", "como", "hay"),
        _words("este", "esta", "esto", "pero", "más", "todo", "también", "tiempo", "año"),
    ],
    "fr": [
        _words("le", "la", "de", "et", "à", "un", "une", "en", "est", "son", "avec", "pour", "pas", "plus"),
        _words("ce", "cet", "cette", "ces", "mais", "tout", "aussi", "temps", "faire"),
    ],
    "de": [
        _words("der", "die", "das", "und", "in", "den", "von", "zu", "sich", "mit", "für", "auf", "ist", "im"),
        _words("dieser", "diese", "dieses", "aber", "auch", "alle", "zwischen", "durch", "wieder", "ohne"),
    ],
    "pt": [
        _words("o", "a", "de", "e", "em", "um", "uma", "é", "são", "com", "para", "não", "se", "mas", "mais"),
        _words("este", "esta", "isto", "tudo", "também", "tempo", "ano", "entre"),
    ],
    "it": [
        _words("il", "la", "di", "e", "in", "un", "una", "è", "sono", "con", "per", "non", "ma", "più"),
        _words("questo", "questa", "tutto", "anche", "tempo", "anno", "vedere"),
    ],
}


@dataclass
class LanguageDetection:
    language: str
    confidence: float
    script: str


def _dominant_script(text: str) -> str:
    best, best_count = "other", 0
    for script, pattern in _SCRIPT_PATTERNS.items():
        count = len(pattern.findall(text))
        if count > best_count:
            best, best_count = script, count
    return best


def _detect_latin(text: str) -> str:
    lower = text.lower()
    best, best_matches = "en", 0
    for language, patterns in _LATIN_PATTERNS.items():
        matches = sum(len(p.findall(lower)) for p in patterns)
        if matches > best_matches:
            best, best_matches = language, matches
    return best


def detect_language(text: str) -> LanguageDetection:
    """Detect the language of ``text`` (ISO 639-1 code, or ``other``)."""
    if not text or not text.strip():
        return LanguageDetection("other", 0.0, "other")

    script = _dominant_script(text)
    if script == "latin":
        language = _detect_latin(text)
    else:
        language = _SCRIPT_LANGUAGE.get(script, "other")

    confidence = 0.5
    length = len(text)
    if length >= 100:
        confidence += 0.3
    elif length >= 50:
        confidence += 0.2
    elif length >= 20:
        confidence += 0.1
    confidence += _SCRIPT_BONUS[script]
    if script in ("hanzi", "kana", "hangul"):
        confidence += 0.1

    return LanguageDetection(language, min(max(confidence, 0.0), 1.0), script)


class AnalysisStage(str, Enum):
    PRELIMINARY = "preliminary"
    ANALYSIS = "analysis"
    REFLECTION = "reflection"


class ModelSelector:
    """Chooses a model id per language tier and analysis stage."""

    ENGLISH_TIER_LANGUAGES = ("en", "es", "fr", "de", "pt", "it")

    def __init__(self, settings: AnalysisSettings):
        self.tiers: Dict[str, ModelTierSettings] = {
            "chinese": settings.chinese,
            "english": settings.english,
            "other": settings.other,
        }

    @classmethod
    def language_tier(cls, language: str) -> str:
        language = (language or "").lower()
        if language.startswith("zh"):
            return "chinese"
        if any(language.startswith(code) for code in cls.ENGLISH_TIER_LANGUAGES):
            return "english"
        return "other"

    def select_model(self, language: str, stage: AnalysisStage) -> str:
        tier = self.tiers[self.language_tier(language)]
        return getattr(tier, AnalysisStage(stage).value)
