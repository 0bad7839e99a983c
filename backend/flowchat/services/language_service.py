# /flowchat/services/language_service.py

import re
import logging
from typing import Dict, Optional, Pattern, Protocol, Tuple

from flowchat.config.settings import settings
from flowchat.models.domain import LanguageDetection

# Script-pattern language detection. The detector sits behind a small protocol
# so a statistical model can replace it without touching the orchestrator.

logger = logging.getLogger(__name__)

DEFAULT_LANGUAGE = "en"

# Order matters: ties go to the language listed first.
LANGUAGE_PATTERNS: Dict[str, Tuple[str, Pattern[str]]] = {
    "th": ("Thai", re.compile(r"[\u0E00-\u0E7F]")),
    "en": ("English", re.compile(r"[a-zA-Z]")),
    "ja": ("Japanese", re.compile(r"[\u3040-\u309F\u30A0-\u30FF]")),
    "zh": ("Chinese", re.compile(r"[\u4E00-\u9FFF]")),
    "es": ("Spanish", re.compile(r"[\u00E1\u00E9\u00ED\u00F3\u00FA\u00F1\u00FC\u00BF\u00A1\u00C1\u00C9\u00CD\u00D3\u00DA\u00D1\u00DC]")),
    "fr": ("French", re.compile(r"[\u00E0\u00E2\u00E6\u00E7\u00E8\u00EA\u00EB\u00EE\u00EF\u00F4\u0153\u00F9\u00FB\u00FF\u00C0\u00C2\u00C6\u00C7\u00C8\u00CA\u00CB\u00CE\u00CF\u00D4\u0152\u00D9\u00DB\u0178]")),
    "vi": ("Vietnamese", re.compile(r"[\u0103\u0111\u01A1\u01B0\u0102\u0110\u01A0\u01AF\u1EA0-\u1EF9]")),
}


class LanguageDetector(Protocol):
    def detect(self, text: str) -> LanguageDetection:
        ...


class ScriptPatternDetector:
    """Counts characters matching each language's script and picks the plurality."""

    def __init__(self, reliability_threshold: float = 0.4, default_language: str = DEFAULT_LANGUAGE):
        self.reliability_threshold = reliability_threshold
        self.default_language = default_language

    def detect(self, text: str) -> LanguageDetection:
        text = text or ""
        length = len(text)
        scores: Dict[str, float] = {}
        for code, (_, pattern) in LANGUAGE_PATTERNS.items():
            matches = len(pattern.findall(text)) if length else 0
            scores[code] = min(1.0, matches / length) if length else 0.0

        main_language, confidence = self.default_language, 0.0
        for code, score in scores.items():
            if score > confidence:
                main_language, confidence = code, score

        return LanguageDetection(
            main_language=main_language,
            confidence=confidence,
            per_language_scores=scores,
            is_reliable=confidence > self.reliability_threshold,
        )


def get_language_name(code: Optional[str]) -> str:
    if code and code in LANGUAGE_PATTERNS:
        return LANGUAGE_PATTERNS[code][0]
    return "Unknown"


def supported_languages() -> Tuple[str, ...]:
    return tuple(LANGUAGE_PATTERNS)


# Globally accessible instance
language_detector = ScriptPatternDetector(settings.language_reliability_threshold)
