# backend/tests/unit/test_language_service.py
import pytest

from flowchat.services.language_service import (
    ScriptPatternDetector,
    get_language_name,
    supported_languages,
)

detector = ScriptPatternDetector(reliability_threshold=0.4)


@pytest.mark.parametrize("text, expected", [
    ("สวัสดีครับ", "th"),
    ("What is the vacation policy?", "en"),
    ("こんにちは", "ja"),
    ("你好世界", "zh"),
])
def test_detects_dominant_script(text, expected):
    result = detector.detect(text)
    assert result.main_language == expected
    assert result.is_reliable is True


def test_pure_thai_text_has_full_confidence():
    result = detector.detect("สวัสดี")
    assert result.confidence == pytest.approx(1.0)


def test_empty_text_defaults_to_english_with_zero_confidence():
    """No characters to score: default language, unreliable."""
    result = detector.detect("")
    assert result.main_language == "en"
    assert result.confidence == 0.0
    assert result.is_reliable is False


def test_digits_only_falls_back_to_default():
    result = detector.detect("1234 5678")
    assert result.main_language == "en"
    assert result.confidence == 0.0


def test_mixed_text_picks_plurality():
    """6 Thai characters beat 5 Latin letters in a 12-character message."""
    result = detector.detect("Hello สวัสดี")
    assert result.main_language == "th"
    assert result.confidence == pytest.approx(0.5)
    assert result.per_language_scores["en"] == pytest.approx(5 / 12)
    assert result.is_reliable is True


def test_low_confidence_is_flagged_unreliable():
    result = detector.detect("abc 123 ก")
    assert result.main_language == "en"
    assert result.confidence == pytest.approx(3 / 9)
    assert result.is_reliable is False


def test_confidence_and_scores_are_bounded():
    for text in ["", "a", "ภาษาไทย and English 123", "!!!", "日本語のテキスト"]:
        result = detector.detect(text)
        assert 0.0 <= result.confidence <= 1.0
        assert all(0.0 <= score <= 1.0 for score in result.per_language_scores.values())
        assert set(result.per_language_scores) == set(supported_languages())


def test_language_names():
    assert get_language_name("th") == "Thai"
    assert get_language_name("en") == "English"
    assert get_language_name("xx") == "Unknown"
    assert get_language_name(None) == "Unknown"
