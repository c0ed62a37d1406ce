"""Tests for the phrase-based fallback detector."""

import pytest

from toolgate.config import FallbackConfig
from toolgate.fallback import PhraseFallbackDetector


@pytest.fixture
def detector():
    return PhraseFallbackDetector()


class TestPhrases:
    """Inability phrasing."""

    @pytest.mark.parametrize(
        "text",
        [
            "I don't have access to your calendar.",
            "Sorry, I DON'T HAVE ACCESS to that.",
            "I’m not able to send emails right now.",
            "I would need to look that up for you.",
            "Unfortunately I cannot do that.",
        ],
    )
    def test_inability_phrases_trigger(self, detector, text):
        assert detector.detect_missed_capability_need(text, []) is True

    @pytest.mark.parametrize(
        "text",
        ["Hello! How can I help you today?", "Recursion is when a function calls itself.", ""],
    )
    def test_plain_answers_do_not_trigger(self, detector, text):
        assert detector.detect_missed_capability_need(text, ["send_email"]) is False

    def test_inspect_names_the_phrase(self, detector):
        assert detector.inspect("I don't have access to your calendar", []) == "phrase:i don't have access"

    def test_detector_keeps_no_result_between_calls(self, detector):
        assert detector.inspect("I cannot", []) == "phrase:i cannot"
        assert detector.inspect("All good", []) is None
        assert not hasattr(detector, "last_signal")


class TestCapabilityNames:
    """Mentions of capability names."""

    def test_name_with_underscores_matches_spaced_words(self, detector):
        assert detector.inspect("You could use send email for that.", ["send_email"]) == "capability:send_email"

    def test_exact_name_matches(self, detector):
        assert detector.detect_missed_capability_need("Try search_calendar first.", ["search_calendar"])

    def test_partial_word_does_not_match(self, detector):
        assert detector.detect_missed_capability_need("The researcher replied.", ["search"]) is False

    def test_name_matching_can_be_disabled(self):
        detector = PhraseFallbackDetector(match_capability_names=False)

        assert detector.detect_missed_capability_need("use send_email", ["send_email"]) is False


class TestConfig:
    """Construction from configuration."""

    def test_custom_phrases(self):
        detector = PhraseFallbackDetector.from_config(FallbackConfig(phrases=["beyond my reach"]))

        assert detector.detect_missed_capability_need("That is Beyond my reach.", []) is True
        assert detector.detect_missed_capability_need("I cannot", []) is False
