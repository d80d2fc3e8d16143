"""
Vision stage tests with the model mocked.

Every test patches chat_completion in the vision module; the AsyncMock
side_effect list is the sequence of model answers (extraction, assessment,
conversation prompt).

Usage:
  pytest tests/test_vision_service.py -v
"""
import asyncio
import base64
import json
from unittest.mock import AsyncMock, patch

import pytest

from app.image_handler import ImageValidationError, sniff_mime_type, to_image_url, validate_image
from app.vision_service import (
    DEFAULT_SUGGESTIONS,
    analyze_product_image,
    conservative_assessment,
    is_high_confidence,
    parse_raw_extraction,
)
from eatwise.models import (
    ConfidenceLevel,
    FailureReason,
    RawExtraction,
    VisionFailure,
    VisionSuccess,
)

IMAGE_URL = "https://example.org/label.jpg"
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


def answers(*items):
    """AsyncMock returning each item in turn; dicts are JSON-encoded, exceptions raised."""
    return AsyncMock(side_effect=[json.dumps(i) if isinstance(i, dict) else i for i in items])


def run_vision(mock, image=IMAGE_URL):
    with patch("app.vision_service.chat_completion", new=mock):
        return asyncio.run(analyze_product_image(image))


# ── Parsing ────────────────────────────────────────────────────────────

class TestRawExtraction:
    def test_parse_normalizes(self):
        raw = parse_raw_extraction({
            "ingredients": ["Sugar", " Sugar ", "Cocoa  butter", ""],
            "nutrition": {"calories": 120, "sugar": "12g", "bogus": None, "flag": True},
            "isReadable": "true",
            "confidence": "0.85",
            "productType": "chocolate bar",
        })
        assert raw.ingredients == ["Sugar", "Cocoa butter"]
        assert raw.nutrition == {"calories": 120.0, "sugar": "12g"}
        assert raw.is_readable is True
        assert raw.confidence == pytest.approx(0.85)
        assert raw.product_type == "chocolate bar"

    def test_missing_fields(self):
        raw = parse_raw_extraction({})
        assert raw.ingredients == []
        assert raw.is_readable is None
        assert raw.confidence is None

    def test_high_confidence_requires_explicit_readable(self):
        base = dict(ingredients=["a", "b", "c"], confidence=0.9)
        assert is_high_confidence(RawExtraction(is_readable=True, **base))
        assert not is_high_confidence(RawExtraction(is_readable=None, **base))
        assert not is_high_confidence(RawExtraction(is_readable=True, ingredients=["a", "b", "c"], confidence=0.7))

    def test_conservative_assessment(self):
        usable = conservative_assessment(RawExtraction(ingredients=["a", "b"], is_readable=True, confidence=0.4))
        assert usable.is_usable
        assert usable.failure_reason == FailureReason.NONE
        assert usable.quality == ConfidenceLevel.LOW
        assert usable.confidence == 0.4

        unreadable = conservative_assessment(RawExtraction(ingredients=["a", "b"], is_readable=False))
        assert not unreadable.is_usable
        assert unreadable.failure_reason == FailureReason.UNREADABLE_TEXT
        assert unreadable.confidence == 0.3

        empty = conservative_assessment(RawExtraction())
        assert empty.failure_reason == FailureReason.NO_LABEL_DETECTED


# ── Image payloads ─────────────────────────────────────────────────────

class TestImagePayloads:
    def test_url_passes_through(self):
        assert to_image_url(IMAGE_URL) == IMAGE_URL

    def test_bytes_become_data_url(self):
        url = to_image_url(PNG_BYTES)
        assert url.startswith("data:image/png;base64,")

    def test_data_url_is_revalidated(self):
        encoded = base64.b64encode(PNG_BYTES).decode()
        assert to_image_url(f"data:image/jpeg;base64,{encoded}").startswith("data:image/png;base64,")

    def test_sniffing(self):
        assert sniff_mime_type(b"\xff\xd8\xff\xe0rest") == "image/jpeg"
        assert sniff_mime_type(b"GIF89a....") == "image/gif"
        assert sniff_mime_type(b"hello") is None

    @pytest.mark.parametrize("payload", ["%%%not-base64%%%", base64.b64encode(b"plain text").decode()])
    def test_invalid_payloads(self, payload):
        with pytest.raises(ImageValidationError):
            to_image_url(payload)

    def test_empty_bytes(self):
        with pytest.raises(ImageValidationError):
            validate_image(b"")


# ── analyze_product_image ──────────────────────────────────────────────

class TestAnalyzeProductImage:
    def test_high_confidence_skips_assessment(self):
        mock = answers({
            "ingredients": ["water", "sugar", "citric acid"],
            "isReadable": True,
            "confidence": 0.92,
            "productType": "soda",
        })
        outcome = run_vision(mock)

        assert isinstance(outcome, VisionSuccess)
        assert outcome.ingredients == ["water", "sugar", "citric acid"]
        assert outcome.quality == ConfidenceLevel.HIGH
        assert outcome.confidence == pytest.approx(0.92)
        assert outcome.product_type == "soda"
        assert mock.await_count == 1

    def test_assessment_decides(self):
        mock = answers(
            {"ingredients": ["oats", "salt"], "isReadable": True, "confidence": 0.5},
            {"confidence": 0.65, "extractionQuality": "medium", "isUsable": True, "failureReason": "none"},
        )
        outcome = run_vision(mock)

        assert isinstance(outcome, VisionSuccess)
        assert outcome.quality == ConfidenceLevel.MEDIUM
        assert outcome.confidence == pytest.approx(0.65)
        assert mock.await_count == 2

    def test_assessment_failure_uses_conservative_fallback(self):
        mock = answers(
            {"ingredients": ["oats", "salt"], "isReadable": True, "confidence": 0.5},
            RuntimeError("assessment down"),
        )
        outcome = run_vision(mock)

        assert isinstance(outcome, VisionSuccess)
        assert outcome.quality == ConfidenceLevel.LOW

    def test_unreadable_label_becomes_conversation(self):
        mock = answers(
            {"ingredients": [], "isReadable": False, "confidence": 0.2,
             "productType": "cereal", "visibleElements": ["box", "logo"]},
            {"confidence": 0.1, "extractionQuality": "low", "isUsable": False, "failureReason": "unreadable_text"},
            {"message": "The label is too blurry to read.", "suggestedQuestions": ["A", "B", "C", "D"]},
        )
        outcome = run_vision(mock)

        assert isinstance(outcome, VisionFailure)
        assert outcome.reason == FailureReason.UNREADABLE_TEXT
        assert outcome.message == "The label is too blurry to read."
        assert outcome.suggested_questions == ["A", "B", "C"]
        assert outcome.product_type_guess == "cereal"
        assert outcome.visible_elements == ["box", "logo"]
        assert outcome.confidence == pytest.approx(0.1)

    def test_suggestions_padded_to_three(self):
        mock = answers(
            {"ingredients": [], "isReadable": False, "confidence": 0.2},
            {"confidence": 0.1, "isUsable": False, "failureReason": "no_label_detected"},
            {"message": "No label here.", "suggestedQuestions": ["Try the back side"]},
        )
        outcome = run_vision(mock)

        assert outcome.suggested_questions == ["Try the back side"] + DEFAULT_SUGGESTIONS[:2]

    def test_empty_response_is_processing_error(self):
        mock = answers("", RuntimeError("conversation down"))
        outcome = run_vision(mock)

        assert isinstance(outcome, VisionFailure)
        assert outcome.reason == FailureReason.PROCESSING_ERROR
        assert outcome.confidence == 0.0
        assert outcome.suggested_questions == DEFAULT_SUGGESTIONS

    def test_unparseable_response_is_processing_error(self):
        mock = answers("I see a cereal box.", "still not json")
        outcome = run_vision(mock)

        assert isinstance(outcome, VisionFailure)
        assert outcome.reason == FailureReason.PROCESSING_ERROR
        assert len(outcome.suggested_questions) == 3

    def test_zero_ingredients_never_succeed(self):
        mock = answers(
            {"ingredients": [], "isReadable": True, "confidence": 0.8},
            {"confidence": 0.7, "extractionQuality": "high", "isUsable": True, "failureReason": "none"},
            {"message": "I can see the product but not its ingredients.",
             "suggestedQuestions": ["x", "y", "z"]},
        )
        outcome = run_vision(mock)

        assert isinstance(outcome, VisionFailure)
        assert outcome.reason == FailureReason.NO_LABEL_DETECTED

    def test_invalid_image_raises_before_model_call(self):
        mock = answers()
        with pytest.raises(ImageValidationError):
            run_vision(mock, image="not an image")
        assert mock.await_count == 0

    def test_transport_error_propagates(self):
        with pytest.raises(ConnectionError):
            run_vision(answers(ConnectionError("network down")))
