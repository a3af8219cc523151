"""Tests for provider error categorisation and user-facing messages."""

import pytest

from flyerdeck.agents.generation.exceptions import (
    CATEGORY_MESSAGES,
    OVERSIZED_IMAGE_REASON,
    UNKNOWN_ERROR_MESSAGE,
    CropError,
    ErrorCategory,
    ImageFormatError,
    RegenerationError,
    categorize_provider_error,
    user_message_for,
)


class TestUserMessageFor:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("Response blocked: SAFETY", "安全性ポリシーにより画像を生成できませんでした。"),
            ("finish_reason=RECITATION", "著作権の問題により画像を生成できませんでした。"),
            ("Prompt was BLOCKED by filters", "コンテンツがブロックされました。"),
            ("You exceeded your current quota", "APIの利用制限に達しました。"),
            ("RESOURCE_EXHAUSTED: QUOTA exceeded", "APIの利用制限に達しました。"),
            ("rate limit hit, retry later", "リクエストが多すぎます。"),
            ("RATE_LIMIT_EXCEEDED", "リクエストが多すぎます。"),
        ],
    )
    def test_known_patterns_map_to_localized_message(self, raw, expected):
        assert user_message_for(RuntimeError(raw)) == expected

    def test_first_matching_rule_wins(self):
        # Both SAFETY and quota appear; SAFETY is checked first
        assert categorize_provider_error(RuntimeError("SAFETY and quota")) is ErrorCategory.SAFETY

    def test_unmatched_error_keeps_raw_message(self):
        assert user_message_for(RuntimeError("connection reset by peer")) == "connection reset by peer"

    def test_generation_error_uses_message_without_context(self):
        error = CropError("Crop extent falls outside the image", context={"left": 5})
        assert user_message_for(error) == "Crop extent falls outside the image"

    def test_non_exception_gets_generic_message(self):
        assert user_message_for("oops") == UNKNOWN_ERROR_MESSAGE
        assert user_message_for(None) == UNKNOWN_ERROR_MESSAGE

    def test_every_category_but_generic_has_a_message(self):
        assert set(CATEGORY_MESSAGES) == set(ErrorCategory) - {ErrorCategory.GENERIC}


class TestGenerationErrorFormatting:
    def test_str_includes_cause_and_context(self):
        error = ImageFormatError("image/svg+xml", cause=ValueError("bad"), context={"source": "x"})
        text = str(error)
        assert "Unsupported image type: image/svg+xml" in text
        assert "caused by: ValueError: bad" in text
        assert "Context:" in text
        assert error.mime_type == "image/svg+xml"


class TestExplicitCategory:
    def test_category_set_on_error_wins_over_message(self):
        error = RegenerationError("画像を生成できませんでした（画像データなし）。", category=ErrorCategory.SAFETY)
        assert categorize_provider_error(error) is ErrorCategory.SAFETY
        assert user_message_for(error) == CATEGORY_MESSAGES[ErrorCategory.SAFETY]

    def test_generic_category_falls_back_to_message_rules(self):
        error = RegenerationError("RESOURCE_EXHAUSTED: quota")
        assert categorize_provider_error(error) is ErrorCategory.QUOTA

    def test_format_error_reason_is_kept(self):
        error = ImageFormatError("image/png", reason=OVERSIZED_IMAGE_REASON)
        assert error.reason == OVERSIZED_IMAGE_REASON
        assert str(error) == "Unsupported image type: image/png (too many pixels)"
