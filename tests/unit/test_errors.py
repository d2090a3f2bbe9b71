"""Tests for mediarelay.core.errors — error bodies, status codes and hints."""

from __future__ import annotations

from pathlib import Path

import pytest

from mediarelay.core.errors import (
    InvalidImageFormat,
    MissingGenerationId,
    MissingPrompt,
    ModerationRejected,
    PersistenceWriteFailure,
    RecordNotFound,
    RelayError,
    UninitializedClient,
    UpstreamGenerationError,
    suggest_for_upstream,
)


class TestStatusCodes:
    """Each error maps to a fixed HTTP status."""

    @pytest.mark.parametrize(
        "error, status",
        [
            (MissingPrompt(), 400),
            (MissingGenerationId(), 400),
            (InvalidImageFormat(), 400),
            (RecordNotFound("x"), 404),
            (ModerationRejected(3, "blocked"), 422),
            (UninitializedClient("generation", "KEY"), 503),
            (UpstreamGenerationError("boom"), 500),
            (PersistenceWriteFailure(Path("/tmp/x.json"), OSError("disk full")), 500),
        ],
    )
    def test_status(self, error: RelayError, status: int):
        assert error.status_code == status


class TestToDict:
    """Test RelayError.to_dict()."""

    def test_minimal_body(self):
        assert MissingPrompt().to_dict() == {"error": "Prompt is required"}

    def test_body_with_suggestion_and_details(self):
        body = ModerationRejected(3, "blocked by safety filter").to_dict()
        assert "3 attempts" in body["error"]
        assert body["suggestion"]
        assert body["details"] == {"attempts": 3}

    def test_uninitialized_client_names_setting(self):
        body = UninitializedClient("vision", "MEDIARELAY_GROQ_API_KEY").to_dict()
        assert "MEDIARELAY_GROQ_API_KEY" in body["suggestion"]


class TestUpstreamSuggestions:
    """Test suggest_for_upstream() and UpstreamGenerationError."""

    def test_invalid_request_hint(self):
        assert "more detailed prompt" in suggest_for_upstream("Invalid request: prompt too short")

    def test_rate_limit_hint(self):
        assert "rate limits" in suggest_for_upstream("Rate limit exceeded")

    def test_unauthorized_hint(self):
        assert "API_KEY" in suggest_for_upstream("Unauthorized")

    def test_default_hint(self):
        error = UpstreamGenerationError("something odd")
        assert error.suggestion == "Check the generation API documentation for the expected request format"

    def test_upstream_status_is_kept(self):
        assert UpstreamGenerationError("x", upstream_status=429).upstream_status == 429


class TestModerationDetection:
    """Test UpstreamGenerationError.is_moderation."""

    @pytest.mark.parametrize(
        "message",
        ["Prompt failed moderation", "Request blocked", "Violates content policy", "NSFW content"],
    )
    def test_message_markers(self, message):
        assert UpstreamGenerationError(message).is_moderation

    def test_detail_markers(self):
        error = UpstreamGenerationError("400 Bad Request", details={"reason": "safety_filter"})
        assert error.is_moderation

    def test_other_errors_are_not_moderation(self):
        assert not UpstreamGenerationError("Rate limit exceeded").is_moderation
