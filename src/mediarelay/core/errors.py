"""Error taxonomy for the relay.

Every error a request can surface derives from :class:`RelayError`, which
carries the HTTP status code, the human-readable message and an optional
``suggestion``.  The FastAPI layer renders these as
``{"error": ..., "suggestion": ...}`` so callers always receive an ``error``
field.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

# Substring (lower-case) -> hint shown to the caller.
_UPSTREAM_SUGGESTIONS: tuple[tuple[str, str], ...] = (
    (
        "invalid request",
        "Try using a more detailed prompt (at least 10-15 words describing the scene in detail)",
    ),
    (
        "rate limit",
        "You may have hit API rate limits. Wait a few minutes before trying again.",
    ),
    (
        "unauthorized",
        "Check the MEDIARELAY_LUMAAI_API_KEY environment variable.",
    ),
)

_DEFAULT_UPSTREAM_SUGGESTION = (
    "Check the generation API documentation for the expected request format"
)

# Markers the generation API uses when a prompt or image trips its filters.
_MODERATION_MARKERS = ("moderation", "blocked", "safety", "content policy", "nsfw")


class RelayError(Exception):
    """Base class for all errors returned to API callers."""

    status_code: int = 500

    def __init__(
        self,
        message: str,
        *,
        suggestion: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.suggestion = suggestion
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Render the error as a JSON-serialisable response body."""
        body: dict[str, Any] = {"error": self.message}
        if self.suggestion:
            body["suggestion"] = self.suggestion
        if self.details:
            body["details"] = self.details
        return body


class MissingPrompt(RelayError):
    status_code = 400

    def __init__(self, message: str = "Prompt is required"):
        super().__init__(message)


class MissingGenerationId(RelayError):
    status_code = 400

    def __init__(self, message: str = "Generation ID is required"):
        super().__init__(message)


class InvalidImageFormat(RelayError):
    status_code = 400

    def __init__(self, message: str = "Valid base64 image data is required"):
        super().__init__(message)


class RecordNotFound(RelayError):
    status_code = 404

    def __init__(self, record_id: str):
        super().__init__(f"Record not found: {record_id}")
        self.record_id = record_id


class UpstreamGenerationError(RelayError):
    """A remote service rejected the request or could not be reached.

    The suggestion is chosen from the error text so the caller gets a hint
    for the common failure modes (bad request, rate limiting, bad key).
    """

    status_code = 500

    def __init__(
        self,
        message: str,
        *,
        upstream_status: int | None = None,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(
            message,
            suggestion=suggest_for_upstream(message),
            details=details,
        )
        self.upstream_status = upstream_status

    @property
    def is_moderation(self) -> bool:
        """Whether the upstream rejection looks like a content-moderation block."""
        haystack = self.message.lower()
        if any(marker in haystack for marker in _MODERATION_MARKERS):
            return True
        detail_text = str(self.details).lower()
        return any(marker in detail_text for marker in _MODERATION_MARKERS)


class ModerationRejected(RelayError):
    status_code = 422

    def __init__(self, attempts: int, last_error: str):
        super().__init__(
            f"Generation was rejected by content moderation after {attempts} attempts: {last_error}",
            suggestion="Rephrase the prompt or use a different reference image.",
            details={"attempts": attempts},
        )
        self.attempts = attempts


class UninitializedClient(RelayError):
    status_code = 503

    def __init__(self, service: str, setting: str):
        super().__init__(
            f"The {service} client is not initialised",
            suggestion=f"Set the {setting} environment variable and restart the server.",
        )
        self.service = service


class PersistenceWriteFailure(RelayError):
    """The record file could not be written.  Logged by the store, never returned."""

    status_code = 500

    def __init__(self, path: Path, cause: Exception):
        super().__init__(f"Failed to write records to {path}: {cause}")
        self.path = path
        self.cause = cause


def suggest_for_upstream(message: str) -> str:
    """Pick a caller-facing hint for an upstream error message."""
    lowered = message.lower()
    for marker, suggestion in _UPSTREAM_SUGGESTIONS:
        if marker in lowered:
            return suggestion
    return _DEFAULT_UPSTREAM_SUGGESTION
