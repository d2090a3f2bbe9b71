"""Deterministic prompt transforms applied before submission.

Short prompts tend to be rejected or produce poor results from the
generation API, so prompts under ten characters are expanded either from a
small table of known subjects or with a generic cinematic template.  When the
API rejects a prompt on moderation grounds, :func:`sanitize_for_moderation`
strips the usual trigger words before the next attempt.

Display metadata (client name, title) is also derived here because it is a
pure function of the prompt text.

Usage
-----
::

    enhance("beach")
    # -> "A serene beach scene with gentle waves washing onto golden sand, ..."

    sanitize_for_moderation("a bloody battle scene")
    # -> "a battle scene"
"""

from __future__ import annotations

import logging
import re

from mediarelay.core.image_store import is_inline_image

logger = logging.getLogger(__name__)

# Prompts at or below this length are candidates for enhancement.
DETAILED_PROMPT_LENGTH = 30

# Submissions whose trimmed prompt is shorter than this are enhanced.
MIN_PROMPT_LENGTH = 10

_ENHANCEMENTS: dict[str, str] = {
    "oranges": (
        "Fresh, juicy oranges arranged on a wooden table with sunlight streaming "
        "through a window, creating a warm glow on the citrus fruits"
    ),
    "beach": (
        "A serene beach scene with gentle waves washing onto golden sand, palm trees "
        "swaying in the breeze, and a beautiful sunset on the horizon"
    ),
    "city": (
        "A modern city skyline at dusk with lights beginning to twinkle in skyscrapers, "
        "busy streets below, and a colorful sky transition"
    ),
    "forest": (
        "A lush, green forest with sunbeams filtering through tall trees, moss-covered "
        "stones, and a gentle stream flowing over rocks"
    ),
    "mountains": (
        "Majestic snow-capped mountains under a clear blue sky, with a winding path "
        "leading through alpine meadows filled with wildflowers"
    ),
}

_GENERIC_TEMPLATE = (
    "A cinematic, detailed view of {prompt} with beautiful lighting, rich textures, "
    "and vibrant colors in a natural setting"
)

# Used when sanitising leaves nothing, and as the last-resort retry prompt.
SAFE_FALLBACK_PROMPT = "A beautiful, peaceful landscape with soft natural light and gentle colors"

# Matched case-insensitively as plain substrings.
MODERATION_BLOCKLIST: tuple[str, ...] = (
    "blood",
    "bloody",
    "gore",
    "violent",
    "violence",
    "weapon",
    "kill",
    "dead",
    "death",
    "nude",
    "naked",
    "sexy",
    "explicit",
    "drug",
)

_BLOCKLIST_PATTERN = re.compile(
    "|".join(re.escape(term) for term in sorted(MODERATION_BLOCKLIST, key=len, reverse=True)),
    re.IGNORECASE,
)

# Persisted in place of a prompt that was itself an inline image.
IMAGE_PROMPT_SENTINEL = "[Image prompt]"

# Legacy placeholder that must never be shown as a client name.
PLACEHOLDER_CLIENT = "CLIENT NAME"
DEFAULT_CLIENT = "DREAM MACHINE STUDIOS"
DEFAULT_TITLE = "Untitled Generation"
_TITLE_LENGTH = 60


def enhance(prompt: str) -> str:
    """Expand a short prompt into a detailed scene description.

    Args:
        prompt: User prompt.

    Returns:
        *prompt* unchanged when longer than 30 characters, the table entry
        for a known subject, or the generic cinematic template.
    """
    if len(prompt) > DETAILED_PROMPT_LENGTH:
        return prompt

    known = _ENHANCEMENTS.get(prompt.strip().lower())
    if known:
        logger.info(f'Enhanced prompt from "{prompt}" to a detailed description')
        return known

    enhanced = _GENERIC_TEMPLATE.format(prompt=prompt)
    logger.info(f'Generic enhancement of prompt from "{prompt}" to "{enhanced}"')
    return enhanced


def needs_enhancement(prompt: str) -> bool:
    """Whether a submitted prompt is too short to send as-is."""
    return len(prompt.strip()) < MIN_PROMPT_LENGTH


def sanitize_for_moderation(prompt: str) -> str:
    """Remove blocklisted terms and collapse whitespace.

    Returns:
        The cleaned prompt, or :data:`SAFE_FALLBACK_PROMPT` if nothing is left.
    """
    cleaned = _BLOCKLIST_PATTERN.sub(" ", prompt)
    cleaned = re.sub(r"\s+", " ", cleaned).strip()
    if not cleaned:
        return SAFE_FALLBACK_PROMPT
    return cleaned


def persistable_prompt(prompt: str | None) -> str | None:
    """Return *prompt*, or the sentinel when it carries inline image data."""
    if is_inline_image(prompt):
        return IMAGE_PROMPT_SENTINEL
    return prompt


def derive_client_name(prompt: str | None, client: str | None = None) -> str:
    """Pick the display client name for a generation.

    An explicit client is kept unless it is empty or the legacy placeholder.
    Otherwise the first one or two words longer than three characters are
    taken from the prompt, upper-cased and suffixed with ``" STUDIOS"``.
    """
    if client and client.strip() and client.strip().upper() != PLACEHOLDER_CLIENT:
        return client.strip()

    if not prompt or is_inline_image(prompt):
        return DEFAULT_CLIENT

    words = [word for word in re.findall(r"[A-Za-z0-9']+", prompt) if len(word) > 3]
    if not words:
        return DEFAULT_CLIENT
    return " ".join(words[:2]).upper() + " STUDIOS"


def default_title(prompt: str | None, title: str | None = None) -> str:
    """Use *title* when given, else a truncated non-image prompt."""
    if title and title.strip():
        return title.strip()
    if not prompt or is_inline_image(prompt):
        return DEFAULT_TITLE
    text = prompt.strip()
    if len(text) <= _TITLE_LENGTH:
        return text
    return text[:_TITLE_LENGTH].rstrip() + "..."


def preview(prompt: str, length: int = 50) -> str:
    """Shorten a prompt for log lines."""
    if is_inline_image(prompt):
        return IMAGE_PROMPT_SENTINEL
    return prompt[:length] + ("..." if len(prompt) > length else "")
