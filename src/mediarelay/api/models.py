"""Pydantic request models for the relay API.

These models define the JSON bodies accepted by the POST endpoints.  Fields
the orchestrator validates itself (``prompt``, ``image``) are optional here
so that a missing value produces the relay's own error body
(``{"error": "Prompt is required"}``) rather than a generic validation error.

Models
------
GenerateVideoRequest
    Payload for ``POST /generate-video``.
GenerateImageRequest
    Payload for ``POST /generate-image``.
SaveImageRequest
    Payload for ``POST /save-image``.
DescribeImageRequest
    Payload for ``POST /upload-and-generate-description``.
"""

from __future__ import annotations

from pydantic import BaseModel, Field


class GenerateVideoRequest(BaseModel):
    """Request body for ``POST /generate-video``.

    Attributes:
        prompt: Scene description.  Prompts shorter than ten characters are
            expanded before submission.
        model: Generation model name.
        resolution: Output resolution, e.g. ``"720p"``.
        duration: Clip length, e.g. ``"5s"``.
        negative_prompt: Optional text describing what to avoid.
        image: Optional reference image as a data URI.  It is saved locally
            and described once the video completes.
        title: Display title.
        client: Display client name.
        background: Display background colour.
    """

    prompt: str | None = Field(default=None, description="Scene description.")
    model: str = Field(default="ray-2", description="Generation model name.")
    resolution: str = Field(default="720p", description="Output resolution.")
    duration: str = Field(default="5s", description="Clip duration.")
    negative_prompt: str | None = Field(default=None, description="What to avoid.")
    image: str | None = Field(default=None, description="Reference image data URI.")
    title: str | None = Field(default=None, description="Display title.")
    client: str | None = Field(default=None, description="Display client name.")
    background: str | None = Field(default=None, description="Display background.")


class GenerateImageRequest(BaseModel):
    """Request body for ``POST /generate-image``.

    Attributes:
        prompt: Image description.
        model: Image model name.
        aspect_ratio: Output aspect ratio, e.g. ``"16:9"``.
        image: Optional reference image, as a data URI or an http(s) URL.
        image_weight: Influence of the reference image (0-1).
    """

    prompt: str | None = Field(default=None, description="Image description.")
    model: str = Field(default="photon-1", description="Image model name.")
    aspect_ratio: str = Field(default="16:9", description="Output aspect ratio.")
    image: str | None = Field(default=None, description="Reference image (data URI or URL).")
    image_weight: float = Field(default=0.85, ge=0.0, le=1.0, description="Reference image weight.")
    title: str | None = Field(default=None, description="Display title.")
    client: str | None = Field(default=None, description="Display client name.")
    background: str | None = Field(default=None, description="Display background.")


class SaveImageRequest(BaseModel):
    """Request body for ``POST /save-image``."""

    image: str | None = Field(default=None, description="Image data URI.")
    title: str | None = Field(default=None, description="Display title.")
    client: str | None = Field(default=None, description="Display client name.")
    background: str | None = Field(default=None, description="Display background.")


class DescribeImageRequest(BaseModel):
    """Request body for ``POST /upload-and-generate-description``."""

    image: str | None = Field(default=None, description="Image data URI.")
