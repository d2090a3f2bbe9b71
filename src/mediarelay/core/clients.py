"""HTTP adapters for the remote services the relay forwards to.

Three services are involved:

- **GenerationClient** -- the asynchronous video/image generation API.  Jobs
  are created with a POST and later fetched by id; the job document carries
  ``state`` (``pending`` / ``processing`` / ``completed`` / ``failed``),
  ``assets`` and ``failure_reason``.
- **VisionClient** -- an OpenAI-compatible chat-completions endpoint with a
  vision model, used to describe an image in one paragraph.
- **ImageHostClient** -- a public image host.  The generation API only
  accepts reference images by URL, so local images are uploaded first.

All adapters share the same failure contract: a transport error or an HTTP
status of 400 or above becomes :class:`UpstreamGenerationError`, except for
:meth:`VisionClient.describe`, which treats any failure as "no description".
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from mediarelay.core.config import RelayConfig
from mediarelay.core.errors import UpstreamGenerationError
from mediarelay.core.image_store import parse_data_uri

logger = logging.getLogger(__name__)

DESCRIPTION_QUESTION = "What's in this image?"


def _error_from_response(service: str, response: httpx.Response) -> UpstreamGenerationError:
    """Build an :class:`UpstreamGenerationError` from a failed response."""
    try:
        payload = response.json()
    except ValueError:
        payload = None

    message = ""
    details: dict[str, Any] = {}
    if isinstance(payload, dict):
        error_obj = payload.get("error")
        if isinstance(error_obj, dict):
            details = error_obj
            message = str(error_obj.get("message") or "")
        elif isinstance(error_obj, str):
            message = error_obj
        message = message or str(payload.get("detail") or payload.get("message") or "")
        if not details:
            details = payload

    if not message:
        message = f"{service} returned HTTP {response.status_code}"

    return UpstreamGenerationError(
        message,
        upstream_status=response.status_code,
        details=details,
    )


class GenerationClient:
    """Adapter for the generation API.

    Submission calls carry no timeout; generation requests can take a while
    to be accepted and the relay has no way to cancel them anyway.

    Args:
        api_key: Bearer token.
        base_url: API root, e.g. ``https://api.lumalabs.ai/dream-machine/v1``.
        transport: Optional httpx transport (tests use ``httpx.MockTransport``).
    """

    def __init__(
        self,
        api_key: str,
        base_url: str,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
                "Accept": "application/json",
            },
            timeout=httpx.Timeout(None),
            transport=transport,
        )

    async def create_video(
        self,
        prompt: str,
        *,
        model: str,
        resolution: str,
        duration: str,
        negative_prompt: str | None = None,
    ) -> dict:
        """Submit a video generation job and return the job document."""
        body: dict[str, Any] = {
            "prompt": prompt,
            "model": model,
            "resolution": resolution,
            "duration": duration,
        }
        if negative_prompt and negative_prompt.strip():
            body["negative_prompt"] = negative_prompt
        return await self._request("POST", "/generations", json=body)

    async def create_image(
        self,
        prompt: str,
        *,
        model: str,
        aspect_ratio: str,
        image_ref: list[dict] | None = None,
    ) -> dict:
        """Submit an image generation job and return the job document.

        Args:
            image_ref: Optional list of ``{"url": ..., "weight": ...}``
                reference images.
        """
        body: dict[str, Any] = {
            "prompt": prompt,
            "model": model,
            "aspect_ratio": aspect_ratio,
        }
        if image_ref:
            body["image_ref"] = image_ref
        return await self._request("POST", "/generations/image", json=body)

    async def get_generation(self, generation_id: str) -> dict:
        """Fetch the current job document for *generation_id*."""
        return await self._request("GET", f"/generations/{generation_id}")

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, path: str, **kwargs) -> dict:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise UpstreamGenerationError(f"Generation API request failed: {exc}") from exc

        if response.status_code >= 400:
            raise _error_from_response("Generation API", response)

        try:
            payload = response.json()
        except ValueError as exc:
            raise UpstreamGenerationError(
                "Generation API returned a non-JSON response",
                upstream_status=response.status_code,
            ) from exc
        if not isinstance(payload, dict):
            raise UpstreamGenerationError("Generation API returned an unexpected payload")
        return payload


class VisionClient:
    """Adapter for the vision-description API.

    Args:
        api_key: Bearer token.
        base_url: OpenAI-compatible API root.
        model: Vision model name.
        timeout: Seconds before a description call is abandoned.
        transport: Optional httpx transport for tests.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str,
        *,
        model: str,
        timeout: float,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.model = model
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    async def describe(self, image_url: str) -> str | None:
        """Describe the image at *image_url* (a public URL or a data URI).

        Returns:
            The description text, or ``None`` when the call timed out or
            failed.  Failures are logged, never raised.
        """
        body = {
            "model": self.model,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": DESCRIPTION_QUESTION},
                        {"type": "image_url", "image_url": {"url": image_url}},
                    ],
                }
            ],
            "temperature": 0.7,
            "max_completion_tokens": 1024,
            "top_p": 1,
            "stream": False,
        }
        try:
            response = await self._client.post("/chat/completions", json=body)
        except httpx.TimeoutException:
            logger.warning("Image description timed out")
            return None
        except httpx.HTTPError as exc:
            logger.warning(f"Image description request failed: {exc}")
            return None

        if response.status_code >= 400:
            logger.warning(f"Image description failed: {_error_from_response('Vision API', response).message}")
            return None

        try:
            payload = response.json()
            content = payload["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError):
            logger.warning("Vision API returned no description")
            return None

        if not isinstance(content, str) or not content.strip():
            logger.warning("Vision API returned an empty description")
            return None
        return content.strip()

    async def aclose(self) -> None:
        await self._client.aclose()


class ImageHostClient:
    """Adapter for the public image host.

    Args:
        client_id: Image host client ID.
        upload_url: Upload endpoint.
        transport: Optional httpx transport for tests.
    """

    def __init__(
        self,
        client_id: str,
        upload_url: str,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.upload_url = upload_url
        self._client = httpx.AsyncClient(
            headers={"Authorization": f"Client-ID {client_id}"},
            timeout=httpx.Timeout(60.0),
            transport=transport,
        )

    async def upload(self, encoded_image: str) -> str:
        """Upload a data-URI image and return its public link.

        Raises:
            InvalidImageFormat: If *encoded_image* is not an image data URI.
            UpstreamGenerationError: If the host rejects the upload.
        """
        parse_data_uri(encoded_image)
        payload = encoded_image.split(",", 1)[1]
        try:
            response = await self._client.post(
                self.upload_url,
                data={"image": payload, "type": "base64"},
            )
        except httpx.HTTPError as exc:
            raise UpstreamGenerationError(f"Image upload failed: {exc}") from exc

        if response.status_code >= 400:
            error = _error_from_response("Image host", response)
            raise UpstreamGenerationError(
                f"Image upload failed: {error.message}",
                upstream_status=response.status_code,
            )

        try:
            link = response.json()["data"]["link"]
        except (ValueError, KeyError, TypeError) as exc:
            raise UpstreamGenerationError("Failed to retrieve image URL from image host") from exc
        if not link:
            raise UpstreamGenerationError("Failed to retrieve image URL from image host")
        return link

    async def aclose(self) -> None:
        await self._client.aclose()


def build_clients(
    settings: RelayConfig,
) -> tuple[GenerationClient | None, VisionClient | None, ImageHostClient | None]:
    """Create the adapters whose credentials are configured.

    A missing credential is logged and its adapter is returned as ``None``.
    """
    generation = None
    vision = None
    image_host = None

    if settings.lumaai_api_key:
        generation = GenerationClient(settings.lumaai_api_key, settings.generation_base_url)
    else:
        logger.error("MEDIARELAY_LUMAAI_API_KEY is not set; generation endpoints are disabled")

    if settings.groq_api_key:
        vision = VisionClient(
            settings.groq_api_key,
            settings.vision_base_url,
            model=settings.vision_model,
            timeout=settings.description_timeout,
        )
    else:
        logger.error("MEDIARELAY_GROQ_API_KEY is not set; image descriptions are disabled")

    if settings.imgur_client_id:
        image_host = ImageHostClient(settings.imgur_client_id, settings.imgur_upload_url)
    else:
        logger.error("MEDIARELAY_IMGUR_CLIENT_ID is not set; image uploads are disabled")

    return generation, vision, image_host
