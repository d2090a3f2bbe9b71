"""Generation orchestration: submit, poll, reconcile, persist.

The orchestrator sits between the HTTP routes and everything stateful.  A
generation goes through two phases:

1. **Submission** (:meth:`GenerationOrchestrator.submit_video`,
   :meth:`~GenerationOrchestrator.submit_image`) validates the request,
   submits the job to the generation API, saves any supplied image to disk
   and writes a *preliminary* record (no ``url`` yet).
2. **Reconciliation** (:meth:`~GenerationOrchestrator.check_video_status`,
   :meth:`~GenerationOrchestrator.check_image_status`) is driven by an
   external poller.  Each call fetches the remote job; non-terminal and
   failed states are reported without touching the store, and the first
   ``completed`` observation finalises the record (description, display
   metadata, final URL) and persists it.  Later ``completed`` polls find the
   record already finalised and leave it untouched.

Remote job states::

    pending -> processing -> completed
                          \\-> failed

Image generation retries on moderation rejections following
:data:`IMAGE_RETRY_PLAN`; any other upstream error aborts at once.

Failed generations are reported to the caller but not written to the store.
"""

from __future__ import annotations

import logging
import random
import string
import time
from collections.abc import Callable
from dataclasses import dataclass, replace

from mediarelay.core.clients import GenerationClient, ImageHostClient, VisionClient
from mediarelay.core.errors import (
    InvalidImageFormat,
    MissingGenerationId,
    MissingPrompt,
    ModerationRejected,
    RecordNotFound,
    UninitializedClient,
    UpstreamGenerationError,
)
from mediarelay.core.image_store import (
    ImageStore,
    is_inline_image,
    optimize_image,
    parse_data_uri,
)
from mediarelay.core.prompts import (
    SAFE_FALLBACK_PROMPT,
    default_title,
    derive_client_name,
    enhance,
    needs_enhancement,
    persistable_prompt,
    preview,
    sanitize_for_moderation,
)
from mediarelay.core.record_store import (
    DEFAULT_BACKGROUND,
    GenerationRecord,
    RecordStore,
    _now_iso,
    record_type,
    scrub_record,
)

logger = logging.getLogger(__name__)

TERMINAL_STATES = frozenset({"completed", "failed"})

DEFAULT_VIDEO_MODEL = "ray-2"
DEFAULT_IMAGE_MODEL = "photon-1"
DEFAULT_IMAGE_WEIGHT = 0.85

_STATE_MARKERS = {
    "pending": "⏳",
    "processing": "🔄",
    "completed": "✅",
    "failed": "❌",
}


@dataclass(frozen=True)
class RetryStep:
    """One row of the image retry plan.

    Attributes:
        name: Label used in logs.
        transform: Maps the caller's prompt to the prompt sent on this attempt.
        weight_factor: Multiplier applied to the reference image weight.
    """

    name: str
    transform: Callable[[str], str]
    weight_factor: float = 1.0


IMAGE_RETRY_PLAN: tuple[RetryStep, ...] = (
    RetryStep("original", lambda prompt: prompt),
    RetryStep("sanitized", sanitize_for_moderation),
    RetryStep("generic-fallback", lambda _prompt: SAFE_FALLBACK_PROMPT, weight_factor=0.5),
)


@dataclass
class PendingImage:
    """Metadata kept between submission and finalisation of a generation.

    ``encoded_image`` is the caller's original data URI; it is held only in
    memory so the vision service can describe it once the job completes, and
    is dropped after finalisation.
    """

    encoded_image: str | None = None
    image_url: str | None = None
    title: str | None = None
    client: str | None = None
    background: str | None = None
    prompt: str | None = None
    original_prompt: str | None = None
    description: str | None = None

    @classmethod
    def from_record(cls, record: dict) -> PendingImage:
        return cls(
            image_url=record.get("imageUrl"),
            title=record.get("title"),
            client=record.get("client"),
            background=record.get("background"),
            prompt=record.get("prompt"),
            original_prompt=record.get("originalPrompt"),
            description=record.get("imageDescription"),
        )


class PendingImages:
    """Generation id -> :class:`PendingImage` for jobs not yet finalised."""

    def __init__(self):
        self._items: dict[str, PendingImage] = {}

    def __contains__(self, generation_id: str) -> bool:
        return generation_id in self._items

    def __len__(self) -> int:
        return len(self._items)

    def register(self, generation_id: str, pending: PendingImage) -> None:
        self._items[generation_id] = pending

    def get(self, generation_id: str) -> PendingImage | None:
        return self._items.get(generation_id)

    def discard(self, generation_id: str) -> None:
        """Drop the entry once the job has reached a terminal state."""
        self._items.pop(generation_id, None)

    def rebuild(self, records: list[dict]) -> None:
        """Recreate entries for preliminary records after a restart."""
        self._items.clear()
        for record in records:
            if record.get("url") or record_type(record) == "image":
                continue
            self._items[record["id"]] = PendingImage.from_record(record)


def new_image_id() -> str:
    """Generate an id for an image saved without a generation job."""
    suffix = "".join(random.choices(string.ascii_lowercase + string.digits, k=6))
    return f"img-{int(time.time() * 1000)}-{suffix}"


def absolute_url(url: str | None, base_url: str | None) -> str | None:
    """Prefix a root-relative URL with *base_url*."""
    if not url or is_inline_image(url):
        return None
    if base_url and url.startswith("/"):
        return base_url.rstrip("/") + url
    return url


def scrub_view(view: dict) -> dict:
    """Null out every inline-image value in a client-facing response."""
    for key, value in view.items():
        if is_inline_image(value):
            view[key] = None
    return view


class GenerationOrchestrator:
    """Coordinates the adapters, the image store and the record store.

    Args:
        store: Loaded :class:`RecordStore`.
        image_store: Where supplied images are written.
        generation_client: Generation API adapter, or ``None`` when unconfigured.
        vision_client: Vision API adapter, or ``None`` when unconfigured.
        image_host: Image host adapter, or ``None`` when unconfigured.
    """

    def __init__(
        self,
        store: RecordStore,
        image_store: ImageStore,
        generation_client: GenerationClient | None = None,
        vision_client: VisionClient | None = None,
        image_host: ImageHostClient | None = None,
    ):
        self.store = store
        self.image_store = image_store
        self.generation_client = generation_client
        self.vision_client = vision_client
        self.image_host = image_host
        self.pending = PendingImages()
        self.pending.rebuild(store.list_all())

    # ------------------------------------------------------------------
    # Client access
    # ------------------------------------------------------------------

    def client_status(self) -> dict[str, bool]:
        return {
            "generation": self.generation_client is not None,
            "vision": self.vision_client is not None,
            "imageHost": self.image_host is not None,
        }

    def _require_generation(self) -> GenerationClient:
        if self.generation_client is None:
            raise UninitializedClient("generation", "MEDIARELAY_LUMAAI_API_KEY")
        return self.generation_client

    def _require_vision(self) -> VisionClient:
        if self.vision_client is None:
            raise UninitializedClient("vision", "MEDIARELAY_GROQ_API_KEY")
        return self.vision_client

    def _require_image_host(self) -> ImageHostClient:
        if self.image_host is None:
            raise UninitializedClient("image host", "MEDIARELAY_IMGUR_CLIENT_ID")
        return self.image_host

    # ------------------------------------------------------------------
    # Video
    # ------------------------------------------------------------------

    async def submit_video(
        self,
        prompt: str | None,
        *,
        model: str = DEFAULT_VIDEO_MODEL,
        resolution: str = "720p",
        duration: str = "5s",
        negative_prompt: str | None = None,
        image: str | None = None,
        title: str | None = None,
        client: str | None = None,
        background: str | None = None,
    ) -> dict:
        """Submit a video generation job and write its preliminary record.

        Raises:
            MissingPrompt: If *prompt* is absent or blank.
            InvalidImageFormat: If *image* is given but is not a data URI.
            UninitializedClient: If the generation API is not configured.
            UpstreamGenerationError: If the generation API rejects the job.
        """
        if not prompt or not prompt.strip():
            raise MissingPrompt()
        if image:
            parse_data_uri(image)

        original_prompt = prompt
        if needs_enhancement(prompt):
            prompt = enhance(prompt.strip())
            logger.info(f'Prompt enhanced from "{original_prompt}" to "{prompt}"')

        generation_client = self._require_generation()
        logger.info(
            f"Video generation request: prompt={preview(prompt)!r} model={model} "
            f"resolution={resolution} duration={duration}"
        )
        try:
            job = await generation_client.create_video(
                prompt,
                model=model,
                resolution=resolution,
                duration=duration,
                negative_prompt=negative_prompt,
            )
        except UpstreamGenerationError as exc:
            logger.error(f"Error generating video: {exc.message}")
            raise

        generation_id = job.get("id")
        if not generation_id:
            raise UpstreamGenerationError("Generation API did not return a generation id")
        state = job.get("state") or "pending"
        logger.info(f"Video generation started: id={generation_id} state={state}")

        image_url = self._save_image_quietly(image, generation_id)
        pending = PendingImage(
            encoded_image=image or None,
            image_url=image_url,
            title=title,
            client=client,
            background=background,
            prompt=prompt,
            original_prompt=original_prompt,
        )
        self.pending.register(generation_id, pending)
        self._write_preliminary(generation_id, "video", pending, model=job.get("model") or model, state=state)

        response = {
            "generationId": generation_id,
            "state": state,
            "prompt": persistable_prompt(prompt),
            "originalPrompt": persistable_prompt(original_prompt),
            "model": job.get("model") or model,
        }
        if image_url:
            response["imageUrl"] = image_url
        return scrub_view(response)

    async def check_video_status(self, generation_id: str | None, base_url: str | None = None) -> dict:
        """Fetch a video job and reconcile it into the store when completed.

        Args:
            generation_id: Remote job id.
            base_url: Public root of this server, used to absolutise local
                image URLs.

        Raises:
            MissingGenerationId: If *generation_id* is absent or blank.
        """
        job, state = await self._fetch(generation_id)
        assets = job.get("assets") or {}
        video_url = assets.get("video")

        image_url = self._best_known_image(generation_id)
        description = None
        if state == "completed":
            logger.info(f"Video available at: {video_url or 'URL not available'}")
            record = await self._finalize(generation_id, job, "video", media_url=video_url)
            image_url = record.get("imageUrl")
            description = record.get("imageDescription")
        elif state == "failed":
            logger.error(f"Generation failed: {job.get('failure_reason') or 'Unknown reason'}")
            self.pending.discard(generation_id)

        return scrub_view(
            {
                "state": state,
                "completed": state == "completed",
                "videoUrl": video_url if state == "completed" else None,
                "imageUrl": absolute_url(image_url, base_url),
                "imageDescription": description,
                "progress": job.get("progress"),
                "failureReason": job.get("failure_reason"),
                "model": job.get("model"),
                "createdAt": job.get("created_at"),
                "updatedAt": job.get("updated_at"),
            }
        )

    # ------------------------------------------------------------------
    # Image generation
    # ------------------------------------------------------------------

    async def submit_image(
        self,
        prompt: str | None,
        *,
        model: str = DEFAULT_IMAGE_MODEL,
        aspect_ratio: str = "16:9",
        image: str | None = None,
        image_weight: float = DEFAULT_IMAGE_WEIGHT,
        title: str | None = None,
        client: str | None = None,
        background: str | None = None,
    ) -> dict:
        """Submit an image job, degrading the prompt on moderation rejections.

        The reference *image* may be a data URI (uploaded to the image host
        first, since the generation API only takes URLs) or an http(s) URL.

        Raises:
            MissingPrompt: If *prompt* is absent or blank.
            InvalidImageFormat: If *image* is neither a data URI nor a URL.
            ModerationRejected: If every step of the retry plan was rejected.
            UpstreamGenerationError: On any non-moderation upstream failure.
        """
        if not prompt or not prompt.strip():
            raise MissingPrompt()

        reference_url = None
        if image:
            if is_inline_image(image):
                parse_data_uri(image)
                generation_client = self._require_generation()
                reference_url = await self._require_image_host().upload(image)
            elif image.startswith(("http://", "https://")):
                generation_client = self._require_generation()
                reference_url = image
            else:
                raise InvalidImageFormat("Reference image must be a data URI or an http(s) URL")
        else:
            generation_client = self._require_generation()

        job = None
        attempts = 0
        prompt_used = prompt
        last_error: UpstreamGenerationError | None = None
        for step in IMAGE_RETRY_PLAN:
            attempts += 1
            prompt_used = step.transform(prompt)
            image_ref = None
            if reference_url:
                image_ref = [{"url": reference_url, "weight": round(image_weight * step.weight_factor, 2)}]
            logger.info(f"Image generation attempt {attempts} ({step.name}): {preview(prompt_used)!r}")
            try:
                job = await generation_client.create_image(
                    prompt_used,
                    model=model,
                    aspect_ratio=aspect_ratio,
                    image_ref=image_ref,
                )
                break
            except UpstreamGenerationError as exc:
                if not exc.is_moderation:
                    logger.error(f"Image generation failed: {exc.message}")
                    raise
                last_error = exc
                logger.warning(f"Attempt {attempts} rejected by moderation: {exc.message}")

        if job is None:
            raise ModerationRejected(attempts, last_error.message if last_error else "unknown error")

        generation_id = job.get("id")
        if not generation_id:
            raise UpstreamGenerationError("Generation API did not return a generation id")
        state = job.get("state") or "pending"
        logger.info(f"Image generation started: id={generation_id} after {attempts} attempt(s)")

        encoded = image if is_inline_image(image) else None
        image_url = self._save_image_quietly(encoded, generation_id) or reference_url
        pending = PendingImage(
            encoded_image=encoded,
            image_url=image_url,
            title=title,
            client=client,
            background=background,
            prompt=prompt_used,
            original_prompt=prompt,
        )
        self.pending.register(generation_id, pending)
        self._write_preliminary(
            generation_id, "luma-image", pending, model=job.get("model") or model, state=state
        )

        response = {
            "generationId": generation_id,
            "state": state,
            "prompt": persistable_prompt(prompt_used),
            "originalPrompt": persistable_prompt(prompt),
            "attempts": attempts,
            "model": job.get("model") or model,
        }
        if image_url:
            response["imageUrl"] = image_url
        return scrub_view(response)

    async def check_image_status(self, generation_id: str | None, base_url: str | None = None) -> dict:
        """Fetch an image job and finalise its record when completed."""
        job, state = await self._fetch(generation_id)
        assets = job.get("assets") or {}
        generated_url = assets.get("image")

        image_url = self._best_known_image(generation_id)
        if state == "completed":
            record = await self._finalize(
                generation_id,
                job,
                "luma-image",
                media_url=generated_url,
                image_url=generated_url,
            )
            image_url = record.get("imageUrl")
        elif state == "failed":
            logger.error(f"Image generation failed: {job.get('failure_reason') or 'Unknown reason'}")
            self.pending.discard(generation_id)

        return scrub_view(
            {
                "state": state,
                "completed": state == "completed",
                "imageUrl": absolute_url(image_url, base_url),
                "failureReason": job.get("failure_reason"),
            }
        )

    # ------------------------------------------------------------------
    # Standalone images
    # ------------------------------------------------------------------

    def save_image(
        self,
        image: str | None,
        *,
        title: str | None = None,
        client: str | None = None,
        background: str | None = None,
    ) -> dict:
        """Persist an image that has no generation job behind it.

        Raises:
            InvalidImageFormat: If *image* is missing or not a data URI.
        """
        if not image:
            raise InvalidImageFormat()
        parse_data_uri(image)

        record_id = new_image_id()
        saved = self.image_store.save(image, record_id)
        record = GenerationRecord(
            id=record_id,
            type="image",
            url=saved.url,
            imageUrl=saved.url,
            title=default_title(None, title),
            client=derive_client_name(None, client),
            background=background or DEFAULT_BACKGROUND,
            state="completed",
        ).to_record()
        self.store.upsert(record)
        self.store.persist()
        logger.info(f"Saved standalone image {record_id} at {saved.url}")
        return {"id": record_id, "imageUrl": saved.url}

    async def describe_upload(self, image: str | None) -> str:
        """Optimise an image, upload it to the host and describe it.

        Raises:
            InvalidImageFormat: If *image* is missing or not a data URI.
            UpstreamGenerationError: If the upload fails or no description
                comes back.
        """
        if not image or not is_inline_image(image):
            raise InvalidImageFormat()
        image_host = self._require_image_host()
        vision_client = self._require_vision()

        optimized = optimize_image(image)
        link = await image_host.upload(optimized)
        description = await vision_client.describe(link)
        if not description:
            raise UpstreamGenerationError("No description generated from vision API")
        return description

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def list_records(self, record_type_filter: str | None = None) -> list[dict]:
        return self.store.list_all(record_type_filter)

    def get_record(self, record_id: str) -> dict:
        record = self.store.find_by_id(record_id)
        if record is None:
            raise RecordNotFound(record_id)
        return record

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _fetch(self, generation_id: str | None) -> tuple[dict, str]:
        if not generation_id or not generation_id.strip():
            raise MissingGenerationId()
        generation_client = self._require_generation()
        logger.info(f"Checking status for generation ID: {generation_id}")
        job = await generation_client.get_generation(generation_id)
        state = job.get("state") or "pending"
        logger.info(f"{_STATE_MARKERS.get(state, '❓')} Status [{generation_id}]: {state}")
        return job, state

    def _save_image_quietly(self, image: str | None, generation_id: str) -> str | None:
        """Save *image* to disk; a failed write is logged, not raised."""
        if not image:
            return None
        try:
            return self.image_store.save(image, generation_id).url
        except (InvalidImageFormat, OSError) as exc:
            logger.error(f"Failed to save image for {generation_id}: {exc}", exc_info=True)
            return None

    def _best_known_image(self, generation_id: str) -> str | None:
        pending = self.pending.get(generation_id)
        if pending and pending.image_url:
            return pending.image_url
        record = self.store.find_by_id(generation_id)
        return record.get("imageUrl") if record else None

    def _write_preliminary(
        self,
        generation_id: str,
        kind: str,
        pending: PendingImage,
        *,
        model: str | None,
        state: str,
    ) -> None:
        record = GenerationRecord(
            id=generation_id,
            type=kind,
            imageUrl=pending.image_url,
            title=default_title(pending.original_prompt, pending.title),
            client=derive_client_name(pending.original_prompt, pending.client),
            background=pending.background or DEFAULT_BACKGROUND,
            prompt=persistable_prompt(pending.prompt),
            originalPrompt=persistable_prompt(pending.original_prompt),
            model=model,
            state=state,
        ).to_record()
        self.store.upsert(record)
        self.store.persist()

    async def _finalize(
        self,
        generation_id: str,
        job: dict,
        kind: str,
        *,
        media_url: str | None,
        image_url: str | None = None,
    ) -> dict:
        """Write the final record for a completed job, once.

        Returns:
            A scrubbed copy of the stored record.
        """
        existing = self.store.find_by_id(generation_id)
        if existing and existing.get("state") == "completed" and existing.get("url") == media_url:
            return existing

        pending = self.pending.get(generation_id)
        if pending is None:
            pending = PendingImage.from_record(existing) if existing else PendingImage()
        if not pending.original_prompt:
            request_prompt = (job.get("request") or {}).get("prompt")
            pending = replace(
                pending,
                prompt=pending.prompt or request_prompt,
                original_prompt=request_prompt,
            )

        description = await self._describe(pending, existing, media_url if kind == "luma-image" else None)

        record = GenerationRecord(
            id=generation_id,
            type=kind,
            url=media_url,
            imageUrl=image_url or pending.image_url,
            title=default_title(pending.original_prompt, pending.title),
            client=derive_client_name(pending.original_prompt, pending.client),
            background=pending.background or DEFAULT_BACKGROUND,
            prompt=persistable_prompt(pending.prompt),
            originalPrompt=persistable_prompt(pending.original_prompt),
            imageDescription=description,
            model=job.get("model") or (existing or {}).get("model"),
            state="completed",
            timestamp=_now_iso(),
        ).to_record()

        stored = self.store.upsert(record)
        self.store.persist()
        self.pending.discard(generation_id)
        logger.info(f"Finalised {kind} record {generation_id}")
        return scrub_record(stored)

    async def _describe(
        self,
        pending: PendingImage,
        existing: dict | None,
        remote_image: str | None = None,
    ) -> str | None:
        """Pick the best available description for a completed job.

        Order: a fresh description of the cached image (or the generated
        image), the previously stored description, then the prompt itself
        when it is plain text.
        """
        source = pending.encoded_image or remote_image
        if source and self.vision_client is not None:
            description = await self.vision_client.describe(source)
            if description:
                return description

        previous = pending.description or (existing or {}).get("imageDescription")
        if previous:
            return previous

        for candidate in (pending.original_prompt, pending.prompt):
            if candidate and not is_inline_image(candidate):
                return candidate
        return None
