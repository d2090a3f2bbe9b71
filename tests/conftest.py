"""Shared pytest fixtures for Mediarelay tests."""

import base64
import io
import shutil
import tempfile
from pathlib import Path
from typing import Generator

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from mediarelay.api.main import create_app
from mediarelay.core.config import RelayConfig
from mediarelay.core.errors import UpstreamGenerationError
from mediarelay.core.image_store import ImageStore
from mediarelay.core.orchestrator import GenerationOrchestrator
from mediarelay.core.record_store import RecordStore


class FakeGenerationClient:
    """In-memory stand-in for the generation API.

    Jobs start in ``pending``; tests move them along with :meth:`advance`,
    :meth:`complete` and :meth:`fail`.  ``image_errors`` is a queue of
    exceptions raised by successive ``create_image`` calls.
    """

    def __init__(self):
        self.jobs: dict[str, dict] = {}
        self.video_calls: list[dict] = []
        self.image_calls: list[dict] = []
        self.get_calls: list[str] = []
        self.video_error: Exception | None = None
        self.image_errors: list[Exception] = []
        self._counter = 0

    def _new_job(self, prompt: str, model: str) -> dict:
        self._counter += 1
        generation_id = f"gen-{self._counter:04d}"
        self.jobs[generation_id] = {
            "id": generation_id,
            "state": "pending",
            "model": model,
            "request": {"prompt": prompt},
            "assets": None,
            "failure_reason": None,
            "created_at": "2026-01-01T00:00:00Z",
        }
        return dict(self.jobs[generation_id])

    async def create_video(self, prompt, *, model, resolution, duration, negative_prompt=None):
        self.video_calls.append(
            {
                "prompt": prompt,
                "model": model,
                "resolution": resolution,
                "duration": duration,
                "negative_prompt": negative_prompt,
            }
        )
        if self.video_error is not None:
            raise self.video_error
        return self._new_job(prompt, model)

    async def create_image(self, prompt, *, model, aspect_ratio, image_ref=None):
        self.image_calls.append(
            {
                "prompt": prompt,
                "model": model,
                "aspect_ratio": aspect_ratio,
                "image_ref": image_ref,
            }
        )
        if self.image_errors:
            raise self.image_errors.pop(0)
        return self._new_job(prompt, model)

    async def get_generation(self, generation_id):
        self.get_calls.append(generation_id)
        if generation_id not in self.jobs:
            raise UpstreamGenerationError("Generation not found", upstream_status=404)
        return dict(self.jobs[generation_id])

    def advance(self, generation_id: str, progress: float = 0.5) -> None:
        self.jobs[generation_id].update(state="processing", progress=progress)

    def complete(self, generation_id: str, *, video: str | None = None, image: str | None = None) -> None:
        assets = {}
        if video:
            assets["video"] = video
        if image:
            assets["image"] = image
        self.jobs[generation_id].update(state="completed", assets=assets)

    def fail(self, generation_id: str, reason: str) -> None:
        self.jobs[generation_id].update(state="failed", failure_reason=reason)


class FakeVisionClient:
    """Returns a fixed description and records what it was asked about."""

    def __init__(self, description: str | None = "A red square on a plain background."):
        self.description = description
        self.calls: list[str] = []

    async def describe(self, image_url):
        self.calls.append(image_url)
        return self.description


class FakeImageHost:
    """Pretends to upload images and hands back a stable public link."""

    def __init__(self, link: str = "https://i.example.com/uploaded.jpg"):
        self.link = link
        self.uploads: list[str] = []

    async def upload(self, encoded_image):
        self.uploads.append(encoded_image)
        return self.link


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files.

    Yields:
        Path to temporary directory

    Cleanup:
        Directory is removed after test completes
    """
    temp_path = Path(tempfile.mkdtemp())
    try:
        yield temp_path
    finally:
        shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture
def test_config(temp_dir: Path) -> RelayConfig:
    """Create a test configuration rooted in a temporary directory.

    Args:
        temp_dir: Temporary directory from fixture

    Returns:
        RelayConfig instance for testing
    """
    return RelayConfig(
        _env_file=None,
        data_dir=temp_dir / "data",
        static_dir=temp_dir / "public",
        lumaai_api_key="test-luma-key",
        groq_api_key="test-groq-key",
        imgur_client_id="test-imgur-id",
        server_port=5007,
        fallback_port=5008,
    )


@pytest.fixture
def png_data_uri() -> str:
    """A small, valid PNG encoded as a data URI."""
    buffer = io.BytesIO()
    Image.new("RGB", (8, 8), "red").save(buffer, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buffer.getvalue()).decode("ascii")


@pytest.fixture
def fake_generation() -> FakeGenerationClient:
    return FakeGenerationClient()


@pytest.fixture
def fake_vision() -> FakeVisionClient:
    return FakeVisionClient()


@pytest.fixture
def fake_image_host() -> FakeImageHost:
    return FakeImageHost()


@pytest.fixture
def record_store(test_config: RelayConfig) -> RecordStore:
    """An empty, loaded record store backed by the test data directory."""
    store = RecordStore(test_config.records_path)
    store.load_all()
    return store


@pytest.fixture
def image_store(test_config: RelayConfig) -> ImageStore:
    return ImageStore(test_config.images_dir, test_config.images_url_prefix)


@pytest.fixture
def orchestrator(
    record_store: RecordStore,
    image_store: ImageStore,
    fake_generation: FakeGenerationClient,
    fake_vision: FakeVisionClient,
    fake_image_host: FakeImageHost,
) -> GenerationOrchestrator:
    """Orchestrator wired to the fake adapters."""
    return GenerationOrchestrator(
        record_store,
        image_store,
        generation_client=fake_generation,
        vision_client=fake_vision,
        image_host=fake_image_host,
    )


@pytest.fixture
def test_client(
    test_config: RelayConfig,
    fake_generation: FakeGenerationClient,
    fake_vision: FakeVisionClient,
    fake_image_host: FakeImageHost,
) -> Generator[TestClient, None, None]:
    """FastAPI TestClient with the lifespan running and fake adapters installed."""
    app = create_app(test_config, clients=(fake_generation, fake_vision, fake_image_host))
    with TestClient(app) as client:
        yield client
