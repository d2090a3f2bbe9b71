"""Mediarelay — FastAPI Application.

This module defines the application factory, all REST API routes, and the
``main()`` CLI function that launches the uvicorn server.

Architecture
------------
The application is a thin relay in front of remote generation services:

- **Configuration** comes from :mod:`mediarelay.core.config` (environment
  variables with the ``MEDIARELAY_`` prefix, or a ``.env`` file).
- **Generation** is delegated to the remote generation API through
  :class:`~mediarelay.core.orchestrator.GenerationOrchestrator`.  Jobs are
  asynchronous: the frontend polls the status endpoints, and each poll
  reconciles the remote state into the local records.
- **Record persistence** uses a single ``videos.json`` file; no database is
  required.
- **Saved images** are served by FastAPI's ``StaticFiles`` at ``/images``.

All stateful objects (record store, image store, adapters, orchestrator)
are created in the lifespan handler and stored on ``app.state``; route
handlers reach them through :func:`get_orchestrator`.

Endpoints
---------
========  ====================================  ==============================
Method    Path                                  Purpose
========  ====================================  ==============================
POST      ``/generate-video``                   Submit a video job
GET       ``/video-status/{id}``                Poll and reconcile a video job
POST      ``/generate-image``                   Submit an image job (retrying)
GET       ``/image-status/{id}``                Poll and reconcile an image job
POST      ``/save-image``                       Save an image without a job
GET       ``/videos``                           List records
GET       ``/videos/{id}``                      Single record
POST      ``/upload-and-generate-description``  Describe an uploaded image
GET       ``/health``                           Liveness and client status
GET       ``/config``                           Port and static prefix
========  ====================================  ==============================

Usage
-----
CLI (installed entry point)::

    mediarelay

Direct invocation::

    python -m mediarelay.api.main
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import Depends, FastAPI, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles

from mediarelay import __version__
from mediarelay.api.models import (
    DescribeImageRequest,
    GenerateImageRequest,
    GenerateVideoRequest,
    SaveImageRequest,
)
from mediarelay.core.clients import build_clients
from mediarelay.core.config import RelayConfig, config
from mediarelay.core.errors import RelayError
from mediarelay.core.image_store import ImageStore
from mediarelay.core.orchestrator import GenerationOrchestrator
from mediarelay.core.ports import select_port
from mediarelay.core.record_store import RecordStore

logger = logging.getLogger(__name__)


def get_orchestrator(request: Request) -> GenerationOrchestrator:
    """FastAPI dependency returning the orchestrator created at startup."""
    return request.app.state.orchestrator


def _base_url(request: Request) -> str:
    return str(request.base_url).rstrip("/")


def create_app(settings: RelayConfig | None = None, *, clients: tuple | None = None) -> FastAPI:
    """Build the FastAPI application.

    Args:
        settings: Configuration to use.  Defaults to the global ``config``.
        clients: Optional ``(generation, vision, image_host)`` adapters.  When
            omitted they are built from *settings* at startup and closed at
            shutdown.

    Returns:
        The configured application.
    """
    settings = settings or config

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Create the stores and adapters on startup, close adapters on shutdown."""
        # --- Startup -------------------------------------------------------
        store = RecordStore(settings.records_path)
        store.load_all()
        image_store = ImageStore(settings.images_dir, settings.images_url_prefix)

        owned = clients is None
        generation, vision, image_host = build_clients(settings) if owned else clients

        app.state.store = store
        app.state.orchestrator = GenerationOrchestrator(
            store,
            image_store,
            generation_client=generation,
            vision_client=vision,
            image_host=image_host,
        )
        logger.info(f"Relay started with {len(store)} records.")

        yield  # Application runs here.

        # --- Shutdown ------------------------------------------------------
        if owned:
            for adapter in (generation, vision, image_host):
                if adapter is not None:
                    await adapter.aclose()
        logger.info("Relay adapters closed on shutdown.")

    app = FastAPI(
        title="Mediarelay",
        description="Relay for remote video and image generation services.",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.port = settings.server_port

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Saved images are served directly at ``/images/...``.
    app.mount(
        settings.images_url_prefix,
        StaticFiles(directory=str(settings.images_dir)),
        name="images",
    )

    @app.exception_handler(RelayError)
    async def relay_error_handler(request: Request, exc: RelayError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
        else:
            logger.warning(f"{request.method} {request.url.path} rejected: {exc.message}")
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = jsonable_encoder(exc.errors())
        first = errors[0] if errors else {}
        location = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = first.get("msg", "Invalid request")
        if location:
            message = f"{location}: {message}"
        logger.warning(f"{request.method} {request.url.path} rejected: {message}")
        return JSONResponse(status_code=422, content={"error": message, "details": errors})

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}")
        return JSONResponse(status_code=500, content={"error": str(exc) or "Internal server error"})

    _register_routes(app)
    return app


def _register_routes(app: FastAPI) -> None:
    """Attach every route to *app*."""

    @app.post("/generate-video")
    async def generate_video(
        req: GenerateVideoRequest,
        orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
    ) -> dict:
        """Submit a video generation job.

        Short prompts are enhanced before submission.  A supplied image is
        saved locally and a preliminary record is written.

        Returns:
            Dictionary with ``generationId``, ``state``, ``prompt``,
            ``originalPrompt``, ``model`` and, when an image was saved,
            ``imageUrl``.
        """
        return await orchestrator.submit_video(**req.model_dump())

    @app.get("/video-status/{generation_id}")
    async def video_status(
        generation_id: str,
        request: Request,
        orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
    ) -> dict:
        """Poll a video job and reconcile it into the records when completed.

        Returns:
            Dictionary with ``state``, ``completed``, ``videoUrl``,
            ``imageUrl``, ``imageDescription``, ``progress``,
            ``failureReason``, ``model``, ``createdAt`` and ``updatedAt``.
        """
        return await orchestrator.check_video_status(generation_id, _base_url(request))

    @app.post("/generate-image")
    async def generate_image(
        req: GenerateImageRequest,
        orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
    ) -> dict:
        """Submit an image job, retrying with safer prompts on moderation rejections.

        Returns:
            Dictionary with ``generationId``, ``state``, ``prompt`` (the
            prompt actually accepted), ``originalPrompt`` and ``attempts``.
        """
        return await orchestrator.submit_image(**req.model_dump())

    @app.get("/image-status/{generation_id}")
    async def image_status(
        generation_id: str,
        request: Request,
        orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
    ) -> dict:
        """Poll an image job.

        Returns:
            Dictionary with ``state``, ``completed``, ``imageUrl`` and
            ``failureReason``.
        """
        return await orchestrator.check_image_status(generation_id, _base_url(request))

    @app.post("/save-image")
    async def save_image(
        req: SaveImageRequest,
        orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
    ) -> dict:
        """Save an image that has no generation job behind it."""
        result = orchestrator.save_image(
            req.image,
            title=req.title,
            client=req.client,
            background=req.background,
        )
        return {"success": True, **result}

    @app.get("/videos")
    async def list_videos(
        record_type: str | None = Query(default=None, alias="type"),
        orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
    ) -> list[dict]:
        """Return all records, optionally filtered by ``type``."""
        return orchestrator.list_records(record_type)

    @app.get("/videos/{record_id}")
    async def get_video(
        record_id: str,
        orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
    ) -> dict:
        """Return a single record.

        Raises:
            RecordNotFound: 404 if no record has this id.
        """
        return orchestrator.get_record(record_id)

    @app.post("/upload-and-generate-description")
    async def upload_and_generate_description(
        req: DescribeImageRequest,
        orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
    ) -> dict:
        """Describe an uploaded image with the vision service."""
        description = await orchestrator.describe_upload(req.image)
        return {"description": description}

    @app.get("/health")
    async def health(
        request: Request,
        orchestrator: GenerationOrchestrator = Depends(get_orchestrator),
    ) -> dict:
        """Liveness check with record count and adapter availability."""
        return {
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": __version__,
            "records": len(request.app.state.store),
            "clients": orchestrator.client_status(),
        }

    @app.get("/config")
    async def get_config(request: Request) -> dict:
        """Return the bound port and the static image prefix."""
        settings: RelayConfig = request.app.state.settings
        return {
            "port": request.app.state.port,
            "candidatePorts": settings.candidate_ports,
            "staticPrefix": settings.images_url_prefix,
            "version": __version__,
        }


app = create_app()


# ---------------------------------------------------------------------------
# CLI entry point.
# ---------------------------------------------------------------------------


def main() -> None:
    """Launch the uvicorn ASGI server.

    Tries the primary port and then the fallback port from
    :data:`~mediarelay.core.config.config`, using the first one that can be
    bound.

    This function is registered as the ``mediarelay`` console script in
    ``pyproject.toml``.
    """
    import uvicorn

    logging.basicConfig(
        level=getattr(logging, config.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    port = select_port(config.server_host, config.candidate_ports)
    app.state.port = port
    logger.info(f"Server running on http://localhost:{port}")

    uvicorn.run(
        app,
        host=config.server_host,
        port=port,
        reload=False,
    )


if __name__ == "__main__":
    main()
