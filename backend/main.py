"""SongSmith — FastAPI application entry point.

All routers are mounted here. No dead-code routers allowed — if a router
module exists, it must be mounted in this file.

Startup fails fast (``ConfigurationError``) when the Gemini credential is
missing and (``StoreCorruptError``) when the song library cannot be read.
"""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from backend.routers import songs, system, tasks
from backend.services.pipeline.orchestrator import PipelineDefaults, SongPipeline
from backend.services.pipeline.video import VideoSettings
from backend.services.providers.factory import build_providers
from backend.services.providers.gateway import ProviderBundle
from backend.services.shared.config import DEFAULT_SETTINGS_PATH, Config
from backend.services.shared.logging import setup_logging_from_config
from backend.services.shared.task_manager import TaskSupervisor
from backend.services.songs.store import SongStore

logger = logging.getLogger("songsmith.main")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator:
    """Load config, check credentials, restore the library, wire the pipeline."""
    config: Config = app.state.config
    setup_logging_from_config(config)

    # Checked even when providers are injected.
    config.require_env(config.get("providers.gemini.api_key_env", "API_KEY"))

    providers: ProviderBundle = app.state.providers or build_providers(config)
    store = SongStore.at(config.get_path("storage.db_path"))
    store.load()

    supervisor = TaskSupervisor()
    app.state.providers = providers
    app.state.supervisor = supervisor
    app.state.pipeline = SongPipeline(
        store,
        providers,
        supervisor,
        video_settings=VideoSettings.from_config(config),
        defaults=PipelineDefaults.from_config(config),
    )
    logger.info("SongSmith ready: %d song(s) in library", len(store))

    yield

    logger.info("Shutting down SongSmith...")
    await supervisor.shutdown()


async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={"detail": "Invalid request body.", "errors": jsonable_encoder(exc.errors())},
    )


def create_app(config: Optional[Config] = None, providers: Optional[ProviderBundle] = None) -> FastAPI:
    """Build the application.  ``providers`` overrides the configured adapters."""
    config = config or Config(str(DEFAULT_SETTINGS_PATH))
    app = FastAPI(
        title=config.get("app.title", "SongSmith"),
        version=str(config.get("app.version", "1.0.0")),
        description="Prompt-to-song generation — lyrics, music, cover art and music video.",
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.providers = providers

    # ── CORS ──────────────────────────────────────────────────────────────────
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.get("app.cors_origins", ["http://localhost:5173"]),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(RequestValidationError, _validation_error)

    # ── Routers ───────────────────────────────────────────────────────────────
    # Critical: every imported router must be mounted. No orphan routers.
    app.include_router(songs.router,   prefix="/api",         tags=["Songs"])
    app.include_router(tasks.router,   prefix="/api/tasks",   tags=["Tasks"])
    app.include_router(system.router,  prefix="/api/system",  tags=["System"])
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("backend.main:app", host="0.0.0.0", port=8000)
