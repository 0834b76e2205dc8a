"""Video sub-pipeline: directing → rendering → complete.

Runs as the tail of the main pipeline or on its own for a video
regeneration.  Failures are recorded on the song with ``failed_step =
GENERATING_VIDEO``; lyrics, audio and art are never rolled back.
"""
from __future__ import annotations

import asyncio
import base64
import logging
import time
from dataclasses import dataclass
from typing import Any, Optional, Tuple

from backend.services.pipeline import prompts
from backend.services.providers.base import VisualGenerator
from backend.services.providers.exceptions import ProviderTimeout
from backend.services.shared.logging import song_logger
from backend.services.songs import status as song_status
from backend.services.songs.store import SongStore
from backend.services.songs.types import GenerationStatus, Song

logger = logging.getLogger("songsmith.pipeline.video")

MSG_DIRECTING = "Directing the music video..."
MSG_RENDERING = "Rendering the final cut..."
MSG_COMPLETE = "Your masterpiece is ready!"
MSG_FAILED = "Failed to generate video."

_PNG_DATA_PREFIX = "data:image/png;base64"


class VideoTimeoutError(ProviderTimeout):
    """Rendering did not finish within the configured time budget."""


@dataclass
class VideoSettings:
    poll_interval: float = 10.0
    timeout: float = 900.0

    @classmethod
    def from_config(cls, config: Any) -> "VideoSettings":
        return cls(
            poll_interval=float(config.get("pipeline.video.poll_interval_seconds", 10)),
            timeout=float(config.get("pipeline.video.timeout_seconds", 900)),
        )


def cover_art_image(cover_art_url: Optional[str]) -> Optional[Tuple[bytes, str]]:
    """Decode a PNG data URL into (bytes, mime type); anything else → None."""
    if not cover_art_url:
        return None
    parts = cover_art_url.split(",")
    if len(parts) != 2 or parts[0] != _PNG_DATA_PREFIX:
        return None
    try:
        return base64.b64decode(parts[1], validate=True), "image/png"
    except ValueError:
        return None


class VideoPipeline:
    """Generates the music video for one song."""

    def __init__(self, store: SongStore, visual: VisualGenerator, settings: Optional[VideoSettings] = None):
        self._store = store
        self._visual = visual
        self._settings = settings or VideoSettings()

    async def run(self, song_id: str) -> None:
        """Generate and attach the video.  Never raises for provider errors."""
        song = self._store.get(song_id)
        if song is None:
            logger.warning("Video requested for unknown song %s", song_id)
            return
        log = song_logger(logger, song_id)
        try:
            await self._generate(song, log)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            log.error("Video generation failed: %s", exc)
            song_status.fail(
                song, song_status.error_text(exc) or MSG_FAILED, failed_step=GenerationStatus.GENERATING_VIDEO,
            )
            await self._store.persist_best_effort()

    async def _generate(self, song: Song, log: logging.LoggerAdapter) -> None:
        song_status.reenter_video(song, MSG_DIRECTING)
        await self._store.persist()
        log.info("Generating video...")

        seed = cover_art_image(song.cover_art_url)
        if seed is not None:
            log.info("Using generated cover art as input for video generation.")
        image_bytes, mime_type = seed if seed is not None else (None, "image/png")

        job = await self._visual.submit_video(
            prompts.video_prompt(song), image_bytes=image_bytes, image_mime_type=mime_type,
        )

        song_status.enter(song, GenerationStatus.POLLING_VIDEO, MSG_RENDERING)
        await self._store.persist()

        deadline = time.monotonic() + self._settings.timeout
        while not job.done:
            if time.monotonic() >= deadline:
                raise VideoTimeoutError("video", self._settings.timeout, what="video rendering")
            await asyncio.sleep(self._settings.poll_interval)
            log.debug("Polling video status...")
            job = await self._visual.poll_video(job)

        if job.error:
            raise RuntimeError(f"Video generation failed: {job.error}")
        if not job.video_uri:
            raise RuntimeError("Video generation completed but no download link was found.")

        song.video_url = self._visual.download_url(job.video_uri)
        song.thumbnail_url = song.cover_art_url or None
        song_status.enter(song, GenerationStatus.COMPLETE, MSG_COMPLETE)
        await self._store.persist()
        log.info("Video generation complete.")
