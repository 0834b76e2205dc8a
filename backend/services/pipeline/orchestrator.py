"""SongPipeline — drives a song from prompt to finished music video.

Stages (each persisted before and after its external call)::

    lyrics → audio → art → video sub-pipeline

A run can start at any stage, which is how retries resume at the step that
failed.  Each song's run is a supervised background task: HTTP handlers
return the record immediately and clients poll for progress.
"""
from __future__ import annotations

import asyncio
import base64
import logging
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterator, List, Optional, Set

from backend.services.pipeline import prompts
from backend.services.pipeline.video import VideoPipeline, VideoSettings
from backend.services.providers.gateway import ProviderBundle
from backend.services.shared.logging import song_logger
from backend.services.shared.task_manager import TaskBusyError, TaskSupervisor
from backend.services.songs import status as song_status
from backend.services.songs.store import SongStore
from backend.services.songs.types import (
    EDITABLE_FIELDS, AdvancedOptions, Difficulty, GenerationStatus, Song,
)

logger = logging.getLogger("songsmith.pipeline.orchestrator")

MSG_INITIALIZING = "Initializing..."
MSG_RETRYING = "Retrying..."

_VIDEO_STAGES = (GenerationStatus.GENERATING_VIDEO, GenerationStatus.POLLING_VIDEO)


class PipelineBusyError(RuntimeError):
    """A pipeline is already running for this song."""

    def __init__(self, song_id: str):
        super().__init__(f"Song {song_id!r} is still being generated.")
        self.song_id = song_id


@dataclass
class Step:
    status: GenerationStatus
    message: str
    execute: Callable[[Song], Awaitable[None]]


@dataclass
class PipelineDefaults:
    video_style: str = "Cinematic"
    difficulty: Difficulty = Difficulty.MEDIUM

    @classmethod
    def from_config(cls, config: Any) -> "PipelineDefaults":
        return cls(
            video_style=config.get("pipeline.defaults.video_style", "Cinematic"),
            difficulty=Difficulty(config.get("pipeline.defaults.difficulty", "Medium")),
        )


class SongPipeline:
    """Creates songs and runs their generation in the background."""

    def __init__(
        self,
        store: SongStore,
        providers: ProviderBundle,
        supervisor: TaskSupervisor,
        video_settings: Optional[VideoSettings] = None,
        defaults: Optional[PipelineDefaults] = None,
    ):
        self._store = store
        self._providers = providers
        self._supervisor = supervisor
        self._defaults = defaults or PipelineDefaults()
        self._claimed: Set[str] = set()
        self.video = VideoPipeline(store, providers.visual, video_settings)
        self.steps: List[Step] = [
            Step(GenerationStatus.GENERATING_LYRICS, "Crafting the perfect words...", self._step_lyrics),
            Step(GenerationStatus.GENERATING_AUDIO, "Composing the music...", self._step_audio),
            Step(GenerationStatus.GENERATING_ART, "Creating the cover art...", self._step_art),
        ]

    @property
    def store(self) -> SongStore:
        return self._store

    def is_busy(self, song_id: str) -> bool:
        return song_id in self._claimed or self._supervisor.is_running(song_id)

    @contextmanager
    def _claim(self, song_id: str) -> Iterator[None]:
        """Hold ``song_id`` from the busy check until its task is spawned.

        Check and claim happen before any await, so a concurrent request
        for the same song is rejected before it mutates anything.
        """
        if self.is_busy(song_id):
            raise PipelineBusyError(song_id)
        self._claimed.add(song_id)
        try:
            yield
        finally:
            self._claimed.discard(song_id)

    # ── steps ────────────────────────────────────────────────────────────────

    async def _step_lyrics(self, song: Song) -> None:
        if song.lyrics:
            song_logger(logger, song.id).info("Skipping lyrics generation, custom lyrics provided.")
            return
        temperature = prompts.temperature_for(song.weirdness)
        song_logger(logger, song.id).info("Generating lyrics with temperature %.2f...", temperature)
        lyrics = await self._providers.text.generate_text(prompts.lyrics_prompt(song), temperature=temperature)
        song.lyrics = lyrics.strip()

    async def _step_audio(self, song: Song) -> None:
        song.audio_url = await self._providers.audio.generate_audio(song.lyrics, prompts.audio_prompt(song))

    async def _step_art(self, song: Song) -> None:
        image = await self._providers.visual.generate_image(prompts.art_prompt(song), aspect_ratio="1:1")
        song.cover_art_url = "data:image/png;base64," + base64.b64encode(image).decode("ascii")

    # ── pipeline ─────────────────────────────────────────────────────────────

    def start_index(self, start_step: Optional[object]) -> int:
        """Index into ``steps`` to begin at.

        Video stages resume after the last step; unknown identifiers start
        from the beginning.
        """
        step = song_status.parse_status(start_step) if start_step is not None else None
        if step in _VIDEO_STAGES:
            return len(self.steps)
        for i, candidate in enumerate(self.steps):
            if candidate.status is step:
                return i
        return 0

    async def run(self, song_id: str, start_step: Optional[object] = None) -> None:
        """Run the pipeline for an existing song.  Errors are recorded, not raised."""
        song = self._store.get(song_id)
        if song is None:
            logger.warning("Pipeline requested for unknown song %s", song_id)
            return
        log = song_logger(logger, song_id)
        try:
            for step in self.steps[self.start_index(start_step):]:
                song_status.enter(song, step.status, step.message)
                await self._store.persist()
                await step.execute(song)
                await self._store.persist()
            await self.video.run(song_id)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            log.error("Generation pipeline failed at status %s: %s", song.status.value, exc)
            song_status.fail(song, song_status.error_text(exc))
            await self._store.persist_best_effort()

    def _spawn(self, song_id: str, factory: Callable[[], Awaitable[None]], name: str) -> None:
        try:
            self._supervisor.spawn(song_id, factory, name=name)
        except TaskBusyError as exc:
            raise PipelineBusyError(song_id) from exc

    # ── operations ───────────────────────────────────────────────────────────

    async def enrich_metadata(self, song: Song) -> None:
        """Best-effort title/genre/tempo/key/tags from the text model."""
        log = song_logger(logger, song.id)
        try:
            raw = await self._providers.text.generate_text(
                prompts.metadata_prompt(song.prompt),
                temperature=prompts.temperature_for(song.weirdness),
                json_output=True,
            )
        except Exception as exc:
            log.warning("Metadata generation failed, using defaults: %s", exc)
            return
        try:
            metadata = prompts.parse_metadata(raw)
        except ValueError as exc:
            log.warning("Failed to parse metadata (%s). Raw response: %r", exc, raw[:500])
            return
        for attr, value in metadata.items():
            setattr(song, attr, value)

    async def generate(
        self,
        prompt: str,
        custom_lyrics: Optional[str] = None,
        video_style: Optional[str] = None,
        difficulty: Optional[Difficulty] = None,
        options: Optional[AdvancedOptions] = None,
    ) -> Song:
        """Create a song record and start its pipeline in the background."""
        if not prompt or not prompt.strip():
            raise ValueError("Prompt is required.")
        song = Song(
            prompt=prompt,
            title=prompts.default_title(prompt),
            lyrics=custom_lyrics or "",
            status=GenerationStatus.GENERATING_LYRICS,
            status_message=MSG_INITIALIZING,
            video_style=video_style or self._defaults.video_style,
            difficulty=difficulty or self._defaults.difficulty,
        )
        song.apply_options(options)
        await self.enrich_metadata(song)

        self._store.add(song)
        await self._store.persist()
        logger.info("Created song %s for prompt %r", song.id, prompt[:60])
        self._spawn(song.id, lambda: self.run(song.id), name="pipeline")
        return song

    async def retry(self, song_id: str, failed_step: object) -> Song:
        """Resume a failed song at its failed step.

        Raises:
            SongNotFoundError: Unknown song.
            InvalidTransitionError: Song is not in error or the step does not match.
            PipelineBusyError: A pipeline is still running for the song.
        """
        song = self._store.require(song_id)
        with self._claim(song_id):
            step = song_status.resume_point(song, failed_step)
            song_logger(logger, song_id).info("Retrying from step: %s", step.value)
            song_status.resume(song, step, MSG_RETRYING)
            await self._store.persist()
            self._spawn(song_id, lambda: self.run(song_id, step), name="retry")
        return song

    async def regenerate_video(
        self, song_id: str, video_style: Optional[str] = None, difficulty: Optional[Difficulty] = None,
    ) -> Song:
        """Clear the current video and render a new one in the background.

        Raises:
            SongNotFoundError: Unknown song.
            PipelineBusyError: A pipeline is still running for the song.
        """
        song = self._store.require(song_id)
        with self._claim(song_id):
            song_logger(logger, song_id).info("Regenerating video with style: %s", video_style)
            if video_style:
                song.video_style = video_style
            if difficulty:
                song.difficulty = difficulty
            song.video_url = None
            song.thumbnail_url = None
            await self._store.persist()
            self._spawn(song_id, lambda: self.video.run(song_id), name="regenerate-video")
        return song

    async def update_details(self, song_id: str, updates: Dict[str, Any]) -> Song:
        """Apply a user edit of title/lyrics/metadata.

        Raises:
            SongNotFoundError: Unknown song.
            PipelineBusyError: The song is being generated; the edit would race it.
            ValueError: A field outside ``EDITABLE_FIELDS`` was supplied.
        """
        song = self._store.require(song_id)
        unknown = set(updates) - set(EDITABLE_FIELDS)
        if unknown:
            raise ValueError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")
        with self._claim(song_id):
            for attr, value in updates.items():
                setattr(song, attr, value)
            await self._store.persist()
        return song

    async def shutdown(self) -> None:
        await self._supervisor.shutdown()
