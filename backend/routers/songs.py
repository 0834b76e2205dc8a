"""Songs router — generate, list, fetch, edit, retry, regenerate video."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, ConfigDict, Field

from backend.services.pipeline.orchestrator import PipelineBusyError, SongPipeline
from backend.services.songs.status import InvalidTransitionError
from backend.services.songs.store import PersistenceError, SongNotFoundError
from backend.services.songs.types import AdvancedOptions, Difficulty, VocalGender

logger = logging.getLogger("songsmith.routers.songs")
router = APIRouter()


# ── Request models ────────────────────────────────────────────────────────────


class _Camel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class AdvancedOptionsBody(_Camel):
    exclude_styles: Optional[str] = Field(default=None, alias="excludeStyles")
    vocal_gender: Optional[str] = Field(default=None, alias="vocalGender")
    weirdness: Optional[int] = Field(default=None, ge=0, le=100)
    style_influence: Optional[int] = Field(default=None, alias="styleInfluence", ge=0, le=100)


class GenerateRequest(_Camel):
    prompt: Optional[str] = None
    custom_lyrics: Optional[str] = Field(default=None, alias="customLyrics")
    video_style: Optional[str] = Field(default=None, alias="videoStyle")
    difficulty: Optional[str] = None
    advanced_options: Optional[AdvancedOptionsBody] = Field(default=None, alias="advancedOptions")


class SongRef(_Camel):
    """The client's copy of a record; only id and failedStep are read."""

    id: Optional[str] = None
    failed_step: Optional[str] = Field(default=None, alias="failedStep")


class RetryRequest(_Camel):
    song: Optional[SongRef] = None


class RegenerateVideoRequest(_Camel):
    song: Optional[SongRef] = None
    video_style: Optional[str] = Field(default=None, alias="videoStyle")
    difficulty: Optional[str] = None


class UpdateSongRequest(_Camel):
    title: Optional[str] = None
    lyrics: Optional[str] = None
    genre: Optional[str] = None
    tempo: Optional[int] = Field(default=None, ge=1, le=400)
    key_signature: Optional[str] = Field(default=None, alias="keySignature")
    tags: Optional[str] = None


# ── Helpers ───────────────────────────────────────────────────────────────────


def get_pipeline(request: Request) -> SongPipeline:
    return request.app.state.pipeline


def _bad_request(detail: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


def _parse_difficulty(raw: Optional[str]) -> Optional[Difficulty]:
    if raw is None or raw == "":
        return None
    for d in Difficulty:
        if raw.lower() == d.value.lower():
            return d
    raise _bad_request(f"Unknown difficulty {raw!r}. Must be one of {[d.value for d in Difficulty]}.")


def _parse_options(body: Optional[AdvancedOptionsBody]) -> Optional[AdvancedOptions]:
    if body is None:
        return None
    gender = None
    if body.vocal_gender:
        try:
            gender = VocalGender(body.vocal_gender.lower())
        except ValueError:
            raise _bad_request(f"Unknown vocalGender {body.vocal_gender!r}.")
    return AdvancedOptions(
        exclude_styles=body.exclude_styles or "",
        vocal_gender=gender,
        weirdness=body.weirdness,
        style_influence=body.style_influence,
    )


def _not_found(exc: SongNotFoundError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))


def _conflict(exc: PipelineBusyError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))


def _storage_failure(exc: PersistenceError) -> HTTPException:
    logger.error("Persistence failure: %s", exc)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to save song library.")


# ── Endpoints ─────────────────────────────────────────────────────────────────


@router.post("/generate", status_code=status.HTTP_201_CREATED)
async def generate_song(
    body: GenerateRequest, pipeline: SongPipeline = Depends(get_pipeline),
) -> Dict[str, Any]:
    """Create a song and start generating it in the background."""
    if not body.prompt or not body.prompt.strip():
        raise _bad_request("Prompt is required.")
    difficulty = _parse_difficulty(body.difficulty)
    options = _parse_options(body.advanced_options)
    try:
        song = await pipeline.generate(
            body.prompt,
            custom_lyrics=body.custom_lyrics,
            video_style=body.video_style,
            difficulty=difficulty,
            options=options,
        )
    except PersistenceError as exc:
        raise _storage_failure(exc)
    return song.to_dict()


@router.get("/songs")
async def list_songs(pipeline: SongPipeline = Depends(get_pipeline)) -> List[Dict[str, Any]]:
    """All songs, newest first."""
    return [s.to_dict() for s in pipeline.store.list_recent()]


@router.get("/songs/{song_id}")
async def get_song(song_id: str, pipeline: SongPipeline = Depends(get_pipeline)) -> Dict[str, Any]:
    song = pipeline.store.get(song_id)
    if song is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Song not found.")
    return song.to_dict()


@router.patch("/songs/{song_id}")
async def update_song(
    song_id: str, body: UpdateSongRequest, pipeline: SongPipeline = Depends(get_pipeline),
) -> Dict[str, Any]:
    """Edit title, lyrics or metadata.  Rejected while the song is generating."""
    updates = {k: v for k, v in body.model_dump(exclude_unset=True).items() if v is not None}
    if not updates:
        raise _bad_request("No editable fields supplied.")
    try:
        song = await pipeline.update_details(song_id, updates)
    except SongNotFoundError as exc:
        raise _not_found(exc)
    except PipelineBusyError as exc:
        raise _conflict(exc)
    except ValueError as exc:
        raise _bad_request(str(exc))
    except PersistenceError as exc:
        raise _storage_failure(exc)
    return song.to_dict()


@router.post("/retry")
async def retry_song(body: RetryRequest, pipeline: SongPipeline = Depends(get_pipeline)) -> Dict[str, Any]:
    """Resume a failed song at the step it failed on."""
    if body.song is None or not body.song.id or not body.song.failed_step:
        raise _bad_request("Invalid song data for retry.")
    try:
        song = await pipeline.retry(body.song.id, body.song.failed_step)
    except SongNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Song not found to retry.")
    except PipelineBusyError as exc:
        raise _conflict(exc)
    except InvalidTransitionError as exc:
        raise _bad_request(str(exc))
    except PersistenceError as exc:
        raise _storage_failure(exc)
    return song.to_dict()


@router.post("/regenerate-video")
async def regenerate_video(
    body: RegenerateVideoRequest, pipeline: SongPipeline = Depends(get_pipeline),
) -> Dict[str, Any]:
    """Render a fresh video, leaving lyrics, audio and art untouched."""
    if body.song is None or not body.song.id:
        raise _bad_request("Invalid song data.")
    difficulty = _parse_difficulty(body.difficulty)
    try:
        song = await pipeline.regenerate_video(body.song.id, body.video_style, difficulty)
    except SongNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Song not found.")
    except PipelineBusyError as exc:
        raise _conflict(exc)
    except PersistenceError as exc:
        raise _storage_failure(exc)
    return song.to_dict()
