"""Generation status state machine.

Ordered stages::

    GENERATING_LYRICS → GENERATING_AUDIO → GENERATING_ART
        → GENERATING_VIDEO → POLLING_VIDEO → COMPLETE

ERROR is reachable from every non-terminal stage and remembers the stage
that was active as ``failed_step``.  Leaving ERROR requires a resume point
equal to that ``failed_step``.  COMPLETE is only left through a video
regeneration, which re-enters GENERATING_VIDEO directly.

All helpers mutate the Song in place; persisting is the caller's job.
"""
from __future__ import annotations

from typing import Optional, Tuple

from backend.services.providers.exceptions import ProviderError
from backend.services.songs.types import GenerationStatus, Song

STAGES: Tuple[GenerationStatus, ...] = (
    GenerationStatus.GENERATING_LYRICS,
    GenerationStatus.GENERATING_AUDIO,
    GenerationStatus.GENERATING_ART,
    GenerationStatus.GENERATING_VIDEO,
    GenerationStatus.POLLING_VIDEO,
    GenerationStatus.COMPLETE,
)
TERMINAL = frozenset({GenerationStatus.COMPLETE, GenerationStatus.ERROR})
INITIAL = GenerationStatus.GENERATING_LYRICS

DEFAULT_ERROR_MESSAGE = "An unknown error occurred during generation."


class InvalidTransitionError(ValueError):
    """A requested status change is not allowed from the current state."""


def is_terminal(status: GenerationStatus) -> bool:
    return status in TERMINAL


def parse_status(raw: object) -> Optional[GenerationStatus]:
    """Return the GenerationStatus for ``raw`` or None if it is not one."""
    if isinstance(raw, GenerationStatus):
        return raw
    try:
        return GenerationStatus(raw)
    except ValueError:
        return None


def enter(song: Song, status: GenerationStatus, message: str) -> None:
    """Move ``song`` into a non-error stage."""
    if status is GenerationStatus.ERROR:
        raise InvalidTransitionError("Use fail() to enter the error state")
    if song.status is GenerationStatus.ERROR:
        raise InvalidTransitionError(
            f"Song {song.id} is in error; it must be resumed before advancing"
        )
    song.status = status
    song.status_message = message
    song.failed_step = None


def error_text(exc: BaseException) -> Optional[str]:
    """The description shown to users for ``exc``; provider errors drop their ``[provider]`` tag."""
    if isinstance(exc, ProviderError):
        return exc.message or None
    return str(exc) or None


def fail(song: Song, message: Optional[str], failed_step: Optional[GenerationStatus] = None) -> None:
    """Move ``song`` into ERROR.

    ``failed_step`` defaults to the stage active right now.  A song that is
    already in error keeps its original failed step.
    """
    if song.status is GenerationStatus.ERROR:
        step = failed_step or song.failed_step or INITIAL
    else:
        step = failed_step or song.status
    if step in TERMINAL:
        step = INITIAL
    song.failed_step = step
    song.status = GenerationStatus.ERROR
    song.status_message = message or DEFAULT_ERROR_MESSAGE


def resume_point(song: Song, requested: object) -> GenerationStatus:
    """Validate a retry request and return the stage to resume at.

    Raises:
        InvalidTransitionError: If the song is not in error or ``requested``
            does not match the recorded failed step.
    """
    if song.status is not GenerationStatus.ERROR:
        raise InvalidTransitionError(f"Song {song.id} has no recorded failure to retry.")
    expected = song.failed_step or INITIAL
    if parse_status(requested) is not expected:
        raise InvalidTransitionError(
            f"Retry must resume at {expected.value!r}, got {requested!r}."
        )
    return expected


def resume(song: Song, step: GenerationStatus, message: str = "Retrying...") -> None:
    """Leave ERROR and re-enter ``step``."""
    song.status = step
    song.status_message = message
    song.failed_step = None


def reenter_video(song: Song, message: str) -> None:
    """Out-of-band transition used by video regeneration, from any state."""
    song.status = GenerationStatus.GENERATING_VIDEO
    song.status_message = message
    song.failed_step = None


def interrupt(song: Song, message: str) -> bool:
    """Turn a record left mid-pipeline by a dead process into a retryable error.

    Returns True if the song was changed.
    """
    if is_terminal(song.status):
        return False
    step = song.status
    if step is GenerationStatus.POLLING_VIDEO:
        step = GenerationStatus.GENERATING_VIDEO
    fail(song, message, failed_step=step)
    return True
