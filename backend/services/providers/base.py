"""Abstract provider interfaces — the three generation capabilities.

Each adapter wraps one external service behind a uniform async interface so
the pipeline never sees provider request/response formats.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional


@dataclass
class VideoJob:
    """Handle for a submitted video generation job.

    ``handle`` is opaque to everyone but the adapter that issued it.
    """

    job_id: str
    done: bool = False
    video_uri: Optional[str] = None
    error: Optional[str] = None
    handle: object = None


class TextGenerator(ABC):
    """Free-text generation (lyrics, metadata)."""

    @abstractmethod
    def name(self) -> str:
        """Short identifier, e.g. "gemini"."""

    @abstractmethod
    async def generate_text(
        self, prompt: str, temperature: float = 1.0, json_output: bool = False,
    ) -> str:
        """Return the model's text response for ``prompt``.

        Args:
            prompt: The full instruction.
            temperature: Sampling temperature.
            json_output: Ask the provider for a JSON-only response.
        """


class AudioGenerator(ABC):
    """Music generation from lyrics plus a style prompt."""

    @abstractmethod
    def name(self) -> str:
        """Short identifier, e.g. "suno"."""

    @abstractmethod
    async def generate_audio(self, lyrics: str, prompt: str) -> str:
        """Generate a track and return a URL to the audio file.

        Providers with a submit-then-poll protocol poll internally.
        """


class VisualGenerator(ABC):
    """Image and video generation."""

    @abstractmethod
    def name(self) -> str:
        """Short identifier, e.g. "gemini"."""

    @abstractmethod
    async def generate_image(self, prompt: str, aspect_ratio: str = "1:1") -> bytes:
        """Return PNG bytes for a single generated image."""

    @abstractmethod
    async def submit_video(
        self,
        prompt: str,
        image_bytes: Optional[bytes] = None,
        image_mime_type: str = "image/png",
    ) -> VideoJob:
        """Start a video job, optionally seeded from an image."""

    @abstractmethod
    async def poll_video(self, job: VideoJob) -> VideoJob:
        """Refresh a job's state.  ``done`` is True once it has finished."""

    @abstractmethod
    def download_url(self, video_uri: str) -> str:
        """Turn a provider video URI into a URL a client can fetch."""
