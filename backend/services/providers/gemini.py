"""Gemini-family adapters (google-genai): text, Imagen stills, Veo video."""
from __future__ import annotations

import logging
from typing import Any, Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from google import genai
from google.genai import errors, types

from backend.services.providers.base import TextGenerator, VideoJob, VisualGenerator
from backend.services.providers.exceptions import ProviderError, ProviderUnavailable

logger = logging.getLogger("songsmith.providers.gemini")

_PROVIDER = "gemini"
_RETRYABLE_CODES = {408, 429, 500, 502, 503, 504}

DEFAULT_TEXT_MODEL = "gemini-2.5-flash"
DEFAULT_IMAGE_MODEL = "imagen-4.0-generate-001"
DEFAULT_VIDEO_MODEL = "veo-2.0-generate-001"


def _wrap_api_error(exc: errors.APIError) -> ProviderError:
    code = getattr(exc, "code", None) or 0
    message = getattr(exc, "message", None) or str(exc)
    return ProviderError(_PROVIDER, f"{code} {message}".strip(), retryable=code in _RETRYABLE_CODES)


def with_query_param(url: str, key: str, value: str) -> str:
    """Return ``url`` with ``key=value`` set in its query string."""
    parts = urlsplit(url)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k != key]
    query.append((key, value))
    return urlunsplit(parts._replace(query=urlencode(query)))


class _GeminiBase:
    def __init__(self, api_key: str, client: Optional[Any] = None):
        if not api_key and client is None:
            raise ProviderUnavailable(_PROVIDER, "API_KEY is not set")
        self._api_key = api_key
        self._client = client

    def _aio(self) -> Any:
        if self._client is None:
            self._client = genai.Client(api_key=self._api_key)
        return self._client.aio

    def name(self) -> str:
        return _PROVIDER


class GeminiTextProvider(_GeminiBase, TextGenerator):
    """Lyrics and metadata via ``generate_content``."""

    def __init__(self, api_key: str, model: str = DEFAULT_TEXT_MODEL, client: Optional[Any] = None):
        super().__init__(api_key, client)
        self._model = model

    async def generate_text(
        self, prompt: str, temperature: float = 1.0, json_output: bool = False,
    ) -> str:
        config = types.GenerateContentConfig(
            temperature=temperature,
            response_mime_type="application/json" if json_output else None,
        )
        try:
            response = await self._aio().models.generate_content(
                model=self._model, contents=prompt, config=config,
            )
        except errors.APIError as exc:
            raise _wrap_api_error(exc) from exc
        text = response.text
        if not text:
            raise ProviderError(_PROVIDER, "Text model returned an empty response.")
        return text.strip()


class GeminiVisualProvider(_GeminiBase, VisualGenerator):
    """Cover art via Imagen and music videos via Veo."""

    def __init__(
        self,
        api_key: str,
        image_model: str = DEFAULT_IMAGE_MODEL,
        video_model: str = DEFAULT_VIDEO_MODEL,
        client: Optional[Any] = None,
    ):
        super().__init__(api_key, client)
        self._image_model = image_model
        self._video_model = video_model

    async def generate_image(self, prompt: str, aspect_ratio: str = "1:1") -> bytes:
        try:
            response = await self._aio().models.generate_images(
                model=self._image_model,
                prompt=prompt,
                config=types.GenerateImagesConfig(number_of_images=1, aspect_ratio=aspect_ratio),
            )
        except errors.APIError as exc:
            raise _wrap_api_error(exc) from exc
        images = response.generated_images or []
        if not images or images[0].image is None or not images[0].image.image_bytes:
            raise ProviderError(_PROVIDER, "Image model returned no image.")
        return images[0].image.image_bytes

    async def submit_video(
        self,
        prompt: str,
        image_bytes: Optional[bytes] = None,
        image_mime_type: str = "image/png",
    ) -> VideoJob:
        image = types.Image(image_bytes=image_bytes, mime_type=image_mime_type) if image_bytes else None
        try:
            operation = await self._aio().models.generate_videos(
                model=self._video_model,
                prompt=prompt,
                image=image,
                config=types.GenerateVideosConfig(number_of_videos=1),
            )
        except errors.APIError as exc:
            raise _wrap_api_error(exc) from exc
        return self._to_job(operation)

    async def poll_video(self, job: VideoJob) -> VideoJob:
        try:
            operation = await self._aio().operations.get(job.handle)
        except errors.APIError as exc:
            raise _wrap_api_error(exc) from exc
        return self._to_job(operation)

    def download_url(self, video_uri: str) -> str:
        return with_query_param(video_uri, "key", self._api_key)

    @staticmethod
    def _to_job(operation: Any) -> VideoJob:
        job = VideoJob(job_id=getattr(operation, "name", "") or "", handle=operation)
        job.done = bool(getattr(operation, "done", False))
        if not job.done:
            return job
        error = getattr(operation, "error", None)
        if error:
            job.error = str(error.get("message") if isinstance(error, dict) else error)
            return job
        response = getattr(operation, "response", None)
        videos = getattr(response, "generated_videos", None) or []
        if videos and videos[0].video is not None:
            job.video_uri = videos[0].video.uri
        return job
