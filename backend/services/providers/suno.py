"""Suno-style music adapters.

``SunoAudioProvider`` speaks a submit-then-poll HTTP protocol:

    POST {base_url}/generate-audio        {"lyrics", "prompt"} → {"generationId"}
    GET  {base_url}/audio-status/{id}     → {"status": "generating" | "complete" | "error",
                                             "url"?, "message"?}

Each HTTP request is retried on its own under the adapter's ``RetryPolicy``;
a failed poll never resubmits the job.

``PlaceholderAudioProvider`` stands in when no SUNO_API_KEY is configured
and returns a fixed track so the rest of the pipeline can still run.
"""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx

from backend.services.providers.base import AudioGenerator
from backend.services.providers.exceptions import ProviderError, ProviderTimeout
from backend.services.shared.resilience import RetryPolicy

logger = logging.getLogger("songsmith.providers.suno")

_PROVIDER = "suno"
PLACEHOLDER_AUDIO_URL = "https://cdn.pixabay.com/audio/2024/02/26/audio_4088805a3w.mp3"


def _check(resp: httpx.Response, what: str) -> Dict[str, Any]:
    if resp.status_code == 429 or resp.status_code >= 500:
        raise ProviderError(_PROVIDER, f"{what} failed {resp.status_code}: {resp.text[:200]}", retryable=True)
    if resp.status_code >= 400:
        raise ProviderError(_PROVIDER, f"{what} failed {resp.status_code}: {resp.text[:200]}")
    try:
        data = resp.json()
    except ValueError as exc:
        raise ProviderError(_PROVIDER, f"{what} returned invalid JSON", retryable=True) from exc
    if not isinstance(data, dict):
        raise ProviderError(_PROVIDER, f"{what} returned unexpected JSON type {type(data).__name__}")
    return data


class SunoAudioProvider(AudioGenerator):
    """HTTP submit-then-poll music generation."""

    def __init__(
        self,
        api_key: str,
        base_url: str,
        request_timeout: float = 30.0,
        poll_interval: float = 5.0,
        timeout: float = 600.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self._api_key = api_key
        self._base = base_url.rstrip("/")
        self._request_timeout = request_timeout
        self._poll_interval = poll_interval
        self._timeout = timeout
        self._transport = transport
        self._retry = retry_policy or RetryPolicy(max_attempts=1)

    def name(self) -> str:
        return _PROVIDER

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._api_key}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    async def generate_audio(self, lyrics: str, prompt: str) -> str:
        async with httpx.AsyncClient(
            timeout=self._request_timeout, headers=self._headers(), transport=self._transport,
        ) as client:
            generation_id = await self._submit(client, lyrics, prompt)
            logger.info("Audio job started with ID: %s", generation_id)
            return await self._wait(client, generation_id)

    async def _request(self, what: str, send: Callable[[], Awaitable[httpx.Response]]) -> Dict[str, Any]:
        async def attempt() -> Dict[str, Any]:
            return _check(await send(), what)

        return await self._retry.run(f"{_PROVIDER}: {what}", attempt)

    async def _submit(self, client: httpx.AsyncClient, lyrics: str, prompt: str) -> str:
        data = await self._request(
            "Audio submit",
            lambda: client.post(f"{self._base}/generate-audio", json={"lyrics": lyrics, "prompt": prompt}),
        )
        generation_id = data.get("generationId")
        if not generation_id:
            raise ProviderError(_PROVIDER, f"Audio submit response missing generationId: {data}")
        return str(generation_id)

    async def _wait(self, client: httpx.AsyncClient, generation_id: str) -> str:
        deadline = time.monotonic() + self._timeout
        while True:
            if time.monotonic() >= deadline:
                raise ProviderTimeout(_PROVIDER, self._timeout, what=f"audio job {generation_id}")
            await asyncio.sleep(self._poll_interval)
            logger.debug("Polling audio status for job %s", generation_id)
            data = await self._request(
                f"Polling audio job {generation_id}",
                lambda: client.get(f"{self._base}/audio-status/{generation_id}"),
            )
            status = str(data.get("status", "")).lower()
            if status == "complete":
                url = data.get("url")
                if not url:
                    raise ProviderError(_PROVIDER, f"Audio job {generation_id} completed without a URL.")
                logger.info("Audio job %s complete.", generation_id)
                return str(url)
            if status == "error":
                raise ProviderError(_PROVIDER, data.get("message") or "Audio generation failed.")


class PlaceholderAudioProvider(AudioGenerator):
    """Deterministic stand-in used when audio credentials are absent."""

    def __init__(self, url: str = PLACEHOLDER_AUDIO_URL, delay: float = 0.0):
        self._url = url
        self._delay = delay

    def name(self) -> str:
        return "placeholder"

    async def generate_audio(self, lyrics: str, prompt: str) -> str:
        logger.info("Using placeholder audio for prompt %r", prompt[:60])
        if self._delay > 0:
            await asyncio.sleep(self._delay)
        return self._url
