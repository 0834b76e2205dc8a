"""Resilient provider wrappers.

Each wrapper implements the same capability interface as the adapter it
wraps and routes every call through that provider's circuit breaker and the
shared retry policy, so the pipeline stays unaware of provider mechanics.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional

from backend.services.providers.base import AudioGenerator, TextGenerator, VideoJob, VisualGenerator
from backend.services.shared.resilience import CircuitBreaker, RetryPolicy


@dataclass
class ProviderBundle:
    """The three capabilities the pipeline needs."""

    text: TextGenerator
    audio: AudioGenerator
    visual: VisualGenerator

    def describe(self) -> Dict[str, object]:
        out: Dict[str, object] = {}
        for role in ("text", "audio", "visual"):
            adapter = getattr(self, role)
            breaker = getattr(adapter, "breaker", None)
            out[role] = {
                "provider": adapter.name(),
                "circuit": breaker.state if breaker is not None else None,
            }
        return out


class _Guarded:
    def __init__(self, inner, policy: RetryPolicy, breaker: Optional[CircuitBreaker] = None):
        self._inner = inner
        self._policy = policy
        self.breaker = breaker or CircuitBreaker(inner.name())

    def name(self) -> str:
        return self._inner.name()


class GuardedText(_Guarded, TextGenerator):
    async def generate_text(self, prompt: str, temperature: float = 1.0, json_output: bool = False) -> str:
        return await self.breaker.call(
            self._policy, f"{self.name()}.generate_text",
            lambda: self._inner.generate_text(prompt, temperature=temperature, json_output=json_output),
        )


class GuardedAudio(_Guarded, AudioGenerator):
    """Breaker only; the adapter retries each HTTP request itself."""

    async def generate_audio(self, lyrics: str, prompt: str) -> str:
        return await self.breaker.call(
            None, f"{self.name()}.generate_audio",
            lambda: self._inner.generate_audio(lyrics, prompt),
        )


class GuardedVisual(_Guarded, VisualGenerator):
    async def generate_image(self, prompt: str, aspect_ratio: str = "1:1") -> bytes:
        return await self.breaker.call(
            self._policy, f"{self.name()}.generate_image",
            lambda: self._inner.generate_image(prompt, aspect_ratio=aspect_ratio),
        )

    async def submit_video(
        self, prompt: str, image_bytes: Optional[bytes] = None, image_mime_type: str = "image/png",
    ) -> VideoJob:
        return await self.breaker.call(
            self._policy, f"{self.name()}.submit_video",
            lambda: self._inner.submit_video(prompt, image_bytes=image_bytes, image_mime_type=image_mime_type),
        )

    async def poll_video(self, job: VideoJob) -> VideoJob:
        return await self.breaker.call(
            self._policy, f"{self.name()}.poll_video",
            lambda: self._inner.poll_video(job),
        )

    def download_url(self, video_uri: str) -> str:
        return self._inner.download_url(video_uri)


def guard(bundle: ProviderBundle, policy: RetryPolicy, failure_threshold: int = 5,
          reset_seconds: float = 60.0) -> ProviderBundle:
    """Wrap every adapter in ``bundle`` with its own breaker."""

    def _breaker(adapter) -> CircuitBreaker:
        return CircuitBreaker(adapter.name(), failure_threshold=failure_threshold, reset_seconds=reset_seconds)

    return ProviderBundle(
        text=GuardedText(bundle.text, policy, _breaker(bundle.text)),
        audio=GuardedAudio(bundle.audio, policy, _breaker(bundle.audio)),
        visual=GuardedVisual(bundle.visual, policy, _breaker(bundle.visual)),
    )
