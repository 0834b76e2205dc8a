"""
Provider factory: builds the adapter bundle from configuration.
"""
from __future__ import annotations

import logging

from backend.services.providers.gateway import ProviderBundle, guard
from backend.services.providers.gemini import GeminiTextProvider, GeminiVisualProvider
from backend.services.providers.suno import PLACEHOLDER_AUDIO_URL, PlaceholderAudioProvider, SunoAudioProvider
from backend.services.shared.config import Config
from backend.services.shared.resilience import RetryPolicy

logger = logging.getLogger("songsmith.providers.factory")


def build_providers(config: Config) -> ProviderBundle:
    """Create guarded text, audio and visual providers.

    Raises:
        ConfigurationError: If the Gemini credential is missing.
    """
    policy = RetryPolicy.from_config(config)
    gemini_key = config.require_env(config.get("providers.gemini.api_key_env", "API_KEY"))
    text = GeminiTextProvider(
        gemini_key, model=config.get("providers.gemini.text_model", "gemini-2.5-flash"),
    )
    visual = GeminiVisualProvider(
        gemini_key,
        image_model=config.get("providers.gemini.image_model", "imagen-4.0-generate-001"),
        video_model=config.get("providers.gemini.video_model", "veo-2.0-generate-001"),
    )

    suno_key_env = config.get("providers.suno.api_key_env", "SUNO_API_KEY")
    suno_key = config.get_env(suno_key_env)
    if suno_key:
        base_url = config.get_env(
            config.get("providers.suno.base_url_env", "SUNO_API_URL"),
            config.get("providers.suno.base_url"),
        )
        audio = SunoAudioProvider(
            suno_key,
            base_url=base_url,
            request_timeout=float(config.get("providers.suno.request_timeout_seconds", 30)),
            poll_interval=float(config.get("providers.suno.poll_interval_seconds", 5)),
            timeout=float(config.get("providers.suno.timeout_seconds", 600)),
            retry_policy=policy,
        )
    else:
        logger.warning("%s environment variable not set. Audio generation will use a placeholder.", suno_key_env)
        audio = PlaceholderAudioProvider(
            url=config.get("providers.suno.placeholder_url", PLACEHOLDER_AUDIO_URL),
            delay=float(config.get("providers.suno.placeholder_delay_seconds", 0)),
        )

    bundle = ProviderBundle(text=text, audio=audio, visual=visual)
    return guard(
        bundle,
        policy,
        failure_threshold=int(config.get("resilience.breaker_failure_threshold", 5)),
        reset_seconds=float(config.get("resilience.breaker_reset_seconds", 60)),
    )
