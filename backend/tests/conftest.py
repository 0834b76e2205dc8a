"""Shared test fixtures for SongSmith."""
import json
import shutil
import tempfile
from pathlib import Path
from typing import Generator, List, Optional

import pytest
import yaml

from backend.services.providers.base import AudioGenerator, TextGenerator, VideoJob, VisualGenerator
from backend.services.providers.gateway import ProviderBundle

FAKE_PNG = b"\x89PNG\r\n\x1a\nfake-cover-art"
FAKE_AUDIO_URL = "https://audio.example/track.mp3"
FAKE_VIDEO_URI = "https://video.example/files/clip.mp4"
FAKE_LYRICS = "[Verse]\nHello world\n[Chorus]\nLa la la"
FAKE_METADATA = {
    "title": "Neon Rain",
    "genre": "synthwave",
    "tempo": "118 BPM",
    "keySignature": "A minor",
    "tags": ["retro", "night", "city"],
}


@pytest.fixture(scope="session")
def project_root() -> Path:
    return Path(__file__).parent.parent.parent


@pytest.fixture
def tmp_dir() -> Generator[Path, None, None]:
    d = Path(tempfile.mkdtemp())
    yield d
    shutil.rmtree(d, ignore_errors=True)


@pytest.fixture
def sample_settings(tmp_dir: Path) -> Path:
    """Write a minimal settings.yaml to a temp dir and return its path."""
    settings = {
        "app": {"title": "SongSmith", "version": "1.0.0", "cors_origins": ["http://localhost:5173"]},
        "storage": {"db_path": str(tmp_dir / "data" / "db.json")},
        "logging": {"level": "DEBUG", "file": None},
        "providers": {
            "gemini": {
                "api_key_env": "API_KEY",
                "text_model": "gemini-2.5-flash",
                "image_model": "imagen-4.0-generate-001",
                "video_model": "veo-2.0-generate-001",
            },
            "suno": {
                "api_key_env": "SUNO_API_KEY",
                "base_url_env": "SUNO_API_URL",
                "base_url": "http://localhost:8787/api",
                "poll_interval_seconds": 0,
                "timeout_seconds": 5,
                "placeholder_url": "https://cdn.example/placeholder.mp3",
                "placeholder_delay_seconds": 0,
            },
        },
        "resilience": {
            "max_attempts": 2,
            "backoff_multiplier": 0,
            "backoff_min_seconds": 0,
            "backoff_max_seconds": 0,
            "breaker_failure_threshold": 5,
            "breaker_reset_seconds": 60,
        },
        "pipeline": {
            "defaults": {"video_style": "Cinematic", "difficulty": "Medium"},
            "video": {"poll_interval_seconds": 0, "timeout_seconds": 5},
        },
    }
    cfg_path = tmp_dir / "settings.yaml"
    cfg_path.write_text(yaml.dump(settings))
    return cfg_path


# ─────────────────────────────────────────────────────────────────────────────
# Fake providers
# ─────────────────────────────────────────────────────────────────────────────


class _Scripted:
    """Raises the queued exceptions in order before succeeding."""

    def __init__(self) -> None:
        self.failures: List[Exception] = []
        self.calls: List[str] = []

    def fail_next(self, *excs: Exception) -> None:
        self.failures.extend(excs)

    def _maybe_fail(self) -> None:
        if self.failures:
            raise self.failures.pop(0)


class FakeText(_Scripted, TextGenerator):
    def __init__(self, metadata: Optional[dict] = None, lyrics: str = FAKE_LYRICS):
        super().__init__()
        self.metadata = FAKE_METADATA if metadata is None else metadata
        self.lyrics = lyrics
        self.temperatures: List[float] = []

    def name(self) -> str:
        return "fake-text"

    async def generate_text(self, prompt: str, temperature: float = 1.0, json_output: bool = False) -> str:
        self.calls.append("metadata" if json_output else "lyrics")
        self.temperatures.append(temperature)
        if json_output:
            return json.dumps(self.metadata)
        self._maybe_fail()
        return self.lyrics


class FakeAudio(_Scripted, AudioGenerator):
    def name(self) -> str:
        return "fake-audio"

    async def generate_audio(self, lyrics: str, prompt: str) -> str:
        self.calls.append("audio")
        self._maybe_fail()
        return FAKE_AUDIO_URL


class FakeVisual(_Scripted, VisualGenerator):
    """Video jobs finish after ``polls_needed`` polls."""

    def __init__(self, polls_needed: int = 1, video_uri: Optional[str] = FAKE_VIDEO_URI,
                 job_error: Optional[str] = None):
        super().__init__()
        self.polls_needed = polls_needed
        self.video_uri = video_uri
        self.job_error = job_error
        self.video_failures: List[Exception] = []
        self.seed_images: List[Optional[bytes]] = []
        self.polls = 0

    def name(self) -> str:
        return "fake-visual"

    async def generate_image(self, prompt: str, aspect_ratio: str = "1:1") -> bytes:
        self.calls.append("art")
        self._maybe_fail()
        return FAKE_PNG

    async def submit_video(self, prompt: str, image_bytes: Optional[bytes] = None,
                           image_mime_type: str = "image/png") -> VideoJob:
        self.calls.append("video")
        if self.video_failures:
            raise self.video_failures.pop(0)
        self.seed_images.append(image_bytes)
        self.polls = 0
        return VideoJob(job_id="operations/fake-1")

    async def poll_video(self, job: VideoJob) -> VideoJob:
        self.polls += 1
        if self.polls < self.polls_needed:
            return VideoJob(job_id=job.job_id)
        return VideoJob(job_id=job.job_id, done=True, video_uri=self.video_uri, error=self.job_error)

    def download_url(self, video_uri: str) -> str:
        return f"{video_uri}?key=test-key"


@pytest.fixture
def fake_providers() -> ProviderBundle:
    return ProviderBundle(text=FakeText(), audio=FakeAudio(), visual=FakeVisual())


@pytest.fixture
def api_key(monkeypatch) -> str:
    monkeypatch.setenv("API_KEY", "test-key")
    return "test-key"
