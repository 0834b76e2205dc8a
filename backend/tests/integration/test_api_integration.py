"""Integration tests for the SongSmith FastAPI backend.

Uses FastAPI TestClient to exercise every router end-to-end with real
HTTP requests through the ASGI stack.  External providers are replaced by
in-process fakes, and the song library lives in a temp directory.

Coverage targets:
  - All routers (songs, tasks, system)
  - HTTP status codes and response shape
  - Full pipeline: lyrics → audio → art → video, retry, video regeneration
  - Startup failures (missing credential, corrupt library)
  - WebSocket status stream
"""
from __future__ import annotations

import json
import time
from unittest.mock import Mock

import pytest
from fastapi.testclient import TestClient

from backend.main import create_app
from backend.services.providers.exceptions import ProviderError
from backend.services.shared.config import Config
from backend.services.songs.store import PersistenceError, SnapshotFile

TERMINAL = ("complete", "error")


# ─────────────────────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────────────────────


def _wait_until_idle(client: TestClient, song_id: str, timeout: float = 5.0) -> dict:
    """Poll until the song is terminal and its pipeline task has exited."""
    deadline = time.monotonic() + timeout
    while True:
        song = client.get(f"/api/songs/{song_id}").json()
        running = client.get(f"/api/tasks/{song_id}").json()["running"]
        if song["status"] in TERMINAL and not running:
            return song
        if time.monotonic() > deadline:
            pytest.fail(f"song {song_id} still {song['status']!r} after {timeout}s")
        time.sleep(0.02)


def _wait_for_status(client: TestClient, song_id: str, status: str, timeout: float = 5.0) -> dict:
    deadline = time.monotonic() + timeout
    while True:
        song = client.get(f"/api/songs/{song_id}").json()
        if song["status"] == status:
            return song
        if time.monotonic() > deadline:
            pytest.fail(f"song {song_id} never reached {status!r} (last {song['status']!r})")
        time.sleep(0.01)


def _generate(client: TestClient, prompt: str = "a song about rain", **extra) -> dict:
    resp = client.post("/api/generate", json={"prompt": prompt, **extra})
    assert resp.status_code == 201, resp.text
    return resp.json()


# ─────────────────────────────────────────────────────────────────────────────
# Shared fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def settings(sample_settings) -> Config:
    return Config(str(sample_settings))


@pytest.fixture
def client(settings, fake_providers, api_key) -> TestClient:
    """Synchronous TestClient wrapping a fresh SongSmith app."""
    app = create_app(settings, providers=fake_providers)
    with TestClient(app) as c:
        yield c


# ═════════════════════════════════════════════════════════════════════════════
# Generation  /api/generate
# ═════════════════════════════════════════════════════════════════════════════


class TestGenerate:
    def test_returns_initial_record(self, client):
        song = _generate(client)
        assert song["status"] == "writing lyrics"
        assert song["statusMessage"] == "Initializing..."
        assert song["prompt"] == "a song about rain"
        assert song["id"]
        assert song["createdAt"].endswith("Z")

    def test_runs_to_completion(self, client):
        song = _wait_until_idle(client, _generate(client)["id"])
        assert song["status"] == "complete"
        assert song["statusMessage"] == "Your masterpiece is ready!"
        assert song["title"] == "Neon Rain"
        assert song["lyrics"]
        assert song["audioUrl"] == "https://audio.example/track.mp3"
        assert song["coverArtUrl"].startswith("data:image/png;base64,")
        assert song["videoUrl"].endswith("?key=test-key")
        assert song["thumbnailUrl"] == song["coverArtUrl"]
        assert "failedStep" not in song

    def test_applies_options(self, client):
        created = _generate(
            client,
            customLyrics="my own words",
            videoStyle="Claymation",
            difficulty="hard",
            advancedOptions={"vocalGender": "female", "weirdness": 0, "styleInfluence": 90},
        )
        song = _wait_until_idle(client, created["id"])
        assert song["lyrics"] == "my own words"
        assert song["videoStyle"] == "Claymation"
        assert song["difficulty"] == "Hard"
        assert song["vocalGender"] == "female"
        assert song["weirdness"] == 0

    def test_missing_prompt_is_400(self, client):
        resp = client.post("/api/generate", json={})
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Prompt is required."

    def test_blank_prompt_is_400(self, client):
        assert client.post("/api/generate", json={"prompt": "   "}).status_code == 400

    def test_malformed_body_is_400(self, client):
        resp = client.post("/api/generate", content=b"not json", headers={"Content-Type": "application/json"})
        assert resp.status_code == 400

    def test_unknown_difficulty_is_400(self, client):
        assert client.post("/api/generate", json={"prompt": "x", "difficulty": "Extreme"}).status_code == 400

    def test_provider_failure_recorded(self, client, fake_providers):
        fake_providers.text.fail_next(ProviderError("gemini", "rate limited"))
        song = _wait_until_idle(client, _generate(client)["id"])
        assert song["status"] == "error"
        assert song["failedStep"] == "writing lyrics"
        assert song["statusMessage"] == "rate limited"


# ═════════════════════════════════════════════════════════════════════════════
# Library  /api/songs
# ═════════════════════════════════════════════════════════════════════════════


class TestLibrary:
    def test_empty_list(self, client):
        resp = client.get("/api/songs")
        assert resp.status_code == 200
        assert resp.json() == []

    def test_list_newest_first(self, client):
        first = _generate(client, "first")
        _wait_until_idle(client, first["id"])
        time.sleep(0.01)
        second = _generate(client, "second")
        _wait_until_idle(client, second["id"])
        ids = [s["id"] for s in client.get("/api/songs").json()]
        assert ids == [second["id"], first["id"]]

    def test_get_unknown_is_404(self, client):
        resp = client.get("/api/songs/does-not-exist")
        assert resp.status_code == 404
        assert resp.json()["detail"] == "Song not found."

    def test_get_is_idempotent(self, client):
        song_id = _generate(client)["id"]
        _wait_until_idle(client, song_id)
        assert client.get(f"/api/songs/{song_id}").json() == client.get(f"/api/songs/{song_id}").json()

    def test_library_survives_restart(self, settings, fake_providers, api_key):
        with TestClient(create_app(settings, providers=fake_providers)) as c:
            song = _wait_until_idle(c, _generate(c)["id"])
        with TestClient(create_app(settings, providers=fake_providers)) as c:
            assert c.get(f"/api/songs/{song['id']}").json() == song


# ═════════════════════════════════════════════════════════════════════════════
# Retry  /api/retry
# ═════════════════════════════════════════════════════════════════════════════


class TestRetry:
    def test_retry_resumes_and_completes(self, client, fake_providers):
        fake_providers.audio.fail_next(ProviderError("suno", "service down"))
        failed = _wait_until_idle(client, _generate(client)["id"])
        assert failed["failedStep"] == "composing music"

        resp = client.post("/api/retry", json={"song": failed})
        assert resp.status_code == 200
        assert resp.json()["status"] == "composing music"
        assert resp.json()["statusMessage"] == "Retrying..."

        song = _wait_until_idle(client, failed["id"])
        assert song["status"] == "complete"
        assert song["lyrics"] == failed["lyrics"]
        assert fake_providers.text.calls.count("lyrics") == 1

    def test_missing_failed_step_is_400(self, client):
        resp = client.post("/api/retry", json={"song": {"id": "abc"}})
        assert resp.status_code == 400
        assert resp.json()["detail"] == "Invalid song data for retry."

    def test_missing_song_is_400(self, client):
        assert client.post("/api/retry", json={}).status_code == 400

    def test_unknown_song_is_404(self, client):
        resp = client.post("/api/retry", json={"song": {"id": "nope", "failedStep": "writing lyrics"}})
        assert resp.status_code == 404
        assert resp.json()["detail"] == "Song not found to retry."

    def test_retry_completed_song_is_400(self, client):
        song = _wait_until_idle(client, _generate(client)["id"])
        resp = client.post("/api/retry", json={"song": {"id": song["id"], "failedStep": "writing lyrics"}})
        assert resp.status_code == 400

    def test_mismatched_step_is_400(self, client, fake_providers):
        fake_providers.audio.fail_next(ProviderError("suno", "down"))
        failed = _wait_until_idle(client, _generate(client)["id"])
        resp = client.post("/api/retry", json={"song": {"id": failed["id"], "failedStep": "creating cover art"}})
        assert resp.status_code == 400


# ═════════════════════════════════════════════════════════════════════════════
# Video regeneration  /api/regenerate-video
# ═════════════════════════════════════════════════════════════════════════════


class TestRegenerateVideo:
    def test_regenerates_with_new_style(self, client, fake_providers):
        song = _wait_until_idle(client, _generate(client)["id"])
        fake_providers.visual.video_uri = "https://video.example/files/take2.mp4"

        resp = client.post("/api/regenerate-video", json={"song": song, "videoStyle": "Anime"})
        assert resp.status_code == 200
        body = resp.json()
        assert body["videoStyle"] == "Anime"
        assert "videoUrl" not in body
        assert "thumbnailUrl" not in body

        final = _wait_until_idle(client, song["id"])
        assert final["status"] == "complete"
        assert final["videoUrl"] == "https://video.example/files/take2.mp4?key=test-key"
        for key in ("lyrics", "audioUrl", "coverArtUrl"):
            assert final[key] == song[key]

    def test_invalid_body_is_400(self, client):
        assert client.post("/api/regenerate-video", json={"videoStyle": "Anime"}).status_code == 400

    def test_unknown_song_is_404(self, client):
        resp = client.post("/api/regenerate-video", json={"song": {"id": "nope"}, "videoStyle": "Anime"})
        assert resp.status_code == 404


# ═════════════════════════════════════════════════════════════════════════════
# Edits  PATCH /api/songs/{id}
# ═════════════════════════════════════════════════════════════════════════════


class TestUpdateSong:
    def test_edit_completed_song(self, client):
        song = _wait_until_idle(client, _generate(client)["id"])
        resp = client.patch(f"/api/songs/{song['id']}", json={"title": "Renamed", "keySignature": "D major"})
        assert resp.status_code == 200
        assert resp.json()["title"] == "Renamed"
        assert client.get(f"/api/songs/{song['id']}").json()["keySignature"] == "D major"

    def test_empty_edit_is_400(self, client):
        song = _wait_until_idle(client, _generate(client)["id"])
        assert client.patch(f"/api/songs/{song['id']}", json={}).status_code == 400

    def test_unknown_song_is_404(self, client):
        assert client.patch("/api/songs/nope", json={"title": "x"}).status_code == 404


class TestStorageFailure:
    """Library writes fail: every mutating endpoint answers 500."""

    @pytest.fixture
    def break_disk(self, monkeypatch):
        def _break():
            monkeypatch.setattr(SnapshotFile, "save", Mock(side_effect=PersistenceError("disk full")))
        return _break

    def test_generate_is_500(self, client, break_disk):
        break_disk()
        resp = client.post("/api/generate", json={"prompt": "rain"})
        assert resp.status_code == 500
        assert resp.json()["detail"] == "Failed to save song library."

    def test_edit_is_500(self, client, break_disk):
        song = _wait_until_idle(client, _generate(client)["id"])
        break_disk()
        resp = client.patch(f"/api/songs/{song['id']}", json={"title": "Renamed"})
        assert resp.status_code == 500
        assert resp.json()["detail"] == "Failed to save song library."

    def test_retry_is_500(self, client, fake_providers, break_disk):
        fake_providers.audio.fail_next(ProviderError("suno", "down"))
        failed = _wait_until_idle(client, _generate(client)["id"])
        break_disk()
        resp = client.post("/api/retry", json={"song": failed})
        assert resp.status_code == 500
        assert resp.json()["detail"] == "Failed to save song library."
        assert client.get(f"/api/tasks/{failed['id']}").json()["running"] is False

    def test_regenerate_video_is_500(self, client, break_disk):
        song = _wait_until_idle(client, _generate(client)["id"])
        break_disk()
        resp = client.post("/api/regenerate-video", json={"song": song, "videoStyle": "Anime"})
        assert resp.status_code == 500
        assert resp.json()["detail"] == "Failed to save song library."


class TestBusySong:
    """A song stuck rendering keeps its pipeline task alive."""

    @pytest.fixture
    def rendering(self, client, fake_providers) -> dict:
        fake_providers.visual.polls_needed = 10 ** 9
        song = _generate(client)
        return _wait_for_status(client, song["id"], "rendering video")

    def test_edit_while_generating_is_409(self, client, rendering):
        resp = client.patch(f"/api/songs/{rendering['id']}", json={"title": "Too soon"})
        assert resp.status_code == 409

    def test_regenerate_while_generating_is_409(self, client, rendering):
        resp = client.post("/api/regenerate-video", json={"song": rendering, "videoStyle": "Anime"})
        assert resp.status_code == 409

    def test_retry_while_generating_is_409(self, client, rendering):
        resp = client.post(
            "/api/retry", json={"song": {"id": rendering["id"], "failedStep": "directing video"}},
        )
        assert resp.status_code == 409

    def test_task_listed(self, client, rendering):
        body = client.get("/api/tasks/").json()
        assert body["total"] == 1
        task = body["tasks"][0]
        assert task["song_id"] == rendering["id"]
        assert task["task_type"] == "pipeline"
        assert task["status"] == "rendering video"

    def test_task_status_running(self, client, rendering):
        body = client.get(f"/api/tasks/{rendering['id']}").json()
        assert body["running"] is True
        assert body["status"] == "rendering video"


# ═════════════════════════════════════════════════════════════════════════════
# Tasks router  /api/tasks
# ═════════════════════════════════════════════════════════════════════════════


class TestTasksRouter:
    def test_no_active_tasks(self, client):
        assert client.get("/api/tasks/").json() == {"tasks": [], "total": 0}

    def test_unknown_song_is_404(self, client):
        assert client.get("/api/tasks/nope").status_code == 404

    def test_websocket_reports_final_state(self, client):
        song = _wait_until_idle(client, _generate(client)["id"])
        with client.websocket_connect(f"/api/tasks/ws/{song['id']}") as ws:
            event = ws.receive_json()
        assert event["status"] == "complete"
        assert event["running"] is False

    def test_websocket_unknown_song(self, client):
        with client.websocket_connect("/api/tasks/ws/nope") as ws:
            event = ws.receive_json()
        assert event["status"] == "error"


# ═════════════════════════════════════════════════════════════════════════════
# System router  /api/system
# ═════════════════════════════════════════════════════════════════════════════


class TestSystemRouter:
    def test_health_check(self, client):
        body = client.get("/api/system/health").json()
        assert body["status"] == "ok"
        assert body["version"] == "1.0.0"
        assert body["songs"] == 0
        assert body["active_pipelines"] == 0

    def test_providers(self, client):
        body = client.get("/api/system/providers").json()
        assert body["providers"]["text"]["provider"] == "fake-text"
        assert body["providers"]["audio"]["provider"] == "fake-audio"
        assert body["providers"]["visual"]["provider"] == "fake-visual"


# ═════════════════════════════════════════════════════════════════════════════
# Startup
# ═════════════════════════════════════════════════════════════════════════════


class TestStartup:
    def test_missing_api_key_fails_startup(self, settings, fake_providers, monkeypatch):
        monkeypatch.delenv("API_KEY", raising=False)
        with pytest.raises(Exception):
            with TestClient(create_app(settings, providers=fake_providers)):
                pass

    def test_corrupt_library_fails_startup(self, settings, fake_providers, api_key):
        db_path = settings.get_path("storage.db_path")
        db_path.parent.mkdir(parents=True, exist_ok=True)
        db_path.write_text("{broken")
        with pytest.raises(Exception):
            with TestClient(create_app(settings, providers=fake_providers)):
                pass

    def test_interrupted_song_marked_failed(self, settings, fake_providers, api_key):
        db_path = settings.get_path("storage.db_path")
        db_path.parent.mkdir(parents=True, exist_ok=True)
        db_path.write_text(json.dumps({
            "s1": {
                "id": "s1",
                "prompt": "half done",
                "status": "composing music",
                "lyrics": "la la",
                "createdAt": "2024-01-01T00:00:00.000Z",
            },
        }))
        with TestClient(create_app(settings, providers=fake_providers)) as c:
            song = c.get("/api/songs/s1").json()
            assert song["status"] == "error"
            assert song["failedStep"] == "composing music"

            resp = c.post("/api/retry", json={"song": song})
            assert resp.status_code == 200
            assert _wait_until_idle(c, "s1")["status"] == "complete"
