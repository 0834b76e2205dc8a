"""Synchronous HTTP client for the SongSmith API."""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import requests

logger = logging.getLogger("songsmith.client.api")

_STATUS_MESSAGES = {
    400: "Bad Request: The server could not understand the request due to invalid syntax.",
    401: "Unauthorized: Authentication is required and has failed or has not yet been provided. "
         "Please check your API key.",
    403: "Forbidden: You do not have permission to access this resource.",
    404: "Not Found: The requested resource could not be found on the server.",
    409: "Conflict: The song is still being generated.",
    500: "Internal Server Error: Something went wrong on our end. Please try again later.",
    503: "Service Unavailable: The server is currently unable to handle the request. Please try again later.",
}


class ApiError(RuntimeError):
    """A non-2xx API response, with a user-facing message."""

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code


def _error_for(resp: requests.Response) -> ApiError:
    message = _STATUS_MESSAGES.get(
        resp.status_code, f"An unexpected error occurred. Status: {resp.status_code}",
    )
    try:
        body = resp.json()
    except ValueError:
        body = None
        logger.debug("Could not parse JSON from error response (status %d)", resp.status_code)
    if isinstance(body, dict):
        detail = body.get("detail") or body.get("message")
        if isinstance(detail, str) and detail:
            message += f" - {detail}"
    return ApiError(resp.status_code, message)


class SongApiClient:
    """Thin wrapper over the ``/api`` endpoints.  Returns plain record dicts."""

    def __init__(self, base_url: str = "http://localhost:8000/api", timeout: float = 30.0,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._session = session or requests.Session()

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        resp = self._session.request(method, f"{self.base_url}{path}", timeout=self.timeout, **kwargs)
        if not resp.ok:
            raise _error_for(resp)
        return resp.json()

    def list_songs(self) -> List[Dict[str, Any]]:
        return self._request("GET", "/songs")

    def get_song(self, song_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/songs/{song_id}")

    def generate(
        self,
        prompt: str,
        custom_lyrics: Optional[str] = None,
        video_style: Optional[str] = None,
        difficulty: Optional[str] = None,
        advanced_options: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        payload = {
            "prompt": prompt,
            "customLyrics": custom_lyrics,
            "videoStyle": video_style,
            "difficulty": difficulty,
            "advancedOptions": advanced_options,
        }
        return self._request("POST", "/generate", json={k: v for k, v in payload.items() if v is not None})

    def retry(self, song: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", "/retry", json={"song": song})

    def regenerate_video(self, song: Dict[str, Any], video_style: str, difficulty: Optional[str] = None) -> Dict[str, Any]:
        return self._request(
            "POST", "/regenerate-video",
            json={"song": song, "videoStyle": video_style, "difficulty": difficulty},
        )

    def update_song(self, song_id: str, **updates: Any) -> Dict[str, Any]:
        return self._request("PATCH", f"/songs/{song_id}", json=updates)
