"""Client-side registry of in-progress songs.

Keeps a local copy of the library and polls every song that is still
generating until it reaches COMPLETE or ERROR.  A song whose fetch fails is
dropped from tracking rather than retried forever.
"""
from __future__ import annotations

import logging
import time
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

from backend.services.client.api_client import SongApiClient

logger = logging.getLogger("songsmith.client.jobs")

TERMINAL_STATUSES = frozenset({"complete", "error"})

Record = Dict[str, Any]


def is_in_progress(song: Record) -> bool:
    return song.get("status") not in TERMINAL_STATUSES


class JobRegistry:
    def __init__(self, client: SongApiClient):
        self._client = client
        self._tracked: Set[str] = set()
        self.songs: Dict[str, Record] = {}

    @property
    def tracked(self) -> Set[str]:
        return set(self._tracked)

    def refresh(self) -> List[Record]:
        """Reload the whole library and re-seed tracking from it."""
        songs = self._client.list_songs()
        self.seed(songs)
        return songs

    def seed(self, songs: Iterable[Record]) -> None:
        """Replace the local cache; track exactly the songs still in progress."""
        songs = list(songs)
        self.songs = {s["id"]: s for s in songs}
        self._tracked = {s["id"] for s in songs if is_in_progress(s)}

    def track(self, song: Record) -> None:
        """Start following a song returned by generate/retry/regenerate."""
        self.songs[song["id"]] = song
        if is_in_progress(song):
            self._tracked.add(song["id"])

    def poll_once(self) -> List[Record]:
        """Fetch every tracked song once.  Returns the records that changed."""
        changed: List[Record] = []
        for song_id in sorted(self._tracked):
            try:
                updated = self._client.get_song(song_id)
            except Exception as exc:  # noqa: BLE001
                logger.error("Failed to poll song %s: %s", song_id, exc)
                self._tracked.discard(song_id)
                continue
            if self.songs.get(song_id) != updated:
                self.songs[song_id] = updated
                changed.append(updated)
            if not is_in_progress(updated):
                self._tracked.discard(song_id)
        return changed

    def run(
        self,
        interval: float = 3.0,
        on_update: Optional[Callable[[Record], None]] = None,
        max_rounds: Optional[int] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> int:
        """Poll until nothing is tracked (or ``max_rounds``).  Returns rounds run."""
        rounds = 0
        while self._tracked and (max_rounds is None or rounds < max_rounds):
            sleep(interval)
            for song in self.poll_once():
                if on_update is not None:
                    on_update(song)
            rounds += 1
        return rounds
