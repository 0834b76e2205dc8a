"""Disk-backed song store.

``SnapshotFile`` is the dumb full-snapshot layer: one JSON document mapping
song id → record, rewritten wholesale on every save.  ``SongStore`` keeps
the in-memory map the pipeline mutates and flushes it through the snapshot.

Writes are serialised by a lock and each write snapshots the map at the
moment it runs, so a flush for one song never clobbers a newer state of
another song that was flushed concurrently.
"""
from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from backend.services.songs import status as song_status
from backend.services.songs.types import Song

logger = logging.getLogger("songsmith.songs.store")

INTERRUPTED_MESSAGE = "Generation was interrupted by a server restart."


class StoreCorruptError(RuntimeError):
    """The snapshot exists but cannot be parsed.  Fatal at startup."""


class PersistenceError(RuntimeError):
    """Writing the snapshot to disk failed."""


class SongNotFoundError(KeyError):
    def __init__(self, song_id: str):
        super().__init__(song_id)
        self.song_id = song_id

    def __str__(self) -> str:
        return f"Song {self.song_id!r} not found."


class SnapshotFile:
    """Whole-document JSON snapshot at ``path``."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> Dict[str, Dict[str, Any]]:
        """Return the stored mapping; an absent file is an empty store.

        Raises:
            StoreCorruptError: If the file exists but is not a JSON object.
        """
        if not self.path.exists():
            logger.info("%s not found, starting with an empty library.", self.path)
            return {}
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            raise StoreCorruptError(f"Failed to load songs from {self.path}: {exc}") from exc
        if not isinstance(data, dict):
            raise StoreCorruptError(f"{self.path} must contain a JSON object, got {type(data).__name__}")
        return data

    def save(self, mapping: Dict[str, Dict[str, Any]]) -> None:
        """Atomically replace the snapshot with ``mapping``.

        Raises:
            PersistenceError: On any filesystem error.
        """
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp = tempfile.mkstemp(dir=str(self.path.parent), prefix=".db-", suffix=".json")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    json.dump(mapping, fh, indent=2)
                os.replace(tmp, self.path)
            except BaseException:
                if os.path.exists(tmp):
                    os.unlink(tmp)
                raise
        except OSError as exc:
            raise PersistenceError(f"Failed to save songs to {self.path}: {exc}") from exc


class SongStore:
    """In-memory song map with full-snapshot persistence."""

    def __init__(self, snapshot: SnapshotFile):
        self._snapshot = snapshot
        self._songs: Dict[str, Song] = {}
        self._lock = asyncio.Lock()

    @classmethod
    def at(cls, path: Path) -> "SongStore":
        return cls(SnapshotFile(path))

    # ── lifecycle ────────────────────────────────────────────────────────────

    def load(self) -> int:
        """Restore state from disk.  Call once at startup.

        Records left mid-pipeline by a previous process are moved to ERROR
        so they can be retried.  Returns the number of songs loaded.

        Raises:
            StoreCorruptError: If the snapshot or any record in it is invalid.
        """
        raw = self._snapshot.load()
        songs: Dict[str, Song] = {}
        interrupted = 0
        for song_id, record in raw.items():
            try:
                song = Song.from_dict(record)
            except (TypeError, ValueError) as exc:
                raise StoreCorruptError(f"Invalid record {song_id!r}: {exc}") from exc
            if song_status.interrupt(song, INTERRUPTED_MESSAGE):
                interrupted += 1
            songs[song.id] = song
        self._songs = songs
        if interrupted:
            logger.warning("Marked %d interrupted song(s) as failed", interrupted)
            self._snapshot.save(self._serialise())
        logger.info("Loaded %d song(s) from %s", len(songs), self._snapshot.path)
        return len(songs)

    async def persist(self) -> None:
        """Flush the whole store to disk.

        Raises:
            PersistenceError: If the write fails.
        """
        async with self._lock:
            mapping = self._serialise()
            await asyncio.to_thread(self._snapshot.save, mapping)

    async def persist_best_effort(self) -> bool:
        """``persist`` for error paths: a failed write is logged, not raised."""
        try:
            await self.persist()
        except PersistenceError as exc:
            logger.error("Could not record failure state: %s", exc)
            return False
        return True

    # ── access ───────────────────────────────────────────────────────────────

    def _serialise(self) -> Dict[str, Dict[str, Any]]:
        return {song_id: song.to_dict() for song_id, song in self._songs.items()}

    def add(self, song: Song) -> None:
        if song.id in self._songs:
            raise ValueError(f"Duplicate song id {song.id!r}")
        self._songs[song.id] = song

    def get(self, song_id: str) -> Optional[Song]:
        return self._songs.get(song_id)

    def require(self, song_id: str) -> Song:
        song = self._songs.get(song_id)
        if song is None:
            raise SongNotFoundError(song_id)
        return song

    def list_recent(self) -> List[Song]:
        """All songs, newest first."""
        return sorted(self._songs.values(), key=lambda s: s.created_at, reverse=True)

    def __contains__(self, song_id: object) -> bool:
        return song_id in self._songs

    def __len__(self) -> int:
        return len(self._songs)

    def __iter__(self) -> Iterator[Song]:
        return iter(list(self._songs.values()))
