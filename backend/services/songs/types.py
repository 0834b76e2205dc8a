"""Song record and generation status types."""
from __future__ import annotations

import dataclasses
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional


class GenerationStatus(str, Enum):
    GENERATING_LYRICS = "writing lyrics"
    GENERATING_AUDIO = "composing music"
    GENERATING_ART = "creating cover art"
    GENERATING_VIDEO = "directing video"
    POLLING_VIDEO = "rendering video"
    COMPLETE = "complete"
    ERROR = "error"


class Difficulty(str, Enum):
    EASY = "Easy"
    MEDIUM = "Medium"
    HARD = "Hard"


class VocalGender(str, Enum):
    MALE = "male"
    FEMALE = "female"


@dataclass
class AdvancedOptions:
    """Optional knobs supplied with a generate request."""

    exclude_styles: str = ""
    vocal_gender: Optional[VocalGender] = None
    weirdness: Optional[int] = None         # 0-100
    style_influence: Optional[int] = None   # 0-100


# Python attribute → wire (camelCase) key
_WIRE_KEYS: Dict[str, str] = {
    "id": "id",
    "prompt": "prompt",
    "title": "title",
    "lyrics": "lyrics",
    "cover_art_url": "coverArtUrl",
    "audio_url": "audioUrl",
    "video_url": "videoUrl",
    "thumbnail_url": "thumbnailUrl",
    "status": "status",
    "status_message": "statusMessage",
    "video_style": "videoStyle",
    "difficulty": "difficulty",
    "failed_step": "failedStep",
    "created_at": "createdAt",
    "genre": "genre",
    "tempo": "tempo",
    "key_signature": "keySignature",
    "tags": "tags",
    "exclude_styles": "excludeStyles",
    "vocal_gender": "vocalGender",
    "weirdness": "weirdness",
    "style_influence": "styleInfluence",
}
_ATTR_KEYS = {wire: attr for attr, wire in _WIRE_KEYS.items()}

# Fields a user may edit directly, bypassing the pipeline
EDITABLE_FIELDS = ("title", "lyrics", "genre", "tempo", "key_signature", "tags")


def new_song_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _format_ts(ts: datetime) -> str:
    return ts.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _parse_ts(raw: str) -> datetime:
    parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass
class Song:
    """One song and its generation progress: the persisted record."""

    prompt: str
    id: str = field(default_factory=new_song_id)
    created_at: datetime = field(default_factory=utcnow)

    # input
    lyrics: str = ""
    video_style: Optional[str] = None
    difficulty: Optional[Difficulty] = None
    exclude_styles: Optional[str] = None
    vocal_gender: Optional[VocalGender] = None
    weirdness: Optional[int] = None
    style_influence: Optional[int] = None

    # artifacts
    title: str = ""
    genre: Optional[str] = None
    tempo: Optional[int] = None
    key_signature: Optional[str] = None
    tags: Optional[str] = None
    cover_art_url: str = ""
    audio_url: Optional[str] = None
    video_url: Optional[str] = None
    thumbnail_url: Optional[str] = None

    # progress
    status: GenerationStatus = GenerationStatus.GENERATING_LYRICS
    status_message: Optional[str] = None
    failed_step: Optional[GenerationStatus] = None

    def apply_options(self, options: Optional[AdvancedOptions]) -> None:
        if options is None:
            return
        self.exclude_styles = options.exclude_styles or None
        self.vocal_gender = options.vocal_gender
        self.weirdness = options.weirdness
        self.style_influence = options.style_influence

    def to_dict(self) -> Dict[str, Any]:
        """Serialise to the camelCase wire/disk shape, omitting unset fields."""
        out: Dict[str, Any] = {}
        for f in dataclasses.fields(self):
            value = getattr(self, f.name)
            if value is None:
                continue
            if isinstance(value, Enum):
                value = value.value
            elif isinstance(value, datetime):
                value = _format_ts(value)
            out[_WIRE_KEYS[f.name]] = value
        return out

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Song":
        """Build a Song from its wire/disk shape.  Unknown keys are ignored.

        Raises:
            ValueError: If required keys are missing or enum values are invalid.
        """
        if not data.get("id") or not data.get("prompt"):
            raise ValueError("Song record requires 'id' and 'prompt'")
        kwargs: Dict[str, Any] = {}
        for wire, value in data.items():
            attr = _ATTR_KEYS.get(wire)
            if attr is None or value is None:
                continue
            kwargs[attr] = value
        if "created_at" in kwargs:
            kwargs["created_at"] = _parse_ts(str(kwargs["created_at"]))
        for attr, enum_cls in (
            ("status", GenerationStatus),
            ("failed_step", GenerationStatus),
            ("difficulty", Difficulty),
            ("vocal_gender", VocalGender),
        ):
            if attr in kwargs:
                kwargs[attr] = enum_cls(kwargs[attr])
        return cls(**kwargs)
