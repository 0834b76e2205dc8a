"""Prompt builders for each generation step, plus metadata parsing.

Weirdness (0-100) maps to text temperature 0.5-1.0; style influence (0-100)
is stated as a percentage in the art and video prompts.  Both default to 50.
"""
from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, Optional

from backend.services.songs.types import Song

logger = logging.getLogger("songsmith.pipeline.prompts")

_DEFAULT_INFLUENCE = 50
_DEFAULT_GENRE = "pop"
_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)

# metadata JSON key → Song attribute
_METADATA_KEYS = {
    "title": "title",
    "genre": "genre",
    "tempo": "tempo",
    "keySignature": "key_signature",
    "tags": "tags",
}


def _influence(value: Optional[int]) -> int:
    return _DEFAULT_INFLUENCE if value is None else value


def temperature_for(weirdness: Optional[int]) -> float:
    """0.5 at weirdness 0, 1.0 at weirdness 100."""
    return 0.5 + (_influence(weirdness) / 100) * 0.5


def default_title(prompt: str) -> str:
    return f"Song about {prompt[:20]}..."


def metadata_prompt(prompt: str) -> str:
    return (
        f'Based on the song description "{prompt}", generate a short, catchy title (max 5 words), '
        "a music genre, a tempo in BPM (number only), a key signature, and 3 relevant tags "
        '(comma-separated). Return ONLY a JSON object with keys: "title", "genre", "tempo", '
        '"keySignature", "tags".'
    )


def lyrics_prompt(song: Song) -> str:
    lines = [
        f"Write lyrics for a song about: {song.prompt}.",
        "The song should have a clear structure (e.g., Verse, Chorus, Bridge).",
        f"Genre: {song.genre or _DEFAULT_GENRE}.",
    ]
    if song.vocal_gender:
        lines.append(f"The vocals should be performed by a {song.vocal_gender.value} singer.")
    return "\n".join(lines)


def audio_prompt(song: Song) -> str:
    vocals = f"{song.vocal_gender.value} vocals" if song.vocal_gender else "vocals"
    return f"{song.prompt}. A {song.genre or _DEFAULT_GENRE} song with {vocals}."


def art_prompt(song: Song) -> str:
    lines = [
        f'Album cover art for a {song.genre or _DEFAULT_GENRE} song titled "{song.title}" about "{song.prompt}".',
        f'Style: The visual style of "{song.video_style}" should be very prominent, '
        f"with an influence level of {_influence(song.style_influence)}%.",
    ]
    if song.exclude_styles:
        lines.append(f"Do NOT include any of the following styles or elements: {song.exclude_styles}.")
    return "\n".join(lines)


def video_prompt(song: Song) -> str:
    lines = [
        f'A music video for a song titled "{song.title}" with the theme "{song.prompt}".',
        f"The video must strictly adhere to the {song.video_style} style. "
        f"The influence of this style should be {_influence(song.style_influence)}%.",
    ]
    if song.exclude_styles:
        lines.append(
            "The video must not contain any of the following visual elements or styles: "
            f"{song.exclude_styles}."
        )
    return "\n".join(lines)


def parse_metadata(raw: str) -> Dict[str, Any]:
    """Parse the metadata JSON the text model returned.

    Strips markdown code fences, keeps only known keys and coerces tempo to
    an int.  Returns the Song attribute names as keys.

    Raises:
        ValueError: If the text is not a JSON object.
    """
    cleaned = _FENCE_RE.sub("", raw.strip())
    data = json.loads(cleaned)
    if not isinstance(data, dict):
        raise ValueError(f"Metadata must be a JSON object, got {type(data).__name__}")

    out: Dict[str, Any] = {}
    for key, attr in _METADATA_KEYS.items():
        value = data.get(key)
        if value is None or value == "":
            continue
        if attr == "tempo":
            match = re.search(r"\d+(?:\.\d+)?", str(value))
            if not match:
                continue
            try:
                value = int(round(float(match.group())))
            except OverflowError:
                continue
        elif attr == "tags" and isinstance(value, list):
            value = ", ".join(str(v) for v in value)
        else:
            value = str(value).strip()
        out[attr] = value
    return out
