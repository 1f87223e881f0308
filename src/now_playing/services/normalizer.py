"""Turn raw source replies into MediaSnapshot values.

Player integrations (Apple Music, Spotify, foobar2000) answer with one
pipe-delimited line::

    isPlaying|title|artist|album|position|duration|artworkHint

The system media helper answers with a JSON object whose artwork, if any, is
inlined as base64. Inline artwork is decoded and its colors extracted here,
since normalization runs on the worker thread.
"""

import base64
import binascii
import logging

from ..sources.base import (
    Artwork,
    DelimitedReply,
    JsonReply,
    MediaSnapshot,
    RawReply,
)
from .colors import extract_colors

logger = logging.getLogger(__name__)

FIELD_COUNT = 7

# Artwork hint asking for a secondary, source-specific artwork query
SECONDARY_QUERY_HINT = "MUSIC_ART"


class ParseError(ValueError):
    """A reply did not have the expected structure."""


def split_fields(text: str) -> list[str]:
    return text.split("|")


def is_idle_reply(text: str, idle_titles: set[str]) -> bool:
    """True for replies that mean 'nothing to show here, try the next source'."""
    parts = split_fields(text)
    return len(parts) >= 2 and parts[0] == "false" and parts[1] in idle_titles


def parse_number(value: str, default: float) -> float:
    """Parse a number that may use ',' as the decimal separator."""
    try:
        return float(value.strip().replace(",", "."))
    except ValueError:
        return default


def normalize_delimited(reply: DelimitedReply, source_id: str) -> MediaSnapshot:
    parts = split_fields(reply.text)
    if reply.artwork_fallback is not None:
        parts.append(reply.artwork_fallback)
    if len(parts) != FIELD_COUNT:
        raise ParseError(f"expected {FIELD_COUNT} fields from {source_id}, got {len(parts)}")

    playing, title, artist, album, position, duration, hint = parts
    return MediaSnapshot(
        is_playing=playing == "true",
        title=title,
        artist=artist,
        album=album,
        current_time=parse_number(position, 0.0),
        # never 0 by default, progress divides by it
        total_time=parse_number(duration, 1.0),
        source=source_id,
        artwork_hint=hint,
    )


def _as_float(value, default: float = 0.0) -> float:
    if isinstance(value, bool) or value is None:
        return default
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        return parse_number(value, default)
    return default


def decode_inline_artwork(encoded: str) -> Artwork | None:
    """Decode base64 artwork from the media helper, or None if unusable."""
    try:
        data = base64.b64decode(encoded, validate=False)
    except (binascii.Error, ValueError) as e:
        logger.debug(f"Inline artwork is not valid base64: {e}")
        return None
    if not data:
        return None
    try:
        return Artwork.decode(data)
    except (OSError, ValueError) as e:
        logger.debug(f"Inline artwork could not be decoded: {e}")
        return None


def normalize_json(reply: JsonReply, source_id: str) -> MediaSnapshot:
    payload = reply.payload
    if not isinstance(payload, dict):
        raise ParseError(f"expected a JSON object from {source_id}, got {type(payload).__name__}")

    title = payload.get("title") or ""
    if not isinstance(title, str) or not title:
        raise ParseError(f"{source_id} reply has no title")

    artwork = None
    dominant, palette = None, ()
    encoded = payload.get("artworkData")
    if isinstance(encoded, str) and encoded:
        artwork = decode_inline_artwork(encoded)
    if artwork is not None:
        dominant, palette = extract_colors(artwork.image)

    return MediaSnapshot(
        is_playing=bool(payload.get("playing", False)),
        title=title,
        artist=str(payload.get("artist") or ""),
        album=str(payload.get("album") or ""),
        current_time=reply.estimated_position,
        total_time=_as_float(payload.get("duration")),
        artwork=artwork,
        dominant_color=dominant,
        gradient_palette=palette,
        source=source_id,
    )


def normalize(reply: RawReply, source_id: str) -> MediaSnapshot:
    """Normalize any raw reply.

    Raises:
        ParseError: the reply is malformed; callers treat it as "no result".
    """
    if isinstance(reply, DelimitedReply):
        return normalize_delimited(reply, source_id)
    if isinstance(reply, JsonReply):
        return normalize_json(reply, source_id)
    raise ParseError(f"unsupported reply type {type(reply).__name__}")
