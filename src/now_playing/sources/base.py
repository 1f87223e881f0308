"""Abstract base class for media sources and the canonical snapshot."""

import io
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any

from PIL import Image

from ..services.colors import Color

IDLE_TITLE = "Nothing Playing"


class AdapterError(Exception):
    """A source could not be queried (launch failure, permissions, not running)."""


@dataclass(frozen=True, eq=False)
class Artwork:
    """Encoded artwork bytes plus the decoded image."""

    data: bytes
    image: Image.Image

    @classmethod
    def decode(cls, data: bytes) -> "Artwork":
        """Decode image bytes. Raises OSError/ValueError on bad data."""
        image = Image.open(io.BytesIO(data))
        image.load()
        return cls(data=data, image=image)

    @property
    def mime_type(self) -> str:
        return Image.MIME.get(self.image.format or "", "application/octet-stream")


@dataclass(frozen=True)
class MediaSnapshot:
    """Normalized description of what is playing right now."""

    is_playing: bool = False
    title: str = IDLE_TITLE
    artist: str = ""
    album: str = ""
    current_time: float = 0.0
    total_time: float = 1.0
    artwork: Artwork | None = None
    dominant_color: Color | None = None
    gradient_palette: tuple[Color, ...] = ()
    source: str = ""
    # Opaque artwork locator from the source: URL, file path, sentinel or ""
    artwork_hint: str = ""

    def __post_init__(self):
        object.__setattr__(self, "current_time", max(0.0, float(self.current_time)))
        object.__setattr__(self, "total_time", max(0.0, float(self.total_time)))

    @classmethod
    def idle(cls) -> "MediaSnapshot":
        return cls()

    @property
    def is_idle(self) -> bool:
        return self.title == IDLE_TITLE

    @property
    def identity(self) -> tuple[str, str]:
        return (self.title, self.artist)

    @property
    def state_key(self) -> tuple[str, str, bool]:
        """What counts as a change for observers; position drift does not."""
        return (self.title, self.artist, self.is_playing)

    @property
    def artwork_key(self) -> str:
        return artwork_key(self.source, self.artist, self.title)

    @property
    def progress(self) -> float:
        if self.total_time <= 0:
            return 0.0
        return min(self.current_time / self.total_time, 1.0)

    def to_dict(self) -> dict[str, Any]:
        """Convert to JSON-serializable dict."""
        return {
            "source": self.source,
            "title": self.title,
            "artist": self.artist,
            "album": self.album,
            "is_playing": self.is_playing,
            "current_time": self.current_time,
            "total_time": self.total_time,
            "progress": self.progress,
            "has_artwork": self.artwork is not None,
            "dominant_color": self.dominant_color.to_hex() if self.dominant_color else None,
            "gradient_palette": [c.to_hex() for c in self.gradient_palette],
        }


def artwork_key(source: str, artist: str, title: str) -> str:
    """Cache key for a track's artwork."""
    return f"{source}|{artist}|{title}"


@dataclass(frozen=True)
class DelimitedReply:
    """Pipe-delimited status line from a player integration."""

    text: str
    # Always appended as the seventh field; such replies carry only six
    artwork_fallback: str | None = None


@dataclass(frozen=True)
class JsonReply:
    """Decoded JSON object from the system media helper."""

    payload: Any
    estimated_position: float = 0.0


RawReply = DelimitedReply | JsonReply


class MediaSource(ABC):
    """Abstract base class for media source integrations.

    Every method may block on I/O; callers run them off the event loop.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Return the source name."""
        pass

    @abstractmethod
    def fetch(self) -> RawReply | None:
        """Query the source. Returns None when it has nothing active.

        Raises:
            AdapterError: the source could not be queried at all.
        """
        pass

    def probe_permissions(self) -> None:
        """Touch the source once so the OS can show its permission prompt."""

    def fetch_artwork(self) -> bytes | None:
        """Secondary query for artwork bytes, for sources that need one."""
        return None

    def send(self, command) -> None:
        """Deliver a playback command to the source."""
        raise AdapterError(f"{self.name} does not accept playback commands")
