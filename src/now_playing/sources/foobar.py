"""foobar2000 integration via the now-playing file its helper component writes."""

import logging
from pathlib import Path

from .base import IDLE_TITLE, DelimitedReply, MediaSource

logger = logging.getLogger(__name__)

STATUS_FILE = "foobar2000_nowplaying.txt"
ARTWORK_FILE = "foobar2000_artwork.jpg"


class FoobarSource(MediaSource):
    """Reads a six-field status file; artwork sits in a sibling file."""

    def __init__(self, cache_dir: str | Path = "~/Library/Caches"):
        self._cache_dir = Path(cache_dir).expanduser()

    @property
    def name(self) -> str:
        return "Foobar2000"

    @property
    def status_path(self) -> Path:
        return self._cache_dir / STATUS_FILE

    @property
    def artwork_path(self) -> Path:
        return self._cache_dir / ARTWORK_FILE

    def fetch(self) -> DelimitedReply | None:
        # Missing or locked file just means foobar isn't playing
        try:
            content = self.status_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.debug(f"foobar2000 status unavailable: {e}")
            return None

        content = content.rstrip("\r\n")
        if not content:
            return None

        parts = content.split("|")
        if len(parts) >= 2 and parts[1] == IDLE_TITLE:
            return None

        return DelimitedReply(content, artwork_fallback=str(self.artwork_path))
