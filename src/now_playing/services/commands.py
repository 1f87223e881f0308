"""Playback commands forwarded to media sources."""

from dataclasses import dataclass
from enum import Enum


class PlaybackAction(str, Enum):
    PLAY_PAUSE = "play_pause"
    NEXT = "next"
    PREVIOUS = "previous"
    SEEK = "seek"


@dataclass(frozen=True)
class PlaybackCommand:
    """A best-effort request; the poller re-reads state afterwards."""

    action: PlaybackAction
    position: float | None = None  # seconds, SEEK only
    target: str | None = None  # source name; None means whatever is playing

    def __post_init__(self):
        if self.action is PlaybackAction.SEEK:
            if self.position is None:
                raise ValueError("seek needs a position")
            if self.position < 0:
                raise ValueError("seek position must be >= 0")
