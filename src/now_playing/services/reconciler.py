"""Merge freshly polled snapshots into the authoritative one."""

from dataclasses import dataclass, replace
from enum import Enum
from typing import NamedTuple

from ..sources.base import MediaSnapshot
from .colors import extract_colors


class ArtworkActionKind(str, Enum):
    NONE = "none"
    FETCH = "fetch"
    INVALIDATE = "invalidate"


@dataclass(frozen=True)
class ArtworkAction:
    """What the artwork cache should do after a merge."""

    kind: ArtworkActionKind = ArtworkActionKind.NONE
    hint: str = ""
    cache_key: str = ""

    @classmethod
    def none(cls) -> "ArtworkAction":
        return cls()

    @classmethod
    def fetch(cls, hint: str, cache_key: str) -> "ArtworkAction":
        return cls(ArtworkActionKind.FETCH, hint, cache_key)

    @classmethod
    def invalidate(cls) -> "ArtworkAction":
        return cls(ArtworkActionKind.INVALIDATE)


class MergeResult(NamedTuple):
    snapshot: MediaSnapshot
    action: ArtworkAction


def clear_artwork(snapshot: MediaSnapshot) -> MediaSnapshot:
    return replace(snapshot, artwork=None, dominant_color=None, gradient_palette=())


def adopt_artwork(snapshot: MediaSnapshot) -> MediaSnapshot:
    """Fill in colors for an image the source delivered inline."""
    if snapshot.dominant_color is not None:
        return snapshot
    dominant, palette = extract_colors(snapshot.artwork.image)
    return replace(snapshot, dominant_color=dominant, gradient_palette=palette)


def merge(new: MediaSnapshot, previous: MediaSnapshot) -> MergeResult:
    """Combine a new poll result with the current state.

    Track metadata, play state and position always come from ``new``.
    Artwork and colors carry over from ``previous`` unless the track or the
    source changed, in which case they are cleared and re-requested.
    """
    identity_changed = new.identity != previous.identity
    source_changed = new.source != previous.source

    if identity_changed or source_changed:
        if new.artwork is not None:
            return MergeResult(adopt_artwork(new), ArtworkAction.none())
        merged = clear_artwork(new)
        if new.artwork_hint:
            return MergeResult(merged, ArtworkAction.fetch(new.artwork_hint, merged.artwork_key))
        return MergeResult(merged, ArtworkAction.invalidate())

    if new.artwork is not None and previous.artwork is None:
        return MergeResult(adopt_artwork(new), ArtworkAction.none())

    merged = replace(
        new,
        artwork=previous.artwork,
        dominant_color=previous.dominant_color,
        gradient_palette=previous.gradient_palette,
    )
    return MergeResult(merged, ArtworkAction.none())


def should_publish(previous: MediaSnapshot, current: MediaSnapshot) -> bool:
    """Observers hear about track/play-state changes and artwork arrival."""
    if previous.state_key != current.state_key:
        return True
    return previous.artwork is not current.artwork
