"""Known media sources, keyed by the names used in the priority list."""

from ..config import Settings
from .applescript import AppleMusicSource, SpotifySource
from .base import MediaSource
from .foobar import FoobarSource
from .universal import UniversalSource


def build_sources(settings: Settings) -> dict[str, MediaSource]:
    """Instantiate every player integration.

    Which ones are polled, and in what order, is decided per poll cycle from
    the source configuration.
    """
    sources: list[MediaSource] = [
        AppleMusicSource(timeout=settings.applescript.timeout),
        SpotifySource(timeout=settings.applescript.timeout),
        FoobarSource(cache_dir=settings.foobar.cache_dir),
    ]
    return {source.name: source for source in sources}


def build_universal_source(settings: Settings) -> UniversalSource:
    return UniversalSource(
        interpreter=settings.universal.interpreter,
        script=settings.universal.script,
        framework=settings.universal.framework,
        timeout=settings.universal.timeout,
    )
