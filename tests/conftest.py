"""Shared test fixtures and configuration."""

import io

import pytest
from PIL import Image

from now_playing.config import PollingConfig, RetrievalMode, SourceConfiguration
from now_playing.sources.base import (
    AdapterError,
    DelimitedReply,
    MediaSnapshot,
    MediaSource,
    RawReply,
)


def make_image_bytes(color=(200, 40, 40), size=(64, 64), fmt="PNG") -> bytes:
    """Encode a solid-color image."""
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format=fmt)
    return buffer.getvalue()


def make_snapshot(
    title: str = "Test Song",
    artist: str = "Test Artist",
    source: str = "Spotify",
    is_playing: bool = True,
    **kwargs,
) -> MediaSnapshot:
    """Helper to create test snapshots."""
    return MediaSnapshot(
        is_playing=is_playing,
        title=title,
        artist=artist,
        album=kwargs.pop("album", "Test Album"),
        current_time=kwargs.pop("current_time", 10.0),
        total_time=kwargs.pop("total_time", 200.0),
        source=source,
        **kwargs,
    )


def delimited(
    title: str = "Test Song",
    artist: str = "Test Artist",
    playing: bool = True,
    position: str = "10",
    duration: str = "200",
    hint: str = "",
) -> str:
    return "|".join(
        ["true" if playing else "false", title, artist, "Test Album", position, duration, hint]
    )


class MockMediaSource(MediaSource):
    """Mock media source for testing."""

    def __init__(
        self,
        name: str,
        reply: RawReply | None = None,
        exception: Exception | None = None,
        artwork: bytes | None = None,
    ):
        self._name = name
        self.reply = reply
        self.exception = exception
        self.artwork = artwork
        self.call_count = 0
        self.artwork_calls = 0
        self.probed = False
        self.sent = []

    @property
    def name(self) -> str:
        return self._name

    def fetch(self) -> RawReply | None:
        self.call_count += 1
        if self.exception:
            raise self.exception
        return self.reply

    def probe_permissions(self) -> None:
        self.probed = True
        raise AdapterError("permission prompt dismissed")

    def fetch_artwork(self) -> bytes | None:
        self.artwork_calls += 1
        return self.artwork

    def send(self, command) -> None:
        if self.exception:
            raise self.exception
        self.sent.append(command)


def playing_source(name: str, title: str = "Test Song", hint: str = "", playing: bool = True):
    return MockMediaSource(name, reply=DelimitedReply(delimited(title=title, hint=hint, playing=playing)))


def priority_config(*names: str, disabled=()) -> SourceConfiguration:
    return SourceConfiguration(
        priority=tuple(names),
        enabled=frozenset(n for n in names if n not in disabled),
        mode=RetrievalMode.PRIORITY_LIST,
    )


@pytest.fixture
def image_bytes() -> bytes:
    return make_image_bytes()


@pytest.fixture
def fast_polling() -> PollingConfig:
    return PollingConfig(
        active_interval=0.01,
        idle_interval=0.02,
        universal_idle_interval=0.05,
        command_repoll_delay=0.005,
    )


@pytest.fixture
def sample_snapshot() -> MediaSnapshot:
    return make_snapshot()
