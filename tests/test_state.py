"""Tests for playback state management.

These tests verify:
- State update propagation to subscribers
- Subscriber exception isolation
- Change detection ignoring position drift
- Serialization for the HTTP surface
"""

import asyncio
from dataclasses import replace

import pytest
from conftest import make_image_bytes, make_snapshot

from now_playing.services.colors import Color
from now_playing.services.state import PlaybackState
from now_playing.sources.base import Artwork, MediaSnapshot


class TestPlaybackState:
    """Test PlaybackState class."""

    def test_starts_idle(self):
        state = PlaybackState()
        assert state.snapshot.is_idle
        assert state.snapshot.is_playing is False
        assert state.snapshot.source == ""

    @pytest.mark.asyncio
    async def test_subscribe_receives_updates(self):
        state = PlaybackState()
        received = []

        async def callback(snapshot):
            received.append(snapshot)

        state.subscribe(callback)
        assert await state.update(make_snapshot()) is True

        assert len(received) == 1
        assert received[0].title == "Test Song"

    @pytest.mark.asyncio
    async def test_unsubscribe_stops_updates(self):
        state = PlaybackState()
        received = []

        async def callback(snapshot):
            received.append(snapshot)

        state.subscribe(callback)
        state.unsubscribe(callback)
        await state.update(make_snapshot())

        assert received == []

    @pytest.mark.asyncio
    async def test_subscriber_exception_isolation(self):
        """Test one subscriber's exception doesn't affect others."""
        state = PlaybackState()
        received = []

        async def failing_callback(snapshot):
            raise RuntimeError("Subscriber error")

        async def working_callback(snapshot):
            received.append(snapshot)

        state.subscribe(failing_callback)
        state.subscribe(working_callback)

        await state.update(make_snapshot())
        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_position_update_stored_but_not_published(self):
        state = PlaybackState()
        received = []

        async def callback(snapshot):
            received.append(snapshot)

        state.subscribe(callback)
        await state.update(make_snapshot(current_time=1.0))
        published = await state.update(make_snapshot(current_time=2.0))

        assert published is False
        assert len(received) == 1
        assert state.snapshot.current_time == 2.0

    @pytest.mark.asyncio
    async def test_play_state_change_published(self):
        state = PlaybackState()
        received = []

        async def callback(snapshot):
            received.append(snapshot)

        state.subscribe(callback)
        await state.update(make_snapshot(is_playing=True))
        await state.update(make_snapshot(is_playing=False))

        assert [s.is_playing for s in received] == [True, False]

    @pytest.mark.asyncio
    async def test_artwork_arrival_published(self):
        state = PlaybackState()
        received = []

        async def callback(snapshot):
            received.append(snapshot)

        state.subscribe(callback)
        base = make_snapshot()
        await state.update(base)
        await state.update(replace(base, artwork=Artwork.decode(make_image_bytes())))

        assert len(received) == 2
        assert received[1].artwork is not None

    @pytest.mark.asyncio
    async def test_unsubscribe_during_update(self):
        state = PlaybackState()
        received = []

        async def self_unsubscribing_callback(snapshot):
            received.append(snapshot)
            state.unsubscribe(self_unsubscribing_callback)

        state.subscribe(self_unsubscribing_callback)
        await state.update(make_snapshot(title="First"))
        await state.update(make_snapshot(title="Second"))

        assert len(received) == 1

    @pytest.mark.asyncio
    async def test_queue_subscriber(self):
        """Test the queue pattern used by the SSE stream."""
        state = PlaybackState()
        queue = asyncio.Queue()

        async def queue_callback(snapshot):
            await queue.put(snapshot)

        state.subscribe(queue_callback)
        for i in range(5):
            await state.update(make_snapshot(title=f"Song {i}"))

        received = []
        while not queue.empty():
            received.append(await queue.get())
        assert len(received) == 5


class TestSerialization:
    """Test snapshot serialization."""

    def test_state_to_dict(self):
        state = PlaybackState()
        state.snapshot = make_snapshot(title="Current Song")
        data = state.to_dict()
        assert data["now_playing"]["title"] == "Current Song"
        assert "last_updated" in data

    def test_snapshot_to_dict(self):
        snapshot = make_snapshot(
            current_time=50.0,
            total_time=200.0,
            dominant_color=Color(255, 0, 0),
            gradient_palette=(Color(0, 255, 0), Color(0, 0, 255)),
        )
        data = snapshot.to_dict()
        assert data["source"] == "Spotify"
        assert data["progress"] == 0.25
        assert data["has_artwork"] is False
        assert data["dominant_color"] == "#ff0000"
        assert data["gradient_palette"] == ["#00ff00", "#0000ff"]

    def test_idle_to_dict(self):
        data = MediaSnapshot.idle().to_dict()
        assert data["title"] == "Nothing Playing"
        assert data["artist"] == ""
        assert data["source"] == ""
        assert data["is_playing"] is False
        assert data["dominant_color"] is None

    def test_zero_duration_progress(self):
        assert make_snapshot(current_time=5.0, total_time=0.0).progress == 0.0

    def test_negative_times_clamped(self):
        snapshot = make_snapshot(current_time=-3.0, total_time=-1.0)
        assert snapshot.current_time == 0.0
        assert snapshot.total_time == 0.0

    def test_unicode(self):
        data = make_snapshot(title="日本語タイトル", artist="アーティスト名").to_dict()
        assert data["title"] == "日本語タイトル"
