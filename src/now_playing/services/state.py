"""Playback state management."""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable

from ..sources.base import MediaSnapshot
from .reconciler import should_publish

logger = logging.getLogger(__name__)

Subscriber = Callable[[MediaSnapshot], Awaitable[None]]


@dataclass
class PlaybackState:
    """The authoritative snapshot and the observers interested in it.

    Only the event loop that runs the poller writes to this object.
    """

    snapshot: MediaSnapshot = field(default_factory=MediaSnapshot.idle)
    last_updated: datetime = field(default_factory=datetime.now)

    # Subscribers for state changes
    _subscribers: list[Subscriber] = field(default_factory=list, repr=False)

    def subscribe(self, callback: Subscriber):
        """Subscribe to state changes."""
        self._subscribers.append(callback)

    def unsubscribe(self, callback: Subscriber):
        """Unsubscribe from state changes."""
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    async def update(self, snapshot: MediaSnapshot) -> bool:
        """Replace the snapshot; notify subscribers if the change is visible.

        Position and duration are stored every time but do not trigger a
        notification on their own. Returns whether subscribers were notified.
        """
        previous = self.snapshot
        self.snapshot = snapshot
        if not should_publish(previous, snapshot):
            return False

        self.last_updated = datetime.now()

        # Notify all subscribers
        await asyncio.gather(
            *[self._safe_notify(callback, snapshot) for callback in list(self._subscribers)],
            return_exceptions=True,
        )
        return True

    async def _safe_notify(self, callback: Subscriber, snapshot: MediaSnapshot):
        """Safely notify a subscriber, catching any exceptions."""
        try:
            await callback(snapshot)
        except Exception as e:
            # Don't let one bad subscriber break others
            logger.warning(f"Subscriber {callback!r} failed: {e}")

    def to_dict(self) -> dict:
        """Convert to JSON-serializable dict."""
        return {
            "now_playing": self.snapshot.to_dict(),
            "last_updated": self.last_updated.isoformat(),
        }
