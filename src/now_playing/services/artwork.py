"""Artwork retrieval and caching.

This is the only place artwork concurrency is handled. At most one fetch is
in flight: only the most recently requested track matters, so a request for
a different key cancels the previous fetch, and a fetch that finishes after
its key was abandoned is dropped.
"""

import asyncio
import logging
from collections import OrderedDict
from collections.abc import Awaitable, Callable, Mapping
from concurrent.futures import Executor
from dataclasses import dataclass
from pathlib import Path

import httpx

from ..sources.base import Artwork, MediaSource
from .colors import Color, extract_colors
from .normalizer import SECONDARY_QUERY_HINT

logger = logging.getLogger(__name__)

LOCAL_IMAGE_SUFFIXES = (".jpg", ".png")


class ArtworkFetchError(Exception):
    """Artwork could not be retrieved or decoded."""


@dataclass(frozen=True, eq=False)
class ArtworkEntry:
    """Decoded artwork with the colors derived from it."""

    artwork: Artwork
    dominant_color: Color
    palette: tuple[Color, ...]


ReadyCallback = Callable[[str, ArtworkEntry], Awaitable[None]]


def is_http_hint(hint: str) -> bool:
    return hint.startswith(("http://", "https://"))


def is_file_hint(hint: str) -> bool:
    return hint.lower().endswith(LOCAL_IMAGE_SUFFIXES)


def build_entry(data: bytes) -> ArtworkEntry:
    """Decode image bytes and derive colors. CPU-bound, run off the loop."""
    if not data:
        raise ArtworkFetchError("empty artwork data")
    try:
        artwork = Artwork.decode(data)
    except (OSError, ValueError) as e:
        raise ArtworkFetchError(f"undecodable artwork: {e}") from e
    dominant, palette = extract_colors(artwork.image)
    return ArtworkEntry(artwork=artwork, dominant_color=dominant, palette=palette)


def _read_file(path: str) -> bytes:
    try:
        return Path(path).read_bytes()
    except OSError as e:
        raise ArtworkFetchError(f"cannot read {path}: {e}") from e


class ArtworkCache:
    """Track-keyed artwork cache with single in-flight fetch."""

    def __init__(
        self,
        sources: Mapping[str, MediaSource] | None = None,
        *,
        executor: Executor | None = None,
        client: httpx.AsyncClient | None = None,
        http_timeout: float = 10.0,
        max_entries: int = 0,
        is_current: Callable[[str], bool] | None = None,
    ):
        self._sources = dict(sources or {})
        self._executor = executor
        self._client = client
        self._owns_client = client is None
        self._http_timeout = http_timeout
        self._max_entries = max_entries
        self._is_current = is_current or (lambda key: True)

        self._entries: OrderedDict[str, ArtworkEntry] = OrderedDict()
        self._task: asyncio.Task | None = None
        self._task_key: str | None = None
        # Bumped on every new fetch and on cancel; results from older
        # generations are discarded
        self._generation = 0
        self.fetch_count = 0

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._http_timeout, connect=15.0),
                follow_redirects=True,
            )
        return self._client

    def get(self, cache_key: str) -> ArtworkEntry | None:
        entry = self._entries.get(cache_key)
        if entry is not None:
            self._entries.move_to_end(cache_key)
        return entry

    def store(self, cache_key: str, entry: ArtworkEntry) -> None:
        self._entries[cache_key] = entry
        self._entries.move_to_end(cache_key)
        if self._max_entries > 0:
            while len(self._entries) > self._max_entries:
                evicted, _ = self._entries.popitem(last=False)
                logger.debug(f"Artwork cache full, evicted '{evicted}'")

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def pending_key(self) -> str | None:
        if self._task is None or self._task.done():
            return None
        return self._task_key

    def request(
        self,
        hint: str,
        cache_key: str,
        *,
        source: str = "",
        force_reload: bool = False,
        on_ready: ReadyCallback | None = None,
    ) -> ArtworkEntry | None:
        """Return cached artwork now, or start fetching it.

        When a fetch is started, ``on_ready(cache_key, entry)`` is awaited on
        the event loop once it succeeds and the key is still current.
        """
        if not force_reload:
            entry = self.get(cache_key)
            if entry is not None:
                return entry

        if not force_reload and self.pending_key == cache_key:
            return None

        self.cancel()
        if not hint or not (
            is_http_hint(hint) or is_file_hint(hint) or hint == SECONDARY_QUERY_HINT
        ):
            if hint:
                logger.debug(f"Unrecognised artwork hint for '{cache_key}': {hint!r}")
            return None

        self._generation += 1
        self._task_key = cache_key
        self._task = asyncio.create_task(
            self._fetch(hint, cache_key, source, self._generation, on_ready)
        )
        return None

    def cancel(self) -> None:
        """Abandon any in-flight fetch."""
        self._generation += 1
        if self._task is not None and not self._task.done():
            logger.debug(f"Cancelling artwork fetch for '{self._task_key}'")
            self._task.cancel()
        self._task = None
        self._task_key = None

    async def _fetch(
        self,
        hint: str,
        cache_key: str,
        source: str,
        generation: int,
        on_ready: ReadyCallback | None,
    ) -> None:
        self.fetch_count += 1
        loop = asyncio.get_running_loop()
        try:
            data = await self._load_bytes(hint, source)
            entry = await loop.run_in_executor(self._executor, build_entry, data)
        except asyncio.CancelledError:
            raise
        except (ArtworkFetchError, httpx.HTTPError) as e:
            logger.warning(f"Artwork fetch failed for '{cache_key}': {e}")
            return
        except Exception as e:
            logger.error(f"Unexpected artwork error for '{cache_key}': {e}")
            return

        if generation != self._generation or not self._is_current(cache_key):
            logger.debug(f"Dropping stale artwork for '{cache_key}'")
            return

        self.store(cache_key, entry)
        logger.info(f"Artwork loaded for '{cache_key}'")
        if on_ready is not None:
            await on_ready(cache_key, entry)

    async def _load_bytes(self, hint: str, source: str) -> bytes:
        loop = asyncio.get_running_loop()

        if is_http_hint(hint):
            resp = await self._get_client().get(hint)
            if resp.status_code >= 400:
                raise ArtworkFetchError(f"HTTP {resp.status_code} from {hint}")
            return resp.content

        if hint == SECONDARY_QUERY_HINT:
            owner = self._sources.get(source)
            if owner is None:
                raise ArtworkFetchError(f"no source '{source}' for secondary artwork query")
            try:
                data = await loop.run_in_executor(self._executor, owner.fetch_artwork)
            except Exception as e:
                raise ArtworkFetchError(f"{source} artwork query failed: {e}") from e
            if not data:
                raise ArtworkFetchError(f"{source} returned no artwork")
            return data

        return await loop.run_in_executor(self._executor, _read_file, hint)

    async def aclose(self) -> None:
        self.cancel()
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
