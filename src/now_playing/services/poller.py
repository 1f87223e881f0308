"""Background polling service for media sources."""

import asyncio
import logging
from collections.abc import Callable, Mapping
from concurrent.futures import ThreadPoolExecutor
from dataclasses import replace

import httpx

from ..config import PollingConfig, RetrievalMode, SourceConfiguration, get_settings
from ..sources.base import AdapterError, MediaSnapshot, MediaSource
from ..sources.registry import build_sources, build_universal_source
from .artwork import ArtworkCache, ArtworkEntry
from .commands import PlaybackCommand
from .normalizer import ParseError, normalize
from .reconciler import ArtworkActionKind, merge
from .state import PlaybackState

logger = logging.getLogger(__name__)


def _configured_sources() -> SourceConfiguration:
    return get_settings().sources.to_configuration()


def with_artwork(snapshot: MediaSnapshot, entry: ArtworkEntry) -> MediaSnapshot:
    return replace(
        snapshot,
        artwork=entry.artwork,
        dominant_color=entry.dominant_color,
        gradient_palette=entry.palette,
    )


class AggregationScheduler:
    """Polls media sources and owns the authoritative snapshot.

    Source I/O runs on a single worker thread. Everything that touches
    ``state`` or the artwork cache runs on the event loop. Polls never
    overlap: the next one is scheduled only after the current one has been
    merged.
    """

    def __init__(
        self,
        sources: Mapping[str, MediaSource] | None = None,
        universal: MediaSource | None = None,
        *,
        state: PlaybackState | None = None,
        config_provider: Callable[[], SourceConfiguration] | None = None,
        polling: PollingConfig | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        settings = get_settings()
        self._sources = dict(sources) if sources is not None else build_sources(settings)
        self._universal = universal if universal is not None else build_universal_source(settings)
        self.state = state or PlaybackState()
        self._config_provider = config_provider or _configured_sources
        self._polling = polling or settings.polling

        self.artwork = ArtworkCache(
            self._all_sources,
            client=http_client,
            http_timeout=settings.artwork.http_timeout,
            max_entries=settings.artwork.max_entries,
            is_current=self._is_current_artwork,
        )

        self._executor: ThreadPoolExecutor | None = None
        self._cycle_lock = asyncio.Lock()
        self._running = False
        self._task: asyncio.Task | None = None
        self._in_cycle = False
        self._pending_refresh: float | None = None
        self._mode = RetrievalMode.PRIORITY_LIST
        self.last_delay: float | None = None

    @property
    def _all_sources(self) -> dict[str, MediaSource]:
        return {**self._sources, self._universal.name: self._universal}

    @property
    def sources(self) -> list[MediaSource]:
        return list(self._all_sources.values())

    @property
    def mode(self) -> RetrievalMode:
        return self._mode

    def _get_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="now-playing")
        return self._executor

    # --- lifecycle ---

    async def start(self):
        """Probe permissions once and start polling."""
        if self._running:
            return

        self._running = True
        loop = asyncio.get_running_loop()
        loop.run_in_executor(self._get_executor(), self._probe_permissions)
        self._schedule(0.0)
        logger.info(f"Poller started with sources: {[s.name for s in self.sources]}")

    async def stop(self):
        """Stop polling and release the worker and HTTP client."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        await self.artwork.aclose()
        if self._executor is not None:
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None
        logger.info("Poller stopped")

    def _probe_permissions(self) -> None:
        for source in self.sources:
            try:
                source.probe_permissions()
            except Exception as e:
                logger.debug(f"Permission probe for {source.name} failed: {e}")

    # --- scheduling ---

    def _schedule(self, delay: float) -> None:
        """Replace any pending poll with one that runs after ``delay``."""
        if not self._running:
            return
        current = asyncio.current_task()
        if self._task is not None and self._task is not current and not self._task.done():
            self._task.cancel()
        self._task = asyncio.create_task(self._run_after(delay))

    async def _run_after(self, delay: float):
        await asyncio.sleep(delay)
        self._in_cycle = True
        try:
            next_delay = await self.poll_once()
        except Exception as e:
            logger.error(f"Polling error: {e}")
            next_delay = self._polling.idle_interval
        finally:
            self._in_cycle = False

        if self._pending_refresh is not None:
            next_delay = min(next_delay, self._pending_refresh)
            self._pending_refresh = None
        self._schedule(next_delay)

    def request_refresh(self, delay: float = 0.0) -> None:
        """Poll again after ``delay`` instead of waiting for the next cycle."""
        if self._in_cycle:
            # Never interrupt a running cycle; it picks this up when done
            if self._pending_refresh is None or delay < self._pending_refresh:
                self._pending_refresh = delay
            return
        self._schedule(delay)

    def notify_config_changed(self) -> None:
        logger.info("Source configuration changed, re-polling")
        self.request_refresh(0.0)

    def next_delay(self, mode: RetrievalMode, is_playing: bool) -> float:
        """Poll quickly while something plays, back off while idle."""
        if is_playing:
            return self._polling.active_interval
        if mode is RetrievalMode.UNIVERSAL:
            return self._polling.universal_idle_interval
        return self._polling.idle_interval

    # --- one poll cycle ---

    def _read_configuration(self) -> SourceConfiguration:
        try:
            return self._config_provider()
        except Exception as e:
            logger.error(f"Could not read source configuration, using defaults: {e}")
            return SourceConfiguration()

    async def poll_once(self) -> float:
        """Run one full poll cycle and return the delay before the next one."""
        async with self._cycle_lock:
            config = self._read_configuration()
            if config.mode is not self._mode:
                logger.info(f"Retrieval mode is now '{config.mode.value}'")
            self._mode = config.mode

            snapshot = await self._poll_sources(config)
            if snapshot is None:
                await self._handle_exhausted()
            else:
                await self._handle_found(snapshot)

            delay = self.next_delay(config.mode, self.state.snapshot.is_playing)
            self.last_delay = delay
            return delay

    def _candidates(self, config: SourceConfiguration) -> list[MediaSource]:
        if config.mode is RetrievalMode.UNIVERSAL:
            return [self._universal]

        candidates = []
        for name in config.priority:
            if not config.is_enabled(name):
                continue
            source = self._sources.get(name)
            if source is None:
                logger.debug(f"No source registered for '{name}'")
                continue
            candidates.append(source)
        return candidates

    async def _poll_sources(self, config: SourceConfiguration) -> MediaSnapshot | None:
        """Ask sources in priority order; the first active one wins."""
        candidates = self._candidates(config)
        if not candidates:
            return None

        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._get_executor(), self._first_result, candidates)

    def _first_result(self, candidates: list[MediaSource]) -> MediaSnapshot | None:
        """Runs on the worker thread."""
        for source in candidates:
            snapshot = self._query(source)
            if snapshot is not None:
                return snapshot
        return None

    @staticmethod
    def _query(source: MediaSource) -> MediaSnapshot | None:
        try:
            reply = source.fetch()
            if reply is None:
                return None
            return normalize(reply, source.name)
        except AdapterError as e:
            logger.debug(f"{source.name} unavailable: {e}")
        except ParseError as e:
            logger.warning(f"Ignoring reply from {source.name}: {e}")
        except Exception as e:
            logger.error(f"Error polling {source.name}: {e}")
        return None

    async def _handle_found(self, snapshot: MediaSnapshot):
        previous = self.state.snapshot
        merged, action = merge(snapshot, previous)

        if action.kind is ArtworkActionKind.FETCH:
            entry = self.artwork.request(
                action.hint,
                action.cache_key,
                source=merged.source,
                on_ready=self._apply_artwork,
            )
            if entry is not None:
                merged = with_artwork(merged, entry)
        elif action.kind is ArtworkActionKind.INVALIDATE:
            self.artwork.cancel()

        if merged.artwork is not None and merged.artwork is snapshot.artwork:
            # Inline artwork adopted this cycle
            self.artwork.store(
                merged.artwork_key,
                ArtworkEntry(merged.artwork, merged.dominant_color, merged.gradient_palette),
            )

        if merged.identity != previous.identity:
            logger.info(f"Now playing: '{merged.title}' by '{merged.artist}' ({merged.source})")

        await self.state.update(merged)

    async def _handle_exhausted(self):
        if self.state.snapshot.is_idle:
            return
        logger.info("No active source, going idle")
        self.artwork.cancel()
        await self.state.update(MediaSnapshot.idle())

    # --- artwork ---

    def _is_current_artwork(self, cache_key: str) -> bool:
        return self.state.snapshot.artwork_key == cache_key

    async def _apply_artwork(self, cache_key: str, entry: ArtworkEntry):
        current = self.state.snapshot
        if current.artwork_key != cache_key:
            logger.debug(f"Artwork for '{cache_key}' arrived after the track changed")
            return
        await self.state.update(with_artwork(current, entry))

    # --- playback commands ---

    def _command_target(self, command: PlaybackCommand) -> MediaSource | None:
        if command.target:
            return self._all_sources.get(command.target)
        if self._mode is RetrievalMode.UNIVERSAL:
            return self._universal
        current = self.state.snapshot.source
        return self._sources.get(current) if current else None

    async def send_command(self, command: PlaybackCommand) -> bool:
        """Forward a command, then re-poll shortly to pick up its effect.

        Success is not verified; the return value only says whether the
        source accepted the request.
        """
        source = self._command_target(command)
        sent = False
        if source is None:
            logger.warning(f"No source to receive '{command.action.value}'")
        else:
            loop = asyncio.get_running_loop()
            try:
                await loop.run_in_executor(self._get_executor(), source.send, command)
                sent = True
            except Exception as e:
                logger.warning(f"'{command.action.value}' to {source.name} failed: {e}")

        self.request_refresh(self._polling.command_repoll_delay)
        return sent
