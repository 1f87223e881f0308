"""Application configuration using TOML + environment variables."""

import logging
import os
import tomllib
from dataclasses import dataclass, field, fields
from enum import Enum
from pathlib import Path
from typing import Self

from dotenv import load_dotenv

# Load .env file for overrides
load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_PLAYER_ORDER = ["Apple Music", "Spotify", "Foobar2000"]


class RetrievalMode(str, Enum):
    """Where now-playing information is read from."""

    PRIORITY_LIST = "priority"  # specific player integrations, in priority order
    UNIVERSAL = "universal"  # system-wide media helper


@dataclass(frozen=True)
class SourceConfiguration:
    """Immutable snapshot of source settings, read at the top of each poll."""

    priority: tuple[str, ...] = ()
    enabled: frozenset[str] = frozenset()
    mode: RetrievalMode = RetrievalMode.PRIORITY_LIST

    def is_enabled(self, name: str) -> bool:
        return name in self.enabled


@dataclass
class ServerConfig:
    """Server settings."""

    host: str = "127.0.0.1"
    port: int = 5175
    debug: bool = False


@dataclass
class PollingConfig:
    """Polling settings."""

    active_interval: float = 1.0
    idle_interval: float = 2.0
    # The universal helper is cheap to poll but rarely changes while idle
    universal_idle_interval: float = 5.0
    command_repoll_delay: float = 0.5


@dataclass
class SourcesConfig:
    """Player priority and retrieval mode."""

    mode: str = RetrievalMode.PRIORITY_LIST.value
    priority: list[str] = field(default_factory=lambda: list(DEFAULT_PLAYER_ORDER))
    disabled: list[str] = field(default_factory=list)

    def to_configuration(self) -> SourceConfiguration:
        """Freeze into the value the scheduler consumes."""
        try:
            mode = RetrievalMode(self.mode)
        except ValueError:
            logger.warning(f"Unknown retrieval mode '{self.mode}', using priority list")
            mode = RetrievalMode.PRIORITY_LIST
        disabled = set(self.disabled)
        return SourceConfiguration(
            priority=tuple(self.priority),
            enabled=frozenset(name for name in self.priority if name not in disabled),
            mode=mode,
        )


@dataclass
class AppleScriptConfig:
    """osascript settings for Apple Music and Spotify."""

    timeout: float = 3.0


@dataclass
class FoobarConfig:
    """foobar2000 now-playing file location."""

    cache_dir: str = "~/Library/Caches"


@dataclass
class UniversalConfig:
    """System media helper (interpreter + script) settings."""

    interpreter: str = "/usr/bin/perl"
    script: str = "~/Library/Application Support/NowPlaying/mediaremote-adapter.pl"
    framework: str = "~/Library/Application Support/NowPlaying/MediaRemoteAdapter.framework"
    timeout: float = 3.0


@dataclass
class ArtworkConfig:
    """Artwork fetching settings."""

    http_timeout: float = 10.0
    max_entries: int = 0  # 0 keeps every entry for the process lifetime


def _section(cls, data: dict, name: str):
    """Build a config section, ignoring keys the dataclass doesn't know."""
    raw = data.get(name, {})
    known = {f.name for f in fields(cls)}
    unknown = set(raw) - known
    if unknown:
        logger.warning(f"Ignoring unknown [{name}] settings: {sorted(unknown)}")
    return cls(**{k: v for k, v in raw.items() if k in known})


@dataclass
class Settings:
    """Application settings loaded from config.toml and environment."""

    server: ServerConfig = field(default_factory=ServerConfig)
    polling: PollingConfig = field(default_factory=PollingConfig)
    sources: SourcesConfig = field(default_factory=SourcesConfig)
    applescript: AppleScriptConfig = field(default_factory=AppleScriptConfig)
    foobar: FoobarConfig = field(default_factory=FoobarConfig)
    universal: UniversalConfig = field(default_factory=UniversalConfig)
    artwork: ArtworkConfig = field(default_factory=ArtworkConfig)

    @classmethod
    def load(cls, config_path: Path | None = None) -> Self:
        """Load settings from config.toml file."""
        if config_path is None:
            env_path = os.getenv("NOW_PLAYING_CONFIG")
            if env_path:
                config_path = Path(env_path)
            else:
                # Look for config.toml in current directory or project root
                config_path = Path("config.toml")
                if not config_path.exists():
                    config_path = Path(__file__).parent.parent.parent / "config.toml"

        data = {}
        if config_path.exists():
            try:
                with open(config_path, "rb") as f:
                    data = tomllib.load(f)
            except (OSError, tomllib.TOMLDecodeError) as e:
                logger.error(f"Could not read {config_path}, using defaults: {e}")

        settings = cls(
            server=_section(ServerConfig, data, "server"),
            polling=_section(PollingConfig, data, "polling"),
            sources=_section(SourcesConfig, data, "sources"),
            applescript=_section(AppleScriptConfig, data, "applescript"),
            foobar=_section(FoobarConfig, data, "foobar"),
            universal=_section(UniversalConfig, data, "universal"),
            artwork=_section(ArtworkConfig, data, "artwork"),
        )

        # Environment wins over the file
        mode = os.getenv("NOW_PLAYING_MODE")
        if mode:
            settings.sources.mode = mode

        return settings


# Global settings instance - loaded lazily
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings.load()
    return _settings


def set_settings(settings: Settings) -> None:
    """Replace the global settings (CLI overrides, reloads)."""
    global _settings
    _settings = settings
