"""Apple Music and Spotify integrations via osascript."""

import logging
import re
import subprocess

from ..services.commands import PlaybackAction, PlaybackCommand
from ..services.normalizer import SECONDARY_QUERY_HINT, is_idle_reply
from .base import AdapterError, DelimitedReply, MediaSource

logger = logging.getLogger(__name__)

# osascript prints binary results as «data JPEG FFD8...»
_DATA_LITERAL = re.compile(r"«data [^\s»]{4}\s*([0-9A-Fa-f]*)»")


def run_osascript(script: str, timeout: float) -> str:
    """Run an AppleScript and return its stripped stdout.

    Raises:
        AdapterError: osascript is missing, timed out or exited non-zero.
    """
    try:
        result = subprocess.run(
            ["osascript", "-e", script],
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except FileNotFoundError as e:
        raise AdapterError("osascript not available") from e
    except subprocess.TimeoutExpired as e:
        raise AdapterError(f"osascript timed out after {timeout}s") from e

    if result.returncode != 0:
        raise AdapterError(f"osascript exited {result.returncode}: {result.stderr.strip()}")
    return result.stdout.strip()


def parse_data_literal(output: str) -> bytes | None:
    match = _DATA_LITERAL.search(output)
    if not match or not match.group(1):
        return None
    try:
        return bytes.fromhex(match.group(1))
    except ValueError:
        return None


class AppleScriptSource(MediaSource):
    """A desktop player queried through an embedded AppleScript."""

    application: str = ""
    display_name: str = ""
    status_script: str = ""

    def __init__(self, timeout: float = 3.0):
        self._timeout = timeout

    @property
    def name(self) -> str:
        return self.display_name

    @property
    def idle_titles(self) -> set[str]:
        return {"Not Playing", f"{self.application} not running"}

    def fetch(self) -> DelimitedReply | None:
        output = run_osascript(self.status_script, self._timeout)
        if not output or is_idle_reply(output, self.idle_titles):
            return None
        return DelimitedReply(output)

    def probe_permissions(self) -> None:
        logger.info(f"Checking automation permission for {self.application}...")
        try:
            run_osascript(f'tell application "{self.application}" to return version', self._timeout)
        except AdapterError as e:
            logger.info(f"{self.application} permission probe failed: {e}")

    def send(self, command: PlaybackCommand) -> None:
        if command.action is PlaybackAction.SEEK:
            statement = f"set player position to {command.position:.3f}"
        else:
            statement = {
                PlaybackAction.PLAY_PAUSE: "playpause",
                PlaybackAction.NEXT: "next track",
                PlaybackAction.PREVIOUS: "previous track",
            }[command.action]
        run_osascript(f'tell application "{self.application}" to {statement}', self._timeout)


class AppleMusicSource(AppleScriptSource):
    """Music.app. Artwork needs a second query, so replies carry a sentinel hint."""

    application = "Music"
    display_name = "Apple Music"
    status_script = f"""
    tell application "Music"
        if it is not running then
            return "false|Music not running|||0|0|"
        end if
        try
            if player state is stopped then
                return "false|Not Playing|||0|0|"
            end if
            set currentTrack to current track
            set trackTitle to name of currentTrack
            set trackArtist to artist of currentTrack
            set trackAlbum to album of currentTrack
            set playerPos to player position
            set trackDuration to duration of currentTrack
            if player state is playing then
                set isPlaying to "true"
            else
                set isPlaying to "false"
            end if
            return isPlaying & "|" & trackTitle & "|" & trackArtist & "|" & trackAlbum & "|" & playerPos & "|" & trackDuration & "|{SECONDARY_QUERY_HINT}"
        on error
            return "false|Not Playing|||0|0|"
        end try
    end tell
    """
    artwork_script = """
    tell application "Music"
        try
            set currentTrack to current track
            if (count of artworks of currentTrack) > 0 then
                return data of artwork 1 of currentTrack
            end if
        end try
    end tell
    return ""
    """

    def fetch_artwork(self) -> bytes | None:
        return parse_data_literal(run_osascript(self.artwork_script, self._timeout))


class SpotifySource(AppleScriptSource):
    """Spotify desktop client. Replies carry the artwork URL directly."""

    application = "Spotify"
    display_name = "Spotify"
    status_script = """
    if application "Spotify" is not running then
        return "false|Spotify not running|||0|0|"
    end if
    tell application "Spotify"
        try
            if player state is stopped then
                return "false|Not Playing|||0|0|"
            end if
            set trackTitle to name of current track
            set trackArtist to artist of current track
            set trackAlbum to album of current track
            set playerPos to player position
            set trackDuration to (duration of current track) / 1000.0
            set artURL to ""
            try
                set artURL to artwork url of current track
            end try
            if player state is playing then
                set isPlaying to "true"
            else
                set isPlaying to "false"
            end if
            return isPlaying & "|" & trackTitle & "|" & trackArtist & "|" & trackAlbum & "|" & playerPos & "|" & trackDuration & "|" & artURL
        on error
            return "false|Not Playing|||0|0|"
        end try
    end tell
    """
