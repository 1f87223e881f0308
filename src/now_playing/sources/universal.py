"""System-wide now playing via an external MediaRemote helper.

The helper is a script run by an interpreter (``perl mediaremote-adapter.pl
<framework> get``) that prints one JSON object describing whatever the OS
considers the active media session, regardless of which app plays it.
"""

import json
import logging
import subprocess
import time
from datetime import datetime
from pathlib import Path

from ..services.commands import PlaybackAction, PlaybackCommand
from .base import AdapterError, JsonReply, MediaSource

logger = logging.getLogger(__name__)

# MediaRemote command identifiers understood by the helper's "send" verb
_COMMAND_IDS = {
    PlaybackAction.PLAY_PAUSE: 2,
    PlaybackAction.NEXT: 4,
    PlaybackAction.PREVIOUS: 5,
}


def estimate_position(
    elapsed: float, timestamp: float | None, playing: bool, now: float
) -> float:
    """Extrapolate the reported position to ``now``.

    ``elapsed`` was measured at ``timestamp``; while playing, the position
    kept advancing during the time it took us to poll.
    """
    if not playing or timestamp is None:
        return elapsed
    return elapsed + (now - timestamp)


def _parse_timestamp(value) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str) and value:
        try:
            return float(value)
        except ValueError:
            pass
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00")).timestamp()
        except ValueError:
            logger.debug(f"Unparsable helper timestamp: {value!r}")
    return None


def _parse_seconds(value) -> float:
    if isinstance(value, bool):
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


class UniversalSource(MediaSource):
    """Universal media source backed by the MediaRemote helper."""

    def __init__(
        self,
        interpreter: str = "/usr/bin/perl",
        script: str = "",
        framework: str = "",
        timeout: float = 3.0,
    ):
        self._interpreter = interpreter
        self._script = Path(script).expanduser() if script else None
        self._framework = Path(framework).expanduser() if framework else None
        self._timeout = timeout

    @property
    def name(self) -> str:
        return "System"

    def _command(self, *args: str) -> list[str]:
        cmd = [self._interpreter]
        if self._script is not None:
            cmd.append(str(self._script))
        if self._framework is not None:
            cmd.append(str(self._framework))
        cmd.extend(args)
        return cmd

    def _run(self, *args: str) -> subprocess.CompletedProcess:
        try:
            return subprocess.run(
                self._command(*args),
                capture_output=True,
                timeout=self._timeout,
            )
        except FileNotFoundError as e:
            raise AdapterError(f"media helper not found: {self._interpreter}") from e
        except subprocess.TimeoutExpired as e:
            raise AdapterError(f"media helper timed out after {self._timeout}s") from e

    def fetch(self) -> JsonReply | None:
        result = self._run("get")
        if result.returncode != 0:
            logger.debug(f"Media helper exited {result.returncode}")
            return None

        try:
            payload = json.loads(result.stdout.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.debug(f"Media helper output is not JSON: {e}")
            return None

        if not isinstance(payload, dict) or not payload.get("title"):
            return None

        playing = bool(payload.get("playing", False))
        position = estimate_position(
            _parse_seconds(payload.get("elapsedTime")),
            _parse_timestamp(payload.get("timestamp")),
            playing,
            time.time(),
        )
        return JsonReply(payload, estimated_position=position)

    def send(self, command: PlaybackCommand) -> None:
        if command.action is PlaybackAction.SEEK:
            args = ("seek", str(int(command.position * 1_000_000)))
        else:
            args = ("send", str(_COMMAND_IDS[command.action]))
        result = self._run(*args)
        if result.returncode != 0:
            raise AdapterError(f"media helper rejected {command.action.value}")
