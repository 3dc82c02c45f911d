from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import dataclass
from typing import Callable, Mapping, Optional, Sequence

from .join_code import is_relay_join_code
from .logging_utils import log_event
from .utils import locate_runtime, runtime_env

RELAY_JOIN_CODE_EVENT = "relay_join_code"
_TEXT_JOIN_CODE_RE = re.compile(
    r"Relay\s+Join\s+Code\s*:\s*([A-Z0-9]{6,12})\b", re.IGNORECASE
)
# Game servers can dump large JSON blobs on one line.
_STREAM_LIMIT = 1024 * 1024
_TERMINATE_GRACE_SECONDS = 5.0


class LogScanError(Exception):
    """The log stream produced no usable join code."""


class LogScanTimeoutError(LogScanError):
    def __init__(self, timeout_ms: int) -> None:
        super().__init__(
            f"Timed out after {timeout_ms}ms waiting for join code in container logs"
        )
        self.timeout_ms = timeout_ms


@dataclass(frozen=True)
class LogEvent:
    join_code: str
    raw_line: str
    source: str


Detector = Callable[[str], Optional[LogEvent]]


def detect_structured_join_code(line: str) -> Optional[LogEvent]:
    """Match ``{"event": "relay_join_code", "joinCode": "..."}`` lines."""
    stripped = line.strip()
    if not stripped.startswith("{"):
        return None
    try:
        payload = json.loads(stripped)
    except (json.JSONDecodeError, ValueError):
        return None
    if not isinstance(payload, dict) or payload.get("event") != RELAY_JOIN_CODE_EVENT:
        return None
    raw_code = payload.get("joinCode") or payload.get("join_code")
    if raw_code is None:
        return None
    code = str(raw_code).strip().upper()
    if not is_relay_join_code(code):
        return None
    return LogEvent(join_code=code, raw_line=line, source="structured")


def detect_text_join_code(line: str) -> Optional[LogEvent]:
    """Match human-readable ``Relay Join Code: ABC123`` lines."""
    match = _TEXT_JOIN_CODE_RE.search(line)
    if not match:
        return None
    return LogEvent(join_code=match.group(1).upper(), raw_line=line, source="text")


DEFAULT_DETECTORS: tuple[Detector, ...] = (
    detect_structured_join_code,
    detect_text_join_code,
)


def match_line(line: str, detectors: Sequence[Detector] = DEFAULT_DETECTORS) -> Optional[LogEvent]:
    for detector in detectors:
        event = detector(line)
        if event is not None:
            return event
    return None


def log_follow_command(runtime: str, container_name: str) -> list[str]:
    return [runtime, "logs", "-f", container_name]


async def _read_until_match(
    stream: asyncio.StreamReader, detectors: Sequence[Detector]
) -> LogEvent:
    while True:
        try:
            line = await stream.readline()
        except ValueError:
            # Oversized line; the reader already discarded it.
            continue
        if not line:
            # Follow process exited without a match; the deadline decides.
            await asyncio.Event().wait()
        decoded = line.decode("utf-8", errors="ignore").rstrip("\r\n")
        if not decoded:
            continue
        event = match_line(decoded, detectors)
        if event is not None:
            return event


async def _terminate(process: asyncio.subprocess.Process) -> None:
    if process.returncode is not None:
        return
    try:
        process.terminate()
    except ProcessLookupError:
        return
    try:
        await asyncio.wait_for(process.wait(), timeout=_TERMINATE_GRACE_SECONDS)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()


async def scan_for_event(
    command: Sequence[str],
    *,
    timeout_ms: int,
    detectors: Sequence[Detector] = DEFAULT_DETECTORS,
    env: Optional[Mapping[str, str]] = None,
    logger: Optional[logging.Logger] = None,
) -> LogEvent:
    """
    Follow a log stream and return the first line any detector accepts.

    ``command`` is the full log-follow invocation, e.g. ``docker logs -f NAME``.
    stdout and stderr are merged; lines no detector recognizes are skipped.
    The follow process is terminated before this returns, on success, timeout
    or cancellation alike.
    """
    logger = logger or logging.getLogger(__name__)
    if not command:
        raise LogScanError("empty log-follow command")
    proc_env = runtime_env(env)
    executable = locate_runtime(command[0], proc_env)
    try:
        process = await asyncio.create_subprocess_exec(
            executable,
            *[str(arg) for arg in command[1:]],
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            env=proc_env,
            limit=_STREAM_LIMIT,
        )
    except OSError as exc:
        raise LogScanError(f"Could not follow logs with {command[0]}: {exc}") from exc

    assert process.stdout is not None
    try:
        event = await asyncio.wait_for(
            _read_until_match(process.stdout, detectors),
            timeout=timeout_ms / 1000.0,
        )
    except asyncio.TimeoutError:
        log_event(
            logger,
            logging.WARNING,
            "game_host.logs.timeout",
            command=" ".join(command),
            timeout_ms=timeout_ms,
        )
        raise LogScanTimeoutError(timeout_ms) from None
    finally:
        await _terminate(process)
    log_event(
        logger,
        logging.INFO,
        "game_host.logs.join_code",
        command=" ".join(command),
        source=event.source,
        join_code=event.join_code,
    )
    return event


__all__ = [
    "DEFAULT_DETECTORS",
    "Detector",
    "LogEvent",
    "LogScanError",
    "LogScanTimeoutError",
    "RELAY_JOIN_CODE_EVENT",
    "detect_structured_join_code",
    "detect_text_join_code",
    "log_follow_command",
    "match_line",
    "scan_for_event",
]
