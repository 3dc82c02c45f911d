from __future__ import annotations

import asyncio
import logging
import os
from typing import Awaitable, Callable, Mapping, Optional, Sequence

from .logging_utils import log_event
from .utils import locate_runtime, runtime_env


class ProcessError(Exception):
    """An external command failed to spawn or exited non-zero."""

    def __init__(self, message: str, *, returncode: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.returncode = returncode


ProcessRunner = Callable[..., Awaitable[None]]


async def run_process(
    executable: str,
    args: Sequence[str],
    *,
    env: Optional[Mapping[str, str]] = None,
    logger: Optional[logging.Logger] = None,
) -> None:
    """
    Run ``executable`` with ``args`` to completion.

    stdin is closed, stdout is drained and discarded, stderr is collected.
    Returns on exit status 0 and raises ProcessError otherwise.
    """
    logger = logger or logging.getLogger(__name__)
    proc_env = runtime_env(env)
    resolved = locate_runtime(executable, proc_env)
    name = os.path.basename(executable) or executable
    try:
        process = await asyncio.create_subprocess_exec(
            resolved,
            *[str(arg) for arg in args],
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            env=proc_env,
        )
    except OSError as exc:
        log_event(
            logger,
            logging.WARNING,
            "game_host.process.spawn_failed",
            executable=executable,
            exc=exc,
        )
        raise ProcessError(f"{name} could not be started: {exc}") from exc

    _, stderr = await process.communicate()
    returncode = process.returncode
    if returncode == 0:
        return
    err = stderr.decode("utf-8", errors="replace").strip() if stderr else ""
    log_event(
        logger,
        logging.WARNING,
        "game_host.process.failed",
        executable=executable,
        command=args[0] if args else None,
        returncode=returncode,
        stderr=err[:2000] or None,
    )
    raise ProcessError(err or f"{name} failed (code {returncode})", returncode=returncode)


__all__ = ["ProcessError", "ProcessRunner", "run_process"]
