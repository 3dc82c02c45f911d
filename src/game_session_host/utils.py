import os
import shutil
from pathlib import Path
from typing import Dict, Mapping, Optional

# Service managers (launchd, systemd units) start us with a PATH that often
# misses where Docker Desktop and rootless podman put their CLIs.
_RUNTIME_INSTALL_DIRS = (
    "/opt/homebrew/bin",
    "/usr/local/bin",
    "/Applications/Docker.app/Contents/Resources/bin",
    "~/.docker/bin",
    "~/.local/bin",
)


def runtime_search_path(path: Optional[str]) -> str:
    """``path`` with known runtime install dirs appended; existing entries win."""
    entries = [entry for entry in (path or "").split(os.pathsep) if entry]
    for raw in _RUNTIME_INSTALL_DIRS:
        candidate = os.path.expanduser(raw)
        if candidate not in entries and os.path.isdir(candidate):
            entries.append(candidate)
    return os.pathsep.join(entries)


def runtime_env(base_env: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    env = dict(os.environ if base_env is None else base_env)
    env["PATH"] = runtime_search_path(env.get("PATH"))
    return env


def locate_runtime(runtime: str, env: Mapping[str, str]) -> str:
    """
    Absolute path of the runtime CLI. A configured path is used as given;
    a bare name is looked up on ``env["PATH"]`` and returned unchanged when
    nothing matches, so spawning reports the real error.
    """
    if os.path.sep in runtime or (os.path.altsep and os.path.altsep in runtime):
        return str(Path(runtime).expanduser())
    return shutil.which(runtime, path=env.get("PATH")) or runtime


def strip_trailing_slashes(value: Optional[str]) -> str:
    return (value or "").strip().rstrip("/")
