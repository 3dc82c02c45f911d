"""Test harness configuration.

This repo uses a `src/` layout. Ensure tests always import the in-repo code
even when an older installed `game_session_host` is on the path.
"""

from __future__ import annotations

import json
import stat
import sys
from pathlib import Path
from typing import Any, Callable, Optional

import pytest


def pytest_configure() -> None:
    repo_root = Path(__file__).resolve().parents[1]
    src_dir = repo_root / "src"
    src_path = str(src_dir)
    if sys.path[:1] != [src_path] and src_path not in sys.path:
        sys.path.insert(0, src_path)


@pytest.fixture(autouse=True)
def _clean_host_env(monkeypatch: pytest.MonkeyPatch) -> None:
    import os

    for key in list(os.environ):
        if key.startswith("GAME_HOST_") or key.startswith("FAKE_RUNTIME_"):
            monkeypatch.delenv(key, raising=False)


@pytest.fixture()
def make_config(tmp_path: Path) -> Callable[..., Any]:
    """Build a HostConfig from a raw mapping without reading the process env."""
    from game_session_host.config import HostConfig

    def _make(raw: Optional[dict[str, Any]] = None, **local: Any):
        data: dict[str, Any] = dict(raw or {})
        if local:
            data["local"] = {**data.get("local", {}), **local}
        data.setdefault("log", {"path": "logs/host.log"})
        return HostConfig.from_raw(data, env={}, root=tmp_path)

    return _make


_FAKE_RUNTIME = '''#!{python}
"""Stand-in for a container runtime CLI used by the tests."""
import json
import os
import sys
import time

calls = os.environ.get("FAKE_RUNTIME_CALLS")
if calls:
    with open(calls, "a", encoding="utf-8") as f:
        f.write(json.dumps(sys.argv[1:]) + "\\n")

command = sys.argv[1] if len(sys.argv) > 1 else ""
if command == "run":
    code = int(os.environ.get("FAKE_RUNTIME_RUN_EXIT", "0"))
    if code:
        sys.stderr.write(os.environ.get("FAKE_RUNTIME_RUN_STDERR", ""))
        sys.exit(code)
    print("0123456789abcdef")
elif command == "logs":
    pid_file = os.environ.get("FAKE_RUNTIME_LOGS_PID")
    if pid_file:
        with open(pid_file, "w", encoding="utf-8") as f:
            f.write(str(os.getpid()))
    for line in json.loads(os.environ.get("FAKE_RUNTIME_LOG_LINES", "[]")):
        print(line, flush=True)
    if os.environ.get("FAKE_RUNTIME_LOGS_HANG") == "1":
        time.sleep(60)
elif command == "rm":
    code = int(os.environ.get("FAKE_RUNTIME_RM_EXIT", "0"))
    if code:
        sys.stderr.write("Error: No such container: " + sys.argv[-1] + "\\n")
        sys.exit(code)
    print(sys.argv[-1])
else:
    sys.stderr.write("unknown command\\n")
    sys.exit(64)
'''


class FakeRuntime:
    def __init__(self, path: Path, calls_path: Path, pid_path: Path, monkeypatch):
        self.path = path
        self.calls_path = calls_path
        self.pid_path = pid_path
        self._monkeypatch = monkeypatch
        monkeypatch.setenv("FAKE_RUNTIME_CALLS", str(calls_path))
        monkeypatch.setenv("FAKE_RUNTIME_LOGS_PID", str(pid_path))

    def emit(self, *lines: str, hang: bool = False) -> None:
        self._monkeypatch.setenv("FAKE_RUNTIME_LOG_LINES", json.dumps(list(lines)))
        if hang:
            self._monkeypatch.setenv("FAKE_RUNTIME_LOGS_HANG", "1")

    def fail_run(self, stderr: str, code: int = 125) -> None:
        self._monkeypatch.setenv("FAKE_RUNTIME_RUN_EXIT", str(code))
        self._monkeypatch.setenv("FAKE_RUNTIME_RUN_STDERR", stderr)

    def fail_rm(self, code: int = 1) -> None:
        self._monkeypatch.setenv("FAKE_RUNTIME_RM_EXIT", str(code))

    def calls(self) -> list[list[str]]:
        if not self.calls_path.exists():
            return []
        return [
            json.loads(line)
            for line in self.calls_path.read_text(encoding="utf-8").splitlines()
            if line
        ]

    def logs_pid(self) -> Optional[int]:
        if not self.pid_path.exists():
            return None
        return int(self.pid_path.read_text(encoding="utf-8"))


@pytest.fixture()
def fake_runtime(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> FakeRuntime:
    script = tmp_path / "bin" / "fake-runtime"
    script.parent.mkdir()
    script.write_text(_FAKE_RUNTIME.format(python=sys.executable), encoding="utf-8")
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return FakeRuntime(script, tmp_path / "calls.jsonl", tmp_path / "logs.pid", monkeypatch)


@pytest.fixture()
def anyio_backend() -> str:
    # The implementation uses asyncio subprocess APIs directly.
    return "asyncio"
