import sys
from pathlib import Path

import pytest

from game_session_host.process_runner import ProcessError, run_process


@pytest.mark.anyio
async def test_run_process_succeeds_on_exit_zero() -> None:
    await run_process(sys.executable, ["-c", "print('ignored stdout')"])


@pytest.mark.anyio
async def test_run_process_reports_trimmed_stderr() -> None:
    script = "import sys; sys.stderr.write('  no such image\\n'); sys.exit(3)"
    with pytest.raises(ProcessError) as excinfo:
        await run_process(sys.executable, ["-c", script])
    assert excinfo.value.message == "no such image"
    assert excinfo.value.returncode == 3


@pytest.mark.anyio
async def test_run_process_generic_message_without_stderr() -> None:
    with pytest.raises(ProcessError) as excinfo:
        await run_process(sys.executable, ["-c", "import sys; sys.exit(2)"])
    name = Path(sys.executable).name
    assert str(excinfo.value) == f"{name} failed (code 2)"
    assert excinfo.value.returncode == 2


@pytest.mark.anyio
async def test_run_process_spawn_failure(tmp_path: Path) -> None:
    missing = tmp_path / "does-not-exist"
    with pytest.raises(ProcessError) as excinfo:
        await run_process(str(missing), ["run"])
    assert excinfo.value.returncode is None
    assert "could not be started" in excinfo.value.message
