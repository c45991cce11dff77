from __future__ import annotations

import asyncio
import os
import subprocess
import sys
from pathlib import Path

import pytest

from circuit_agent.lifecycle import ProcessLookupFailed, ProcessProbe
from circuit_agent.server import terminate_descendants


# Above the Linux pid_max ceiling, so never a live process.
_NO_SUCH_PID = 2**22 + 1


def test_parent_pid_is_os_parent() -> None:
    assert ProcessProbe().parent_pid() == os.getppid()


def test_parent_of_self() -> None:
    assert asyncio.run(ProcessProbe().parent_of(os.getpid())) == os.getppid()


def test_parent_of_missing_process_fails() -> None:
    with pytest.raises(ProcessLookupFailed) as ei:
        asyncio.run(ProcessProbe().parent_of(_NO_SUCH_PID))

    assert ei.value.pid == _NO_SUCH_PID


def test_stdin_valid_tracks_descriptor(tmp_path: Path) -> None:
    f = (tmp_path / "stdin").open("w", encoding="utf-8")
    fd = f.fileno()
    probe = ProcessProbe(stdin_fd=fd)

    assert probe.stdin_valid() is True
    f.close()
    assert probe.stdin_valid() is False


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX process tree")
def test_terminate_descendants_stops_children() -> None:
    child = subprocess.Popen([sys.executable, "-c", "import time; time.sleep(60)"])
    try:
        report = terminate_descendants(os.getpid(), timeout_s=5.0)
        assert report.found >= 1
        assert report.survivors == 0
        assert child.wait(timeout=5) is not None
    finally:
        if child.poll() is None:
            child.kill()
            child.wait()
