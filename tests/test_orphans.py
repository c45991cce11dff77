from __future__ import annotations

import os
import time
from dataclasses import dataclass, field
from typing import Any

from circuit_agent.orphans import cleanup_orphans, classify, find_processes, format_elapsed


@dataclass(slots=True)
class FakeProc:
    info: dict[str, Any]


def _proc(pid: int, ppid: int, cmdline: list[str], *, age_s: float = 65.0) -> FakeProc:
    return FakeProc(
        info={
            "pid": pid,
            "ppid": ppid,
            "name": cmdline[0] if cmdline else "",
            "cmdline": cmdline,
            "create_time": time.time() - age_s,
        }
    )


@dataclass(slots=True)
class FakeTable:
    procs: list[FakeProc]
    killed: list[int] = field(default_factory=list)

    def process_iter(self, attrs: list[str]) -> list[FakeProc]:
        assert "ppid" in attrs
        return list(self.procs)

    def kill(self, pid: int) -> bool:
        self.killed.append(pid)
        return True


def _table() -> FakeTable:
    return FakeTable(
        procs=[
            _proc(10, 1, ["node", "/opt/circuit-agent/cli.js", "serve"]),
            _proc(11, 500, ["circuit-agent@0.1.0"]),
            _proc(12, 1, ["bash"]),
            _proc(os.getpid(), 1, ["circuit-agent", "cleanup"]),
            _proc(13, 1, ["/usr/lib/chromium/Chromium", "--remote-debugging-port=9222"]),
        ]
    )


def test_format_elapsed() -> None:
    assert format_elapsed(5) == "00:05"
    assert format_elapsed(65) == "01:05"
    assert format_elapsed(3600) == "01:00:00"
    assert format_elapsed(86_400 + 61) == "1-00:01:01"
    assert format_elapsed(-3) == "00:00"


def test_find_and_classify() -> None:
    table = _table()

    entries = find_processes(["circuit-agent"], exclude_pids=[os.getpid()], process_iter=table.process_iter)
    orphans, active = classify(entries)

    assert [e.pid for e in orphans] == [10]
    assert [e.pid for e in active] == [11]
    assert orphans[0].command == "node /opt/circuit-agent/cli.js serve"
    assert 60 <= orphans[0].elapsed_s < 120


def test_cleanup_kills_only_orphans() -> None:
    table = _table()
    lines: list[str] = []

    summary = cleanup_orphans(["circuit-agent"], write=lines.append, process_iter=table.process_iter, kill=table.kill)

    assert table.killed == [10]
    assert summary.killed == [10]
    assert "Killed PID 10" in lines
    assert any(line.startswith("[ORPHAN]") and " 10 " in line for line in lines)
    assert any(line.startswith("[ACTIVE]") and " 11 " in line for line in lines)
    assert "Total killed:     1" in lines


def test_cleanup_dry_run_kills_nothing() -> None:
    table = _table()
    lines: list[str] = []

    summary = cleanup_orphans(
        ["circuit-agent"], dry_run=True, write=lines.append, process_iter=table.process_iter, kill=table.kill
    )

    assert table.killed == []
    assert summary.dry_run is True
    assert "\n[DRY-RUN] Would kill 1 process(es)" in lines
    assert not any(line.startswith("Total killed") for line in lines)


def test_cleanup_force_includes_active_sessions() -> None:
    table = _table()

    summary = cleanup_orphans(
        ["circuit-agent"], force=True, write=lambda _: None, process_iter=table.process_iter, kill=table.kill
    )

    assert table.killed == [10, 11]
    assert len(summary.active) == 1


def test_cleanup_preserves_active_sessions_without_orphans() -> None:
    table = FakeTable(procs=[_proc(11, 500, ["circuit-agent@0.1.0"])])
    lines: list[str] = []

    cleanup_orphans(["circuit-agent"], write=lines.append, process_iter=table.process_iter, kill=table.kill)

    assert table.killed == []
    assert "\nNo orphans found. 1 active session(s) preserved." in lines


def test_cleanup_reports_patterns_without_matches() -> None:
    table = _table()
    lines: list[str] = []

    cleanup_orphans(
        ["circuit-agent", "Chromium.*--remote-debugging", "no-such-thing"],
        write=lines.append,
        process_iter=table.process_iter,
        kill=table.kill,
    )

    assert table.killed == [10, 13]
    assert "No processes found matching: no-such-thing" in lines
    assert "Orphans (ppid=1): 2" in lines
