"""Find and kill agent processes left behind by dead hosts.

A matching process whose parent is the reaper (pid 1) is an ORPHAN; any other
match is ACTIVE and belongs to a live session. Orphans are killed; active
sessions only with ``force``.
"""

from __future__ import annotations

import os
import re
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Sequence

import psutil

from circuit_agent.observability.logging import get_logger


logger = get_logger(__name__)

_ATTRS = ["pid", "ppid", "name", "cmdline", "create_time"]


@dataclass(frozen=True, slots=True)
class ProcessEntry:
    pid: int
    ppid: int
    command: str
    elapsed_s: float

    def describe(self) -> str:
        return f"{self.pid:>7} {self.ppid:>7} {format_elapsed(self.elapsed_s):>11} {self.command}"


@dataclass(slots=True)
class CleanupSummary:
    orphans: list[ProcessEntry] = field(default_factory=list)
    active: list[ProcessEntry] = field(default_factory=list)
    killed: list[int] = field(default_factory=list)
    dry_run: bool = False


def format_elapsed(seconds: float) -> str:
    """Format like ps(1) etime: [[dd-]hh:]mm:ss."""

    total = max(0, int(seconds))
    days, rem = divmod(total, 86_400)
    hours, rem = divmod(rem, 3_600)
    minutes, secs = divmod(rem, 60)
    if days:
        return f"{days}-{hours:02d}:{minutes:02d}:{secs:02d}"
    if hours:
        return f"{hours:02d}:{minutes:02d}:{secs:02d}"
    return f"{minutes:02d}:{secs:02d}"


def find_processes(
    patterns: Iterable[str],
    *,
    exclude_pids: Iterable[int] = (),
    process_iter: Callable[..., Iterable[Any]] = psutil.process_iter,
    now: float | None = None,
) -> list[ProcessEntry]:
    """Return processes whose command line matches any of ``patterns`` (regex)."""

    compiled = [re.compile(p) for p in patterns]
    excluded = set(exclude_pids)
    ts = time.time() if now is None else now

    found: list[ProcessEntry] = []
    for proc in process_iter(_ATTRS):
        info = proc.info
        pid = info.get("pid")
        if pid is None or pid in excluded:
            continue
        cmdline = info.get("cmdline") or []
        command = " ".join(cmdline) if cmdline else str(info.get("name") or "")
        if not command or not any(rx.search(command) for rx in compiled):
            continue
        created = info.get("create_time")
        found.append(
            ProcessEntry(
                pid=int(pid),
                ppid=int(info.get("ppid") or 0),
                command=command,
                elapsed_s=(ts - float(created)) if created else 0.0,
            )
        )
    return found


def classify(entries: Iterable[ProcessEntry], *, reaper_pid: int = 1) -> tuple[list[ProcessEntry], list[ProcessEntry]]:
    orphans: list[ProcessEntry] = []
    active: list[ProcessEntry] = []
    for e in entries:
        (orphans if e.ppid == reaper_pid else active).append(e)
    return orphans, active


def kill_process(pid: int) -> bool:
    try:
        psutil.Process(pid).kill()
    except (psutil.NoSuchProcess, psutil.AccessDenied) as e:
        # Already gone, or not ours to kill.
        logger.debug("kill_skipped", pid=pid, error=type(e).__name__)
        return False
    return True


def cleanup_orphans(
    patterns: Sequence[str],
    *,
    dry_run: bool = False,
    force: bool = False,
    reaper_pid: int = 1,
    write: Callable[[str], object] = print,
    process_iter: Callable[..., Iterable[Any]] = psutil.process_iter,
    kill: Callable[[int], bool] = kill_process,
) -> CleanupSummary:
    summary = CleanupSummary(dry_run=dry_run)
    me = os.getpid()

    for pattern in patterns:
        entries = find_processes([pattern], exclude_pids=[me], process_iter=process_iter)
        if not entries:
            write(f"No processes found matching: {pattern}")
            continue

        orphans, active = classify(entries, reaper_pid=reaper_pid)
        for e in orphans:
            write(f"[ORPHAN]  {e.describe()}")
        for e in active:
            write(f"[ACTIVE]  {e.describe()}")
        summary.orphans.extend(orphans)
        summary.active.extend(active)

        targets = orphans + active if force else orphans
        if not targets:
            if active:
                write(f"\nNo orphans found. {len(active)} active session(s) preserved.")
                write("Use --force to kill active sessions (dangerous).")
            continue

        if dry_run:
            write(f"\n[DRY-RUN] Would kill {len(targets)} process(es)")
            continue

        for e in targets:
            if kill(e.pid):
                write(f"Killed PID {e.pid}")
                summary.killed.append(e.pid)

    write("\n--- Summary ---")
    write(f"Orphans (ppid={reaper_pid}): {len(summary.orphans)}")
    write(f"Active sessions:  {len(summary.active)}")
    if not dry_run:
        write(f"Total killed:     {len(summary.killed)}")
    return summary
