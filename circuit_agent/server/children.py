from __future__ import annotations

from dataclasses import asdict, dataclass

import psutil


@dataclass(frozen=True, slots=True)
class TerminationReport:
    found: int = 0
    terminated: int = 0
    killed: int = 0
    survivors: int = 0

    def as_dict(self) -> dict[str, int]:
        return asdict(self)


def terminate_descendants(pid: int, *, timeout_s: float = 3.0) -> TerminationReport:
    """Terminate every descendant of ``pid``: SIGTERM, wait, then SIGKILL.

    Blocking; run it in a worker thread from async code.
    """

    try:
        children = psutil.Process(pid).children(recursive=True)
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        return TerminationReport()
    if not children:
        return TerminationReport()

    for child in children:
        try:
            child.terminate()
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            pass

    gone, alive = psutil.wait_procs(children, timeout=timeout_s)

    for child in alive:
        try:
            child.kill()
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            pass
    still: list[psutil.Process] = []
    if alive:
        _, still = psutil.wait_procs(alive, timeout=1.0)

    return TerminationReport(
        found=len(children),
        terminated=len(gone),
        killed=len(alive) - len(still),
        survivors=len(still),
    )
