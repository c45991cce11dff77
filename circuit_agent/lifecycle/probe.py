from __future__ import annotations

import asyncio
import os
from typing import Protocol

import psutil

from circuit_agent.errors import AgentError


class ProcessLookupFailed(AgentError):
    """A process identity query did not produce an answer.

    The liveness detector reads this as "that process is gone".
    """

    def __init__(self, pid: int, reason: str):
        super().__init__(f"parent lookup for pid {pid} failed: {reason}")
        self.pid = pid
        self.reason = reason


class HostProbe(Protocol):
    def parent_pid(self) -> int: ...

    def stdin_valid(self) -> bool: ...

    async def parent_of(self, pid: int) -> int: ...


def _ppid_of(pid: int) -> int:
    return psutil.Process(pid).ppid()


class ProcessProbe:
    """Reads process identity and stdin descriptor state from the OS."""

    def __init__(self, *, query_timeout_s: float = 1.0, stdin_fd: int = 0) -> None:
        self._query_timeout_s = float(query_timeout_s)
        self._stdin_fd = stdin_fd

    def parent_pid(self) -> int:
        return os.getppid()

    def stdin_valid(self) -> bool:
        try:
            os.fstat(self._stdin_fd)
        except OSError:
            return False
        return True

    async def parent_of(self, pid: int) -> int:
        """Return the parent pid of ``pid``.

        Raises:
            ProcessLookupFailed: If the process is gone, inaccessible, or the
                query does not answer within the query timeout.
        """

        try:
            return await asyncio.wait_for(asyncio.to_thread(_ppid_of, pid), timeout=self._query_timeout_s)
        except TimeoutError as e:
            raise ProcessLookupFailed(pid, f"timed out after {self._query_timeout_s}s") from e
        except (psutil.Error, OSError) as e:
            raise ProcessLookupFailed(pid, str(e) or type(e).__name__) from e
