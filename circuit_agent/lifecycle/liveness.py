"""Liveness detector: is the host that launched us still there?

Two periodic checks, scheduled independently:

- light tick (every tick interval): direct parent is the reaper, then stdin
  descriptor validity. Both are effectively free.
- heavy tick (every ``heavy_check_every`` tick intervals): the direct parent's
  own parent is the reaper, i.e. an intermediary launcher was orphaned. This
  needs a process-table query, so it runs less often and under its own
  timeout.

Every check stops at the first positive detection and reports it through the
``request_shutdown`` callback with exit code 0.
"""

from __future__ import annotations

from typing import Callable

from circuit_agent.lifecycle.probe import HostProbe, ProcessLookupFailed
from circuit_agent.observability.logging import KVLogger, get_logger


PARENT_EXITED = "parent exited"
STDIN_DISCONNECTED = "stdin disconnected"
PARENT_ORPHANED = "parent orphaned"


class LivenessDetector:
    def __init__(
        self,
        probe: HostProbe,
        *,
        request_shutdown: Callable[[int, str], None],
        is_shutting_down: Callable[[], bool],
        reaper_pid: int = 1,
        logger: KVLogger | None = None,
    ) -> None:
        self._probe = probe
        self._request_shutdown = request_shutdown
        self._is_shutting_down = is_shutting_down
        self._reaper_pid = int(reaper_pid)
        self._log = logger or get_logger(__name__)

        self.light_ticks = 0
        self.heavy_ticks = 0

    def _trigger(self, reason: str, **fields: object) -> str:
        self._log.warning("host_gone", reason=reason, **fields)
        self._request_shutdown(0, reason)
        return reason

    def light_tick(self) -> str | None:
        """Run the cheap checks. Returns the shutdown reason raised, if any."""

        if self._is_shutting_down():
            return None
        self.light_ticks += 1

        ppid = self._probe.parent_pid()
        if ppid == self._reaper_pid:
            return self._trigger(PARENT_EXITED, ppid=ppid)

        if not self._probe.stdin_valid():
            return self._trigger(STDIN_DISCONNECTED)

        return None

    async def heavy_tick(self) -> str | None:
        """Check whether our parent has itself been orphaned."""

        if self._is_shutting_down():
            return None
        self.heavy_ticks += 1

        ppid = self._probe.parent_pid()
        if ppid <= 1 or ppid == self._reaper_pid:
            # Direct-parent case; the light tick owns it.
            return None

        try:
            grandparent = await self._probe.parent_of(ppid)
        except ProcessLookupFailed as e:
            # A failed lookup almost always means the parent is gone.
            if self._is_shutting_down():
                return None
            return self._trigger(PARENT_ORPHANED, ppid=ppid, lookup_error=e.reason)

        if self._is_shutting_down():
            return None
        if grandparent == self._reaper_pid:
            return self._trigger(PARENT_ORPHANED, ppid=ppid, grandparent_pid=grandparent)

        self._log.debug("heavy_check_ok", ppid=ppid, grandparent_pid=grandparent)
        return None
