"""Shutdown coordinator: the single funnel for every shutdown trigger.

Contract:
- ``shutdown(code, reason)`` runs its body at most once per process. Later
  calls, from any thread, are dropped without side effects.
- The external cleanup is raced against a fixed deadline. Whichever settles
  first wins; the exit code is always the caller's, never cleanup's.
- After the race (and a short flush delay) the process is terminated
  unconditionally.
"""

from __future__ import annotations

import asyncio
import inspect
import os
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable

from circuit_agent.config.model import LifecycleConfig
from circuit_agent.lifecycle.scheduler import PeriodicHandle
from circuit_agent.observability.logging import KVLogger, flush_logging, get_logger


CleanupFn = Callable[[], "Awaitable[object] | object"]
ShutdownHook = Callable[[int, "str | None"], None]
Terminator = Callable[[int], None]


class LifecycleState(str, Enum):
    IDLE = "idle"
    ARMING = "arming"
    ARMED = "armed"
    SHUTTING_DOWN = "shutting_down"
    TERMINATED = "terminated"


class CleanupOutcome(str, Enum):
    OK = "ok"
    ERROR = "error"
    TIMEOUT = "timeout"


@dataclass(frozen=True, slots=True)
class ShutdownRequest:
    exit_code: int
    reason: str | None = None


def exit_process(code: int) -> None:
    # os._exit: an abandoned cleanup task or a non-daemon thread must not be
    # able to keep the process alive.
    os._exit(code)


class ShutdownCoordinator:
    def __init__(
        self,
        cleanup: CleanupFn,
        *,
        config: LifecycleConfig | None = None,
        on_shutdown: ShutdownHook | None = None,
        terminate: Terminator | None = None,
        logger: KVLogger | None = None,
    ) -> None:
        self._cleanup = cleanup
        self._config = config or LifecycleConfig()
        self._on_shutdown = on_shutdown
        self._terminate = terminate or exit_process
        self._log = logger or get_logger(__name__, prefix=self._config.log_prefix)

        self._lock = threading.Lock()
        self._shutting_down = False
        self._state = LifecycleState.IDLE
        self._watcher: PeriodicHandle | None = None

        self._request: ShutdownRequest | None = None
        self._outcome: CleanupOutcome | None = None

        self._loop: asyncio.AbstractEventLoop | None = None
        self._tasks: set[asyncio.Task[None]] = set()
        self._terminated = asyncio.Event()

    # -- observers -------------------------------------------------------

    @property
    def shutting_down(self) -> bool:
        return self._shutting_down

    @property
    def state(self) -> LifecycleState:
        return self._state

    @property
    def armed(self) -> bool:
        return self._watcher is not None

    @property
    def request(self) -> ShutdownRequest | None:
        """The shutdown request that won, if any."""

        return self._request

    @property
    def outcome(self) -> CleanupOutcome | None:
        return self._outcome

    def bind_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        """Bind the loop that off-thread shutdown requests are scheduled onto."""

        self._loop = loop

    # -- watcher ownership ----------------------------------------------

    def arm(self, start_watcher: Callable[[], PeriodicHandle]) -> bool:
        """Install the recurring watcher unless one exists or shutdown began.

        Returns True only when this call created the watcher.
        """

        with self._lock:
            if self._shutting_down or self._watcher is not None or self._state is LifecycleState.ARMING:
                return False
            self._state = LifecycleState.ARMING

        try:
            handle = start_watcher()
        except BaseException:
            with self._lock:
                if self._state is LifecycleState.ARMING:
                    self._state = LifecycleState.IDLE
            raise

        with self._lock:
            lost_race = self._shutting_down
            if not lost_race:
                self._watcher = handle
                self._state = LifecycleState.ARMED

        if lost_race:
            handle.cancel()
            return False
        return True

    def disarm(self) -> None:
        """Cancel the watcher without touching the shutdown flag."""

        with self._lock:
            watcher, self._watcher = self._watcher, None
            if watcher is not None and self._state is LifecycleState.ARMED:
                self._state = LifecycleState.IDLE
        if watcher is not None:
            watcher.cancel()
            self._log.debug("parent_watcher_disarmed")

    # -- shutdown --------------------------------------------------------

    def _begin(self, code: int, reason: str | None) -> tuple[bool, PeriodicHandle | None]:
        # The compare-and-set that makes shutdown at-most-once.
        with self._lock:
            if self._shutting_down:
                return False, None
            self._shutting_down = True
            self._state = LifecycleState.SHUTTING_DOWN
            self._request = ShutdownRequest(exit_code=code, reason=reason)
            watcher, self._watcher = self._watcher, None
        return True, watcher

    async def shutdown(self, code: int, reason: str | None = None) -> None:
        began, watcher = self._begin(code, reason)
        if not began:
            self._log.debug("shutdown_ignored", exit_code=code, reason=reason)
            return

        if reason:
            self._log.info("shutdown_begin", exit_code=code, reason=reason)

        if watcher is not None:
            watcher.cancel()

        if self._on_shutdown is not None:
            try:
                self._on_shutdown(code, reason)
            except Exception:  # noqa: BLE001
                self._log.exception("on_shutdown_hook_failed")

        self._outcome = await self._race_cleanup()

        if self._config.flush_delay_s > 0:
            await asyncio.sleep(self._config.flush_delay_s)

        self._state = LifecycleState.TERMINATED
        self._log.info("process_exit", exit_code=code, cleanup=self._outcome.value)
        flush_logging()
        self._terminated.set()
        self._terminate(code)

    async def _invoke_cleanup(self) -> object:
        if inspect.iscoroutinefunction(self._cleanup):
            return await self._cleanup()

        # Sync cleanups run in a worker thread; the loop must stay free for the deadline.
        result = await asyncio.to_thread(self._cleanup)
        if inspect.isawaitable(result):
            return await result
        return result

    async def _race_cleanup(self) -> CleanupOutcome:
        timeout_s = self._config.cleanup_timeout_s
        task = asyncio.ensure_future(self._invoke_cleanup())

        done, _ = await asyncio.wait({task}, timeout=timeout_s)
        if not done:
            # The loser is cancelled and never awaited again.
            task.cancel()
            self._log.error("cleanup_timeout", timeout_s=timeout_s)
            return CleanupOutcome.TIMEOUT

        if task.cancelled():
            self._log.error("cleanup_failed", error="cleanup was cancelled")
            return CleanupOutcome.ERROR

        exc = task.exception()
        if exc is not None:
            self._log.error("cleanup_failed", error=str(exc), exc_info=exc)
            return CleanupOutcome.ERROR

        self._log.info("cleanup_complete")
        return CleanupOutcome.OK

    def request_shutdown(self, code: int, reason: str | None = None) -> None:
        """Fire-and-forget shutdown, callable from any thread or callback."""

        if self._shutting_down:
            return

        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        if running is not None and (self._loop is None or running is self._loop):
            self._spawn(code, reason)
            return

        loop = self._loop
        if loop is not None and not loop.is_closed():
            loop.call_soon_threadsafe(self._spawn, code, reason)
            return

        # No loop to schedule onto: run the sequence right here.
        asyncio.run(self.shutdown(code, reason))

    def _spawn(self, code: int, reason: str | None) -> None:
        task = asyncio.get_running_loop().create_task(self.shutdown(code, reason), name="lifecycle-shutdown")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def wait_terminated(self) -> None:
        """Wait until the termination step has run (used when terminate returns)."""

        await self._terminated.wait()
