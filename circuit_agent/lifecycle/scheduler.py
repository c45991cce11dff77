"""Periodic job scheduling for the liveness detector.

The detector's light and heavy checks are two independent periodic jobs.
Production uses :class:`AsyncioScheduler`; tests inject a manual scheduler so
time is under their control.
"""

from __future__ import annotations

import asyncio
import inspect
from typing import Awaitable, Callable, Protocol

from circuit_agent.observability.logging import KVLogger, get_logger


PeriodicFn = Callable[[], "Awaitable[object] | object"]


class PeriodicHandle(Protocol):
    def cancel(self) -> None: ...

    @property
    def cancelled(self) -> bool: ...


class Scheduler(Protocol):
    def every(self, interval_s: float, fn: PeriodicFn, *, name: str) -> PeriodicHandle:
        """Run ``fn`` every ``interval_s`` seconds, first run after one interval."""
        ...


class _TaskHandle:
    def __init__(self, task: asyncio.Task[None]) -> None:
        self._task = task

    def cancel(self) -> None:
        self._task.cancel()

    @property
    def cancelled(self) -> bool:
        return self._task.cancelled() or self._task.done()


class CompositeHandle:
    """One handle over several periodic jobs; cancels them together."""

    def __init__(self, *handles: PeriodicHandle) -> None:
        self._handles = handles
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True
        for h in self._handles:
            h.cancel()

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class AsyncioScheduler:
    def __init__(self, loop: asyncio.AbstractEventLoop | None = None, *, logger: KVLogger | None = None) -> None:
        self._loop = loop
        self._log = logger or get_logger(__name__)

    def every(self, interval_s: float, fn: PeriodicFn, *, name: str) -> PeriodicHandle:
        if interval_s <= 0:
            raise ValueError("interval_s must be > 0")
        loop = self._loop or asyncio.get_running_loop()
        task = loop.create_task(self._run(float(interval_s), fn, name), name=name)
        return _TaskHandle(task)

    async def _run(self, interval_s: float, fn: PeriodicFn, name: str) -> None:
        while True:
            await asyncio.sleep(interval_s)
            try:
                result = fn()
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception:  # noqa: BLE001
                # A failing tick must not stop the job.
                self._log.exception("periodic_job_failed", job=name)
