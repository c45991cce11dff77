from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable

import pytest


@dataclass(slots=True)
class ManualHandle:
    cancelled: bool = False

    def cancel(self) -> None:
        self.cancelled = True


@dataclass(slots=True)
class ManualJob:
    interval_s: float
    fn: Callable[[], Any]
    name: str
    handle: ManualHandle


@dataclass(slots=True)
class ManualScheduler:
    """Records periodic jobs instead of running them; tests fire them by hand."""

    jobs: list[ManualJob] = field(default_factory=list)

    def every(self, interval_s: float, fn: Callable[[], Any], *, name: str) -> ManualHandle:
        handle = ManualHandle()
        self.jobs.append(ManualJob(interval_s=interval_s, fn=fn, name=name, handle=handle))
        return handle

    def job(self, name: str) -> ManualJob:
        for j in self.jobs:
            if j.name == name:
                return j
        raise KeyError(name)


@dataclass(slots=True)
class FakeProbe:
    ppid: int = 4242
    stdin_ok: bool = True
    grandparent: int | None = 100
    lookup_error: Exception | None = None
    lookups: list[int] = field(default_factory=list)

    def parent_pid(self) -> int:
        return self.ppid

    def stdin_valid(self) -> bool:
        return self.stdin_ok

    async def parent_of(self, pid: int) -> int:
        self.lookups.append(pid)
        if self.lookup_error is not None:
            raise self.lookup_error
        assert self.grandparent is not None
        return self.grandparent


@dataclass(slots=True)
class FakeServer:
    """Cleanup target; ``hang``/``fail`` simulate misbehaving cleanups."""

    hang: bool = False
    fail: bool = False
    cleanups: int = 0
    events: list[str] = field(default_factory=list)

    async def cleanup(self) -> None:
        self.cleanups += 1
        self.events.append("cleanup")
        if self.fail:
            raise RuntimeError("cleanup exploded")
        if self.hang:
            await asyncio.Event().wait()


@dataclass(slots=True)
class Exits:
    codes: list[int] = field(default_factory=list)

    def __call__(self, code: int) -> None:
        self.codes.append(code)


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def probe() -> FakeProbe:
    return FakeProbe()


@pytest.fixture
def exits() -> Exits:
    return Exits()


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
