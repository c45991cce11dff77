"""Fatal vs. non-fatal fault classification.

A fault is fatal when it is one of the structured fatal error types, an
``EADDRINUSE`` socket error, or when its message matches the configured
allow-list. Everything else is survivable: a failure servicing one command
must not take down a healthy long-lived server.
"""

from __future__ import annotations

import errno
from typing import Iterable

from circuit_agent.config.model import DEFAULT_FATAL_PATTERNS
from circuit_agent.errors import FatalServerError


_MAX_CHAIN = 8


def _chain(exc: BaseException) -> Iterable[BaseException]:
    seen: set[int] = set()
    cur: BaseException | None = exc
    while cur is not None and id(cur) not in seen and len(seen) < _MAX_CHAIN:
        seen.add(id(cur))
        yield cur
        cur = cur.__cause__


class FaultClassifier:
    def __init__(self, patterns: Iterable[str] = DEFAULT_FATAL_PATTERNS) -> None:
        self._patterns = tuple(p for p in patterns if p)

    @property
    def patterns(self) -> tuple[str, ...]:
        return self._patterns

    def is_fatal(self, exc: BaseException) -> bool:
        for e in _chain(exc):
            if isinstance(e, FatalServerError):
                return True
            if isinstance(e, OSError) and e.errno == errno.EADDRINUSE:
                return True
            message = str(e)
            if message and any(p in message for p in self._patterns):
                return True
        return False
