"""Signal/event bridge: environment events to shutdown requests.

The bridge performs no cleanup itself. Every mapped event becomes exactly one
``request_shutdown(code, reason)`` call; the coordinator decides whether it
wins.
"""

from __future__ import annotations

import asyncio
import signal
import threading
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Mapping

from circuit_agent.lifecycle.coordinator import ShutdownRequest
from circuit_agent.lifecycle.faults import FaultClassifier
from circuit_agent.observability.logging import KVLogger, get_logger


class LifecycleEvent(str, Enum):
    SIGINT = "SIGINT"
    SIGTERM = "SIGTERM"
    SIGPIPE = "SIGPIPE"
    HOST_DISCONNECT = "host_disconnect"
    STDIN_ENDED = "stdin_ended"
    FATAL_FAULT = "fatal_fault"


EVENT_TABLE: Mapping[LifecycleEvent, ShutdownRequest] = MappingProxyType(
    {
        LifecycleEvent.SIGINT: ShutdownRequest(0, "SIGINT"),
        LifecycleEvent.SIGTERM: ShutdownRequest(0, "SIGTERM"),
        LifecycleEvent.SIGPIPE: ShutdownRequest(0, "SIGPIPE"),
        LifecycleEvent.HOST_DISCONNECT: ShutdownRequest(0, "parent disconnect"),
        LifecycleEvent.STDIN_ENDED: ShutdownRequest(0, "stdin ended"),
        LifecycleEvent.FATAL_FAULT: ShutdownRequest(1, "fatal exception"),
    }
)

# SIGHUP is how a POSIX host tells us it hung up on us.
SIGNAL_EVENTS: Mapping[str, LifecycleEvent] = MappingProxyType(
    {
        "SIGINT": LifecycleEvent.SIGINT,
        "SIGTERM": LifecycleEvent.SIGTERM,
        "SIGPIPE": LifecycleEvent.SIGPIPE,
        "SIGHUP": LifecycleEvent.HOST_DISCONNECT,
    }
)


class SignalBridge:
    def __init__(
        self,
        request_shutdown: Callable[[int, str | None], None],
        *,
        classifier: FaultClassifier | None = None,
        logger: KVLogger | None = None,
    ) -> None:
        self._request_shutdown = request_shutdown
        self._classifier = classifier or FaultClassifier()
        self._log = logger or get_logger(__name__)

        self._loop: asyncio.AbstractEventLoop | None = None
        self._signals: list[int] = []
        self._prev_thread_hook: Callable[[threading.ExceptHookArgs], Any] | None = None
        self._prev_loop_handler: Any = None

    @property
    def installed(self) -> bool:
        return self._loop is not None

    def dispatch(self, event: LifecycleEvent) -> ShutdownRequest:
        req = EVENT_TABLE[event]
        self._log.info("lifecycle_event", lifecycle_event=event.value, reason=req.reason, exit_code=req.exit_code)
        self._request_shutdown(req.exit_code, req.reason)
        return req

    def stdin_ended(self) -> None:
        """Called by the stdio transport when its reader hits EOF."""

        self.dispatch(LifecycleEvent.STDIN_ENDED)

    def handle_fault(self, exc: BaseException) -> bool:
        """Handle an uncaught fault. Returns True when it triggered shutdown."""

        self._log.error(
            "uncaught_exception",
            error=str(exc),
            error_type=type(exc).__name__,
            exc_info=(type(exc), exc, exc.__traceback__),
        )
        if self._classifier.is_fatal(exc):
            self._log.error("fatal_server_error")
            self.dispatch(LifecycleEvent.FATAL_FAULT)
            return True

        self._log.warning("non_fatal_exception", detail="transport stays active")
        return False

    def handle_async_error(self, exc: BaseException | None, message: str | None = None) -> None:
        """Unhandled async errors are logged and never stop the process."""

        self._log.error(
            "unhandled_async_error",
            error=str(exc) if exc is not None else None,
            detail=message,
            exc_info=(type(exc), exc, exc.__traceback__) if exc is not None else None,
        )

    def loop_exception_handler(self, loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
        exc = context.get("exception")
        if exc is None or "future" in context or "task" in context:
            self.handle_async_error(exc, context.get("message"))
            return
        self.handle_fault(exc)

    def _thread_excepthook(self, args: threading.ExceptHookArgs) -> None:
        if args.exc_type is SystemExit:
            return
        exc = args.exc_value if args.exc_value is not None else args.exc_type()
        self.handle_fault(exc)

    def install(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        if self._loop is not None:
            return
        loop = loop or asyncio.get_running_loop()

        for name, event in SIGNAL_EVENTS.items():
            sig = getattr(signal, name, None)
            if sig is None:
                continue
            try:
                loop.add_signal_handler(sig, self.dispatch, event)
            except (NotImplementedError, RuntimeError, ValueError):
                self._log.debug("signal_handler_unavailable", signal=name)
                continue
            self._signals.append(sig)

        self._prev_loop_handler = loop.get_exception_handler()
        loop.set_exception_handler(self.loop_exception_handler)

        self._prev_thread_hook = threading.excepthook
        threading.excepthook = self._thread_excepthook

        self._loop = loop

    def uninstall(self) -> None:
        loop = self._loop
        if loop is None:
            return
        if not loop.is_closed():
            for sig in self._signals:
                loop.remove_signal_handler(sig)
            loop.set_exception_handler(self._prev_loop_handler)
        self._signals.clear()
        if self._prev_thread_hook is not None:
            threading.excepthook = self._prev_thread_hook
            self._prev_thread_hook = None
        self._loop = None
