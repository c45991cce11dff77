from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Protocol

from circuit_agent.config.model import LifecycleConfig
from circuit_agent.lifecycle.bridge import SignalBridge
from circuit_agent.lifecycle.coordinator import (
    LifecycleState,
    ShutdownCoordinator,
    ShutdownHook,
    Terminator,
)
from circuit_agent.lifecycle.faults import FaultClassifier
from circuit_agent.lifecycle.liveness import LivenessDetector
from circuit_agent.lifecycle.probe import HostProbe, ProcessProbe
from circuit_agent.lifecycle.scheduler import AsyncioScheduler, CompositeHandle, PeriodicHandle, Scheduler
from circuit_agent.observability.logging import KVLogger, get_logger


class Cleanable(Protocol):
    def cleanup(self) -> "Awaitable[object] | object": ...


class ProcessLifecycleManager:
    """Owns the lifecycle of one agent process.

    Construct one per process and pass it to whatever starts the server;
    there is no module-level instance.

    Typical flow::

        manager = setup_process_lifecycle(server, config=cfg.lifecycle)
        await server.run(on_ready=manager.ensure_parent_watcher)
    """

    def __init__(
        self,
        server: Cleanable,
        *,
        config: LifecycleConfig | None = None,
        on_shutdown: ShutdownHook | None = None,
        probe: HostProbe | None = None,
        scheduler: Scheduler | None = None,
        terminate: Terminator | None = None,
        logger: KVLogger | None = None,
    ) -> None:
        self._config = config or LifecycleConfig()
        self._log = logger or get_logger("circuit_agent.lifecycle", prefix=self._config.log_prefix)
        self._scheduler = scheduler

        self.coordinator = ShutdownCoordinator(
            server.cleanup,
            config=self._config,
            on_shutdown=on_shutdown,
            terminate=terminate,
            logger=self._log.bind(component="coordinator"),
        )
        self.detector = LivenessDetector(
            probe or ProcessProbe(query_timeout_s=self._config.query_timeout_s),
            request_shutdown=self.coordinator.request_shutdown,
            is_shutting_down=lambda: self.coordinator.shutting_down,
            reaper_pid=self._config.reaper_pid,
            logger=self._log.bind(component="liveness"),
        )
        self.bridge = SignalBridge(
            self.coordinator.request_shutdown,
            classifier=FaultClassifier(self._config.fatal_patterns),
            logger=self._log.bind(component="bridge"),
        )

    @property
    def config(self) -> LifecycleConfig:
        return self._config

    @property
    def state(self) -> LifecycleState:
        return self.coordinator.state

    @property
    def shutting_down(self) -> bool:
        return self.coordinator.shutting_down

    @property
    def armed(self) -> bool:
        return self.coordinator.armed

    def install(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        """Hook OS signals and fault handlers into ``loop`` (default: running loop)."""

        loop = loop or asyncio.get_running_loop()
        self.coordinator.bind_loop(loop)
        self.bridge.install(loop)

    async def shutdown(self, code: int, reason: str | None = None) -> None:
        await self.coordinator.shutdown(code, reason)

    def request_shutdown(self, code: int, reason: str | None = None) -> None:
        self.coordinator.request_shutdown(code, reason)

    def ensure_parent_watcher(self) -> bool:
        """Arm the liveness detector. Idempotent; True only on the arming call."""

        armed = self.coordinator.arm(self._start_watcher)
        if armed:
            self._log.info(
                "parent_watcher_armed",
                tick_interval_s=self._config.tick_interval_s,
                heavy_interval_s=self._config.heavy_interval_s,
            )
        return armed

    def _start_watcher(self) -> PeriodicHandle:
        scheduler = self._scheduler or AsyncioScheduler(logger=self._log.bind(component="scheduler"))
        light = scheduler.every(self._config.tick_interval_s, self.detector.light_tick, name="liveness-light")
        try:
            heavy = scheduler.every(self._config.heavy_interval_s, self.detector.heavy_tick, name="liveness-heavy")
        except BaseException:
            light.cancel()
            raise
        return CompositeHandle(light, heavy)

    def disarm(self) -> None:
        """Silence the watcher without shutting down."""

        self.coordinator.disarm()

    def cleanup(self) -> None:
        """Alias of :meth:`disarm`; this is not the server's cleanup."""

        self.disarm()

    def status(self) -> dict[str, Any]:
        req = self.coordinator.request
        return {
            "state": self.state.value,
            "armed": self.armed,
            "shutdown_reason": req.reason if req is not None else None,
        }


def setup_process_lifecycle(
    server: Cleanable,
    *,
    config: LifecycleConfig | None = None,
    on_shutdown: ShutdownHook | None = None,
    install: bool = True,
    loop: asyncio.AbstractEventLoop | None = None,
    **kwargs: Any,
) -> ProcessLifecycleManager:
    """Build a manager around ``server`` and (by default) hook it into the loop."""

    manager = ProcessLifecycleManager(server, config=config, on_shutdown=on_shutdown, **kwargs)
    if install:
        manager.install(loop)
    return manager
