from __future__ import annotations

from dataclasses import dataclass, field


DEFAULT_FATAL_PATTERNS: tuple[str, ...] = (
    "MCP Server failed to start",
    "Transport initialization failed",
    "EADDRINUSE",
)


@dataclass(frozen=True, slots=True)
class LifecycleConfig:
    """Timings and policy for the process lifecycle supervisor.

    The heavy (grandparent) check runs once every ``heavy_check_every`` light
    ticks, i.e. every ``tick_interval_s * heavy_check_every`` seconds.
    """

    tick_interval_s: float = 2.0
    heavy_check_every: int = 5
    cleanup_timeout_s: float = 5.0
    flush_delay_s: float = 0.1
    query_timeout_s: float = 1.0
    reaper_pid: int = 1
    log_prefix: str = "[CIRCUIT]"
    fatal_patterns: tuple[str, ...] = DEFAULT_FATAL_PATTERNS

    @property
    def heavy_interval_s(self) -> float:
        return self.tick_interval_s * self.heavy_check_every


@dataclass(frozen=True, slots=True)
class ServerConfig:
    name: str = "circuit-agent"
    child_kill_timeout_s: float = 3.0


@dataclass(frozen=True, slots=True)
class OrphanCleanupConfig:
    patterns: tuple[str, ...] = ("circuit-agent",)
    browser_patterns: tuple[str, ...] = ("Chromium.*--remote-debugging",)


@dataclass(frozen=True, slots=True)
class AgentConfig:
    lifecycle: LifecycleConfig = field(default_factory=LifecycleConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    orphans: OrphanCleanupConfig = field(default_factory=OrphanCleanupConfig)
