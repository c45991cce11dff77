from __future__ import annotations

import asyncio
import os

from circuit_agent.config import ServerConfig
from circuit_agent.server import AgentServer, TerminationReport


def test_status_merges_lifecycle_fields() -> None:
    server = AgentServer(ServerConfig(name="agent-under-test"))
    server.bind_status(lambda: {"state": "armed", "armed": True, "shutdown_reason": None})

    status = server.status()

    assert status["server"] == "agent-under-test"
    assert status["pid"] == os.getpid()
    assert status["ppid"] == os.getppid()
    assert status["state"] == "armed"


def test_cleanup_is_idempotent() -> None:
    server = AgentServer(ServerConfig(child_kill_timeout_s=0.5))

    async def main() -> tuple[TerminationReport, TerminationReport]:
        return await asyncio.gather(server.cleanup(), server.cleanup())

    first, second = asyncio.run(main())

    assert first is second
    assert first.survivors == 0
