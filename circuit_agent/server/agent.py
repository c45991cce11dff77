"""The stdio agent server hosted by the lifecycle manager.

Protocol handling is delegated to the MCP SDK's low-level server. This class
only owns what the lifecycle needs: a startup signal, an end-of-input signal,
and a cleanup that takes the agent's child processes down with it.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import os
from typing import Any, Callable

import mcp.types as types
from mcp.server.lowlevel import Server
from mcp.server.stdio import stdio_server

from circuit_agent import __version__
from circuit_agent.config.model import ServerConfig
from circuit_agent.errors import TransportInitError
from circuit_agent.observability.logging import get_logger
from circuit_agent.server.children import TerminationReport, terminate_descendants


logger = get_logger(__name__)

STATUS_TOOL = "lifecycle_status"


class AgentServer:
    def __init__(self, cfg: ServerConfig | None = None, *, version: str = __version__) -> None:
        self._cfg = cfg or ServerConfig()
        self._server: Server[Any, Any] = Server(self._cfg.name, version=version)
        self._status_provider: Callable[[], dict[str, Any]] = dict
        self._cleanup_lock = asyncio.Lock()
        self._cleanup_report: TerminationReport | None = None
        self._register_handlers()

    @property
    def name(self) -> str:
        return self._cfg.name

    def bind_status(self, provider: Callable[[], dict[str, Any]]) -> None:
        self._status_provider = provider

    def status(self) -> dict[str, Any]:
        return {
            "server": self._cfg.name,
            "pid": os.getpid(),
            "ppid": os.getppid(),
            **self._status_provider(),
        }

    def _register_handlers(self) -> None:
        @self._server.list_tools()
        async def list_tools() -> list[types.Tool]:
            return [
                types.Tool(
                    name=STATUS_TOOL,
                    description="Report this agent process's pid, parent pid and lifecycle state.",
                    inputSchema={"type": "object", "properties": {}},
                )
            ]

        @self._server.call_tool()
        async def call_tool(name: str, arguments: dict[str, Any]) -> list[types.TextContent]:
            _ = arguments
            if name != STATUS_TOOL:
                raise ValueError(f"Unknown tool: {name}")
            return [types.TextContent(type="text", text=json.dumps(self.status(), ensure_ascii=False))]

    async def run(
        self,
        *,
        on_ready: Callable[[], object] | None = None,
        on_stdin_end: Callable[[], object] | None = None,
    ) -> None:
        """Serve until the host closes our stdin.

        Raises:
            TransportInitError: If the stdio transport cannot be opened.
        """

        async with contextlib.AsyncExitStack() as stack:
            try:
                read_stream, write_stream = await stack.enter_async_context(stdio_server())
            except Exception as e:  # noqa: BLE001
                raise TransportInitError(f"Transport initialization failed: {e}") from e

            logger.info("server_ready", server=self._cfg.name)
            if on_ready is not None:
                on_ready()

            await self._server.run(read_stream, write_stream, self._server.create_initialization_options())

            # Incoming stream exhausted: the host closed our stdin.
            logger.info("stdin_eof")
            if on_stdin_end is not None:
                on_stdin_end()

    async def cleanup(self) -> TerminationReport:
        """Stop every child process this agent started. Idempotent."""

        async with self._cleanup_lock:
            if self._cleanup_report is not None:
                return self._cleanup_report
            report = await asyncio.to_thread(
                terminate_descendants,
                os.getpid(),
                timeout_s=self._cfg.child_kill_timeout_s,
            )
            self._cleanup_report = report
            logger.info("children_terminated", **report.as_dict())
            return report
