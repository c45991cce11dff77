from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Sequence

import setproctitle

from circuit_agent import __version__
from circuit_agent.config import AgentConfig, load_config
from circuit_agent.errors import ConfigError
from circuit_agent.lifecycle import ProcessLifecycleManager, setup_process_lifecycle
from circuit_agent.observability.logging import configure_logging
from circuit_agent.orphans import cleanup_orphans


logger = logging.getLogger(__name__)

_VALUE_OPTIONS = {"--config", "--log-level"}


def _has_command(argv: Sequence[str]) -> bool:
    """True when argv names a subcommand. Option values never count as one."""

    skip_next = False
    for tok in argv:
        if skip_next:
            skip_next = False
            continue
        if tok in _VALUE_OPTIONS:
            skip_next = True
            continue
        if not tok.startswith("-"):
            return True
    return False


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="circuit-agent",
        description="Circuit agent: a stdio agent process that shuts itself down when its host goes away",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Logging level (e.g. DEBUG, INFO, WARNING)",
    )
    parser.add_argument(
        "--config",
        type=Path,
        help="Path to a YAML config file (defaults apply when omitted)",
    )

    sub = parser.add_subparsers(dest="command")

    serve_p = sub.add_parser("serve", help="Run the stdio agent server (default)")
    serve_p.set_defaults(command="serve")

    clean_p = sub.add_parser("cleanup", help="Find and kill orphaned agent processes (ppid=1)")
    clean_p.add_argument("--dry-run", action="store_true", help="Show processes without killing them")
    clean_p.add_argument(
        "--force",
        action="store_true",
        help="Kill ALL matching processes, not just orphans (dangerous)",
    )
    clean_p.add_argument("--all", action="store_true", help="Also include related Chromium/browser processes")
    clean_p.set_defaults(command="cleanup")

    return parser


async def serve(cfg: AgentConfig) -> int:
    """Run the agent server under lifecycle supervision.

    In production the lifecycle manager ends the process itself; this only
    returns when its terminator does.
    """

    from circuit_agent.server import AgentServer

    server: AgentServer | None = AgentServer(cfg.server)

    def _drop_server(code: int, reason: str | None) -> None:
        nonlocal server
        server = None

    manager: ProcessLifecycleManager = setup_process_lifecycle(
        server,
        config=cfg.lifecycle,
        on_shutdown=_drop_server,
    )
    server.bind_status(manager.status)

    ready = False

    def _on_ready() -> None:
        nonlocal ready
        ready = True
        logger.info("server_running", extra={"server": cfg.server.name})
        manager.ensure_parent_watcher()

    logger.info("server_starting", extra={"server": cfg.server.name, "version": __version__})
    try:
        await server.run(on_ready=_on_ready, on_stdin_end=manager.bridge.stdin_ended)
    except Exception:  # noqa: BLE001
        logger.exception("fatal_server_error", extra={"started": ready})
        await manager.shutdown(1, "server failed to start" if not ready else "transport failed")
        return 1

    await manager.coordinator.wait_terminated()
    req = manager.coordinator.request
    return req.exit_code if req is not None else 0


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entrypoint referenced by pyproject.toml."""

    argv_list = list(argv) if argv is not None else sys.argv[1:]

    # Default to `serve` when no subcommand is provided.
    if not _has_command(argv_list) and not any(tok in {"-h", "--help", "--version"} for tok in argv_list):
        argv_list = [*argv_list, "serve"]

    parser = _build_parser()

    try:
        ns = parser.parse_args(argv_list)
    except SystemExit as e:
        # argparse has already printed help/usage to stdout/stderr.
        code = e.code
        return int(code) if isinstance(code, int) else 1

    configure_logging(level=ns.log_level)

    try:
        cfg = load_config(ns.config)
        configure_logging(level=ns.log_level, prefix=cfg.lifecycle.log_prefix)

        if ns.command == "cleanup":
            patterns = list(cfg.orphans.patterns)
            if ns.all:
                patterns.extend(cfg.orphans.browser_patterns)
            cleanup_orphans(
                patterns,
                dry_run=ns.dry_run,
                force=ns.force,
                reaper_pid=cfg.lifecycle.reaper_pid,
                write=lambda line: sys.stdout.write(line + "\n"),
            )
            return 0

        setproctitle.setproctitle(f"circuit-agent@{__version__}")
        return asyncio.run(serve(cfg))

    except ConfigError as e:
        # Keep the message extremely clear for fast-fail debugging.
        logger.error("config_error", extra={"error": str(e)})
        sys.stderr.write(f"ConfigError: {e}\n")
        return 2
    except Exception as e:  # noqa: BLE001
        logger.exception("fatal_error")
        sys.stderr.write(f"Fatal error: {e}\n")
        return 1
