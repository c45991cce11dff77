from __future__ import annotations


class AgentError(Exception):
    """Base exception for this project."""


class ConfigError(AgentError):
    """Raised when configuration is invalid or incomplete."""

    def __init__(self, message: str, *, path: str | None = None):
        super().__init__(f"{path}: {message}" if path else message)
        self.path = path


class FatalServerError(AgentError):
    """An unrecoverable server condition.

    Raising one of these anywhere the lifecycle bridge can see it terminates
    the process with exit code 1. Everything else is logged and survived.
    """


class ServerStartupError(FatalServerError):
    def __init__(self, message: str = "MCP Server failed to start"):
        super().__init__(message)


class TransportInitError(FatalServerError):
    def __init__(self, message: str = "Transport initialization failed"):
        super().__init__(message)


class AddressInUseError(FatalServerError):
    def __init__(self, address: str):
        super().__init__(f"EADDRINUSE: address already in use {address}")
        self.address = address
