"""Configuration loading and schema.

- YAML-first configuration (optional; every field has a default)
- Strict ${ENV_VAR} expansion (missing/empty env vars are errors)
"""

from __future__ import annotations

from circuit_agent.config.loader import load_config
from circuit_agent.config.model import AgentConfig, LifecycleConfig, OrphanCleanupConfig, ServerConfig
from circuit_agent.errors import ConfigError

__all__ = [
    "AgentConfig",
    "ConfigError",
    "LifecycleConfig",
    "OrphanCleanupConfig",
    "ServerConfig",
    "load_config",
]
