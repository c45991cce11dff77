from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, Mapping, MutableMapping, Sequence

import yaml
from dotenv import load_dotenv

from circuit_agent.config.model import AgentConfig, LifecycleConfig, OrphanCleanupConfig, ServerConfig
from circuit_agent.errors import ConfigError


_ENV_PLACEHOLDER_RE = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


def _deep_merge(base: MutableMapping[str, Any], overlay: Mapping[str, Any]) -> MutableMapping[str, Any]:
    """Deep-merge two mappings.

    - Dicts are merged recursively.
    - Other values are replaced.
    """

    for k, v in overlay.items():
        if isinstance(v, Mapping) and isinstance(base.get(k), Mapping):
            base[k] = _deep_merge(dict(base[k]), v)  # type: ignore[arg-type]
        else:
            base[k] = v
    return base


def _load_yaml(path: Path) -> Any:
    text = path.read_text(encoding="utf-8")
    if not text.strip():
        return {}
    return yaml.safe_load(text)


def _expand_env_in_str(value: str, *, path: str) -> str:
    def repl(match: re.Match[str]) -> str:
        name = match.group(1)
        resolved = os.environ.get(name)
        if resolved is None:
            raise ConfigError(f"environment variable {name!r} is missing", path=path or "<root>")
        if resolved == "":
            raise ConfigError(f"environment variable {name!r} is empty", path=path or "<root>")
        return resolved

    return _ENV_PLACEHOLDER_RE.sub(repl, value)


def _expand_env(obj: Any, *, path: str) -> Any:
    if isinstance(obj, str):
        return _expand_env_in_str(obj, path=path)
    if isinstance(obj, list):
        return [_expand_env(v, path=f"{path}[{i}]") for i, v in enumerate(obj)]
    if isinstance(obj, Mapping):
        return {str(k): _expand_env(v, path=f"{path}.{k}" if path else str(k)) for k, v in obj.items()}
    return obj


def _section(raw: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = raw.get(key)
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError("must be a mapping", path=key)
    return value


def _number(d: Mapping[str, Any], key: str, default: float, *, path: str, minimum: float, strict: bool) -> float:
    value = d.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise ConfigError("must be a number", path=f"{path}.{key}")
    try:
        out = float(value)
    except ValueError as e:
        raise ConfigError(f"must be a number, got {value!r}", path=f"{path}.{key}") from e
    if out < minimum or (strict and out == minimum):
        op = ">" if strict else ">="
        raise ConfigError(f"must be {op} {minimum:g}", path=f"{path}.{key}")
    return out


def _str_list(d: Mapping[str, Any], key: str, default: tuple[str, ...], *, path: str) -> tuple[str, ...]:
    value = d.get(key)
    if value is None:
        return default
    if not isinstance(value, list) or not all(isinstance(x, str) and x for x in value):
        raise ConfigError("must be a list of non-empty strings", path=f"{path}.{key}")
    return tuple(value)


def _parse_lifecycle(raw: Mapping[str, Any]) -> LifecycleConfig:
    d = _section(raw, "lifecycle")
    path = "lifecycle"

    heavy_every = d.get("heavy_check_every", LifecycleConfig.heavy_check_every)
    if isinstance(heavy_every, bool) or not isinstance(heavy_every, int) or heavy_every < 1:
        raise ConfigError("must be an integer >= 1", path=f"{path}.heavy_check_every")

    reaper_pid = d.get("reaper_pid", LifecycleConfig.reaper_pid)
    if isinstance(reaper_pid, bool) or not isinstance(reaper_pid, int):
        raise ConfigError("must be an integer", path=f"{path}.reaper_pid")

    return LifecycleConfig(
        tick_interval_s=_number(d, "tick_interval_s", LifecycleConfig.tick_interval_s, path=path, minimum=0, strict=True),
        heavy_check_every=heavy_every,
        cleanup_timeout_s=_number(
            d, "cleanup_timeout_s", LifecycleConfig.cleanup_timeout_s, path=path, minimum=0, strict=True
        ),
        flush_delay_s=_number(d, "flush_delay_s", LifecycleConfig.flush_delay_s, path=path, minimum=0, strict=False),
        query_timeout_s=_number(d, "query_timeout_s", LifecycleConfig.query_timeout_s, path=path, minimum=0, strict=True),
        reaper_pid=reaper_pid,
        log_prefix=str(d.get("log_prefix", LifecycleConfig.log_prefix)),
        fatal_patterns=_str_list(d, "fatal_patterns", LifecycleConfig.fatal_patterns, path=path),
    )


def _parse_server(raw: Mapping[str, Any]) -> ServerConfig:
    d = _section(raw, "server")
    name = d.get("name", ServerConfig.name)
    if not isinstance(name, str) or not name.strip():
        raise ConfigError("must be a non-empty string", path="server.name")
    return ServerConfig(
        name=name,
        child_kill_timeout_s=_number(
            d, "child_kill_timeout_s", ServerConfig.child_kill_timeout_s, path="server", minimum=0, strict=False
        ),
    )


def _parse_orphans(raw: Mapping[str, Any]) -> OrphanCleanupConfig:
    d = _section(raw, "orphans")
    return OrphanCleanupConfig(
        patterns=_str_list(d, "patterns", OrphanCleanupConfig.patterns, path="orphans"),
        browser_patterns=_str_list(d, "browser_patterns", OrphanCleanupConfig.browser_patterns, path="orphans"),
    )


def load_config(
    paths: Path | Sequence[Path] | None = None,
    *,
    load_dotenv_file: bool = True,
    dotenv_path: Path | None = None,
) -> AgentConfig:
    """Load YAML config files with strict ${ENV_VAR} expansion.

    Args:
        paths: Zero or more YAML files. When multiple are provided, they are
            merged (later files override earlier ones). With none, every
            field takes its default.
        load_dotenv_file: Whether to load a .env file before expansion.
        dotenv_path: Optional explicit .env path. When omitted, attempts to load
            a `.env` in the current working directory.

    Raises:
        ConfigError: If YAML is invalid, env expansion is unresolved, or a
            value fails validation.
    """

    if paths is None:
        file_list: list[Path] = []
    elif isinstance(paths, (str, Path)):
        file_list = [Path(paths)]
    else:
        file_list = [Path(p) for p in paths]

    if load_dotenv_file:
        # Best-effort; strictness is enforced by the ${ENV_VAR} expansion step.
        load_dotenv(dotenv_path or Path.cwd() / ".env", override=False)

    merged: dict[str, Any] = {}
    for p in file_list:
        if not p.exists():
            raise ConfigError("config file not found", path=str(p))
        try:
            fragment = _load_yaml(p)
        except Exception as e:  # noqa: BLE001
            raise ConfigError(f"failed to read YAML config: {e}", path=str(p)) from e

        if fragment is None:
            fragment = {}
        if not isinstance(fragment, Mapping):
            raise ConfigError("top-level YAML must be a mapping/dict", path=str(p))

        merged = dict(_deep_merge(merged, fragment))

    expanded = _expand_env(merged, path="")

    return AgentConfig(
        lifecycle=_parse_lifecycle(expanded),
        server=_parse_server(expanded),
        orphans=_parse_orphans(expanded),
    )
