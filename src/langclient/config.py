"""Session configuration.

A SessionConfig is fixed for the lifetime of a session. It can be built
directly, or loaded from a YAML file with environment overrides:

    server:
      network: tcp            # tcp | unix | stdio
      address: 127.0.0.1:9877 # host:port, socket path, or server command
      framing: content-length # content-length | jsonl
    client:
      name: langclient
      version: 0.1.0
    workspace:
      name: test
      uri: file:///home/user/test/
    session:
      request_timeout: 30
      shutdown_timeout: 5
      graceful_exit: true
      trace: false

Environment variables (LANGCLIENT_NETWORK, LANGCLIENT_ADDRESS, ...)
override file values; explicit keyword overrides win over both.
"""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigError

NETWORKS = ("tcp", "unix", "stdio")
FRAMINGS = ("content-length", "jsonl")

ENV_PREFIX = "LANGCLIENT_"

# YAML section -> {key in section: config field}
_SECTIONS: dict[str, dict[str, str]] = {
    "server": {"network": "network", "address": "address", "framing": "framing"},
    "client": {"name": "client_name", "version": "client_version"},
    "workspace": {"name": "workspace_name", "uri": "workspace_uri"},
    "session": {
        "request_timeout": "request_timeout",
        "shutdown_timeout": "shutdown_timeout",
        "graceful_exit": "graceful_exit",
        "trace": "trace",
    },
}

_ENV_FIELDS = (
    "network",
    "address",
    "framing",
    "client_name",
    "client_version",
    "workspace_name",
    "workspace_uri",
    "request_timeout",
    "shutdown_timeout",
    "graceful_exit",
    "trace",
)


@dataclass(frozen=True)
class SessionConfig:
    """Connection target, identity and timeouts for one session."""

    network: str = "tcp"
    address: str = "127.0.0.1:9877"
    framing: str = "content-length"

    client_name: str = "langclient"
    client_version: str = "0.1.0"

    workspace_name: str = "workspace"
    workspace_uri: str = field(default_factory=lambda: Path.cwd().as_uri())

    request_timeout: float | None = None
    shutdown_timeout: float = 5.0
    graceful_exit: bool = True
    trace: bool = False

    def __post_init__(self) -> None:
        if self.network not in NETWORKS:
            raise ConfigError(f"Unknown network '{self.network}' (expected one of: {', '.join(NETWORKS)})")
        if self.framing not in FRAMINGS:
            raise ConfigError(f"Unknown framing '{self.framing}' (expected one of: {', '.join(FRAMINGS)})")
        if not self.address:
            raise ConfigError("Server address is required")
        if self.request_timeout is not None and self.request_timeout <= 0:
            raise ConfigError(f"request_timeout must be positive, got {self.request_timeout}")
        if self.shutdown_timeout <= 0:
            raise ConfigError(f"shutdown_timeout must be positive, got {self.shutdown_timeout}")


def _parse_bool(name: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("1", "true", "yes", "on"):
        return True
    if text in ("0", "false", "no", "off", ""):
        return False
    raise ConfigError(f"Invalid boolean for {name}: {value!r}")


def _parse_float(name: str, value: Any) -> float | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"Invalid number for {name}: {value!r}") from None


def _coerce(name: str, value: Any) -> Any:
    if name in ("graceful_exit", "trace"):
        return _parse_bool(name, value)
    if name in ("request_timeout", "shutdown_timeout"):
        return _parse_float(name, value)
    return str(value)


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Config file {path} must contain a mapping")

    values: dict[str, Any] = {}
    for section, entries in data.items():
        fields = _SECTIONS.get(section)
        if fields is None:
            raise ConfigError(f"Unknown config section '{section}' in {path}")
        if not isinstance(entries, dict):
            raise ConfigError(f"Config section '{section}' must be a mapping")
        for key, value in entries.items():
            if key not in fields:
                raise ConfigError(f"Unknown key '{section}.{key}' in {path}")
            values[fields[key]] = _coerce(fields[key], value)
    return values


def _read_env(env: Mapping[str, str]) -> dict[str, Any]:
    values: dict[str, Any] = {}
    for name in _ENV_FIELDS:
        raw = env.get(f"{ENV_PREFIX}{name.upper()}")
        if raw is not None:
            values[name] = _coerce(name, raw)
    return values


def load_config(
    path: str | Path | None = None,
    env: Mapping[str, str] | None = None,
    **overrides: Any,
) -> SessionConfig:
    """Build a SessionConfig from a YAML file, the environment and overrides.

    Args:
        path: Optional YAML config file
        env: Environment mapping (default: os.environ)
        **overrides: Field values that win over file and environment;
            None values are ignored

    Raises:
        ConfigError: If the file or any value is invalid
    """
    values: dict[str, Any] = {}
    if path is not None:
        values.update(_read_yaml(Path(path)))
    values.update(_read_env(os.environ if env is None else env))
    values.update({k: v for k, v in overrides.items() if v is not None})

    try:
        return SessionConfig(**values)
    except TypeError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e
