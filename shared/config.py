from __future__ import annotations

import os
from dataclasses import asdict, dataclass, replace as dc_replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from shared.errors import ConfigError
from shared.utils import is_port

DEFAULT_CONFIG_PATH = Path.home() / ".config" / "bartender" / "client.yaml"

# Environment variable -> ConnectionOptions field
ENV_OVERRIDES: Dict[str, str] = {
    "BARTENDER_HOST": "host",
    "BARTENDER_PORT": "port",
    "BARTENDER_RETRIES": "retries",
    "BARTENDER_TIMEOUT": "timeout",
}


@dataclass(frozen=True)
class ConnectionOptions:
    """Where and how persistently to look for the status bar server."""

    host: str = "localhost"
    port: str = "9999"
    retries: int = 3
    timeout: int = 60  # seconds per handshake attempt

    def __post_init__(self) -> None:
        if not isinstance(self.host, str) or not self.host:
            raise ConfigError("host must be a non-empty string")
        if not isinstance(self.port, str) or not is_port(self.port):
            raise ConfigError(f"port must be 1-65535 or a service name, got {self.port!r}")
        if isinstance(self.retries, bool) or not isinstance(self.retries, int) or self.retries < 0:
            raise ConfigError(f"retries must be a non-negative integer, got {self.retries!r}")
        if isinstance(self.timeout, bool) or not isinstance(self.timeout, int) or self.timeout <= 0:
            raise ConfigError(f"timeout must be a positive integer, got {self.timeout!r}")

    def replace(self, **changes: Any) -> "ConnectionOptions":
        """Copy with the given fields changed; ``None`` values are ignored."""
        return dc_replace(self, **{k: v for k, v in changes.items() if v is not None})

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


DEFAULT_CONNECTION_OPTIONS = ConnectionOptions()


def load_options(path: Optional[Path] = None, env: Optional[Mapping[str, str]] = None) -> ConnectionOptions:
    """
    Build ConnectionOptions from defaults, a YAML file and the environment.

    The YAML file may hold the fields at top level or under a ``connection``
    key. Environment variables (BARTENDER_HOST, ...) win over the file.

    Args:
        path: Explicit config file; it must exist. Defaults to
              ~/.config/bartender/client.yaml, which may be absent.
        env: Environment mapping, os.environ when omitted
    """
    env = os.environ if env is None else env
    explicit = path is not None
    path = path or Path(env.get("BARTENDER_CONFIG", DEFAULT_CONFIG_PATH))

    values: Dict[str, Any] = {}
    if path.exists():
        values.update(_read_yaml(path))
    elif explicit:
        raise ConfigError(f"Config file not found: {path}")

    for env_key, field_name in ENV_OVERRIDES.items():
        raw = env.get(env_key)
        if raw is not None and raw != "":
            values[field_name] = raw

    return DEFAULT_CONNECTION_OPTIONS.replace(**_coerce(values))


def _read_yaml(path: Path) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ConfigError(f"Error reading {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping")
    section = data.get("connection", data)
    if not isinstance(section, dict):
        raise ConfigError(f"'connection' in {path} must be a mapping")

    unknown = set(section) - set(ENV_OVERRIDES.values())
    if unknown:
        raise ConfigError(f"Unknown connection options in {path}: {sorted(unknown)}")
    return dict(section)


def _coerce(values: Dict[str, Any]) -> Dict[str, Any]:
    result: Dict[str, Any] = {}
    for key, value in values.items():
        if key in ("host", "port"):
            # YAML reads `port: 9999` as an int
            result[key] = str(value)
        elif isinstance(value, (bool, float)):
            # YAML floats such as `retries: 2.9` are rejected, not truncated
            raise ConfigError(f"{key} must be an integer, got {value!r}")
        else:
            try:
                result[key] = int(value)
            except (TypeError, ValueError) as e:
                raise ConfigError(f"{key} must be an integer, got {value!r}") from e
    return result


__all__ = [
    "ConnectionOptions",
    "DEFAULT_CONNECTION_OPTIONS",
    "DEFAULT_CONFIG_PATH",
    "load_options",
]
