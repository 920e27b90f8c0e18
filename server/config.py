"""
Relay server configuration.

Values come from three layers, later ones winning:
  1. RelayConfig defaults
  2. an optional YAML file (either top-level keys or a ``relay:`` mapping)
  3. environment variables (PORT, RELAY_HOST, RELAY_PING_INTERVAL, RELAY_LOG_LEVEL)

Example relay.yaml:

    relay:
      host: 0.0.0.0
      port: 5050
      ping_interval: 30
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

from shared.log import get_logger

logger = get_logger(__name__)

DEFAULT_PORT = 5050


@dataclass(frozen=True)
class RelayConfig:
    host: str = "0.0.0.0"
    port: int = DEFAULT_PORT
    ping_interval: float = 30.0             # application-level {"type":"ping"} keepalive
    transport_ping_interval: float = 15.0   # WebSocket ping frames (failure detection)
    transport_ping_timeout: float = 45.0
    ping_probe_timeout: float = 5.0         # /ping route subprocess timeout
    http_enabled: bool = True
    log_level: Optional[str] = None

    def __post_init__(self) -> None:
        if not 0 < self.port <= 65535:
            raise ValueError(f"port must be in 1..65535, got {self.port}")
        for name in ("ping_interval", "transport_ping_interval", "transport_ping_timeout", "ping_probe_timeout"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive")


_ENV_OVERRIDES = {
    "PORT": "port",
    "RELAY_HOST": "host",
    "RELAY_PING_INTERVAL": "ping_interval",
    "RELAY_LOG_LEVEL": "log_level",
}


def load_config(path: Optional[Path] = None, env: Optional[Mapping[str, str]] = None) -> RelayConfig:
    """Build a RelayConfig from defaults, an optional YAML file and the environment."""
    values: Dict[str, Any] = {}
    if path is not None:
        values.update(_load_yaml(Path(path)))

    env = os.environ if env is None else env
    for var, name in _ENV_OVERRIDES.items():
        raw = env.get(var)
        if raw:
            values[name] = raw

    return replace(RelayConfig(), **_coerce(values))


def _load_yaml(path: Path) -> Dict[str, Any]:
    """Read the YAML file; unreadable or malformed files fall back to defaults."""
    if not path.exists():
        logger.info(f"No config file at {path}; using defaults")
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        logger.error(f"Error reading {path}: {e}")
        return {}

    if isinstance(data, dict) and isinstance(data.get("relay"), dict):
        data = data["relay"]
    if not isinstance(data, dict):
        logger.warning(f"Ignoring {path}: expected a mapping")
        return {}

    known = {f.name for f in fields(RelayConfig)}
    unknown = sorted(set(data) - known)
    if unknown:
        logger.warning(f"Ignoring unknown config keys in {path}: {unknown}")
    return {k: v for k, v in data.items() if k in known}


def _coerce(values: Dict[str, Any]) -> Dict[str, Any]:
    types = {f.name: f.type for f in fields(RelayConfig)}
    out: Dict[str, Any] = {}
    for name, value in values.items():
        kind = types[name]
        try:
            if kind == "int":
                out[name] = int(value)
            elif kind == "float":
                out[name] = float(value)
            elif kind == "bool":
                out[name] = value if isinstance(value, bool) else str(value).strip().lower() in ("1", "true", "yes", "on")
            elif value is None:
                out[name] = None
            else:
                out[name] = str(value)
        except (TypeError, ValueError):
            raise ValueError(f"Invalid value for {name}: {value!r}")
    return out
