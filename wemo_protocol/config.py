#
# Copyright (c) 2023 Samuel J. McKelvie
#
# MIT License - See LICENSE file accompanying this package.
#

"""Configuration support.

A WemoConfig holds the tunables used by discovery and device control. Values
are layered, lowest precedence first:

  1. The defaults in constants.py
  2. A JSON file, e.g. {"discovery_timeout": 8, "retries": 3}
  3. Environment variables named WEMO_<FIELD>, e.g. WEMO_DISCOVERY_TIMEOUT=8

bind_addresses is a JSON list in a file, and a comma-separated list in the
environment.
"""

from __future__ import annotations

import os
import json
from dataclasses import dataclass, fields, replace

from .internal_types import *
from .constants import (
    DEFAULT_DISCOVERY_TIMEOUT,
    DEFAULT_DESCRIPTION_TIMEOUT,
    DEFAULT_TIMEOUT,
    DEFAULT_RETRY_COUNT,
    DEFAULT_RETRY_DELAY,
    DEFAULT_DISCOVERY_COOLDOWN,
  )
from .exceptions import WemoConfigError

ENV_PREFIX = "WEMO_"

@dataclass(frozen=True)
class WemoConfig:
    discovery_timeout: float = DEFAULT_DISCOVERY_TIMEOUT
    description_timeout: float = DEFAULT_DESCRIPTION_TIMEOUT
    request_timeout: float = DEFAULT_TIMEOUT
    retries: int = DEFAULT_RETRY_COUNT
    retry_delay: float = DEFAULT_RETRY_DELAY
    discovery_cooldown: float = DEFAULT_DISCOVERY_COOLDOWN
    bind_addresses: Optional[Tuple[str, ...]] = None
    """Local addresses to send discovery queries from. None means every usable interface."""

    def __post_init__(self) -> None:
        for name in ("discovery_timeout", "description_timeout", "request_timeout"):
            if getattr(self, name) <= 0:
                raise WemoConfigError(f"{name} must be positive, got {getattr(self, name)}")
        for name in ("retries", "retry_delay", "discovery_cooldown"):
            if getattr(self, name) < 0:
                raise WemoConfigError(f"{name} must not be negative, got {getattr(self, name)}")

    @classmethod
    def field_names(cls) -> List[str]:
        return [f.name for f in fields(cls)]

    def merge(self, values: Mapping[str, Any], source: str) -> WemoConfig:
        """Return a copy with the given values (in their raw JSON or string form) applied."""
        changes: Dict[str, Any] = {}
        for key, value in values.items():
            if key not in self.field_names():
                raise WemoConfigError(f"{source}: unknown configuration key '{key}'")
            changes[key] = _coerce_value(key, value, source)
        return replace(self, **changes)

    @classmethod
    def from_json_file(cls, pathname: str, base: Optional[WemoConfig]=None) -> WemoConfig:
        base = cls() if base is None else base
        pathname = os.path.abspath(os.path.expanduser(pathname))
        try:
            with open(pathname, encoding='utf-8') as f:
                data = json.load(f)
        except OSError as e:
            raise WemoConfigError(f"Cannot read config file {pathname}: {e}") from e
        except json.JSONDecodeError as e:
            raise WemoConfigError(f"Invalid JSON in config file {pathname}: {e}") from e
        if not isinstance(data, dict):
            raise WemoConfigError(f"Config file {pathname} must contain a JSON object, got {type(data).__name__}")
        return base.merge(data, pathname)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]]=None, base: Optional[WemoConfig]=None) -> WemoConfig:
        base = cls() if base is None else base
        environ = os.environ if environ is None else environ
        values: Dict[str, str] = {}
        for name in cls.field_names():
            env_name = ENV_PREFIX + name.upper()
            if env_name in environ:
                values[name] = environ[env_name]
        return base.merge(values, "environment")

    @classmethod
    def load(cls, config_file: Optional[str]=None, environ: Optional[Mapping[str, str]]=None) -> WemoConfig:
        """Build a config from defaults, then config_file (if given), then the environment."""
        cfg = cls()
        if config_file is not None:
            cfg = cls.from_json_file(config_file, base=cfg)
        return cls.from_env(environ, base=cfg)

    def to_jsonable(self) -> JsonableDict:
        result: JsonableDict = {}
        for name in self.field_names():
            value = getattr(self, name)
            result[name] = list(value) if isinstance(value, tuple) else value
        return result

def _coerce_value(key: str, value: Any, source: str) -> Any:
    if key == "bind_addresses":
        if value is None:
            return None
        if isinstance(value, str):
            addresses = [a.strip() for a in value.split(",") if a.strip() != ""]
        elif isinstance(value, list) and all(isinstance(a, str) for a in value):
            addresses = value
        else:
            raise WemoConfigError(f"{source}: {key} must be a list of addresses")
        return tuple(addresses) if len(addresses) > 0 else None
    if key == "retries":
        try:
            if isinstance(value, bool) or (isinstance(value, float) and not value.is_integer()):
                raise ValueError(value)
            return int(value)
        except (TypeError, ValueError) as e:
            raise WemoConfigError(f"{source}: {key} must be an integer, got {value!r}") from e
    try:
        if isinstance(value, bool):
            raise ValueError(value)
        return float(value)
    except (TypeError, ValueError) as e:
        raise WemoConfigError(f"{source}: {key} must be a number, got {value!r}") from e
