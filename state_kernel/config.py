"""
Engine settings (``state_kernel.config``).

Responsibility
--------------
Loads the runtime settings of the state kernel -- database connection,
pool sizing, transition retry bound and log level -- from an optional
YAML file, then applies environment overrides.  Produces a frozen
``EngineSettings`` that ``db.engine.init_engine_from_settings`` consumes.

Invariants enforced
-------------------
* ``transition_max_attempts`` is at least 1.
* Every parsed value is validated; no silent defaults for malformed input.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown keys or invalid values  -> ``ValueError``.

Environment overrides
---------------------
``DATABASE_URL`` and ``STATE_KERNEL_<FIELD>`` (upper-case field name,
e.g. ``STATE_KERNEL_TRANSITION_MAX_ATTEMPTS``) win over the YAML file.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Mapping

import yaml

DEFAULT_DATABASE_URL = "sqlite:///state_kernel.db"

# Bound on whole-transaction retries for lock/serialization failures.
DEFAULT_TRANSITION_MAX_ATTEMPTS = 5

_ENV_PREFIX = "STATE_KERNEL_"


@dataclass(frozen=True)
class EngineSettings:
    """Runtime settings for the state kernel.

    Contract: frozen; construct through ``load_settings`` or directly.
    """

    database_url: str = DEFAULT_DATABASE_URL
    echo: bool = False
    pool_size: int = 20
    max_overflow: int = 10
    pool_timeout: int = 30
    transition_max_attempts: int = DEFAULT_TRANSITION_MAX_ATTEMPTS
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if self.transition_max_attempts < 1:
            raise ValueError(
                "transition_max_attempts must be >= 1, "
                f"got {self.transition_max_attempts}"
            )
        if self.pool_size < 1:
            raise ValueError(f"pool_size must be >= 1, got {self.pool_size}")


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def _coerce(name: str, raw: Any, target: type) -> Any:
    if target is bool:
        if isinstance(raw, bool):
            return raw
        text = str(raw).strip().lower()
        if text in ("1", "true", "yes", "on"):
            return True
        if text in ("0", "false", "no", "off"):
            return False
        raise ValueError(f"Cannot parse boolean for {name} from {raw!r}")
    if target is int:
        if isinstance(raw, bool):
            raise ValueError(f"Cannot parse integer for {name} from {raw!r}")
        try:
            return int(raw)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Cannot parse integer for {name} from {raw!r}") from exc
    return str(raw)


_FIELD_TYPES: dict[str, type] = {
    "database_url": str,
    "echo": bool,
    "pool_size": int,
    "max_overflow": int,
    "pool_timeout": int,
    "transition_max_attempts": int,
    "log_level": str,
}


def parse_settings(data: Mapping[str, Any]) -> EngineSettings:
    """Parse an ``EngineSettings`` from a dict (e.g. a YAML document).

    Raises:
        ValueError: on unknown keys or uncoercible values.
    """
    unknown = set(data) - set(_FIELD_TYPES)
    if unknown:
        raise ValueError(f"Unknown settings keys: {sorted(unknown)}")
    values = {
        name: _coerce(name, raw, _FIELD_TYPES[name])
        for name, raw in data.items()
    }
    return EngineSettings(**values)


def apply_env_overrides(
    settings: EngineSettings,
    environ: Mapping[str, str] | None = None,
) -> EngineSettings:
    """Return ``settings`` with ``DATABASE_URL`` / ``STATE_KERNEL_*`` applied."""
    env = os.environ if environ is None else environ
    overrides: dict[str, Any] = {}
    if env.get("DATABASE_URL"):
        overrides["database_url"] = env["DATABASE_URL"]
    for f in fields(EngineSettings):
        key = f"{_ENV_PREFIX}{f.name.upper()}"
        if key in env:
            overrides[f.name] = _coerce(f.name, env[key], _FIELD_TYPES[f.name])
    if not overrides:
        return settings
    return replace(settings, **overrides)


def load_settings(
    path: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> EngineSettings:
    """
    Load settings from an optional YAML file plus environment overrides.

    The YAML document may hold the fields at top level or under a
    ``state_kernel:`` key.
    """
    settings = EngineSettings()
    if path is not None:
        data = load_yaml_file(Path(path))
        if "state_kernel" in data:
            data = data["state_kernel"] or {}
        settings = parse_settings(data)
    return apply_env_overrides(settings, environ)
