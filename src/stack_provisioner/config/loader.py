"""YAML configuration file loader."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import TYPE_CHECKING, Any

from dotenv import dotenv_values
from pydantic import ValidationError
from ruamel.yaml import YAML

from stack_provisioner.config.schema import Config

logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from stack_provisioner.resources.base import Resource


class ConfigError(Exception):
    """Raised for configuration loading / validation errors."""


# Field name → environment variable.
_SETTINGS_ENV_MAP: dict[str, str] = {
    "project": "STACK_PROJECT",
    "environment": "STACK_ENVIRONMENT",
    "region": "STACK_REGION",
    "account": "STACK_ACCOUNT",
}


def _resolve_settings(raw_settings: dict[str, Any], config_dir: Path) -> dict[str, Any]:
    """Resolve stack settings from YAML, env vars, and ``.env`` file.

    Priority (highest wins): YAML value > env var > ``.env`` file.
    """
    env_file = config_dir / ".env"
    dotenv_vals = dotenv_values(env_file, encoding="utf-8-sig") if env_file.is_file() else {}

    resolved: dict[str, Any] = {}
    for field, env_key in _SETTINGS_ENV_MAP.items():
        val = raw_settings.get(field)
        if val is None:
            val = os.environ.get(env_key)
        if val is None:
            val = dotenv_vals.get(env_key)
        if val is not None:
            # YAML reads account ids like 123456789012 as integers.
            resolved[field] = str(val)

    unknown = sorted(set(raw_settings) - set(_SETTINGS_ENV_MAP))
    if unknown:
        raise ConfigError(f"Unknown settings: {', '.join(unknown)}")
    return resolved


def _validate_unique_names(resources: list[Resource]) -> list[str]:
    """Check that no two resources share the same id anywhere in the stack."""
    seen: dict[str, str] = {}  # id → first address
    errors: list[str] = []
    for r in resources:
        if r.name in seen:
            errors.append(
                f"Duplicate resource id '{r.name}': found in both {seen[r.name]} and {r.address}"
            )
        else:
            seen[r.name] = r.address
    return errors


def _relative_to(path: Path | None, base: Path) -> Path | None:
    if path is None or path.is_absolute():
        return path
    return base / path


def load_config(path: Path | str) -> Config:
    """Load a YAML configuration file and return a ``Config`` object.

    Relative ``state_path`` and ``provider.sandbox_path`` are resolved
    against the directory of the file.

    Raises:
        ConfigError: On YAML parse errors, missing sections, or validation failures.
    """
    path = Path(path)

    try:
        raw = YAML(typ="safe").load(path)
    except Exception as exc:
        raise ConfigError(f"Failed to read {path}: {exc}") from exc

    if not isinstance(raw, dict):
        raise ConfigError(f"{path} must contain a mapping at the top level")

    try:
        raw["settings"] = _resolve_settings(raw.get("settings") or {}, path.parent)
        config = Config.model_validate(raw)
    except ValidationError as exc:
        raise ConfigError(str(exc)) from exc

    config.config_dir = path.parent
    config.state_path = _relative_to(config.state_path, config.config_dir)  # type: ignore[assignment]
    config.provider.sandbox_path = _relative_to(config.provider.sandbox_path, config.config_dir)

    errors = _validate_unique_names(config.resources)
    if errors:
        raise ConfigError("\n".join(errors))

    logger.info("Loaded config from %s (%d resources)", path, len(config.resources))
    return config
