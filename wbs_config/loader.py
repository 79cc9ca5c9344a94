"""
Settings loader (``wbs_config.loader``).

Responsibility
--------------
Loads YAML settings files and parses them into ``EngineSettings``.
The single public entry point for runtime settings is
``wbs_config.get_active_settings()``.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown keys or invalid values -> ``InvalidSettingsError``.
"""

from __future__ import annotations

import hashlib
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from wbs_config.schema import EngineSettings
from wbs_kernel.exceptions import InvalidSettingsError

_KNOWN_KEYS: frozenset[str] = frozenset({
    "money_places",
    "quantity_places",
    "percentage_places",
    "clamp_overrun_balance",
    "default_bdi",
    "filter_case_sensitive",
})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_decimal(name: str, value: Any) -> Decimal:
    """Parse a Decimal from YAML; floats go through ``str`` to keep digits."""
    if isinstance(value, bool):
        raise InvalidSettingsError(name, value, "must be a number")
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise InvalidSettingsError(name, value, "must be a number") from exc


def parse_settings(data: dict[str, Any], config_id: str = "default") -> EngineSettings:
    """
    Parse ``EngineSettings`` from a dict.

    Accepts either a flat mapping or one nested under an ``engine`` key.
    Missing keys fall back to the schema defaults.
    """
    section = data.get("engine", data)
    if not isinstance(section, dict):
        raise InvalidSettingsError("engine", section, "must be a mapping")

    unknown = set(section) - _KNOWN_KEYS - {"config_id"}
    if unknown:
        raise InvalidSettingsError(
            ", ".join(sorted(unknown)), None, "unknown setting"
        )

    kwargs: dict[str, Any] = {
        key: value
        for key, value in section.items()
        if key not in ("default_bdi", "config_id")
    }
    if "default_bdi" in section:
        kwargs["default_bdi"] = parse_decimal("default_bdi", section["default_bdi"])
    return EngineSettings(config_id=str(data.get("config_id", config_id)), **kwargs)


def compute_checksum(data: dict[str, Any]) -> str:
    """Deterministic SHA-256 of a parsed settings mapping."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
