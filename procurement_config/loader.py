"""
Configuration Loader (``procurement_config.loader``).

Responsibility
--------------
Loads a YAML file and parses it into a ``ProcurementConfig``.  Settings
may sit at the top level or under a ``procurement:`` key.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML, non-mapping document, unknown keys or invalid values
  -> ``ConfigurationError``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from procurement_config.schema import ProcurementConfig
from procurement_kernel.exceptions import ConfigurationError
from procurement_kernel.logging_config import get_logger

logger = get_logger("config.loader")


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        ConfigurationError: if the file is not valid YAML or not a mapping.
    """
    with open(path) as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as exc:
            raise ConfigurationError(f"Invalid YAML in {path}: {exc}")
    if not isinstance(data, dict):
        raise ConfigurationError(f"{path} must contain a mapping at the top level")
    return data


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def load_config(path: Path | str) -> ProcurementConfig:
    """Load ``path`` into a ``ProcurementConfig``."""
    path = Path(path)
    data = load_yaml_file(path)
    section = data.get("procurement", data)
    if not isinstance(section, dict):
        raise ConfigurationError(f"'procurement' section of {path} must be a mapping")

    logger.info(
        "procurement_config_file_loaded",
        extra={"path": str(path), "checksum": compute_checksum(section)},
    )
    try:
        return ProcurementConfig.from_dict(section)
    except TypeError as exc:
        raise ConfigurationError(f"Invalid procurement config in {path}: {exc}")
