#!/usr/bin/env python
#
# FindFoci Optimiser - Configuration I/O
# © 2025 FindFoci Optimiser Authors
#

"""
Load and save optimiser configuration files for CLI usage.

Files are JSON or YAML mappings of ``OptimiserConfig`` fields; an optional
``preset`` key selects the base values.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Callable, Dict

import yaml

from .exceptions import FociConfigError
from .schema import OptimiserConfig


def _parse_json(text: str) -> Any:
    return json.loads(text)


def _parse_yaml(text: str) -> Any:
    data = yaml.safe_load(text)
    return data if data is not None else {}


_PARSERS: Dict[str, Callable[[str], Any]] = {
    ".json": _parse_json,
    ".yaml": _parse_yaml,
    ".yml": _parse_yaml,
}
SUPPORTED_CONFIG_EXTENSIONS = set(_PARSERS)


def _check_extension(path: Path) -> str:
    suffix = path.suffix.lower()
    if suffix not in _PARSERS:
        raise FociConfigError(
            "Unsupported configuration file format",
            filepath=str(path),
            context={"supported_extensions": sorted(SUPPORTED_CONFIG_EXTENSIONS)},
        )
    return suffix


def _read_mapping(path: Path) -> Any:
    suffix = _check_extension(path)
    try:
        return _PARSERS[suffix](path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, yaml.YAMLError) as exc:
        kind = "JSON" if suffix == ".json" else "YAML"
        raise FociConfigError(
            f"Invalid {kind} configuration file",
            filepath=str(path),
            original_error=exc,
        ) from exc
    except OSError as exc:
        raise FociConfigError(
            "Cannot read configuration file",
            filepath=str(path),
            original_error=exc,
        ) from exc


def load_config(path: str | Path) -> OptimiserConfig:
    """Load optimiser configuration from a YAML/JSON file."""
    config_path = Path(path)
    if not config_path.exists():
        raise FociConfigError(
            "Configuration file not found",
            filepath=str(config_path),
        )
    if config_path.is_dir():
        raise FociConfigError(
            "Configuration path must be a file, not a directory",
            filepath=str(config_path),
        )
    data = _read_mapping(config_path)
    if not isinstance(data, dict):
        raise FociConfigError(
            "Configuration file must define an object at the top level",
            filepath=str(config_path),
        )
    try:
        return OptimiserConfig.from_dict(data)
    except (TypeError, ValueError, KeyError) as exc:
        raise FociConfigError(
            "Invalid optimiser configuration",
            filepath=str(config_path),
            original_error=exc,
        ) from exc


def save_config(config: OptimiserConfig, path: str | Path) -> None:
    """Write a configuration as YAML or JSON, chosen by file extension."""
    config_path = Path(path)
    suffix = _check_extension(config_path)
    data = config.to_dict()
    if suffix == ".json":
        text = json.dumps(data, indent=2, sort_keys=False) + "\n"
    else:
        text = yaml.safe_dump(data, sort_keys=False)
    try:
        config_path.parent.mkdir(parents=True, exist_ok=True)
        config_path.write_text(text, encoding="utf-8")
    except OSError as exc:
        raise FociConfigError(
            "Cannot write configuration file",
            filepath=str(config_path),
            original_error=exc,
        ) from exc
