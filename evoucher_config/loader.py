"""
Configuration Loader (``evoucher_config.loader``).

Responsibility
--------------
Reads a YAML configuration set and returns its sections as plain dicts.
Typed construction happens in ``evoucher_config`` through the module
config dataclasses.

Architecture position
---------------------
**Config layer** -- infrastructure tooling.  No dependency on kernel,
modules or engines.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* A section that is not a mapping  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Returns an empty dict for an empty file.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def section(data: dict[str, Any], name: str) -> dict[str, Any]:
    """The named top-level section, or an empty dict when absent."""
    value = data.get(name) or {}
    if not isinstance(value, dict):
        raise ValueError(f"Config section '{name}' must be a mapping, got {type(value).__name__}")
    return value


def compute_checksum(data: dict[str, Any]) -> str:
    """Deterministic SHA-256 of a parsed configuration set."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
