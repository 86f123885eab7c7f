"""Declared configuration files (YAML).

Desired mapping order::

    mapping_order:
      enabled: [5, 3, 8]
      disabled: [1]

Single mapping definition (for ``create-mapping``)::

    name: stale accounts
    match: all
    conditions:
      - {source: last_login, operator: ">", value: "90"}
    actions:
      - {action: set_status, value: ["2"]}
"""
from __future__ import annotations
from pathlib import Path
from typing import Any, List

import yaml

from mapping_sync.core.onelogin.mapping_order import DesiredOrderState
from mapping_sync.core.onelogin.mappings import MappingRule


class DeclarationError(ValueError):
    """Declared configuration file is malformed."""
    pass


def _read_yaml(path: Path | str) -> Any:
    path = Path(path)
    try:
        with path.open("r", encoding="utf-8") as handle:
            return yaml.safe_load(handle)
    except yaml.YAMLError as e:
        raise DeclarationError(f"{path}: invalid YAML: {e}") from e


def _id_list(value: Any, key: str, path: Path | str) -> List[int]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise DeclarationError(f"{path}: mapping_order.{key} must be a list of mapping ids")
    ids = []
    for item in value:
        # bool is an int subclass; reject it explicitly
        if isinstance(item, bool) or not isinstance(item, int):
            raise DeclarationError(f"{path}: mapping_order.{key} contains a non-integer id: {item!r}")
        ids.append(item)
    return ids


def load_desired_state(path: Path | str) -> DesiredOrderState:
    """Load the desired enabled order and disabled set."""
    data = _read_yaml(path)
    if not isinstance(data, dict) or not isinstance(data.get("mapping_order"), dict):
        raise DeclarationError(f"{path}: expected a top-level 'mapping_order' mapping")

    section = data["mapping_order"]
    missing = [key for key in ("enabled", "disabled") if key not in section]
    if missing:
        raise DeclarationError(f"{path}: mapping_order is missing {', '.join(missing)}")

    return DesiredOrderState(
        enabled=_id_list(section["enabled"], "enabled", path),
        disabled=_id_list(section["disabled"], "disabled", path),
    )


def load_mapping_rule(path: Path | str) -> MappingRule:
    """Load a single mapping definition."""
    data = _read_yaml(path)
    if not isinstance(data, dict):
        raise DeclarationError(f"{path}: expected a mapping definition")
    for key in ("name", "match"):
        if not data.get(key):
            raise DeclarationError(f"{path}: mapping definition requires '{key}'")
    return MappingRule.from_payload({
        "name": data["name"],
        "match": data["match"],
        "conditions": data.get("conditions") or [],
        "actions": data.get("actions") or [],
    })
