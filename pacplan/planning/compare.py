"""Deep comparison of desired and deployed resource fields.

The control plane echoes back values with different casing and fills in
empty containers, so comparison is case-insensitive for strings and keys,
and treats None, "", {} and [] as the same value.
"""

from __future__ import annotations

from typing import Any

from pacplan.models.plan import Classification
from pacplan.models.resources import get_ci

SYSTEM_METADATA_KEYS = frozenset({"createdby", "createdon", "updatedby", "updatedon"})


def _is_empty(value: Any) -> bool:
    return value is None or (isinstance(value, (str, dict, list)) and len(value) == 0)


def values_equal(a: Any, b: Any) -> bool:
    if _is_empty(a) and _is_empty(b):
        return True
    if isinstance(a, dict) and isinstance(b, dict):
        left = {str(k).lower(): v for k, v in a.items()}
        right = {str(k).lower(): v for k, v in b.items()}
        return all(values_equal(left.get(k), right.get(k)) for k in left.keys() | right.keys())
    if isinstance(a, list) and isinstance(b, list):
        return len(a) == len(b) and all(values_equal(x, y) for x, y in zip(a, b))
    if isinstance(a, str) and isinstance(b, str):
        return a.casefold() == b.casefold()
    if isinstance(a, bool) or isinstance(b, bool):
        return type(a) is type(b) and a == b
    return a == b


def metadata_equal(desired: dict[str, Any], deployed: dict[str, Any]) -> bool:
    """Compare metadata, ignoring keys the control plane maintains itself."""
    return values_equal(_strip_system_keys(desired), _strip_system_keys(deployed))


def _strip_system_keys(metadata: dict[str, Any]) -> dict[str, Any]:
    return {k: v for k, v in (metadata or {}).items() if str(k).lower() not in SYSTEM_METADATA_KEYS}


def changed_fields(desired: dict[str, Any], deployed: dict[str, Any]) -> list[str]:
    """Names of fields whose values differ, in desired order."""
    return [name for name, value in desired.items() if not values_equal(value, deployed.get(name))]


def parameter_incompatibilities(desired: dict[str, Any], deployed: dict[str, Any]) -> list[str]:
    """Parameter schema changes that existing assignments could not survive.

    A deployed parameter that disappears or changes type, or a new parameter
    without a default value, forces the definition to be replaced.
    """
    reasons = []
    desired_by_name = {k.lower(): (k, v) for k, v in (desired or {}).items()}
    deployed_by_name = {k.lower(): (k, v) for k, v in (deployed or {}).items()}

    for key, (name, schema) in deployed_by_name.items():
        if key not in desired_by_name:
            reasons.append(f"parameter '{name}' removed")
            continue
        desired_type = get_ci(desired_by_name[key][1], "type")
        if not values_equal(desired_type, get_ci(schema, "type")):
            reasons.append(f"parameter '{name}' type changed")

    for key, (name, schema) in desired_by_name.items():
        if key in deployed_by_name:
            continue
        if get_ci(schema, "defaultValue") is None:
            reasons.append(f"parameter '{name}' added without a default value")

    return reasons


def classify_changes(
    immutable: list[str],
    mutable: list[str],
) -> tuple[Classification, list[str]]:
    """Map immutable and mutable differences to a classification and reasons."""
    if immutable:
        return Classification.REPLACE, immutable + mutable
    if mutable:
        return Classification.UPDATE, list(mutable)
    return Classification.UNCHANGED, []
