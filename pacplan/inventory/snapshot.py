"""Deployed inventory snapshot.

Enumerating what is deployed is the job of a separate export step that may
fan out across scopes and retry on its own. Planning only ever sees the
finished, consistent snapshot it produced. The file-backed provider reads
that export:

    {
      "policyDefinitions": [{"id": "...", "properties": {...}}],
      "policySetDefinitions": [...],
      "policyAssignments": [{"id": "...", "identity": {...}, "properties": {...}}],
      "policyExemptions": [...],
      "roleAssignments": [{"id": "...", "properties": {"scope": "...", "roleDefinitionId": "...", "principalId": "..."}}],
      "scopeTree": {"name": "contoso", "id": "/providers/Microsoft.Management/managementGroups/contoso", "children": [...]}
    }
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Protocol, TypeVar

from pacplan.errors import ConfigurationError
from pacplan.inventory.scope_tree import ScopeTree
from pacplan.models.resources import (
    Assignment,
    Exemption,
    PolicyDefinition,
    PolicySetDefinition,
    RoleAssignment,
    assignment_from_dict,
    definition_from_dict,
    exemption_from_dict,
    normalize_id,
    role_assignment_from_dict,
    set_definition_from_dict,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class DeployedInventory:
    """Deployed resources per kind, keyed by normalized id."""

    policy_definitions: dict[str, PolicyDefinition] = field(default_factory=dict)
    policy_set_definitions: dict[str, PolicySetDefinition] = field(default_factory=dict)
    assignments: dict[str, Assignment] = field(default_factory=dict)
    exemptions: dict[str, Exemption] = field(default_factory=dict)
    role_assignments: list[RoleAssignment] = field(default_factory=list)

    def role_assignments_by_principal(self) -> dict[str, list[RoleAssignment]]:
        index: dict[str, list[RoleAssignment]] = {}
        for role in self.role_assignments:
            if role.principal_id:
                index.setdefault(role.principal_id.lower(), []).append(role)
        return index


class InventoryProvider(Protocol):
    """Supplies the deployed inventory as of a single point in time."""

    def load(self) -> DeployedInventory:
        """Load the deployed inventory."""


class ScopeTreeProvider(Protocol):
    """Supplies the management hierarchy of an environment."""

    def load_scope_tree(self) -> ScopeTree:
        """Load the scope tree."""


@dataclass
class SnapshotFileProvider:
    """Inventory and scope tree read from one exported snapshot file.

    The file is read once; ``load`` and ``load_scope_tree`` both build from that read.
    """

    path: Path
    _data: dict | None = field(default=None, init=False, repr=False, compare=False)

    def _read(self) -> dict:
        if self._data is None:
            self._data = self._parse()
        return self._data

    def _parse(self) -> dict:
        if not self.path.is_file():
            raise ConfigurationError(f"Inventory snapshot not found: {self.path}")
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"Invalid inventory snapshot {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise ConfigurationError(f"Inventory snapshot {self.path} must contain an object")
        return data

    def load(self) -> DeployedInventory:
        data = self._read()
        inventory = inventory_from_dict(data, source=str(self.path))
        logger.info(
            "Loaded inventory snapshot %s: %d definitions, %d sets, %d assignments, %d exemptions, %d role assignments",
            self.path,
            len(inventory.policy_definitions),
            len(inventory.policy_set_definitions),
            len(inventory.assignments),
            len(inventory.exemptions),
            len(inventory.role_assignments),
        )
        return inventory

    def load_scope_tree(self) -> ScopeTree:
        data = self._read()
        tree_data = data.get("scopeTree")
        if not isinstance(tree_data, dict):
            raise ConfigurationError(f"Inventory snapshot {self.path} has no 'scopeTree'")
        return ScopeTree.from_dict(tree_data)


def inventory_from_dict(data: dict, source: str = "snapshot") -> DeployedInventory:
    """Parse the resource lists of a snapshot mapping."""
    return DeployedInventory(
        policy_definitions=_index(data.get("policyDefinitions"), definition_from_dict, source),
        policy_set_definitions=_index(data.get("policySetDefinitions"), set_definition_from_dict, source),
        assignments=_index(data.get("policyAssignments"), assignment_from_dict, source),
        exemptions=_index(data.get("policyExemptions"), exemption_from_dict, source),
        role_assignments=[
            role_assignment_from_dict(r) for r in data.get("roleAssignments") or [] if isinstance(r, dict)
        ],
    )


def _index(raw_items: object, parse: Callable[[dict], T], source: str) -> dict[str, T]:
    items: dict[str, T] = {}
    for i, raw in enumerate(raw_items or []):
        if not isinstance(raw, dict):
            continue
        try:
            item = parse(raw)
        except ValueError as e:
            raise ConfigurationError(f"Malformed entry {i} in {source}: {e}") from e
        items[normalize_id(item.id)] = item
    return items
