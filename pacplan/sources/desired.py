"""Desired state — the policy resources authored in the definitions folder.

Layout below the definitions folder:

    policyDefinitions/**          one definition per item
    policySetDefinitions/**       one set per item
    policyAssignments/**          one assignment per item, scoped per pacSelector
    policyExemptions/<selector>/  exemptions of one environment

Definitions and sets are deployed at the environment's deployment root scope.
Assignments and exemptions reference scopes by logical name (resolved through
the scope tree) or by id, and are only turned into concrete resources by the
planners once their references resolve.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

from pacplan.config import PacEnvironment, PacFolders
from pacplan.errors import ConfigurationError
from pacplan.models.resources import (
    DEFINITION_KIND,
    SET_DEFINITION_KIND,
    Assignment,
    Exemption,
    ManagedIdentity,
    PolicyDefinition,
    PolicySetDefinition,
    RoleRequirement,
    definition_from_dict,
    identity_from_dict,
    parse_timestamp,
    set_definition_from_dict,
    unwrap_parameter_values,
)
from pacplan.sources.files import iter_items

logger = logging.getLogger(__name__)

EXEMPTION_CATEGORIES = {"waiver": "Waiver", "mitigated": "Mitigated"}

_TARGET_KEYS = {
    "policyDefinitionName": DEFINITION_KIND,
    "policySetDefinitionName": SET_DEFINITION_KIND,
    "policyDefinitionId": "",
    "policySetDefinitionId": "",
}


class ExemptionsStatus(Enum):
    MANAGED = "managed"
    NOT_CONFIGURED = "not_configured"  # No policyExemptions folder at all
    UNMANAGED = "unmanaged"  # Folder exists, environment subfolder missing


@dataclass
class DefinitionTarget:
    """What an assignment points at, before resolution."""

    reference: str  # Name or id
    kind: str = ""  # DEFINITION_KIND / SET_DEFINITION_KIND; empty when given by id


@dataclass
class DesiredAssignment:
    """An authored assignment; planned once per scope."""

    name: str
    target: DefinitionTarget
    scopes: list[str]
    display_name: str = ""
    description: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)
    parameters: dict[str, Any] = field(default_factory=dict)
    enforcement_mode: str = "Default"
    not_scopes: list[str] = field(default_factory=list)
    non_compliance_messages: list[dict[str, Any]] = field(default_factory=list)
    identity: ManagedIdentity | None = None
    identity_declared: bool = False  # An explicit identity block, possibly type None
    additional_roles: list[RoleRequirement] = field(default_factory=list)
    source: str = ""

    def build(
        self,
        scope_id: str,
        policy_definition_id: str,
        identity: ManagedIdentity | None,
        not_scopes: list[str],
        metadata: dict[str, Any],
    ) -> Assignment:
        return Assignment(
            name=self.name,
            scope=scope_id,
            policy_definition_id=policy_definition_id,
            display_name=self.display_name,
            description=self.description,
            metadata=metadata,
            parameters=dict(self.parameters),
            enforcement_mode=self.enforcement_mode,
            not_scopes=not_scopes,
            non_compliance_messages=list(self.non_compliance_messages),
            identity=identity,
            additional_roles=list(self.additional_roles),
        )


@dataclass
class DesiredExemption:
    """An authored exemption, before its scope and target resolve."""

    name: str
    scope: str  # Name or id
    assignment_id: str = ""
    assignment_name: str = ""
    assignment_scope: str = ""
    exemption_category: str = "Waiver"
    expires_on: str | None = None
    display_name: str = ""
    description: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)
    policy_definition_reference_ids: list[str] = field(default_factory=list)
    source: str = ""

    def is_expired(self, now: datetime) -> bool:
        expires = parse_timestamp(self.expires_on)
        return expires is not None and expires <= now

    def build(self, scope_id: str, policy_assignment_id: str, metadata: dict[str, Any]) -> Exemption:
        return Exemption(
            name=self.name,
            scope=scope_id,
            policy_assignment_id=policy_assignment_id,
            exemption_category=self.exemption_category,
            expires_on=self.expires_on,
            display_name=self.display_name,
            description=self.description,
            metadata=metadata,
            policy_definition_reference_ids=list(self.policy_definition_reference_ids),
        )


@dataclass
class DesiredState:
    definitions: list[PolicyDefinition] = field(default_factory=list)
    set_definitions: list[PolicySetDefinition] = field(default_factory=list)
    assignments: list[DesiredAssignment] = field(default_factory=list)
    exemptions: list[DesiredExemption] = field(default_factory=list)
    exemptions_status: ExemptionsStatus = ExemptionsStatus.NOT_CONFIGURED


def load_desired_state(folders: PacFolders, environment: PacEnvironment) -> DesiredState:
    """Read every desired-state document for one environment."""
    state = DesiredState()
    root = environment.deployment_root_scope
    selector = environment.pac_selector

    for path, raw in iter_items(folders.policy_definitions, "policyDefinitions"):
        state.definitions.append(_parse_definition(raw, root, path))

    for path, raw in iter_items(folders.policy_set_definitions, "policySetDefinitions"):
        state.set_definitions.append(_parse_set_definition(raw, root, path))

    for path, raw in iter_items(folders.policy_assignments, "assignments"):
        assignment = _parse_assignment(raw, selector, path)
        if assignment.scopes:
            state.assignments.append(assignment)
        else:
            logger.debug("Assignment '%s' (%s) has no scope for '%s'", assignment.name, path, selector)

    exemptions_root = folders.policy_exemptions
    exemptions_folder = exemptions_root / selector
    if not exemptions_root.is_dir():
        state.exemptions_status = ExemptionsStatus.NOT_CONFIGURED
    elif not exemptions_folder.is_dir():
        state.exemptions_status = ExemptionsStatus.UNMANAGED
    else:
        state.exemptions_status = ExemptionsStatus.MANAGED
        for path, raw in iter_items(exemptions_folder, "exemptions"):
            state.exemptions.append(_parse_exemption(raw, path))

    logger.info(
        "Desired state for '%s': %d definitions, %d sets, %d assignments, %d exemptions (exemptions %s)",
        selector,
        len(state.definitions),
        len(state.set_definitions),
        len(state.assignments),
        len(state.exemptions),
        state.exemptions_status.value,
    )
    return state


# --- Parsers ---


def _parse_definition(raw: dict, root_scope: str, path: Path) -> PolicyDefinition:
    definition = definition_from_dict(raw, scope=root_scope)
    if not definition.name:
        raise ConfigurationError(f"{path}: policy definition is missing 'name'")
    if not definition.policy_rule:
        raise ConfigurationError(f"{path}: policy definition '{definition.name}' is missing 'policyRule'")
    return definition


def _parse_set_definition(raw: dict, root_scope: str, path: Path) -> PolicySetDefinition:
    set_definition = set_definition_from_dict(raw, scope=root_scope)
    if not set_definition.name:
        raise ConfigurationError(f"{path}: policy set definition is missing 'name'")
    if not set_definition.policy_definitions:
        raise ConfigurationError(f"{path}: policy set definition '{set_definition.name}' has no policyDefinitions")
    for member in set_definition.policy_definitions:
        if not member.reference:
            raise ConfigurationError(
                f"{path}: member '{member.reference_id}' of '{set_definition.name}' "
                "needs policyDefinitionName or policyDefinitionId"
            )
    return set_definition


def _for_selector(value: Any, selector: str) -> list:
    """Values are either a plain list or a mapping of pacSelector (or '*') to list."""
    if isinstance(value, dict):
        selected = value.get(selector, value.get("*", []))
    else:
        selected = value
    if selected is None:
        return []
    if isinstance(selected, (str, dict)):
        return [selected]
    return list(selected)


def _parse_target(raw: dict, path: Path) -> DefinitionTarget:
    source = raw.get("definition") if isinstance(raw.get("definition"), dict) else raw
    for key, kind in _TARGET_KEYS.items():
        if source.get(key):
            return DefinitionTarget(reference=str(source[key]), kind=kind)
    raise ConfigurationError(
        f"{path}: assignment '{raw.get('name', '')}' needs one of: {', '.join(_TARGET_KEYS)}"
    )


def _parse_assignment(raw: dict, selector: str, path: Path) -> DesiredAssignment:
    name = raw.get("name")
    if not name:
        raise ConfigurationError(f"{path}: assignment is missing 'name'")

    identity_declared = "identity" in raw
    identity = identity_from_dict(raw.get("identity"), str(raw.get("managedIdentityLocation", "") or ""))

    additional_roles = []
    for role in _for_selector(raw.get("additionalRoleAssignments"), selector):
        if not isinstance(role, dict) or not role.get("roleDefinitionId") or not role.get("scope"):
            raise ConfigurationError(
                f"{path}: additionalRoleAssignments of '{name}' need roleDefinitionId and scope"
            )
        additional_roles.append(RoleRequirement(role_definition_id=str(role["roleDefinitionId"]), scope=str(role["scope"])))

    return DesiredAssignment(
        name=str(name),
        target=_parse_target(raw, path),
        scopes=[str(s) for s in _for_selector(raw.get("scope"), selector)],
        display_name=str(raw.get("displayName", "") or ""),
        description=str(raw.get("description", "") or ""),
        metadata=dict(raw.get("metadata") or {}),
        parameters=unwrap_parameter_values(raw.get("parameters")),
        enforcement_mode=str(raw.get("enforcementMode", "Default") or "Default"),
        not_scopes=[str(s) for s in _for_selector(raw.get("notScopes"), selector)],
        non_compliance_messages=[m for m in raw.get("nonComplianceMessages") or [] if isinstance(m, dict)],
        identity=identity,
        identity_declared=identity_declared,
        additional_roles=additional_roles,
        source=str(path),
    )


def _parse_exemption(raw: dict, path: Path) -> DesiredExemption:
    name = raw.get("name")
    scope = raw.get("scope")
    if not name or not scope:
        raise ConfigurationError(f"{path}: exemption needs 'name' and 'scope'")

    category = EXEMPTION_CATEGORIES.get(str(raw.get("exemptionCategory", "Waiver")).lower())
    if category is None:
        raise ConfigurationError(
            f"{path}: exemption '{name}' has invalid exemptionCategory '{raw.get('exemptionCategory')}'"
        )

    expires_on = raw.get("expiresOn") or None
    if expires_on is not None:
        expires_on = expires_on.isoformat() if isinstance(expires_on, datetime) else str(expires_on)
        try:
            parse_timestamp(expires_on)
        except ValueError as e:
            raise ConfigurationError(f"{path}: exemption '{name}' has invalid expiresOn: {e}") from e

    assignment = raw.get("assignment") if isinstance(raw.get("assignment"), dict) else {}
    assignment_id = str(raw.get("policyAssignmentId", "") or "")
    if not assignment_id and not assignment.get("name"):
        raise ConfigurationError(
            f"{path}: exemption '{name}' needs policyAssignmentId or assignment.name"
        )

    return DesiredExemption(
        name=str(name),
        scope=str(scope),
        assignment_id=assignment_id,
        assignment_name=str(assignment.get("name", "") or ""),
        assignment_scope=str(assignment.get("scope", "") or scope),
        exemption_category=category,
        expires_on=expires_on,
        display_name=str(raw.get("displayName", "") or ""),
        description=str(raw.get("description", "") or ""),
        metadata=dict(raw.get("metadata") or {}),
        policy_definition_reference_ids=[str(r) for r in raw.get("policyDefinitionReferenceIds") or []],
        source=str(path),
    )
