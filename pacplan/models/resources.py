"""Resource models for the four governed kinds plus derived role assignments.

Every resource is identified by an Azure-style id built from its scope, kind
and name. Registries and inventories key on the lower-cased id because names
and scopes are case-insensitive in the control plane.

Parsers accept the REST shape, where most fields sit under ``properties``,
as well as a flat shape where they sit at the top level. ``to_dict`` emits a
fixed, depth-bounded schema: a set refers to its members by id, an assignment
to its target by id, an exemption to its assignment by id.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

DEFINITION_KIND = "policyDefinitions"
SET_DEFINITION_KIND = "policySetDefinitions"
ASSIGNMENT_KIND = "policyAssignments"
EXEMPTION_KIND = "policyExemptions"

PROVIDER_SEGMENT = "/providers/Microsoft.Authorization/"

BUILTIN = "BuiltIn"
CUSTOM = "Custom"

_FRACTION = re.compile(r"\.(\d+)")


# --- Identity helpers ---


def resource_id(scope: str, kind: str, name: str) -> str:
    """Build the resource id of a governed resource at a scope."""
    return f"{scope.rstrip('/')}{PROVIDER_SEGMENT}{kind}/{name}"


def normalize_id(value: str) -> str:
    return value.strip().rstrip("/").lower()


def split_id(value: str) -> tuple[str, str, str]:
    """Split a resource id into (scope, kind, name).

    Raises:
        ValueError: If the id does not contain the authorization provider segment.
    """
    idx = value.lower().rfind(PROVIDER_SEGMENT.lower())
    if idx < 0:
        raise ValueError(f"Not a policy resource id: {value}")
    scope = value[:idx]
    kind, _, name = value[idx + len(PROVIDER_SEGMENT):].partition("/")
    return scope, kind, name


def role_guid(role_definition_id: str) -> str:
    """Return the trailing GUID of a role definition id, lower-cased."""
    return role_definition_id.strip().rstrip("/").split("/")[-1].lower()


def get_ci(mapping: Any, key: str, default: Any = None) -> Any:
    """Case-insensitive dict lookup. Returns default for non-dicts."""
    if not isinstance(mapping, dict):
        return default
    if key in mapping:
        return mapping[key]
    lowered = key.lower()
    for k, v in mapping.items():
        if str(k).lower() == lowered:
            return v
    return default


def _properties(raw: dict) -> dict:
    props = raw.get("properties")
    return props if isinstance(props, dict) else raw


def _dict(value: Any) -> dict:
    return dict(value) if isinstance(value, dict) else {}


def _list(value: Any) -> list:
    return list(value) if isinstance(value, list) else []


# --- Definitions ---


@dataclass
class PolicyDefinition:
    """A named policy rule with its mode and parameter schema."""

    name: str
    scope: str
    display_name: str = ""
    description: str = ""
    mode: str = "All"
    metadata: dict[str, Any] = field(default_factory=dict)
    parameters: dict[str, Any] = field(default_factory=dict)
    policy_rule: dict[str, Any] = field(default_factory=dict)
    policy_type: str = CUSTOM

    @property
    def id(self) -> str:
        return resource_id(self.scope, DEFINITION_KIND, self.name)

    @property
    def is_builtin(self) -> bool:
        return self.policy_type.lower() == BUILTIN.lower()

    def role_definition_ids(self) -> frozenset[str]:
        """Role definition ids the rule's remediation effect needs."""
        details = get_ci(get_ci(self.policy_rule, "then"), "details")
        return frozenset(str(r) for r in _list(get_ci(details, "roleDefinitionIds")))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "scope": self.scope,
            "displayName": self.display_name,
            "description": self.description,
            "mode": self.mode,
            "metadata": self.metadata,
            "parameters": self.parameters,
            "policyRule": self.policy_rule,
            "policyType": self.policy_type,
        }


@dataclass
class PolicyDefinitionReference:
    """One member of a policy set."""

    reference_id: str
    definition_id: str = ""
    definition_name: str = ""
    parameters: dict[str, Any] = field(default_factory=dict)
    group_names: list[str] = field(default_factory=list)

    @property
    def reference(self) -> str:
        return self.definition_id or self.definition_name

    def to_dict(self) -> dict[str, Any]:
        return {
            "policyDefinitionReferenceId": self.reference_id,
            "policyDefinitionId": self.definition_id,
            "parameters": self.parameters,
            "groupNames": self.group_names,
        }


@dataclass
class PolicySetDefinition:
    """An ordered collection of policy definitions with parameter bindings."""

    name: str
    scope: str
    display_name: str = ""
    description: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)
    parameters: dict[str, Any] = field(default_factory=dict)
    policy_definitions: list[PolicyDefinitionReference] = field(default_factory=list)
    policy_definition_groups: list[dict[str, Any]] = field(default_factory=list)
    policy_type: str = CUSTOM

    @property
    def id(self) -> str:
        return resource_id(self.scope, SET_DEFINITION_KIND, self.name)

    @property
    def is_builtin(self) -> bool:
        return self.policy_type.lower() == BUILTIN.lower()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "scope": self.scope,
            "displayName": self.display_name,
            "description": self.description,
            "metadata": self.metadata,
            "parameters": self.parameters,
            "policyDefinitions": [m.to_dict() for m in self.policy_definitions],
            "policyDefinitionGroups": self.policy_definition_groups,
            "policyType": self.policy_type,
        }


# --- Assignments ---


@dataclass
class ManagedIdentity:
    """Managed identity attached to an assignment for remediation."""

    type: str = "SystemAssigned"
    location: str = ""
    principal_id: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"type": self.type, "location": self.location, "principalId": self.principal_id}


@dataclass
class RoleRequirement:
    """An extra role the assignment's identity needs beyond its policy roles."""

    role_definition_id: str
    scope: str


@dataclass
class Assignment:
    """Binds a definition or set to a scope."""

    name: str
    scope: str
    policy_definition_id: str
    display_name: str = ""
    description: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)
    parameters: dict[str, Any] = field(default_factory=dict)  # name -> plain value
    enforcement_mode: str = "Default"
    not_scopes: list[str] = field(default_factory=list)
    non_compliance_messages: list[dict[str, Any]] = field(default_factory=list)
    identity: ManagedIdentity | None = None
    additional_roles: list[RoleRequirement] = field(default_factory=list)

    @property
    def id(self) -> str:
        return resource_id(self.scope, ASSIGNMENT_KIND, self.name)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "scope": self.scope,
            "policyDefinitionId": self.policy_definition_id,
            "displayName": self.display_name,
            "description": self.description,
            "metadata": self.metadata,
            "parameters": {k: {"value": v} for k, v in self.parameters.items()},
            "enforcementMode": self.enforcement_mode,
            "notScopes": self.not_scopes,
            "nonComplianceMessages": self.non_compliance_messages,
            "identity": self.identity.to_dict() if self.identity else None,
        }


# --- Exemptions ---


@dataclass
class Exemption:
    """Suppresses evaluation of an assignment at a scope."""

    name: str
    scope: str
    policy_assignment_id: str
    exemption_category: str = "Waiver"
    expires_on: str | None = None
    display_name: str = ""
    description: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)
    policy_definition_reference_ids: list[str] = field(default_factory=list)

    @property
    def id(self) -> str:
        return resource_id(self.scope, EXEMPTION_KIND, self.name)

    def is_expired(self, now: datetime) -> bool:
        expires = parse_timestamp(self.expires_on)
        return expires is not None and expires <= now

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "scope": self.scope,
            "policyAssignmentId": self.policy_assignment_id,
            "exemptionCategory": self.exemption_category,
            "expiresOn": self.expires_on,
            "displayName": self.display_name,
            "description": self.description,
            "metadata": self.metadata,
            "policyDefinitionReferenceIds": self.policy_definition_reference_ids,
        }


# --- Role assignments ---


@dataclass
class RoleAssignment:
    """A role granted to an assignment's managed identity. Derived, never authored."""

    role_definition_id: str
    scope: str
    principal_id: str | None = None  # None until the identity exists
    assignment_id: str = ""
    assignment_display_name: str = ""
    id: str = ""  # Set for deployed role assignments
    description: str = ""

    def key(self) -> tuple[str, str]:
        return role_guid(self.role_definition_id), normalize_id(self.scope)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "roleDefinitionId": self.role_definition_id,
            "scope": self.scope,
            "principalId": self.principal_id,
            "assignmentId": self.assignment_id,
            "assignmentDisplayName": self.assignment_display_name,
            "description": self.description,
        }
        if self.id:
            data["id"] = self.id
        return data


# --- Parsers ---


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an ISO 8601 timestamp; naive values are taken as UTC."""
    if not value:
        return None
    text = str(value).strip().replace("Z", "+00:00")
    # 3.10 fromisoformat only takes six fraction digits
    text = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _scope_and_name(raw: dict, scope: str | None) -> tuple[str, str]:
    name = str(raw.get("name", ""))
    if scope is None:
        rid = str(raw.get("id", ""))
        scope, _, id_name = split_id(rid)
        name = name or id_name
    return scope, name


def definition_from_dict(raw: dict, scope: str | None = None) -> PolicyDefinition:
    """Parse a policy definition. Without scope, it is taken from ``id``."""
    props = _properties(raw)
    scope, name = _scope_and_name(raw, scope)
    return PolicyDefinition(
        name=name,
        scope=scope,
        display_name=str(props.get("displayName", "") or ""),
        description=str(props.get("description", "") or ""),
        mode=str(props.get("mode", "All") or "All"),
        metadata=_dict(props.get("metadata")),
        parameters=_dict(props.get("parameters")),
        policy_rule=_dict(props.get("policyRule")),
        policy_type=str(props.get("policyType", CUSTOM) or CUSTOM),
    )


def reference_from_dict(raw: dict, index: int = 0) -> PolicyDefinitionReference:
    definition_id = str(raw.get("policyDefinitionId", "") or "")
    definition_name = str(raw.get("policyDefinitionName", "") or "")
    return PolicyDefinitionReference(
        reference_id=str(
            raw.get("policyDefinitionReferenceId")
            or definition_name
            or (split_id(definition_id)[2] if definition_id else f"member{index}")
        ),
        definition_id=definition_id,
        definition_name=definition_name,
        parameters=_dict(raw.get("parameters")),
        group_names=[str(g) for g in _list(raw.get("groupNames"))],
    )


def set_definition_from_dict(raw: dict, scope: str | None = None) -> PolicySetDefinition:
    """Parse a policy set definition. Without scope, it is taken from ``id``."""
    props = _properties(raw)
    scope, name = _scope_and_name(raw, scope)
    return PolicySetDefinition(
        name=name,
        scope=scope,
        display_name=str(props.get("displayName", "") or ""),
        description=str(props.get("description", "") or ""),
        metadata=_dict(props.get("metadata")),
        parameters=_dict(props.get("parameters")),
        policy_definitions=[
            reference_from_dict(m, i)
            for i, m in enumerate(_list(props.get("policyDefinitions")))
            if isinstance(m, dict)
        ],
        policy_definition_groups=[g for g in _list(props.get("policyDefinitionGroups")) if isinstance(g, dict)],
        policy_type=str(props.get("policyType", CUSTOM) or CUSTOM),
    )


def unwrap_parameter_values(raw: Any) -> dict[str, Any]:
    """Turn ``{"p": {"value": 1}}`` into ``{"p": 1}``; plain values pass through."""
    values: dict[str, Any] = {}
    for key, value in _dict(raw).items():
        if isinstance(value, dict) and set(value) == {"value"}:
            values[key] = value["value"]
        else:
            values[key] = value
    return values


def identity_from_dict(raw: Any, location: str = "") -> ManagedIdentity | None:
    if not isinstance(raw, dict):
        return None
    identity_type = str(raw.get("type", "") or "")
    if not identity_type or identity_type.lower() == "none":
        return None
    return ManagedIdentity(
        type=identity_type,
        location=str(raw.get("location", "") or location),
        principal_id=str(raw.get("principalId", "") or ""),
    )


def assignment_from_dict(raw: dict) -> Assignment:
    """Parse a deployed assignment (REST shape)."""
    props = _properties(raw)
    scope, name = _scope_and_name(raw, None)
    return Assignment(
        name=name,
        scope=scope,
        policy_definition_id=str(props.get("policyDefinitionId", "")),
        display_name=str(props.get("displayName", "") or ""),
        description=str(props.get("description", "") or ""),
        metadata=_dict(props.get("metadata")),
        parameters=unwrap_parameter_values(props.get("parameters")),
        enforcement_mode=str(props.get("enforcementMode", "Default") or "Default"),
        not_scopes=[str(s) for s in _list(props.get("notScopes"))],
        non_compliance_messages=[m for m in _list(props.get("nonComplianceMessages")) if isinstance(m, dict)],
        identity=identity_from_dict(raw.get("identity"), str(raw.get("location", "") or "")),
    )


def exemption_from_dict(raw: dict) -> Exemption:
    """Parse a deployed exemption (REST shape)."""
    props = _properties(raw)
    scope, name = _scope_and_name(raw, None)
    expires_on = props.get("expiresOn") or None
    if expires_on is not None:
        expires_on = str(expires_on)
        try:
            parse_timestamp(expires_on)
        except ValueError as e:
            raise ValueError(f"exemption '{name}' has invalid expiresOn: {expires_on!r}") from e
    return Exemption(
        name=name,
        scope=scope,
        policy_assignment_id=str(props.get("policyAssignmentId", "")),
        exemption_category=str(props.get("exemptionCategory", "Waiver") or "Waiver"),
        expires_on=expires_on,
        display_name=str(props.get("displayName", "") or ""),
        description=str(props.get("description", "") or ""),
        metadata=_dict(props.get("metadata")),
        policy_definition_reference_ids=[str(r) for r in _list(props.get("policyDefinitionReferenceIds"))],
    )


def role_assignment_from_dict(raw: dict) -> RoleAssignment:
    props = _properties(raw)
    return RoleAssignment(
        role_definition_id=str(props.get("roleDefinitionId", "")),
        scope=str(props.get("scope", "")),
        principal_id=str(props.get("principalId", "")) or None,
        id=str(raw.get("id", "")),
        description=str(props.get("description", "") or ""),
    )
