"""Shared builders for planner tests."""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timezone

from pacplan.config import DesiredStatePolicy, DesiredStateStrategy, PacEnvironment
from pacplan.inventory.scope_tree import ScopeTree
from pacplan.models.resources import (
    DEFINITION_KIND,
    Assignment,
    ManagedIdentity,
    PolicyDefinition,
    PolicyDefinitionReference,
    PolicySetDefinition,
    resource_id,
)
from pacplan.planning.context import PlanningContext
from pacplan.sources.desired import DefinitionTarget, DesiredAssignment

OWNER = "owner-1"
ROOT = "/providers/Microsoft.Management/managementGroups/contoso"
PROD = "/providers/Microsoft.Management/managementGroups/prod"
SANDBOX = "/providers/Microsoft.Management/managementGroups/sandbox"
SUB = "/subscriptions/11111111-1111-1111-1111-111111111111"
CONTRIBUTOR = "/providers/Microsoft.Authorization/roleDefinitions/b24988ac-6180-42a0-ab88-20f7382dd24c"
READER = "/providers/Microsoft.Authorization/roleDefinitions/acdd72a7-3385-48ef-bd42-f606fba81ae7"
NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)

SCOPE_TREE = {
    "name": "contoso",
    "id": ROOT,
    "children": [
        {"name": "prod", "id": PROD, "children": [{"name": "sub1", "id": SUB}]},
        {"name": "sandbox", "id": SANDBOX},
    ],
}


def make_tree() -> ScopeTree:
    return ScopeTree.from_dict(SCOPE_TREE)


def make_env(
    strategy: DesiredStateStrategy = DesiredStateStrategy.FULL,
    excluded_scopes: list[str] | None = None,
    location: str = "eastus",
) -> PacEnvironment:
    return PacEnvironment(
        pac_selector="prod",
        deployment_root_scope=ROOT,
        managed_identity_location=location,
        desired_state=DesiredStatePolicy(strategy=strategy, excluded_scopes=excluded_scopes or []),
    )


def make_context(env: PacEnvironment | None = None, now: datetime = NOW) -> PlanningContext:
    return PlanningContext(pac_owner_id=OWNER, environment=env or make_env(), scope_tree=make_tree(), now=now)


def owned(entity, owner: str = OWNER):
    """Copy of an entity as the control plane reports it, stamped with an owner."""
    return replace(entity, metadata={**entity.metadata, "pacOwnerId": owner})


def by_id(*entities) -> dict:
    return {e.id.lower(): e for e in entities}


def definition(name: str, mode: str = "All", roles: tuple[str, ...] = (), **kwargs) -> PolicyDefinition:
    if roles:
        rule = {
            "if": {"field": "type", "equals": "Microsoft.Compute/virtualMachines"},
            "then": {"effect": "deployIfNotExists", "details": {"roleDefinitionIds": list(roles)}},
        }
    else:
        rule = {"if": {"field": "type", "equals": "Microsoft.Compute/virtualMachines"}, "then": {"effect": "audit"}}
    kwargs.setdefault("scope", ROOT)
    return PolicyDefinition(name=name, mode=mode, policy_rule=rule, **kwargs)


def builtin_definition(name: str) -> PolicyDefinition:
    return definition(name, scope="", policy_type="BuiltIn", display_name=f"Built-in {name}")


def set_definition(name: str, *members: str, **kwargs) -> PolicySetDefinition:
    """A desired set referencing its members by name."""
    kwargs.setdefault("scope", ROOT)
    return PolicySetDefinition(
        name=name,
        policy_definitions=[PolicyDefinitionReference(reference_id=m, definition_name=m) for m in members],
        **kwargs,
    )


def deployed_set(name: str, *members: str, **kwargs) -> PolicySetDefinition:
    """A deployed set referencing custom members at the root by id."""
    kwargs.setdefault("scope", ROOT)
    return owned(
        PolicySetDefinition(
            name=name,
            policy_definitions=[
                PolicyDefinitionReference(reference_id=m, definition_id=resource_id(ROOT, DEFINITION_KIND, m))
                for m in members
            ],
            **kwargs,
        )
    )


def desired_assignment(name: str, target: str, *scopes: str, kind: str = DEFINITION_KIND, **kwargs) -> DesiredAssignment:
    return DesiredAssignment(
        name=name,
        target=DefinitionTarget(reference=target, kind=kind),
        scopes=list(scopes),
        **kwargs,
    )


def deployed_assignment(
    name: str,
    target: str,
    scope: str,
    principal_id: str = "",
    kind: str = DEFINITION_KIND,
    **kwargs,
) -> Assignment:
    identity = ManagedIdentity(type="SystemAssigned", location="eastus", principal_id=principal_id) if principal_id else None
    return owned(
        Assignment(
            name=name,
            scope=scope,
            policy_definition_id=resource_id(ROOT, kind, target),
            identity=identity,
            **kwargs,
        )
    )
