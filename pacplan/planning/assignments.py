"""Assignment planner — diffs assignments and reconciles their role assignments.

Each authored assignment is planned once per scope it targets in this
environment. Its target resolves through ``all_definitions``, its scopes
through the scope tree. An unresolvable target skips the whole entry, an
unknown scope skips that scope only; both are reported and leave the
deployed counterparts in place.

Assignments with a managed identity need the roles their target's
remediation effects declare, granted at the assignment scope, plus any
additional role assignments. These are diffed against the roles deployed
for the identity's principal.
"""

from __future__ import annotations

import logging

from pacplan.errors import ConfigurationError, IssueCode, ResolutionError, ScopeError, Severity
from pacplan.inventory.snapshot import DeployedInventory
from pacplan.models.plan import Classification, PlanRecord, PlanSet, RoleAssignmentsPlan
from pacplan.models.resources import (
    ASSIGNMENT_KIND,
    Assignment,
    ManagedIdentity,
    RoleAssignment,
    normalize_id,
    resource_id,
)
from pacplan.planning.compare import changed_fields, classify_changes, metadata_equal, values_equal
from pacplan.planning.context import PlanningContext, ResolvedIdentity
from pacplan.sources.desired import DesiredAssignment

logger = logging.getLogger(__name__)


class AssignmentPlanner:
    """Plans assignments and the role assignments of their identities."""

    kind = ASSIGNMENT_KIND

    def __init__(self, context: PlanningContext):
        self.context = context
        self._deployed_roles: dict[str, list[RoleAssignment]] = {}

    def plan(
        self,
        desired: list[DesiredAssignment],
        inventory: DeployedInventory,
    ) -> tuple[PlanSet, RoleAssignmentsPlan]:
        plan = PlanSet(kind=self.kind)
        roles = RoleAssignmentsPlan()
        self._deployed_roles = inventory.role_assignments_by_principal()
        remaining = dict(inventory.assignments)
        seen: set[str] = set()

        for entry in desired:
            scope_ids = self._resolve_scopes(entry)
            for scope_id in scope_ids:
                key = normalize_id(resource_id(scope_id, ASSIGNMENT_KIND, entry.name))
                if key in seen:
                    raise ConfigurationError(f"Duplicate assignment '{entry.name}' at scope '{scope_id}'")
                seen.add(key)

            try:
                target = self.context.resolve_policy(entry.target.reference, kind=entry.target.kind)
            except ResolutionError as e:
                self.context.report(
                    Severity.ERROR,
                    IssueCode.UNRESOLVED_REFERENCE,
                    self.kind,
                    entry.name,
                    f"Skipped, unresolved policy '{e.reference}'",
                )
                self._keep_deployed(entry.name, scope_ids, remaining)
                continue

            for scope_id in scope_ids:
                assignment = self._build(entry, scope_id, target)
                key = normalize_id(assignment.id)
                current = remaining.pop(key, None)
                record = self.classify(assignment, current, target)
                plan.add(record)
                logger.debug("%s %s at %s: %s", self.kind, assignment.name, scope_id, record.classification.value)

                self._register(
                    record.entity,
                    pending=record.classification in (Classification.NEW, Classification.REPLACE),
                )
                self._plan_roles(record, target, roles)

        for key in sorted(remaining):
            current = remaining[key]
            reason = self.context.exclusion_reason(current.scope, current.metadata)
            if reason:
                logger.debug("%s %s excluded from deletion: %s", self.kind, current.name, reason)
                self._register(current, pending=False)
                continue
            plan.add(PlanRecord(Classification.DELETE, current, deployed=current, reasons=["not in desired state"]))
            roles.removed.extend(self._roles_of(current))

        logger.info(
            "Assignments: %d change(s), %d unchanged; role assignments: %d added, %d removed",
            plan.number_of_changes,
            plan.number_unchanged,
            len(roles.added),
            len(roles.removed),
        )
        return plan, roles

    def classify(
        self,
        desired: Assignment,
        deployed: Assignment | None,
        target: ResolvedIdentity,
    ) -> PlanRecord:
        if deployed is None:
            return PlanRecord(Classification.NEW, desired, reasons=["not deployed"])

        immutable = []
        if not values_equal(desired.policy_definition_id, deployed.policy_definition_id):
            immutable.append("policyDefinitionId")
        if _identity_shape(desired.identity) != _identity_shape(deployed.identity):
            immutable.append("identity")

        mutable = changed_fields(
            {
                "displayName": desired.display_name,
                "description": desired.description,
                "parameters": desired.parameters,
                "enforcementMode": desired.enforcement_mode,
                "notScopes": desired.not_scopes,
                "nonComplianceMessages": desired.non_compliance_messages,
            },
            {
                "displayName": deployed.display_name,
                "description": deployed.description,
                "parameters": deployed.parameters,
                "enforcementMode": deployed.enforcement_mode,
                "notScopes": deployed.not_scopes,
                "nonComplianceMessages": deployed.non_compliance_messages,
            },
        )
        if not metadata_equal(desired.metadata, deployed.metadata):
            mutable.append("metadata")

        classification, reasons = classify_changes(immutable, mutable)
        if self.context.is_replaced(target.id):
            if classification == Classification.UNCHANGED:
                classification = Classification.UPDATE
            reasons.append(f"assigned {target.kind} '{target.name}' is replaced")

        if classification != Classification.REPLACE and desired.identity and deployed.identity:
            desired.identity.principal_id = deployed.identity.principal_id

        return PlanRecord(classification, desired, deployed=deployed, reasons=reasons)

    # ------------------------------------------------------------------
    # Building
    # ------------------------------------------------------------------

    def _build(self, entry: DesiredAssignment, scope_id: str, target: ResolvedIdentity) -> Assignment:
        return entry.build(
            scope_id=scope_id,
            policy_definition_id=target.id,
            identity=self._identity_for(entry, target),
            not_scopes=[self._scope_or_literal(s) for s in entry.not_scopes],
            metadata=self.context.stamp_owner(entry.metadata),
        )

    def _identity_for(self, entry: DesiredAssignment, target: ResolvedIdentity) -> ManagedIdentity | None:
        """Explicit identity, or a system-assigned one when roles are needed."""
        location = self.context.environment.managed_identity_location
        if entry.identity_declared:
            if entry.identity is None:
                return None
            return ManagedIdentity(type=entry.identity.type, location=entry.identity.location or location)

        if not self.context.role_ids_for(target.id) and not entry.additional_roles:
            return None
        if not location:
            raise ConfigurationError(
                f"Assignment '{entry.name}' needs a managed identity but environment "
                f"'{self.context.environment.pac_selector}' has no managedIdentityLocation"
            )
        return ManagedIdentity(type="SystemAssigned", location=location)

    def _scope_or_literal(self, ref: str) -> str:
        try:
            return self.context.scope_tree.resolve_id(ref)
        except ScopeError:
            return ref

    def _resolve_scopes(self, entry: DesiredAssignment) -> list[str]:
        scope_ids = []
        for scope_ref in entry.scopes:
            try:
                scope_ids.append(self.context.scope_tree.resolve_id(scope_ref))
            except ScopeError as e:
                self.context.report(
                    Severity.ERROR,
                    IssueCode.UNKNOWN_SCOPE,
                    self.kind,
                    entry.name,
                    f"Skipped scope '{e.scope}': not part of the scope tree",
                )
        return scope_ids

    def _keep_deployed(self, name: str, scope_ids: list[str], remaining: dict[str, Assignment]) -> None:
        """Leave the deployed counterparts of a skipped entry in place."""
        for scope_id in scope_ids:
            current = remaining.pop(normalize_id(resource_id(scope_id, ASSIGNMENT_KIND, name)), None)
            if current is not None:
                self._register(current, pending=False)

    def _register(self, assignment: Assignment, pending: bool) -> None:
        self.context.all_assignments.register(
            assignment.id,
            ResolvedIdentity(
                id=assignment.id,
                name=assignment.name,
                kind=self.kind,
                display_name=assignment.display_name,
                pending=pending,
            ),
        )

    # ------------------------------------------------------------------
    # Role assignments
    # ------------------------------------------------------------------

    def _plan_roles(self, record: PlanRecord, target: ResolvedIdentity, roles: RoleAssignmentsPlan) -> None:
        assignment = record.entity
        required = self._required_roles(assignment, target)
        existing = self._roles_of(record.deployed) if record.deployed is not None else []

        if record.classification in (Classification.NEW, Classification.REPLACE):
            roles.removed.extend(existing)
            roles.added.extend(required)
            return

        existing_keys = {r.key() for r in existing}
        required_keys = {r.key() for r in required}
        roles.added.extend(r for r in required if r.key() not in existing_keys)
        roles.removed.extend(r for r in existing if r.key() not in required_keys)

    def _required_roles(self, assignment: Assignment, target: ResolvedIdentity) -> list[RoleAssignment]:
        if assignment.identity is None:
            return []

        wanted = [(role_id, assignment.scope) for role_id in sorted(self.context.role_ids_for(target.id))]
        for extra in assignment.additional_roles:
            try:
                wanted.append((extra.role_definition_id, self.context.scope_tree.resolve_id(extra.scope)))
            except ScopeError as e:
                self.context.report(
                    Severity.ERROR,
                    IssueCode.UNKNOWN_SCOPE,
                    self.kind,
                    assignment.name,
                    f"Skipped additional role at scope '{e.scope}': not part of the scope tree",
                )

        required: dict[tuple[str, str], RoleAssignment] = {}
        for role_definition_id, scope in wanted:
            role = RoleAssignment(
                role_definition_id=role_definition_id,
                scope=scope,
                principal_id=assignment.identity.principal_id or None,
                assignment_id=assignment.id,
                assignment_display_name=assignment.display_name,
                description=f"Policy assignment '{assignment.name}'",
            )
            required.setdefault(role.key(), role)
        return list(required.values())

    def _roles_of(self, assignment: Assignment) -> list[RoleAssignment]:
        """Deployed role assignments held by an assignment's identity."""
        if assignment.identity is None or not assignment.identity.principal_id:
            return []
        held = self._deployed_roles.get(assignment.identity.principal_id.lower(), [])
        return [
            RoleAssignment(
                role_definition_id=r.role_definition_id,
                scope=r.scope,
                principal_id=r.principal_id,
                assignment_id=assignment.id,
                assignment_display_name=assignment.display_name,
                id=r.id,
                description=r.description,
            )
            for r in held
        ]


def _identity_shape(identity: ManagedIdentity | None) -> tuple[str, str] | None:
    if identity is None:
        return None
    return identity.type.lower(), identity.location.lower()
