"""Exemption planner — diffs exemptions and detects orphans.

Exemptions are only managed for an environment when its
``policyExemptions/<pacSelector>/`` folder exists. An exemption whose target
assignment does not exist after this plan is an orphan: it is reported and
counted, never deleted, so that no operator-managed exemption disappears
because an assignment went missing.
"""

from __future__ import annotations

import logging

from pacplan.errors import ConfigurationError, IssueCode, ResolutionError, ScopeError, Severity
from pacplan.models.plan import Classification, ExemptionPlanSet, PlanRecord, PlanSet
from pacplan.models.resources import (
    ASSIGNMENT_KIND,
    EXEMPTION_KIND,
    Exemption,
    normalize_id,
    parse_timestamp,
    resource_id,
)
from pacplan.planning.compare import changed_fields, classify_changes, metadata_equal, values_equal
from pacplan.planning.context import PlanningContext
from pacplan.sources.desired import DesiredExemption, ExemptionsStatus

logger = logging.getLogger(__name__)


class ExemptionPlanner:
    """Plans exemptions against the assignments that exist after this plan."""

    kind = EXEMPTION_KIND

    def __init__(self, context: PlanningContext):
        self.context = context

    def plan(
        self,
        desired: list[DesiredExemption],
        deployed: dict[str, Exemption],
        status: ExemptionsStatus,
        assignment_plan: PlanSet,
    ) -> ExemptionPlanSet:
        plan = ExemptionPlanSet(kind=self.kind)

        if status == ExemptionsStatus.NOT_CONFIGURED:
            logger.info("No policyExemptions folder, exemptions are not managed")
            return plan
        if status == ExemptionsStatus.UNMANAGED:
            selector = self.context.environment.pac_selector
            self.context.report(
                Severity.WARNING,
                IssueCode.EXEMPTIONS_UNMANAGED,
                self.kind,
                selector,
                f"policyExemptions/{selector} does not exist, exemptions are not managed for this environment",
            )
            return plan

        remaining = dict(deployed)
        seen: set[str] = set()

        for entry in desired:
            if entry.is_expired(self.context.now):
                self.context.report(
                    Severity.INFO,
                    IssueCode.EXPIRED_EXEMPTION,
                    self.kind,
                    entry.name,
                    f"Expired on {entry.expires_on}, treated as not desired",
                )
                continue

            try:
                scope_id = self._scope_id(entry.scope)
            except ScopeError as e:
                self.context.report(
                    Severity.ERROR,
                    IssueCode.UNKNOWN_SCOPE,
                    self.kind,
                    entry.name,
                    f"Skipped, scope '{e.scope}' is not part of the scope tree",
                )
                continue

            target_id = self._target_id(entry, scope_id)
            exemption = entry.build(
                scope_id=scope_id,
                policy_assignment_id=target_id,
                metadata=self.context.stamp_owner(entry.metadata),
            )
            key = normalize_id(exemption.id)
            if key in seen:
                raise ConfigurationError(f"Duplicate exemption '{entry.name}' at scope '{scope_id}'")
            seen.add(key)
            current = remaining.pop(key, None)

            try:
                target = self.context.resolve_assignment(target_id)
            except ResolutionError:
                self._orphan(plan, exemption, f"assignment '{target_id}' does not exist after this plan")
                continue

            exemption.policy_assignment_id = target.id
            record = self.classify(exemption, current)
            if assignment_plan.classification_of(target.id) == Classification.REPLACE:
                if record.classification == Classification.UNCHANGED:
                    record.classification = Classification.UPDATE
                record.reasons.append(f"assignment '{target.name}' is replaced")
            plan.add(record)
            logger.debug("%s %s: %s", self.kind, exemption.name, record.classification.value)

        for key in sorted(remaining):
            current = remaining[key]
            reason = self.context.exclusion_reason(current.scope, current.metadata)
            if reason:
                logger.debug("%s %s excluded from deletion: %s", self.kind, current.name, reason)
                continue
            if assignment_plan.classification_of(current.policy_assignment_id) == Classification.DELETE:
                self._orphan(plan, current, f"assignment '{current.policy_assignment_id}' is deleted by this plan")
                continue
            plan.add(PlanRecord(Classification.DELETE, current, deployed=current, reasons=["not in desired state"]))

        logger.info(
            "Exemptions: %d change(s), %d unchanged, %d orphan(s)",
            plan.number_of_changes,
            plan.number_unchanged,
            plan.number_of_orphans,
        )
        return plan

    def classify(self, desired: Exemption, deployed: Exemption | None) -> PlanRecord:
        if deployed is None:
            return PlanRecord(Classification.NEW, desired, reasons=["not deployed"])

        immutable = []
        if not values_equal(desired.policy_assignment_id, deployed.policy_assignment_id):
            immutable.append("policyAssignmentId")

        mutable = changed_fields(
            {
                "displayName": desired.display_name,
                "description": desired.description,
                "exemptionCategory": desired.exemption_category,
                "policyDefinitionReferenceIds": sorted(r.lower() for r in desired.policy_definition_reference_ids),
            },
            {
                "displayName": deployed.display_name,
                "description": deployed.description,
                "exemptionCategory": deployed.exemption_category,
                "policyDefinitionReferenceIds": sorted(r.lower() for r in deployed.policy_definition_reference_ids),
            },
        )
        if parse_timestamp(desired.expires_on) != parse_timestamp(deployed.expires_on):
            mutable.append("expiresOn")
        if not metadata_equal(desired.metadata, deployed.metadata):
            mutable.append("metadata")

        classification, reasons = classify_changes(immutable, mutable)
        return PlanRecord(classification, desired, deployed=deployed, reasons=reasons)

    def _scope_id(self, ref: str) -> str:
        """Scope names resolve through the scope tree; ids are taken as given."""
        if ref.startswith("/"):
            return ref.rstrip("/")
        return self.context.scope_tree.resolve(ref).id

    def _target_id(self, entry: DesiredExemption, scope_id: str) -> str:
        if entry.assignment_id:
            return entry.assignment_id
        scope_ref = entry.assignment_scope or scope_id
        try:
            assignment_scope = self.context.scope_tree.resolve_id(scope_ref)
        except ScopeError:
            assignment_scope = scope_ref
        return resource_id(assignment_scope, ASSIGNMENT_KIND, entry.assignment_name)

    def _orphan(self, plan: ExemptionPlanSet, exemption: Exemption, reason: str) -> None:
        plan.add_orphan(exemption, reason)
        self.context.report(Severity.WARNING, IssueCode.ORPHANED_EXEMPTION, self.kind, exemption.name, reason)
