"""Set planner — diffs desired against deployed policy set definitions.

Members resolve through ``all_definitions``, which already holds every
definition that exists after this plan, including pending ones. A set whose
members cannot all be resolved is skipped and reported, and its deployed
counterpart is left in place. A set referencing a definition that is being
replaced is never unchanged.
"""

from __future__ import annotations

import logging
from dataclasses import replace

from pacplan.errors import ConfigurationError, IssueCode, ResolutionError, Severity
from pacplan.models.plan import Classification, PlanRecord, PlanSet
from pacplan.models.resources import (
    DEFINITION_KIND,
    SET_DEFINITION_KIND,
    PolicyDefinitionReference,
    PolicySetDefinition,
    normalize_id,
)
from pacplan.planning.compare import (
    changed_fields,
    classify_changes,
    metadata_equal,
    parameter_incompatibilities,
)
from pacplan.planning.context import PlanningContext, ResolvedIdentity
from pacplan.planning.definitions import plan_deployed_only

logger = logging.getLogger(__name__)


class SetPlanner:
    """Plans policy set definitions for one environment."""

    kind = SET_DEFINITION_KIND

    def __init__(self, context: PlanningContext):
        self.context = context

    def plan(
        self,
        desired: list[PolicySetDefinition],
        deployed: dict[str, PolicySetDefinition],
    ) -> PlanSet:
        plan = PlanSet(kind=self.kind)

        remaining: dict[str, PolicySetDefinition] = {}
        for key, set_definition in deployed.items():
            if set_definition.is_builtin:
                self._register(set_definition, pending=False)
            else:
                remaining[key] = set_definition

        seen: set[str] = set()
        for set_definition in desired:
            key = normalize_id(set_definition.id)
            if key in seen:
                raise ConfigurationError(f"Duplicate policy set definition '{set_definition.name}'")
            seen.add(key)
            current = remaining.pop(key, None)

            try:
                members, cascade = self._resolve_members(set_definition)
            except ResolutionError as e:
                self.context.report(
                    Severity.ERROR,
                    IssueCode.UNRESOLVED_REFERENCE,
                    self.kind,
                    set_definition.name,
                    f"Skipped, unresolved member definition(s): {e.reference}",
                )
                if current is not None:
                    self._register(current, pending=False)
                continue

            planned = replace(
                set_definition,
                policy_definitions=members,
                metadata=self.context.stamp_owner(set_definition.metadata),
            )
            record = self.classify(planned, current)
            if cascade:
                if record.classification == Classification.UNCHANGED:
                    record.classification = Classification.UPDATE
                record.reasons.extend(cascade)
            plan.add(record)
            logger.debug("%s %s: %s", self.kind, planned.name, record.classification.value)

            if record.classification == Classification.REPLACE:
                self.context.mark_replaced(planned.id)
            self._register(
                planned,
                pending=record.classification in (Classification.NEW, Classification.REPLACE),
            )

        plan_deployed_only(self.context, plan, remaining, self._register)

        logger.info(
            "Policy set definitions: %d change(s), %d unchanged",
            plan.number_of_changes,
            plan.number_unchanged,
        )
        return plan

    def classify(self, desired: PolicySetDefinition, deployed: PolicySetDefinition | None) -> PlanRecord:
        if deployed is None:
            return PlanRecord(Classification.NEW, desired, reasons=["not deployed"])

        immutable = parameter_incompatibilities(desired.parameters, deployed.parameters)
        mutable = changed_fields(
            {
                "displayName": desired.display_name,
                "description": desired.description,
                "parameters": desired.parameters,
                "policyDefinitions": [m.to_dict() for m in desired.policy_definitions],
                "policyDefinitionGroups": desired.policy_definition_groups,
            },
            {
                "displayName": deployed.display_name,
                "description": deployed.description,
                "parameters": deployed.parameters,
                "policyDefinitions": [m.to_dict() for m in deployed.policy_definitions],
                "policyDefinitionGroups": deployed.policy_definition_groups,
            },
        )
        if not metadata_equal(desired.metadata, deployed.metadata):
            mutable.append("metadata")

        classification, reasons = classify_changes(immutable, mutable)
        return PlanRecord(classification, desired, deployed=deployed, reasons=reasons)

    def _resolve_members(
        self, set_definition: PolicySetDefinition
    ) -> tuple[list[PolicyDefinitionReference], list[str]]:
        """Resolve every member to a definition id.

        Returns the resolved members and the cascade reasons for members
        that are being replaced.

        Raises:
            ResolutionError: Naming every member that did not resolve.
        """
        members = []
        cascade = []
        missing = []
        for member in set_definition.policy_definitions:
            try:
                target = self.context.resolve_policy(member.reference, kind=DEFINITION_KIND)
            except ResolutionError:
                missing.append(member.reference)
                continue
            members.append(replace(member, definition_id=target.id, definition_name=""))
            if self.context.is_replaced(target.id):
                cascade.append(f"member definition '{target.name}' is replaced")

        if missing:
            raise ResolutionError(", ".join(missing))
        return members, cascade

    def _register(self, set_definition: PolicySetDefinition, pending: bool) -> None:
        self.context.all_definitions.register(
            set_definition.id,
            ResolvedIdentity(
                id=set_definition.id,
                name=set_definition.name,
                kind=self.kind,
                display_name=set_definition.display_name,
                pending=pending,
            ),
        )
        roles: set[str] = set()
        for member in set_definition.policy_definitions:
            if member.definition_id:
                roles |= self.context.role_ids_for(member.definition_id)
        if roles:
            self.context.policy_role_ids.register(set_definition.id, frozenset(roles))
