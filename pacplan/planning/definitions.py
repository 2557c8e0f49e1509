"""Definition planner — diffs desired against deployed policy definitions.

Built-in definitions are registered but never planned. Each desired custom
definition is classified new, update, replace or unchanged; deployed-only
custom definitions are deleted unless the ownership policy excludes them.
Every definition that exists after the plan is registered in
``all_definitions`` so sets and assignments can reference it, and the roles
its remediation effect needs go into ``policy_role_ids``.
"""

from __future__ import annotations

import logging
from dataclasses import replace

from pacplan.errors import ConfigurationError
from pacplan.models.plan import Classification, PlanRecord, PlanSet
from pacplan.models.resources import DEFINITION_KIND, PolicyDefinition, normalize_id
from pacplan.planning.compare import (
    changed_fields,
    classify_changes,
    metadata_equal,
    parameter_incompatibilities,
    values_equal,
)
from pacplan.planning.context import PlanningContext, ResolvedIdentity

logger = logging.getLogger(__name__)


class DefinitionPlanner:
    """Plans policy definitions for one environment."""

    kind = DEFINITION_KIND

    def __init__(self, context: PlanningContext):
        self.context = context

    def plan(
        self,
        desired: list[PolicyDefinition],
        deployed: dict[str, PolicyDefinition],
    ) -> PlanSet:
        plan = PlanSet(kind=self.kind)

        remaining: dict[str, PolicyDefinition] = {}
        for key, definition in deployed.items():
            if definition.is_builtin:
                self._register(definition, pending=False)
            else:
                remaining[key] = definition

        seen: set[str] = set()
        for definition in desired:
            key = normalize_id(definition.id)
            if key in seen:
                raise ConfigurationError(f"Duplicate policy definition '{definition.name}'")
            seen.add(key)

            definition = replace(definition, metadata=self.context.stamp_owner(definition.metadata))
            record = self.classify(definition, remaining.pop(key, None))
            plan.add(record)
            logger.debug("%s %s: %s", self.kind, definition.name, record.classification.value)

            if record.classification == Classification.REPLACE:
                self.context.mark_replaced(definition.id)
            self._register(
                definition,
                pending=record.classification in (Classification.NEW, Classification.REPLACE),
            )

        plan_deployed_only(self.context, plan, remaining, self._register)

        logger.info(
            "Policy definitions: %d change(s), %d unchanged",
            plan.number_of_changes,
            plan.number_unchanged,
        )
        return plan

    def classify(self, desired: PolicyDefinition, deployed: PolicyDefinition | None) -> PlanRecord:
        if deployed is None:
            return PlanRecord(Classification.NEW, desired, reasons=["not deployed"])

        immutable = []
        if not values_equal(desired.mode, deployed.mode):
            immutable.append("mode")
        if not values_equal(desired.policy_rule, deployed.policy_rule):
            immutable.append("policyRule")
        immutable.extend(parameter_incompatibilities(desired.parameters, deployed.parameters))

        mutable = changed_fields(
            {
                "displayName": desired.display_name,
                "description": desired.description,
                "parameters": desired.parameters,
            },
            {
                "displayName": deployed.display_name,
                "description": deployed.description,
                "parameters": deployed.parameters,
            },
        )
        if not metadata_equal(desired.metadata, deployed.metadata):
            mutable.append("metadata")

        classification, reasons = classify_changes(immutable, mutable)
        return PlanRecord(classification, desired, deployed=deployed, reasons=reasons)

    def _register(self, definition: PolicyDefinition, pending: bool) -> None:
        self.context.all_definitions.register(
            definition.id,
            ResolvedIdentity(
                id=definition.id,
                name=definition.name,
                kind=self.kind,
                display_name=definition.display_name,
                pending=pending,
            ),
        )
        roles = definition.role_definition_ids()
        if roles:
            self.context.policy_role_ids.register(definition.id, roles)


def plan_deployed_only(context: PlanningContext, plan: PlanSet, remaining: dict, register) -> None:
    """Delete deployed-only definitions or sets, or register them when excluded.

    ``register(entity, pending)`` records an entity that keeps existing.
    """
    for key in sorted(remaining):
        entity = remaining[key]
        reason = context.exclusion_reason(entity.scope, entity.metadata)
        if reason:
            logger.debug("%s %s excluded from deletion: %s", plan.kind, entity.name, reason)
            register(entity, pending=False)
            continue
        plan.add(PlanRecord(Classification.DELETE, entity, deployed=entity, reasons=["not in desired state"]))
