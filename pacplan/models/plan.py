"""Plan data models — classifications, plan records, per-kind plan sets, artifacts."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union

from pacplan.models.resources import (
    Assignment,
    Exemption,
    PolicyDefinition,
    PolicySetDefinition,
    RoleAssignment,
    normalize_id,
)

PlannedEntity = Union[PolicyDefinition, PolicySetDefinition, Assignment, Exemption]


class Classification(Enum):
    """What the apply stage has to do with an entity."""

    NEW = "new"
    UPDATE = "update"
    REPLACE = "replace"  # Delete and recreate, dependents must follow
    DELETE = "delete"
    UNCHANGED = "unchanged"

    @property
    def is_change(self) -> bool:
        return self is not Classification.UNCHANGED


CHANGE_CLASSIFICATIONS = (
    Classification.NEW,
    Classification.UPDATE,
    Classification.REPLACE,
    Classification.DELETE,
)


@dataclass
class PlanRecord:
    """An entity tagged with its classification and the reasons for it."""

    classification: Classification
    entity: PlannedEntity
    deployed: PlannedEntity | None = None
    reasons: list[str] = field(default_factory=list)

    @property
    def id(self) -> str:
        return self.entity.id

    @property
    def name(self) -> str:
        return self.entity.name

    def to_dict(self) -> dict[str, Any]:
        data = self.entity.to_dict()
        data["reasons"] = list(self.reasons)
        return data


@dataclass
class OrphanRecord:
    """An exemption whose target assignment cannot be resolved."""

    exemption: Exemption
    reason: str


@dataclass
class PlanSet:
    """Classified entities of one kind, keyed by normalized id."""

    kind: str
    new: dict[str, PlanRecord] = field(default_factory=dict)
    update: dict[str, PlanRecord] = field(default_factory=dict)
    replace: dict[str, PlanRecord] = field(default_factory=dict)
    delete: dict[str, PlanRecord] = field(default_factory=dict)
    unchanged: dict[str, PlanRecord] = field(default_factory=dict)

    def bucket(self, classification: Classification) -> dict[str, PlanRecord]:
        return getattr(self, classification.value)

    def add(self, record: PlanRecord) -> None:
        """Place a record in its bucket.

        Raises:
            ValueError: If the id is already classified in any bucket.
        """
        key = normalize_id(record.id)
        existing = self.classification_of(key)
        if existing is not None:
            raise ValueError(f"{self.kind} '{record.id}' already classified as {existing.value}")
        self.bucket(record.classification)[key] = record

    def classification_of(self, resource_id: str) -> Classification | None:
        key = normalize_id(resource_id)
        for classification in Classification:
            if key in self.bucket(classification):
                return classification
        return None

    def records(self) -> list[PlanRecord]:
        return [r for c in Classification for r in self.bucket(c).values()]

    @property
    def number_of_changes(self) -> int:
        return sum(len(self.bucket(c)) for c in CHANGE_CLASSIFICATIONS)

    @property
    def number_unchanged(self) -> int:
        return len(self.unchanged)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        for classification in CHANGE_CLASSIFICATIONS:
            bucket = self.bucket(classification)
            data[classification.value] = {r.id: r.to_dict() for r in bucket.values()}
        data["numberOfChanges"] = self.number_of_changes
        data["numberUnchanged"] = self.number_unchanged
        return data


@dataclass
class ExemptionPlanSet(PlanSet):
    """Exemption plan set; orphans are counted but never classified."""

    orphans: dict[str, OrphanRecord] = field(default_factory=dict)

    def add_orphan(self, exemption: Exemption, reason: str) -> None:
        self.orphans[normalize_id(exemption.id)] = OrphanRecord(exemption=exemption, reason=reason)

    @property
    def number_of_orphans(self) -> int:
        return len(self.orphans)

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["numberOfOrphans"] = self.number_of_orphans
        return data


@dataclass
class RoleAssignmentsPlan:
    """Role assignments to add and remove."""

    added: list[RoleAssignment] = field(default_factory=list)
    removed: list[RoleAssignment] = field(default_factory=list)

    @property
    def number_of_changes(self) -> int:
        return len(self.added) + len(self.removed)

    def to_dict(self) -> dict[str, Any]:
        return {
            "numberOfChanges": self.number_of_changes,
            "added": [r.to_dict() for r in self.added],
            "removed": [r.to_dict() for r in self.removed],
        }


# --- Artifacts ---


@dataclass
class ResourcePlan:
    """The policy resource plan artifact."""

    created_on: str
    pac_owner_id: str
    policy_definitions: PlanSet
    policy_set_definitions: PlanSet
    assignments: PlanSet
    exemptions: ExemptionPlanSet
    source_commit: str = ""

    def plan_sets(self) -> list[PlanSet]:
        return [
            self.policy_definitions,
            self.policy_set_definitions,
            self.assignments,
            self.exemptions,
        ]

    @property
    def total_changes(self) -> int:
        return sum(p.number_of_changes for p in self.plan_sets())

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"createdOn": self.created_on, "pacOwnerId": self.pac_owner_id}
        if self.source_commit:
            data["sourceCommit"] = self.source_commit
        data.update(
            {
                "policyDefinitions": self.policy_definitions.to_dict(),
                "policySetDefinitions": self.policy_set_definitions.to_dict(),
                "assignments": self.assignments.to_dict(),
                "exemptions": self.exemptions.to_dict(),
            }
        )
        return data


@dataclass
class RolePlan:
    """The role assignment plan artifact."""

    created_on: str
    pac_owner_id: str
    role_assignments: RoleAssignmentsPlan
    source_commit: str = ""

    @property
    def total_changes(self) -> int:
        return self.role_assignments.number_of_changes

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"createdOn": self.created_on, "pacOwnerId": self.pac_owner_id}
        if self.source_commit:
            data["sourceCommit"] = self.source_commit
        data["roleAssignments"] = self.role_assignments.to_dict()
        return data
