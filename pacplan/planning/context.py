"""Planning context — the registries threaded through the ordered planners.

One PlanningContext is created per run. Each planner registers what it
planned so the planners after it can resolve references, including to
resources that do not exist yet. Entries are write-once: a later planner
reads an earlier planner's entries but never replaces them.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Generic, Iterator, TypeVar

from pacplan.config import DesiredStateStrategy, PacEnvironment
from pacplan.errors import (
    PlanIssue,
    RegistryConflictError,
    ResolutionError,
    Severity,
)
from pacplan.inventory.scope_tree import ScopeTree
from pacplan.models.resources import (
    DEFINITION_KIND,
    SET_DEFINITION_KIND,
    get_ci,
    normalize_id,
    resource_id,
)

logger = logging.getLogger(__name__)

V = TypeVar("V")

OWNER_METADATA_KEY = "pacOwnerId"


@dataclass(frozen=True)
class ResolvedIdentity:
    """What a reference resolves to."""

    id: str
    name: str
    kind: str
    display_name: str = ""
    pending: bool = False  # Created or recreated by this plan


class Registry(Generic[V]):
    """Write-once mapping keyed by normalized resource id."""

    def __init__(self, name: str):
        self.name = name
        self._entries: dict[str, V] = {}

    def register(self, key: str, value: V) -> None:
        """Add an entry.

        Raises:
            RegistryConflictError: If the key is already registered.
        """
        normalized = normalize_id(key)
        if normalized in self._entries:
            raise RegistryConflictError(f"{self.name}: '{key}' is already registered")
        self._entries[normalized] = value

    def get(self, key: str) -> V | None:
        return self._entries.get(normalize_id(key))

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and normalize_id(key) in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)


@dataclass
class PlanningContext:
    pac_owner_id: str
    environment: PacEnvironment
    scope_tree: ScopeTree
    now: datetime
    all_definitions: Registry[ResolvedIdentity] = field(default_factory=lambda: Registry("allDefinitions"))
    all_assignments: Registry[ResolvedIdentity] = field(default_factory=lambda: Registry("allAssignments"))
    replace_definitions: set[str] = field(default_factory=set)
    policy_role_ids: Registry[frozenset[str]] = field(default_factory=lambda: Registry("policyRoleIds"))
    issues: list[PlanIssue] = field(default_factory=list)

    # ------------------------------------------------------------------
    # Issues
    # ------------------------------------------------------------------

    def report(self, severity: Severity, code: str, kind: str, name: str, message: str) -> PlanIssue:
        issue = PlanIssue(severity=severity, code=code, kind=kind, name=name, message=message)
        self.issues.append(issue)
        if severity == Severity.INFO:
            logger.info("%s", issue)
        else:
            logger.warning("%s", issue)
        return issue

    def issues_with(self, code: str) -> list[PlanIssue]:
        return [i for i in self.issues if i.code == code]

    # ------------------------------------------------------------------
    # Definitions and sets
    # ------------------------------------------------------------------

    def mark_replaced(self, resource: str) -> None:
        self.replace_definitions.add(normalize_id(resource))

    def is_replaced(self, resource: str) -> bool:
        return normalize_id(resource) in self.replace_definitions

    def role_ids_for(self, resource: str) -> frozenset[str]:
        return self.policy_role_ids.get(resource) or frozenset()

    def resolve_policy(self, reference: str, kind: str = "") -> ResolvedIdentity:
        """Resolve a definition or set reference through ``all_definitions``.

        An id is looked up as is. A name is tried as a custom resource at the
        deployment root, then as a built-in, for the given kind or for both
        kinds when none is given.

        Raises:
            ResolutionError: If nothing matches.
        """
        if reference.startswith("/"):
            candidates = [reference]
        else:
            kinds = [kind] if kind else [DEFINITION_KIND, SET_DEFINITION_KIND]
            root = self.environment.deployment_root_scope
            candidates = [resource_id(scope, k, reference) for k in kinds for scope in (root, "")]

        for candidate in candidates:
            found = self.all_definitions.get(candidate)
            if found is not None:
                return found
        raise ResolutionError(reference)

    def resolve_assignment(self, assignment_id: str) -> ResolvedIdentity:
        """Resolve an assignment id through ``all_assignments``.

        Raises:
            ResolutionError: If the assignment does not exist after this plan.
        """
        found = self.all_assignments.get(assignment_id)
        if found is None:
            raise ResolutionError(assignment_id, f"Assignment '{assignment_id}' does not exist after this plan")
        return found

    # ------------------------------------------------------------------
    # Ownership
    # ------------------------------------------------------------------

    def stamp_owner(self, metadata: dict) -> dict:
        """Copy of desired metadata carrying this environment's owner id."""
        stamped = {k: v for k, v in metadata.items() if str(k).lower() != OWNER_METADATA_KEY.lower()}
        stamped[OWNER_METADATA_KEY] = self.pac_owner_id
        return stamped

    def exclusion_reason(self, scope: str, metadata: dict) -> str | None:
        """Why a deployed-only resource must be left alone, or None to delete it."""
        if not self.scope_tree.contains(scope):
            return "scope outside the scope tree"
        if self.scope_tree.is_excluded(scope, self.environment.desired_state.excluded_scopes):
            return "excluded scope"

        owner = get_ci(metadata, OWNER_METADATA_KEY)
        if owner == self.pac_owner_id:
            return None
        if owner:
            return f"owned by '{owner}'"
        if self.environment.desired_state.strategy == DesiredStateStrategy.OWNED_ONLY:
            return "unknown owner (ownedOnly strategy)"
        return None

