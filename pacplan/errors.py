"""Error taxonomy and plan issue records.

Fatal problems are exceptions that stop the run before any artifact is
written or removed. Local problems (an unresolvable reference, an unknown
scope) are raised by the resolution helpers, caught per entity by the
planners, and turned into PlanIssue records so the rest of the plan is
still built.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class PacPlanError(Exception):
    """Base class for all pacplan exceptions."""


class ConfigurationError(PacPlanError):
    """Raised when settings or desired-state files are missing or malformed."""


class ResolutionError(PacPlanError):
    """Raised when a reference to a definition, set, or assignment cannot be resolved."""

    def __init__(self, reference: str, message: str = ""):
        self.reference = reference
        super().__init__(message or f"Cannot resolve reference '{reference}'")


class ScopeError(PacPlanError):
    """Raised when a scope is absent from the scope tree."""

    def __init__(self, scope: str, message: str = ""):
        self.scope = scope
        super().__init__(message or f"Scope '{scope}' is not part of the scope tree")


class RegistryConflictError(PacPlanError):
    """Raised when a registry key is written twice."""


class Severity(Enum):
    ERROR = "error"  # Entity skipped
    WARNING = "warning"  # Needs operator attention, plan still complete
    INFO = "info"


class IssueCode:
    UNRESOLVED_REFERENCE = "UNRESOLVED_REFERENCE"
    UNKNOWN_SCOPE = "UNKNOWN_SCOPE"
    ORPHANED_EXEMPTION = "ORPHANED_EXEMPTION"
    EXEMPTIONS_UNMANAGED = "EXEMPTIONS_UNMANAGED"
    EXPIRED_EXEMPTION = "EXPIRED_EXEMPTION"


@dataclass
class PlanIssue:
    """A single problem found while planning."""

    severity: Severity
    code: str  # Machine-readable issue code
    kind: str  # Resource kind, e.g. "policyAssignments"
    name: str
    message: str

    def __str__(self) -> str:
        return f"[{self.code}] {self.kind}/{self.name}: {self.message}"
