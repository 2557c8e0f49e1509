"""Plan aggregator — assembles, persists and reads back the plan artifacts.

Two artifacts per environment live in ``<output>/plans-<pacSelector>/``:
``policy-plan.json`` for the four policy resource kinds and
``roles-plan.json`` for role assignments. Each one exists only while it has
changes; an artifact without changes is removed so a later apply stage never
picks up a stale plan.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from pacplan.errors import ConfigurationError
from pacplan.models.plan import (
    ExemptionPlanSet,
    PlanSet,
    ResourcePlan,
    RoleAssignmentsPlan,
    RolePlan,
)

logger = logging.getLogger(__name__)

POLICY_PLAN_FILE = "policy-plan.json"
ROLES_PLAN_FILE = "roles-plan.json"


@dataclass
class PlanOutcome:
    """What was persisted, and whether each apply stage has work to do."""

    policy_changes: bool
    role_changes: bool
    paths: dict[str, Path] = field(default_factory=dict)  # Artifacts written


def format_timestamp(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


def build_plans(
    pac_owner_id: str,
    created_on: datetime,
    policy_definitions: PlanSet,
    policy_set_definitions: PlanSet,
    assignments: PlanSet,
    exemptions: ExemptionPlanSet,
    role_assignments: RoleAssignmentsPlan,
    source_commit: str = "",
) -> tuple[ResourcePlan, RolePlan]:
    stamp = format_timestamp(created_on)
    resource_plan = ResourcePlan(
        created_on=stamp,
        pac_owner_id=pac_owner_id,
        policy_definitions=policy_definitions,
        policy_set_definitions=policy_set_definitions,
        assignments=assignments,
        exemptions=exemptions,
        source_commit=source_commit,
    )
    role_plan = RolePlan(
        created_on=stamp,
        pac_owner_id=pac_owner_id,
        role_assignments=role_assignments,
        source_commit=source_commit,
    )
    return resource_plan, role_plan


def persist_plans(resource_plan: ResourcePlan, role_plan: RolePlan, plans_folder: Path) -> PlanOutcome:
    """Write each artifact that has changes and remove each one that has none."""
    outcome = PlanOutcome(
        policy_changes=resource_plan.total_changes > 0,
        role_changes=role_plan.total_changes > 0,
    )
    for file_name, plan, has_changes in (
        (POLICY_PLAN_FILE, resource_plan, outcome.policy_changes),
        (ROLES_PLAN_FILE, role_plan, outcome.role_changes),
    ):
        path = plans_folder / file_name
        if has_changes:
            _write_json(path, plan.to_dict())
            outcome.paths[file_name] = path
            logger.info("Wrote %s (%d change(s))", path, plan.total_changes)
        elif path.exists():
            path.unlink()
            logger.info("Removed stale %s, no changes", path)
        else:
            logger.info("No changes for %s", file_name)
    return outcome


def _write_json(path: Path, data: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(json.dumps(data, indent=2) + "\n", encoding="utf-8")
    tmp.replace(path)


def load_plan(path: str | Path, expected_owner_id: str | None = None) -> dict[str, Any]:
    """Read an artifact back, refusing one produced for another owner.

    Raises:
        ConfigurationError: If the file is unreadable or its pacOwnerId differs.
    """
    path = Path(path)
    if not path.is_file():
        raise ConfigurationError(f"Plan file not found: {path}")
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ConfigurationError(f"Invalid plan file {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"Plan file {path} must contain an object")

    owner = data.get("pacOwnerId")
    if expected_owner_id is not None and owner != expected_owner_id:
        raise ConfigurationError(
            f"Plan file {path} belongs to pacOwnerId '{owner}', expected '{expected_owner_id}'"
        )
    return data
