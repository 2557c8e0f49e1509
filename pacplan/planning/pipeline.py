"""Pipeline — runs the planners in dependency order for one environment.

Definition → Set → Assignment → Exemption → Aggregate. Each planner reads
the registries the planners before it filled in, through one
PlanningContext created per run. Artifacts are written only after every
stage has completed, so a fatal error leaves the output folder untouched.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from pacplan.config import GlobalSettings, PacEnvironment, PacFolders, load_settings, resolve_folders
from pacplan.errors import ConfigurationError, PlanIssue
from pacplan.inventory.snapshot import InventoryProvider, ScopeTreeProvider, SnapshotFileProvider
from pacplan.models.plan import ResourcePlan, RolePlan
from pacplan.planning.aggregator import PlanOutcome, build_plans, persist_plans
from pacplan.planning.assignments import AssignmentPlanner
from pacplan.planning.context import PlanningContext
from pacplan.planning.definitions import DefinitionPlanner
from pacplan.planning.exemptions import ExemptionPlanner
from pacplan.planning.set_definitions import SetPlanner
from pacplan.sources.desired import DesiredState, load_desired_state
from pacplan.utils.git_ops import get_source_commit

logger = logging.getLogger(__name__)


@dataclass
class PlanningResult:
    resource_plan: ResourcePlan
    role_plan: RolePlan
    issues: list[PlanIssue] = field(default_factory=list)
    outcome: PlanOutcome | None = None  # Set once persisted


def build_deployment_plans(
    settings: GlobalSettings,
    environment: PacEnvironment,
    desired: DesiredState,
    inventory_provider: InventoryProvider,
    scope_tree_provider: ScopeTreeProvider,
    now: datetime | None = None,
    source_commit: str = "",
) -> PlanningResult:
    """Plan every resource kind for one environment, without touching the output folder."""
    now = now or datetime.now(timezone.utc)
    inventory = inventory_provider.load()
    context = PlanningContext(
        pac_owner_id=settings.pac_owner_id,
        environment=environment,
        scope_tree=scope_tree_provider.load_scope_tree(),
        now=now,
    )
    logger.info("Planning environment '%s' at %s", environment.pac_selector, environment.deployment_root_scope)

    definitions = DefinitionPlanner(context).plan(desired.definitions, inventory.policy_definitions)
    set_definitions = SetPlanner(context).plan(desired.set_definitions, inventory.policy_set_definitions)
    assignments, role_assignments = AssignmentPlanner(context).plan(desired.assignments, inventory)
    exemptions = ExemptionPlanner(context).plan(
        desired.exemptions,
        inventory.exemptions,
        desired.exemptions_status,
        assignments,
    )

    resource_plan, role_plan = build_plans(
        pac_owner_id=settings.pac_owner_id,
        created_on=now,
        policy_definitions=definitions,
        policy_set_definitions=set_definitions,
        assignments=assignments,
        exemptions=exemptions,
        role_assignments=role_assignments,
        source_commit=source_commit,
    )
    return PlanningResult(resource_plan=resource_plan, role_plan=role_plan, issues=list(context.issues))


def snapshot_path(folders: PacFolders, environment: PacEnvironment, override: str | Path | None = None) -> Path:
    """Locate the inventory snapshot; a relative setting is taken from the definitions folder."""
    if override:
        return Path(override)
    if not environment.inventory_snapshot:
        raise ConfigurationError(
            f"Environment '{environment.pac_selector}' has no inventorySnapshot and none was given"
        )
    path = Path(environment.inventory_snapshot)
    return path if path.is_absolute() else folders.definitions / path


def plan_environment(
    pac_selector: str,
    definitions_folder: str | Path | None = None,
    output_folder: str | Path | None = None,
    inventory: str | Path | None = None,
    now: datetime | None = None,
) -> PlanningResult:
    """Load everything for one environment, plan it, and persist the artifacts."""
    folders = resolve_folders(definitions_folder, output_folder)
    settings = load_settings(folders.definitions)
    environment = settings.environment(pac_selector)
    desired = load_desired_state(folders, environment)
    provider = SnapshotFileProvider(snapshot_path(folders, environment, inventory))

    result = build_deployment_plans(
        settings,
        environment,
        desired,
        inventory_provider=provider,
        scope_tree_provider=provider,
        now=now,
        source_commit=get_source_commit(folders.definitions),
    )
    result.outcome = persist_plans(result.resource_plan, result.role_plan, folders.plans_folder(pac_selector))
    return result
