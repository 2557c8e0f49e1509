"""End-to-end planning through the ordered pipeline."""

from dataclasses import replace

from pacplan.config import GlobalSettings
from pacplan.inventory.scope_tree import ScopeTree
from pacplan.inventory.snapshot import DeployedInventory
from pacplan.models.resources import ManagedIdentity, RoleAssignment, SET_DEFINITION_KIND, normalize_id
from pacplan.planning.pipeline import build_deployment_plans
from pacplan.sources.desired import DesiredExemption, DesiredState, ExemptionsStatus

from plan_helpers import (
    CONTRIBUTOR,
    NOW,
    OWNER,
    PROD,
    by_id,
    definition,
    deployed_assignment,
    desired_assignment,
    make_env,
    make_tree,
    owned,
    set_definition,
)


class StaticProvider:
    """In-memory inventory and scope tree."""

    def __init__(self, inventory: DeployedInventory, tree: ScopeTree):
        self.inventory = inventory
        self.tree = tree

    def load(self) -> DeployedInventory:
        return self.inventory

    def load_scope_tree(self) -> ScopeTree:
        return self.tree


def _desired_state() -> DesiredState:
    return DesiredState(
        definitions=[definition("audit-vms"), definition("deploy-diag", roles=(CONTRIBUTOR,))],
        set_definitions=[set_definition("baseline", "audit-vms", "deploy-diag")],
        assignments=[desired_assignment("baseline", "baseline", "prod", kind=SET_DEFINITION_KIND)],
        exemptions=[DesiredExemption(name="legacy-vms", scope="sub1", assignment_name="baseline", assignment_scope="prod")],
        exemptions_status=ExemptionsStatus.MANAGED,
    )


def _run(desired: DesiredState, inventory: DeployedInventory):
    env = make_env()
    settings = GlobalSettings(pac_owner_id=OWNER, environments={env.pac_selector: env})
    provider = StaticProvider(inventory, make_tree())
    return build_deployment_plans(settings, env, desired, provider, provider, now=NOW)


def _apply(result) -> DeployedInventory:
    """The deployed state after the apply stage executed a plan on an empty environment."""
    inventory = DeployedInventory()
    resource_plan = result.resource_plan
    for plan_set, target in (
        (resource_plan.policy_definitions, inventory.policy_definitions),
        (resource_plan.policy_set_definitions, inventory.policy_set_definitions),
        (resource_plan.exemptions, inventory.exemptions),
    ):
        for record in plan_set.new.values():
            target[normalize_id(record.id)] = record.entity

    for i, record in enumerate(resource_plan.assignments.new.values()):
        assignment = record.entity
        if assignment.identity:
            assignment = replace(
                assignment,
                identity=ManagedIdentity(assignment.identity.type, assignment.identity.location, f"principal-{i}"),
            )
        inventory.assignments[normalize_id(assignment.id)] = assignment
        for j, role in enumerate(result.role_plan.role_assignments.added):
            if normalize_id(role.assignment_id) == normalize_id(assignment.id):
                inventory.role_assignments.append(
                    RoleAssignment(role.role_definition_id, role.scope, principal_id=f"principal-{i}", id=f"/ra/{i}-{j}")
                )
    return inventory


def test_empty_environment_plans_everything_new():
    result = _run(_desired_state(), DeployedInventory())
    resource_plan = result.resource_plan

    assert len(resource_plan.policy_definitions.new) == 2
    assert len(resource_plan.policy_set_definitions.new) == 1
    assert len(resource_plan.assignments.new) == 1
    assert len(resource_plan.exemptions.new) == 1
    assert resource_plan.total_changes == 5
    assert [(r.role_definition_id, r.scope) for r in result.role_plan.role_assignments.added] == [(CONTRIBUTOR, PROD)]
    assert result.issues == []


def test_replanning_after_apply_yields_no_changes():
    desired = _desired_state()
    first = _run(desired, DeployedInventory())

    second = _run(_desired_state(), _apply(first))

    assert second.resource_plan.total_changes == 0
    assert second.role_plan.total_changes == 0
    assert second.resource_plan.policy_definitions.number_unchanged == 2
    assert second.resource_plan.exemptions.number_unchanged == 1


def test_mode_change_cascades_to_referencing_set():
    first = _run(_desired_state(), DeployedInventory())
    deployed = _apply(first)

    desired = _desired_state()
    desired.definitions[0] = definition("audit-vms", mode="Indexed")
    result = _run(desired, deployed)
    resource_plan = result.resource_plan

    assert len(resource_plan.policy_definitions.replace) == 1
    assert len(resource_plan.policy_set_definitions.update) == 1
    assert resource_plan.policy_set_definitions.number_unchanged == 0
    # The set itself is updated in place, so its assignment stays
    assert resource_plan.assignments.number_unchanged == 1


def test_removed_assignment_orphans_its_exemption():
    first = _run(_desired_state(), DeployedInventory())
    deployed = _apply(first)

    desired = _desired_state()
    desired.assignments = []
    desired.exemptions = []
    result = _run(desired, deployed)
    resource_plan = result.resource_plan

    assert len(resource_plan.assignments.delete) == 1
    assert resource_plan.exemptions.number_of_orphans == 1
    assert resource_plan.exemptions.number_of_changes == 0
    assert [r.id for r in result.role_plan.role_assignments.removed] == ["/ra/0-0"]


def test_foreign_assignment_survives_full_run():
    foreign = owned(deployed_assignment("manual", "audit-vms", PROD), owner="someone-else")
    result = _run(_desired_state(), DeployedInventory(assignments=by_id(foreign)))

    assert result.resource_plan.assignments.delete == {}
