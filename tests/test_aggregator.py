"""Tests for plan assembly, persistence and the plan reader."""

import json
import tempfile
from datetime import datetime, timezone
from pathlib import Path

import pytest

from pacplan.errors import ConfigurationError
from pacplan.models.plan import Classification, ExemptionPlanSet, PlanRecord, PlanSet, RoleAssignmentsPlan
from pacplan.models.resources import (
    ASSIGNMENT_KIND,
    DEFINITION_KIND,
    EXEMPTION_KIND,
    SET_DEFINITION_KIND,
    RoleAssignment,
)
from pacplan.planning.aggregator import (
    POLICY_PLAN_FILE,
    ROLES_PLAN_FILE,
    build_plans,
    load_plan,
    persist_plans,
)

from plan_helpers import CONTRIBUTOR, OWNER, PROD, definition

CREATED = datetime(2026, 3, 1, 12, 30, tzinfo=timezone.utc)


def _plans(definitions=(), unchanged=(), roles_added=(), source_commit=""):
    definition_plan = PlanSet(kind=DEFINITION_KIND)
    for d in definitions:
        definition_plan.add(PlanRecord(Classification.NEW, d, reasons=["not deployed"]))
    for d in unchanged:
        definition_plan.add(PlanRecord(Classification.UNCHANGED, d))
    return build_plans(
        pac_owner_id=OWNER,
        created_on=CREATED,
        policy_definitions=definition_plan,
        policy_set_definitions=PlanSet(kind=SET_DEFINITION_KIND),
        assignments=PlanSet(kind=ASSIGNMENT_KIND),
        exemptions=ExemptionPlanSet(kind=EXEMPTION_KIND),
        role_assignments=RoleAssignmentsPlan(added=list(roles_added)),
        source_commit=source_commit,
    )


# --- Build Tests ---


def test_plan_is_stamped():
    resource_plan, role_plan = _plans([definition("A")], source_commit="abc123")
    data = resource_plan.to_dict()

    assert data["createdOn"] == "2026-03-01T12:30:00Z"
    assert data["pacOwnerId"] == OWNER
    assert data["sourceCommit"] == "abc123"
    assert role_plan.to_dict()["pacOwnerId"] == OWNER


def test_plan_set_serialization_is_keyed_by_id():
    resource_plan, _ = _plans([definition("A")], unchanged=[definition("B")])
    plan_set = resource_plan.to_dict()["policyDefinitions"]

    assert set(plan_set) == {"new", "update", "replace", "delete", "numberOfChanges", "numberUnchanged"}
    assert list(plan_set["new"]) == [definition("A").id]
    assert plan_set["new"][definition("A").id]["reasons"] == ["not deployed"]
    assert plan_set["numberOfChanges"] == 1
    assert plan_set["numberUnchanged"] == 1
    assert resource_plan.to_dict()["exemptions"]["numberOfOrphans"] == 0


def test_no_source_commit_key_outside_git():
    resource_plan, _ = _plans()
    assert "sourceCommit" not in resource_plan.to_dict()


# --- Persistence Tests ---


def test_writes_only_artifacts_with_changes():
    with tempfile.TemporaryDirectory() as tmpdir:
        folder = Path(tmpdir) / "plans-prod"
        outcome = persist_plans(*_plans([definition("A")]), folder)

        assert outcome.policy_changes is True
        assert outcome.role_changes is False
        assert (folder / POLICY_PLAN_FILE).is_file()
        assert not (folder / ROLES_PLAN_FILE).exists()

        written = json.loads((folder / POLICY_PLAN_FILE).read_text())
        assert written["policyDefinitions"]["numberOfChanges"] == 1


def test_no_changes_removes_stale_artifacts():
    with tempfile.TemporaryDirectory() as tmpdir:
        folder = Path(tmpdir) / "plans-prod"
        persist_plans(*_plans([definition("A")], roles_added=[RoleAssignment(CONTRIBUTOR, PROD)]), folder)
        assert (folder / ROLES_PLAN_FILE).is_file()

        outcome = persist_plans(*_plans(unchanged=[definition("A")]), folder)

        assert outcome.policy_changes is False
        assert outcome.role_changes is False
        assert outcome.paths == {}
        assert not (folder / POLICY_PLAN_FILE).exists()
        assert not (folder / ROLES_PLAN_FILE).exists()


def test_role_plan_is_independent():
    with tempfile.TemporaryDirectory() as tmpdir:
        folder = Path(tmpdir) / "plans-prod"
        outcome = persist_plans(*_plans(roles_added=[RoleAssignment(CONTRIBUTOR, PROD)]), folder)

        assert outcome.policy_changes is False
        assert outcome.role_changes is True
        roles = json.loads((folder / ROLES_PLAN_FILE).read_text())["roleAssignments"]
        assert roles["numberOfChanges"] == 1
        assert roles["added"][0]["principalId"] is None


# --- Reader Tests ---


def test_load_plan_checks_owner():
    with tempfile.TemporaryDirectory() as tmpdir:
        folder = Path(tmpdir)
        persist_plans(*_plans([definition("A")]), folder)

        assert load_plan(folder / POLICY_PLAN_FILE, OWNER)["pacOwnerId"] == OWNER
        with pytest.raises(ConfigurationError, match="belongs to pacOwnerId"):
            load_plan(folder / POLICY_PLAN_FILE, "another-owner")


def test_load_plan_missing_file():
    with pytest.raises(ConfigurationError, match="not found"):
        load_plan("/nonexistent/policy-plan.json")
