"""Tests for resource and plan models."""

import json
import tempfile
from datetime import datetime, timezone
from pathlib import Path

import pytest

from pacplan.errors import ConfigurationError
from pacplan.inventory.snapshot import SnapshotFileProvider
from pacplan.models.plan import Classification, PlanRecord, PlanSet
from pacplan.models.resources import (
    DEFINITION_KIND,
    Exemption,
    assignment_from_dict,
    definition_from_dict,
    exemption_from_dict,
    normalize_id,
    parse_timestamp,
    resource_id,
    role_guid,
    split_id,
)

from plan_helpers import CONTRIBUTOR, PROD, ROOT, SCOPE_TREE, definition

# --- Identity Tests ---


def test_resource_id_round_trip():
    rid = resource_id(ROOT, DEFINITION_KIND, "audit-vms")
    assert rid == ROOT + "/providers/Microsoft.Authorization/policyDefinitions/audit-vms"
    assert split_id(rid) == (ROOT, DEFINITION_KIND, "audit-vms")


def test_split_id_rejects_foreign_ids():
    with pytest.raises(ValueError):
        split_id("/subscriptions/1/resourceGroups/rg")


def test_normalize_and_role_guid():
    assert normalize_id(" /Subscriptions/ABC/ ") == "/subscriptions/abc"
    assert role_guid(CONTRIBUTOR.upper()) == "b24988ac-6180-42a0-ab88-20f7382dd24c"


# --- Parser Tests ---


def test_definition_from_rest_shape():
    raw = {
        "id": ROOT + "/providers/Microsoft.Authorization/policyDefinitions/deploy-diag",
        "name": "deploy-diag",
        "properties": {
            "displayName": "Deploy diagnostics",
            "policyType": "Custom",
            "mode": "Indexed",
            "policyRule": {
                "if": {"field": "type", "equals": "Microsoft.KeyVault/vaults"},
                "then": {"effect": "DeployIfNotExists", "details": {"roleDefinitionIds": [CONTRIBUTOR]}},
            },
        },
    }

    parsed = definition_from_dict(raw)

    assert parsed.scope == ROOT
    assert parsed.display_name == "Deploy diagnostics"
    assert parsed.role_definition_ids() == frozenset({CONTRIBUTOR})
    assert not parsed.is_builtin


def test_assignment_from_rest_shape():
    raw = {
        "id": PROD + "/providers/Microsoft.Authorization/policyAssignments/deploy-diag",
        "location": "eastus",
        "identity": {"type": "SystemAssigned", "principalId": "p-1"},
        "properties": {
            "policyDefinitionId": ROOT + "/providers/Microsoft.Authorization/policyDefinitions/deploy-diag",
            "parameters": {"effect": {"value": "DeployIfNotExists"}},
            "enforcementMode": "DoNotEnforce",
        },
    }

    parsed = assignment_from_dict(raw)

    assert parsed.name == "deploy-diag"
    assert parsed.scope == PROD
    assert parsed.parameters == {"effect": "DeployIfNotExists"}
    assert parsed.identity.location == "eastus"
    assert parsed.identity.principal_id == "p-1"
    assert parsed.to_dict()["parameters"] == {"effect": {"value": "DeployIfNotExists"}}


def test_exemption_expiry():
    exemption = exemption_from_dict(
        {
            "id": PROD + "/providers/Microsoft.Authorization/policyExemptions/legacy",
            "properties": {"policyAssignmentId": "/x", "expiresOn": "2025-12-31T23:59:59Z"},
        }
    )
    assert exemption.is_expired(datetime(2026, 1, 1, tzinfo=timezone.utc))
    assert not Exemption("e", PROD, "/x").is_expired(datetime(2026, 1, 1, tzinfo=timezone.utc))


# --- Plan Set Tests ---


def test_plan_set_rejects_double_classification():
    plan = PlanSet(kind=DEFINITION_KIND)
    plan.add(PlanRecord(Classification.NEW, definition("A")))

    with pytest.raises(ValueError, match="already classified"):
        plan.add(PlanRecord(Classification.UPDATE, definition("a")))

    assert plan.classification_of(definition("A").id.upper()) == Classification.NEW


def test_unchanged_is_counted_not_serialized():
    plan = PlanSet(kind=DEFINITION_KIND)
    plan.add(PlanRecord(Classification.UNCHANGED, definition("A")))
    plan.add(PlanRecord(Classification.DELETE, definition("B")))

    data = plan.to_dict()

    assert "unchanged" not in data
    assert data["numberOfChanges"] == 1
    assert data["numberUnchanged"] == 1


# --- Snapshot Tests ---


def test_snapshot_file_provider():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "prod.json"
        path.write_text(
            json.dumps(
                {
                    "policyDefinitions": [{"id": definition("A").id, "properties": {"mode": "All"}}],
                    "roleAssignments": [
                        {"id": "/ra/1", "properties": {"roleDefinitionId": CONTRIBUTOR, "scope": PROD, "principalId": "P-1"}}
                    ],
                    "scopeTree": SCOPE_TREE,
                }
            )
        )
        provider = SnapshotFileProvider(path)

        inventory = provider.load()

        assert list(inventory.policy_definitions) == [definition("A").id.lower()]
        assert list(inventory.role_assignments_by_principal()) == ["p-1"]
        assert provider.load_scope_tree().resolve("sub1").parent.name == "prod"


def test_snapshot_with_malformed_id():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "prod.json"
        path.write_text(json.dumps({"policyAssignments": [{"id": "/subscriptions/1"}], "scopeTree": SCOPE_TREE}))
        with pytest.raises(ConfigurationError, match="Malformed entry 0"):
            SnapshotFileProvider(path).load()


def test_missing_snapshot():
    with pytest.raises(ConfigurationError, match="not found"):
        SnapshotFileProvider(Path("/nonexistent/prod.json")).load()


def test_snapshot_with_malformed_expiry():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "prod.json"
        path.write_text(
            json.dumps(
                {
                    "policyExemptions": [
                        {
                            "id": PROD + "/providers/Microsoft.Authorization/policyExemptions/legacy",
                            "properties": {"policyAssignmentId": "/x", "expiresOn": "31/12/2026"},
                        }
                    ],
                    "scopeTree": SCOPE_TREE,
                }
            )
        )
        with pytest.raises(ConfigurationError, match="Malformed entry 0.*expiresOn"):
            SnapshotFileProvider(path).load()


def test_timestamps_with_seven_fraction_digits():
    assert parse_timestamp("2026-03-01T10:00:00.1234567Z") == datetime(2026, 3, 1, 10, 0, 0, 123456, tzinfo=timezone.utc)
    assert parse_timestamp("2026-03-01T10:00:00.5+00:00") == datetime(2026, 3, 1, 10, 0, 0, 500000, tzinfo=timezone.utc)


def test_snapshot_is_read_once():
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "prod.json"
        path.write_text(json.dumps({"scopeTree": SCOPE_TREE}))
        provider = SnapshotFileProvider(path)
        provider.load()

        path.write_text(json.dumps({"scopeTree": {"name": "other", "id": "/providers/Microsoft.Management/managementGroups/other"}}))

        assert provider.load_scope_tree().resolve("sub1").parent.name == "prod"
