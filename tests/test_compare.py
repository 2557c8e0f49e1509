"""Tests for deep comparison and change classification."""

from pacplan.models.plan import Classification
from pacplan.planning.compare import (
    changed_fields,
    classify_changes,
    metadata_equal,
    parameter_incompatibilities,
    values_equal,
)


def test_values_equal_is_case_insensitive():
    assert values_equal("Audit", "audit")
    assert values_equal({"Effect": "Deny"}, {"effect": "deny"})
    assert values_equal([{"a": "X"}], [{"A": "x"}])
    assert not values_equal(["a", "b"], ["b", "a"])


def test_empty_values_are_equal():
    assert values_equal(None, "")
    assert values_equal({}, [])
    assert values_equal({"a": None}, {})
    assert not values_equal(0, None)


def test_booleans_are_strict():
    assert values_equal(True, True)
    assert not values_equal(True, 1)
    assert not values_equal(False, "false")


def test_metadata_ignores_system_keys():
    assert metadata_equal(
        {"category": "Compute"},
        {"category": "Compute", "createdBy": "x", "UpdatedOn": "2025-01-01"},
    )
    assert not metadata_equal({"category": "Compute"}, {"category": "Network"})


def test_changed_fields():
    assert changed_fields(
        {"displayName": "A", "description": "same"},
        {"displayName": "B", "description": "Same"},
    ) == ["displayName"]


def test_parameter_incompatibilities():
    deployed = {"effect": {"type": "String"}, "count": {"type": "Integer"}}
    desired = {
        "effect": {"type": "String", "allowedValues": ["Audit", "Deny"]},
        "count": {"type": "String"},
        "optional": {"type": "String", "defaultValue": ""},
        "required": {"type": "Array"},
    }

    assert parameter_incompatibilities(desired, deployed) == [
        "parameter 'count' type changed",
        "parameter 'required' added without a default value",
    ]


def test_classify_changes():
    assert classify_changes([], []) == (Classification.UNCHANGED, [])
    assert classify_changes([], ["displayName"]) == (Classification.UPDATE, ["displayName"])
    assert classify_changes(["mode"], ["displayName"]) == (Classification.REPLACE, ["mode", "displayName"])
