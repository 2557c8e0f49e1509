"""Tests for the scope tree."""

import pytest

from pacplan.errors import ScopeError

from plan_helpers import PROD, ROOT, SANDBOX, SUB, make_tree


def test_resolve_by_name_and_id():
    tree = make_tree()
    assert len(tree) == 4
    assert tree.resolve("prod").id == PROD
    assert tree.resolve("PROD").id == PROD
    assert tree.resolve(SUB.upper()).name == "sub1"


def test_resolve_unknown_scope():
    with pytest.raises(ScopeError) as exc_info:
        make_tree().resolve("nowhere")
    assert exc_info.value.scope == "nowhere"


def test_resolve_id_below_a_node():
    tree = make_tree()
    rg = SUB + "/resourceGroups/rg1"
    assert tree.resolve_id(rg) == rg
    assert tree.resolve_id("sandbox") == SANDBOX
    with pytest.raises(ScopeError):
        tree.resolve_id("/subscriptions/22222222-2222-2222-2222-222222222222")


def test_find_node_picks_deepest():
    tree = make_tree()
    assert tree.find_node(SUB + "/resourceGroups/rg1").name == "sub1"
    assert tree.find_node(PROD).name == "prod"
    assert tree.contains(ROOT)
    assert not tree.contains("/providers/Microsoft.Management/managementGroups/fabrikam")


def test_ancestors():
    node = make_tree().resolve("sub1")
    assert [n.name for n in node.ancestors()] == ["prod", "contoso"]


def test_is_excluded():
    tree = make_tree()
    assert tree.is_excluded(SUB, ["prod"])
    assert tree.is_excluded(SUB + "/resourceGroups/rg1", [PROD])
    assert tree.is_excluded(SANDBOX, ["sandbox"])
    assert not tree.is_excluded(SANDBOX, ["prod"])
    assert not tree.is_excluded(PROD, ["sub1"])
    assert not tree.is_excluded(PROD, [])
