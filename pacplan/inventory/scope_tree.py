"""Scope tree — the management hierarchy reachable from an environment.

Nodes are management groups and subscriptions. Scopes below a node
(resource groups, individual resources) are not part of the tree but are
contained by the deepest node whose id prefixes them.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from pacplan.errors import ScopeError
from pacplan.models.resources import normalize_id


@dataclass
class ScopeNode:
    name: str
    id: str
    parent: ScopeNode | None = field(default=None, repr=False, compare=False)
    children: list[ScopeNode] = field(default_factory=list, repr=False)

    def ancestors(self) -> list[ScopeNode]:
        """Parent first, root last."""
        chain = []
        node = self.parent
        while node is not None:
            chain.append(node)
            node = node.parent
        return chain

    def descendants(self) -> list[ScopeNode]:
        found = []
        for child in self.children:
            found.append(child)
            found.extend(child.descendants())
        return found


class ScopeTree:
    """Index over a scope hierarchy by logical name and by id."""

    def __init__(self, root: ScopeNode):
        self.root = root
        self._by_name: dict[str, ScopeNode] = {}
        self._by_id: dict[str, ScopeNode] = {}
        for node in [root, *root.descendants()]:
            self._by_name[node.name.lower()] = node
            self._by_id[normalize_id(node.id)] = node

    @classmethod
    def from_dict(cls, data: dict) -> ScopeTree:
        """Build a tree from nested ``{name, id, children}`` mappings."""
        return cls(_node_from_dict(data, None))

    def __len__(self) -> int:
        return len(self._by_id)

    def get(self, ref: str) -> ScopeNode | None:
        """Look up a node by logical name or exact id."""
        return self._by_id.get(normalize_id(ref)) or self._by_name.get(ref.strip().lower())

    def resolve(self, ref: str) -> ScopeNode:
        """Resolve a logical scope name or node id.

        Raises:
            ScopeError: If the scope is not a node of the tree.
        """
        node = self.get(ref)
        if node is None:
            raise ScopeError(ref)
        return node

    def resolve_id(self, ref: str) -> str:
        """Resolve a name or id to a scope id, allowing ids below a node.

        Raises:
            ScopeError: If the scope is neither a node nor contained by one.
        """
        node = self.get(ref)
        if node is not None:
            return node.id
        if ref.startswith("/") and self.find_node(ref) is not None:
            return ref.rstrip("/")
        raise ScopeError(ref)

    def find_node(self, scope_id: str) -> ScopeNode | None:
        """Return the deepest node that is or contains the scope id."""
        key = normalize_id(scope_id)
        if key in self._by_id:
            return self._by_id[key]
        best: ScopeNode | None = None
        best_len = -1
        for node_id, node in self._by_id.items():
            if key.startswith(node_id + "/") and len(node_id) > best_len:
                best, best_len = node, len(node_id)
        return best

    def contains(self, scope_id: str) -> bool:
        return self.find_node(scope_id) is not None

    def is_excluded(self, scope_id: str, excluded_scopes: list[str]) -> bool:
        """True when the scope is at or below any of the excluded scopes."""
        if not excluded_scopes:
            return False
        key = normalize_id(scope_id)
        excluded_ids = set()
        for ref in excluded_scopes:
            node = self.get(ref)
            excluded_ids.add(normalize_id(node.id if node else ref))

        if any(key == ex or key.startswith(ex + "/") for ex in excluded_ids):
            return True

        node = self.find_node(scope_id)
        if node is None:
            return False
        return any(normalize_id(n.id) in excluded_ids for n in [node, *node.ancestors()])


def _node_from_dict(data: dict, parent: ScopeNode | None) -> ScopeNode:
    node = ScopeNode(name=str(data.get("name", "")), id=str(data.get("id", "")), parent=parent)
    for child in data.get("children") or []:
        if isinstance(child, dict):
            node.children.append(_node_from_dict(child, node))
    return node
