"""
TagTree Kernel — Stored Nodes

Title and rule nodes make up the persisted tree template.

  TitleNode  static heading; children are either title nodes or exactly one
             rule chain, never both
  RuleNode   a rule line plus sort keys; at most one child rule

A title node holding a rule chain caches the GroupNodes the rule produces
from every leaf. Rule nodes themselves never appear in the displayed tree.

Back-references (parent, model) are weak: ownership flows from the structure
down through the roots.
"""

from __future__ import annotations

import logging
import weakref
from typing import Any

from tagtree.kernel.cache import CachedChildren
from tagtree.kernel.fields import Field
from tagtree.kernel.grouping import GroupingResult, GroupNode, create_groups
from tagtree.kernel.parsed_line import ParsedLine
from tagtree.kernel.sorting import SortKey
from tagtree.kernel.types import ConfigFormatError

logger = logging.getLogger(__name__)


def _weak(obj):
    return weakref.ref(obj) if obj is not None else None


def _deref(ref):
    return ref() if ref is not None else None


# ---------------------------------------------------------------------------
# Title nodes
# ---------------------------------------------------------------------------


class TitleNode(CachedChildren):
    """Node type that has a fixed title."""

    def __init__(self, title: str, *, model=None, parent: TitleNode | None = None) -> None:
        self.title = title
        self.is_open = False
        self.data: dict[str, Any] = {}
        self.child_rule_node: RuleNode | None = None
        self._title_children: list[TitleNode] = []
        self._model_ref = _weak(model)
        self._parent_ref = _weak(parent)
        self._init_cache()

    def __repr__(self) -> str:
        return f"TitleNode({self.title!r})"

    @classmethod
    def from_dict(cls, data: dict[str, Any], model=None, parent: TitleNode | None = None) -> TitleNode:
        node = cls(data["title"], model=model, parent=parent)
        stored_children = [node_from_dict(child, model, node) for child in data.get("children") or []]
        rules = [child for child in stored_children if isinstance(child, RuleNode)]
        if rules:
            if len(stored_children) > 1:
                raise ConfigFormatError(f"Title node {node.title!r} mixes a rule with other children")
            node.child_rule_node = rules[0]
        else:
            node._title_children = stored_children
        return node

    @property
    def model(self):
        return _deref(self._model_ref)

    @property
    def parent(self) -> TitleNode | None:
        return _deref(self._parent_ref)

    @parent.setter
    def parent(self, node: TitleNode | None) -> None:
        self._parent_ref = _weak(node)

    @property
    def has_children(self) -> bool:
        return bool(self._title_children) or self.child_rule_node is not None

    @property
    def available_nodes(self) -> list:
        model = self.model
        return model.leaf_nodes.leaves if model is not None else []

    def stored_children(self) -> list:
        """Title and rule children, as stored in the template."""
        if self.child_rule_node is not None:
            return [self.child_rule_node]
        return self._title_children

    def child_nodes(self, force_update: bool = False) -> list:
        if self.child_rule_node is not None:
            return self.cached_children(force_update, self._compute_groups)
        return self._title_children

    def _compute_groups(self) -> list[GroupNode]:
        previous = [node for node in self.current_children() if isinstance(node, GroupNode)]
        result = self.child_rule_node.create_groups(self.available_nodes, previous, self)
        self.child_rule_node.report_obsolete(result.obsolete)
        return result.groups

    def replace_child_rule(self, new_rule: RuleNode | None) -> None:
        """Swap the rule chain; the old groups become obsolete."""
        if new_rule is not None and self._title_children:
            raise ConfigFormatError(f"Title node {self.title!r} already has title children")
        old_groups = self.drop_cache()
        if self.child_rule_node is not None:
            self.child_rule_node.report_obsolete(old_groups)
        logger.debug("nodes: title %r rule chain replaced, %d groups dropped", self.title, len(old_groups))
        self.child_rule_node = new_rule
        if new_rule is not None:
            new_rule.parent = self

    def add_child_title_node(
        self, new_node: TitleNode, *, after_child: TitleNode | None = None, pos: int | None = None
    ) -> None:
        """Add at the end if neither [after_child] nor [pos] is given."""
        if self.child_rule_node is not None:
            raise ConfigFormatError(f"Title node {self.title!r} already has a rule child")
        if after_child is not None:
            pos = self._title_children.index(after_child) + 1
        elif pos is None:
            pos = len(self._title_children)
        self._title_children.insert(pos, new_node)
        new_node.parent = self

    def replace_child_title_node(self, old_node: TitleNode, new_nodes: list[TitleNode]) -> None:
        pos = self._title_children.index(old_node)
        for node in new_nodes:
            node.parent = self
        self._title_children[pos : pos + 1] = new_nodes

    def remove_child_title_node(self, node: TitleNode) -> None:
        self._title_children.remove(node)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"title": self.title}
        if self.has_children:
            result["children"] = [child.to_dict() for child in self.stored_children()]
        return result


# ---------------------------------------------------------------------------
# Rule nodes
# ---------------------------------------------------------------------------


class RuleNode:
    """
    A stored node that generates GroupNodes in its place.

    Can have another RuleNode as a child for a further breakdown.
    sort_fields order the groups; child_sort_fields order the leaves under a
    group when there is no child rule.
    """

    def __init__(self, rule_line: ParsedLine, *, model=None, parent=None) -> None:
        self._model_ref = _weak(model)
        self._parent_ref = _weak(parent)
        self.child_rule_node: RuleNode | None = None
        self.sort_fields: list[SortKey] = []
        self.child_sort_fields: list[SortKey] = []
        self.has_custom_sort_fields = False
        self.has_custom_child_sort_fields = False
        self.rule_line = rule_line
        self.set_default_rule_sort_fields()
        self.set_default_child_sort_fields()

    def __repr__(self) -> str:
        return f"RuleNode({self.rule_line.unparsed_line()!r})"

    @classmethod
    def from_dict(cls, data: dict[str, Any], model=None, parent=None) -> RuleNode:
        field_map = model.field_map if model is not None else {}
        node = cls(ParsedLine(data["rule"], field_map), model=model, parent=parent)
        sort_data = data.get("sortfields")
        if sort_data:
            node.sort_fields = [SortKey.from_string(text, field_map) for text in sort_data]
            node.has_custom_sort_fields = True
        child_data = data.get("child")
        if child_data is not None:
            node.child_rule_node = cls.from_dict(child_data, model, node)
        # Defaults depend on the ancestor rules, so set them after linking
        child_sort_data = data.get("childsortfields")
        if child_sort_data:
            node.child_sort_fields = [SortKey.from_string(text, field_map) for text in child_sort_data]
            node.has_custom_child_sort_fields = True
        else:
            node.set_default_child_sort_fields()
        return node

    @property
    def model(self):
        return _deref(self._model_ref)

    @property
    def parent(self):
        return _deref(self._parent_ref)

    @parent.setter
    def parent(self, node) -> None:
        self._parent_ref = _weak(node)

    @property
    def rule_line(self) -> ParsedLine:
        return self._rule_line

    @rule_line.setter
    def rule_line(self, line: ParsedLine) -> None:
        if not line.fields():
            raise ConfigFormatError(f"Rule line {line.unparsed_line()!r} has no fields")
        self._rule_line = line

    @property
    def title(self) -> str:
        return self._rule_line.unparsed_line()

    @property
    def has_children(self) -> bool:
        return self.child_rule_node is not None

    def child_nodes(self, force_update: bool = False) -> list:
        return []

    def stored_children(self) -> list:
        if self.child_rule_node is not None:
            return [self.child_rule_node]
        return []

    def replace_child_rule(self, new_rule: RuleNode | None) -> None:
        self.child_rule_node = new_rule
        if new_rule is not None:
            new_rule.parent = self

    def _field_map(self) -> dict[str, Field]:
        model = self.model
        return model.field_map if model is not None else {}

    # -- chain --------------------------------------------------------------

    def rule_chain(self) -> list[RuleNode]:
        """This rule and its ancestor rules, nearest first."""
        chain: list[RuleNode] = []
        node = self
        while isinstance(node, RuleNode):
            chain.append(node)
            node = node.parent
        return chain

    def descendant_rules(self) -> list[RuleNode]:
        """This rule and every child rule below it."""
        rules: list[RuleNode] = []
        node = self
        while node is not None:
            rules.append(node)
            node = node.child_rule_node
        return rules

    # -- sort keys ----------------------------------------------------------

    def set_default_rule_sort_fields(self, check_custom: bool = False) -> bool:
        """
        Reset non-custom sort keys to the rule's own fields.

        With [check_custom], custom keys whose field left the rule are dropped
        (falling back to the default if none remain). Returns True if custom
        keys changed.
        """
        rule_fields = self._rule_line.fields()
        if not self.has_custom_sort_fields:
            self.sort_fields = [SortKey(field) for field in rule_fields]
            return False
        if not check_custom:
            return False
        kept = [key for key in self.sort_fields if any(key.key_field is f for f in rule_fields)]
        if not kept:
            self.has_custom_sort_fields = False
            self.sort_fields = [SortKey(field) for field in rule_fields]
            return False
        changed = len(kept) != len(self.sort_fields)
        self.sort_fields = kept
        return changed

    def set_default_child_sort_fields(self) -> None:
        """Unless custom, sort leaves by every field not used in this rule chain."""
        if self.has_custom_child_sort_fields:
            return
        chain_names = {field.name for rule in self.rule_chain() for field in rule.rule_line.fields()}
        self.child_sort_fields = [
            SortKey(field) for field in self._field_map().values() if field.name not in chain_names
        ]

    def is_field_in_child_sort(self, field: Field) -> bool:
        if not self.has_custom_child_sort_fields:
            return False
        return any(key.key_field is field for key in self.child_sort_fields)

    def remove_child_sort_field(self, field: Field) -> bool:
        """Drop [field] from custom child sort keys; True if it was there."""
        if not self.is_field_in_child_sort(field):
            return False
        if len(self.child_sort_fields) > 1:
            self.child_sort_fields = [key for key in self.child_sort_fields if key.key_field is not field]
        else:
            self.has_custom_child_sort_fields = False
            self.set_default_child_sort_fields()
        return True

    # -- grouping -----------------------------------------------------------

    def create_groups(self, available: list, previous=(), parent=None) -> GroupingResult:
        return create_groups(self, available, previous, parent)

    def report_obsolete(self, nodes) -> None:
        model = self.model
        if model is not None and nodes:
            model.mark_obsolete(nodes)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"rule": self._rule_line.unparsed_line()}
        if self.has_custom_sort_fields:
            result["sortfields"] = [str(key) for key in self.sort_fields]
        if self.has_custom_child_sort_fields:
            result["childsortfields"] = [str(key) for key in self.child_sort_fields]
        if self.child_rule_node is not None:
            result["child"] = self.child_rule_node.to_dict()
        return result


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def node_from_dict(data: dict[str, Any], model=None, parent=None) -> TitleNode | RuleNode:
    """Build a stored node from a template entry."""
    match data:
        case {"title": str()}:
            if parent is not None and not isinstance(parent, TitleNode):
                raise ConfigFormatError("A title node can only be placed under another title node")
            return TitleNode.from_dict(data, model, parent)
        case {"rule": str()}:
            return RuleNode.from_dict(data, model, parent)
        case _:
            raise ConfigFormatError("Node does not match a title or a rule node")
