"""
TagTree Kernel — Grouping Engine

Partitions leaves into GroupNodes keyed by a rule's rendered line text.

create_groups(rule, available, previous, parent) -> GroupingResult
  1. render each leaf's rule key(s) and bucket by exact text, first-seen order
  2. one group per key, capturing the rule's field values from the first leaf
     (for a multiple-entry field, the entry that produced the key)
  3. reuse previous group objects with the same heading (their cache is
     marked stale if their leaves changed); unmatched previous groups are
     reported as obsolete
  4. sort the groups by the rule's sort keys

A leaf missing every rule field renders "" and lands in the "" group: the
uncategorized bucket is part of the contract, not an accident.

Child groups are not computed here. A GroupNode materializes its own children
lazily through its cache.
"""

from __future__ import annotations

import logging
import weakref
from dataclasses import dataclass, field
from typing import Any

from tagtree.kernel.cache import CachedChildren
from tagtree.kernel.records import LeafNode
from tagtree.kernel.sorting import node_full_sort

logger = logging.getLogger(__name__)


class GroupNode(CachedChildren):
    """
    A generated (non-stored) node covering one distinct rule key.

    Has further GroupNodes as children if its rule has a child rule, otherwise
    its matching leaves, sorted by the rule's child sort keys.
    """

    has_children = True

    def __init__(self, title: str, rule_ref, parent=None) -> None:
        self.title = title
        self.rule_ref = rule_ref
        self.matching_nodes: list[LeafNode] = []
        self.data: dict[str, Any] = {}
        self.is_open = False
        self._parent_ref = weakref.ref(parent) if parent is not None else None
        self._init_cache()

    def __repr__(self) -> str:
        return f"GroupNode({self.title!r}, {len(self.matching_nodes)} leaves)"

    @property
    def parent(self):
        return self._parent_ref() if self._parent_ref is not None else None

    @property
    def available_nodes(self) -> list[LeafNode]:
        return self.matching_nodes

    def child_nodes(self, force_update: bool = False) -> list:
        return self.cached_children(force_update, self._compute_children)

    def previous_child_groups(self) -> list[GroupNode]:
        return [node for node in self.current_children() if isinstance(node, GroupNode)]

    def _compute_children(self) -> list:
        child_rule = self.rule_ref.child_rule_node
        if child_rule is not None:
            result = child_rule.create_groups(self.matching_nodes, self.previous_child_groups(), self)
            self.rule_ref.report_obsolete(result.obsolete)
            return result.groups
        self.rule_ref.report_obsolete(self.previous_child_groups())
        leaves = list(self.matching_nodes)
        node_full_sort(leaves, self.rule_ref.child_sort_fields)
        return leaves

    def context_data(self) -> dict[str, Any]:
        """Captured field values of this group and all of its group ancestors."""
        data: dict[str, Any] = {}
        node = self
        while isinstance(node, GroupNode):
            for name, value in node.data.items():
                data.setdefault(name, value)
            node = node.parent
        return data


@dataclass
class GroupingResult:
    """Groups produced for one parent, plus previous groups no longer produced."""

    groups: list[GroupNode]
    obsolete: list[GroupNode] = field(default_factory=list)


def create_groups(rule, available: list[LeafNode], previous=(), parent=None) -> GroupingResult:
    """
    Return the sorted groups of [available] leaves under [rule].

    [previous] holds the groups this parent produced last time; groups with an
    unchanged heading are reused in place.
    """
    buckets: dict[str, list[LeafNode]] = {}
    # Entry index of the first leaf's key, for multiple-entry fields
    entry_pos: dict[str, int] = {}
    for leaf in available:
        for pos, key in enumerate(rule.rule_line.formatted_line_list(leaf)):
            bucket = buckets.get(key)
            if bucket is None:
                bucket = buckets[key] = []
                entry_pos[key] = pos
            if not bucket or bucket[-1] is not leaf:
                bucket.append(leaf)

    old_groups = {group.title: group for group in previous}
    rule_fields = rule.rule_line.fields()
    groups: list[GroupNode] = []
    for heading, matching in buckets.items():
        group = old_groups.pop(heading, None)
        if group is None:
            group = GroupNode(heading, rule, parent)
        elif group.rule_ref is not rule or not _same_leaves(group.matching_nodes, matching):
            group.mark_stale()
        group.rule_ref = rule
        group.matching_nodes = matching
        group.data = _captured_data(rule_fields, matching[0], entry_pos[heading])
        groups.append(group)

    node_full_sort(groups, rule.sort_fields)
    obsolete = list(old_groups.values())
    logger.debug(
        "grouping: rule %r made %d groups from %d leaves (%d obsolete)",
        rule.rule_line.unparsed_line(),
        len(groups),
        len(available),
        len(obsolete),
    )
    return GroupingResult(groups=groups, obsolete=obsolete)


def _captured_data(rule_fields, leaf: LeafNode, entry_pos: int) -> dict[str, Any]:
    """Rule field values of [leaf]; a multiple-entry field gives the entry behind the key."""
    data: dict[str, Any] = {}
    for rule_field in rule_fields:
        entries = rule_field.stored_entries(leaf.data)
        if not entries:
            continue
        if isinstance(leaf.data[rule_field.name], list):
            data[rule_field.name] = entries[min(entry_pos, len(entries) - 1)]
        else:
            data[rule_field.name] = entries[0]
    return data


def _same_leaves(first: list[LeafNode], second: list[LeafNode]) -> bool:
    return len(first) == len(second) and all(a is b for a, b in zip(first, second))
