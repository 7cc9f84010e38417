"""
TagTree Kernel -- Sort Engine Tests

Tests verify:
  - Sorting is stable: ties keep their original order
  - The first key is the primary order
  - Descending flips the order but keeps ties stable
  - Sorting an already sorted list changes nothing
  - Sort keys parse from and serialize to "+Name" / "-Name"
"""

import pytest

from tagtree.kernel.fields import create_field
from tagtree.kernel.records import LeafNode
from tagtree.kernel.sorting import SortKey, node_full_sort
from tagtree.kernel.types import ConfigFormatError


# ============================================================================
# Helpers
# ============================================================================


NAME = create_field("Name")
YEAR = create_field("Year", "Number", format="0")


def make_leaves(*rows):
    return [LeafNode({"Name": name, "Year": year}, uid=f"leaf{i}") for i, (name, year) in enumerate(rows)]


def uids(nodes):
    return [node.uid for node in nodes]


# ============================================================================
# Ordering
# ============================================================================


class TestSortOrder:
    """Multi-key stable ordering."""

    def test_ties_keep_original_order(self):
        leaves = make_leaves(("b", "1"), ("a", "1"), ("c", "0"))
        node_full_sort(leaves, [SortKey(YEAR)])
        assert uids(leaves) == ["leaf2", "leaf0", "leaf1"]

    def test_first_key_is_primary(self):
        leaves = make_leaves(("b", "2"), ("a", "1"), ("a", "2"), ("b", "1"))
        node_full_sort(leaves, [SortKey(NAME), SortKey(YEAR)])
        assert [(leaf.data["Name"], leaf.data["Year"]) for leaf in leaves] == [
            ("a", "1"),
            ("a", "2"),
            ("b", "1"),
            ("b", "2"),
        ]

    def test_descending_keeps_ties_stable(self):
        leaves = make_leaves(("x", "1"), ("y", "3"), ("z", "1"), ("w", "3"))
        node_full_sort(leaves, [SortKey(YEAR, is_ascend=False)])
        assert uids(leaves) == ["leaf1", "leaf3", "leaf0", "leaf2"]

    def test_numeric_key(self):
        leaves = make_leaves(("a", "10"), ("b", "9"), ("c", ""))
        node_full_sort(leaves, [SortKey(YEAR)])
        assert uids(leaves) == ["leaf2", "leaf1", "leaf0"]

    def test_idempotent(self):
        leaves = make_leaves(("b", "2"), ("a", "2"), ("c", "1"), ("a", "1"))
        keys = [SortKey(YEAR), SortKey(NAME, is_ascend=False)]
        node_full_sort(leaves, keys)
        first = uids(leaves)
        node_full_sort(leaves, keys)
        assert uids(leaves) == first

    def test_no_keys_leaves_order(self):
        leaves = make_leaves(("b", "2"), ("a", "1"))
        node_full_sort(leaves, [])
        assert uids(leaves) == ["leaf0", "leaf1"]


# ============================================================================
# Sort keys
# ============================================================================


class TestSortKey:
    """Sort key text form."""

    def test_from_string(self):
        field_map = {"Name": NAME, "Year": YEAR}
        key = SortKey.from_string("-Year", field_map)
        assert key.key_field is YEAR
        assert not key.is_ascend
        assert SortKey.from_string("Name", field_map) == SortKey(NAME)
        assert SortKey.from_string("+Name", field_map).is_ascend

    def test_str(self):
        assert str(SortKey(NAME)) == "+Name"
        assert str(SortKey(YEAR, is_ascend=False)) == "-Year"

    def test_unknown_field(self):
        with pytest.raises(ConfigFormatError):
            SortKey.from_string("+Missing", {"Name": NAME})
