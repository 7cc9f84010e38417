"""
TagTree Kernel -- Child Cache Tests

Tests verify:
  - STALE -> COMPUTING -> FRESH on read, FRESH -> STALE on mark_stale
  - A read while COMPUTING raises CacheCycleError instead of recursing
  - A failed compute leaves the cache STALE
  - Leaf edits only recompute the groups that contained the leaf
  - Rule edits recompute the title and groups built from that rule
  - Closed nodes are not recomputed until read
"""

import pytest

from tagtree.kernel.cache import CachedChildren
from tagtree.kernel.sorting import SortKey
from tagtree.kernel.types import CacheCycleError, CacheState


# ============================================================================
# Helpers
# ============================================================================


class CountingNode(CachedChildren):
    def __init__(self, children=()):
        self.children = list(children)
        self.calls = 0
        self._init_cache()

    def child_nodes(self, force_update=False):
        return self.cached_children(force_update, self.compute)

    def compute(self):
        self.calls += 1
        return list(self.children)


def groups_by_title(model):
    return {group.title: group for group in model.root_nodes[0].child_nodes()}


# ============================================================================
# State machine
# ============================================================================


class TestCacheStates:
    """Transitions of a single node cache."""

    def test_read_computes_once(self):
        node = CountingNode(["a", "b"])
        assert node.cache_state is CacheState.STALE
        assert node.child_nodes() == ["a", "b"]
        assert node.child_nodes() == ["a", "b"]
        assert node.calls == 1
        assert node.cache_state is CacheState.FRESH
        assert node.cache_version == 1

    def test_mark_stale_recomputes(self):
        node = CountingNode(["a"])
        node.child_nodes()
        node.children.append("b")
        node.mark_stale()
        assert node.is_stale
        assert node.child_nodes() == ["a", "b"]
        assert node.cache_version == 2

    def test_force_update(self):
        node = CountingNode(["a"])
        node.child_nodes()
        node.child_nodes(force_update=True)
        assert node.calls == 2

    def test_current_children_does_not_compute(self):
        node = CountingNode(["a"])
        assert node.current_children() == []
        assert node.calls == 0

    def test_drop_cache(self):
        node = CountingNode(["a"])
        node.child_nodes()
        assert node.drop_cache() == ["a"]
        assert node.current_children() == []
        assert node.is_stale


class TestCacheCycle:
    """Reads during computation fail loudly."""

    def test_reentrant_read_raises(self):
        node = CachedChildren()
        node._init_cache()

        def compute():
            return node.cached_children(False, compute)

        with pytest.raises(CacheCycleError):
            node.cached_children(False, compute)
        assert node.cache_state is CacheState.STALE

    def test_failed_compute_resets_to_stale(self):
        node = CachedChildren()
        node._init_cache()

        def compute():
            raise ValueError("boom")

        with pytest.raises(ValueError):
            node.cached_children(False, compute)
        assert node.cache_state is CacheState.STALE
        assert node.cached_children(False, lambda: ["ok"]) == ["ok"]

    def test_mark_stale_while_computing_is_ignored(self):
        node = CachedChildren()
        node._init_cache()

        def compute():
            node.mark_stale()
            assert node.cache_state is CacheState.COMPUTING
            return ["x"]

        node.cached_children(False, compute)
        assert node.cache_state is CacheState.FRESH


# ============================================================================
# Locality in a structure
# ============================================================================


class TestInvalidationLocality:
    """Only affected caches recompute after a mutation."""

    def test_leaf_edit_leaves_sibling_group_alone(self, year_model):
        groups = groups_by_title(year_model)
        year_model.toggle_node_open(groups["2020"])
        year_model.toggle_node_open(groups["2021"])
        version_2021 = groups["2021"].cache_version
        version_2020 = groups["2020"].cache_version

        leaf_a = groups["2020"].child_nodes()[0]
        year_model.edit_leaf_data(leaf_a, {"Name": "Aa", "Year": "2020"})

        assert groups["2021"].cache_version == version_2021
        assert groups["2020"].cache_version == version_2020 + 1
        assert groups_by_title(year_model)["2020"] is groups["2020"]

    def test_leaf_moving_groups_refreshes_both(self, year_model):
        groups = groups_by_title(year_model)
        year_model.toggle_node_open(groups["2020"])
        year_model.toggle_node_open(groups["2021"])

        leaf_a = groups["2020"].child_nodes()[0]
        year_model.edit_leaf_data(leaf_a, {"Name": "A", "Year": "2021"})

        assert [leaf.title for leaf in groups["2020"].child_nodes()] == ["B"]
        assert [leaf.title for leaf in groups["2021"].child_nodes()] == ["A", "C"]

    def test_closed_group_not_recomputed(self, year_model):
        groups = groups_by_title(year_model)
        assert groups["2020"].cache_version == 0
        leaf_a = year_model.leaf_nodes[0]
        year_model.edit_leaf_data(leaf_a, {"Name": "Z", "Year": "2020"})
        assert groups["2020"].cache_version == 0

    def test_rule_edit_marks_only_its_nodes(self, build_model):
        model = build_model(
            template=[
                {"title": "By year", "children": [{"rule": "{*Year*}"}]},
                {"title": "By name", "children": [{"rule": "{*Name*}"}]},
            ]
        )
        by_year, by_name = model.root_nodes
        by_year.child_nodes()
        by_name.child_nodes()
        name_version = by_name.cache_version

        model.update_rule_sort_keys(by_year.child_rule_node, [SortKey.from_string("-Year", model.field_map)])

        assert by_name.cache_version == name_version
        assert by_year.is_stale
        assert [group.title for group in by_year.child_nodes()] == ["2021", "2020"]
