"""
TagTree Kernel -- Structure Configuration Tests

Field, rule, tree and output line edits made through the structure.

Tests verify:
  - Adding, renaming, retyping, moving and deleting fields
  - A field used by a rule cannot be deleted
  - Rule lines can be edited and chained; old groups become obsolete
  - Sort key edits and resets
  - Title node add / move / delete, including the last root guard
  - Output line edits rerender titles and outputs
  - Invalidation by stored node id
"""

import pytest

from tagtree.kernel.fields import create_field
from tagtree.kernel.grouping import GroupNode
from tagtree.kernel.sorting import SortKey
from tagtree.kernel.structure import Structure
from tagtree.kernel.types import ConfigFormatError


# ============================================================================
# Helpers
# ============================================================================


def group_titles(nodes):
    return [node.title for node in nodes]


def root_rule(model):
    return model.root_nodes[0].child_rule_node


# ============================================================================
# Fields
# ============================================================================


class TestFieldEdits:
    """Field list changes."""

    def test_add_field_updates_default_child_sort(self, year_model):
        year_model.add_field(create_field("Note", options=year_model.options))
        assert list(year_model.field_map) == ["Name", "Year", "Note"]
        assert [str(key) for key in root_rule(year_model).child_sort_fields] == ["+Name", "+Note"]

    def test_add_field_at_position(self, year_model):
        year_model.add_field(create_field("Note"), pos=0)
        assert list(year_model.field_map) == ["Note", "Name", "Year"]

    def test_add_field_name_checks(self, year_model):
        with pytest.raises(ConfigFormatError):
            year_model.add_field(create_field("Name"))
        with pytest.raises(ConfigFormatError):
            year_model.add_field(create_field("bad name"))

    def test_rename_moves_data(self, year_model):
        name_field = year_model.field_map["Name"]
        edited = name_field.copy()
        edited.name = "Title"
        year_model.edit_leaf_data(year_model.leaf_nodes[0], {"Name": "A", "Year": "2020"})
        year_model.edit_field(name_field, edited)
        assert list(year_model.field_map) == ["Title", "Year"]
        assert year_model.leaf_nodes[0].data == {"Title": "A", "Year": "2020"}
        assert year_model.title_line.unparsed_line() == "{*Title*}"
        assert year_model.leaf_nodes[0].title == "A"
        assert len(year_model.undo_list) == 0

    def test_edit_format_rerenders(self, year_model):
        year_field = year_model.field_map["Year"]
        edited = year_field.copy()
        edited.format = "#,##0"
        edited.prefix = "Y"
        year_model.edit_field(year_field, edited)
        assert group_titles(year_model.root_nodes[0].child_nodes()) == ["Y2,020", "Y2,021"]

    def test_remove_choices(self, build_model):
        fields = [
            {"fieldname": "Name", "fieldtype": "Text"},
            {"fieldname": "Year", "fieldtype": "Choice", "format": "2020/2021"},
        ]
        model = build_model(fields=fields)
        year_field = model.field_map["Year"]
        edited = year_field.copy()
        edited.format = "2020"
        assert model.bad_field_count(edited) == 1
        model.edit_field(year_field, edited, remove_choices=True)
        assert [leaf.data.get("Year") for leaf in model.leaf_nodes] == ["2020", "2020", None]

    def test_replace_field_type(self, year_model):
        year_field = year_model.field_map["Year"]
        new_field = year_field.copy_to_type("Text")
        year_model.replace_field(year_field, new_field)
        rule = root_rule(year_model)
        assert year_model.field_map["Year"] is new_field
        assert rule.rule_line.fields() == [new_field]
        assert rule.sort_fields[0].key_field is new_field
        assert group_titles(year_model.root_nodes[0].child_nodes()) == ["2020", "2021"]

    def test_replace_field_drops_invalid_data(self, year_model):
        name_field = year_model.field_map["Name"]
        year_model.replace_field(name_field, name_field.copy_to_type("Number"))
        assert all("Name" not in leaf.data for leaf in year_model.leaf_nodes)

    def test_delete_field_used_by_rule(self, year_model):
        year_field = year_model.field_map["Year"]
        assert year_model.is_field_in_group(year_field)
        with pytest.raises(ConfigFormatError):
            year_model.delete_field(year_field)
        assert "Year" in year_model.field_map
        assert year_model.leaf_nodes[0].data["Year"] == "2020"

    def test_delete_field_removes_data_and_lines(self, options):
        model = Structure.create_default(options)
        model.delete_field(model.field_map["Name"])
        assert list(model.field_map) == ["Category"]
        assert model.title_line.unparsed_line() == "{*Category*}"
        assert [line.unparsed_line() for line in model.output_lines] == ["{*Category*}"]
        assert model.leaf_nodes[0].data == {"Category": "First Category"}

    def test_delete_field_from_shared_line(self, year_model):
        year_model.add_field(create_field("Note"))
        year_model.edit_output_line(year_model.output_lines[1], "Year: {*Year*} ({*Note*})")
        year_model.delete_field(year_model.field_map["Note"])
        assert year_model.output_lines[1].unparsed_line() == "Year: {*Year*} ()"

    def test_delete_last_field(self, build_model):
        model = build_model(
            fields=[{"fieldname": "Name", "fieldtype": "Text"}],
            template=[{"title": "Root"}],
            outputlines=["{*Name*}"],
            leaves=[{"Name": "A"}],
        )
        with pytest.raises(ConfigFormatError):
            model.delete_field(model.field_map["Name"])

    def test_move_field(self, year_model):
        year_field = year_model.field_map["Year"]
        year_model.move_field(year_field, up=True)
        assert list(year_model.field_map) == ["Year", "Name"]
        with pytest.raises(IndexError):
            year_model.move_field(year_field, up=True)

    def test_field_usage_queries(self, year_model):
        name_field = year_model.field_map["Name"]
        assert year_model.is_field_in_title(name_field)
        assert year_model.is_field_in_output(name_field)
        assert not year_model.is_field_in_group(name_field)
        assert year_model.is_field_in_data(name_field)


# ============================================================================
# Rules
# ============================================================================


class TestRuleEdits:
    """Rule lines, rule chains and sort keys."""

    def test_edit_rule_line(self, year_model):
        old_groups = year_model.root_nodes[0].child_nodes()
        year_model.edit_rule_line(root_rule(year_model), "{*Name*}")
        assert group_titles(year_model.root_nodes[0].child_nodes()) == ["A", "B", "C"]
        assert all(group in year_model.obsolete_nodes for group in old_groups)
        assert [str(key) for key in root_rule(year_model).sort_fields] == ["+Name"]
        assert [str(key) for key in root_rule(year_model).child_sort_fields] == ["+Year"]

    def test_rule_line_needs_a_field(self, year_model):
        with pytest.raises(ConfigFormatError):
            year_model.edit_rule_line(root_rule(year_model), "plain text")
        assert root_rule(year_model).title == "{*Year*}"

    def test_add_child_rule(self, year_model):
        group = year_model.root_nodes[0].child_nodes()[0]
        year_model.toggle_node_open(group)
        child_rule = year_model.add_rule_child(root_rule(year_model), "{*Name*}")
        children = group.child_nodes()
        assert all(isinstance(child, GroupNode) for child in children)
        assert group_titles(children) == ["A", "B"]
        assert child_rule.child_sort_fields == []
        assert year_model.stored_node_id(child_rule) == "0.0.0"

    def test_add_rule_under_title_with_children(self, year_model):
        with pytest.raises(ConfigFormatError):
            year_model.add_rule_child(year_model.root_nodes[0], "{*Name*}")

    def test_add_rule_under_new_title(self, year_model):
        title = year_model.add_title_sibling(year_model.root_nodes[0], "Names")
        year_model.add_rule_child(title, "{*Name*}")
        assert group_titles(title.child_nodes()) == ["A", "B", "C"]

    def test_delete_child_rule(self, year_model):
        child_rule = year_model.add_rule_child(root_rule(year_model), "{*Name*}")
        year_model.delete_tree_node(child_rule)
        assert root_rule(year_model).child_rule_node is None
        group = year_model.root_nodes[0].child_nodes()[0]
        assert group_titles(group.child_nodes()) == ["A", "B"]

    def test_update_and_reset_sort_keys(self, year_model):
        rule = root_rule(year_model)
        year_model.update_rule_sort_keys(rule, [SortKey(year_model.field_map["Year"], is_ascend=False)])
        assert group_titles(year_model.root_nodes[0].child_nodes()) == ["2021", "2020"]
        assert year_model.to_dict()["template"][0]["children"][0]["sortfields"] == ["-Year"]
        year_model.rule_sort_keys_to_default(rule)
        assert group_titles(year_model.root_nodes[0].child_nodes()) == ["2020", "2021"]
        assert "sortfields" not in year_model.to_dict()["template"][0]["children"][0]

    def test_child_sort_keys(self, year_model):
        rule = root_rule(year_model)
        group = year_model.root_nodes[0].child_nodes()[0]
        year_model.toggle_node_open(group)
        year_model.update_child_sort_keys(rule, [SortKey(year_model.field_map["Name"], is_ascend=False)])
        assert [leaf.title for leaf in group.child_nodes()] == ["B", "A"]
        year_model.child_sort_keys_to_default(rule)
        assert [leaf.title for leaf in group.child_nodes()] == ["A", "B"]

    def test_empty_sort_keys(self, year_model):
        with pytest.raises(ConfigFormatError):
            year_model.update_rule_sort_keys(root_rule(year_model), [])


# ============================================================================
# Title nodes
# ============================================================================


class TestTitleNodes:
    """Static tree edits."""

    def test_add_and_move_titles(self, year_model):
        root = year_model.root_nodes[0]
        second = year_model.add_title_sibling(root, "Second")
        assert group_titles(year_model.root_nodes) == ["Root", "Second"]
        assert year_model.can_node_move(second, up=True)
        assert not year_model.can_node_move(second, up=False)
        year_model.move_title_node(second, up=True)
        assert group_titles(year_model.root_nodes) == ["Second", "Root"]
        with pytest.raises(IndexError):
            year_model.move_title_node(second, up=True)

    def test_title_children(self, year_model):
        second = year_model.add_title_sibling(year_model.root_nodes[0], "Second")
        child = year_model.add_title_child(second, "Child")
        assert child.parent is second
        assert year_model.stored_node_id(child) == "1.0"
        year_model.edit_title(child, "Renamed")
        assert year_model.stored_node_from_id("1.0").title == "Renamed"

    def test_delete_titles(self, year_model):
        root = year_model.root_nodes[0]
        with pytest.raises(ConfigFormatError):
            year_model.delete_tree_node(root)
        year_model.add_title_sibling(root, "Second")
        old_groups = root.child_nodes()
        year_model.delete_tree_node(root)
        assert group_titles(year_model.root_nodes) == ["Second"]
        assert root in year_model.obsolete_nodes
        assert all(group in year_model.obsolete_nodes for group in old_groups)


# ============================================================================
# Output lines
# ============================================================================


class TestOutputLines:
    """Title line and output line edits."""

    def test_edit_title_line(self, year_model):
        year_model.edit_output_line(year_model.title_line, "{*Name*} ({*Year*})")
        assert year_model.leaf_nodes[0].title == "A (2020)"

    def test_add_move_remove_output_lines(self, year_model):
        line = year_model.add_output_line(0, "== {*Name*} ==")
        assert year_model.leaf_nodes[0].outputs() == ["== A ==", "A", "Year: 2020"]
        year_model.move_output_line(line, up=False)
        assert year_model.leaf_nodes[0].outputs() == ["A", "== A ==", "Year: 2020"]
        year_model.remove_output_line(line)
        assert year_model.leaf_nodes[0].outputs() == ["A", "Year: 2020"]

    def test_last_output_line_kept(self, year_model):
        year_model.remove_output_line(year_model.output_lines[1])
        with pytest.raises(ConfigFormatError):
            year_model.remove_output_line(year_model.output_lines[0])

    def test_unknown_field_in_line(self, year_model):
        with pytest.raises(ConfigFormatError):
            year_model.add_output_line(0, "{*Color*}")
        assert len(year_model.output_lines) == 2

    def test_alt_format_line(self, year_model):
        year_field = year_model.field_map["Year"]
        alt_field = year_field.create_alt_format_field()
        alt_field.prefix = "in "
        year_model.edit_output_line(year_model.output_lines[1], "{*Year:0*}")
        assert year_model.leaf_nodes[0].outputs() == ["A", "in 2020"]
        assert year_model.to_dict()["fields"][1]["prefix:0"] == "in "

    def test_replace_field_keeps_alt_format(self, year_model):
        year_field = year_model.field_map["Year"]
        year_field.create_alt_format_field().prefix = "in "
        year_model.edit_output_line(year_model.output_lines[1], "{*Year:0*}")
        new_field = year_field.copy_to_type("Text")
        year_model.replace_field(year_field, new_field)
        assert year_model.output_lines[1].fields()[0] is new_field.alt_format_field(0)
        assert year_model.leaf_nodes[0].outputs() == ["A", "in 2020"]
        assert year_model.to_dict()["fields"][1]["prefix:0"] == "in "

    def test_unused_alt_format_dropped(self, year_model):
        year_field = year_model.field_map["Year"]
        year_field.create_alt_format_field().prefix = "in "
        year_model.edit_output_line(year_model.output_lines[1], "Year: {*Year*}")
        assert year_field.alt_format_fields == []


# ============================================================================
# Invalidation entry points
# ============================================================================


class TestInvalidate:
    """invalidate() by node or id."""

    def test_invalidate_all(self, year_model):
        root = year_model.root_nodes[0]
        year_model.invalidate()
        assert root.is_stale

    def test_invalidate_by_rule_id(self, year_model):
        root = year_model.root_nodes[0]
        year_model.invalidate("0.0")
        assert root.is_stale

    def test_invalidate_bad_target(self, year_model):
        with pytest.raises(TypeError):
            year_model.invalidate(42)
        with pytest.raises(KeyError):
            year_model.invalidate("9")
