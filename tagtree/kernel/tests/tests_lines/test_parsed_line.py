"""
TagTree Kernel -- Line Template Tests

Tests verify:
  - {*Name*} and {*Name:N*} references parse into field segments
  - Unknown field names raise ConfigFormatError
  - Rendering joins literal text and field output
  - A line whose fields are all blank renders ""
  - Multiple entries join in place, or repeat the line with a newline separator
  - formatted_line_list yields one line per entry (the grouping keys)
  - delete_field merges surrounding text or swaps in a replacement
"""

import pytest

from tagtree.kernel.fields import create_field
from tagtree.kernel.parsed_line import ParsedLine
from tagtree.kernel.records import LeafNode
from tagtree.kernel.types import ConfigFormatError


# ============================================================================
# Helpers
# ============================================================================


def make_field_map():
    fields = [
        create_field("Name"),
        create_field("Tags", allow_multiples=True, separator=", "),
        create_field("Lines", allow_multiples=True, separator="\n"),
        create_field("Num", "Number", format="0"),
    ]
    return {field.name: field for field in fields}


# ============================================================================
# Parsing
# ============================================================================


class TestParse:
    """Unparsed text -> segments."""

    def test_segments(self):
        line = ParsedLine("Name: {*Name*} ({*Num*})", make_field_map())
        assert [s.has_field for s in line.segments] == [False, True, False, True, False]
        assert line.unparsed_line() == "Name: {*Name*} ({*Num*})"

    def test_unknown_field_raises(self):
        with pytest.raises(ConfigFormatError):
            ParsedLine("{*Missing*}", make_field_map())

    def test_fields_in_order_without_duplicates(self):
        field_map = make_field_map()
        line = ParsedLine("{*Name*}-{*Num*}-{*Name*}", field_map)
        assert line.fields() == [field_map["Name"], field_map["Num"]]
        assert line.has_multiple_fields()

    def test_alt_format_reference(self):
        field_map = make_field_map()
        alt_field = field_map["Name"].create_alt_format_field()
        line = ParsedLine("{*Name:0*}", field_map)
        assert line.segments[0].field is alt_field
        assert line.unparsed_line() == "{*Name:0*}"

    def test_missing_alt_number_uses_base_field(self):
        field_map = make_field_map()
        line = ParsedLine("{*Name:3*}", field_map)
        assert line.segments[0].field is field_map["Name"]

    def test_empty_line(self):
        line = ParsedLine("", make_field_map())
        assert line.is_empty
        assert line.formatted_line(LeafNode({"Name": "x"})) == ""


# ============================================================================
# Rendering
# ============================================================================


class TestRender:
    """Line + leaf data -> text."""

    def test_literal_and_fields(self):
        line = ParsedLine("Name: {*Name*} ({*Num*})", make_field_map())
        assert line.formatted_line(LeafNode({"Name": "Ann", "Num": "7"})) == "Name: Ann (7)"

    def test_partially_blank_keeps_literals(self):
        line = ParsedLine("Name: {*Name*} ({*Num*})", make_field_map())
        assert line.formatted_line(LeafNode({"Name": "Ann"})) == "Name: Ann ()"

    def test_all_fields_blank_renders_empty(self):
        line = ParsedLine("Name: {*Name*} ({*Num*})", make_field_map())
        assert line.formatted_line(LeafNode({})) == ""
        assert line.formatted_line_list(LeafNode({})) == [""]

    def test_text_only_line(self):
        line = ParsedLine("----", make_field_map())
        assert line.formatted_line(LeafNode({})) == "----"

    def test_multiple_entries_join_in_place(self):
        line = ParsedLine("Tags: {*Tags*}", make_field_map())
        leaf = LeafNode({"Tags": ["x", "y"]})
        assert line.formatted_line(leaf) == "Tags: x, y"
        assert line.formatted_line_list(leaf) == ["Tags: x", "Tags: y"]

    def test_newline_separator_repeats_line(self):
        line = ParsedLine("- {*Lines*} ({*Num*})", make_field_map())
        leaf = LeafNode({"Lines": ["one", "two"], "Num": "3"})
        assert line.formatted_line(leaf) == "- one (3)\n- two (3)"

    def test_rendering_is_pure(self):
        line = ParsedLine("{*Name*}/{*Num*}", make_field_map())
        leaf = LeafNode({"Name": "Ann", "Num": "7"})
        assert line.formatted_line(leaf) == line.formatted_line(leaf)
        assert leaf.data == {"Name": "Ann", "Num": "7"}


# ============================================================================
# Editing
# ============================================================================


class TestDeleteField:
    """Removing a field from a line."""

    def test_merges_surrounding_text(self):
        field_map = make_field_map()
        line = ParsedLine("A {*Name*} B {*Num*} C", field_map)
        line.delete_field(field_map["Name"])
        assert line.unparsed_line() == "A  B {*Num*} C"
        assert len(line.segments) == 3

    def test_single_field_replaced(self):
        field_map = make_field_map()
        line = ParsedLine("<{*Name*}>", field_map)
        line.delete_field(field_map["Name"], field_map["Num"])
        assert line.unparsed_line() == "<{*Num*}>"

    def test_single_field_without_replacement_empties(self):
        field_map = make_field_map()
        line = ParsedLine("<{*Name*}>", field_map)
        line.delete_field(field_map["Name"])
        assert line.is_empty

    def test_unused_field_is_ignored(self):
        field_map = make_field_map()
        line = ParsedLine("<{*Name*}>", field_map)
        line.delete_field(field_map["Num"])
        assert line.unparsed_line() == "<{*Name*}>"
