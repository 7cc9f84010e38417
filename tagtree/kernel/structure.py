"""
TagTree Kernel — Structure

The single controlling context. Owns the field map, the stored tree (title
and rule nodes), the record store, the title and output lines, the undo list
and the change notifier. Every mutation goes through a method here and runs
as:

  mutate -> invalidate -> refresh open nodes -> notify (once)

Invalidation is targeted:
  - leaf add/edit/delete   title nodes holding rules, plus cached groups
                           whose matched leaves include the leaf
  - rule line / sort keys  nodes whose children that rule (or a descendant
                           rule) produces or sorts
  - field / line config    everything

Consumers read through root_nodes and node.child_nodes(); stale children are
recomputed on read.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterator
from typing import Any

from pydantic import ValidationError

from tagtree.kernel.config import settings
from tagtree.kernel.document import TreeDocument
from tagtree.kernel.fields import AutoChoiceField, Field, create_field
from tagtree.kernel.grouping import GroupNode
from tagtree.kernel.nodes import RuleNode, TitleNode, node_from_dict
from tagtree.kernel.notify import ChangeNotifier
from tagtree.kernel.parsed_line import ParsedLine
from tagtree.kernel.records import LeafNode, RecordStore
from tagtree.kernel.sorting import SortKey
from tagtree.kernel.types import (
    KERNEL_VERSION,
    VARIES,
    ConfigFormatError,
    FieldValidationError,
    FormatOptions,
    LeafValidationError,
    LeveledNode,
    SearchType,
    is_valid_field_name,
)
from tagtree.kernel.undos import (
    UndoAddLeafNode,
    UndoDeleteLeafNode,
    UndoEditLeafNode,
    UndoList,
)

logger = logging.getLogger(__name__)

# Field types whose stored text can be rewritten by a search and replace
REPLACEABLE_TYPES = {"Text", "LongText", "AutoChoice"}

# Attributes a document load replaces as a unit
MODEL_STATE = ("properties", "root_nodes", "leaf_nodes", "field_map", "title_line", "output_lines", "undo_list")


class Structure(ChangeNotifier):
    """Top-level storage for tree formats, nodes and undo operations."""

    def __init__(self, options: FormatOptions | None = None) -> None:
        super().__init__()
        self.options = options or settings.format_options()
        self.properties: dict[str, Any] = {}
        self.root_nodes: list[TitleNode] = []
        self.leaf_nodes = RecordStore(self)
        self.field_map: dict[str, Field] = {}
        self.title_line = ParsedLine()
        self.output_lines: list[ParsedLine] = []
        # Previously shown groups and deleted leaves, for consumers still
        # holding a reference
        self.obsolete_nodes: set = set()
        self._pending_obsolete: list = []
        self.undo_list = UndoList(self)

    # -----------------------------------------------------------------------
    # Load / save
    # -----------------------------------------------------------------------

    @classmethod
    def from_data(cls, data: dict[str, Any], options: FormatOptions | None = None) -> Structure:
        model = cls(options)
        model.open_from_data(data)
        return model

    @classmethod
    def create_default(cls, options: FormatOptions | None = None) -> Structure:
        """A skeleton: Name and Category fields, grouped by Category."""
        model = cls(options)
        main_field = create_field("Name", options=model.options)
        category_field = create_field("Category", options=model.options)
        model.field_map = {main_field.name: main_field, category_field.name: category_field}
        root = TitleNode("Root", model=model)
        root.is_open = True
        model.root_nodes.append(root)
        root.replace_child_rule(RuleNode(ParsedLine.from_single_field(category_field), model=model, parent=root))
        model.leaf_nodes.add(LeafNode({"Name": "Sample Node", "Category": "First Category"}))
        model.title_line = ParsedLine.from_single_field(main_field)
        model.output_lines = [
            ParsedLine.from_single_field(main_field),
            ParsedLine.from_single_field(category_field),
        ]
        return model

    def open_from_data(self, data: dict[str, Any]) -> None:
        """
        Replace the model with a stored document.

        Raises ConfigFormatError for a malformed document. The document is
        built into a fresh model state that replaces the current one only
        once it loads; a failed load leaves the model as it was.
        """
        try:
            doc = TreeDocument.model_validate(data)
        except ValidationError as err:
            raise ConfigFormatError(f"Invalid document: {err}") from err
        previous = self._swap_model_state()
        try:
            self._load(doc)
        except Exception:
            self._swap_model_state(previous)
            raise
        with self.batch():
            self.obsolete_nodes.clear()
            self._pending_obsolete.clear()
            self.update_all()
        logger.info(
            "structure: loaded %d fields, %d roots, %d leaves",
            len(self.field_map),
            len(self.root_nodes),
            len(self.leaf_nodes),
        )

    def _load(self, doc: TreeDocument) -> None:
        self.properties = dict(doc.properties)
        for field_data in doc.field_dicts():
            field = Field.from_dict(field_data, self.options)
            self.field_map[field.name] = field
        for node_data in doc.template_dicts():
            self.root_nodes.append(node_from_dict(node_data, self))
        if len(self.root_nodes) == 1:
            self.root_nodes[0].is_open = True
        self.title_line = ParsedLine(doc.titleline, self.field_map)
        self.output_lines = [ParsedLine(line, self.field_map) for line in doc.outputlines]
        for leaf_data in doc.leaves:
            self.leaf_nodes.add(LeafNode(leaf_data))
        self._seed_auto_choice_options(self.leaf_nodes.leaves)

    def to_dict(self) -> dict[str, Any]:
        return {
            "properties": {**self.properties, "ttversion": KERNEL_VERSION},
            "fields": [field.to_dict() for field in self.field_map.values()],
            "template": [root.to_dict() for root in self.root_nodes],
            "titleline": self.title_line.unparsed_line(),
            "outputlines": [line.unparsed_line() for line in self.output_lines],
            "leaves": [leaf.to_dict() for leaf in self.leaf_nodes],
        }

    def _swap_model_state(self, state: dict[str, Any] | None = None) -> dict[str, Any]:
        """Install [state] (an empty model if None) and return the state it replaced."""
        replaced = {name: getattr(self, name) for name in MODEL_STATE}
        if state is None:
            state = {
                "properties": {},
                "root_nodes": [],
                "leaf_nodes": RecordStore(self),
                "field_map": {},
                "title_line": ParsedLine(),
                "output_lines": [],
                "undo_list": UndoList(self),
            }
        for name, value in state.items():
            setattr(self, name, value)
        return replaced

    # -----------------------------------------------------------------------
    # Invalidation and refresh
    # -----------------------------------------------------------------------

    def invalidate(self, target=None) -> None:
        """Mark cached children stale: everything, or one node (object or stored id)."""
        match target:
            case None:
                count = self._mark_cached(lambda node: True)
                logger.debug("structure: invalidated all %d cached nodes", count)
            case str():
                node = self.stored_node_from_id(target)
                if node is not None:
                    self.invalidate(node)
            case RuleNode():
                self.invalidate_rule(target)
            case TitleNode():
                for node in _cached_branch(target):
                    node.mark_stale()
            case GroupNode():
                target.mark_stale()
            case LeafNode():
                self.invalidate_record(target)
            case _:
                raise TypeError(f"Cannot invalidate {target!r}")

    def invalidate_record(self, leaf: LeafNode) -> None:
        """A leaf was added, edited or removed."""

        def affected(node) -> bool:
            if isinstance(node, TitleNode):
                return True
            return any(item is leaf for item in node.matching_nodes)

        count = self._mark_cached(affected)
        logger.debug("structure: leaf %s invalidated %d cached nodes", leaf.uid[:8], count)

    def invalidate_rule(self, rule: RuleNode) -> None:
        """A rule's line or sort keys changed."""
        rules = rule.descendant_rules()

        def is_listed(item) -> bool:
            return any(item is other for other in rules)

        def affected(node) -> bool:
            if isinstance(node, TitleNode):
                return is_listed(node.child_rule_node)
            return is_listed(node.rule_ref) or is_listed(node.rule_ref.child_rule_node)

        count = self._mark_cached(affected)
        logger.debug("structure: rule %r invalidated %d cached nodes", rule.title, count)

    def _mark_cached(self, predicate: Callable[[Any], bool]) -> int:
        count = 0
        for root in self.root_nodes:
            for node in _cached_branch(root):
                if predicate(node):
                    node.mark_stale()
                    count += 1
        return count

    def cached_nodes(self) -> Iterator:
        """Title and group nodes currently holding materialized children."""
        for root in self.root_nodes:
            yield from _cached_branch(root)

    def mark_obsolete(self, nodes) -> None:
        """Record removed nodes, with the groups cached below removed groups."""
        branch = [item for node in nodes for item in _obsolete_branch(node)]
        if self.in_batch:
            self._pending_obsolete.extend(branch)
        else:
            self.obsolete_nodes.update(branch)

    def update_all(self) -> None:
        """Recompute stale children of open nodes, then notify."""
        self.obsolete_nodes.clear()
        for root in self.root_nodes:
            _refresh(root)
        self.obsolete_nodes.update(self._pending_obsolete)
        self._pending_obsolete.clear()
        self.notify_listeners()

    def toggle_node_open(self, node) -> None:
        node.is_open = not node.is_open
        with self.batch():
            self.update_all()

    # -----------------------------------------------------------------------
    # Leaves
    # -----------------------------------------------------------------------

    def new_leaf(self, copy_from=None) -> LeafNode:
        """
        Create a leaf, copying data from the context node if given.

        Under a group, the captured values of the group and its group parents
        are copied. Missing fields get their initial values. No undo entry or
        notification: those happen in edit_leaf_data(new_leaf=True), or the
        leaf is removed with delete_leaf(with_undo=False).
        """
        match copy_from:
            case GroupNode():
                data = copy_from.context_data()
            case LeafNode():
                data = _copy_data(copy_from.data)
            case _:
                data = {}
        leaf = LeafNode(data)
        for field in self.field_map.values():
            if field.name not in leaf.data:
                init_value = field.initial_value()
                if init_value is not None:
                    leaf.data[field.name] = init_value
        self.leaf_nodes.add(leaf)
        return leaf

    def leaf_data_from_edit_text(self, texts: dict[str, Any]) -> dict[str, Any]:
        """
        Convert editor text per field to stored values.

        Empty text drops the field. Collects every field's message into one
        LeafValidationError.
        """
        data: dict[str, Any] = {}
        errors: dict[str, str] = {}
        for name, text in texts.items():
            field = self.field_map.get(name)
            if field is None:
                errors[name] = "Unknown field"
                continue
            if text == VARIES:
                data[name] = VARIES
                continue
            entries = text if isinstance(text, list) else [text]
            try:
                values = [field.parse_edit_text(entry) for entry in entries if entry]
            except FieldValidationError as err:
                errors[name] = err.message
                continue
            values = [value for value in values if value]
            if not values:
                continue
            data[name] = values if isinstance(text, list) and field.allow_multiples else values[0]
        if errors:
            raise LeafValidationError(errors)
        return data

    def validate_leaf_data(self, data: dict[str, Any]) -> dict[str, str]:
        """Per-field messages for stored values that break their field's rules."""
        errors: dict[str, str] = {}
        for name, value in data.items():
            field = self.field_map.get(name)
            if field is None or value is None or value == VARIES:
                continue
            entries = value if isinstance(value, list) else [value]
            if len(entries) > 1 and not field.allow_multiples:
                errors[name] = "Only one entry is allowed"
                continue
            for entry in entries:
                if not field.is_stored_value_valid(entry):
                    errors[name] = field.validate_message(entry) or f"Invalid value: {entry}"
                    break
        return errors

    def edit_leaf_data(self, leaf: LeafNode, data: dict[str, Any], new_leaf: bool = False) -> None:
        """Replace a leaf's data. Raises LeafValidationError and leaves it unchanged."""
        errors = self.validate_leaf_data(data)
        if errors:
            raise LeafValidationError(errors)
        with self.batch():
            pos = self.leaf_nodes.index(leaf)
            if new_leaf:
                leaf.data = _clean_data(data)
                self.undo_list.add(UndoAddLeafNode(f"New leaf node: {leaf.title}", pos))
            else:
                self.undo_list.add(UndoEditLeafNode(f"Edit leaf node: {leaf.title}", pos, leaf.data))
                leaf.data = _clean_data(data)
            self._seed_auto_choice_options([leaf])
            self.invalidate_record(leaf)
            self.update_all()

    def edit_leaves_data(self, leaves: list[LeafNode], data: dict[str, Any]) -> None:
        """
        Bulk edit. Fields set to VARIES keep each leaf's own value; empty values
        remove the field. One undo entry and one notification.
        """
        errors = self.validate_leaf_data(data)
        if errors:
            raise LeafValidationError(errors)
        if not leaves:
            return
        with self.batch():
            undos = []
            for leaf in leaves:
                pos = self.leaf_nodes.index(leaf)
                undos.append(UndoEditLeafNode(f"Edit leaf node: {leaf.title}", pos, leaf.data))
                new_data = _copy_data(leaf.data)
                for name, value in data.items():
                    if value == VARIES:
                        continue
                    if value is None or value == "" or value == []:
                        new_data.pop(name, None)
                    else:
                        new_data[name] = list(value) if isinstance(value, list) else value
                leaf.data = new_data
                self.invalidate_record(leaf)
            self.undo_list.add_all(undos, title=f"Edit {len(leaves)} leaf nodes")
            self._seed_auto_choice_options(leaves)
            self.update_all()

    def delete_leaf(self, leaf: LeafNode, with_undo: bool = True) -> None:
        with self.batch():
            self.invalidate_record(leaf)
            title = leaf.title
            pos = self.leaf_nodes.remove(leaf)
            if with_undo:
                self.undo_list.add(UndoDeleteLeafNode(f"Delete leaf node: {title}", pos, leaf))
            self.mark_obsolete([leaf])
            self.update_all()

    def delete_leaves(self, leaves: list[LeafNode]) -> None:
        with self.batch():
            undos = []
            for leaf in leaves:
                self.invalidate_record(leaf)
                title = leaf.title
                pos = self.leaf_nodes.remove(leaf)
                undos.append(UndoDeleteLeafNode(f"Delete leaf node: {title}", pos, leaf))
            self.undo_list.add_all(undos, title=f"Delete {len(leaves)} leaf nodes")
            self.mark_obsolete(leaves)
            self.update_all()

    def _seed_auto_choice_options(self, leaves) -> None:
        auto_fields = [field for field in self.field_map.values() if isinstance(field, AutoChoiceField)]
        if not auto_fields:
            return
        for leaf in leaves:
            for field in auto_fields:
                for entry in field.stored_entries(leaf.data):
                    field.add_option(entry)

    # -----------------------------------------------------------------------
    # Fields
    # -----------------------------------------------------------------------

    def _check_new_field_name(self, name: str) -> None:
        if not is_valid_field_name(name):
            raise ConfigFormatError(f"Invalid field name: {name!r}")
        if name in self.field_map:
            raise ConfigFormatError(f"Field {name!r} already exists")

    def _set_field_order(self, fields: list[Field]) -> None:
        self.field_map.clear()
        self.field_map.update((field.name, field) for field in fields)

    def add_field(self, field: Field, pos: int | None = None) -> None:
        self._check_new_field_name(field.name)
        with self.batch():
            fields = list(self.field_map.values())
            fields.insert(len(fields) if pos is None else pos, field)
            self._set_field_order(fields)
            self.update_rule_child_sort_fields()
            self.invalidate()
            self.update_all()

    def edit_field(self, old_field: Field, edited_field: Field, remove_choices: bool = False) -> None:
        """
        Copy the settings of [edited_field] into [old_field].

        A rename moves the stored data. With [remove_choices], stored values no
        longer valid for the field are removed.
        """
        old_name = old_field.name
        renamed = edited_field.name != old_name
        if renamed:
            self._check_new_field_name(edited_field.name)
        with self.batch():
            if renamed:
                fields = list(self.field_map.values())
                old_field.name = edited_field.name
                self._set_field_order(fields)
                for leaf in self.leaf_nodes:
                    if old_name in leaf.data:
                        leaf.data[edited_field.name] = leaf.data.pop(old_name)
            old_field.update_settings(edited_field)
            if remove_choices:
                for leaf in self.leaf_nodes:
                    if not old_field.is_stored_text_valid(leaf):
                        del leaf.data[old_field.name]
            if renamed or remove_choices:
                # Stored leaf undo data no longer matches the field names
                self.undo_list.clear()
            self.update_alt_format_fields()
            self.invalidate()
            self.update_all()

    def replace_field(self, old_field: Field, new_field: Field) -> None:
        """Swap in a field of another type (or name) everywhere it is used."""
        if new_field.name != old_field.name:
            self._check_new_field_name(new_field.name)
        with self.batch():
            old_name = old_field.name
            fields = [new_field if field is old_field else field for field in self.field_map.values()]
            self._set_field_order(fields)
            if new_field.name != old_name:
                for leaf in self.leaf_nodes:
                    if old_name in leaf.data:
                        leaf.data[new_field.name] = leaf.data.pop(old_name)
            for line in self._all_lines():
                line.replace_field(old_field, new_field)
            for rule in self.rule_nodes():
                for key in rule.sort_fields + rule.child_sort_fields:
                    if key.key_field.name == old_name:
                        key.key_field = new_field
            for leaf in self.leaf_nodes:
                if not new_field.is_stored_text_valid(leaf):
                    del leaf.data[new_field.name]
            self.undo_list.clear()
            self.update_alt_format_fields()
            self._seed_auto_choice_options(self.leaf_nodes.leaves)
            self.invalidate()
            self.update_all()

    def delete_field(self, field: Field) -> None:
        """
        Remove a field, its data and its uses in the title and output lines.

        A field still used by a rule cannot be deleted: the rule would lose
        its grouping key. Raises ConfigFormatError before changing anything.
        """
        if self.is_field_in_group(field):
            raise ConfigFormatError(f"Field {field.name!r} is used by a rule")
        if len(self.field_map) <= 1:
            raise ConfigFormatError("Cannot delete the last field")
        with self.batch():
            del self.field_map[field.name]
            replacement = next(iter(self.field_map.values()))
            for leaf in self.leaf_nodes:
                leaf.data.pop(field.name, None)
            for line_field in field.matching_field_descendents(self.title_line.fields()):
                self.title_line.delete_field(line_field, replacement)
            for line in list(self.output_lines):
                matches = field.matching_field_descendents(line.fields())
                if not matches:
                    continue
                if line.has_multiple_fields():
                    for line_field in matches:
                        line.delete_field(line_field)
                else:
                    self.output_lines.remove(line)
            if not self.output_lines:
                self.output_lines.append(ParsedLine.from_single_field(replacement))
            for rule in self.rule_nodes():
                rule.remove_child_sort_field(field)
                if rule.has_custom_sort_fields:
                    rule.sort_fields = [key for key in rule.sort_fields if key.key_field is not field]
                    if not rule.sort_fields:
                        rule.has_custom_sort_fields = False
                        rule.set_default_rule_sort_fields()
            self.undo_list.clear()
            self.update_rule_child_sort_fields()
            self.update_alt_format_fields()
            self.invalidate()
            self.update_all()
        logger.info("structure: deleted field %r", field.name)

    def move_field(self, field: Field, up: bool = True) -> None:
        fields = list(self.field_map.values())
        pos = fields.index(field)
        new_pos = pos - 1 if up else pos + 1
        if not 0 <= new_pos < len(fields):
            raise IndexError(f"Field {field.name!r} cannot move {'up' if up else 'down'}")
        with self.batch():
            fields.insert(new_pos, fields.pop(pos))
            self._set_field_order(fields)
            self.update_rule_child_sort_fields()
            self.invalidate()
            self.update_all()

    def update_rule_child_sort_fields(self) -> None:
        for rule in self.rule_nodes():
            rule.set_default_child_sort_fields()

    def is_field_in_title(self, field: Field) -> bool:
        return bool(field.matching_field_descendents(self.title_line.fields()))

    def is_field_in_output(self, field: Field) -> bool:
        return any(field.matching_field_descendents(line.fields()) for line in self.output_lines)

    def is_field_in_group(self, field: Field) -> bool:
        return any(field.matching_field_descendents(rule.rule_line.fields()) for rule in self.rule_nodes())

    def is_field_in_data(self, field: Field) -> bool:
        return any(field.name in leaf.data for leaf in self.leaf_nodes)

    def bad_field_count(self, field: Field) -> int:
        return sum(1 for leaf in self.leaf_nodes if not field.is_stored_text_valid(leaf))

    def update_alt_format_fields(self) -> None:
        """
        Fold alternates that match their parent back into it, drop unused
        alternates and re-link the ones still used.
        """
        lines = self._all_lines()
        for line in lines:
            for segment in line.segments:
                alt_field = segment.field
                if alt_field is None or alt_field.alt_format_parent is None:
                    continue
                if alt_field.has_same_format_settings(alt_field.alt_format_parent):
                    segment.field = alt_field.alt_format_parent
        used = {field for line in lines for field in line.fields() if field.is_alt_format_field}
        for field in self.field_map.values():
            field.remove_unused_alt_format_fields(used)
        for alt_field in used:
            parent = alt_field.alt_format_parent
            alt_field.name = parent.name
            parent.add_alt_format_field_if_missing(alt_field)

    def _all_lines(self) -> list[ParsedLine]:
        return [self.title_line, *self.output_lines, *(rule.rule_line for rule in self.rule_nodes())]

    # -----------------------------------------------------------------------
    # Tree template
    # -----------------------------------------------------------------------

    def rule_nodes(self) -> Iterator[RuleNode]:
        for root in self.root_nodes:
            for item in stored_node_generator(root):
                if isinstance(item.node, RuleNode):
                    yield item.node

    def _siblings(self, node: TitleNode) -> list[TitleNode]:
        parent = node.parent
        return parent.stored_children() if parent is not None else self.root_nodes

    def stored_node_pos(self, node) -> int:
        parent = node.parent
        siblings = parent.stored_children() if parent is not None else self.root_nodes
        return _identity_index(siblings, node)

    def add_title_sibling(self, sibling: TitleNode, new_title: str) -> TitleNode:
        parent = sibling.parent
        pos = self.stored_node_pos(sibling) + 1
        with self.batch():
            new_node = TitleNode(new_title, model=self, parent=parent)
            if parent is not None:
                parent.add_child_title_node(new_node, pos=pos)
            else:
                self.root_nodes.insert(pos, new_node)
            self.update_all()
        return new_node

    def add_title_child(self, parent: TitleNode, new_title: str) -> TitleNode:
        with self.batch():
            new_node = TitleNode(new_title, model=self, parent=parent)
            parent.add_child_title_node(new_node)
            self.update_all()
        return new_node

    def edit_title(self, node: TitleNode, new_title: str) -> None:
        with self.batch():
            node.title = new_title
            self.update_all()

    def add_rule_child(self, parent: TitleNode | RuleNode, rule: ParsedLine | str) -> RuleNode:
        """Add a rule under a title without children, or at the end of a rule chain."""
        line = rule if isinstance(rule, ParsedLine) else ParsedLine(rule, self.field_map)
        match parent:
            case TitleNode() if parent.has_children:
                raise ConfigFormatError(f"Title node {parent.title!r} already has children")
            case RuleNode() if parent.child_rule_node is not None:
                raise ConfigFormatError(f"Rule {parent.title!r} already has a child rule")
            case TitleNode() | RuleNode():
                pass
            case _:
                raise ConfigFormatError(f"Cannot add a rule under {parent!r}")
        new_rule = RuleNode(line, model=self, parent=parent)
        with self.batch():
            parent.replace_child_rule(new_rule)
            new_rule.set_default_child_sort_fields()
            if isinstance(parent, RuleNode):
                self._mark_cached(lambda node: isinstance(node, GroupNode) and node.rule_ref is parent)
            self.update_alt_format_fields()
            self.update_all()
        return new_rule

    def edit_rule_line(self, node: RuleNode, new_line: ParsedLine | str) -> None:
        line = new_line if isinstance(new_line, ParsedLine) else ParsedLine(new_line, self.field_map)
        with self.batch():
            node.rule_line = line
            node.set_default_rule_sort_fields(check_custom=True)
            for rule in node.descendant_rules():
                rule.set_default_child_sort_fields()
            self.update_alt_format_fields()
            self.invalidate_rule(node)
            self.update_all()

    def delete_tree_node(self, node: TitleNode | RuleNode) -> None:
        parent = node.parent
        with self.batch():
            match node:
                case TitleNode():
                    if parent is None:
                        if len(self.root_nodes) <= 1:
                            raise ConfigFormatError("Cannot delete the last root node")
                        self.root_nodes.remove(node)
                    else:
                        parent.remove_child_title_node(node)
                    self.mark_obsolete([node, *node.drop_cache()])
                case RuleNode():
                    parent.replace_child_rule(None)
                    if isinstance(parent, RuleNode):
                        self._mark_cached(lambda item: isinstance(item, GroupNode) and item.rule_ref is parent)
                    self.update_alt_format_fields()
            self.update_all()

    def move_title_node(self, node: TitleNode, up: bool = True) -> None:
        if not self.can_node_move(node, up):
            raise IndexError(f"Title node {node.title!r} cannot move {'up' if up else 'down'}")
        siblings = self._siblings(node)
        pos = _identity_index(siblings, node)
        with self.batch():
            siblings.insert(pos - 1 if up else pos + 1, siblings.pop(pos))
            self.update_all()

    def can_node_move(self, node, up: bool = True) -> bool:
        if not isinstance(node, TitleNode):
            return False
        siblings = self._siblings(node)
        pos = _identity_index(siblings, node)
        return pos > 0 if up else pos < len(siblings) - 1

    def rule_sort_keys_to_default(self, node: RuleNode) -> None:
        with self.batch():
            node.has_custom_sort_fields = False
            node.set_default_rule_sort_fields()
            self.invalidate_rule(node)
            self.update_all()

    def child_sort_keys_to_default(self, node: RuleNode) -> None:
        with self.batch():
            node.has_custom_child_sort_fields = False
            node.set_default_child_sort_fields()
            self.invalidate_rule(node)
            self.update_all()

    def update_rule_sort_keys(self, node: RuleNode, new_keys: list[SortKey]) -> None:
        if not new_keys:
            raise ConfigFormatError("Sort keys cannot be empty")
        with self.batch():
            node.has_custom_sort_fields = True
            node.sort_fields = list(new_keys)
            self.invalidate_rule(node)
            self.update_all()

    def update_child_sort_keys(self, node: RuleNode, new_keys: list[SortKey]) -> None:
        if not new_keys:
            raise ConfigFormatError("Sort keys cannot be empty")
        with self.batch():
            node.has_custom_child_sort_fields = True
            node.child_sort_fields = list(new_keys)
            self.invalidate_rule(node)
            self.update_all()

    # -----------------------------------------------------------------------
    # Title and output lines
    # -----------------------------------------------------------------------

    def add_output_line(self, pos: int, new_line: ParsedLine | str) -> ParsedLine:
        line = new_line if isinstance(new_line, ParsedLine) else ParsedLine(new_line, self.field_map)
        with self.batch():
            self.output_lines.insert(pos, line)
            self.update_alt_format_fields()
            self.invalidate()
            self.update_all()
        return line

    def edit_output_line(self, orig_line: ParsedLine, new_line: ParsedLine | str) -> None:
        """Replace the title line or one of the output lines."""
        line = new_line if isinstance(new_line, ParsedLine) else ParsedLine(new_line, self.field_map)
        with self.batch():
            if orig_line is self.title_line:
                self.title_line = line
            else:
                self.output_lines[_identity_index(self.output_lines, orig_line)] = line
            self.update_alt_format_fields()
            self.invalidate()
            self.update_all()

    def remove_output_line(self, line: ParsedLine) -> None:
        if len(self.output_lines) <= 1:
            raise ConfigFormatError("Cannot remove the last output line")
        with self.batch():
            del self.output_lines[_identity_index(self.output_lines, line)]
            self.update_alt_format_fields()
            self.invalidate()
            self.update_all()

    def move_output_line(self, line: ParsedLine, up: bool = True) -> None:
        pos = _identity_index(self.output_lines, line)
        new_pos = pos - 1 if up else pos + 1
        if not 0 <= new_pos < len(self.output_lines):
            raise IndexError("Output line cannot move further")
        with self.batch():
            self.output_lines.insert(new_pos, self.output_lines.pop(pos))
            self.invalidate()
            self.update_all()

    # -----------------------------------------------------------------------
    # Stored node ids
    # -----------------------------------------------------------------------

    def stored_node_id(self, node) -> str:
        """Dotted positions from the root, e.g. "0.2.0"; "" for None."""
        if node is None:
            return ""
        positions: list[int] = []
        while node.parent is not None:
            positions.insert(0, _identity_index(node.parent.stored_children(), node))
            node = node.parent
        positions.insert(0, _identity_index(self.root_nodes, node))
        return ".".join(str(pos) for pos in positions)

    def stored_node_from_id(self, node_id: str):
        if not node_id:
            return None
        try:
            positions = [int(part) for part in node_id.split(".")]
            node = self.root_nodes[positions[0]]
            for pos in positions[1:]:
                node = node.stored_children()[pos]
        except (ValueError, IndexError):
            raise KeyError(f"No stored node with id {node_id!r}") from None
        return node

    # -----------------------------------------------------------------------
    # Traversal
    # -----------------------------------------------------------------------

    def leveled_nodes(self) -> Iterator[LeveledNode]:
        """Every visible node (open branches only) across all roots."""
        for root in self.root_nodes:
            yield from leveled_node_generator(root)

    # -----------------------------------------------------------------------
    # Search and replace
    # -----------------------------------------------------------------------

    def search(
        self,
        text: str,
        search_type: SearchType = SearchType.KEYWORD,
        leaves: list[LeafNode] | None = None,
        search_field: Field | None = None,
    ) -> list[LeafNode]:
        match search_type:
            case SearchType.PHRASE:
                return self.string_search_results([text], leaves, search_field)
            case SearchType.KEYWORD:
                return self.string_search_results(text.split(), leaves, search_field)
            case SearchType.REGEXP:
                return self.regexp_search_results(text, leaves, search_field)

    def string_search_results(
        self, terms: list[str], leaves: list[LeafNode] | None = None, search_field: Field | None = None
    ) -> list[LeafNode]:
        """Leaves whose output holds every term, case-insensitive."""
        lowered = [term.lower() for term in terms if term]
        pool = self.leaf_nodes.leaves if leaves is None else leaves
        return [leaf for leaf in pool if leaf.is_search_match(lowered, search_field)]

    def regexp_search_results(
        self, pattern: str | re.Pattern, leaves: list[LeafNode] | None = None, search_field: Field | None = None
    ) -> list[LeafNode]:
        if isinstance(pattern, str):
            pattern = re.compile(pattern)
        pool = self.leaf_nodes.leaves if leaves is None else leaves
        return [leaf for leaf in pool if leaf.is_regexp_match(pattern, search_field)]

    def replace_in_leaves(
        self,
        pattern: str | re.Pattern,
        replacement: str,
        leaves: list[LeafNode] | None = None,
        search_field: Field | None = None,
    ) -> int:
        """
        Regexp replace in the stored text of free text fields.

        Restricted to [search_field] if given. All changes are validated
        before any is applied. Returns the number of leaves changed.
        """
        if isinstance(pattern, str):
            pattern = re.compile(pattern)
        pool = self.leaf_nodes.leaves if leaves is None else leaves
        if search_field is not None:
            fields = [self.field_map.get(search_field.name, search_field)]
        else:
            fields = [field for field in self.field_map.values() if field.field_type in REPLACEABLE_TYPES]
        changes: list[tuple[LeafNode, dict[str, Any]]] = []
        for leaf in pool:
            new_data = None
            for field in fields:
                value = leaf.data.get(field.name)
                if not value:
                    continue
                entries = value if isinstance(value, list) else [value]
                new_entries = [pattern.sub(replacement, entry) for entry in entries]
                if new_entries == entries:
                    continue
                for entry in new_entries:
                    if not field.is_stored_value_valid(entry):
                        raise LeafValidationError({field.name: f"Replacement gives an invalid value: {entry}"})
                if new_data is None:
                    new_data = _copy_data(leaf.data)
                new_data[field.name] = new_entries if isinstance(value, list) else new_entries[0]
            if new_data is not None:
                changes.append((leaf, new_data))
        if not changes:
            return 0
        with self.batch():
            undos = []
            for leaf, new_data in changes:
                pos = self.leaf_nodes.index(leaf)
                undos.append(UndoEditLeafNode(f"Replace in leaf node: {leaf.title}", pos, leaf.data))
                leaf.data = _clean_data(new_data)
                self.invalidate_record(leaf)
            self.undo_list.add_all(undos, title=f"Replace {pattern.pattern!r}")
            self._seed_auto_choice_options([leaf for leaf, _ in changes])
            self.update_all()
        logger.info("structure: replaced %r in %d leaves", pattern.pattern, len(changes))
        return len(changes)


# ---------------------------------------------------------------------------
# Tree walks
# ---------------------------------------------------------------------------


def leveled_node_generator(node, level: int = 0, parent=None) -> Iterator[LeveledNode]:
    """The node, then its descendants in open branches, with indent levels."""
    yield LeveledNode(node, level, parent)
    if node.is_open:
        for child in node.child_nodes():
            yield from leveled_node_generator(child, level + 1, node)


def all_node_generator(node) -> Iterator:
    """The node and every descendant, open or not (materializes as needed)."""
    yield node
    for child in node.child_nodes():
        yield from all_node_generator(child)


def stored_node_generator(node, level: int = 0) -> Iterator[LeveledNode]:
    """The stored title and rule nodes of a branch."""
    yield LeveledNode(node, level)
    for child in node.stored_children():
        yield from stored_node_generator(child, level + 1)


def _cached_branch(node) -> Iterator:
    """Nodes holding a children cache, without computing anything."""
    match node:
        case TitleNode() if node.child_rule_node is not None:
            yield node
            for child in node.current_children():
                yield from _cached_branch(child)
        case TitleNode():
            for child in node.stored_children():
                yield from _cached_branch(child)
        case GroupNode():
            yield node
            for child in node.current_children():
                yield from _cached_branch(child)
        case _:
            return


def _obsolete_branch(node) -> Iterator:
    if isinstance(node, GroupNode):
        yield from _cached_branch(node)
    else:
        yield node


def _refresh(node) -> None:
    match node:
        case TitleNode() | GroupNode() if node.is_open:
            for child in node.child_nodes():
                _refresh(child)
        case _:
            return


def _identity_index(items: list, item) -> int:
    for pos, other in enumerate(items):
        if other is item:
            return pos
    raise ValueError(f"{item!r} is not in the list")


def _copy_data(data: dict[str, Any]) -> dict[str, Any]:
    return {key: list(value) if isinstance(value, list) else value for key, value in data.items()}


def _clean_data(data: dict[str, Any]) -> dict[str, Any]:
    """Copy without empty values."""
    return {
        key: list(value) if isinstance(value, list) else value
        for key, value in data.items()
        if value is not None and value != "" and value != [] and value != VARIES
    }
