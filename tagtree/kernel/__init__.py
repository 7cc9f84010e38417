"""
TagTree Kernel — the dynamic grouping engine.

Components:
  fields       typed field definitions (format, parse, validate, compare)
  parsed_line  line templates rendering a leaf into text
  records      leaf nodes and the flat record store
  grouping     partitions leaves into groups by a rule's rendered key
  sorting      stable multi-key node sorting
  nodes        stored title and rule nodes, cached children
  structure    the controlling model: every mutation, invalidation, notify
"""

from tagtree.kernel.fields import Field, create_field
from tagtree.kernel.grouping import GroupNode, create_groups
from tagtree.kernel.nodes import RuleNode, TitleNode
from tagtree.kernel.parsed_line import ParsedLine
from tagtree.kernel.records import LeafNode, RecordStore
from tagtree.kernel.sorting import SortKey, node_full_sort
from tagtree.kernel.structure import (
    Structure,
    all_node_generator,
    leveled_node_generator,
    stored_node_generator,
)
from tagtree.kernel.types import (
    KERNEL_VERSION,
    VARIES,
    CacheCycleError,
    ConfigFormatError,
    FieldFormatError,
    FieldValidationError,
    FormatOptions,
    LeafValidationError,
)

__version__ = KERNEL_VERSION

__all__ = [
    "Structure",
    "Field",
    "create_field",
    "ParsedLine",
    "LeafNode",
    "RecordStore",
    "TitleNode",
    "RuleNode",
    "GroupNode",
    "create_groups",
    "SortKey",
    "node_full_sort",
    "leveled_node_generator",
    "all_node_generator",
    "stored_node_generator",
    "FormatOptions",
    "VARIES",
    "ConfigFormatError",
    "FieldFormatError",
    "FieldValidationError",
    "LeafValidationError",
    "CacheCycleError",
]
