"""
TagTree Kernel — Sort Engine

Stable multi-key sorting of sibling nodes (groups or leaves).

Keys are applied least significant first, each pass a stable binary
insertion sort, so the first key ends up as the primary order. Comparisons
use the key field's type semantics (numeric, chronological, choice order).
"""

from __future__ import annotations

from tagtree.kernel.fields import Field
from tagtree.kernel.types import ConfigFormatError


class SortKey:
    """A combination of a field and a direction used for sorting."""

    __slots__ = ("key_field", "is_ascend")

    def __init__(self, key_field: Field, is_ascend: bool = True) -> None:
        self.key_field = key_field
        self.is_ascend = is_ascend

    @classmethod
    def from_string(cls, text: str, field_map: dict[str, Field]) -> SortKey:
        """Parse "+Name", "-Name" or "Name" (ascending)."""
        is_ascend = True
        if text[:1] in ("+", "-"):
            is_ascend = text[0] == "+"
            text = text[1:]
        field = field_map.get(text)
        if field is None:
            raise ConfigFormatError(f"Unknown sort field {text!r}")
        return cls(field, is_ascend)

    def copy(self) -> SortKey:
        return SortKey(self.key_field, self.is_ascend)

    def __str__(self) -> str:
        return f"{'+' if self.is_ascend else '-'}{self.key_field.name}"

    def __repr__(self) -> str:
        return f"SortKey({str(self)!r})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, SortKey):
            return NotImplemented
        return self.key_field is other.key_field and self.is_ascend == other.is_ascend

    __hash__ = None


def node_full_sort(nodes: list, keys: list[SortKey]) -> None:
    """Sort [nodes] in place by all [keys], first key most significant."""
    for key in reversed(keys):
        node_single_sort(nodes, key)


def node_single_sort(nodes: list, key: SortKey) -> None:
    """
    Stable binary insertion sort on one key, in place.

    Each node is inserted after every already-sorted node that compares equal,
    so ties keep their original order. Descending only flips the comparison.
    """
    for pos in range(1, len(nodes)):
        node = nodes[pos]
        low, high = 0, pos
        while low < high:
            mid = (low + high) >> 1
            comparison = key.key_field.compare_nodes(node, nodes[mid])
            if not key.is_ascend:
                comparison = -comparison
            if comparison < 0:
                high = mid
            else:
                low = mid + 1
        if low < pos:
            del nodes[pos]
            nodes.insert(low, node)
