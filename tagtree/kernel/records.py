"""
TagTree Kernel — Record Store

Leaf nodes are the flat user records: a mapping of field name to stored
value (a list of values for multiple-entry fields). They are stored once in
the RecordStore and placed dynamically in the tree by the rules.
"""

from __future__ import annotations

import re
import weakref
from collections.abc import Iterator
from typing import Any
from uuid import uuid4

from tagtree.kernel.fields import Field


class LeafNode:
    """The lowest level nodes that contain the data."""

    has_children = False

    def __init__(self, data: dict[str, Any] | None = None, *, uid: str | None = None, model=None) -> None:
        self.uid = uid or uuid4().hex
        self.data: dict[str, Any] = dict(data or {})
        self.is_open = False
        self._model_ref = weakref.ref(model) if model is not None else None

    def __repr__(self) -> str:
        return f"LeafNode({self.uid[:8]}, {self.data!r})"

    @property
    def model(self):
        return self._model_ref() if self._model_ref is not None else None

    def attach(self, model) -> None:
        self._model_ref = weakref.ref(model)

    @property
    def title(self) -> str:
        model = self.model
        if model is None:
            return ""
        return model.title_line.formatted_line(self)

    @property
    def available_nodes(self) -> list[LeafNode]:
        return []

    def child_nodes(self, force_update: bool = False) -> list:
        return []

    def outputs(self) -> list[str]:
        """Rendered output lines, skipping lines that come out empty."""
        model = self.model
        if model is None:
            return []
        lines = [line.formatted_line(self) for line in model.output_lines]
        return [line for line in lines if line]

    def field_output_start(self, field: Field) -> int | None:
        """
        Offset of [field]'s text in the joined outputs, None if not shown.

        Blank lines that are dropped from outputs() take no space.
        """
        model = self.model
        if model is None:
            return None
        pos = 0
        for line in model.output_lines:
            fields_blank = True
            line_pos = 0
            for segment in line.segments:
                if segment.field is field:
                    return pos + line_pos
                text = segment.output(self)
                if text and segment.has_field:
                    fields_blank = False
                line_pos += len(text)
            if not fields_blank or not any(s.has_field for s in line.segments):
                # One more for the line feed
                pos += line_pos + 1
        return None

    # -- search -------------------------------------------------------------

    def search_text(self, search_field: Field | None = None) -> str:
        if search_field is None:
            return "\n".join(self.outputs())
        return search_field.output_text(self)

    def is_search_match(self, search_terms: list[str], search_field: Field | None = None) -> bool:
        """True if all lower-case [search_terms] are found in the output."""
        text = self.search_text(search_field).lower()
        return all(term in text for term in search_terms)

    def is_regexp_match(self, pattern: re.Pattern, search_field: Field | None = None) -> bool:
        return pattern.search(self.search_text(search_field)) is not None

    def all_pattern_matches(self, pattern: re.Pattern, search_field: Field | None = None) -> list[re.Match]:
        return list(pattern.finditer(self.search_text(search_field)))

    def to_dict(self) -> dict[str, Any]:
        return {key: list(value) if isinstance(value, list) else value for key, value in self.data.items()}


class RecordStore:
    """Ordered collection of leaf nodes with uid lookup."""

    def __init__(self, model=None) -> None:
        self._leaves: list[LeafNode] = []
        self._by_uid: dict[str, LeafNode] = {}
        self._model_ref = weakref.ref(model) if model is not None else None

    def __iter__(self) -> Iterator[LeafNode]:
        return iter(self._leaves)

    def __len__(self) -> int:
        return len(self._leaves)

    def __getitem__(self, index: int) -> LeafNode:
        return self._leaves[index]

    def __contains__(self, leaf: object) -> bool:
        return isinstance(leaf, LeafNode) and self._by_uid.get(leaf.uid) is leaf

    @property
    def leaves(self) -> list[LeafNode]:
        """The live list; callers must not mutate it."""
        return self._leaves

    def get(self, uid: str) -> LeafNode | None:
        return self._by_uid.get(uid)

    def index(self, leaf: LeafNode) -> int:
        for pos, item in enumerate(self._leaves):
            if item is leaf:
                return pos
        raise ValueError(f"{leaf!r} is not in the record store")

    def add(self, leaf: LeafNode) -> None:
        self.insert(len(self._leaves), leaf)

    def insert(self, pos: int, leaf: LeafNode) -> None:
        if leaf.uid in self._by_uid:
            raise ValueError(f"Duplicate leaf uid {leaf.uid}")
        if self._model_ref is not None:
            leaf.attach(self._model_ref())
        self._leaves.insert(pos, leaf)
        self._by_uid[leaf.uid] = leaf

    def remove(self, leaf: LeafNode) -> int:
        """Remove [leaf] and return the position it had."""
        pos = self.index(leaf)
        del self._leaves[pos]
        del self._by_uid[leaf.uid]
        return pos

    def clear(self) -> None:
        self._leaves.clear()
        self._by_uid.clear()
