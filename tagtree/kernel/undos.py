"""
TagTree Kernel — Undo List

Undo entries for leaf mutations. Each entry's undo() reverts its change on
the structure and returns the opposite (redo) entry.

Positions are indexes into the record store at the time the entry was made,
so entries must be undone newest first.
"""

from __future__ import annotations

import logging
import weakref
from datetime import datetime
from typing import Any

from tagtree.kernel.records import LeafNode

logger = logging.getLogger(__name__)


def toggle_redo_title(title: str) -> str:
    """Toggle between a title and its "Redo ..." form."""
    if not title:
        return ""
    if title.startswith("Redo "):
        return title[5].upper() + title[6:]
    return f"Redo {title[0].lower()}{title[1:]}"


class Undo:
    """Base undo entry."""

    undo_type = ""

    def __init__(self, title: str) -> None:
        self.title = title
        self.time_stamp = datetime.now()

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.title!r})"

    def undo(self, model) -> Undo:
        raise NotImplementedError


class UndoBatch(Undo):
    """Several entries undone together, newest first."""

    undo_type = "batch"

    def __init__(self, title: str, stored_undos: list[Undo]) -> None:
        super().__init__(title)
        self.stored_undos = stored_undos

    def undo(self, model) -> Undo:
        redos = [entry.undo(model) for entry in reversed(self.stored_undos)]
        return UndoBatch(toggle_redo_title(self.title), redos)


class UndoEditLeafNode(Undo):
    undo_type = "editleafnode"

    def __init__(self, title: str, node_pos: int, node_data: dict[str, Any]) -> None:
        super().__init__(title)
        self.node_pos = node_pos
        self.stored_node_data = _copy_data(node_data)

    def undo(self, model) -> Undo:
        leaf = model.leaf_nodes[self.node_pos]
        redo = UndoEditLeafNode(toggle_redo_title(self.title), self.node_pos, leaf.data)
        leaf.data = _copy_data(self.stored_node_data)
        return redo


class UndoAddLeafNode(Undo):
    undo_type = "addleafnode"

    def __init__(self, title: str, node_pos: int) -> None:
        super().__init__(title)
        self.node_pos = node_pos

    def undo(self, model) -> Undo:
        leaf = model.leaf_nodes[self.node_pos]
        model.leaf_nodes.remove(leaf)
        model.mark_obsolete([leaf])
        return UndoDeleteLeafNode(toggle_redo_title(self.title), self.node_pos, leaf)


class UndoDeleteLeafNode(Undo):
    undo_type = "deleteleafnode"

    def __init__(self, title: str, node_pos: int, node: LeafNode) -> None:
        super().__init__(title)
        self.node_pos = node_pos
        self.node = node

    def undo(self, model) -> Undo:
        pos = min(self.node_pos, len(model.leaf_nodes))
        model.leaf_nodes.insert(pos, self.node)
        return UndoAddLeafNode(toggle_redo_title(self.title), pos)


class UndoList(list):
    """Stored undo entries, oldest first."""

    def __init__(self, model=None) -> None:
        super().__init__()
        self._model_ref = weakref.ref(model) if model is not None else None

    @property
    def model(self):
        return self._model_ref() if self._model_ref is not None else None

    def add(self, entry: Undo) -> None:
        self.append(entry)

    def add_all(self, entries: list[Undo], title: str = "") -> None:
        """Add one entry, or a batch titled by the first when there are several."""
        if not entries:
            return
        if len(entries) == 1:
            self.append(entries[0])
        else:
            self.append(UndoBatch(title or entries[0].title, entries))

    def undo_to_pos(self, pos: int) -> None:
        """
        Undo every entry from [pos] to the end, newest first.

        The undone entries are replaced by their redo entries, and the model is
        refreshed with one notification.
        """
        model = self.model
        if model is None:
            raise RuntimeError("Undo list is not attached to a structure")
        with model.batch():
            redo_list = [self[i].undo(model) for i in range(len(self) - 1, pos - 1, -1)]
            del self[pos:]
            self.extend(redo_list)
            logger.info("undos: reverted %d entries", len(redo_list))
            model.invalidate()
            model.update_all()


def _copy_data(data: dict[str, Any]) -> dict[str, Any]:
    return {key: list(value) if isinstance(value, list) else value for key, value in data.items()}
