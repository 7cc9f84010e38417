"""
TagTree Kernel — Shared Types

Constants, patterns, exceptions and small data classes used across the
field model, line templates, grouping engine, nodes and the structure.
These are the contracts that bind the kernel together.
"""

from __future__ import annotations

import enum
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

# ---------------------------------------------------------------------------
# Regex patterns
# ---------------------------------------------------------------------------

FIELD_NAME_PATTERN = re.compile(r"^[\w\-.]+$")
# {*Name*} or {*Name:2*} for an alternate format field
LINE_FIELD_PATTERN = re.compile(r"\{\*([\w\-.]+)(:\d+)?\*\}")


# ---------------------------------------------------------------------------
# Registries
# ---------------------------------------------------------------------------

FIELD_TYPES: tuple[str, ...] = (
    "Text",
    "LongText",
    "Choice",
    "AutoChoice",
    "Number",
    "Date",
    "Time",
)

# Types whose format string is parsed and can be invalid
FORMATTED_TYPES: set[str] = {"Choice", "Number", "Date", "Time"}

DEFAULT_FORMATS: dict[str, str] = {
    "Choice": "yes/no",
    "Number": "#0.##",
    "Date": "MMMM d, yyyy",
    "Time": "h:mm a",
}

DEFAULT_SEPARATOR = ", "

# Initial value that resolves to the current date or time on leaf creation
NOW_INIT_VALUE = "now"

# Bulk edit marker meaning "this field differs between the edited leaves"
VARIES = "\u0000"

INVALID_FORMAT_TEXT = "Invalid Format"

# Written to the document properties on save
KERNEL_VERSION = "0.1.0"


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigFormatError(Exception):
    """Structural configuration problem: bad template, unknown field, bad rule chain."""

    pass


class FieldFormatError(ValueError):
    """A Number/Date/Time/Choice format string that cannot be used."""

    pass


class FieldValidationError(ValueError):
    """A value that fails its field's type constraints."""

    def __init__(self, field_name: str, message: str) -> None:
        super().__init__(f"{field_name}: {message}")
        self.field_name = field_name
        self.message = message


class LeafValidationError(ValueError):
    """One or more fields of a leaf failed validation; the save is blocked."""

    def __init__(self, errors: dict[str, str]) -> None:
        joined = "; ".join(f"{name}: {msg}" for name, msg in errors.items())
        super().__init__(joined)
        self.errors = errors


class CacheCycleError(RuntimeError):
    """Children of a node were requested while that node was computing them."""

    pass


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------


class CacheState(enum.Enum):
    """Per-node state of the materialized children cache."""

    STALE = "stale"
    FRESH = "fresh"
    COMPUTING = "computing"


class SearchType(enum.Enum):
    PHRASE = "phrase"
    KEYWORD = "keyword"
    REGEXP = "regexp"


@dataclass
class FormatOptions:
    """
    Explicit formatting configuration handed to fields and line templates.

    Replaces process-wide preferences: everything a field needs to render or
    parse a value comes from here.
    """

    date_edit_format: str = "MM/dd/yyyy"
    time_edit_format: str = "HH:mm:ss"
    decimal_point: str = "."
    group_separator: str = ","
    currency_symbol: str = "$"
    clock: Callable[[], datetime] = field(default=datetime.now)


@dataclass
class LeveledNode:
    """A tree node with its indent level, used by the tree generators."""

    node: object
    level: int
    parent: object | None = None


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def is_valid_field_name(name: str) -> bool:
    """Check that a field name cannot collide with line template syntax."""
    return bool(FIELD_NAME_PATTERN.match(name))


def compare_values(first, second) -> int:
    """Three-way comparison returning -1, 0 or 1."""
    if first < second:
        return -1
    if first > second:
        return 1
    return 0
