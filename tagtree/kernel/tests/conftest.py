"""
TagTree kernel test configuration.

Shared builders for a small document grouped by year. Every test gets its own
Structure; nothing is shared between tests.
"""

from datetime import datetime

import pytest

from tagtree.kernel.structure import Structure
from tagtree.kernel.types import FormatOptions

# Fixed clock so "now" initial values and previews are deterministic
FIXED_NOW = datetime(2024, 3, 9, 14, 5, 30, 250000)


def year_document(leaves=None):
    """Name (Text) and Year (Number) fields; one open root grouped by Year."""
    return {
        "properties": {},
        "fields": [
            {"fieldname": "Name", "fieldtype": "Text"},
            {"fieldname": "Year", "fieldtype": "Number", "format": "0"},
        ],
        "template": [{"title": "Root", "children": [{"rule": "{*Year*}"}]}],
        "titleline": "{*Name*}",
        "outputlines": ["{*Name*}", "Year: {*Year*}"],
        "leaves": leaves
        if leaves is not None
        else [
            {"Name": "A", "Year": "2020"},
            {"Name": "B", "Year": "2020"},
            {"Name": "C", "Year": "2021"},
        ],
    }


@pytest.fixture
def options():
    return FormatOptions(clock=lambda: FIXED_NOW)


@pytest.fixture
def year_model(options):
    return Structure.from_data(year_document(), options)


@pytest.fixture
def build_model(options):
    """Factory: build_model(leaves=None, **overrides) -> Structure."""

    def build(leaves=None, **overrides):
        data = year_document(leaves)
        data.update(overrides)
        return Structure.from_data(data, options)

    return build
