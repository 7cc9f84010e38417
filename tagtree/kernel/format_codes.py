"""
TagTree Kernel — Field Format Codes

Tokenizes Date and Time format strings into code and literal-text segments,
and splits Choice formats into their choices. Pure functions, no state.

Format syntax:
  - known codes (longest match first, up to 4 characters): yyyy, MMM, HH ...
  - quoted text: 'at ' ; a doubled quote '' is a literal quote
  - runs of punctuation/whitespace (up to a quote) are literal text
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from tagtree.kernel.types import FieldFormatError

# ---------------------------------------------------------------------------
# Code maps (code -> description)
# ---------------------------------------------------------------------------

DATE_FORMAT_MAP: dict[str, str] = {
    "yyyy": "Year (4 digits)",
    "yy": "Year (2 digits)",
    "MMMM": "Month (full text)",
    "MMM": "Month (abbrev. text)",
    "MM": "Month (2 digits)",
    "M": "Month (1 or 2 digits)",
    "dd": "Day (2 digits)",
    "d": "Day (1 or 2 digits)",
    "EEEE": "Day of week (full text)",
    "EEE": "Day of week (abbrev. text)",
    "D": "Day of year (1 to 3 digits)",
    "G": "Era (AD or BC)",
    "QQQ": "Quarter (Q1, etc.)",
}

TIME_FORMAT_MAP: dict[str, str] = {
    "HH": "Hour (00-23, 2 digits)",
    "H": "Hour (0-23, 1 or 2 digits)",
    "hh": "Hour (01-12, 2 digits)",
    "h": "Hour (1-12, 1 or 2 digits)",
    "mm": "Minute (2 digits)",
    "m": "Minute (1 or 2 digits)",
    "ss": "Second (2 digits)",
    "s": "Second (1 or 2 digits)",
    "SSS": "Milliseconds (3 digits)",
    "S": "Fractional seconds (1 digit)",
    "a": "AM/PM marker",
}

_NON_WORD_PREFIX = re.compile(r"[^\w']+")
_QUOTE_MARK = "\x00"


@dataclass
class FormatSegment:
    """Either a format code or a piece of literal text (never both)."""

    format_code: str | None = None
    extra_text: str | None = None


def parse_field_format(fmt: str, format_map: dict[str, str]) -> list[FormatSegment]:
    """
    Split a Date/Time format into segments.

    Raises FieldFormatError for an unterminated quote or an unknown code.
    """
    fmt = fmt.replace("''", _QUOTE_MARK)
    result: list[FormatSegment] = []
    while fmt:
        if fmt[0] == "'":
            end_pos = fmt.find("'", 1)
            if end_pos < 0:
                raise FieldFormatError("Expected closing quote")
            result.append(FormatSegment(extra_text=fmt[1:end_pos].replace(_QUOTE_MARK, "'")))
            fmt = fmt[end_pos + 1 :]
            continue
        for length in range(4, 0, -1):
            if fmt[:length] in format_map and len(fmt) >= length:
                result.append(FormatSegment(format_code=fmt[:length]))
                fmt = fmt[length:]
                break
        else:
            match = _NON_WORD_PREFIX.match(fmt)
            if match is None:
                raise FieldFormatError(f"Invalid format code at {fmt[:4]!r}")
            result.append(FormatSegment(extra_text=match.group(0).replace(_QUOTE_MARK, "'")))
            fmt = fmt[match.end() :]
    return result


def combine_field_format(segments: list[FormatSegment]) -> str:
    """Join parsed segments back into a format string, quoting text as needed."""
    parts: list[str] = []
    for segment in segments:
        if segment.format_code is not None:
            parts.append(segment.format_code)
            continue
        text = (segment.extra_text or "").replace("'", "''")
        if re.search(r"\w", text):
            # Alphabetic text must be quoted so it isn't read as codes
            parts.append(f"'{text}'")
        else:
            parts.append(text)
    return "".join(parts)


# ---------------------------------------------------------------------------
# Choice formats
# ---------------------------------------------------------------------------


def split_choice_format(fmt: str) -> list[str]:
    """Split "yes/no" style formats; a doubled slash is a literal slash."""
    if not fmt:
        return []
    return [choice.replace(_QUOTE_MARK, "/") for choice in fmt.replace("//", _QUOTE_MARK).split("/")]


def combine_choice_format(choices: list[str]) -> str:
    return "/".join(choice.replace("/", "//") for choice in choices)
