"""
TagTree Kernel — Field Model

Typed field definitions. Each field knows how to:
  - format a stored value for output (prefix + formatted text + suffix)
  - convert between stored values and edit text, validating user input
  - compare stored values for sorting
  - serialize itself to the configuration document

Stored values are canonical strings that never depend on the display format:
  Number  "1234.5"
  Date    "2024-03-09"          (yyyy-MM-dd)
  Time    "14:05:00.000"        (HH:mm:ss.SSS)

Multi-entry fields store a list of such strings.
"""

from __future__ import annotations

import calendar
import logging
import re
from datetime import date, time
from decimal import ROUND_HALF_EVEN, Decimal, InvalidOperation, localcontext
from typing import Any

from tagtree.kernel.format_codes import (
    DATE_FORMAT_MAP,
    TIME_FORMAT_MAP,
    FormatSegment,
    parse_field_format,
    split_choice_format,
)
from tagtree.kernel.types import (
    DEFAULT_FORMATS,
    DEFAULT_SEPARATOR,
    INVALID_FORMAT_TEXT,
    NOW_INIT_VALUE,
    ConfigFormatError,
    FieldFormatError,
    FieldValidationError,
    FormatOptions,
    compare_values,
    is_valid_field_name,
)

logger = logging.getLogger(__name__)

_ALT_KEY_PATTERN = re.compile(r"^(format|prefix|suffix):(\d+)$")


# ---------------------------------------------------------------------------
# Base field
# ---------------------------------------------------------------------------


class Field:
    """A stored format for one portion of the data held within a leaf node."""

    field_type = "Text"

    def __init__(
        self,
        name: str,
        *,
        format: str = "",
        prefix: str = "",
        suffix: str = "",
        init_value: str = "",
        allow_multiples: bool = False,
        separator: str = DEFAULT_SEPARATOR,
        options: FormatOptions | None = None,
    ) -> None:
        self.name = name
        self.format = format
        self.prefix = prefix
        self.suffix = suffix
        self.init_value = init_value
        self.allow_multiples = allow_multiples
        self.separator = separator
        self.options = options or FormatOptions()
        self.alt_format_fields: list[Field] = []
        self.alt_format_parent: Field | None = None

    def __repr__(self) -> str:
        alt = f":{self.alt_format_number}" if self.is_alt_format_field else ""
        return f"{type(self).__name__}({self.name!r}{alt}, format={self.format!r})"

    # -- construction -------------------------------------------------------

    @classmethod
    def from_dict(cls, data: dict[str, Any], options: FormatOptions | None = None) -> Field:
        """Build a field (and its alternate formats) from a document entry."""
        name = data.get("fieldname") or ""
        if not is_valid_field_name(name):
            raise ConfigFormatError(f"Invalid field name: {name!r}")
        field = create_field(
            name,
            data.get("fieldtype") or "Text",
            format=data.get("format") or "",
            prefix=data.get("prefix") or "",
            suffix=data.get("suffix") or "",
            init_value=data.get("initvalue") or "",
            allow_multiples=bool(data.get("allowmultiples", False)),
            separator=data.get("separator", DEFAULT_SEPARATOR),
            options=options,
        )
        alt_settings: dict[int, dict[str, str]] = {}
        for key, value in data.items():
            match = _ALT_KEY_PATTERN.match(key)
            if match:
                alt_settings.setdefault(int(match.group(2)), {})[match.group(1)] = value
        for num in sorted(alt_settings):
            alt_field = field.create_alt_format_field()
            alt_field.format = alt_settings[num].get("format", "")
            alt_field.prefix = alt_settings[num].get("prefix", "")
            alt_field.suffix = alt_settings[num].get("suffix", "")
        return field

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"fieldname": self.name, "fieldtype": self.field_type}
        if self.format:
            result["format"] = self.format
        if self.prefix:
            result["prefix"] = self.prefix
        if self.suffix:
            result["suffix"] = self.suffix
        if self.init_value:
            result["initvalue"] = self.init_value
        if self.allow_multiples:
            result["allowmultiples"] = True
            result["separator"] = self.separator
        for i, alt_field in enumerate(self.alt_format_fields):
            if alt_field.format:
                result[f"format:{i}"] = alt_field.format
            if alt_field.prefix:
                result[f"prefix:{i}"] = alt_field.prefix
            if alt_field.suffix:
                result[f"suffix:{i}"] = alt_field.suffix
        return result

    def copy(self) -> Field:
        new_field = Field.from_dict(self.to_dict(), self.options)
        new_field.alt_format_parent = self.alt_format_parent
        return new_field

    def copy_to_type(self, new_type: str) -> Field:
        """Return a field of another type that keeps the name and affixes."""
        new_field = create_field(
            self.name,
            new_type,
            format=self.format if new_type == self.field_type else DEFAULT_FORMATS.get(new_type, ""),
            prefix=self.prefix,
            suffix=self.suffix,
            allow_multiples=self.allow_multiples,
            separator=self.separator,
            options=self.options,
        )
        for alt_field in self.alt_format_fields:
            new_alt = new_field.create_alt_format_field()
            new_alt.prefix = alt_field.prefix
            new_alt.suffix = alt_field.suffix
        return new_field

    def update_settings(self, other: Field) -> None:
        """Copy the editable settings of [other] into this field."""
        self.name = other.name
        self.format = other.format
        self.prefix = other.prefix
        self.suffix = other.suffix
        self.init_value = other.init_value
        self.allow_multiples = other.allow_multiples
        self.separator = other.separator
        for alt_field in self.alt_format_fields:
            alt_field.name = other.name
            alt_field.allow_multiples = other.allow_multiples
            alt_field.separator = other.separator

    # -- output -------------------------------------------------------------

    def stored_entries(self, data: dict[str, Any]) -> list[str]:
        """Non-empty stored entries for this field in a data mapping."""
        value = data.get(self.name)
        if value is None or value == "":
            return []
        if isinstance(value, str):
            return [value]
        return [entry for entry in value if entry]

    def all_output_text(self, leaf) -> list[str]:
        """One output string per stored entry; [""] if there is no data."""
        entries = self.stored_entries(leaf.data)
        if not entries:
            return [""]
        return [self._affixed_output(entry) for entry in entries]

    def output_text(self, leaf) -> str:
        return self.separator.join(self.all_output_text(leaf))

    def _affixed_output(self, stored: str) -> str:
        try:
            text = self.format_output(stored)
        except FieldFormatError:
            text = INVALID_FORMAT_TEXT
        return f"{self.prefix}{text}{self.suffix}"

    def format_output(self, stored: str) -> str:
        """Stored value -> display text. Raises FieldFormatError on a bad format."""
        return stored

    def format_preview(self) -> str:
        """Sample output for a format editor, or "Invalid Format"."""
        try:
            self.check_format()
        except FieldFormatError:
            return INVALID_FORMAT_TEXT
        return self._preview_text()

    def _preview_text(self) -> str:
        return ""

    def check_format(self) -> None:
        """Raise FieldFormatError if the format string is unusable."""
        return None

    def is_format_valid(self) -> bool:
        try:
            self.check_format()
        except FieldFormatError:
            return False
        return True

    # -- editing ------------------------------------------------------------

    def edit_text(self, stored: str) -> str:
        """Stored value -> text shown in an editor."""
        return stored

    def parse_edit_text(self, text: str) -> str:
        """Editor text -> stored value. Raises FieldValidationError."""
        return text

    def validate_message(self, text: str | None) -> str | None:
        """Return an error message for invalid editor text, None if valid."""
        if not text:
            return None
        try:
            self.parse_edit_text(text)
        except FieldValidationError as err:
            return err.message
        return None

    def is_stored_value_valid(self, stored: str) -> bool:
        return True

    def is_stored_text_valid(self, leaf) -> bool:
        return all(self.is_stored_value_valid(entry) for entry in self.stored_entries(leaf.data))

    def initial_value(self) -> str | None:
        """Stored value for a new leaf, resolved once at creation."""
        return self.init_value or None

    # -- comparison ---------------------------------------------------------

    def sort_key(self, stored: str) -> tuple:
        return (stored,)

    def compare(self, first: str, second: str) -> int:
        return compare_values(self.sort_key(first), self.sort_key(second))

    def compare_nodes(self, first_node, second_node) -> int:
        return self.compare(_first_entry(first_node.data.get(self.name)), _first_entry(second_node.data.get(self.name)))

    # -- alternate formats --------------------------------------------------

    @property
    def is_alt_format_field(self) -> bool:
        return self.alt_format_parent is not None

    @property
    def alt_format_number(self) -> int | None:
        if self.alt_format_parent is None:
            return None
        return self.alt_format_parent.alt_format_fields.index(self)

    def alt_format_field(self, num: int) -> Field | None:
        if 0 <= num < len(self.alt_format_fields):
            return self.alt_format_fields[num]
        return None

    def create_alt_format_field(self) -> Field:
        """Add a clone that can carry its own format, prefix and suffix."""
        alt_field = create_field(
            self.name,
            self.field_type,
            format=self.format,
            prefix=self.prefix,
            suffix=self.suffix,
            allow_multiples=self.allow_multiples,
            separator=self.separator,
            options=self.options,
        )
        alt_field.alt_format_parent = self
        self.alt_format_fields.append(alt_field)
        return alt_field

    def has_same_format_settings(self, other: Field) -> bool:
        return (self.format, self.prefix, self.suffix) == (other.format, other.prefix, other.suffix)

    def remove_unused_alt_format_fields(self, used_fields: set[Field]) -> None:
        self.alt_format_fields = [f for f in self.alt_format_fields if f in used_fields]

    def add_alt_format_field_if_missing(self, alt_field: Field) -> None:
        if alt_field not in self.alt_format_fields:
            alt_field.alt_format_parent = self
            self.alt_format_fields.append(alt_field)

    def matching_field_descendents(self, fields: list[Field]) -> list[Field]:
        """This field and its alternates among [fields]."""
        return [f for f in fields if f is self or f.alt_format_parent is self]

    def line_text(self) -> str:
        """The template reference for this field: {*Name*} or {*Name:N*}."""
        if self.alt_format_parent is not None:
            return f"{{*{self.name}:{self.alt_format_number}*}}"
        return f"{{*{self.name}*}}"


# ---------------------------------------------------------------------------
# Text types
# ---------------------------------------------------------------------------


class TextField(Field):
    field_type = "Text"


class LongTextField(Field):
    field_type = "LongText"


class AutoChoiceField(Field):
    """Free text that remembers previously used values as suggestions."""

    field_type = "AutoChoice"

    def __init__(self, name: str, **kwargs: Any) -> None:
        super().__init__(name, **kwargs)
        self.options_seen: set[str] = set()

    def add_option(self, value: str) -> None:
        if value:
            self.options_seen.add(value)

    def sorted_options(self) -> list[str]:
        return sorted(self.options_seen, key=lambda v: (v.casefold(), v))

    def sort_key(self, stored: str) -> tuple:
        return (stored.casefold(), stored)


class ChoiceField(Field):
    """Value restricted to a fixed list; sorted by list position."""

    field_type = "Choice"

    @property
    def choices(self) -> list[str]:
        return split_choice_format(self.format)

    def check_format(self) -> None:
        choices = self.choices
        if not choices or any(not choice for choice in choices):
            raise FieldFormatError("Choice format needs non-empty choices")
        if len(set(choices)) != len(choices):
            raise FieldFormatError("Choice format has duplicate choices")

    def _preview_text(self) -> str:
        return " / ".join(self.choices)

    def parse_edit_text(self, text: str) -> str:
        if text and text not in self.choices:
            raise FieldValidationError(self.name, f"Must be one of: {', '.join(self.choices)}")
        return text

    def is_stored_value_valid(self, stored: str) -> bool:
        return not stored or stored in self.choices

    def sort_key(self, stored: str) -> tuple:
        if not stored:
            return (0, 0, "")
        choices = self.choices
        if stored in choices:
            return (1, choices.index(stored), "")
        return (2, 0, stored)


# ---------------------------------------------------------------------------
# Number
# ---------------------------------------------------------------------------


class NumberPattern:
    """
    Parsed ICU-style number pattern.

      #,##0.00   grouping, 1+ integer digits, exactly 2 decimals
      0.#%       percentage
      ¤#,##0     currency symbol from FormatOptions
      'approx '0 quoted literal text
    """

    def __init__(self, pattern: str, options: FormatOptions) -> None:
        self.options = options
        prefix: list[str] = []
        suffix: list[str] = []
        core = ""
        self.percent = False
        pos = 0
        while pos < len(pattern):
            char = pattern[pos]
            if char == "'":
                end_pos = pattern.find("'", pos + 1)
                if end_pos < 0:
                    raise FieldFormatError("Expected closing quote")
                text = pattern[pos + 1 : end_pos] or "'"
                (suffix if core else prefix).append(text)
                pos = end_pos + 1
                continue
            if char in "#0,.":
                if suffix:
                    raise FieldFormatError("Digits after suffix text")
                core += char
            elif char == "%":
                self.percent = True
                (suffix if core else prefix).append("%")
            elif char == "¤":
                (suffix if core else prefix).append(options.currency_symbol)
            else:
                (suffix if core else prefix).append(char)
            pos += 1
        if not re.search(r"[#0]", core):
            raise FieldFormatError("Number format has no digits")
        int_part, dot, frac_part = core.partition(".")
        if "." in frac_part or "," in frac_part:
            raise FieldFormatError("Misplaced separator in decimals")
        if not re.fullmatch(r"[#,]*[0,]*", int_part) or not re.fullmatch(r"0*#*", frac_part):
            raise FieldFormatError("Misplaced digit code")
        self.prefix = "".join(prefix)
        self.suffix = "".join(suffix)
        self.min_int = int_part.count("0")
        self.min_frac = frac_part.count("0")
        self.max_frac = len(frac_part)
        self.group_size = 0
        if "," in int_part:
            self.group_size = len(int_part) - int_part.rfind(",") - 1
            if self.group_size == 0:
                raise FieldFormatError("Grouping separator at end of digits")

    def format(self, value: Decimal) -> str:
        with localcontext() as ctx:
            ctx.prec = 100
            if self.percent:
                value *= 100
            rounded = value.quantize(Decimal(1).scaleb(-self.max_frac), rounding=ROUND_HALF_EVEN)
        negative = rounded < 0
        digits = format(abs(rounded), "f")
        int_digits, _, frac_digits = digits.partition(".")
        frac_digits = frac_digits.rstrip("0").ljust(self.min_frac, "0")
        int_digits = int_digits.lstrip("0").rjust(self.min_int, "0")
        if not int_digits and not frac_digits:
            int_digits = "0"
        if self.group_size:
            groups = []
            while len(int_digits) > self.group_size:
                groups.insert(0, int_digits[-self.group_size :])
                int_digits = int_digits[: -self.group_size]
            groups.insert(0, int_digits)
            int_digits = self.options.group_separator.join(groups)
        text = int_digits
        if frac_digits:
            text += self.options.decimal_point + frac_digits
        return f"{'-' if negative else ''}{self.prefix}{text}{self.suffix}"


def canonical_number(value: Decimal) -> str:
    """Plain positional string with no exponent or trailing zeros."""
    if value == 0:
        return "0"
    text = format(value.normalize(), "f")
    return text


class NumberField(Field):
    field_type = "Number"

    def __init__(self, name: str, **kwargs: Any) -> None:
        kwargs.setdefault("format", DEFAULT_FORMATS["Number"])
        super().__init__(name, **kwargs)

    def _pattern(self) -> NumberPattern:
        return NumberPattern(self.format, self.options)

    def check_format(self) -> None:
        self._pattern()

    def _preview_text(self) -> str:
        return self._pattern().format(Decimal("-1234.5678"))

    def format_output(self, stored: str) -> str:
        pattern = self._pattern()
        value = _to_decimal(stored)
        if value is None:
            return stored
        return pattern.format(value)

    def edit_text(self, stored: str) -> str:
        return stored.replace(".", self.options.decimal_point)

    def parse_edit_text(self, text: str) -> str:
        cleaned = text.strip().replace(" ", "")
        if not cleaned:
            return ""
        for symbol in (self.options.group_separator, self.options.currency_symbol):
            if symbol:
                cleaned = cleaned.replace(symbol, "")
        cleaned = cleaned.replace(self.options.decimal_point, ".")
        is_percent = cleaned.endswith("%")
        value = _to_decimal(cleaned.rstrip("%"))
        if value is None:
            raise FieldValidationError(self.name, "Must be a number")
        if is_percent:
            value /= 100
        return canonical_number(value)

    def is_stored_value_valid(self, stored: str) -> bool:
        return not stored or _to_decimal(stored) is not None

    def sort_key(self, stored: str) -> tuple:
        if not stored:
            return (0, 0, "")
        value = _to_decimal(stored)
        if value is None:
            return (2, 0, stored)
        return (1, value, "")


def _to_decimal(text: str) -> Decimal | None:
    try:
        value = Decimal(text)
    except InvalidOperation:
        return None
    if not value.is_finite():
        return None
    return value


# ---------------------------------------------------------------------------
# Date and Time
# ---------------------------------------------------------------------------

MONTH_NAMES = list(calendar.month_name)[1:]
MONTH_ABBREVS = [name[:3] for name in MONTH_NAMES]
DAY_NAMES = list(calendar.day_name)
DAY_ABBREVS = [name[:3] for name in DAY_NAMES]

_STORED_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_STORED_TIME_PATTERN = re.compile(r"^(\d{2}):(\d{2}):(\d{2})(?:\.(\d{1,6}))?$")
_TIME_INPUT_PATTERN = re.compile(
    r"^(\d{1,2})(?::(\d{1,2}))?(?::(\d{1,2})(?:[.,](\d{1,6}))?)?\s*(?:([ap])\.?\s*m?\.?)?$",
    re.IGNORECASE,
)


def _render_date_code(code: str, value: date) -> str:
    if code == "yyyy":
        return f"{value.year:04d}"
    if code == "yy":
        return f"{value.year % 100:02d}"
    if code == "MMMM":
        return MONTH_NAMES[value.month - 1]
    if code == "MMM":
        return MONTH_ABBREVS[value.month - 1]
    if code == "MM":
        return f"{value.month:02d}"
    if code == "M":
        return str(value.month)
    if code == "dd":
        return f"{value.day:02d}"
    if code == "d":
        return str(value.day)
    if code == "EEEE":
        return DAY_NAMES[value.weekday()]
    if code == "EEE":
        return DAY_ABBREVS[value.weekday()]
    if code == "D":
        return str(value.timetuple().tm_yday)
    if code == "G":
        return "AD"
    if code == "QQQ":
        return f"Q{(value.month - 1) // 3 + 1}"
    raise FieldFormatError(f"Unknown date code {code!r}")


def _render_time_code(code: str, value: time) -> str:
    hour12 = value.hour % 12 or 12
    if code == "HH":
        return f"{value.hour:02d}"
    if code == "H":
        return str(value.hour)
    if code == "hh":
        return f"{hour12:02d}"
    if code == "h":
        return str(hour12)
    if code == "mm":
        return f"{value.minute:02d}"
    if code == "m":
        return str(value.minute)
    if code == "ss":
        return f"{value.second:02d}"
    if code == "s":
        return str(value.second)
    if code == "SSS":
        return f"{value.microsecond // 1000:03d}"
    if code == "S":
        return str(value.microsecond // 100000)
    if code == "a":
        return "AM" if value.hour < 12 else "PM"
    raise FieldFormatError(f"Unknown time code {code!r}")


def _render_segments(segments: list[FormatSegment], render_code, value) -> str:
    return "".join(
        render_code(seg.format_code, value) if seg.format_code is not None else (seg.extra_text or "")
        for seg in segments
    )


def parse_stored_date(stored: str) -> date | None:
    if _STORED_DATE_PATTERN.match(stored) is None:
        return None
    try:
        return date.fromisoformat(stored)
    except ValueError:
        return None


def parse_stored_time(stored: str) -> time | None:
    match = _STORED_TIME_PATTERN.match(stored)
    if match is None:
        return None
    fraction = (match.group(4) or "0").ljust(6, "0")
    try:
        return time(int(match.group(1)), int(match.group(2)), int(match.group(3)), int(fraction))
    except ValueError:
        return None


def canonical_time(value: time) -> str:
    return f"{value.hour:02d}:{value.minute:02d}:{value.second:02d}.{value.microsecond // 1000:03d}"


class DateField(Field):
    field_type = "Date"

    def __init__(self, name: str, **kwargs: Any) -> None:
        kwargs.setdefault("format", DEFAULT_FORMATS["Date"])
        super().__init__(name, **kwargs)

    def _segments(self) -> list[FormatSegment]:
        return parse_field_format(self.format, DATE_FORMAT_MAP)

    def check_format(self) -> None:
        self._segments()

    def _preview_text(self) -> str:
        return _render_segments(self._segments(), _render_date_code, self.options.clock().date())

    def format_output(self, stored: str) -> str:
        segments = self._segments()
        value = parse_stored_date(stored)
        if value is None:
            return stored
        return _render_segments(segments, _render_date_code, value)

    def edit_text(self, stored: str) -> str:
        value = parse_stored_date(stored)
        if value is None:
            return stored
        try:
            segments = parse_field_format(self.options.date_edit_format, DATE_FORMAT_MAP)
        except FieldFormatError:
            return stored
        return _render_segments(segments, _render_date_code, value)

    def parse_edit_text(self, text: str) -> str:
        text = text.strip()
        if not text:
            return ""
        value = parse_stored_date(text)
        if value is None:
            value = self._parse_with_edit_format(text)
        return value.isoformat()

    def _parse_with_edit_format(self, text: str) -> date:
        try:
            segments = parse_field_format(self.options.date_edit_format, DATE_FORMAT_MAP)
        except FieldFormatError:
            raise FieldValidationError(self.name, "Invalid date edit format") from None
        parts: list[str] = []
        for seg in segments:
            code = seg.format_code
            if code is None:
                pieces = (seg.extra_text or "").split()
                parts.append(r"\s*" + r"\s*".join(re.escape(piece) for piece in pieces) + r"\s*")
            elif code == "yyyy":
                parts.append(r"(?P<year>\d{4})")
            elif code == "yy":
                parts.append(r"(?P<year2>\d{2})")
            elif code in ("MMMM", "MMM"):
                parts.append(r"(?P<month_name>[^\W\d_]+)\.?")
            elif code in ("MM", "M"):
                parts.append(r"(?P<month>\d{1,2})")
            elif code in ("dd", "d"):
                parts.append(r"(?P<day>\d{1,2})")
            elif code == "D":
                parts.append(r"\d{1,3}")
            elif code == "QQQ":
                parts.append(r"Q\d")
            else:
                parts.append(r"[^\W\d_]+")
        try:
            match = re.fullmatch("".join(parts), text, re.IGNORECASE)
        except re.error:
            match = None
        if match is None:
            raise FieldValidationError(self.name, f"Date must match {self.options.date_edit_format}")
        found = match.groupdict()
        if found.get("year"):
            year = int(found["year"])
        elif found.get("year2"):
            short_year = int(found["year2"])
            year = 2000 + short_year if short_year < 69 else 1900 + short_year
        else:
            raise FieldValidationError(self.name, "Date is missing a year")
        if found.get("month"):
            month = int(found["month"])
        elif found.get("month_name"):
            abbrev = found["month_name"][:3].casefold()
            months = [name.casefold() for name in MONTH_ABBREVS]
            if abbrev not in months:
                raise FieldValidationError(self.name, f"Unknown month: {found['month_name']}")
            month = months.index(abbrev) + 1
        else:
            raise FieldValidationError(self.name, "Date is missing a month")
        if not found.get("day"):
            raise FieldValidationError(self.name, "Date is missing a day")
        try:
            return date(year, month, int(found["day"]))
        except ValueError:
            raise FieldValidationError(self.name, "Date is out of range") from None

    def is_stored_value_valid(self, stored: str) -> bool:
        return not stored or parse_stored_date(stored) is not None

    def initial_value(self) -> str | None:
        if self.init_value == NOW_INIT_VALUE:
            return self.options.clock().date().isoformat()
        return super().initial_value()

    def sort_key(self, stored: str) -> tuple:
        if not stored:
            return (0, "")
        if parse_stored_date(stored) is None:
            return (2, stored)
        return (1, stored)


class TimeField(Field):
    field_type = "Time"

    def __init__(self, name: str, **kwargs: Any) -> None:
        kwargs.setdefault("format", DEFAULT_FORMATS["Time"])
        super().__init__(name, **kwargs)

    def _segments(self) -> list[FormatSegment]:
        return parse_field_format(self.format, TIME_FORMAT_MAP)

    def check_format(self) -> None:
        self._segments()

    def _preview_text(self) -> str:
        return _render_segments(self._segments(), _render_time_code, self.options.clock().time())

    def format_output(self, stored: str) -> str:
        segments = self._segments()
        value = parse_stored_time(stored)
        if value is None:
            return stored
        return _render_segments(segments, _render_time_code, value)

    def edit_text(self, stored: str) -> str:
        value = parse_stored_time(stored)
        if value is None:
            return stored
        try:
            segments = parse_field_format(self.options.time_edit_format, TIME_FORMAT_MAP)
        except FieldFormatError:
            return stored
        return _render_segments(segments, _render_time_code, value)

    def parse_edit_text(self, text: str) -> str:
        text = text.strip()
        if not text:
            return ""
        match = _TIME_INPUT_PATTERN.match(text)
        if match is None:
            raise FieldValidationError(self.name, "Time must look like 13:45 or 1:45 pm")
        hour = int(match.group(1))
        minute = int(match.group(2) or 0)
        second = int(match.group(3) or 0)
        micro = int((match.group(4) or "0").ljust(6, "0"))
        marker = (match.group(5) or "").lower()
        if marker:
            if not 1 <= hour <= 12:
                raise FieldValidationError(self.name, "Hour must be 1-12 with AM/PM")
            hour = hour % 12 + (12 if marker == "p" else 0)
        try:
            return canonical_time(time(hour, minute, second, micro))
        except ValueError:
            raise FieldValidationError(self.name, "Time is out of range") from None

    def is_stored_value_valid(self, stored: str) -> bool:
        return not stored or parse_stored_time(stored) is not None

    def initial_value(self) -> str | None:
        if self.init_value == NOW_INIT_VALUE:
            return canonical_time(self.options.clock().time())
        return super().initial_value()

    def sort_key(self, stored: str) -> tuple:
        if not stored:
            return (0, "")
        value = parse_stored_time(stored)
        if value is None:
            return (2, stored)
        return (1, canonical_time(value))


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

_FIELD_CLASSES: dict[str, type[Field]] = {
    "Text": TextField,
    "LongText": LongTextField,
    "Choice": ChoiceField,
    "AutoChoice": AutoChoiceField,
    "Number": NumberField,
    "Date": DateField,
    "Time": TimeField,
}


def create_field(name: str, field_type: str = "Text", **kwargs: Any) -> Field:
    """Create a field of the named type. Unknown types are a config error."""
    field_class = _FIELD_CLASSES.get(field_type)
    if field_class is None:
        raise ConfigFormatError(f"Unknown field type {field_type!r} for field {name!r}")
    if field_type in DEFAULT_FORMATS and not kwargs.get("format"):
        kwargs["format"] = DEFAULT_FORMATS[field_type]
    return field_class(name, **kwargs)


def _first_entry(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return value[0] if value else ""
