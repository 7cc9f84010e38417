"""
TagTree Kernel — Line Templates

A ParsedLine is an ordered list of segments, each either literal text or a
field reference. Serialized form joins the segments, writing fields as
{*Name*} (or {*Name:N*} for an alternate format of that field).

The same class renders title lines, output lines and rule lines. Rendering is
a pure function of the line and the leaf data, which the grouping engine
relies on for its keys.
"""

from __future__ import annotations

from tagtree.kernel.fields import Field
from tagtree.kernel.types import LINE_FIELD_PATTERN, ConfigFormatError


class LineSegment:
    """A portion of a line, either a field or text (never both)."""

    __slots__ = ("field", "text")

    def __init__(self, field: Field | None = None, text: str | None = None) -> None:
        self.field = field
        self.text = text

    def __repr__(self) -> str:
        if self.field is not None:
            return f"LineSegment(field={self.field.name!r})"
        return f"LineSegment(text={self.text!r})"

    @property
    def has_field(self) -> bool:
        return self.field is not None

    def all_output(self, leaf) -> list[str]:
        if self.field is not None:
            return self.field.all_output_text(leaf)
        return [self.text or ""]

    def output(self, leaf) -> str:
        if self.field is not None:
            return self.field.output_text(leaf)
        return self.text or ""

    def unparsed_key(self) -> str:
        if self.field is not None:
            return self.field.line_text()
        return self.text or ""

    def replace_field(self, old_field: Field, new_field: Field) -> bool:
        """
        Point a segment for [old_field] at [new_field]; True if changed.

        An alternate format reference moves to the alternate of [new_field]
        with the same number, if it has one.
        """
        if self.field is None or self.field.name != old_field.name:
            return False
        number = self.field.alt_format_number
        alt_field = new_field.alt_format_field(number) if number is not None else None
        self.field = alt_field or new_field
        return True

    def copy(self) -> LineSegment:
        return LineSegment(field=self.field, text=self.text)


class ParsedLine:
    """A single line of output, broken into fields and static text."""

    def __init__(self, unparsed_line: str = "", field_map: dict[str, Field] | None = None) -> None:
        self.segments: list[LineSegment] = []
        if unparsed_line:
            self.parse_line(unparsed_line, field_map or {})

    def __repr__(self) -> str:
        return f"ParsedLine({self.unparsed_line()!r})"

    @classmethod
    def from_single_field(cls, field: Field) -> ParsedLine:
        line = cls()
        line.segments.append(LineSegment(field=field))
        return line

    def copy(self) -> ParsedLine:
        line = ParsedLine()
        line.segments = [segment.copy() for segment in self.segments]
        return line

    @property
    def is_empty(self) -> bool:
        return not self.segments

    def parse_line(self, unparsed_line: str, field_map: dict[str, Field]) -> None:
        """
        Replace this line's segments by parsing [unparsed_line].

        An unknown field name means the configuration is corrupt and raises
        ConfigFormatError. A missing alternate number falls back to the base
        field.
        """
        segments: list[LineSegment] = []
        start = 0
        for match in LINE_FIELD_PATTERN.finditer(unparsed_line):
            if match.start() > start:
                segments.append(LineSegment(text=unparsed_line[start : match.start()]))
            field = field_map.get(match.group(1))
            if field is None:
                raise ConfigFormatError(f"Unknown field {match.group(1)!r} in line {unparsed_line!r}")
            alt_str = match.group(2)
            if alt_str is not None:
                field = field.alt_format_field(int(alt_str[1:])) or field
            segments.append(LineSegment(field=field))
            start = match.end()
        if start < len(unparsed_line):
            segments.append(LineSegment(text=unparsed_line[start:]))
        self.segments = segments

    # -- rendering ----------------------------------------------------------

    def formatted_line(self, leaf) -> str:
        """
        Return this line filled in with data fields from [leaf].

        Multiple entries join in place with the field separator, unless that
        separator holds a newline: then the whole line repeats per entry.
        Returns "" if every referenced field is blank.
        """
        multi_field = self._multiples_field()
        if multi_field is not None and "\n" in multi_field.separator:
            return multi_field.separator.join(self.formatted_line_list(leaf))
        parts: list[str] = []
        fields_blank = True
        for segment in self.segments:
            separator = segment.field.separator if segment.field is not None else ""
            text = separator.join(segment.all_output(leaf))
            if text:
                if segment.has_field:
                    fields_blank = False
                parts.append(text)
        if fields_blank and self._has_field():
            return ""
        return "".join(parts)

    def formatted_line_list(self, leaf) -> list[str]:
        """Return one line per entry of a multiple-entry field (else one line)."""
        results = [""]
        fields_blank = True
        for segment in self.segments:
            texts = segment.all_output(leaf)
            if len(texts) == 1:
                if texts[0]:
                    results = [result + texts[0] for result in results]
                    if segment.has_field:
                        fields_blank = False
            else:
                # Only one field in a line may hold multiple entries
                if len(results) == 1:
                    results = results * len(texts)
                results = [result + text for result, text in zip(results, texts)]
                fields_blank = False
        if fields_blank and self._has_field():
            return [""]
        return results

    def unparsed_line(self) -> str:
        return "".join(segment.unparsed_key() for segment in self.segments)

    # -- field queries ------------------------------------------------------

    def fields(self) -> list[Field]:
        """Referenced fields in order, first occurrence only."""
        result: list[Field] = []
        for segment in self.segments:
            if segment.field is not None and not any(f is segment.field for f in result):
                result.append(segment.field)
        return result

    def _has_field(self) -> bool:
        return any(segment.has_field for segment in self.segments)

    def _multiples_field(self) -> Field | None:
        for field in self.fields():
            if field.allow_multiples:
                return field
        return None

    def has_multiple_fields(self) -> bool:
        return len({field.name for field in self.fields()}) > 1

    def has_multiples_allowed_field(self) -> bool:
        return self._multiples_field() is not None

    # -- editing ------------------------------------------------------------

    def delete_field(self, field: Field, replacement: Field | None = None) -> None:
        """
        Remove [field] from this line.

        If it is the only field, it is swapped for [replacement] when given,
        otherwise the line is emptied.
        """
        if not any(f is field for f in self.fields()):
            return
        if self.has_multiple_fields():
            pos = self._field_pos(field)
            while pos >= 0:
                # Merge the text around the removed field
                if (
                    0 < pos < len(self.segments) - 1
                    and not self.segments[pos - 1].has_field
                    and not self.segments[pos + 1].has_field
                ):
                    self.segments[pos - 1].text = (self.segments[pos - 1].text or "") + (
                        self.segments[pos + 1].text or ""
                    )
                    del self.segments[pos + 1]
                del self.segments[pos]
                pos = self._field_pos(field)
        elif replacement is not None:
            for segment in self.segments:
                if segment.field is field:
                    segment.field = replacement
        else:
            self.segments.clear()

    def _field_pos(self, field: Field) -> int:
        for pos, segment in enumerate(self.segments):
            if segment.field is field:
                return pos
        return -1

    def replace_field(self, old_field: Field, new_field: Field) -> None:
        for segment in self.segments:
            segment.replace_field(old_field, new_field)
