"""
TagTree Kernel — Configuration Document

pydantic models for the stored document: fields, tree template, title and
output lines, leaves. Validation here is shape only; references between
sections (field names in lines and sort keys) are resolved by the structure.

Field entries allow extra keys because alternate formats are stored as
numbered keys ("format:0", "prefix:0", ...). Unknown top-level sections are
ignored.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, model_validator

from tagtree.kernel.types import FIELD_NAME_PATTERN, FIELD_TYPES


class FieldDoc(BaseModel):
    """One field definition."""

    model_config = {"extra": "allow"}

    fieldname: str = Field(min_length=1, pattern=FIELD_NAME_PATTERN.pattern)
    fieldtype: str = "Text"
    format: str = ""
    prefix: str = ""
    suffix: str = ""
    initvalue: str = ""
    allowmultiples: bool = False
    separator: str = ", "

    @model_validator(mode="after")
    def _check_type(self) -> FieldDoc:
        if self.fieldtype not in FIELD_TYPES:
            raise ValueError(f"Unknown field type {self.fieldtype!r}")
        return self


class RuleDoc(BaseModel):
    """A rule node with an optional child rule."""

    model_config = {"extra": "forbid"}

    rule: str = Field(min_length=1)
    sortfields: list[str] | None = None
    childsortfields: list[str] | None = None
    child: RuleDoc | None = None


class TitleDoc(BaseModel):
    """A title node; children are title nodes or a single rule."""

    model_config = {"extra": "forbid"}

    title: str
    children: list[TitleDoc | RuleDoc] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_children(self) -> TitleDoc:
        rules = [child for child in self.children if isinstance(child, RuleDoc)]
        if rules and len(self.children) > 1:
            raise ValueError(f"Title {self.title!r} mixes a rule with other children")
        return self


class TreeDocument(BaseModel):
    """The whole stored document."""

    model_config = {"extra": "ignore"}

    properties: dict[str, Any] = Field(default_factory=dict)
    fields: list[FieldDoc] = Field(min_length=1)
    template: list[TitleDoc] = Field(min_length=1)
    titleline: str = ""
    outputlines: list[str] = Field(min_length=1)
    leaves: list[dict[str, str | list[str]]] = Field(default_factory=list)

    @model_validator(mode="after")
    def _check_unique_names(self) -> TreeDocument:
        names = [field.fieldname for field in self.fields]
        if len(set(names)) != len(names):
            raise ValueError("Field names must be unique")
        return self

    def field_dicts(self) -> list[dict[str, Any]]:
        """Field entries as plain dicts, alternate format keys included."""
        return [field.model_dump() for field in self.fields]

    def template_dicts(self) -> list[dict[str, Any]]:
        return [node.model_dump(exclude_none=True) for node in self.template]
