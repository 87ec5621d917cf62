"""Pydantic models for contact records, import records, and searches."""

from __future__ import annotations

import enum
import re
import unicodedata
import uuid
from datetime import UTC, datetime

from pydantic import BaseModel, Field, field_validator

_SLUG_STRIP = re.compile(r"[^a-z0-9]+")
_ID_SUFFIX_LENGTH = 8


def _dedupe(values: list[str]) -> list[str]:
    """Drop repeated entries, keeping first-seen order."""
    seen: set[str] = set()
    result: list[str] = []
    for value in values:
        if value not in seen:
            seen.add(value)
            result.append(value)
    return result


def slugify_title(title: str) -> str:
    """Return a lower-case ASCII slug for *title*, ``"contact"`` when empty."""
    folded = unicodedata.normalize("NFKD", title).encode("ascii", "ignore").decode("ascii")
    slug = _SLUG_STRIP.sub("-", folded.lower()).strip("-")
    return slug or "contact"


def generate_contact_id(title: str) -> str:
    """Build a readable identifier: the title slug plus a random hex suffix."""
    return f"{slugify_title(title)}-{uuid.uuid4().hex[:_ID_SUFFIX_LENGTH]}"


def build_attribute_string(
    title: str, comments: str, tags: list[str], props: dict[str, str]
) -> str:
    """Lower-cased, space-joined searchable text for a contact."""
    parts = [title, comments, *tags, *props.values()]
    return " ".join(p for p in parts if p).lower()


class SortOrientation(enum.StrEnum):
    """Sort direction for search results."""

    ASC = "asc"
    DESC = "desc"


class ImportRecord(BaseModel):
    """Normalized contact produced by an import parser.

    Missing optional fields default to empty.
    """

    title: str = ""
    user: str = ""
    tenant: str = ""
    comments: str = ""
    tags: list[str] = Field(default_factory=list)
    props: dict[str, str] = Field(default_factory=dict)


class Contact(BaseModel):
    """A contact record owned by a tenant.

    ``tags`` behave as a set: duplicates are dropped whenever the list is
    assigned, first-seen order is kept for display. ``attributes`` is derived
    from title, comments, tags and props and must only be refreshed through
    :meth:`refresh_attributes`.
    """

    model_config = {"validate_assignment": True}

    id: str = ""
    title: str = ""
    user: str = ""
    tenant: str = ""
    comments: str = ""
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    tags: list[str] = Field(default_factory=list)
    props: dict[str, str] = Field(default_factory=dict)
    attributes: str = ""

    @field_validator("tags")
    @classmethod
    def _unique_tags(cls, value: list[str]) -> list[str]:
        return _dedupe(value)

    @classmethod
    def from_import(cls, record: ImportRecord) -> Contact:
        return cls(
            title=record.title,
            user=record.user,
            tenant=record.tenant,
            comments=record.comments,
            tags=list(record.tags),
            props=dict(record.props),
        )

    def refresh_attributes(self) -> str:
        """Recompute and store the attribute string; returns it."""
        self.attributes = build_attribute_string(self.title, self.comments, self.tags, self.props)
        return self.attributes

    def has_tags(self, required: list[str] | set[str]) -> bool:
        """Return True when every tag in *required* is on this contact."""
        return set(required).issubset(self.tags)


class SearchRequest(BaseModel):
    """A saved or ad-hoc search over a tenant's active contacts."""

    tenant: str
    query: str = ""
    filter: list[str] = Field(default_factory=list)
    sort: SortOrientation = SortOrientation.ASC
