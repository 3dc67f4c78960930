"""Data models for refnotes."""

import datetime
import re
from dataclasses import dataclass
from datetime import timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

# Refs of tree notes are dotted digit paths, bibliography refs are B<n>
NOTE_REF_PATTERN = re.compile(r"^\d+(\.\d+)*$")
BIB_REF_PATTERN = re.compile(r"^B\d+$")

BIB_REF_PREFIX = "B"
REF_SEPARATOR = "."


def utc_now() -> datetime.datetime:
    """Get current UTC time as timezone-aware datetime.

    Returns:
        Current time with UTC timezone info attached.
    """
    return datetime.datetime.now(timezone.utc)


def ensure_timezone_aware(dt_value: datetime.datetime) -> datetime.datetime:
    """Ensure a datetime is timezone-aware, treating naive datetimes as UTC.

    SQLite stores datetimes without an offset, so everything read back from
    the database goes through here.

    Args:
        dt_value: A datetime that may or may not have timezone info.

    Returns:
        The same datetime with UTC timezone if it was naive, otherwise unchanged.
    """
    if dt_value is None:
        return utc_now()
    if dt_value.tzinfo is None:
        return dt_value.replace(tzinfo=timezone.utc)
    return dt_value


class NoteType(str, Enum):
    """Types of notes."""

    NOTE = "note"  # Hierarchical note, ref like 1.2.3
    BIB = "bib"  # Bibliography entry, flat ref like B4


def ref_depth(ref: str) -> int:
    """Nesting depth encoded in a tree ref ("1" -> 0, "1.2.3" -> 2)."""
    return ref.count(REF_SEPARATOR)


@dataclass(frozen=True)
class AllocationScope:
    """A sibling group that order indexes are allocated in.

    There are three kinds: every bibliography entry, every root note, and
    the direct children of one parent note.

    Attributes:
        kind: "bib", "root" or "children".
        parent_id: The parent note ID for the "children" kind, else None.
    """

    kind: str
    parent_id: Optional[int] = None

    @classmethod
    def bib(cls) -> "AllocationScope":
        return cls("bib")

    @classmethod
    def root(cls) -> "AllocationScope":
        return cls("root")

    @classmethod
    def children_of(cls, parent_id: int) -> "AllocationScope":
        return cls("children", parent_id)

    @property
    def key(self) -> str:
        """The value persisted in the ``scope`` column."""
        if self.kind == "children":
            return str(self.parent_id)
        return self.kind


class Note(BaseModel):
    """A stored note.

    ``id``, ``ref``, ``note_type``, ``parent_id`` and ``order_index`` are
    fixed at creation; only ``title`` and ``content`` change afterwards.
    """

    id: int = Field(..., description="Surrogate key assigned by the store")
    ref: str = Field(..., description="Human-readable hierarchical reference")
    title: str = Field(..., description="Title of the note")
    content: str = Field(default="", description="Raw markup content")
    note_type: NoteType = Field(
        default=NoteType.NOTE, alias="type", description="Type of note"
    )
    parent_id: Optional[int] = Field(
        default=None, description="Parent note ID (tree notes only)"
    )
    order_index: int = Field(..., ge=1, description="Creation rank in the sibling scope")
    created_at: datetime.datetime = Field(
        default_factory=utc_now, description="When the note was created (UTC)"
    )
    updated_at: datetime.datetime = Field(
        default_factory=utc_now, description="When the note was last updated (UTC)"
    )

    model_config = {
        "validate_assignment": True,
        "extra": "forbid",
        "populate_by_name": True,
    }

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        """Validate that the title is not empty."""
        if not v.strip():
            raise ValueError("Title cannot be empty")
        return v

    @model_validator(mode="after")
    def validate_ref_family(self) -> "Note":
        """Check the ref shape and parent rules against the note type."""
        if self.note_type == NoteType.BIB:
            if not BIB_REF_PATTERN.match(self.ref):
                raise ValueError(f"Bibliography ref must look like B<n>, got '{self.ref}'")
            if self.parent_id is not None:
                raise ValueError("Bibliography notes cannot have a parent")
        elif not NOTE_REF_PATTERN.match(self.ref):
            raise ValueError(f"Note ref must be a dotted number path, got '{self.ref}'")
        return self

    @property
    def is_root(self) -> bool:
        return self.note_type == NoteType.NOTE and self.parent_id is None

    @property
    def depth(self) -> int:
        return ref_depth(self.ref) if self.note_type == NoteType.NOTE else 0

    def to_dict(self) -> dict:
        """Serialize with the external field names (``type`` rather than ``note_type``)."""
        data = self.model_dump(by_alias=True)
        data["type"] = self.note_type.value
        data["created_at"] = self.created_at.isoformat()
        data["updated_at"] = self.updated_at.isoformat()
        return data


class NoteCreate(BaseModel):
    """Fields accepted when creating a note."""

    title: str = Field(..., description="Title of the new note")
    note_type: NoteType = Field(default=NoteType.NOTE, alias="type")
    parent_id: Optional[int] = Field(
        default=None, description="Parent note ID, meaningful only for tree notes"
    )

    model_config = {"extra": "forbid", "populate_by_name": True}

    @field_validator("title")
    @classmethod
    def strip_title(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Title is required")
        return v

    @model_validator(mode="after")
    def drop_bib_parent(self) -> "NoteCreate":
        # Bibliography entries live in a flat namespace
        if self.note_type == NoteType.BIB:
            self.parent_id = None
        return self


class NoteUpdate(BaseModel):
    """Fields accepted when updating a note; at least one must be given."""

    title: Optional[str] = None
    content: Optional[str] = None

    model_config = {"extra": "forbid"}

    @field_validator("title")
    @classmethod
    def strip_title(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        if not v:
            raise ValueError("Title cannot be empty")
        return v

    @model_validator(mode="after")
    def require_change(self) -> "NoteUpdate":
        if self.title is None and self.content is None:
            raise ValueError("Nothing to update")
        return self
