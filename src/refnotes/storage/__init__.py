"""Storage layer for refnotes."""

from refnotes.storage.base import DeleteOutcome, NoteStore
from refnotes.storage.note_repository import NoteRepository

__all__ = [
    "DeleteOutcome",
    "NoteStore",
    "NoteRepository",
]
