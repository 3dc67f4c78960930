"""Allocation of refs and order indexes for new notes.

A tree note's ref is its parent's ref plus ``.`` plus its order index among
the parent's children (or the bare index at the root); a bibliography
entry's ref is ``B`` plus its index in the single flat bibliography scope.
Indexes are always the scope's high-water mark plus one, so refs are never
recycled after a delete and gaps are normal.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from refnotes.exceptions import InvalidParentTypeError, ParentNotFoundError
from refnotes.models.schema import (
    BIB_REF_PREFIX,
    REF_SEPARATOR,
    AllocationScope,
    NoteType,
)
from refnotes.storage.base import NoteStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Allocation:
    """The identity assigned to a note that is about to be inserted."""

    ref: str
    order_index: int
    scope: AllocationScope
    parent_id: Optional[int] = None


class RefAllocator:
    """Computes the next ref for a note of a given type and parent.

    ``allocate`` only reads from the store. Callers must run it and the
    following insert inside one ``store.write_transaction()`` so that no
    other writer can take the same index in between.
    """

    def __init__(self, store: NoteStore):
        self.store = store

    def allocate(self, note_type: NoteType, parent_id: Optional[int] = None) -> Allocation:
        """Allocate the ref and order index for a new note.

        Args:
            note_type: Type of the new note. For ``bib`` the parent is ignored.
            parent_id: Parent note ID for a child note, None for a root note.

        Returns:
            The Allocation to insert the note with.

        Raises:
            ParentNotFoundError: If ``parent_id`` names no existing note.
            InvalidParentTypeError: If the parent is a bibliography entry.
        """
        note_type = NoteType(note_type)

        if note_type == NoteType.BIB:
            scope = AllocationScope.bib()
            order_index = self._next_index(scope)
            return Allocation(f"{BIB_REF_PREFIX}{order_index}", order_index, scope)

        if parent_id is None:
            scope = AllocationScope.root()
            order_index = self._next_index(scope)
            return Allocation(str(order_index), order_index, scope)

        parent = self.store.get(parent_id)
        if parent is None:
            raise ParentNotFoundError(parent_id)
        if parent.note_type != NoteType.NOTE:
            raise InvalidParentTypeError(parent_id, parent.note_type.value)

        scope = AllocationScope.children_of(parent_id)
        order_index = self._next_index(scope)
        return Allocation(
            f"{parent.ref}{REF_SEPARATOR}{order_index}", order_index, scope, parent_id
        )

    def _next_index(self, scope: AllocationScope) -> int:
        current = self.store.max_order_index(scope)
        next_index = (current or 0) + 1
        logger.debug(f"Scope {scope.key}: max order index {current}, allocating {next_index}")
        return next_index
