"""Storage interface the core services depend on."""
from abc import ABC, abstractmethod
from enum import Enum
from typing import List, Optional

from refnotes.models.schema import AllocationScope, Note, NoteType


class DeleteOutcome(str, Enum):
    """Result of a guarded delete."""

    DELETED = "deleted"
    HAS_CHILDREN = "has_children"
    NOT_FOUND = "not_found"


class NoteStore(ABC):
    """Durable CRUD for note records.

    Only the operations the allocator, tree and service layers need; any
    embedded store that can honour them (including atomic
    allocate-then-insert through ``write_transaction``) will do.
    """

    @abstractmethod
    def list_all(self) -> List[Note]:
        """Return every note, ordered by type then ref."""

    @abstractmethod
    def get(self, id: int) -> Optional[Note]:
        """Return the note with this ID, or None."""

    @abstractmethod
    def get_by_ref(self, ref: str) -> Optional[Note]:
        """Return the note with exactly this ref, or None."""

    @abstractmethod
    def insert(
        self,
        ref: str,
        title: str,
        content: str,
        note_type: NoteType,
        parent_id: Optional[int],
        order_index: int,
        scope: AllocationScope,
    ) -> Note:
        """Persist a new note; the store assigns ID and timestamps."""

    @abstractmethod
    def update(
        self, id: int, title: Optional[str] = None, content: Optional[str] = None
    ) -> Note:
        """Change title and/or content and refresh ``updated_at``."""

    @abstractmethod
    def delete_if_childless(self, id: int) -> DeleteOutcome:
        """Delete a note unless another note has it as parent."""

    @abstractmethod
    def count_children(self, parent_id: int) -> int:
        """Number of notes whose ``parent_id`` is ``parent_id``."""

    @abstractmethod
    def max_order_index(self, scope: AllocationScope) -> Optional[int]:
        """Highest order index ever allocated in ``scope``, None if none was."""

    @abstractmethod
    def write_transaction(self):
        """Context manager grouping several calls into one atomic write."""
