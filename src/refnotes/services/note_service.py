"""Service layer for note operations."""

import logging
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from refnotes.config import config
from refnotes.exceptions import (
    AllocationConflictError,
    ErrorCode,
    HasChildrenError,
    NoteNotFoundError,
    ValidationError,
)
from refnotes.models.schema import Note, NoteCreate, NoteType, NoteUpdate
from refnotes.observability import metrics, traced
from refnotes.services.link_resolver import LinkResolver
from refnotes.services.ref_allocator import RefAllocator
from refnotes.services.renderer import RenderedContent, render
from refnotes.services.tree_index import (
    NoteSnapshot,
    Selection,
    SelectionEntry,
    TreeIndex,
    TreeNode,
)
from refnotes.storage.base import DeleteOutcome
from refnotes.storage.note_repository import NoteRepository

logger = logging.getLogger(__name__)

# Messages raised by the request models that have their own error code
_MESSAGE_CODES = {
    "Title is required": ErrorCode.NOTE_TITLE_REQUIRED,
    "Nothing to update": ErrorCode.NOTHING_TO_UPDATE,
}


def _to_validation_error(error: PydanticValidationError) -> ValidationError:
    """Reduce a pydantic error to the first problem it reports."""
    first = error.errors()[0]
    field = str(first["loc"][0]) if first.get("loc") else None
    message = first["msg"]
    if message.startswith("Value error, "):
        message = message[len("Value error, "):]

    code = _MESSAGE_CODES.get(message, ErrorCode.VALIDATION_FAILED)
    if field == "type":
        code = ErrorCode.INVALID_NOTE_TYPE
    return ValidationError(message, field=field, value=first.get("input"), code=code)


class NoteService:
    """Service for creating, reading, changing and rendering notes.

    Every write is validated before the store is touched. Reads that need
    the whole collection (tree, bibliography, links, rendering) work on a
    fresh ``NoteSnapshot`` taken per call.
    """

    def __init__(
        self,
        repository: Optional[NoteRepository] = None,
        engine: Optional[Any] = None,
        max_retries: Optional[int] = None,
    ):
        """Initialize the service.

        Args:
            repository: Note storage backend. Created with defaults if None.
            engine: Pre-configured SQLAlchemy engine to pass to NoteRepository.
                Only used when repository is None.
            max_retries: Attempts per creation when allocation races are lost.
                Defaults to config.allocation_max_retries.

        Raises:
            ValueError: If max_retries is given and below 1.
        """
        if max_retries is None:
            max_retries = config.allocation_max_retries
        elif max_retries < 1:
            raise ValueError(f"max_retries must be at least 1, got {max_retries}")

        self.repository = repository or NoteRepository(engine=engine)
        self.allocator = RefAllocator(self.repository)
        self.max_retries = max_retries

    # =========================================================================
    # Writes
    # =========================================================================

    @traced("create_note")
    def create_note(
        self,
        title: str,
        note_type: NoteType = NoteType.NOTE,
        parent_id: Optional[int] = None,
    ) -> Note:
        """Create a note with a freshly allocated ref and empty content.

        Args:
            title: Note title; surrounding whitespace is dropped.
            note_type: "note" for the tree, "bib" for the bibliography.
            parent_id: Parent tree note, None for a root note. Ignored for bib.

        Returns:
            The stored note.

        Raises:
            ValidationError: If the title is blank or the type unknown.
            ParentNotFoundError: If the parent does not exist.
            InvalidParentTypeError: If the parent is a bibliography entry.
            AllocationConflictError: If every retry lost an allocation race.
        """
        try:
            request = NoteCreate(title=title, note_type=note_type, parent_id=parent_id)
        except PydanticValidationError as e:
            raise _to_validation_error(e) from e

        attempt = 0
        while True:
            attempt += 1
            try:
                with self.repository.write_transaction():
                    allocation = self.allocator.allocate(
                        request.note_type, request.parent_id
                    )
                    note = self.repository.insert(
                        ref=allocation.ref,
                        title=request.title,
                        content="",
                        note_type=request.note_type,
                        parent_id=allocation.parent_id,
                        order_index=allocation.order_index,
                        scope=allocation.scope,
                    )
                return note
            except AllocationConflictError as e:
                metrics.count_event("allocation_conflict")
                if attempt >= self.max_retries:
                    logger.error(
                        f"Giving up on '{request.title}' after {attempt} allocation conflicts"
                    )
                    raise
                logger.warning(f"Retrying note creation (attempt {attempt}): {e}")

    @traced("update_note")
    def update_note(
        self, note_id: int, title: Optional[str] = None, content: Optional[str] = None
    ) -> Note:
        """Change the title and/or content of a note.

        Raises:
            ValidationError: If neither field is given or the title is blank.
            NoteNotFoundError: If the note does not exist.
        """
        try:
            request = NoteUpdate(title=title, content=content)
        except PydanticValidationError as e:
            raise _to_validation_error(e) from e
        return self.repository.update(note_id, title=request.title, content=request.content)

    @traced("delete_note")
    def delete_note(self, note_id: int) -> None:
        """Delete a note that has no children.

        Raises:
            NoteNotFoundError: If the note does not exist.
            HasChildrenError: If any note has it as parent; nothing is deleted.
        """
        child_count = 0
        with self.repository.write_transaction():
            outcome = self.repository.delete_if_childless(note_id)
            if outcome == DeleteOutcome.HAS_CHILDREN:
                # Counted in the same transaction as the refused delete
                child_count = self.repository.count_children(note_id)
        if outcome == DeleteOutcome.NOT_FOUND:
            raise NoteNotFoundError(note_id)
        if outcome == DeleteOutcome.HAS_CHILDREN:
            raise HasChildrenError(note_id, child_count)

    # =========================================================================
    # Reads
    # =========================================================================

    def get_note(self, note_id: int) -> Note:
        """Retrieve a note by ID, raising NoteNotFoundError if it is missing."""
        note = self.repository.get(note_id)
        if note is None:
            raise NoteNotFoundError(note_id)
        return note

    def get_note_by_ref(self, ref: str) -> Note:
        note = self.repository.get_by_ref(ref)
        if note is None:
            raise NoteNotFoundError(ref, message=f"Note with ref '{ref}' not found")
        return note

    def list_notes(self) -> List[Note]:
        """All notes: bibliography entries first, then tree notes, each by ref."""
        return self.repository.list_all()

    def count_notes_by_type(self) -> Dict[str, int]:
        counts = {t.value: 0 for t in NoteType}
        counts.update(self.repository.count_notes_by_type())
        return counts

    def snapshot(self) -> NoteSnapshot:
        return NoteSnapshot(self.repository.list_all())

    def get_tree(self) -> List[TreeNode]:
        return TreeIndex(self.snapshot()).build_tree()

    def get_parent_options(self) -> List[SelectionEntry]:
        return TreeIndex(self.snapshot()).selection_entries()

    def get_bibliography(self) -> List[Note]:
        return TreeIndex(self.snapshot()).bibliography()

    def locate(self, note_id: int) -> Selection:
        """Panel and ancestor chain to reveal when a note is selected."""
        selection = TreeIndex(self.snapshot()).locate(note_id)
        if selection is None:
            raise NoteNotFoundError(note_id)
        return selection

    # =========================================================================
    # Links and rendering
    # =========================================================================

    @traced("render_content")
    def render_content(self, content: str) -> RenderedContent:
        """Render arbitrary markup against the current notes."""
        return render(content, self.snapshot())

    @traced("render_note")
    def render_note(self, note_id: int) -> RenderedContent:
        snapshot = self.snapshot()
        note = snapshot.get(note_id)
        if note is None:
            raise NoteNotFoundError(note_id)
        return render(note.content, snapshot)

    def find_backlinks(self, note_id: int) -> List[Note]:
        """Notes whose content contains a ``[[ref]]`` to this note."""
        snapshot = self.snapshot()
        if snapshot.get(note_id) is None:
            raise NoteNotFoundError(note_id)
        return [snapshot.get(i) for i in LinkResolver(snapshot).backlinks(note_id)]
