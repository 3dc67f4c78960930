"""In-memory test doubles for the storage layer.

FakeNoteStore keeps notes in a dict and honours the NoteStore contract,
including high-water-mark allocation, so allocator and tree tests run
without a database.
"""
from contextlib import contextmanager
from typing import Dict, List, Optional

from refnotes.models.schema import AllocationScope, Note, NoteType
from refnotes.storage.base import DeleteOutcome, NoteStore


def make_note(
    id: int,
    ref: str,
    title: Optional[str] = None,
    content: str = "",
    note_type: NoteType = NoteType.NOTE,
    parent_id: Optional[int] = None,
) -> Note:
    """Build a Note whose order index is taken from the last ref segment."""
    last = ref[1:] if note_type == NoteType.BIB else ref.rsplit(".", 1)[-1]
    return Note(
        id=id,
        ref=ref,
        title=title or f"Note {ref}",
        content=content,
        note_type=note_type,
        parent_id=parent_id,
        order_index=int(last),
    )


class FakeNoteStore(NoteStore):
    """Dict-backed NoteStore."""

    def __init__(self, notes: Optional[List[Note]] = None):
        self.notes: Dict[int, Note] = {}
        self.high_water: Dict[str, int] = {}
        self.transactions = 0
        self.depth = 0
        self._next_id = 1
        for note in notes or []:
            self._store(note)

    def _scope_of(self, note: Note) -> AllocationScope:
        if note.note_type == NoteType.BIB:
            return AllocationScope.bib()
        if note.parent_id is None:
            return AllocationScope.root()
        return AllocationScope.children_of(note.parent_id)

    def _store(self, note: Note) -> Note:
        self.notes[note.id] = note
        self._next_id = max(self._next_id, note.id + 1)
        key = self._scope_of(note).key
        self.high_water[key] = max(self.high_water.get(key, 0), note.order_index)
        return note

    def list_all(self) -> List[Note]:
        return sorted(self.notes.values(), key=lambda n: (n.note_type.value, n.ref))

    def get(self, id: int) -> Optional[Note]:
        return self.notes.get(id)

    def get_by_ref(self, ref: str) -> Optional[Note]:
        return next((n for n in self.notes.values() if n.ref == ref), None)

    def insert(self, ref, title, content, note_type, parent_id, order_index, scope) -> Note:
        return self._store(
            Note(
                id=self._next_id,
                ref=ref,
                title=title,
                content=content,
                note_type=note_type,
                parent_id=parent_id,
                order_index=order_index,
            )
        )

    def update(self, id: int, title=None, content=None) -> Note:
        note = self.notes[id]
        changes = {k: v for k, v in (("title", title), ("content", content)) if v is not None}
        updated = note.model_copy(update=changes)
        self.notes[id] = updated
        return updated

    def delete_if_childless(self, id: int) -> DeleteOutcome:
        if id not in self.notes:
            return DeleteOutcome.NOT_FOUND
        if self.count_children(id):
            return DeleteOutcome.HAS_CHILDREN
        del self.notes[id]
        return DeleteOutcome.DELETED

    def count_children(self, parent_id: int) -> int:
        return sum(1 for n in self.notes.values() if n.parent_id == parent_id)

    def max_order_index(self, scope: AllocationScope) -> Optional[int]:
        return self.high_water.get(scope.key)

    @contextmanager
    def write_transaction(self):
        self.transactions += 1
        self.depth += 1
        try:
            yield self
        finally:
            self.depth -= 1
