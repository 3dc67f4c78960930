"""Tests for RefAllocator."""
import pytest

from refnotes.exceptions import InvalidParentTypeError, ParentNotFoundError
from refnotes.models.schema import AllocationScope, NoteType
from refnotes.services.ref_allocator import RefAllocator
from tests.fakes import FakeNoteStore, make_note


def _create(store, note_type=NoteType.NOTE, parent_id=None, title="New"):
    allocation = RefAllocator(store).allocate(note_type, parent_id)
    return store.insert(
        ref=allocation.ref,
        title=title,
        content="",
        note_type=NoteType(note_type),
        parent_id=allocation.parent_id,
        order_index=allocation.order_index,
        scope=allocation.scope,
    )


class TestRootAllocation:
    def test_first_root_is_one(self):
        allocation = RefAllocator(FakeNoteStore()).allocate(NoteType.NOTE)
        assert allocation.ref == "1"
        assert allocation.order_index == 1
        assert allocation.scope == AllocationScope.root()
        assert allocation.parent_id is None

    def test_roots_count_up(self):
        store = FakeNoteStore()
        refs = [_create(store).ref for _ in range(3)]
        assert refs == ["1", "2", "3"]

    def test_deleted_root_is_not_reused(self):
        store = FakeNoteStore()
        _create(store)
        last = _create(store)
        store.delete_if_childless(last.id)
        assert _create(store).ref == "3"


class TestChildAllocation:
    def test_child_ref_extends_parent(self):
        store = FakeNoteStore([make_note(1, "1"), make_note(2, "2")])
        allocation = RefAllocator(store).allocate(NoteType.NOTE, parent_id=2)
        assert allocation.ref == "2.1"
        assert allocation.parent_id == 2
        assert allocation.scope == AllocationScope.children_of(2)

    def test_children_count_deleted_siblings(self):
        store = FakeNoteStore([make_note(1, "1")])
        first = _create(store, parent_id=1)
        second = _create(store, parent_id=1)
        assert (first.ref, second.ref) == ("1.1", "1.2")
        store.delete_if_childless(first.id)
        store.delete_if_childless(second.id)
        assert _create(store, parent_id=1).ref == "1.3"

    def test_grandchild(self):
        store = FakeNoteStore([make_note(1, "1"), make_note(5, "1.4", parent_id=1)])
        assert RefAllocator(store).allocate(NoteType.NOTE, parent_id=5).ref == "1.4.1"

    def test_scopes_are_independent(self):
        store = FakeNoteStore([make_note(1, "1"), make_note(2, "2")])
        _create(store, parent_id=1)
        _create(store, parent_id=1)
        assert _create(store, parent_id=2).ref == "2.1"
        assert _create(store).ref == "3"

    def test_missing_parent(self):
        with pytest.raises(ParentNotFoundError) as excinfo:
            RefAllocator(FakeNoteStore()).allocate(NoteType.NOTE, parent_id=42)
        assert excinfo.value.parent_id == 42

    def test_bib_parent_rejected(self):
        store = FakeNoteStore([make_note(1, "B1", note_type=NoteType.BIB)])
        with pytest.raises(InvalidParentTypeError):
            RefAllocator(store).allocate(NoteType.NOTE, parent_id=1)


class TestBibAllocation:
    def test_bib_refs(self):
        store = FakeNoteStore()
        refs = [_create(store, note_type=NoteType.BIB).ref for _ in range(2)]
        assert refs == ["B1", "B2"]

    def test_bib_independent_of_tree(self):
        store = FakeNoteStore([make_note(1, "1"), make_note(2, "2"), make_note(3, "1.1", parent_id=1)])
        assert RefAllocator(store).allocate("bib").ref == "B1"

    def test_bib_ignores_parent(self):
        store = FakeNoteStore([make_note(1, "1")])
        allocation = RefAllocator(store).allocate(NoteType.BIB, parent_id=1)
        assert allocation.ref == "B1"
        assert allocation.parent_id is None
