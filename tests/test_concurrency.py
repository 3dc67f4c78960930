"""Tests for concurrent writers sharing one repository.

These tests simulate the racy patterns the service must serialize:
1. Parallel creations in the same scope never share a ref
2. A delete racing a child creation never leaves an orphan
"""

import threading
from typing import List

import pytest

from refnotes.exceptions import HasChildrenError, ParentNotFoundError, RefNotesError
from refnotes.models.schema import Note


def _run_threads(target, count: int) -> None:
    threads = [threading.Thread(target=target, args=(i,)) for i in range(count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)


class TestConcurrentCreates:
    """Parallel creations get distinct, gap-free refs."""

    def test_parallel_root_creates(self, note_service):
        results: List[Note] = []
        errors: List[Exception] = []
        lock = threading.Lock()

        def create(index: int):
            try:
                note = note_service.create_note(f"Root {index}")
                with lock:
                    results.append(note)
            except Exception as e:
                with lock:
                    errors.append(e)

        _run_threads(create, 10)

        assert errors == []
        assert sorted(int(n.ref) for n in results) == list(range(1, 11))

    def test_parallel_child_and_bib_creates(self, note_service):
        parent = note_service.create_note("Parent")
        refs: List[str] = []
        lock = threading.Lock()

        def create(index: int):
            if index % 2:
                note = note_service.create_note(f"Bib {index}", note_type="bib")
            else:
                note = note_service.create_note(f"Child {index}", parent_id=parent.id)
            with lock:
                refs.append(note.ref)

        _run_threads(create, 8)

        assert sorted(r for r in refs if r.startswith("B")) == ["B1", "B2", "B3", "B4"]
        assert sorted(r for r in refs if not r.startswith("B")) == ["1.1", "1.2", "1.3", "1.4"]


class TestDeleteRacesCreate:
    @pytest.mark.parametrize("attempt", range(5))
    def test_no_orphans(self, note_service, attempt):
        parent = note_service.create_note(f"Parent {attempt}")
        outcomes: List[str] = []
        lock = threading.Lock()

        def act(index: int):
            try:
                if index == 0:
                    note_service.delete_note(parent.id)
                    result = "deleted"
                else:
                    note_service.create_note("Child", parent_id=parent.id)
                    result = "child"
            except (HasChildrenError, ParentNotFoundError) as e:
                result = type(e).__name__
            except RefNotesError as e:
                result = f"unexpected: {e}"
            with lock:
                outcomes.append(result)

        _run_threads(act, 2)

        assert sorted(outcomes) in (
            ["ParentNotFoundError", "deleted"],
            ["HasChildrenError", "child"],
        )
        notes = note_service.list_notes()
        ids = {n.id for n in notes}
        assert all(n.parent_id is None or n.parent_id in ids for n in notes)
