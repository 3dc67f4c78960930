"""Repository for note storage and retrieval."""

import logging
import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

from sqlalchemy import and_, func, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from refnotes.exceptions import (
    AllocationConflictError,
    ErrorCode,
    NoteNotFoundError,
    StorageError,
)
from refnotes.models.db_models import (
    DBAllocationCounter,
    DBNote,
    get_session_factory,
    init_db,
)
from refnotes.models.schema import (
    AllocationScope,
    Note,
    NoteType,
    ensure_timezone_aware,
    utc_now,
)
from refnotes.storage.base import DeleteOutcome, NoteStore

logger = logging.getLogger(__name__)


def _scope_filter(scope: AllocationScope):
    """SQL condition selecting the members of an allocation scope."""
    if scope.kind == "bib":
        return DBNote.note_type == NoteType.BIB.value
    if scope.kind == "root":
        return and_(
            DBNote.note_type == NoteType.NOTE.value, DBNote.parent_id.is_(None)
        )
    return DBNote.parent_id == scope.parent_id


class NoteRepository(NoteStore):
    """SQLite-backed note store.

    All writes go through ``write_transaction()``, which holds a
    process-wide lock for the lifetime of one SQLAlchemy session. Calls made
    on the repository while a transaction is open in the same thread join
    that session, so a caller can read the allocation state, insert, and
    commit as one unit. Reads outside a transaction use a short-lived
    session of their own.
    """

    def __init__(self, engine: Optional[Any] = None, in_memory_db: Optional[bool] = None):
        """Initialize the repository.

        Args:
            engine: Pre-configured SQLAlchemy engine. When None, one is
                created by init_db().
            in_memory_db: Passed to init_db() when no engine is given.
                Defaults to config.in_memory_db.
        """
        self.engine = engine if engine is not None else init_db(in_memory=in_memory_db)
        self.session_factory = get_session_factory(self.engine)

        # Serializes every write transaction in this process
        self._write_lock = threading.RLock()
        # Session of the write transaction open in the current thread, if any
        self._local = threading.local()

        logger.info(f"NoteRepository initialized: db_url={self.engine.url}")

    # =========================================================================
    # Session handling
    # =========================================================================

    def _active_session(self) -> Optional[Session]:
        return getattr(self._local, "session", None)

    @contextmanager
    def _read_session(self) -> Iterator[Session]:
        active = self._active_session()
        if active is not None:
            yield active
            return
        with self.session_factory() as session:
            yield session

    @contextmanager
    def write_transaction(self) -> Iterator[Session]:
        """Open (or join) the write transaction of the current thread.

        The outermost block commits on success and rolls back if anything
        raises; nested blocks just share its session.
        """
        active = self._active_session()
        if active is not None:
            yield active
            return

        with self._write_lock:
            session = self.session_factory()
            self._local.session = session
            try:
                yield session
                session.commit()
            except Exception:
                session.rollback()
                raise
            finally:
                self._local.session = None
                session.close()

    @staticmethod
    def _db_note_to_model(db_note: DBNote) -> Note:
        """Convert a database row to the Note model."""
        return Note(
            id=db_note.id,
            ref=db_note.ref,
            title=db_note.title,
            content=db_note.content or "",
            note_type=NoteType(db_note.note_type),
            parent_id=db_note.parent_id,
            order_index=db_note.order_index,
            created_at=ensure_timezone_aware(db_note.created_at),
            updated_at=ensure_timezone_aware(db_note.updated_at),
        )

    # =========================================================================
    # Reads
    # =========================================================================

    def list_all(self) -> List[Note]:
        """Get all notes, ordered by type then ref."""
        try:
            with self._read_session() as session:
                rows = session.scalars(
                    select(DBNote).order_by(DBNote.note_type, DBNote.ref)
                ).all()
                return [self._db_note_to_model(row) for row in rows]
        except SQLAlchemyError as e:
            raise StorageError(
                "Failed to list notes", operation="list_all", original_error=e
            ) from e

    def get(self, id: int) -> Optional[Note]:
        """Get a note by ID.

        Args:
            id: The surrogate key of the note

        Returns:
            Note object if found, None otherwise
        """
        with self._read_session() as session:
            db_note = session.get(DBNote, id)
            if db_note is None:
                return None
            return self._db_note_to_model(db_note)

    def get_by_ref(self, ref: str) -> Optional[Note]:
        """Get a note by its exact ref."""
        with self._read_session() as session:
            db_note = session.scalar(select(DBNote).where(DBNote.ref == ref))
            if db_note is None:
                return None
            return self._db_note_to_model(db_note)

    def count_children(self, parent_id: int) -> int:
        """Count the direct children of a note."""
        with self._read_session() as session:
            count = session.scalar(
                select(func.count(DBNote.id)).where(DBNote.parent_id == parent_id)
            )
            return count or 0

    def max_order_index(self, scope: AllocationScope) -> Optional[int]:
        """Get the highest order index ever allocated in a scope.

        Combines the persisted high-water mark with the rows currently in
        the scope, so an index freed by deleting the newest sibling is not
        handed out again.
        """
        with self._read_session() as session:
            row_max = session.scalar(
                select(func.max(DBNote.order_index)).where(_scope_filter(scope))
            )
            counter = session.get(DBAllocationCounter, scope.key)
            candidates = [v for v in (row_max, counter and counter.last_order_index) if v]
            return max(candidates) if candidates else None

    def count_notes_by_type(self) -> Dict[str, int]:
        """Get note counts grouped by type using SQL GROUP BY.

        Returns:
            Dict mapping type string to count.
        """
        with self._read_session() as session:
            rows = session.execute(
                select(DBNote.note_type, func.count(DBNote.id)).group_by(DBNote.note_type)
            ).all()
            return {row[0]: row[1] for row in rows}

    # =========================================================================
    # Writes
    # =========================================================================

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
        """Insert a freshly allocated note.

        Raises:
            AllocationConflictError: If the ref or (scope, order_index) pair
                is already taken; the transaction is rolled back.
        """
        with self.write_transaction() as session:
            # Looked up before the note is added so autoflush cannot hit
            # the unique constraints outside the handler below
            counter = session.get(DBAllocationCounter, scope.key)
            now = utc_now()
            db_note = DBNote(
                ref=ref,
                title=title,
                content=content,
                note_type=note_type.value,
                parent_id=parent_id,
                scope=scope.key,
                order_index=order_index,
                created_at=now,
                updated_at=now,
            )
            session.add(db_note)
            if counter is None:
                session.add(DBAllocationCounter(scope=scope.key, last_order_index=order_index))
            elif counter.last_order_index < order_index:
                counter.last_order_index = order_index
            try:
                session.flush()
            except IntegrityError as e:
                logger.warning(
                    f"Allocation conflict for ref {ref} in scope {scope.key}: {e}"
                )
                raise AllocationConflictError(scope.key, order_index, original_error=e) from e

            logger.info(f"Inserted note id={db_note.id} ref={ref} type={note_type.value}")
            return self._db_note_to_model(db_note)

    def update(
        self, id: int, title: Optional[str] = None, content: Optional[str] = None
    ) -> Note:
        """Update title and/or content of a note.

        Raises:
            NoteNotFoundError: If no note has this ID.
        """
        with self.write_transaction() as session:
            db_note = session.get(DBNote, id)
            if db_note is None:
                raise NoteNotFoundError(id)
            if title is not None:
                db_note.title = title
            if content is not None:
                db_note.content = content
            db_note.updated_at = utc_now()
            try:
                session.flush()
            except SQLAlchemyError as e:
                raise StorageError(
                    f"Failed to update note {id}",
                    operation="update",
                    code=ErrorCode.STORAGE_WRITE_FAILED,
                    original_error=e,
                ) from e
            return self._db_note_to_model(db_note)

    def delete_if_childless(self, id: int) -> DeleteOutcome:
        """Delete a note unless it still has children.

        The child count and the delete run in the same transaction, under
        the write lock, so no child can be created in between.
        """
        with self.write_transaction() as session:
            db_note = session.get(DBNote, id)
            if db_note is None:
                return DeleteOutcome.NOT_FOUND
            child_count = session.scalar(
                select(func.count(DBNote.id)).where(DBNote.parent_id == id)
            )
            if child_count:
                return DeleteOutcome.HAS_CHILDREN
            # A childless note may still have had children once
            own_counter = session.get(
                DBAllocationCounter, AllocationScope.children_of(id).key
            )
            session.delete(db_note)
            if own_counter is not None:
                session.delete(own_counter)
            try:
                session.flush()
            except SQLAlchemyError as e:
                raise StorageError(
                    f"Failed to delete note {id}",
                    operation="delete",
                    code=ErrorCode.STORAGE_DELETE_FAILED,
                    original_error=e,
                ) from e
            logger.info(f"Deleted note id={id} ref={db_note.ref}")
            return DeleteOutcome.DELETED
