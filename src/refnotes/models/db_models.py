"""SQLAlchemy database models for refnotes."""
import datetime
from typing import Optional

from sqlalchemy import (Column, DateTime, ForeignKey, Integer, String, Text,
                        UniqueConstraint, create_engine, event)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, relationship, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from refnotes.config import config
from refnotes.models.schema import NoteType

# Create base class for SQLAlchemy models
Base = declarative_base()


def _utc_now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


class DBNote(Base):
    """Database model for a note.

    ``scope`` names the sibling group the ``order_index`` was allocated in:
    ``"bib"``, ``"root"`` or the parent id as text. SQLite treats NULLs as
    distinct in unique constraints, so ``parent_id`` alone could not carry
    the uniqueness of root order indexes.
    """
    __tablename__ = "notes"
    id = Column(Integer, primary_key=True, autoincrement=True)
    ref = Column(String(255), nullable=False, unique=True, index=True)
    title = Column(String(500), nullable=False)
    content = Column(Text, nullable=False, default="")
    note_type = Column(
        "type", String(10), default=NoteType.NOTE.value, nullable=False, index=True
    )
    # No ON DELETE CASCADE: deleting a parent must fail, never cascade
    parent_id = Column(Integer, ForeignKey("notes.id"), nullable=True, index=True)
    scope = Column(String(32), nullable=False)
    order_index = Column(Integer, nullable=False)
    created_at = Column(DateTime, default=_utc_now, nullable=False)
    updated_at = Column(DateTime, default=_utc_now, nullable=False)

    parent = relationship("DBNote", remote_side=[id], back_populates="children")
    children = relationship("DBNote", back_populates="parent", passive_deletes="all")

    __table_args__ = (
        UniqueConstraint("scope", "order_index", name="unique_scope_order"),
        # Ids are never reused; child scopes are keyed by the parent id
        {"sqlite_autoincrement": True},
    )

    def __repr__(self) -> str:
        """Return string representation of note."""
        return f"<Note(id={self.id}, ref='{self.ref}', title='{self.title}')>"


class DBAllocationCounter(Base):
    """High-water mark of the order indexes handed out in one scope.

    Survives deletion of the notes themselves, so a freed index (even the
    highest one) is never handed out again.
    """
    __tablename__ = "allocation_counters"
    scope = Column(String(32), primary_key=True)
    last_order_index = Column(Integer, nullable=False, default=0)

    def __repr__(self) -> str:
        return f"<AllocationCounter(scope='{self.scope}', last={self.last_order_index})>"


def _set_sqlite_pragma(dbapi_connection, connection_record) -> None:
    cursor = dbapi_connection.cursor()
    # Enforce parent_id references; SQLite leaves them off by default
    cursor.execute("PRAGMA foreign_keys=ON")
    # WAL mode: writes go to separate journal, preventing corruption on crash
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA synchronous=NORMAL")
    cursor.close()


def init_db(in_memory: Optional[bool] = None, db_url: Optional[str] = None) -> Engine:
    """Create the engine and the schema.

    Args:
        in_memory: Use a private in-memory database. Defaults to
            ``config.in_memory_db``.
        db_url: Explicit SQLAlchemy URL, overriding both of the above.

    Returns:
        A configured SQLAlchemy engine with all tables created.
    """
    if in_memory is None:
        in_memory = config.in_memory_db

    if db_url is None and in_memory:
        db_url = "sqlite:///:memory:"

    if db_url is not None and ":memory:" in db_url:
        # A single shared connection, otherwise every session sees its own
        # empty database
        engine = create_engine(
            db_url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
        )
    else:
        # SQLite is single-writer, so a small pool is ideal
        engine = create_engine(
            db_url or config.get_db_url(),
            poolclass=QueuePool,
            pool_size=5,
            max_overflow=10,
            pool_timeout=30,
            pool_pre_ping=True,
            connect_args={"check_same_thread": False, "timeout": 30},
        )

    event.listen(engine, "connect", _set_sqlite_pragma)

    Base.metadata.create_all(engine)
    return engine


def get_session_factory(engine=None):
    """Get a session factory for the database."""
    if engine is None:
        engine = init_db()
    return sessionmaker(bind=engine, expire_on_commit=False)
