"""Custom exceptions for refnotes.

Provides a structured exception hierarchy with error codes and
machine-readable error information for better error handling.
"""
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    """Error codes for machine-readable error identification."""

    # Note errors (1xxx)
    NOTE_NOT_FOUND = 1001
    NOTE_VALIDATION_FAILED = 1002
    NOTE_TITLE_REQUIRED = 1004
    NOTE_HAS_CHILDREN = 1006
    NOTHING_TO_UPDATE = 1007

    # Allocation errors (2xxx)
    PARENT_NOT_FOUND = 2001
    INVALID_PARENT_TYPE = 2002
    ALLOCATION_CONFLICT = 2003

    # Storage errors (4xxx)
    STORAGE_READ_FAILED = 4001
    STORAGE_WRITE_FAILED = 4002
    STORAGE_DELETE_FAILED = 4003

    # Validation errors (7xxx)
    VALIDATION_FAILED = 7001
    INVALID_NOTE_TYPE = 7002


class RefNotesError(Exception):
    """Base exception for all refnotes errors.

    Attributes:
        message: Human-readable error message
        code: Machine-readable error code
        details: Additional context about the error
    """

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to a dictionary for serialization."""
        return {
            "error": self.__class__.__name__,
            "code": self.code.value,
            "code_name": self.code.name,
            "message": self.message,
            "details": self.details
        }

    def __str__(self) -> str:
        if self.details:
            detail_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"[{self.code.name}] {self.message} ({detail_str})"
        return f"[{self.code.name}] {self.message}"


class ValidationError(RefNotesError):
    """Raised when a request fails validation before touching the store."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        code: ErrorCode = ErrorCode.VALIDATION_FAILED
    ):
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)[:100]  # Truncate for safety

        super().__init__(message, code=code, details=details)
        self.field = field
        self.value = value


class NoteNotFoundError(RefNotesError):
    """Raised when a note cannot be found."""

    def __init__(self, note_id: Any, message: Optional[str] = None):
        super().__init__(
            message or f"Note with ID '{note_id}' not found",
            code=ErrorCode.NOTE_NOT_FOUND,
            details={"note_id": note_id}
        )
        self.note_id = note_id


class ParentNotFoundError(RefNotesError):
    """Raised when a new note names a parent that does not exist."""

    def __init__(self, parent_id: int):
        super().__init__(
            f"Parent note with ID '{parent_id}' not found",
            code=ErrorCode.PARENT_NOT_FOUND,
            details={"parent_id": parent_id}
        )
        self.parent_id = parent_id


class InvalidParentTypeError(RefNotesError):
    """Raised when a new note names a bibliography entry as its parent."""

    def __init__(self, parent_id: int, parent_type: str):
        super().__init__(
            f"Note '{parent_id}' is of type '{parent_type}' and cannot have children",
            code=ErrorCode.INVALID_PARENT_TYPE,
            details={"parent_id": parent_id, "parent_type": parent_type}
        )
        self.parent_id = parent_id
        self.parent_type = parent_type


class HasChildrenError(RefNotesError):
    """Raised when deleting a note that other notes still point to."""

    def __init__(self, note_id: int, child_count: int):
        super().__init__(
            f"Cannot delete note '{note_id}': it has {child_count} child note(s)",
            code=ErrorCode.NOTE_HAS_CHILDREN,
            details={"note_id": note_id, "child_count": child_count}
        )
        self.note_id = note_id
        self.child_count = child_count


class AllocationConflictError(RefNotesError):
    """Raised when another writer took the same ref or order index first.

    The whole creation request can be retried; nothing was written.
    """

    def __init__(
        self,
        scope: str,
        order_index: int,
        original_error: Optional[Exception] = None
    ):
        details: Dict[str, Any] = {"scope": scope, "order_index": order_index}
        if original_error:
            details["original_error"] = str(original_error)[:200]
        super().__init__(
            f"Order index {order_index} in scope '{scope}' was allocated concurrently",
            code=ErrorCode.ALLOCATION_CONFLICT,
            details=details
        )
        self.scope = scope
        self.order_index = order_index
        self.original_error = original_error


class StorageError(RefNotesError):
    """Raised for storage/persistence errors."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        code: ErrorCode = ErrorCode.STORAGE_READ_FAILED,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if operation:
            details["operation"] = operation
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(message, code=code, details=details)
        self.operation = operation
        self.original_error = original_error

