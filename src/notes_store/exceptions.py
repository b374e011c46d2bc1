"""Custom exceptions for the notes store.

Provides a structured exception hierarchy with error codes and
machine-readable error information. Callers map these onto their own
transport: every ``ValidationError`` is a caller mistake, every
``StorageError`` is an internal failure.
"""
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    """Error codes for machine-readable error identification."""

    # Note errors (1xxx)
    NOTE_NOT_FOUND = 1001
    NOTE_VALIDATION_FAILED = 1002
    NOTE_PATH_INVALID = 1003
    NOTE_TEXT_REQUIRED = 1004
    NOTE_TEXT_NOT_UTF8 = 1005

    # Attachment errors (2xxx)
    ATTACHMENT_FILENAME_INVALID = 2001
    ATTACHMENT_TOO_LARGE = 2002
    ATTACHMENT_EMPTY = 2003
    ATTACHMENT_UPLOAD_CANCELLED = 2004

    # Storage errors (4xxx)
    STORAGE_READ_FAILED = 4001
    STORAGE_WRITE_FAILED = 4002
    STORAGE_DELETE_FAILED = 4003
    INDEX_DIVERGED = 4006

    # Search errors (5xxx)
    SEARCH_FAILED = 5001
    SEARCH_INVALID_QUERY = 5002

    # Configuration errors (6xxx)
    CONFIG_INVALID = 6001

    # Validation errors (7xxx)
    VALIDATION_FAILED = 7001


class NotesError(Exception):
    """Base exception for all notes store errors.

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


class NoteNotFoundError(NotesError):
    """Raised when an operation needs a note that does not exist."""

    def __init__(self, note_path: str, message: Optional[str] = None):
        super().__init__(
            message or f"Note '{note_path}' not found",
            code=ErrorCode.NOTE_NOT_FOUND,
            details={"note_path": note_path}
        )
        self.note_path = note_path


class ValidationError(NotesError):
    """Raised when caller-supplied input is rejected."""

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


class NoteValidationError(ValidationError):
    """Raised when a note's path, title, text or tags fail validation."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        value: Optional[Any] = None,
        code: ErrorCode = ErrorCode.NOTE_VALIDATION_FAILED
    ):
        super().__init__(message, field=field, value=value, code=code)


class SearchQueryError(ValidationError):
    """Raised when a full-text match expression cannot be parsed."""

    def __init__(self, message: str, query: Optional[str] = None):
        super().__init__(
            message,
            field="query",
            value=query,
            code=ErrorCode.SEARCH_INVALID_QUERY,
        )
        self.query = query


class InvalidFilenameError(ValidationError):
    """Raised when an attachment filename is empty or unsafe."""

    def __init__(self, filename: Optional[str]):
        super().__init__(
            "Invalid attachment file name",
            field="filename",
            value=filename,
            code=ErrorCode.ATTACHMENT_FILENAME_INVALID,
        )
        self.filename = filename


class AttachmentTooLargeError(ValidationError):
    """Raised when an upload exceeds the configured size ceiling."""

    def __init__(self, limit: int, filename: Optional[str] = None):
        super().__init__(
            f"Attachment exceeds the {limit} byte upload limit",
            field="filename",
            value=filename,
            code=ErrorCode.ATTACHMENT_TOO_LARGE,
        )
        self.details["limit"] = limit
        self.limit = limit


class UploadCancelledError(NotesError):
    """Raised when an upload is cancelled or times out before commit."""

    def __init__(self, message: str = "Upload cancelled", stage: Optional[str] = None):
        details = {"stage": stage} if stage else {}
        super().__init__(
            message, code=ErrorCode.ATTACHMENT_UPLOAD_CANCELLED, details=details
        )
        self.stage = stage


class StorageError(NotesError):
    """Raised for storage/persistence errors."""

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        path: Optional[str] = None,
        code: ErrorCode = ErrorCode.STORAGE_READ_FAILED,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if operation:
            details["operation"] = operation
        if path:
            details["path"] = path
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(message, code=code, details=details)
        self.operation = operation
        self.path = path
        self.original_error = original_error


class IndexConsistencyError(StorageError):
    """Raised when the search index no longer mirrors the notes table.

    The write path keeps both in one transaction, so seeing this means the
    database was modified outside the store or the write path is broken.

    Attributes:
        missing: Note paths without an index entry
        orphaned: Index entries without a note
        stale: Note paths whose index entry differs from the note
    """

    def __init__(
        self,
        missing: Optional[list] = None,
        orphaned: Optional[list] = None,
        stale: Optional[list] = None,
    ):
        self.missing = sorted(missing or [])
        self.orphaned = sorted(orphaned or [])
        self.stale = sorted(stale or [])
        super().__init__(
            "Search index diverged from note content",
            operation="verify_search_index",
            code=ErrorCode.INDEX_DIVERGED,
        )
        self.details["missing"] = self.missing[:10]
        self.details["orphaned"] = self.orphaned[:10]
        self.details["stale"] = self.stale[:10]


class ConfigurationError(NotesError):
    """Raised for configuration-related errors."""

    def __init__(
        self,
        message: str,
        config_key: Optional[str] = None,
        code: ErrorCode = ErrorCode.CONFIG_INVALID
    ):
        details = {}
        if config_key:
            details["config_key"] = config_key

        super().__init__(message, code=code, details=details)
        self.config_key = config_key
