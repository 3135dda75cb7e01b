"""Custom exceptions for the vault graph engine.

Provides a structured exception hierarchy with error codes and
machine-readable error information. Broken references and ambiguous
resolutions are graph state, not exceptions; only mutation failures and
queue overflow are surfaced to callers as failures.
"""
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(Enum):
    """Error codes for machine-readable error identification."""

    # Note errors (1xxx)
    NOTE_NOT_FOUND = 1001
    NOTE_VALIDATION_FAILED = 1002

    # Link parsing errors (2xxx)
    LINK_MALFORMED = 2001
    LINK_EMPTY_TARGET = 2002

    # Mutation errors (3xxx)
    MUTATION_APPLICATION_FAILED = 3001
    QUEUE_OVERFLOW = 3002
    QUEUE_CLOSED = 3003

    # Storage errors (4xxx)
    STORAGE_READ_FAILED = 4001
    STORAGE_WRITE_FAILED = 4002
    CACHE_CORRUPTED = 4003

    # Configuration errors (6xxx)
    CONFIG_INVALID = 6001
    CONFIG_MISSING = 6002

    # Validation errors (7xxx)
    VALIDATION_FAILED = 7001
    INVALID_DIRECTION = 7002
    INVALID_MUTATION = 7003


class VaultGraphError(Exception):
    """Base exception for all vault graph errors.

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


class NoteNotFoundError(VaultGraphError):
    """Raised when a note id is not present in a snapshot."""

    def __init__(self, note_id: str, message: Optional[str] = None):
        super().__init__(
            message or f"Note with ID '{note_id}' not found",
            code=ErrorCode.NOTE_NOT_FOUND,
            details={"note_id": note_id}
        )
        self.note_id = note_id


class ParseError(VaultGraphError):
    """Raised for a malformed link candidate.

    Never escapes the link parser: the scanner drops the candidate and
    moves on, since text that was never valid link syntax is not a
    broken reference.
    """

    def __init__(
        self,
        message: str,
        offset: Optional[int] = None,
        code: ErrorCode = ErrorCode.LINK_MALFORMED
    ):
        details = {}
        if offset is not None:
            details["offset"] = offset

        super().__init__(message, code=code, details=details)
        self.offset = offset


class MutationApplicationError(VaultGraphError):
    """Raised when indexing one note fails unexpectedly.

    Isolated to that note: the note keeps its prior indexed state and the
    rest of the batch still applies.
    """

    def __init__(
        self,
        message: str,
        note_id: Optional[str] = None,
        kind: Optional[str] = None,
        code: ErrorCode = ErrorCode.MUTATION_APPLICATION_FAILED,
        original_error: Optional[Exception] = None
    ):
        details = {}
        if note_id:
            details["note_id"] = note_id
        if kind:
            details["kind"] = kind
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(message, code=code, details=details)
        self.note_id = note_id
        self.kind = kind
        self.original_error = original_error


class QueueOverflowError(VaultGraphError):
    """Raised when the mutation queue is full.

    The caller must retry later or coalesce its events.
    """

    def __init__(
        self,
        message: str,
        capacity: int = 0,
        note_id: Optional[str] = None,
        code: ErrorCode = ErrorCode.QUEUE_OVERFLOW
    ):
        details: Dict[str, Any] = {"capacity": capacity}
        if note_id:
            details["note_id"] = note_id

        super().__init__(message, code=code, details=details)
        self.capacity = capacity
        self.note_id = note_id
        # Set by put_many: events accepted before this one was rejected
        self.accepted: Optional[int] = None


class StorageError(VaultGraphError):
    """Raised for index cache and vault reading errors."""

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
            # Don't expose full paths in error messages
            details["path_hint"] = path.split("/")[-1] if "/" in path else path
        if original_error:
            details["original_error"] = str(original_error)[:200]

        super().__init__(message, code=code, details=details)
        self.operation = operation
        self.path = path
        self.original_error = original_error


class ConfigurationError(VaultGraphError):
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


class ValidationError(VaultGraphError):
    """Raised for general validation errors."""

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
            details["value"] = str(value)[:100]

        super().__init__(message, code=code, details=details)
        self.field = field
        self.value = value
