"""Error hierarchy for the text file store.

Every error carries a code, a category and the HTTP status the API maps it to.
Callers branch on the error type; the API layer turns any FileStoreError into
a structured JSON body via error_handlers.py.

    InvalidInput    rejected before any I/O (empty content, wrong suffix)
    NotFound        unknown id
      BlobMissing   record exists but its blob does not (integrity anomaly)
    DuplicateHash   internal: unique index rejected a concurrent insert
    StorageFailure  blob I/O or index commit failed
"""
from enum import Enum


class ErrorCategory(str, Enum):
    VALIDATION = "validation"
    RESOURCE_NOT_FOUND = "resource_not_found"
    CONFLICT = "conflict"
    STORAGE = "storage"
    INTERNAL = "internal"


class FileStoreError(Exception):
    code = "FILE_STORE_ERROR"
    category = ErrorCategory.INTERNAL
    http_status = 500

    def __init__(self, message: str, code: str | None = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def to_response(self) -> dict:
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "category": self.category.value,
            }
        }


class InvalidInput(FileStoreError):
    code = "INVALID_INPUT"
    category = ErrorCategory.VALIDATION
    http_status = 400


class EmptyInput(InvalidInput):
    code = "EMPTY_INPUT"


class UnsupportedType(InvalidInput):
    code = "UNSUPPORTED_TYPE"


class NotFound(FileStoreError):
    code = "FILE_NOT_FOUND"
    category = ErrorCategory.RESOURCE_NOT_FOUND
    http_status = 404


class BlobMissing(NotFound):
    """Metadata exists but the blob it points at is gone."""
    code = "BLOB_MISSING"

    def __init__(self, file_id, content_hash: str):
        # Same client-facing message as an unknown id; the distinction is for logs.
        super().__init__(f"File not found: {file_id}")
        self.file_id = file_id
        self.content_hash = content_hash


class DuplicateHash(FileStoreError):
    """Raised by the metadata index; never leaves the identity resolver."""
    code = "DUPLICATE_HASH"
    category = ErrorCategory.CONFLICT
    http_status = 409

    def __init__(self, content_hash: str):
        super().__init__(f"Content hash already indexed: {content_hash}")
        self.content_hash = content_hash


class StorageFailure(FileStoreError):
    code = "STORAGE_FAILURE"
    category = ErrorCategory.STORAGE
    http_status = 500
