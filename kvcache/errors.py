"""
kvcache — Core Error Types

Defines the exception hierarchy for cache engines.
All exceptions inherit from KVCacheError for consistent error handling.

Policy:
- InvalidKeyError and UnsupportedOperationError are raised to the caller
- InitializationError turns an engine FAILED; it is recorded, not raised
- CorruptEntryError and TransientBackendError are translated into the
  failure signal of the operation that hit them (miss / False / None)
"""

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """
    Standard error codes for cache failures.

    Used in structured log records and error dictionaries.
    """

    INVALID_KEY = "INVALID_KEY"
    INVALID_CONFIGURATION = "INVALID_CONFIGURATION"
    INITIALIZATION_FAILED = "INITIALIZATION_FAILED"
    UNSUPPORTED_OPERATION = "UNSUPPORTED_OPERATION"
    CORRUPT_ENTRY = "CORRUPT_ENTRY"
    BACKEND_UNAVAILABLE = "BACKEND_UNAVAILABLE"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class KVCacheError(Exception):
    """Base exception for all kvcache errors."""

    code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to dictionary for logs and diagnostics."""
        return {
            "error": self.__class__.__name__,
            "error_code": self.code.value,
            "message": self.message,
            "details": self.details,
        }


class ConfigurationError(KVCacheError):
    """Raised when configuration is invalid or missing."""

    code = ErrorCode.INVALID_CONFIGURATION


class InvalidKeyError(KVCacheError):
    """Raised when a cache key is empty or normalizes to nothing."""

    code = ErrorCode.INVALID_KEY

    def __init__(self, key: Any, details: dict[str, Any] | None = None):
        message = f"Invalid cache key: {key!r}"
        super().__init__(message, {"key": repr(key), **(details or {})})
        self.key = key


class CacheError(KVCacheError):
    """Base exception for engine-level cache errors."""


class InitializationError(CacheError):
    """Raised when an engine cannot reach its backend or lacks a required capability."""

    code = ErrorCode.INITIALIZATION_FAILED

    def __init__(self, backend: str, reason: str, details: dict[str, Any] | None = None):
        message = f"Failed to initialize cache backend '{backend}': {reason}"
        super().__init__(message, {"backend": backend, **(details or {})})
        self.backend = backend


class UnsupportedOperationError(CacheError):
    """Raised when an engine cannot implement an operation atomically."""

    code = ErrorCode.UNSUPPORTED_OPERATION

    def __init__(self, backend: str, operation: str, reason: str | None = None):
        message = f"{backend} does not support '{operation}'"
        if reason:
            message += f": {reason}"
        super().__init__(message, {"backend": backend, "operation": operation})
        self.backend = backend
        self.operation = operation


class CorruptEntryError(CacheError):
    """Raised when a stored entry cannot be decoded."""

    code = ErrorCode.CORRUPT_ENTRY


class TransientBackendError(CacheError):
    """Raised when a single call fails on a connection or timeout error."""

    code = ErrorCode.BACKEND_UNAVAILABLE


def extract_error_code(error: Exception) -> ErrorCode:
    """
    Extract appropriate ErrorCode from an exception.

    Args:
        error: Exception to categorize

    Returns:
        The error's own code for kvcache errors, INTERNAL_ERROR otherwise
    """
    if isinstance(error, KVCacheError):
        return error.code
    return ErrorCode.INTERNAL_ERROR
