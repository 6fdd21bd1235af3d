"""
kvcache — Error Type Tests
"""

from kvcache.errors import (
    CacheError,
    ConfigurationError,
    CorruptEntryError,
    ErrorCode,
    InitializationError,
    InvalidKeyError,
    KVCacheError,
    TransientBackendError,
    UnsupportedOperationError,
    extract_error_code,
)


class TestErrors:
    """Exception hierarchy and serialization."""

    def test_hierarchy(self) -> None:
        for exc_type in (InitializationError, UnsupportedOperationError, CorruptEntryError, TransientBackendError):
            assert issubclass(exc_type, CacheError)
        assert issubclass(CacheError, KVCacheError)
        assert issubclass(InvalidKeyError, KVCacheError)
        assert issubclass(ConfigurationError, KVCacheError)

    def test_invalid_key(self) -> None:
        error = InvalidKeyError("")
        assert error.key == ""
        assert error.code == ErrorCode.INVALID_KEY
        assert error.details["key"] == "''"

    def test_initialization_error_message(self) -> None:
        error = InitializationError("redis", "connection refused", details={"port": 6379})
        assert error.message == "Failed to initialize cache backend 'redis': connection refused"
        assert error.details == {"backend": "redis", "port": 6379}

    def test_unsupported_operation(self) -> None:
        error = UnsupportedOperationError("file", "increment", "not atomic")
        assert str(error) == "file does not support 'increment': not atomic"
        assert error.operation == "increment"

    def test_to_dict(self) -> None:
        error = CorruptEntryError("bad payload", details={"preview": "{"})
        assert error.to_dict() == {
            "error": "CorruptEntryError",
            "error_code": "CORRUPT_ENTRY",
            "message": "bad payload",
            "details": {"preview": "{"},
        }

    def test_extract_error_code(self) -> None:
        assert extract_error_code(TransientBackendError("timeout")) == ErrorCode.BACKEND_UNAVAILABLE
        assert extract_error_code(ValueError("x")) == ErrorCode.INTERNAL_ERROR
