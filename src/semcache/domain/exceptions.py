"""
Domain-level exceptions.

Hierarchical exceptions allow catching at different granularities.
A failed read is always one of these, never an empty result.
"""


class SemCacheError(Exception):
    """Base exception for all semcache errors."""

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        """Convert exception to dictionary for serialization."""
        return {
            "message": self.message,
            "details": self.details,
            "type": type(self).__name__,
        }


class DimensionMismatchError(SemCacheError):
    """Two vectors (or a vector and the configured model) disagree on length."""

    def __init__(self, expected: int, actual: int, details: dict | None = None):
        super().__init__(f"Vector dimension mismatch: {expected} vs {actual}", details)
        self.expected = expected
        self.actual = actual

    def to_dict(self) -> dict:
        result = super().to_dict()
        result["expected"] = self.expected
        result["actual"] = self.actual
        return result


class EmbeddingError(SemCacheError):
    """The embedding provider failed to produce a vector."""

    def __init__(self, message: str, model: str, details: dict | None = None):
        super().__init__(message, details)
        self.model = model


# =============================================================================
# STORE EXCEPTIONS
# =============================================================================

class StoreError(SemCacheError):
    """Backing store operation failed. Never treated as a cache miss."""

    def __init__(self, message: str, operation: str, details: dict | None = None):
        super().__init__(message, details)
        self.operation = operation

    def to_dict(self) -> dict:
        result = super().to_dict()
        result["operation"] = self.operation
        return result


class StoreConnectionError(StoreError):
    """Store unreachable (connection refused, timeout)."""
    pass


class StoreWriteError(StoreError):
    """A write did not complete; the entry must not be considered warm."""
    pass


class StoreSerializationError(StoreError):
    """A stored document could not be decoded."""
    pass
