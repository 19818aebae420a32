"""Error taxonomy for the chainsync engine."""
from typing import Optional


class ChainSyncError(Exception):
    """Base class for every error raised by the engine."""
    pass


class ValidationError(ChainSyncError, ValueError):
    """Malformed address, hash or string input. Never retried."""
    pass


class InvalidArgument(ValidationError):
    """Raised when an argument fails validation before any work is registered."""
    pass


class ConflictError(ChainSyncError):
    """Revision mismatch on write. Callers must re-fetch and retry."""

    def __init__(self, key: str, revision: Optional[str] = None, current: Optional[str] = None):
        self.key = key
        self.revision = revision
        self.current = current
        super().__init__(
            f"Document update conflict for '{key}': "
            f"expected revision {current!r}, got {revision!r}"
        )


class NonTokenError(ChainSyncError):
    """Address is confirmed not to be a token contract."""

    def __init__(self, address: str):
        self.address = address
        super().__init__(f"Address {address} is not a contract address.")


class CodecError(ChainSyncError):
    """Codec cannot represent a value."""
    pass


class UnsupportedType(CodecError, TypeError):
    """Value outside the supported structured value set."""

    def __init__(self, path: str, value):
        self.path = path
        self.value = value
        location = path or "<root>"
        super().__init__(
            f"Unable to serialize {type(value).__name__} at {location}. "
            "Limit input to strings, numbers, dates, sets and Decimals."
        )


class InvalidShape(CodecError, ValueError):
    """Value has a supported type in an unsupported position."""
    pass


class UpstreamError(ChainSyncError):
    """Provider or notification service failure."""

    def __init__(self, operation: str, cause: Optional[BaseException] = None):
        self.operation = operation
        self.cause = cause
        message = f"{operation} failed"
        if cause is not None:
            message = f"{message}: {cause}"
        super().__init__(message)


class PersistenceError(ChainSyncError):
    """A document could not be saved after the upstream work succeeded."""
    pass


class QueueFullError(ChainSyncError):
    """Too many operations queued for one coalescer key."""

    def __init__(self, key: str, depth: int):
        self.key = key
        self.depth = depth
        super().__init__(f"Queue for '{key}' is full ({depth} pending)")


class KeyBusyError(ChainSyncError):
    """Coalescer key already has work and the caller asked not to wait."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"An operation for '{key}' is already in flight")
