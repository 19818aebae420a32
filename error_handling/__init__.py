"""Error types and retry handling for chainsync."""

from .exceptions import (
    ChainSyncError,
    CodecError,
    ConflictError,
    InvalidArgument,
    InvalidShape,
    KeyBusyError,
    NonTokenError,
    PersistenceError,
    QueueFullError,
    UnsupportedType,
    UpstreamError,
    ValidationError,
)
from .retry import RetryPolicy

__all__ = [
    'ChainSyncError',
    'CodecError',
    'ConflictError',
    'InvalidArgument',
    'InvalidShape',
    'KeyBusyError',
    'NonTokenError',
    'PersistenceError',
    'QueueFullError',
    'UnsupportedType',
    'UpstreamError',
    'ValidationError',
    'RetryPolicy',
]
