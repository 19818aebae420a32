"""Input validation for addresses, hashes and strings."""
import re
from typing import Any, Optional, Type

from error_handling.exceptions import InvalidArgument, ValidationError

ADDRESS_PATTERN = re.compile(r'^0x[0-9a-fA-F]{40}$')
TRANSACTION_HASH_PATTERN = re.compile(r'^0x[0-9a-fA-F]{64}$')


def is_address(thing: Any) -> bool:
    return isinstance(thing, str) and bool(ADDRESS_PATTERN.match(thing))


def is_transaction_hash(thing: Any) -> bool:
    return isinstance(thing, str) and bool(TRANSACTION_HASH_PATTERN.match(thing))


def _fail(message: str, prefix: Optional[str], error: Type[ValidationError]) -> None:
    if prefix:
        message = f"{prefix} {message}"
    raise error(message)


def validate_is_string(thing: Any, prefix: Optional[str] = None, message: Optional[str] = None) -> str:
    if not isinstance(thing, str):
        _fail(message or f"not a string: {thing!r}", prefix, ValidationError)
    return thing


def validate_is_address(thing: Any, prefix: Optional[str] = None, message: Optional[str] = None) -> str:
    """
    Check that ``thing`` is a 0x-prefixed 20 byte hex address.

    Returns:
        The address lowercased

    Raises:
        ValidationError: If the value is not an address
    """
    if not is_address(thing):
        _fail(message or f"not an Ethereum address: {thing!r}", prefix, ValidationError)
    return thing.lower()


def validate_is_transaction_hash(thing: Any, prefix: Optional[str] = None,
                                 message: Optional[str] = None) -> str:
    """
    Check that ``thing`` is a 0x-prefixed 32 byte hex transaction hash.

    Returns:
        The hash lowercased

    Raises:
        InvalidArgument: If the value is not a transaction hash
    """
    if not is_transaction_hash(thing):
        _fail(message or f"not a transaction hash: {thing!r}", prefix, InvalidArgument)
    return thing.lower()
