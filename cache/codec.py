"""
Tagged JSON codec for cached documents.

Documents are stored as JSON, so values JSON cannot carry natively are
written as ``{"_class": <tag>, "value": <canonical form>}``:

- ``Decimal``  -> exact decimal string
- ``Date``     -> epoch milliseconds (``datetime``, naive values taken as UTC)
- ``Set``      -> array of encoded elements (``set``/``frozenset``); members
                  decode as tuples and frozensets where they were sequences
                  or sets

Everything else must be ``None``, a number, a string, a ``dict`` with string
keys, or a ``list``/``tuple``.
"""
import json
import math
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any

from error_handling.exceptions import InvalidShape, UnsupportedType

CLASS_FIELD = '_class'
VALUE_FIELD = 'value'

DECIMAL_TAG = 'Decimal'
DATE_TAG = 'Date'
SET_TAG = 'Set'

TAGS = (DECIMAL_TAG, DATE_TAG, SET_TAG)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
ONE_MILLISECOND = timedelta(milliseconds=1)


def _add_key_to_path(path: str, key: str) -> str:
    if not path:
        return key
    return f"{path}.{key}"


def _tagged(tag: str, value: Any) -> dict:
    return {CLASS_FIELD: tag, VALUE_FIELD: value}


def _is_tagged(data: dict) -> bool:
    return (
        set(data) == {CLASS_FIELD, VALUE_FIELD}
        and data[CLASS_FIELD] in TAGS
    )


def _sort_key(encoded: Any) -> str:
    return json.dumps(encoded, sort_keys=True)


def _encode(data: Any, path: str) -> Any:
    # bool is an int subclass; both pass through unchanged
    if data is None or isinstance(data, (bool, int, str)):
        return data

    if isinstance(data, float):
        if math.isnan(data) or math.isinf(data):
            raise UnsupportedType(path, data)
        return data

    if isinstance(data, dict):
        encoded = {}
        for key, value in data.items():
            if not isinstance(key, str):
                raise UnsupportedType(_add_key_to_path(path, repr(key)), key)
            encoded[key] = _encode(value, _add_key_to_path(path, key))
        return encoded

    if isinstance(data, (list, tuple)):
        if not path:
            raise InvalidShape(
                "Cannot serialize a sequence at the root level. Please wrap it in a record."
            )
        return [_encode(item, f"{path}[{i}]") for i, item in enumerate(data)]

    if isinstance(data, Decimal):
        if not data.is_finite():
            raise UnsupportedType(path, data)
        return _tagged(DECIMAL_TAG, str(data))

    if isinstance(data, datetime):
        if data.tzinfo is None:
            data = data.replace(tzinfo=timezone.utc)
        return _tagged(DATE_TAG, (data - EPOCH) // ONE_MILLISECOND)

    if isinstance(data, (set, frozenset)):
        members = [_encode(item, f"{path}{{}}") for item in data]
        return _tagged(SET_TAG, sorted(members, key=_sort_key))

    raise UnsupportedType(path, data)


def encode(data: Any) -> Any:
    """
    Encode a structured value into its JSON-safe tagged form.

    Raises:
        InvalidShape: If ``data`` is a sequence at the root
        UnsupportedType: If any nested value is outside the supported set
    """
    return _encode(data, '')


def _frozen(member: Any) -> Any:
    # Set members come back hashable: sequences as tuples, sets as frozensets
    if isinstance(member, list):
        return tuple(_frozen(item) for item in member)
    if isinstance(member, set):
        return frozenset(member)
    return member


def _decode(data: Any, path: str) -> Any:
    if isinstance(data, dict):
        if _is_tagged(data):
            tag = data[CLASS_FIELD]
            value = data[VALUE_FIELD]

            if tag == DECIMAL_TAG:
                try:
                    return Decimal(value)
                except (InvalidOperation, TypeError) as e:
                    raise InvalidShape(f"Malformed Decimal at {path or '<root>'}: {value!r}") from e

            if tag == DATE_TAG:
                return EPOCH + value * ONE_MILLISECOND

            return {_frozen(_decode(item, f"{path}{{}}")) for item in value}

        return {
            key: _decode(value, _add_key_to_path(path, key))
            for key, value in data.items()
        }

    if isinstance(data, list):
        return [_decode(item, f"{path}[{i}]") for i, item in enumerate(data)]

    return data


def decode(data: Any) -> Any:
    """Decode a tagged JSON value back into structured Python values."""
    return _decode(data, '')


def dumps(data: Any) -> str:
    """Encode and serialize to a JSON string."""
    return json.dumps(encode(data), sort_keys=True)


def loads(raw: str) -> Any:
    """Parse a JSON string and decode it."""
    return decode(json.loads(raw))
