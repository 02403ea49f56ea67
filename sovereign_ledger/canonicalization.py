"""
Canonical JSON Encoding

The bytes that get signed (presence attestations) and hashed (event-log
entries) must not depend on dict ordering or on how a value was typed in.
"""

import json
from decimal import Decimal
from enum import Enum
from typing import Any


def canonicalize(obj: Any) -> bytes:
    """
    Encode `obj` as canonical JSON bytes.

    - keys sorted, must be strings
    - compact separators, UTF-8
    - enums encode as their value, Decimals as their string form
    - floats are refused: amounts are integer base units and scores are
      decimal strings, and a float would make two signers disagree

    Raises:
        ValueError: on floats, non-string keys or unsupported types
    """
    return json.dumps(
        _normalize(obj),
        separators=(',', ':'),
        sort_keys=True,
        ensure_ascii=False,
    ).encode('utf-8')


def _normalize(value: Any) -> Any:
    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, Enum):
        return _normalize(value.value)
    if isinstance(value, (int, str)):
        return value
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, float):
        raise ValueError("floats cannot be canonicalized; use int base units or a decimal string")
    if isinstance(value, dict):
        out = {}
        for key, item in value.items():
            if not isinstance(key, str):
                raise ValueError(f"object keys must be strings, got {type(key).__name__}")
            out[key] = _normalize(item)
        return out
    if isinstance(value, (list, tuple)):
        return [_normalize(item) for item in value]
    raise ValueError(f"cannot canonicalize {type(value).__name__}")
