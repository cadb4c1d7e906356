"""
Stable content hashes.

A workflow version's ``definition_hash`` and a configuration set's checksum
must come out identical in every process, so both are SHA-256 over one
canonical JSON rendering: sorted keys, compact separators, and fixed
encodings for the non-JSON values approval payloads carry.
"""

import hashlib
import json
from datetime import date, datetime
from enum import Enum
from typing import Any
from uuid import UUID


def _encode(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, UUID):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, (set, frozenset)):
        # Sets have no order of their own.
        return sorted(value, key=str)
    raise TypeError(f"cannot hash value of type {type(value).__name__}")


def canonicalize_json(data: Any) -> str:
    return json.dumps(data, sort_keys=True, separators=(",", ":"), default=_encode)


def hash_payload(payload: Any) -> str:
    """Hex SHA-256 of ``canonicalize_json(payload)``."""
    return hashlib.sha256(canonicalize_json(payload).encode("utf-8")).hexdigest()
