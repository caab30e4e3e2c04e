"""
LatchkeySessions - Session state serialization.

One canonical format: UTF-8 JSON object. Supports strings, numbers,
booleans, None and nested dicts/lists. Pure functions over the passed
mapping only.
"""

from __future__ import annotations

import json
from typing import Any, Mapping

from .faults import SessionSerializationFault, SessionStoreCorruptedFault


def _check_keys(value: Any, path: str = "", active: frozenset = frozenset()) -> None:
    # json.dumps silently coerces int/float/bool keys to strings, which
    # would break round-trip fidelity.
    if not isinstance(value, (Mapping, list, tuple)):
        return
    if id(value) in active:
        raise SessionSerializationFault(f"circular reference at '{path or '/'}'")
    active = active | {id(value)}

    if isinstance(value, Mapping):
        for key, item in value.items():
            if not isinstance(key, str):
                raise SessionSerializationFault(
                    f"non-string key {key!r} at '{path or '/'}'"
                )
            _check_keys(item, f"{path}/{key}", active)
    else:
        for index, item in enumerate(value):
            _check_keys(item, f"{path}/{index}", active)


def serialize(data: Mapping[str, Any]) -> bytes:
    """
    Encode session state.

    Raises:
        SessionSerializationFault: Non-string key or unsupported value type
    """
    if not isinstance(data, Mapping):
        raise SessionSerializationFault(f"expected a mapping, got {type(data).__name__}")

    _check_keys(data)
    try:
        return json.dumps(dict(data), ensure_ascii=False, separators=(",", ":")).encode("utf-8")
    except (TypeError, ValueError) as e:
        raise SessionSerializationFault(str(e)) from e


def deserialize(payload: bytes) -> dict[str, Any]:
    """
    Decode session state written by ``serialize``.

    Empty payloads decode to an empty session.

    Raises:
        SessionStoreCorruptedFault: Payload is not a JSON object
    """
    if not payload:
        return {}

    try:
        data = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise SessionStoreCorruptedFault(message=f"Session data corrupted: {e}") from e

    if not isinstance(data, dict):
        raise SessionStoreCorruptedFault(
            message=f"Session data corrupted: expected object, got {type(data).__name__}"
        )
    return data
