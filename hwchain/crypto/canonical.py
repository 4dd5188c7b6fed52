"""Canonical byte encoding of hashed records.

The encoding is JSON in the style of RFC 8785 (JCS):

- object keys sorted by UTF-16 code units, no insignificant whitespace
- strings emitted as-is in UTF-8 (no ASCII escaping, no normalisation)
- integers in plain decimal

Only ``None``, ``bool``, ``int``, ``str``, lists/tuples and dicts with
``str`` keys are accepted.  Floats are rejected outright: their textual
form is the classic source of cross-platform hash drift, and no event
field needs one.

Two records are hashed: an event (:func:`encode_event_fields`) and the
finalization record (:func:`encode_final_record`).  Their field sets are
fixed here, not by the caller.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any


# Event payloads are flat; anything this deep is hostile input.
MAX_DEPTH = 32


class CanonicalizationError(ValueError):
    """Raised when a value has no canonical encoding."""


def _utf16_key(key: str) -> bytes:
    return key.encode("utf-16-be", "surrogatepass")


def _encode(value: Any, path: str, depth: int = 0) -> str:
    if depth > MAX_DEPTH:
        raise CanonicalizationError(f"{path}: nested deeper than {MAX_DEPTH} levels")
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        try:
            return str(int(value))
        except ValueError as exc:
            # beyond sys.get_int_max_str_digits()
            raise CanonicalizationError(f"{path}: {exc}") from None
    if isinstance(value, str):
        return json.dumps(str(value), ensure_ascii=False)
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_encode(v, f"{path}[{i}]", depth + 1) for i, v in enumerate(value)) + "]"
    if isinstance(value, Mapping):
        for key in value:
            if not isinstance(key, str):
                raise CanonicalizationError(f"{path}: object key {key!r} is not a string")
        parts = []
        for key in sorted(value, key=_utf16_key):
            parts.append(json.dumps(key, ensure_ascii=False) + ":" + _encode(value[key], f"{path}.{key}", depth + 1))
        return "{" + ",".join(parts) + "}"
    raise CanonicalizationError(f"{path}: cannot encode value of type {type(value).__name__}")


def canonicalize(value: Any) -> bytes:
    """Return the canonical UTF-8 bytes for *value*."""
    text = _encode(value, "$")
    try:
        return text.encode("utf-8")
    except UnicodeEncodeError as exc:
        # lone surrogates have no UTF-8 form
        raise CanonicalizationError(f"string is not valid Unicode: {exc.reason}") from exc


def encode_event_fields(
    sequence: int,
    kind: str,
    payload: Mapping[str, Any],
    timestamp: int,
    prev_hash: str,
) -> bytes:
    """Canonical bytes of the hashed fields of one event."""
    return canonicalize(
        {
            "sequence": sequence,
            "kind": kind,
            "payload": dict(payload),
            "timestamp": timestamp,
            "prev_hash": prev_hash,
        }
    )


def encode_final_record(
    last_event_hash: str,
    assignment_id: str,
    student_id: str,
    event_count: int,
) -> bytes:
    """Canonical bytes of the finalization record."""
    return canonicalize(
        {
            "last_event_hash": last_event_hash,
            "assignment_id": assignment_id,
            "student_id": student_id,
            "event_count": event_count,
        }
    )
