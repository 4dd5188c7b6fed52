"""SHA-256 digest over canonical bytes.

Every hash in a chain (event hashes and the final hash) goes through
:func:`digest`.  Digests travel as lowercase hex strings.
"""

from __future__ import annotations

import hashlib

from hwchain.config import HASH_ALGORITHM

DIGEST_HEX_LENGTH = 64


def digest(data: bytes) -> str:
    """Return the hex SHA-256 digest of *data*."""
    if not isinstance(data, (bytes, bytearray)):
        raise TypeError(f"digest() expects bytes, got {type(data).__name__}")
    return hashlib.new(HASH_ALGORITHM, bytes(data)).hexdigest()


def is_hex_digest(value: object) -> bool:
    """True if *value* looks like a digest produced by :func:`digest`."""
    if not isinstance(value, str) or len(value) != DIGEST_HEX_LENGTH:
        return False
    return all(c in "0123456789abcdef" for c in value)
