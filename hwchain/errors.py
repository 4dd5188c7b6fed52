"""Exception taxonomy for chain building and the submission store.

Chain-invariant violations and storage failures are raised to the caller.
Tampering found after the fact is not an exception: the verifier reports
it as a finding (see ``hwchain.verify.report``).
"""

from __future__ import annotations


class ChainError(Exception):
    """Base class for errors raised while building a chain."""


class AlreadyFinalized(ChainError):
    """Raised when appending to, or finalizing, a sealed chain."""


class NonMonotonicTime(ChainError):
    """Raised when an event timestamp precedes the previous event's."""

    def __init__(self, previous: int, given: int) -> None:
        super().__init__(
            f"timestamp {given} precedes previous event timestamp {previous}"
        )
        self.previous = previous
        self.given = given


class InvalidEvent(ChainError):
    """Raised when an event kind or payload cannot be recorded."""


class StoreError(Exception):
    """Base class for submission store failures."""


class MalformedPersistedData(StoreError):
    """Raised when a persisted submission is structurally invalid."""


class StoreIOError(StoreError):
    """Raised when the underlying storage read or write fails."""


class StoreLocked(StoreError):
    """Raised when another writer holds the lock on a submission path."""
