"""Append-only hash-chained event log for one submission.

Each event carries the hash of the event before it (``GENESIS_HASH`` for
the first), so editing any recorded event breaks every link after it.

A chain has two types.  ``ChainBuilder`` is owned by the session that
records the submission; it accepts events until ``finalize()``, which
appends the ``finalize`` marker and returns a ``SealedChain``.  The
sealed chain is read-only, and the builder refuses all further writes.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from pydantic import ValidationError

from hwchain.chain.events import (
    RESERVED_KINDS,
    Event,
    EventKind,
    SubmissionIdentity,
    coerce_kind,
    normalize_payload,
)
from hwchain.config import GENESIS_HASH
from hwchain.crypto.canonical import (
    CanonicalizationError,
    canonicalize,
    encode_event_fields,
    encode_final_record,
)
from hwchain.crypto.digest import digest
from hwchain.errors import AlreadyFinalized, InvalidEvent, NonMonotonicTime

logger = logging.getLogger(__name__)

Clock = Callable[[], int]


def unix_ms_now() -> int:
    """Wall-clock time in Unix epoch milliseconds."""
    return time.time_ns() // 1_000_000


def compute_event_hash(
    sequence: int,
    kind: str,
    payload: Mapping[str, Any],
    timestamp: int,
    prev_hash: str,
) -> str:
    """Hash of one event's logical fields."""
    return digest(encode_event_fields(sequence, kind, payload, timestamp, prev_hash))


def compute_final_hash(identity: SubmissionIdentity, last_event_hash: str, event_count: int) -> str:
    """Hash sealing a chain: last event hash, identity and event count."""
    return digest(
        encode_final_record(
            last_event_hash, identity.assignment_id, identity.student_id, event_count
        )
    )


class ChainState(str, Enum):
    STARTED = "started"
    IN_PROGRESS = "in_progress"
    FINALIZED = "finalized"


@dataclass(frozen=True)
class SealedChain:
    """A finalized chain.  Read-only."""

    identity: SubmissionIdentity
    event_log: Tuple[Event, ...]
    final_hash: str

    state = ChainState.FINALIZED

    def events(self) -> Tuple[Event, ...]:
        return self.event_log

    def __len__(self) -> int:
        return len(self.event_log)


def _coerce_identity(identity: Any) -> SubmissionIdentity:
    if not isinstance(identity, SubmissionIdentity):
        try:
            identity = SubmissionIdentity.model_validate(identity)
        except ValidationError as exc:
            raise InvalidEvent(f"invalid submission identity: {exc}") from exc
    try:
        # must be hashable at finalize time
        canonicalize([identity.assignment_id, identity.student_id])
    except CanonicalizationError as exc:
        raise InvalidEvent(f"invalid submission identity: {exc}") from exc
    return identity


def _check_timestamp(timestamp: Any) -> int:
    if isinstance(timestamp, bool) or not isinstance(timestamp, int):
        raise InvalidEvent(f"timestamp must be integer milliseconds, got {timestamp!r}")
    if timestamp < 0:
        raise InvalidEvent(f"timestamp must not be negative, got {timestamp}")
    return timestamp


class ChainBuilder:
    """In-memory event chain for one submission, before it is sealed."""

    def __init__(self, identity: SubmissionIdentity, clock: Optional[Clock] = None) -> None:
        self._identity = identity
        self._clock: Clock = clock or unix_ms_now
        self._events: List[Event] = []
        self._sealed: Optional[SealedChain] = None

    @classmethod
    def start(
        cls,
        identity: SubmissionIdentity | Dict[str, str],
        timestamp: Optional[int] = None,
        clock: Optional[Clock] = None,
        session: str = "session_start",
    ) -> "ChainBuilder":
        """Create a chain with its ``start`` event already recorded."""
        chain = cls(_coerce_identity(identity), clock=clock)
        chain._push(EventKind.START, {"session": session}, timestamp)
        logger.debug(
            "started chain for assignment=%s student=%s",
            chain._identity.assignment_id,
            chain._identity.student_id,
        )
        return chain

    # ---- read access ----

    @property
    def identity(self) -> SubmissionIdentity:
        return self._identity

    @property
    def state(self) -> ChainState:
        if self._sealed is not None:
            return ChainState.FINALIZED
        if len(self._events) <= 1:
            return ChainState.STARTED
        return ChainState.IN_PROGRESS

    @property
    def final_hash(self) -> Optional[str]:
        """The stored final hash once sealed, else None."""
        return self._sealed.final_hash if self._sealed is not None else None

    @property
    def sealed(self) -> Optional[SealedChain]:
        return self._sealed

    def events(self) -> Tuple[Event, ...]:
        return tuple(self._events)

    def __len__(self) -> int:
        return len(self._events)

    # ---- writes ----

    def append(
        self,
        kind: EventKind | str,
        payload: Any = None,
        timestamp: Optional[int] = None,
    ) -> Event:
        """Record the next event.

        Raises ``AlreadyFinalized`` once sealed, ``NonMonotonicTime`` if
        *timestamp* is earlier than the previous event's, and
        ``InvalidEvent`` for reserved kinds or bad payloads.  A failed
        append leaves the chain unchanged.
        """
        self._ensure_open()
        kind = coerce_kind(kind)
        if kind in RESERVED_KINDS:
            raise InvalidEvent(f"{kind.value!r} events are recorded by the chain itself")
        return self._push(kind, payload, timestamp)

    def finalize(self, timestamp: Optional[int] = None, reason: str = "submitted") -> SealedChain:
        """Append the ``finalize`` marker and seal the chain."""
        self._ensure_open()
        last = self._push(EventKind.FINALIZE, {"reason": reason}, timestamp)
        final_hash = compute_final_hash(self._identity, last.event_hash, len(self._events))
        self._sealed = SealedChain(
            identity=self._identity,
            event_log=tuple(self._events),
            final_hash=final_hash,
        )
        logger.info(
            "finalized chain for assignment=%s student=%s (%d events, final_hash=%s)",
            self._identity.assignment_id,
            self._identity.student_id,
            len(self._events),
            final_hash,
        )
        return self._sealed

    # ---- internals ----

    def _ensure_open(self) -> None:
        if self._sealed is not None:
            raise AlreadyFinalized(
                f"chain for {self._identity.assignment_id}/{self._identity.student_id} is finalized"
            )

    def _push(self, kind: EventKind, payload: Any, timestamp: Optional[int]) -> Event:
        fields = normalize_payload(kind, payload)
        ts = _check_timestamp(self._clock() if timestamp is None else timestamp)

        if self._events:
            prev = self._events[-1]
            # equal timestamps are fine; ordering comes from sequence alone
            if ts < prev.timestamp:
                raise NonMonotonicTime(prev.timestamp, ts)
            prev_hash = prev.event_hash
            sequence = prev.sequence + 1
        else:
            prev_hash = GENESIS_HASH
            sequence = 1

        try:
            event_hash = compute_event_hash(sequence, kind.value, fields, ts, prev_hash)
        except CanonicalizationError as exc:
            raise InvalidEvent(f"{kind.value} payload cannot be hashed: {exc}") from exc

        event = Event(
            sequence=sequence,
            kind=kind,
            payload=fields,
            timestamp=ts,
            prev_hash=prev_hash,
            event_hash=event_hash,
        )
        self._events.append(event)
        logger.debug("appended %s event seq=%d hash=%s", kind.value, sequence, event.event_hash)
        return event
