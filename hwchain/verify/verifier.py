"""Chain verifier.

Recomputes every event hash from the event's own stated fields and walks
the chain comparing against what was recorded:

1. sequence numbers run 1..N
2. ``start`` only first, ``finalize`` only last
3. timestamps never go backwards
4. ``prev_hash`` equals the previous event's *recomputed* hash
5. the payload fits its kind's schema
6. the recomputed event hash equals the stored one
7. the recomputed final hash equals the stored one

Linkage is checked against recomputed hashes, so a tampered event cannot
vouch for the event after it.  Every failed check becomes a finding; the
report's ``first_divergence`` is the earliest.  Nothing is mutated or
repaired.
"""

from __future__ import annotations

import logging
import os
from typing import List, Optional, Sequence, Tuple, Union

from hwchain.chain.builder import ChainBuilder, SealedChain, compute_event_hash, compute_final_hash
from hwchain.chain.events import Event, EventKind, SubmissionIdentity, normalize_payload
from hwchain.config import GENESIS_HASH
from hwchain.crypto.canonical import CanonicalizationError
from hwchain.errors import InvalidEvent, MalformedPersistedData
from hwchain.store import submission_store
from hwchain.store.submission_store import LoadedChain
from hwchain.verify.report import Divergence, DivergenceReason, VerificationReport

logger = logging.getLogger(__name__)

Source = Union[ChainBuilder, SealedChain, LoadedChain, bytes, bytearray, str, "os.PathLike[str]"]


def _unpack(source: Source) -> Tuple[SubmissionIdentity, Sequence[Event], Optional[str]]:
    if isinstance(source, (ChainBuilder, SealedChain)):
        return source.identity, source.events(), source.final_hash
    if isinstance(source, LoadedChain):
        return source.identity, tuple(source.events), source.final_hash
    if isinstance(source, (bytes, bytearray)):
        loaded = submission_store.loads(bytes(source))
    elif isinstance(source, str) and source.lstrip().startswith("{"):
        # JSON text; a path never starts with a brace
        loaded = submission_store.loads(source)
    elif isinstance(source, (str, os.PathLike)):
        loaded = submission_store.load(source)
    else:
        raise TypeError(f"cannot verify object of type {type(source).__name__}")
    return loaded.identity, tuple(loaded.events), loaded.final_hash


def _check_event(
    position: int,
    count: int,
    event: Event,
    expected_prev: str,
    prev_timestamp: Optional[int],
    findings: List[Divergence],
) -> Optional[str]:
    """Run the per-event checks; return the recomputed hash (None if uncomputable)."""

    def add(reason: DivergenceReason, message: str, expected=None, recorded=None) -> None:
        findings.append(Divergence(position, reason, message, expected, recorded))

    if event.sequence != position:
        add(DivergenceReason.SEQUENCE_GAP,
            f"expected sequence {position}, got {event.sequence}",
            position, event.sequence)

    if position == 1 and event.kind is not EventKind.START:
        add(DivergenceReason.KIND_MISPLACED,
            f"chain must open with a start event, got {event.kind.value}",
            EventKind.START.value, event.kind.value)
    elif position != 1 and event.kind is EventKind.START:
        add(DivergenceReason.KIND_MISPLACED, f"start event at position {position}")
    if event.kind is EventKind.FINALIZE and position != count:
        add(DivergenceReason.KIND_MISPLACED,
            f"finalize event at position {position} of {count}")

    if prev_timestamp is not None and event.timestamp < prev_timestamp:
        add(DivergenceReason.NON_MONOTONIC_TIME,
            f"timestamp {event.timestamp} precedes {prev_timestamp}",
            prev_timestamp, event.timestamp)

    if event.prev_hash != expected_prev:
        add(DivergenceReason.PREV_HASH_MISMATCH,
            f"prev_hash does not match the hash of event {position - 1}",
            expected_prev, event.prev_hash)

    try:
        if normalize_payload(event.kind, event.payload) != event.payload:
            add(DivergenceReason.PAYLOAD_INVALID,
                f"{event.kind.value} payload is missing schema fields")
    except InvalidEvent as exc:
        add(DivergenceReason.PAYLOAD_INVALID, str(exc))

    try:
        recomputed = compute_event_hash(
            event.sequence, event.kind.value, event.payload, event.timestamp, event.prev_hash
        )
    except CanonicalizationError as exc:
        add(DivergenceReason.PAYLOAD_INVALID, f"payload has no canonical encoding: {exc}")
        return None

    if recomputed != event.event_hash:
        add(DivergenceReason.EVENT_HASH_MISMATCH,
            "stored event_hash does not match the event's fields",
            recomputed, event.event_hash)
    return recomputed


def verify(source: Source, require_finalized: bool = False) -> VerificationReport:
    """Verify a chain and report the earliest divergence, if any.

    *source* is a chain object, a ``LoadedChain``, raw persisted bytes or
    JSON text, or a path to a persisted file.  Structurally malformed data
    gives a failed report; an unreadable path raises ``StoreIOError``.  With
    *require_finalized*, a chain that was never sealed also fails.
    """
    try:
        identity, events, recorded_final = _unpack(source)
    except MalformedPersistedData as exc:
        report = VerificationReport(assignment_id=None, student_id=None, event_count=0)
        report.findings.append(Divergence(0, DivergenceReason.MALFORMED, str(exc)))
        logger.warning("verification failed: %s", exc)
        return report

    count = len(events)
    report = VerificationReport(
        assignment_id=identity.assignment_id,
        student_id=identity.student_id,
        event_count=count,
        recorded_final_hash=recorded_final,
    )
    findings = report.findings

    if count == 0:
        findings.append(Divergence(0, DivergenceReason.EMPTY_CHAIN, "chain has no events"))
        return report

    expected_prev = GENESIS_HASH
    prev_timestamp: Optional[int] = None
    for position, event in enumerate(events, start=1):
        recomputed = _check_event(position, count, event, expected_prev, prev_timestamp, findings)
        # fall back to the stored hash so later links are still checked
        expected_prev = recomputed if recomputed is not None else event.event_hash
        prev_timestamp = event.timestamp

    sealed_by_marker = events[-1].kind is EventKind.FINALIZE
    if recorded_final is not None or sealed_by_marker:
        try:
            report.final_hash = compute_final_hash(identity, expected_prev, count)
        except CanonicalizationError as exc:
            findings.append(Divergence(
                count, DivergenceReason.MALFORMED,
                f"submission identity cannot be hashed: {exc}",
            ))

    if recorded_final is None:
        if sealed_by_marker:
            findings.append(Divergence(
                count, DivergenceReason.FINAL_HASH_MISSING,
                "chain ends with a finalize event but has no final_hash",
                report.final_hash, None,
            ))
        elif require_finalized:
            findings.append(Divergence(
                count, DivergenceReason.FINAL_HASH_MISSING, "chain was never finalized",
            ))
    else:
        if not sealed_by_marker:
            findings.append(Divergence(
                count, DivergenceReason.UNEXPECTED_FINAL_HASH,
                "final_hash present but the last event is not a finalize event",
            ))
        if recorded_final != report.final_hash:
            findings.append(Divergence(
                count, DivergenceReason.FINAL_HASH_MISMATCH,
                "stored final_hash does not match the chain",
                report.final_hash, recorded_final,
            ))

    if report.ok:
        logger.debug("verified %d events for %s/%s", count,
                     identity.assignment_id, identity.student_id)
    else:
        logger.warning("%s/%s: %s", identity.assignment_id, identity.student_id, report.summary())
    return report
