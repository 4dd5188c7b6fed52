"""Verification report types."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class DivergenceReason(str, Enum):
    """Which check failed."""

    SEQUENCE_GAP = "sequence_gap"
    KIND_MISPLACED = "kind_misplaced"
    NON_MONOTONIC_TIME = "non_monotonic_time"
    PREV_HASH_MISMATCH = "prev_hash_mismatch"
    PAYLOAD_INVALID = "payload_invalid"
    EVENT_HASH_MISMATCH = "event_hash_mismatch"
    FINAL_HASH_MISMATCH = "final_hash_mismatch"
    FINAL_HASH_MISSING = "final_hash_missing"
    UNEXPECTED_FINAL_HASH = "unexpected_final_hash"
    EMPTY_CHAIN = "empty_chain"
    MALFORMED = "malformed"


@dataclass(frozen=True)
class Divergence:
    """One failed check.

    ``index`` is the 1-based position of the event in the chain.  Checks on
    the final hash report the position of the last event; structural
    failures that have no event report 0.
    """

    index: int
    reason: DivergenceReason
    message: str
    expected: Optional[Any] = None
    recorded: Optional[Any] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "index": self.index,
            "reason": self.reason.value,
            "message": self.message,
            "expected": self.expected,
            "recorded": self.recorded,
        }


@dataclass
class VerificationReport:
    """Outcome of verifying one chain.

    ``final_hash`` is the recomputed value (None when the chain is not
    finalized); ``recorded_final_hash`` is what the chain claimed.
    """

    assignment_id: Optional[str]
    student_id: Optional[str]
    event_count: int
    final_hash: Optional[str] = None
    recorded_final_hash: Optional[str] = None
    findings: List[Divergence] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.findings

    @property
    def first_divergence(self) -> Optional[Divergence]:
        if not self.findings:
            return None
        # min() keeps the first of equal indexes, i.e. check order
        return min(self.findings, key=lambda f: f.index)

    @property
    def finalized(self) -> bool:
        return self.recorded_final_hash is not None

    def summary(self) -> str:
        first = self.first_divergence
        if first is None:
            return "submission verified"
        return f"submission flagged at event {first.index} ({first.reason.value})"

    def to_dict(self) -> Dict[str, Any]:
        first = self.first_divergence
        return {
            "ok": self.ok,
            "assignment_id": self.assignment_id,
            "student_id": self.student_id,
            "event_count": self.event_count,
            "final_hash": self.final_hash,
            "recorded_final_hash": self.recorded_final_hash,
            "first_divergence": first.to_dict() if first else None,
            "findings": [f.to_dict() for f in self.findings],
        }
