"""Event model for a submission chain.

Every event has one of five kinds, each with a closed payload schema:

  start         – opens the chain (always sequence 1)
  answer_edit   – the student changed an answer
  hint_request  – the student asked for a hint
  retry         – the student retried a question
  finalize      – closes the chain (always the last event)

Payload models forbid unknown fields, so the set of hashed fields per kind
is exactly the set declared here.  ``question_id`` is optional on the
per-question kinds; free-form submissions leave it null.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional, Type

from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr, ValidationError

from hwchain.errors import InvalidEvent


class EventKind(str, Enum):
    START = "start"
    ANSWER_EDIT = "answer_edit"
    HINT_REQUEST = "hint_request"
    RETRY = "retry"
    FINALIZE = "finalize"


# Kinds only the chain itself may append.
RESERVED_KINDS = frozenset({EventKind.START, EventKind.FINALIZE})


class _Payload(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True, strict=True)


class StartPayload(_Payload):
    session: str = "session_start"


class AnswerEditPayload(_Payload):
    question_id: Optional[str] = None
    answer: str


class HintRequestPayload(_Payload):
    question_id: Optional[str] = None
    topic: str


class RetryPayload(_Payload):
    question_id: Optional[str] = None
    attempt: int = Field(ge=1)


class FinalizePayload(_Payload):
    reason: str = "submitted"


PAYLOAD_MODELS: Dict[EventKind, Type[_Payload]] = {
    EventKind.START: StartPayload,
    EventKind.ANSWER_EDIT: AnswerEditPayload,
    EventKind.HINT_REQUEST: HintRequestPayload,
    EventKind.RETRY: RetryPayload,
    EventKind.FINALIZE: FinalizePayload,
}


def coerce_kind(kind: Any) -> EventKind:
    """Accept an ``EventKind`` or its string value."""
    try:
        return EventKind(kind)
    except ValueError:
        raise InvalidEvent(f"unknown event kind: {kind!r}") from None


def normalize_payload(kind: EventKind, payload: Any) -> Dict[str, Any]:
    """Validate *payload* against the schema for *kind*.

    Returns the full field dict (defaults filled in) that gets hashed.
    Raises ``InvalidEvent`` when the payload does not fit the schema.
    """
    model = PAYLOAD_MODELS[kind]
    if isinstance(payload, model):
        return payload.model_dump()
    if isinstance(payload, BaseModel):
        raise InvalidEvent(
            f"{type(payload).__name__} is not a payload for kind {kind.value!r}"
        )
    if payload is None:
        payload = {}
    try:
        return model.model_validate(payload).model_dump()
    except ValidationError as exc:
        raise InvalidEvent(f"invalid {kind.value} payload: {exc}") from exc


class SubmissionIdentity(BaseModel):
    """Which assignment, and which student, a chain belongs to."""

    model_config = ConfigDict(frozen=True, strict=True)

    # ids end up in file names, so no path separators
    assignment_id: str = Field(min_length=1, pattern=r"^[^/\\]+$")
    student_id: str = Field(min_length=1, pattern=r"^[^/\\]+$")


class Event(BaseModel):
    """One recorded, hash-linked lifecycle action."""

    model_config = ConfigDict(frozen=True)

    sequence: StrictInt
    kind: EventKind
    payload: Dict[StrictStr, Any]
    timestamp: StrictInt  # Unix epoch milliseconds
    prev_hash: StrictStr
    event_hash: StrictStr

    def to_dict(self) -> Dict[str, Any]:
        return {
            "sequence": self.sequence,
            "kind": self.kind.value,
            "payload": dict(self.payload),
            "timestamp": self.timestamp,
            "prev_hash": self.prev_hash,
            "event_hash": self.event_hash,
        }
