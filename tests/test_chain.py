"""Tests for the submission event chain."""

import pytest
from pydantic import ValidationError

from hwchain.chain.builder import (
    ChainBuilder,
    ChainState,
    compute_event_hash,
    compute_final_hash,
)
from hwchain.chain.events import AnswerEditPayload, EventKind
from hwchain.config import GENESIS_HASH
from hwchain.errors import AlreadyFinalized, InvalidEvent, NonMonotonicTime

IDENTITY = {"assignment_id": "hw-1", "student_id": "s-1"}
T0 = 1_700_000_000_000


def _chain(**kwargs):
    return ChainBuilder.start(IDENTITY, timestamp=T0, **kwargs)


def test_start_records_start_event():
    chain = _chain()
    (event,) = chain.events()
    assert event.sequence == 1
    assert event.kind is EventKind.START
    assert event.prev_hash == GENESIS_HASH
    assert chain.state is ChainState.STARTED
    assert chain.final_hash is None


def test_append_links_events():
    chain = _chain()
    e2 = chain.append("answer_edit", {"answer": "x=1"}, T0 + 1)
    e3 = chain.append(EventKind.HINT_REQUEST, {"topic": "algebra"}, T0 + 2)
    e1 = chain.events()[0]
    assert [e.sequence for e in chain.events()] == [1, 2, 3]
    assert e2.prev_hash == e1.event_hash
    assert e3.prev_hash == e2.event_hash
    assert chain.state is ChainState.IN_PROGRESS


def test_event_hash_is_recomputable():
    chain = _chain()
    e = chain.append("retry", {"question_id": "q3", "attempt": 2}, T0 + 5)
    assert e.event_hash == compute_event_hash(
        e.sequence, e.kind.value, e.payload, e.timestamp, e.prev_hash
    )


def test_payload_defaults_are_hashed():
    chain = _chain()
    e = chain.append("answer_edit", {"answer": "x=1"}, T0)
    assert e.payload == {"question_id": None, "answer": "x=1"}


def test_payload_field_order_irrelevant():
    a = _chain()
    b = _chain()
    ea = a.append("answer_edit", {"answer": "x=1", "question_id": "q1"}, T0 + 1)
    eb = b.append("answer_edit", {"question_id": "q1", "answer": "x=1"}, T0 + 1)
    assert ea.event_hash == eb.event_hash


def test_payload_model_accepted():
    chain = _chain()
    e = chain.append("answer_edit", AnswerEditPayload(answer="x=1"), T0)
    assert e.payload["answer"] == "x=1"


def test_equal_timestamps_allowed():
    chain = _chain()
    chain.append("hint_request", {"topic": "a"}, T0)
    chain.append("hint_request", {"topic": "b"}, T0)
    assert [e.sequence for e in chain.events()] == [1, 2, 3]


def test_time_regression_rejected():
    chain = _chain()
    chain.append("answer_edit", {"answer": "x=1"}, T0 + 10)
    with pytest.raises(NonMonotonicTime, match="precedes"):
        chain.append("answer_edit", {"answer": "x=2"}, T0 + 9)
    assert len(chain) == 2


def test_clock_used_when_no_timestamp():
    ticks = iter([T0, T0 + 7])
    chain = ChainBuilder.start(IDENTITY, clock=lambda: next(ticks))
    e = chain.append("hint_request", {"topic": "fractions"})
    assert chain.events()[0].timestamp == T0
    assert e.timestamp == T0 + 7


def test_clock_regression_reported():
    ticks = iter([T0, T0 - 1])
    chain = ChainBuilder.start(IDENTITY, clock=lambda: next(ticks))
    with pytest.raises(NonMonotonicTime):
        chain.append("hint_request", {"topic": "fractions"})


@pytest.mark.parametrize("kind", ["start", "finalize", EventKind.FINALIZE])
def test_reserved_kinds_rejected(kind):
    chain = _chain()
    with pytest.raises(InvalidEvent, match="recorded by the chain"):
        chain.append(kind, {}, T0)
    assert len(chain) == 1


@pytest.mark.parametrize(
    "kind, payload",
    [
        ("answer_edit", {"answer": "x", "score": 3}),  # unknown field
        ("answer_edit", {}),  # missing answer
        ("answer_edit", {"answer": 5}),  # wrong type
        ("retry", {"attempt": 0}),
        ("retry", {"attempt": "2"}),
        ("hint_request", {"topic": "a", "extra": None}),
        ("answer_edit", {"answer": "\ud800"}),  # lone surrogate
        ("answer_edit", {"answer": "x", "question_id": "q\udfff"}),
    ],
)
def test_bad_payload_rejected(kind, payload):
    chain = _chain()
    with pytest.raises(InvalidEvent):
        chain.append(kind, payload, T0)
    assert len(chain) == 1


def test_unknown_kind_rejected():
    chain = _chain()
    with pytest.raises(InvalidEvent, match="unknown event kind"):
        chain.append("grade_override", {}, T0)


@pytest.mark.parametrize("ts", [1.5, "1700000000000", True, -1])
def test_bad_timestamp_rejected(ts):
    chain = _chain()
    with pytest.raises(InvalidEvent):
        chain.append("hint_request", {"topic": "a"}, ts)


@pytest.mark.parametrize(
    "identity",
    [
        {"assignment_id": "", "student_id": "s"},
        {"assignment_id": "hw/../x", "student_id": "s"},
        {"assignment_id": "hw"},
        {"assignment_id": "hw", "student_id": "s\ud800"},
    ],
)
def test_bad_identity_rejected(identity):
    with pytest.raises(InvalidEvent, match="identity"):
        ChainBuilder.start(identity, timestamp=T0)


def test_finalize_appends_marker():
    chain = _chain()
    chain.append("answer_edit", {"answer": "x=1"}, T0 + 1)
    sealed = chain.finalize(T0 + 2)
    assert [e.kind for e in sealed.events()] == [
        EventKind.START, EventKind.ANSWER_EDIT, EventKind.FINALIZE,
    ]
    assert chain.state is ChainState.FINALIZED
    assert sealed.state is ChainState.FINALIZED
    last = sealed.events()[-1]
    assert sealed.final_hash == compute_final_hash(chain.identity, last.event_hash, 3)


def test_append_after_finalize():
    chain = _chain()
    chain.append("answer_edit", {"answer": "x=1"}, T0 + 1)
    chain.finalize(T0 + 2)
    with pytest.raises(AlreadyFinalized):
        chain.append("answer_edit", {"answer": "x=2"}, T0 + 3)
    assert len(chain) == 3


def test_finalize_twice():
    chain = _chain()
    sealed = chain.finalize(T0)
    with pytest.raises(AlreadyFinalized):
        chain.finalize(T0 + 1)
    # stored hash is still readable
    assert chain.final_hash == sealed.final_hash
    assert len(chain) == 2


def test_start_only_chain_finalizes():
    chain = _chain()
    sealed = chain.finalize(T0)
    assert len(sealed) == 2
    assert len(sealed.final_hash) == 64


def test_known_hashes():
    # independent of process, platform and dict construction order
    chain = ChainBuilder.start({"student_id": "s-1", "assignment_id": "hw-1"}, timestamp=T0)
    sealed = chain.finalize(T0)
    start, fin = sealed.events()
    assert start.event_hash == "f4eb15cf701abe8c99c3af33d40c6b8bfe9d37c0c17ed74560e21792ebb65cf8"
    assert fin.event_hash == "18b79ba129b6776160f76d5d55d0be0bf79fb841cddd32b53959e9c64fbf44c0"
    assert sealed.final_hash == "fb387afcbaac3b99fec54a58e8990fe910d3dca8997cd8f3550ceb48a24bbdab"


def _build(identity):
    chain = ChainBuilder.start(identity, timestamp=T0)
    chain.append("answer_edit", {"answer": "x=1"}, T0 + 1)
    chain.append("hint_request", {"topic": "algebra"}, T0 + 2)
    return chain.finalize(T0 + 3)


def test_identical_chains_identical_final_hash():
    assert _build(IDENTITY).final_hash == _build(dict(IDENTITY)).final_hash


def test_identity_changes_final_hash():
    other = {"assignment_id": "hw-1", "student_id": "s-2"}
    assert _build(IDENTITY).final_hash != _build(other).final_hash


def test_events_are_frozen():
    chain = _chain()
    event = chain.events()[0]
    with pytest.raises(ValidationError):
        event.timestamp = 0


def test_events_view_is_a_copy():
    chain = _chain()
    view = chain.events()
    chain.append("hint_request", {"topic": "a"}, T0)
    assert len(view) == 1
    assert len(chain.events()) == 2
