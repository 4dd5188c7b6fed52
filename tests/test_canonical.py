"""Tests for the canonical encoder."""

import sys

import pytest

from hwchain.crypto.canonical import (
    MAX_DEPTH,
    CanonicalizationError,
    canonicalize,
    encode_event_fields,
    encode_final_record,
)


def test_key_order_does_not_matter():
    a = canonicalize({"b": 1, "a": 2})
    b = canonicalize({"a": 2, "b": 1})
    assert a == b == b'{"a":2,"b":1}'


def test_no_whitespace():
    assert canonicalize({"a": [1, 2, None, True, False]}) == b'{"a":[1,2,null,true,false]}'


def test_nested_objects_sorted():
    assert canonicalize({"z": {"y": 1, "x": 2}, "a": []}) == b'{"a":[],"z":{"x":2,"y":1}}'


def test_unicode_emitted_as_utf8():
    assert canonicalize("é∑") == '"é∑"'.encode("utf-8")


def test_control_characters_escaped():
    assert canonicalize("a\nb\"c") == b'"a\\nb\\"c"'


def test_keys_sorted_by_utf16_code_units():
    # U+1F600 encodes as a surrogate pair (D83D ...), which sorts before U+FF5E
    out = canonicalize({"\uff5e": 1, "\U0001f600": 2})
    assert out == '{"\U0001f600":2,"\uff5e":1}'.encode("utf-8")


def test_tuple_encodes_like_list():
    assert canonicalize((1, "a")) == canonicalize([1, "a"])


def test_large_integers_exact():
    assert canonicalize(2**70) == b"1180591620717411303424"


def test_float_rejected():
    with pytest.raises(CanonicalizationError, match="float"):
        canonicalize({"score": 1.5})


def test_non_string_key_rejected():
    with pytest.raises(CanonicalizationError, match="not a string"):
        canonicalize({1: "a"})


def test_unsupported_type_rejected():
    with pytest.raises(CanonicalizationError):
        canonicalize({"raw": b"bytes"})


def test_lone_surrogate_rejected():
    with pytest.raises(CanonicalizationError):
        canonicalize("\ud800")


def _nested(depth):
    value = "leaf"
    for _ in range(depth):
        value = [value]
    return value


def test_nesting_limit():
    assert canonicalize(_nested(MAX_DEPTH)).startswith(b"[" * MAX_DEPTH)
    with pytest.raises(CanonicalizationError, match="nested deeper"):
        canonicalize(_nested(MAX_DEPTH + 1))
    # far past the interpreter's recursion limit
    with pytest.raises(CanonicalizationError, match="nested deeper"):
        canonicalize({"a": _nested(100_000)})


@pytest.mark.skipif(not hasattr(sys, "get_int_max_str_digits"), reason="no int digit limit")
def test_oversized_integer_rejected():
    with pytest.raises(CanonicalizationError):
        canonicalize(10 ** (sys.get_int_max_str_digits() + 10))


def test_event_fields_layout():
    out = encode_event_fields(1, "start", {"session": "s"}, 5, "00")
    assert out == (
        b'{"kind":"start","payload":{"session":"s"},'
        b'"prev_hash":"00","sequence":1,"timestamp":5}'
    )


def test_final_record_layout():
    out = encode_final_record("ab", "hw-1", "s-1", 3)
    assert out == b'{"assignment_id":"hw-1","event_count":3,"last_event_hash":"ab","student_id":"s-1"}'
