import json
from dataclasses import dataclass

import pytest

from orbitstore.stores.operation import Operation, OperationError, parse_operation


@dataclass
class FakeEntry:
    payload: bytes


def test_marshal_exact_bytes():
    op = Operation(key="k", op="PUT", value=b"hello")
    assert op.marshal() == b'{"key":"k","op":"PUT","value":"aGVsbG8="}'


def test_marshal_omits_missing_key_and_value():
    op = Operation(key=None, op="DEL")
    assert json.loads(op.marshal()) == {"op": "DEL"}


def test_marshal_omits_empty_operation_name():
    op = Operation(key="only", op="")
    assert json.loads(op.marshal()) == {"key": "only"}


def test_marshal_escapes_html_characters():
    op = Operation(key="<a&b>", op="PUT")
    raw = op.marshal()
    assert b"<" not in raw and b">" not in raw and b"&" not in raw
    assert json.loads(raw)["key"] == "<a&b>"


def test_round_trip_through_entry():
    original = Operation(key="key1", op="PUT", value=b"\x00\x01binary\xff")
    entry = FakeEntry(payload=original.marshal())
    parsed = parse_operation(entry)
    assert parsed == original
    assert parsed.entry is entry


def test_round_trip_without_key():
    original = Operation(key=None, op="ADD", value=b"hello1")
    parsed = parse_operation(FakeEntry(payload=original.marshal()))
    assert parsed.key is None
    assert parsed.op == "ADD"
    assert parsed.value == b"hello1"


def test_round_trip_without_value():
    original = Operation(key="key1", op="DEL", value=None)
    parsed = parse_operation(FakeEntry(payload=original.marshal()))
    assert parsed.value is None
    assert parsed.key == "key1"


def test_entry_not_part_of_equality():
    a = Operation(key="k", op="PUT", value=b"v", entry=FakeEntry(b"1"))
    b = Operation(key="k", op="PUT", value=b"v", entry=FakeEntry(b"2"))
    assert a == b


def test_parse_requires_entry():
    with pytest.raises(OperationError, match="an entry must be provided"):
        parse_operation(None)


def test_parse_rejects_invalid_json():
    with pytest.raises(OperationError, match="unable to parse operation json"):
        parse_operation(FakeEntry(payload=b"not json"))


def test_parse_rejects_non_object_payload():
    with pytest.raises(OperationError):
        parse_operation(FakeEntry(payload=b"[1, 2]"))


def test_parse_rejects_invalid_base64_value():
    with pytest.raises(OperationError):
        parse_operation(FakeEntry(payload=b'{"op":"PUT","value":"***"}'))


def test_parse_rejects_non_string_key():
    with pytest.raises(OperationError):
        parse_operation(FakeEntry(payload=b'{"key":3,"op":"PUT"}'))