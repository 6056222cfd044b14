"""Serializable CRDT operations appended to a store's log."""

from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass, field
from typing import Any, Optional

_JSON_ESCAPES = {
    "<": "\\u003c",
    ">": "\\u003e",
    "&": "\\u0026",
    "\u2028": "\\u2028",
    "\u2029": "\\u2029",
}


class OperationError(ValueError):
    """Raised when an operation cannot be read from a log entry."""


def _escape_json(text: str) -> str:
    for char, replacement in _JSON_ESCAPES.items():
        text = text.replace(char, replacement)
    return text


@dataclass
class Operation:
    """An operation: an optional key, an operation name and a payload."""

    key: Optional[str]
    op: str
    value: Optional[bytes] = None
    entry: Any = field(default=None, compare=False, repr=False)

    def marshal(self) -> bytes:
        """Serialize the operation as compact JSON, omitting empty fields."""
        doc = {}
        if self.key is not None:
            doc["key"] = self.key
        if self.op:
            doc["op"] = self.op
        if self.value:
            doc["value"] = base64.b64encode(self.value).decode("ascii")
        text = json.dumps(doc, separators=(",", ":"), ensure_ascii=False)
        return _escape_json(text).encode("utf-8")


def parse_operation(entry: Any) -> Operation:
    """Read the operation stored in the payload of a log ``entry``."""
    if entry is None:
        raise OperationError("an entry must be provided")

    try:
        doc = json.loads(entry.payload)
    except ValueError as exc:
        raise OperationError("unable to parse operation json") from exc

    if doc is None:
        doc = {}
    if not isinstance(doc, dict):
        raise OperationError("unable to parse operation json")

    key = doc.get("key")
    if key is not None and not isinstance(key, str):
        raise OperationError("unable to parse operation json: key must be a string")

    op = doc.get("op")
    if op is None:
        op = ""
    elif not isinstance(op, str):
        raise OperationError("unable to parse operation json: op must be a string")

    raw_value = doc.get("value")
    value: Optional[bytes]
    if raw_value is None:
        value = None
    elif isinstance(raw_value, str):
        try:
            value = base64.b64decode(raw_value, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise OperationError("unable to parse operation json: invalid value") from exc
    else:
        raise OperationError("unable to parse operation json: value must be a string")

    return Operation(key=key, op=op, value=value, entry=entry)