"""Indexes built by stores from their operation log.

A log handed to ``update_index`` exposes its entries as ``values``; entries
carry the serialized operation in ``payload``.
"""

from __future__ import annotations

import threading
from collections.abc import Mapping
from typing import Any, Dict, Iterator, List, Optional

from orbitstore.stores.operation import OperationError, parse_operation


class StoreIndexError(Exception):
    """Raised when an index cannot be rebuilt from a log."""


class BaseIndex:
    """Keeps every entry of the log."""

    def __init__(self, public_key: bytes = b"") -> None:
        self.public_key = public_key
        self._entries: List[Any] = []

    def get(self, key: str) -> List[Any]:
        """Return all entries; ``key`` is ignored."""
        return list(self._entries)

    def update_index(self, oplog: Any, entries: Any) -> None:
        """Replace the index with the log's entries."""
        self._entries = list(oplog.values)


class EventIndex:
    """Index of an event log store: the log itself."""

    def __init__(self, public_key: bytes = b"") -> None:
        self.public_key = public_key
        self._log: Any = None
        self._lock = threading.Lock()

    def get(self, key: str) -> Optional[List[Any]]:
        """Return the log's entries, or ``None`` before the first update."""
        with self._lock:
            log = self._log
        if log is None:
            return None
        return list(log.values)

    def update_index(self, oplog: Any, entries: Any) -> None:
        """Use ``oplog`` as the index."""
        with self._lock:
            self._log = oplog


class KeyValueIndex(Mapping):
    """Index of a key-value store: the latest value of each key."""

    def __init__(self, public_key: bytes = b"") -> None:
        self.public_key = public_key
        self._index: Dict[str, Optional[bytes]] = {}

    def get(self, key: str) -> Optional[bytes]:  # type: ignore[override]
        """Return the value stored under ``key``, or ``None``."""
        return self._index.get(key)

    def update_index(self, oplog: Any, entries: Any) -> None:
        """Apply the newest PUT or DEL of every key found in ``oplog``."""
        handled = set()
        for entry in reversed(list(oplog.values)):
            try:
                item = parse_operation(entry)
            except OperationError as exc:
                raise StoreIndexError("unable to parse log kv operation") from exc

            if item.key is None or item.key in handled:
                continue
            handled.add(item.key)

            if item.op == "PUT":
                self._index[item.key] = item.value
            elif item.op == "DEL":
                self._index.pop(item.key, None)

    def __getitem__(self, key: str) -> Optional[bytes]:
        return self._index[key]

    def __iter__(self) -> Iterator[str]:
        return iter(list(self._index))

    def __len__(self) -> int:
        return len(self._index)