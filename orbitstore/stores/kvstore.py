"""A key-value store built on an operation log."""

from __future__ import annotations

from typing import Any, Dict, Optional

from orbitstore.stores.basestore import BaseStore, StoreError, StoreOptions
from orbitstore.stores.indexes import KeyValueIndex
from orbitstore.stores.operation import Operation, OperationError, parse_operation
from orbitstore.stores.registry import register_store


class KeyValueStore(BaseStore):
    """A store mapping string keys to byte values."""

    store_type = "keyvalue"

    def __init__(
        self,
        ipfs: Any,
        identity: Any,
        address: Any,
        options: Optional[StoreOptions] = None,
    ) -> None:
        options = options if options is not None else StoreOptions()
        options.index = KeyValueIndex
        super().__init__(ipfs, identity, address, options)

    def all(self) -> Dict[str, Optional[bytes]]:
        """Return every key with its current value."""
        return dict(self.index)

    def put(self, key: str, value: bytes) -> Operation:
        """Set ``key`` to ``value`` and return the written operation."""
        return self._write(Operation(key=key, op="PUT", value=value))

    def delete(self, key: str) -> Operation:
        """Remove ``key`` and return the written operation."""
        return self._write(Operation(key=key, op="DEL", value=None))

    def get(self, key: str) -> Optional[bytes]:
        """Return the value of ``key``, or ``None`` when it is not set."""
        value = self.index.get(key)
        if value is None:
            return None
        if not isinstance(value, (bytes, bytearray)):
            raise StoreError("unable to cast to bytes")
        return bytes(value)

    def _write(self, op: Operation) -> Operation:
        entry = self.add_operation(op)
        try:
            return parse_operation(entry)
        except OperationError as exc:
            raise StoreError("unable to parse newly created entry") from exc


register_store("keyvalue", KeyValueStore)