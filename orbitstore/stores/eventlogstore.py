"""An append-only event log store with range queries over its entries."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Iterator, List, Optional

from orbitstore.stores.basestore import BaseStore, StoreError, StoreOptions
from orbitstore.stores.indexes import EventIndex
from orbitstore.stores.operation import Operation, OperationError, parse_operation


@dataclass
class StreamOptions:
    """Selects entries of an event log.

    ``gt``/``gte`` read forward from a hash, ``lt``/``lte`` read backward from
    one. ``amount`` limits the result: ``None`` or ``0`` mean one entry, a
    negative amount means every entry.
    """

    gt: Any = None
    gte: Any = None
    lt: Any = None
    lte: Any = None
    amount: Optional[int] = None


def _read(entries: List[Any], hash_: Any, amount: int, inclusive: bool) -> List[Any]:
    target = None if hash_ is None else str(hash_)
    start = next(
        (
            position
            for position, entry in enumerate(entries)
            if target is not None and str(entry.hash) == target
        ),
        0,
    )
    if not inclusive:
        start += 1
    return entries[start : start + amount]


def query_entries(entries: Iterable[Any], options: Optional[StreamOptions] = None) -> List[Any]:
    """Select the entries matching ``options``, oldest first."""
    options = options if options is not None else StreamOptions()
    entries = list(entries)

    if options.amount is None or options.amount == 0:
        amount = 1
    elif options.amount > -1:
        amount = options.amount
    else:
        amount = len(entries)

    if options.gt is not None or options.gte is not None:
        start = options.gt if options.gt is not None else options.gte
        return _read(entries, start, amount, options.gte is not None)

    if options.lt is not None:
        start = options.lt
    else:
        start = options.lte

    # Lower-than and last-N queries search from the latest entry backwards.
    inclusive = options.lte is not None or options.lt is None
    result = _read(entries[::-1], start, amount, inclusive)
    return result[::-1]


class EventLogStore(BaseStore):
    """A store whose entries are appended events."""

    store_type = "eventlog"

    def __init__(
        self,
        ipfs: Any,
        identity: Any,
        address: Any,
        options: Optional[StoreOptions] = None,
    ) -> None:
        options = options if options is not None else StoreOptions()
        options.index = EventIndex
        super().__init__(ipfs, identity, address, options)

    def list(self, options: Optional[StreamOptions] = None) -> List[Operation]:
        """Return the operations matching ``options``."""
        return list(self.stream(options))

    def add(self, value: bytes) -> Operation:
        """Append ``value`` as an ADD operation and return it."""
        entry = self.add_operation(Operation(key=None, op="ADD", value=value))
        try:
            return parse_operation(entry)
        except OperationError as exc:
            raise StoreError("unable to parse newly created entry") from exc

    def get(self, cid: Any) -> Optional[Operation]:
        """Return the operation at ``cid``, or ``None`` when the log is empty."""
        return next(self.stream(StreamOptions(gte=cid, amount=1)), None)

    def stream(self, options: Optional[StreamOptions] = None) -> Iterator[Operation]:
        """Iterate over the operations matching ``options``, oldest first."""
        entries = self._query(options)
        return self._operations(entries)

    def _query(self, options: Optional[StreamOptions]) -> List[Any]:
        events = self.index.get("")
        if events is None:
            return []
        if not isinstance(events, list):
            raise StoreError("unable to cast index to entries")
        return query_entries(events, options)

    @staticmethod
    def _operations(entries: List[Any]) -> Iterator[Operation]:
        for entry in entries:
            try:
                yield parse_operation(entry)
            except OperationError as exc:
                raise StoreError("unable to parse operation") from exc