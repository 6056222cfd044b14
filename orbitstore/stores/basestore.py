"""The store base shared by the event log and key-value stores.

Collaborators are duck-typed:

- ``ipfs`` provides ``unixfs_add(data) -> cid`` and ``unixfs_get(path) -> bytes``.
- ``identity`` has ``id``, ``public_key`` and ``provider``.
- ``address`` has ``path`` and gives its full form through ``str()``.
- ``StoreOptions.cache`` is a mutable mapping of ``str`` keys to ``bytes``;
  a ``close()`` method is called when the store closes, if it has one.
- ``StoreOptions.log_backend`` creates and (de)serializes logs and entries:
  ``new_log(identity, log_id, access_controller)``,
  ``from_entry_hash(identity, hash, log_id, access_controller, length, exclude)``,
  ``from_snapshot(identity, log_id, heads, entries, access_controller)``,
  ``write_entry(entry) -> hash``, ``entry_to_json(entry) -> dict`` and
  ``entry_from_json(doc) -> entry``.
- A log has ``id``, ordered ``values``, ``heads``, ``entries`` (a mapping keyed
  by the string form of each hash), ``append(payload, pointer_count) -> entry``
  and ``join(other, size) -> log``.
- An entry has ``hash``, ``payload``, ``next`` and ``clock.time``.
- An access controller has ``can_append(entry, identity_provider, context)``,
  which raises when the entry may not be added.
"""

from __future__ import annotations

import json
import logging
import struct
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from orbitstore.emitter import EventEmitter
from orbitstore.stores.events import (
    EventClosed,
    EventLoad,
    EventReady,
    EventReplicated,
    EventReplicateProgress,
    EventWrite,
)
from orbitstore.stores.indexes import BaseIndex
from orbitstore.stores.operation import Operation
from orbitstore.stores.replication_info import ReplicationInfo
from orbitstore.stores.replicator import DEFAULT_FLUSH_INTERVAL, Replicator
from orbitstore.stores.replicator_events import (
    EventLoadAdded,
    EventLoadEnd,
    EventLoadProgress,
)

DEFAULT_REFERENCE_COUNT = 64
DEFAULT_DIRECTORY = "./orbitdb"

_MAX_CHUNK = 0xFFFF

logger = logging.getLogger("orbitstore.stores.basestore")


class StoreError(Exception):
    """Raised when a store operation fails."""


def _dumps(value: Any) -> bytes:
    return json.dumps(value, separators=(",", ":")).encode("utf-8")


def _frame(payload: bytes) -> bytes:
    if len(payload) > _MAX_CHUNK:
        raise StoreError("snapshot chunk is too large to be framed")
    return struct.pack(">H", len(payload)) + payload


def _read_chunk(data: bytes, offset: int) -> Tuple[bytes, int]:
    if offset + 2 > len(data):
        raise StoreError("unable to read from stream")
    (length,) = struct.unpack_from(">H", data, offset)
    start = offset + 2
    end = start + length
    if end > len(data):
        raise StoreError("unable to read from stream")
    return data[start:end], end


def encode_snapshot(
    log_id: str,
    heads: Sequence[Dict[str, Any]],
    entries: Sequence[Dict[str, Any]],
    store_type: str,
) -> bytes:
    """Frame a snapshot: a length-prefixed JSON header, each entry, then a zero byte.

    ``heads`` and ``entries`` are the JSON documents of the log's entries.
    """
    header: Dict[str, Any] = {}
    if log_id:
        header["id"] = log_id
    if heads:
        header["heads"] = list(heads)
    if entries:
        header["size"] = len(entries)
    if store_type:
        header["type"] = store_type

    parts = [_frame(_dumps(header))]
    parts.extend(_frame(_dumps(entry)) for entry in entries)
    parts.append(b"\x00")
    return b"".join(parts)


def decode_snapshot(data: bytes) -> Tuple[Dict[str, Any], List[Dict[str, Any]]]:
    """Read a snapshot back into its header and its entries' JSON documents."""
    data = bytes(data)
    raw_header, offset = _read_chunk(data, 0)
    try:
        header = json.loads(raw_header)
    except ValueError as exc:
        raise StoreError("unable to decode header from ipfs data") from exc
    if not isinstance(header, dict):
        raise StoreError("unable to decode header from ipfs data")

    size = header.get("size", 0)
    if not isinstance(size, int) or isinstance(size, bool) or size < 0:
        raise StoreError("invalid snapshot size")

    entries: List[Dict[str, Any]] = []
    for _ in range(size):
        raw_entry, offset = _read_chunk(data, offset)
        try:
            entries.append(json.loads(raw_entry))
        except ValueError as exc:
            raise StoreError("unable to unmarshal entry from ipfs data") from exc
    return header, entries


@dataclass
class StoreOptions:
    """Options used to create a store."""

    log_backend: Any = None
    cache: Any = field(default_factory=dict)
    cache_destroy: Optional[Callable[[], None]] = None
    access_controller: Any = None
    index: Optional[Callable[[bytes], Any]] = None
    replication_concurrency: int = 0
    reference_count: Optional[int] = None
    directory: str = ""
    replicate: Optional[bool] = None
    max_history: Optional[int] = None
    replication_flush_interval: float = DEFAULT_FLUSH_INTERVAL


class _OwnerAccessController:
    """Lets only the listed writers append; ``*`` lets anyone."""

    def __init__(self, writers: Iterable[str]) -> None:
        self._writers = list(writers)

    def get_authorized_by_role(self, role: str) -> List[str]:
        return list(self._writers) if role == "write" else []

    def can_append(self, entry: Any, identity_provider: Any, context: Any) -> None:
        writer = getattr(getattr(entry, "identity", None), "id", None)
        if "*" in self._writers or writer in self._writers:
            return
        raise PermissionError("not allowed to write entry")


class _CanAppendContext:
    """Gives access controllers a view of the log being appended to."""

    def __init__(self, log: Any) -> None:
        self._log = log

    def get_log_entries(self) -> List[Any]:
        return list(self._log.entries.values())


class BaseStore(EventEmitter):
    """Keeps an operation log, its index, its cache and its replication state."""

    store_type = "store"

    def __init__(
        self,
        ipfs: Any,
        identity: Any,
        address: Any,
        options: Optional[StoreOptions] = None,
    ) -> None:
        super().__init__()
        if identity is None:
            raise StoreError("identity required")
        options = options if options is not None else StoreOptions()
        if options.log_backend is None:
            raise StoreError("log backend required")

        self.ipfs = ipfs
        self.identity = identity
        self.address = address
        self.id = str(address)
        self.db_name = address.path
        self.options = options
        self._backend = options.log_backend
        self._cache = options.cache
        self._lock = threading.RLock()

        if options.access_controller is not None:
            self.access_controller = options.access_controller
        else:
            self.access_controller = _OwnerAccessController([identity.id])

        self._oplog = self._new_log()

        if options.index is None:
            options.index = BaseIndex
        self.index = options.index(identity.public_key)
        self.replication_status = ReplicationInfo()

        self.snapshot_bytes_loaded = -1
        self.sync_requests_received = 0
        self.reference_count = (
            DEFAULT_REFERENCE_COUNT
            if options.reference_count is None
            else options.reference_count
        )
        self.directory = options.directory or DEFAULT_DIRECTORY
        self.replicate = True if options.replicate is None else options.replicate
        self.on_close: Optional[Callable[[Any], None]] = None

        self._replicator = Replicator(
            self,
            options.replication_concurrency,
            flush_interval=options.replication_flush_interval,
        )
        self._replicator.subscribe(self._on_replicator_event)

    @property
    def oplog(self) -> Any:
        """The store's operation log."""
        with self._lock:
            return self._oplog

    @property
    def replicator(self) -> Replicator:
        """The replicator fetching missing entries for this store."""
        return self._replicator

    def has_entry(self, hash_: Any) -> bool:
        """Tell whether the oplog holds the entry with ``hash_``."""
        return str(hash_) in self.oplog.entries

    def fetch_log(self, hash_: Any, length: int) -> Any:
        """Fetch a log of at most ``length`` entries reachable from ``hash_``."""
        return self._backend.from_entry_hash(
            identity=self.identity,
            hash=hash_,
            log_id=self.oplog.id,
            access_controller=self.access_controller,
            length=length,
            exclude=(),
        )

    def close(self) -> None:
        """Stop replication, reset statistics, emit ``EventClosed`` and close the cache."""
        if self.on_close is not None:
            self.on_close(self.address)

        self._replicator.stop()
        self.replication_status.reset()

        with self._lock:
            self.snapshot_bytes_loaded = -1
            self.sync_requests_received = 0

        self.emit(EventClosed(self.address))
        self.unsubscribe_all()

        close_cache = getattr(self._cache, "close", None)
        if close_cache is not None:
            try:
                close_cache()
            except Exception as exc:
                raise StoreError("unable to close cache") from exc

    def drop(self) -> None:
        """Close the store, destroy its cache and start over with an empty log."""
        try:
            self.close()
        except StoreError as exc:
            raise StoreError("unable to close store") from exc

        try:
            if self.options.cache_destroy is not None:
                self.options.cache_destroy()
            else:
                self._cache.clear()
        except Exception as exc:
            raise StoreError("unable to destroy cache") from exc

        self.index = self.options.index(self.identity.public_key)
        new_log = self._new_log("unable to create log")
        with self._lock:
            self._oplog = new_log
        self._cache = self.options.cache

    def load(self, amount: int = -1) -> None:
        """Load the log from the heads saved in the cache, then emit ``EventReady``."""
        if amount <= 0 and self.options.max_history is not None:
            amount = self.options.max_history

        heads = self._cached_heads("_localHeads", required=True)
        heads += self._cached_heads("_remoteHeads", required=False)

        if heads:
            self.emit(EventLoad(self.address, list(heads)))

        for head in heads:
            self._recalculate_replication_max(head.clock.time)
            oplog = self.oplog
            try:
                log = self._backend.from_entry_hash(
                    identity=self.identity,
                    hash=head.hash,
                    log_id=oplog.id,
                    access_controller=self.access_controller,
                    length=amount,
                    exclude=list(oplog.values),
                )
            except Exception as exc:
                raise StoreError("unable to create log from entry hash") from exc
            try:
                joined = oplog.join(log, amount)
            except Exception as exc:
                raise StoreError("unable to join log") from exc
            with self._lock:
                self._oplog = joined

        if heads:
            self._update_index()

        self.emit(EventReady(self.address, list(self.oplog.heads)))

    def sync(self, heads: Iterable[Any]) -> None:
        """Verify and store the given heads, then replicate what they point to."""
        with self._lock:
            self.sync_requests_received += 1

        heads = list(heads)
        if not heads:
            return

        saved: List[Any] = []
        for head in heads:
            if head is None:
                logger.debug("warning: given input entry was 'null'")
                continue

            if head.next is None:
                head.next = []

            provider = self.identity.provider
            if provider is None:
                raise StoreError("identity-provider is required, cannot verify entry")

            try:
                self.access_controller.can_append(
                    head, provider, _CanAppendContext(self.oplog)
                )
            except Exception as exc:
                logger.debug(
                    "warning: given input entry is not allowed in this log and was "
                    "discarded (no write access): %s",
                    exc,
                )
                continue

            try:
                hash_ = self._backend.write_entry(head)
            except Exception as exc:
                raise StoreError("unable to write entry on dag") from exc

            if str(hash_) != str(head.hash):
                raise StoreError("WARNING! Head hash didn't match the contents")

            saved.append(hash_)

        self._replicator.load(saved)

    def load_more_from(self, amount: int, cids: Iterable[Any]) -> None:
        """Replicate the entries with the given hashes."""
        self._replicator.load(cids)

    def save_snapshot(self) -> Any:
        """Write the whole log to ipfs and remember the snapshot and queue in the cache."""
        unfinished = self._replicator.get_queue()
        oplog = self.oplog

        to_json = self._backend.entry_to_json
        data = encode_snapshot(
            oplog.id,
            [to_json(entry) for entry in oplog.heads],
            [to_json(entry) for entry in oplog.values],
            self.store_type,
        )

        try:
            cid = self.ipfs.unixfs_add(data)
        except Exception as exc:
            raise StoreError("unable to save log data on store") from exc

        self._cache["snapshot"] = str(cid).encode("utf-8")
        self._cache["queue"] = _dumps([str(c) for c in unfinished])

        logger.debug("saved snapshot: %s, queue length: %d", cid, len(unfinished))
        return cid

    def load_from_snapshot(self) -> None:
        """Resume the saved queue and join the log saved by ``save_snapshot``."""
        self.emit(EventLoad(self.address, []))

        raw_queue = self._cache_get("queue")
        if raw_queue is not None:
            try:
                queue = json.loads(raw_queue)
            except ValueError as exc:
                raise StoreError("unable to deserialize queued CIDs") from exc
            if queue:
                self._replicator.load(queue)

        snapshot = self._cache_get("snapshot")
        if snapshot is None:
            raise StoreError("snapshot not found")

        snapshot_path = bytes(snapshot).decode("utf-8")
        logger.debug("loading snapshot from path %s", snapshot_path)
        try:
            data = self.ipfs.unixfs_get(snapshot_path)
        except Exception as exc:
            raise StoreError("unable to get snapshot from ipfs") from exc

        header, docs = decode_snapshot(data)
        from_json = self._backend.entry_from_json
        entries = [from_json(doc) for doc in docs]

        self._recalculate_replication_max(
            max((entry.clock.time for entry in entries), default=0)
        )

        head_hashes = [from_json(doc).hash for doc in header.get("heads") or ()]
        log_id = header.get("id", "")
        try:
            log = self._backend.from_snapshot(
                identity=self.identity,
                log_id=log_id,
                heads=head_hashes,
                entries=entries,
                access_controller=self.access_controller,
            )
        except Exception as exc:
            raise StoreError("unable to load log") from exc

        try:
            joined = self.oplog.join(log, -1)
        except Exception as exc:
            raise StoreError("unable to join log") from exc
        with self._lock:
            self._oplog = joined

        self._update_index()

    def add_operation(
        self, op: Operation, on_progress: Optional[Callable[[Any], None]] = None
    ) -> Any:
        """Append ``op`` to the log, update the index and emit ``EventWrite``."""
        data = op.marshal()
        oplog = self.oplog

        try:
            entry = oplog.append(data, self.reference_count)
        except Exception as exc:
            raise StoreError("unable to append data on log") from exc

        self._recalculate_replication_status(
            self.replication_status.progress + 1, entry.clock.time
        )

        self._cache["_localHeads"] = _dumps([self._backend.entry_to_json(entry)])
        self._update_index()

        self.emit(EventWrite(self.address, entry, list(oplog.heads)))

        if on_progress is not None:
            on_progress(entry)

        return entry

    def __enter__(self) -> "BaseStore":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _new_log(self, message: str = "unable to instantiate an IPFS log") -> Any:
        try:
            return self._backend.new_log(
                identity=self.identity,
                log_id=self.id,
                access_controller=self.access_controller,
            )
        except Exception as exc:
            raise StoreError(message) from exc

    def _cache_get(self, key: str) -> Optional[bytes]:
        try:
            return self._cache[key]
        except KeyError:
            return None

    def _cached_heads(self, key: str, *, required: bool) -> List[Any]:
        raw = self._cache_get(key)
        if raw is None:
            if required:
                raise StoreError("unable to get local heads from cache")
            return []
        try:
            docs = json.loads(raw)
        except ValueError as exc:
            raise StoreError(f"unable to unmarshal cached heads {key!r}") from exc
        return [self._backend.entry_from_json(doc) for doc in docs or ()]

    def _on_replicator_event(self, event: Any) -> None:
        status = self.replication_status
        if isinstance(event, EventLoadAdded):
            status.inc_queued()
        elif isinstance(event, EventLoadEnd):
            self._replication_load_complete(event.logs)
        elif isinstance(event, EventLoadProgress):
            if status.buffered > event.buffer_length:
                self._recalculate_replication_progress(
                    status.progress + event.buffer_length
                )
            else:
                self._recalculate_replication_progress(
                    len(self.oplog.values) + event.buffer_length
                )
            status.buffered = event.buffer_length
            self._recalculate_replication_max(status.progress)
            self.emit(
                EventReplicateProgress(self.address, event.hash, event.latest, status)
            )

    def _recalculate_replication_progress(self, maximum: int) -> None:
        values_len = len(self.oplog.values)
        status = self.replication_status
        if status.progress < values_len:
            status.progress = values_len
        elif status.progress < maximum:
            status.progress = maximum
        self._recalculate_replication_max(status.progress)

    def _recalculate_replication_max(self, maximum: int) -> None:
        values_len = len(self.oplog.values)
        status = self.replication_status
        if status.max < values_len:
            status.max = values_len
        elif status.max < maximum:
            status.max = maximum

    def _recalculate_replication_status(self, max_progress: int, max_total: int) -> None:
        self._recalculate_replication_progress(max_progress)
        self._recalculate_replication_max(max_total)

    def _update_index(self) -> None:
        self._recalculate_replication_max(0)
        try:
            self.index.update_index(self.oplog, [])
        except Exception as exc:
            raise StoreError("unable to update index") from exc
        self._recalculate_replication_progress(0)

    def _replication_load_complete(self, logs: Sequence[Any]) -> None:
        logger.debug("replication load complete")
        for log in logs:
            try:
                joined = self.oplog.join(log, -1)
            except Exception:
                logger.exception("unable to join logs")
                return
            with self._lock:
                self._oplog = joined

        self.replication_status.decrease_queued(len(logs))
        self.replication_status.buffered = self._replicator.get_buffer_len()
        try:
            self._update_index()
        except StoreError:
            logger.exception("unable to update index")
            return

        heads = list(self.oplog.heads)
        try:
            self._cache["_remoteHeads"] = _dumps(
                [self._backend.entry_to_json(head) for head in heads]
            )
        except Exception:
            logger.exception("unable to update heads cache")
            return

        logger.debug("saved heads %d", len(heads))
        self.emit(EventReplicated(self.address, len(logs)))