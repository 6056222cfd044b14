"""Fetches missing log entries for a store and hands them over in batches.

The store given to a ``Replicator`` must provide ``has_entry(hash)``, telling
whether its oplog already holds the entry with that hash, and
``fetch_log(hash, length)``, returning a log of at most ``length`` entries
reachable from ``hash``. A log exposes its entries as ``values``; each entry
lists the hashes it points to in ``next``.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict, Iterable, Iterator, List, Tuple

from orbitstore.emitter import EventEmitter
from orbitstore.stores.replicator_events import (
    EventLoadAdded,
    EventLoadEnd,
    EventLoadProgress,
)

BATCH_SIZE = 1
DEFAULT_CONCURRENCY = 128
DEFAULT_FLUSH_INTERVAL = 3.0

logger = logging.getLogger("orbitstore.stores.replicator")


class ReplicatorError(Exception):
    """Raised when an entry cannot be fetched."""


class Replicator(EventEmitter):
    """Queues hashes, fetches their logs and emits load events."""

    def __init__(
        self,
        store: Any,
        concurrency: int = 0,
        *,
        flush_interval: float = DEFAULT_FLUSH_INTERVAL,
    ) -> None:
        super().__init__()
        self._store = store
        self.concurrency = concurrency or DEFAULT_CONCURRENCY
        self._lock = threading.RLock()
        self._process_lock = threading.RLock()
        self._queue: Dict[str, Any] = {}
        self._fetching: Dict[str, Any] = {}
        self._buffer: List[Any] = []
        self._tasks_requested = 0
        self._tasks_started = 0
        self._tasks_processed = 0
        self._flush_interval = flush_interval
        self._stopped = threading.Event()
        self._flusher = threading.Thread(
            target=self._flush_loop, name="replicator-flush", daemon=True
        )
        self._flusher.start()

    @property
    def tasks_running(self) -> int:
        """Fetches started and not yet finished."""
        with self._lock:
            return self._tasks_started - self._tasks_processed

    @property
    def tasks_requested(self) -> int:
        """Hashes that have been added to the queue."""
        with self._lock:
            return self._tasks_requested

    @property
    def tasks_finished(self) -> int:
        """Fetches that have completed."""
        with self._lock:
            return self._tasks_processed

    def stop(self) -> None:
        """Stop the background queue flushing."""
        self._stopped.set()

    def load(self, cids: Iterable[Any]) -> None:
        """Queue the hashes not yet known, fetching or queued, then process the queue."""
        self._enqueue(cids)
        self._drain()

    def get_queue(self) -> List[Any]:
        """List the hashes waiting in the queue."""
        with self._lock:
            return list(self._queue.values())

    def get_buffer_len(self) -> int:
        """Number of fetched logs not yet handed over."""
        with self._lock:
            return len(self._buffer)

    def __enter__(self) -> "Replicator":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.stop()

    def _enqueue(self, cids: Iterable[Any]) -> None:
        for h in cids:
            key = str(h)
            in_log = self._store.has_entry(h)
            with self._lock:
                if in_log or key in self._fetching or key in self._queue:
                    continue
                self._tasks_requested += 1
                self._queue[key] = h

    def _drain(self) -> None:
        # Depth-first walk over next pointers, kept on an explicit stack so
        # long chains do not exhaust the interpreter's recursion limit.
        with self._process_lock:
            stack = [self._process_queue()]
            while stack:
                has_items, pending = stack[-1]
                hashes = next(pending, None)
                if hashes is None:
                    stack.pop()
                    continue
                self._hand_over_buffer(has_items)
                if hashes:
                    self._enqueue(hashes)
                    stack.append(self._process_queue())

    def _process_queue(self) -> Tuple[bool, Iterator[List[Any]]]:
        running = self.tasks_running
        if running >= self.concurrency:
            return False, iter(())

        capacity = self.concurrency - running
        with self._lock:
            items = dict(list(self._queue.items())[:capacity])

        hashes_list: List[List[Any]] = []
        for key, h in items.items():
            with self._lock:
                self._queue.pop(key, None)
            try:
                hashes = self._process_one(h)
            except ReplicatorError:
                logger.exception("unable to get data to process")
                return bool(items), iter(())
            hashes_list.append(hashes)

        return bool(items), iter(hashes_list)

    def _process_one(self, h: Any) -> List[Any]:
        key = str(h)
        with self._lock:
            is_fetching = key in self._fetching
        if is_fetching or self._store.has_entry(h):
            return []

        with self._lock:
            self._fetching[key] = h
        self.emit(EventLoadAdded(h))
        with self._lock:
            self._tasks_started += 1

        try:
            log = self._store.fetch_log(h, BATCH_SIZE)
        except Exception as exc:
            raise ReplicatorError("unable to fetch log") from exc

        values = list(log.values)
        with self._lock:
            self._buffer.append(log)
            self._queue.pop(key, None)
            self._tasks_processed += 1
            buffer_len = len(self._buffer)

        latest = values[0] if values else None
        self.emit(EventLoadProgress("", h, latest, None, buffer_len))

        return [n for entry in values for n in (entry.next or ())]

    def _hand_over_buffer(self, has_items: bool) -> None:
        with self._lock:
            idle = self._tasks_started == self._tasks_processed
            if not self._buffer or not (has_items or idle):
                return
            logs, self._buffer = self._buffer, []
        logger.debug("load end logs, logs found: %d", len(logs))
        self.emit(EventLoadEnd(logs))

    def _flush_loop(self) -> None:
        while not self._stopped.wait(self._flush_interval):
            with self._lock:
                queued = len(self._queue)
            if self.tasks_running == 0 and queued > 0:
                logger.debug(
                    "had to flush the queue: %d items queued, %d/%d tasks requested/finished",
                    queued,
                    self.tasks_requested,
                    self.tasks_finished,
                )
                self._drain()