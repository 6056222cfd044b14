"""Counters describing the progress of a store's replication."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field


@dataclass
class ReplicationInfo:
    """Replication progress, maximum, buffered and queued counters."""

    progress: int = 0
    max: int = 0
    buffered: int = 0
    queued: int = 0
    _lock: threading.Lock = field(
        default_factory=threading.Lock, init=False, repr=False, compare=False
    )

    def inc_queued(self) -> None:
        """Increment the queued counter by one."""
        with self._lock:
            self.queued += 1

    def decrease_queued(self, amount: int) -> None:
        """Decrease the queued counter by ``amount``."""
        with self._lock:
            self.queued -= amount

    def reset(self) -> None:
        """Set every counter back to zero."""
        with self._lock:
            self.progress = 0
            self.max = 0
            self.buffered = 0
            self.queued = 0