"""Events emitted by the replicator while it fetches log entries."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Sequence


@dataclass(frozen=True)
class EventLoadAdded:
    """A hash was taken from the queue and is being fetched."""

    hash: Any


@dataclass(frozen=True)
class EventLoadProgress:
    """An entry was fetched; ``buffer_length`` logs wait to be merged."""

    id: str
    hash: Any
    latest: Any
    extra: Any
    buffer_length: int


@dataclass(frozen=True)
class EventLoadEnd:
    """A batch of fetched logs is ready to be joined into the store."""

    logs: Sequence[Any]