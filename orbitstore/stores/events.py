"""Events emitted by stores."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Sequence


@dataclass(frozen=True)
class EventReplicateProgress:
    """The current replication progress of a store."""

    address: Any
    hash: Any
    entry: Any
    replication_status: Any


@dataclass(frozen=True)
class EventReplicated:
    """Data has been replicated into the store."""

    address: Any
    log_length: int


@dataclass(frozen=True)
class EventLoad:
    """The store started loading from the given heads."""

    address: Any
    heads: Sequence[Any]


@dataclass(frozen=True)
class EventReady:
    """The store is loaded and ready."""

    address: Any
    heads: Sequence[Any]


@dataclass(frozen=True)
class EventWrite:
    """An entry was written to the store."""

    address: Any
    entry: Any
    heads: Sequence[Any]


@dataclass(frozen=True)
class EventClosed:
    """The store was closed."""

    address: Any


@dataclass(frozen=True)
class EventNewPeer:
    """A new peer was discovered on the store's pubsub channel."""

    peer: Any