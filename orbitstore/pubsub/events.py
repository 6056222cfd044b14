"""Events emitted by pubsub subscriptions, peer monitors and direct channels."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class MessageEvent:
    """A new message was posted on a pubsub topic."""

    topic: str
    content: bytes


@dataclass(frozen=True)
class EventPeerJoin:
    """A peer joined a watched topic."""

    peer: Any


@dataclass(frozen=True)
class EventPeerLeave:
    """A peer left a watched topic."""

    peer: Any


@dataclass(frozen=True)
class EventMessage:
    """A message was received on a direct channel."""

    payload: bytes