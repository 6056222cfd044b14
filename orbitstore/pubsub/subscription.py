"""A subscription to a pubsub topic that emits incoming messages as events.

The ``ipfs`` object must provide ``pubsub_subscribe(topic)``, returning an
object with a blocking ``next()`` and a ``close()``, ``pubsub_peers(topic)``
and ``self_id()``. Messages returned by ``next()`` carry ``sender``,
``topics`` and ``data`` attributes.
"""

from __future__ import annotations

import logging
import threading
from typing import Any

from orbitstore.emitter import EventEmitter
from orbitstore.pubsub.events import EventPeerJoin, EventPeerLeave, MessageEvent
from orbitstore.pubsub.peermonitor import DEFAULT_POLL_INTERVAL, PeerMonitor

logger = logging.getLogger("orbitstore.pubsub")


class SubscriptionError(Exception):
    """Raised when a subscription cannot be created."""


class Subscription(EventEmitter):
    """Emits ``MessageEvent`` for messages from other peers, and peer join/leave events."""

    poll_interval: float = DEFAULT_POLL_INTERVAL

    def __init__(
        self,
        ipfs: Any,
        topic: str,
        pubsub_subscription: Any,
        self_id: Any,
        *,
        poll_interval: float | None = None,
    ) -> None:
        super().__init__()
        self.topic = topic
        self.self_id = self_id
        self._sub = pubsub_subscription
        self._closed = threading.Event()
        interval = self.poll_interval if poll_interval is None else poll_interval
        self._monitor = PeerMonitor(ipfs, topic, start=False, poll_interval=interval)
        self._monitor.subscribe(self._on_peer_event)
        self._listener = threading.Thread(
            target=self._listen, name=f"subscription:{topic}", daemon=True
        )
        self._listener.start()
        self._monitor.start()

    @classmethod
    def create(cls, ipfs: Any, topic: str) -> "Subscription":
        """Subscribe to ``topic`` and start listening for messages and peers."""
        pubsub_subscription = ipfs.pubsub_subscribe(topic)
        try:
            self_id = ipfs.self_id()
        except Exception as exc:
            raise SubscriptionError("unable to get id for user") from exc
        return cls(ipfs, topic, pubsub_subscription, self_id)

    @property
    def closed(self) -> bool:
        """Whether the subscription has been closed."""
        return self._closed.is_set()

    def close(self) -> None:
        """Close the underlying subscription; errors are logged, not raised."""
        self._closed.set()
        self._monitor.stop()
        try:
            self._sub.close()
        except Exception:
            logger.exception("error while closing subscription")

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _on_peer_event(self, event: Any) -> None:
        if isinstance(event, EventPeerJoin):
            logger.debug("peer %s joined topic %s", event.peer, self.topic)
        elif isinstance(event, EventPeerLeave):
            logger.debug("peer %s left topic %s", event.peer, self.topic)
        self.emit(event)

    def _listen(self) -> None:
        while True:
            try:
                message = self._sub.next()
            except Exception:
                if not self._closed.is_set():
                    logger.exception("unable to get pub sub message")
                return

            if message.sender == self.self_id:
                continue

            topics = list(message.topics)
            if not topics or topics[0] != self.topic:
                logger.debug("message is from another topic, ignoring")
                continue

            logger.debug("got pub sub message from %s", message.sender)
            self.emit(MessageEvent(self.topic, bytes(message.data)))