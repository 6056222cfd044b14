"""A publish/subscribe client keeping one subscription per topic."""

from __future__ import annotations

import logging
import threading
from typing import Any, Dict

from orbitstore.pubsub.peermonitor import DEFAULT_POLL_INTERVAL
from orbitstore.pubsub.subscription import Subscription

logger = logging.getLogger("orbitstore.pubsub")


class PubSubError(Exception):
    """Raised on pubsub client misuse or failure."""


class PubSub:
    """Subscribes to, publishes on and unsubscribes from pubsub topics."""

    def __init__(
        self,
        ipfs: Any,
        peer_id: Any,
        *,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ) -> None:
        if ipfs is None:
            raise PubSubError("ipfs is not defined")
        if not all(
            callable(getattr(ipfs, name, None))
            for name in ("pubsub_subscribe", "pubsub_publish")
        ):
            raise PubSubError(
                "pubsub service is not provided by the current ipfs instance"
            )
        self._ipfs = ipfs
        self.peer_id = peer_id
        self._poll_interval = poll_interval
        self._subscriptions: Dict[str, Subscription] = {}
        self._lock = threading.RLock()

    def subscribe(self, topic: str) -> Subscription:
        """Return the subscription to ``topic``, creating it on first use."""
        with self._lock:
            existing = self._subscriptions.get(topic)
            if existing is not None:
                return existing

            logger.debug(
                "starting pubsub listener for peer %s on topic %s", self.peer_id, topic
            )
            try:
                subscription = Subscription.create(
                    self._ipfs, topic, poll_interval=self._poll_interval
                )
            except Exception as exc:
                raise PubSubError("unable to create new pubsub subscription") from exc
            self._subscriptions[topic] = subscription
            return subscription

    def publish(self, topic: str, message: bytes) -> None:
        """Post ``message`` on ``topic``; the topic must be subscribed to."""
        with self._lock:
            if topic not in self._subscriptions:
                raise PubSubError("not subscribed to this topic")
        self._ipfs.pubsub_publish(topic, message)

    def unsubscribe(self, topic: str) -> None:
        """Close and forget the subscription to ``topic``."""
        with self._lock:
            subscription = self._subscriptions.pop(topic, None)
        if subscription is None:
            raise PubSubError("no subscription found")
        subscription.close()

    def close(self) -> None:
        """Close every subscription."""
        with self._lock:
            subscriptions = list(self._subscriptions.values())
            self._subscriptions.clear()
        for subscription in subscriptions:
            subscription.close()

    def __enter__(self) -> "PubSub":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()