"""A pubsub topic used as a direct channel between two peers.

The ``ipfs`` object must provide ``self_id()``, ``pubsub_subscribe(topic)``,
``pubsub_publish(topic, data)`` and ``pubsub_peers(topic)``.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Any, List, Optional

from orbitstore.emitter import EventEmitter
from orbitstore.pubsub.events import EventMessage

PROTOCOL = "ipfs-pubsub-direct-channel/v1"

logger = logging.getLogger("orbitstore.pubsub.oneonone")


class ChannelError(Exception):
    """Raised when a direct channel operation fails."""


def channel_id(peer_a: Any, peer_b: Any) -> str:
    """Return the topic shared by two peers, independent of their order."""
    peers = sorted((str(peer_a), str(peer_b)))
    return "/" + PROTOCOL + "/" + "/".join(peers)


class Channel(EventEmitter):
    """Direct channel with another peer; incoming messages are emitted as ``EventMessage``."""

    retry_interval = 0.1
    # Seconds ``connect`` waits for the other peer; None waits indefinitely.
    connect_timeout: Optional[float] = None

    def __init__(
        self, ipfs: Any, receiver_id: Any, sender_id: Any, subscription: Any
    ) -> None:
        super().__init__()
        self._ipfs = ipfs
        self.receiver_id = receiver_id
        self.sender_id = sender_id
        self.id = channel_id(receiver_id, sender_id)
        self._sub = subscription
        self._closed = threading.Event()
        self._listener = threading.Thread(
            target=self._listen, name=f"channel:{self.id}", daemon=True
        )
        self._listener.start()

    @classmethod
    def create(cls, ipfs: Any, peer_id: Any) -> "Channel":
        """Open a channel with ``peer_id`` and start listening on it."""
        try:
            self_id = ipfs.self_id()
        except Exception as exc:
            raise ChannelError("unable to get key for self") from exc

        topic = channel_id(peer_id, self_id)
        logger.debug("subscribing to %s", topic)
        try:
            subscription = ipfs.pubsub_subscribe(topic)
        except Exception as exc:
            raise ChannelError("unable to subscribe to pubsub") from exc
        return cls(ipfs, peer_id, self_id, subscription)

    @property
    def peers(self) -> List[Any]:
        """The peers expected on the channel: the other peer, then ourselves."""
        return [self.receiver_id, self.sender_id]

    @property
    def closed(self) -> bool:
        """Whether the channel has been closed."""
        return self._closed.is_set()

    def connect(self) -> None:
        """Block until the other peer is present on the channel's topic."""
        timeout = self.connect_timeout
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            try:
                peers = self._ipfs.pubsub_peers(self.id)
            except Exception as exc:
                logger.error("failed to get peers on pub sub")
                raise ChannelError("unable to wait for peers") from exc

            if self.receiver_id in peers:
                return

            if deadline is not None and time.monotonic() >= deadline:
                raise TimeoutError("peer did not join the channel in time")

            logger.debug("failed to get peer on pub sub, retrying")
            time.sleep(self.retry_interval)

    def send(self, data: bytes) -> None:
        """Send ``data`` to the other peer."""
        try:
            self._ipfs.pubsub_publish(self.id, data)
        except Exception as exc:
            raise ChannelError("unable to publish data on pubsub") from exc

    def close(self) -> None:
        """Drop all handlers and close the underlying subscription."""
        self._closed.set()
        self.unsubscribe_all()
        try:
            self._sub.close()
        except Exception:
            logger.exception("error while closing channel subscription")

    def __enter__(self) -> "Channel":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _listen(self) -> None:
        while not self._closed.is_set():
            try:
                message = self._sub.next()
            except Exception:
                if self._closed.is_set():
                    return
                logger.exception("unable to get pub sub message")
                self._closed.wait(self.retry_interval)
                continue

            if str(message.sender) == str(self.sender_id):
                continue

            self.emit(EventMessage(bytes(message.data)))