"""Watches the peers present on a pubsub topic and reports joins and leaves.

The ``ipfs`` object only needs a ``pubsub_peers(topic)`` method returning the
identifiers of the peers currently subscribed to ``topic``.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, List, Optional

from orbitstore.emitter import EventEmitter
from orbitstore.pubsub.events import EventPeerJoin, EventPeerLeave

DEFAULT_POLL_INTERVAL = 1.0

logger = logging.getLogger("orbitstore.pubsub.peermonitor")


class PeerMonitor(EventEmitter):
    """Polls a topic's peers and emits ``EventPeerJoin`` / ``EventPeerLeave``."""

    def __init__(
        self,
        ipfs: Any,
        topic: str,
        *,
        start: bool = True,
        poll_interval: float = DEFAULT_POLL_INTERVAL,
    ) -> None:
        super().__init__()
        self._ipfs = ipfs
        self.topic = topic
        self.poll_interval = poll_interval
        self._peers: Dict[Any, None] = {}
        self._lock = threading.RLock()
        self._stop_event: Optional[threading.Event] = None
        if start:
            self.start()

    @property
    def started(self) -> bool:
        """Whether the monitor is currently polling."""
        with self._lock:
            return self._stop_event is not None

    def start(self) -> Callable[[], None]:
        """Start polling in the background, restarting if already running.

        Returns a callable that stops this polling run.
        """
        self.stop()
        stop_event = threading.Event()
        with self._lock:
            self._stop_event = stop_event
        thread = threading.Thread(
            target=self._run,
            args=(stop_event,),
            name=f"peermonitor:{self.topic}",
            daemon=True,
        )
        thread.start()
        return stop_event.set

    def stop(self) -> None:
        """Stop polling; does nothing when not started."""
        with self._lock:
            stop_event, self._stop_event = self._stop_event, None
        if stop_event is not None:
            stop_event.set()

    def get_peers(self) -> List[Any]:
        """List the peers currently known to be on the topic."""
        with self._lock:
            return list(self._peers)

    def has_peer(self, peer_id: Any) -> bool:
        """Tell whether ``peer_id`` is currently known to be on the topic."""
        with self._lock:
            return peer_id in self._peers

    def poll_peers(self) -> None:
        """Query the topic's peers once and emit events for any change."""
        peer_ids = self._ipfs.pubsub_peers(self.topic)

        with self._lock:
            remaining = dict(self._peers)

        current: Dict[Any, None] = {}
        for peer_id in peer_ids:
            if peer_id in current:
                continue
            current[peer_id] = None
            if peer_id in remaining:
                del remaining[peer_id]
            else:
                self.emit(EventPeerJoin(peer_id))

        for peer_id in remaining:
            self.emit(EventPeerLeave(peer_id))

        with self._lock:
            self._peers = current

    def _run(self, stop_event: threading.Event) -> None:
        try:
            while not stop_event.wait(self.poll_interval):
                try:
                    self.poll_peers()
                except Exception:
                    logger.exception("error while polling peers")
        finally:
            with self._lock:
                if self._stop_event is stop_event:
                    self._stop_event = None