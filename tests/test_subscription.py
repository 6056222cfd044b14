import queue
import threading
from dataclasses import dataclass

import pytest

from orbitstore.pubsub.events import EventPeerJoin, MessageEvent
from orbitstore.pubsub.subscription import Subscription, SubscriptionError


@dataclass
class Msg:
    sender: str
    topics: list
    data: bytes


class FakeSub:
    def __init__(self, close_error=None):
        self.queue = queue.Queue()
        self.close_calls = 0
        self.close_error = close_error

    def next(self):
        item = self.queue.get()
        if item is None:
            raise ConnectionError("closed")
        return item

    def close(self):
        self.close_calls += 1
        self.queue.put(None)
        if self.close_error is not None:
            raise self.close_error


class FakeIPFS:
    def __init__(self, self_id="me", peers=None, sub=None, id_error=None, sub_error=None):
        self._self_id = self_id
        self.peers = list(peers or [])
        self.sub = sub or FakeSub()
        self.id_error = id_error
        self.sub_error = sub_error
        self.subscribed = []

    def self_id(self):
        if self.id_error is not None:
            raise self.id_error
        return self._self_id

    def pubsub_subscribe(self, topic):
        if self.sub_error is not None:
            raise self.sub_error
        self.subscribed.append(topic)
        return self.sub

    def pubsub_peers(self, topic):
        return list(self.peers)


def test_create_subscribes_to_topic():
    ipfs = FakeIPFS()
    sub = Subscription.create(ipfs, "news")
    try:
        assert ipfs.subscribed == ["news"]
        assert sub.self_id == "me"
        assert sub.topic == "news"
    finally:
        sub.close()


def test_filters_own_and_foreign_topic_messages():
    ipfs = FakeIPFS()
    received = []
    done = threading.Event()
    sub = Subscription.create(ipfs, "news")

    def handler(event):
        if isinstance(event, MessageEvent):
            received.append(event)
            done.set()

    sub.subscribe(handler)
    ipfs.sub.queue.put(Msg("me", ["news"], b"own"))
    ipfs.sub.queue.put(Msg("other", ["sports"], b"foreign"))
    ipfs.sub.queue.put(Msg("other", ["news"], b"hello"))
    try:
        assert done.wait(2.0)
        assert received == [MessageEvent("news", b"hello")]
    finally:
        sub.close()


def test_forwards_peer_events():
    ipfs = FakeIPFS(peers=["friend"])
    joined = threading.Event()
    sub = Subscription.create(ipfs, "news", poll_interval=0.01)
    sub.subscribe(lambda e: joined.set() if e == EventPeerJoin("friend") else None)
    try:
        assert joined.wait(2.0)
    finally:
        sub.close()


def test_self_id_failure_raises():
    ipfs = FakeIPFS(id_error=RuntimeError("no key"))
    with pytest.raises(SubscriptionError, match="unable to get id for user"):
        Subscription.create(ipfs, "news")


def test_subscribe_failure_propagates():
    ipfs = FakeIPFS(sub_error=RuntimeError("refused"))
    with pytest.raises(RuntimeError, match="refused"):
        Subscription.create(ipfs, "news")


def test_close_swallows_errors_and_marks_closed():
    fake_sub = FakeSub(close_error=RuntimeError("fail"))
    sub = Subscription.create(FakeIPFS(sub=fake_sub), "news")
    sub.close()
    assert fake_sub.close_calls == 1
    assert sub.closed is True


def test_context_manager_closes():
    ipfs = FakeIPFS()
    with Subscription.create(ipfs, "news") as sub:
        assert sub.closed is False
    assert sub.closed is True
    assert ipfs.sub.close_calls == 1