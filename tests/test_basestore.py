import hashlib
import json
from dataclasses import dataclass
from typing import Any, List, Optional

import pytest

from orbitstore.stores.basestore import (
    BaseStore,
    StoreError,
    StoreOptions,
    decode_snapshot,
    encode_snapshot,
)
from orbitstore.stores.events import EventClosed, EventReady, EventWrite
from orbitstore.stores.operation import Operation, parse_operation

ENTRY_COUNT = 65


@dataclass
class FakeClock:
    time: int


@dataclass
class FakeIdentity:
    id: str
    public_key: bytes = b"public-key"
    provider: Any = "provider"


@dataclass
class FakeEntry:
    hash: str
    payload: bytes
    next: Optional[List[str]]
    clock: FakeClock
    identity: FakeIdentity


def _hash(payload, nxt, time, writer):
    doc = json.dumps([payload.decode(), list(nxt or []), time, writer])
    return "bafy" + hashlib.sha256(doc.encode()).hexdigest()[:32]


class FakeLog:
    def __init__(self, backend, log_id, identity, entries=()):
        self.backend = backend
        self.id = log_id
        self.identity = identity
        self.entries = {e.hash: e for e in entries}

    @property
    def values(self):
        return sorted(self.entries.values(), key=lambda e: (e.clock.time, e.hash))

    @property
    def heads(self):
        referenced = {n for e in self.entries.values() for n in e.next or ()}
        return [e for e in self.values if e.hash not in referenced]

    def append(self, payload, pointer_count):
        time = max((e.clock.time for e in self.entries.values()), default=0) + 1
        nxt = [h.hash for h in self.heads]
        entry = self.backend.make_entry(payload, nxt, time, self.identity.id)
        self.entries[entry.hash] = entry
        return entry

    def join(self, other, size):
        self.entries.update(other.entries)
        if size > -1:
            keep = self.values[-size:] if size else []
            self.entries = {e.hash: e for e in keep}
        return self


class FakeBackend:
    def __init__(self):
        self.blocks = {}

    def make_entry(self, payload, nxt, time, writer):
        entry = FakeEntry(
            _hash(payload, nxt, time, writer),
            payload,
            list(nxt),
            FakeClock(time),
            FakeIdentity(writer),
        )
        self.blocks[entry.hash] = entry
        return entry

    def new_log(self, identity, log_id, access_controller):
        return FakeLog(self, log_id, identity)

    def from_entry_hash(self, identity, hash, log_id, access_controller, length, exclude):
        excluded = {e.hash for e in exclude}
        found = {}
        pending = [str(hash)]
        while pending and (length < 0 or len(found) < length):
            h = pending.pop(0)
            if h in found or h in excluded:
                continue
            entry = self.blocks[h]
            found[h] = entry
            pending.extend(entry.next or ())
        return FakeLog(self, log_id, identity, found.values())

    def from_snapshot(self, identity, log_id, heads, entries, access_controller):
        return FakeLog(self, log_id, identity, entries)

    def write_entry(self, entry):
        h = _hash(entry.payload, entry.next, entry.clock.time, entry.identity.id)
        self.blocks[h] = entry
        return h

    def entry_to_json(self, entry):
        return {
            "hash": entry.hash,
            "payload": entry.payload.decode(),
            "next": list(entry.next or []),
            "clock": entry.clock.time,
            "identity": entry.identity.id,
        }

    def entry_from_json(self, doc):
        return FakeEntry(
            doc["hash"],
            doc["payload"].encode(),
            list(doc["next"]),
            FakeClock(doc["clock"]),
            FakeIdentity(doc["identity"]),
        )


class FakeIpfs:
    def __init__(self):
        self.files = {}

    def unixfs_add(self, data):
        cid = "bafy" + hashlib.sha256(data).hexdigest()[:32]
        self.files[cid] = bytes(data)
        return cid

    def unixfs_get(self, path):
        return self.files[path]


@dataclass
class FakeAddress:
    root: str
    path: str

    def __str__(self):
        return f"/orbitdb/{self.root}/{self.path}"


class DenyAll:
    def can_append(self, entry, identity_provider, context):
        raise PermissionError("denied")


@pytest.fixture
def env():
    backend = FakeBackend()
    ipfs = FakeIpfs()
    identity = FakeIdentity("user-1")
    address = FakeAddress("bafyroot", "persistence")

    def make(cache=None, **kwargs):
        options = StoreOptions(
            log_backend=backend,
            cache=cache if cache is not None else {},
            **kwargs,
        )
        return BaseStore(ipfs, identity, address, options)

    return make


def values_of(store):
    return [parse_operation(e).value.decode() for e in store.oplog.values]


def add(store, text):
    return store.add_operation(Operation(None, "ADD", text.encode()))


def status_tuple(store):
    s = store.replication_status
    return (s.buffered, s.queued, s.progress, s.max)


@pytest.fixture
def filled(env):
    cache = {}
    db = env(cache)
    for i in range(ENTRY_COUNT):
        add(db, f"hello{i}")
    return env, cache, db


def test_encode_snapshot_empty_layout():
    data = encode_snapshot("log", [], [], "store")
    assert data == b"\x00\x1b" + b'{"id":"log","type":"store"}' + b"\x00"


def test_snapshot_round_trip():
    data = encode_snapshot(
        "log", [{"hash": "a"}], [{"hash": "a"}, {"hash": "b"}], "eventlog"
    )
    header, entries = decode_snapshot(data)
    assert header == {"id": "log", "heads": [{"hash": "a"}], "size": 2, "type": "eventlog"}
    assert entries == [{"hash": "a"}, {"hash": "b"}]


def test_decode_truncated_snapshot_raises():
    with pytest.raises(StoreError):
        decode_snapshot(b"\x00\x10{}")


def test_identity_is_required():
    with pytest.raises(StoreError, match="identity required"):
        BaseStore(FakeIpfs(), None, FakeAddress("r", "p"), StoreOptions(log_backend=FakeBackend()))


def test_initial_replication_state(env):
    db = env()
    assert status_tuple(db) == (0, 0, 0, 0)
    assert db.db_name == "persistence"
    assert db.reference_count == 64
    assert db.directory == "./orbitdb"
    assert db.replicate is True


def test_add_operation_updates_cache_status_and_emits(env):
    cache = {}
    db = env(cache)
    events = []
    db.subscribe(events.append)
    progressed = []

    entry = db.add_operation(Operation(None, "ADD", b"hello"), progressed.append)

    assert progressed == [entry]
    assert [type(e) for e in events] == [EventWrite]
    assert events[0].entry is entry
    assert json.loads(cache["_localHeads"])[0]["hash"] == entry.hash
    assert status_tuple(db) == (0, 0, 1, 1)
    assert db.index.get("") == [entry]


def test_loads_database_from_local_cache(filled):
    env, cache, _ = filled
    db = env(cache)
    db.load(-1)
    items = values_of(db)
    assert len(items) == ENTRY_COUNT
    assert items[0] == "hello0"
    assert items[-1] == f"hello{ENTRY_COUNT - 1}"


def test_loads_database_partially(filled):
    env, cache, _ = filled
    amount = 33
    db = env(cache)
    db.load(amount)
    items = values_of(db)
    assert len(items) == amount
    assert items[0] == f"hello{ENTRY_COUNT - amount}"
    assert items[1] == f"hello{ENTRY_COUNT - amount + 1}"
    assert items[-1] == f"hello{ENTRY_COUNT - 1}"


def test_load_and_close_several_times(filled):
    env, cache, _ = filled
    for _ in range(8):
        db = env(cache)
        db.load(-1)
        items = values_of(db)
        assert len(items) == ENTRY_COUNT
        assert items[0] == "hello0"
        assert items[1] == "hello1"
        assert items[-1] == f"hello{ENTRY_COUNT - 1}"
        db.close()


def test_load_add_one_close_several_times(filled):
    env, cache, _ = filled
    for i in range(8):
        db = env(cache)
        db.load(-1)
        add(db, f"hello{ENTRY_COUNT + i}")
        items = values_of(db)
        assert len(items) == ENTRY_COUNT + i + 1
        assert items[-1] == f"hello{ENTRY_COUNT + i}"
        db.close()


def test_loading_emits_ready_event(filled):
    env, cache, _ = filled
    db = env(cache)
    ready = []
    items_at_ready = []

    def on_event(event):
        if isinstance(event, EventReady):
            ready.append(event)
            items_at_ready.append(values_of(db))

    db.subscribe(on_event)
    db.load(-1)

    assert len(ready) == 1
    assert ready[0].address == db.address
    assert len(db.oplog.heads) == 1
    assert [h.hash for h in ready[0].heads] == [h.hash for h in db.oplog.heads]

    items = items_at_ready[0]
    assert len(items) == ENTRY_COUNT
    assert items[0] == "hello0"
    assert items[-1] == f"hello{ENTRY_COUNT - 1}"
    assert values_of(db) == items


def test_load_without_local_heads_raises(env):
    with pytest.raises(StoreError, match="local heads"):
        env().load(-1)


def test_loads_from_empty_snapshot(env):
    cache = {}
    db = env(cache)
    db.save_snapshot()
    db.close()

    db = env(cache)
    db.load_from_snapshot()
    assert values_of(db) == []


def test_loads_database_from_snapshot(filled):
    env, cache, db = filled
    db.save_snapshot()
    db.close()

    db = env(cache)
    db.load_from_snapshot()
    items = values_of(db)
    assert len(items) == ENTRY_COUNT
    assert items[0] == "hello0"
    assert items[ENTRY_COUNT - 1] == f"hello{ENTRY_COUNT - 1}"


def test_load_add_one_and_save_snapshot_several_times(filled):
    env, cache, db = filled
    db.save_snapshot()
    db.close()

    for i in range(4):
        db = env(cache)
        db.load_from_snapshot()
        add(db, f"hello{ENTRY_COUNT + i}")
        items = values_of(db)
        assert len(items) == ENTRY_COUNT + i + 1
        assert items[0] == "hello0"
        assert items[-1] == f"hello{ENTRY_COUNT + i}"
        db.save_snapshot()
        db.close()


def test_missing_snapshot_raises_not_found(filled):
    env, cache, db = filled
    db.save_snapshot()
    db.drop()

    db = env(cache)
    with pytest.raises(StoreError, match="not found"):
        db.load_from_snapshot()


def test_replication_info_after_load_and_close(env):
    cache = {}
    db = env(cache)
    add(db, "hello")
    db.close()

    db = env(cache)
    db.load(-1)
    assert status_tuple(db) == (0, 0, 1, 1)

    db.close()
    assert status_tuple(db) == (0, 0, 0, 0)


def test_replication_info_after_sync(env):
    cache = {}
    db = env(cache)
    add(db, "hello")
    db.close()
    db = env(cache)
    db.load(-1)

    add(db, "hello2")
    assert status_tuple(db) == (0, 0, 2, 2)

    db2 = env()
    db2.sync(list(db.oplog.heads))

    assert status_tuple(db2) == (0, 0, 2, 2)
    assert values_of(db2) == ["hello", "hello2"]
    assert db2.sync_requests_received == 1


def test_sync_rejects_mismatched_hash(env):
    db = env()
    entry = add(db, "hello")
    forged = FakeEntry("bafyforged", entry.payload, list(entry.next), entry.clock, entry.identity)

    with pytest.raises(StoreError, match="didn't match"):
        env().sync([forged])


def test_sync_discards_entries_without_write_access(env):
    db = env()
    add(db, "hello")

    db2 = env(access_controller=DenyAll())
    db2.sync(list(db.oplog.heads))

    assert values_of(db2) == []
    assert db2.sync_requests_received == 1


def test_sync_requires_identity_provider():
    backend = FakeBackend()
    identity = FakeIdentity("user-1", provider=None)
    db = BaseStore(FakeIpfs(), identity, FakeAddress("r", "p"), StoreOptions(log_backend=backend))
    entry = db.add_operation(Operation(None, "ADD", b"x"))

    with pytest.raises(StoreError, match="identity-provider is required"):
        db.sync([entry])


def test_drop_resets_log_index_and_cache(env):
    cache = {}
    db = env(cache)
    add(db, "hello")

    db.drop()

    assert values_of(db) == []
    assert db.index.get("") == []
    assert cache == {}


def test_close_calls_on_close_and_emits_closed(env):
    db = env()
    closed_with = []
    events = []
    db.on_close = closed_with.append
    db.subscribe(events.append)

    db.close()

    assert closed_with == [db.address]
    assert events == [EventClosed(db.address)]