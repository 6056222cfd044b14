# orbitstore

Databases built on an append-only operation log. Each write becomes an
`Operation` (`orbitstore.stores.operation`). The operation is serialized as
compact JSON and appended to the store's log. An index rebuilds a queryable view
from that log. A `Replicator` fetches entries that other peers announce.

## Stores

### EventLogStore

`EventLogStore` lives in `orbitstore.stores.eventlogstore` and is an
append-only event log.

- `add(value)` appends `value` as an `ADD` operation and returns the parsed
  operation.
- `stream(options)` returns an iterator over the matching operations, oldest
  first.
- `list(options)` returns the same operations as a list.
- `get(cid)` returns the operation at `cid`. It returns `None` when the log is
  empty.

`StreamOptions` selects entries:

- `gt` and `gte` read forward from a hash.
- `lt` and `lte` read backward from a hash.
- `amount` limits the result. `None` or `0` return one entry, and a negative
  amount returns every entry.

The same selection is available on a plain sequence of entries through
`query_entries(entries, options)`.

### KeyValueStore

`KeyValueStore` lives in `orbitstore.stores.kvstore` and offers:

- `put(key, value)`
- `get(key)`, which returns `None` for a missing key
- `delete(key)`
- `all()`

For each key, the newest `PUT` or `DEL` wins. Importing the module registers the
class under the name `"keyvalue"`.

### BaseStore

Both stores build on `BaseStore` in `orbitstore.stores.basestore`, configured
with `StoreOptions`. The options include:

- the log backend
- the cache mapping and `cache_destroy`
- the access controller
- the index factory
- the replication concurrency and flush interval
- the reference count
- the directory
- `replicate`
- `max_history`

`BaseStore` provides these methods:

- `add_operation(op, on_progress)` appends an operation, updates the index and
  the `_localHeads` cache entry, and emits `EventWrite`.
- `load(amount)` restores the log from the heads saved in the cache, then emits
  `EventReady`. It raises `StoreError` when no local heads are cached.
- `sync(heads)` accepts entries from other peers. Each one is checked with the
  access controller's `can_append`, then the entries they point to are
  replicated. Without an explicit controller, only the store's own identity may
  write. A writer list holding `"*"` lets anyone write.
- `load_more_from(amount, cids)` replicates the given hashes.
- `save_snapshot()` writes the whole log through `ipfs.unixfs_add`.
- `load_from_snapshot()` reads the snapshot back. It raises `StoreError` when no
  snapshot has been saved.
- `close()` stops replication, resets the statistics, emits `EventClosed` and
  closes the cache.
- `drop()` also destroys the cache and starts again with an empty log.

Snapshots use a length-prefixed JSON framing. Two functions handle it:

- `encode_snapshot(log_id, heads, entries, store_type)` builds the bytes.
- `decode_snapshot(data)` reads the header and the entries back.

Stores are context managers; leaving the `with` block closes them.

### Events and emitters

Stores, replicators, subscriptions, peer monitors and channels all derive from
`EventEmitter` (`orbitstore.emitter`). `subscribe(handler)` returns the handler,
so it also works as a decorator.

```python
from orbitstore.stores.events import EventWrite

@store.subscribe
def on_event(event):
    if isinstance(event, EventWrite):
        print("wrote", event.entry)
```

Store events are in `orbitstore.stores.events`:

- `EventLoad`
- `EventReady`
- `EventWrite`
- `EventReplicateProgress`
- `EventReplicated`
- `EventClosed`
- `EventNewPeer`

Replication progress is kept in a `ReplicationInfo`
(`orbitstore.stores.replication_info`). It counts `progress`, `max`, `buffered`
and `queued`.

### Registry

Store types are registered by name in `orbitstore.stores.registry`, through
`register_store`, `unregister_store`, `store_type_names` and `get_constructor`.

## Pubsub

`PubSub` (`orbitstore.pubsub.client`) keeps one `Subscription` per topic.

- `subscribe(topic)` returns that topic's subscription, creating it on first
  use.
- `publish(topic, message)` raises `PubSubError` unless you are subscribed to
  `topic`.
- `unsubscribe(topic)` and `close()` end subscriptions.

A `Subscription` (`orbitstore.pubsub.subscription`) emits a `MessageEvent` for
each message from another peer on its topic. It also runs a `PeerMonitor`
(`orbitstore.pubsub.peermonitor`), which polls the topic's peers and emits
`EventPeerJoin` and `EventPeerLeave`.

`Channel` (`orbitstore.pubsub.oneonone`) is a direct channel between two peers.

- Its topic is `channel_id(peer_a, peer_b)`, built from the sorted peer ids
  under the `ipfs-pubsub-direct-channel/v1` prefix.
- `connect()` blocks until the other peer is present. Set `connect_timeout` to
  bound the wait; past it, `TimeoutError` is raised.
- `send(data)` publishes data on the channel.
- Incoming messages from the other peer arrive as `EventMessage`.

## Manifests

`Manifest` (`orbitstore.manifest`) holds a database's name, type and access
controller path. It encodes to and from CBOR with `to_cbor()` and `from_cbor()`.

`create_db_manifest(ipfs, name, db_type, access_controller_address)` stores the
manifest through `ipfs.dag_put` and returns its identifier. The access
controller path is prefixed with `/ipfs`.

## What this package does not do

Everything that talks to the network or persists data is supplied by the caller
as plain objects with the methods described in each module's docstring. That
covers:

- the content-addressed storage and pubsub node
- the operation log and its entries (the store's `log_backend`)
- identities
- access controllers beyond the default writer list

The package itself runs no node, implements no log or entry format, and parses
no database addresses. It keeps no database directory on disk; any persistence
lives in the cache mapping you pass in. It has no command-line interface.

## Installing

Install with pip from the project directory. The `test` extra adds pytest and
pytest-asyncio for running the test suite.