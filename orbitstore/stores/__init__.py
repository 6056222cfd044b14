"""Stores, their indexes, operations, events, registry and replication."""