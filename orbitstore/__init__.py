"""Event log and key-value stores over an operation log, with replication and pubsub helpers."""

__version__ = "0.1.0"