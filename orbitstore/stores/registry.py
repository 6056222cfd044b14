"""Registry of store constructors, looked up by store type name."""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional

StoreConstructor = Callable[..., Any]

_store_types: Dict[str, StoreConstructor] = {}


def register_store(store_type: str, constructor: StoreConstructor) -> None:
    """Register ``constructor`` under ``store_type``, replacing any previous one."""
    _store_types[store_type] = constructor


def unregister_store(store_type: str) -> None:
    """Remove the constructor registered under ``store_type``, if any."""
    _store_types.pop(store_type, None)


def store_type_names() -> List[str]:
    """List the names of all registered store types."""
    return list(_store_types)


def get_constructor(store_type: str) -> Optional[StoreConstructor]:
    """Return the constructor registered under ``store_type``, or ``None``."""
    return _store_types.get(store_type)