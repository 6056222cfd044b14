import pytest

from orbitstore.stores.registry import (
    get_constructor,
    register_store,
    store_type_names,
    unregister_store,
)


@pytest.fixture
def store_name():
    name = "test-registry-store"
    yield name
    unregister_store(name)


def _constructor(*args, **kwargs):
    return ("built", args, kwargs)


def test_register_and_get(store_name):
    register_store(store_name, _constructor)
    assert get_constructor(store_name) is _constructor
    assert store_name in store_type_names()


def test_registered_constructor_is_callable(store_name):
    register_store(store_name, _constructor)
    assert get_constructor(store_name)(1, x=2) == ("built", (1,), {"x": 2})


def test_register_replaces_previous(store_name):
    register_store(store_name, _constructor)
    register_store(store_name, dict)
    assert get_constructor(store_name) is dict
    assert store_type_names().count(store_name) == 1


def test_unregister_removes(store_name):
    register_store(store_name, _constructor)
    unregister_store(store_name)
    assert get_constructor(store_name) is None
    assert store_name not in store_type_names()


def test_unregister_missing_is_harmless(store_name):
    before = store_type_names()
    unregister_store("never-registered-type")
    assert store_type_names() == before


def test_get_missing_returns_none():
    assert get_constructor("invalid-type") is None