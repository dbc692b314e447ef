"""Shared pytest fixtures."""
import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from shopcrm.db import RemoteBackend, build_engine
from shopcrm.rate_limit import limiter
from shopcrm.services.remote_gateway import RemoteGateways
from shopcrm.services.sync_manager import SyncManager
from shopcrm.storage.provider import MemoryStateStorage
from shopcrm.store.local_store import LocalStore, SYNCED_COLLECTIONS


@pytest.fixture(autouse=True)
def reset_rate_limits():
    limiter.reset()
    yield
    limiter.reset()


@pytest.fixture
def storage():
    return MemoryStateStorage()


@pytest.fixture
def store(storage):
    return LocalStore(storage, "test-storage", tz_name="UTC")


@pytest.fixture
def empty_store(storage):
    """A store with no records in the collections that mark local data."""
    s = LocalStore(storage, "test-storage", tz_name="UTC")
    s.replace_state({"statuses": [], "services": []})
    return s


@pytest.fixture
def engine():
    """One in-memory database shared by every backend built on it."""
    eng = build_engine("sqlite://")
    yield eng
    eng.dispose()


@pytest.fixture
def backend(engine):
    b = RemoteBackend(engine=engine, client_id="client-a")
    b.create_tables()
    return b


@pytest.fixture
def other_backend(engine, backend):
    """A second client writing to the same remote database."""
    return RemoteBackend(engine=engine, client_id="client-b")


@pytest.fixture
def offline_backend():
    return RemoteBackend(url="")


def make_manager(store, backend, **kwargs):
    kwargs.setdefault("interval", 3600)
    kwargs.setdefault("poll_interval", 3600)
    kwargs.setdefault("auto_create_tables", True)
    return SyncManager(store, RemoteGateways(backend, SYNCED_COLLECTIONS), **kwargs)


@pytest.fixture
def manager_factory():
    return make_manager
