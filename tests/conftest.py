import threading

import pytest

from talky import accounts
from talky.backends import MemoryContentBackend
from talky.calls import CallService
from talky.store import Store


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start: int = 1_700_000_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class GatedBackend(MemoryContentBackend):
    """Writes block until the test opens the gate."""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.gate = threading.Event()

    def write(self, content, expected_version, message=""):
        self.gate.wait(5)
        return super().write(content, expected_version, message)


@pytest.fixture
def backend():
    return MemoryContentBackend()


@pytest.fixture
def store(backend):
    s = Store(backend, freshness=60.0, backoff=0)
    yield s
    s.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def calls(store, clock):
    return CallService(store, ring_ttl=3600, retention=3600, clock=clock)


@pytest.fixture
def alice(store):
    return accounts.create_user(store, "alice", "hash-a")


@pytest.fixture
def bob(store, alice):
    return accounts.create_user(store, "bob", "hash-b")


@pytest.fixture
def carol(store, bob):
    return accounts.create_user(store, "carol", "hash-c")
