import asyncio
import json

import httpx
import pytest
import pytest_asyncio
import respx

from structura_sync.errors import StorageError
from structura_sync.monitor import NetworkMonitor
from structura_sync.scheduler import RetryScheduler
from structura_sync.store import PendingRequestStore
from structura_sync.utils.connectivity import PlatformConnectivity

BASE_URL = "http://bau-structura.test"


class MemoryKeyValueStore:
    """In-memory double of PostgresKeyValueStore."""

    def __init__(self):
        self.data: dict[str, str] = {}
        self.fail = False

    def _check(self):
        if self.fail:
            raise StorageError("storage unavailable")

    async def get(self, key):
        self._check()
        return self.data.get(key)

    async def set(self, key, value):
        self._check()
        self.data[key] = value

    async def delete(self, key):
        self._check()
        self.data.pop(key, None)

    async def acquire_lease(self, key, owner, ttl_ms, now_ms):
        self._check()
        current = self.data.get(key)
        if current:
            lease = json.loads(current)
            if lease["owner"] != owner and lease["draining_since"] >= now_ms - ttl_ms:
                return False
        self.data[key] = json.dumps({"owner": owner, "draining_since": now_ms})
        return True

    async def release_lease(self, key, owner):
        self._check()
        current = self.data.get(key)
        if current and json.loads(current)["owner"] == owner:
            del self.data[key]


class FakeClock:
    """Epoch-milliseconds clock that only moves when told to."""

    def __init__(self, start: int = 1_700_000_000_000):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


@pytest.fixture
def backend():
    return MemoryKeyValueStore()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(backend, clock):
    return PendingRequestStore(backend, max_size=None, clock=clock)


@pytest.fixture
def connectivity():
    return PlatformConnectivity(online=True, probe_host=None)


@pytest.fixture
def api_mock():
    with respx.mock(base_url=BASE_URL, assert_all_called=False) as router:
        yield router


@pytest_asyncio.fixture
async def client():
    async with httpx.AsyncClient(base_url=BASE_URL) as client:
        yield client


@pytest.fixture
def monitor(client, connectivity):
    return NetworkMonitor(client, connectivity)


@pytest.fixture
def scheduler(store, client, monitor, clock):
    return RetryScheduler(store, client, monitor, owner="test-worker", clock=clock)


@pytest.fixture
def wait_until():
    async def _wait_until(predicate, timeout: float = 2.0):
        async def _poll():
            while not predicate():
                await asyncio.sleep(0.01)

        await asyncio.wait_for(_poll(), timeout)

    return _wait_until
