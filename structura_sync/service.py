import logging
from typing import Any, Callable

import httpx

from structura_sync.config import MAX_QUEUE_SIZE, build_websocket_url
from structura_sync.db import PostgresKeyValueStore
from structura_sync.models import DeliveryOutcome, DeliveryResult, NetworkStatus, PendingRequest, SyncStatus
from structura_sync.monitor import NetworkMonitor
from structura_sync.offline import request_with_offline_support, send_with_offline_support
from structura_sync.scheduler import RetryScheduler
from structura_sync.store import PendingRequestStore
from structura_sync.utils.connectivity import PlatformConnectivity
from structura_sync.utils.http import create_client, get_json

logger = logging.getLogger(__name__)


class OfflineRecoveryService:
    """Offline-resilient access to the REST API: queue store, network monitor and retry scheduler in one object.

    Usage:
        service = OfflineRecoveryService.create(backend=PostgresKeyValueStore(pool))
        await service.start()
        result = await service.send("POST", "/api/notes", {"text": "..."})
        ...
        await service.stop()
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        store: PendingRequestStore,
        connectivity: PlatformConnectivity,
        monitor: NetworkMonitor,
        scheduler: RetryScheduler,
        owns_client: bool = False,
    ):
        self.client = client
        self.store = store
        self.connectivity = connectivity
        self.monitor = monitor
        self.scheduler = scheduler
        self._owns_client = owns_client
        self._started = False

    @classmethod
    def create(
        cls,
        backend=None,
        client: httpx.AsyncClient | None = None,
        connectivity: PlatformConnectivity | None = None,
        max_queue_size: int | None = MAX_QUEUE_SIZE,
        on_evict: Callable[[PendingRequest], None] | None = None,
        **scheduler_options,
    ) -> "OfflineRecoveryService":
        """Wires the default collaborators. Anything passed in is used as is."""
        owns_client = client is None
        client = client or create_client()
        backend = backend or PostgresKeyValueStore()
        connectivity = connectivity or PlatformConnectivity()
        store = PendingRequestStore(backend, max_size=max_queue_size, on_evict=on_evict)
        monitor = NetworkMonitor(client, connectivity)
        scheduler = RetryScheduler(store, client, monitor, **scheduler_options)
        return cls(client, store, connectivity, monitor, scheduler, owns_client=owns_client)

    @property
    def network_status(self) -> NetworkStatus:
        return self.monitor.status

    @property
    def sync_status(self) -> SyncStatus:
        return self.scheduler.status

    async def start(self) -> None:
        if self._started:
            return
        await self.monitor.start()
        await self.scheduler.start()
        self._started = True
        logger.info(f"Offline recovery service started (api: {self.client.base_url}, websocket: {self.websocket_url}).")

    async def stop(self) -> None:
        if not self._started:
            return
        await self.scheduler.stop()
        await self.monitor.stop()
        if self._owns_client:
            await self.client.aclose()
        self._started = False
        logger.info("Offline recovery service stopped.")

    async def __aenter__(self) -> "OfflineRecoveryService":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.stop()

    @property
    def websocket_url(self) -> str:
        return build_websocket_url(str(self.client.base_url))

    async def send(self, method: str, url: str, body: Any = None) -> DeliveryResult:
        result = await send_with_offline_support(self.client, self.store, self.connectivity, method, url, body)
        if result.outcome is DeliveryOutcome.FAILED:
            logger.warning(f"{method} {url} not delivered: {result.message}")
        return result

    async def request(self, method: str, url: str, body: Any = None) -> httpx.Response:
        return await request_with_offline_support(self.client, self.store, self.connectivity, method, url, body)

    async def get_json(self, path: str, on_401: str = "throw") -> Any:
        """Reads are never queued; with on_401="return_none" a missing session yields None."""
        return await get_json(self.client, path, on_401=on_401)

    async def sync_now(self) -> SyncStatus:
        await self.scheduler.sync_now()
        return self.scheduler.status
