import asyncio
import logging
import math
import os
import socket
import uuid
from datetime import datetime, timezone
from typing import Callable

import httpx

from structura_sync.config import (
    DRAIN_LEASE_TTL_MS,
    LEASE_KEY,
    MAX_RETRIES,
    PENDING_COUNT_INTERVAL,
    RETRY_DELAY_BASE_MS,
)
from structura_sync.errors import StorageError, SyncError, categorize_error
from structura_sync.models import NetworkStatus, PendingRequest, SyncStatus, now_ms
from structura_sync.monitor import NetworkMonitor
from structura_sync.store import PendingRequestStore
from structura_sync.utils.http import api_request

logger = logging.getLogger(__name__)


def default_owner() -> str:
    return f"{socket.gethostname()}-{os.getpid()}-{uuid.uuid4().hex[:8]}"


class RetryScheduler:
    """Replays queued requests once the network is back.

    A drain pass runs only while the monitor reports ONLINE, never twice at
    once in this process, and only while holding the drain lease in the shared
    store so other processes on the same queue stay out. The lease is renewed
    before every request; a pass that loses it stops.
    """

    def __init__(
        self,
        store: PendingRequestStore,
        client: httpx.AsyncClient,
        monitor: NetworkMonitor,
        max_retries: int = MAX_RETRIES,
        retry_delay_base_ms: int = RETRY_DELAY_BASE_MS,
        count_interval: float = PENDING_COUNT_INTERVAL,
        lease_key: str = LEASE_KEY,
        lease_ttl_ms: int = DRAIN_LEASE_TTL_MS,
        owner: str | None = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.store = store
        self.client = client
        self.monitor = monitor
        self.max_retries = max_retries
        self.retry_delay_base_ms = retry_delay_base_ms
        self.count_interval = count_interval
        self.lease_key = lease_key
        self.lease_ttl_ms = lease_ttl_ms
        self.owner = owner or default_owner()
        self.clock = clock

        self.is_syncing = False
        self.pending_changes = 0
        self.progress = 0
        self.last_successful_sync: datetime | None = None

        self._listeners: list[Callable[[SyncStatus], None]] = []
        self._unsubscribe: Callable[[], None] | None = None
        self._count_task: asyncio.Task | None = None
        self._sync_task: asyncio.Task | None = None

    @property
    def status(self) -> SyncStatus:
        return SyncStatus(
            is_syncing=self.is_syncing,
            pending_changes=self.pending_changes,
            progress=self.progress,
            last_successful_sync=self.last_successful_sync,
        )

    def subscribe(self, listener: Callable[[SyncStatus], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _publish(self) -> None:
        snapshot = self.status
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Sync status listener failed")

    def backoff_delay(self, request: PendingRequest) -> int:
        return self.retry_delay_base_ms * 2 ** request.retry_count

    def is_due(self, request: PendingRequest) -> bool:
        if request.last_retry is None:
            return True
        return self.clock() - request.last_retry >= self.backoff_delay(request)

    async def refresh_pending_count(self) -> int:
        self.pending_changes = await self.store.count()
        self._publish()
        return self.pending_changes

    async def process_pending_request(self, request: PendingRequest) -> bool:
        """Tries one queued request. True when it left the queue (delivered or given up)."""
        if not self.is_due(request):
            return False

        try:
            await api_request(self.client, request.method, request.url, request.body)
        except (SyncError, httpx.HTTPError) as e:
            category = categorize_error(e).value
            logger.error(
                f"Retry of {request.method} {request.url} failed ({category}, "
                f"attempt {request.retry_count + 1}/{self.max_retries}): {e}"
            )
            updated = await self.store.update_retry(request.id)
            retry_count = updated.retry_count if updated else request.retry_count + 1
            if retry_count >= self.max_retries:
                logger.warning(
                    f"Max retries reached for {request.method} {request.url} (id: {request.id}). Dropping request."
                )
                await self.store.remove(request.id)
                return True
            return False

        await self.store.remove(request.id)
        logger.info(f"Delivered queued {request.method} {request.url} (id: {request.id})")
        return True

    async def _acquire_lease(self) -> bool:
        try:
            return await self.store.backend.acquire_lease(
                self.lease_key, self.owner, self.lease_ttl_ms, self.clock()
            )
        except StorageError as e:
            logger.warning(f"Could not acquire drain lease: {e}")
            return False

    async def _release_lease(self) -> None:
        try:
            await self.store.backend.release_lease(self.lease_key, self.owner)
        except StorageError as e:
            logger.warning(f"Could not release drain lease: {e}")

    async def sync_now(self) -> None:
        """Runs one drain pass over the queue."""
        if self.is_syncing or self.monitor.status is not NetworkStatus.ONLINE:
            return

        self.is_syncing = True
        leased = False
        try:
            leased = await self._acquire_lease()
            if not leased:
                logger.info("Another process is draining the offline queue. Skipping this pass.")
                return

            self.progress = 0
            self._publish()

            pending = await self.store.load_all()
            if not pending:
                self.pending_changes = 0
                return

            logger.info(f"Syncing {len(pending)} pending requests")
            completed = 0
            for request in pending:
                # renewing restarts the TTL; a pass longer than one TTL must not be taken over
                leased = await self._acquire_lease()
                if not leased:
                    logger.warning("Drain lease lost to another process. Stopping this pass.")
                    return
                if await self.process_pending_request(request):
                    completed += 1
                    self.progress = math.floor(completed / len(pending) * 100 + 0.5)
                    self._publish()

            self.last_successful_sync = datetime.now(timezone.utc)
            await self.refresh_pending_count()
            logger.info(f"Sync pass finished: {completed}/{len(pending)} requests left the queue")
        except Exception as e:
            logger.exception(f"Sync pass failed: {e}")
        finally:
            self.is_syncing = False
            self.progress = 0
            if leased:
                await self._release_lease()
            self._publish()

    def _on_status(self, status: NetworkStatus) -> None:
        if status is NetworkStatus.ONLINE:
            self.schedule_sync()

    def schedule_sync(self) -> asyncio.Task | None:
        """Starts a drain pass in the background unless one is already running."""
        if self._sync_task is not None and not self._sync_task.done():
            return None
        self._sync_task = asyncio.create_task(self.sync_now())
        return self._sync_task

    async def _count_loop(self) -> None:
        while True:
            await self.refresh_pending_count()
            await asyncio.sleep(self.count_interval)

    async def start(self) -> None:
        if self._count_task is not None:
            return
        self._unsubscribe = self.monitor.subscribe(self._on_status)
        self._count_task = asyncio.create_task(self._count_loop())
        if self.monitor.status is NetworkStatus.ONLINE:
            self.schedule_sync()

    async def stop(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        for task in (self._count_task, self._sync_task):
            if task is None or task.done():
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._count_task = None
        self._sync_task = None
