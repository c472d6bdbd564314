import asyncio
import logging
import time
from typing import Callable

import httpx

from structura_sync.config import (
    HEALTH_CHECK_INTERVAL,
    HEALTH_CHECK_TIMEOUT,
    LATENCY_THRESHOLD_MS,
    PING_PATH,
)
from structura_sync.models import NetworkStatus
from structura_sync.utils.connectivity import OFFLINE, ONLINE, PlatformConnectivity

logger = logging.getLogger(__name__)

StatusListener = Callable[[NetworkStatus], None]


class NetworkMonitor:
    """Keeps a NetworkStatus up to date from platform events and a periodic ping of the API."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        connectivity: PlatformConnectivity,
        ping_path: str = PING_PATH,
        interval: float = HEALTH_CHECK_INTERVAL,
        timeout: float = HEALTH_CHECK_TIMEOUT,
        latency_threshold_ms: float = LATENCY_THRESHOLD_MS,
        timer: Callable[[], float] = time.perf_counter,
    ):
        self.client = client
        self.connectivity = connectivity
        self.ping_path = ping_path
        self.interval = interval
        self.timeout = timeout
        self.latency_threshold_ms = latency_threshold_ms
        self.timer = timer

        self._status = NetworkStatus.ONLINE if connectivity.is_online else NetworkStatus.OFFLINE
        self._listeners: list[StatusListener] = []
        self._task: asyncio.Task | None = None
        self.was_offline = False

    @property
    def status(self) -> NetworkStatus:
        return self._status

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def subscribe(self, listener: StatusListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def reset_was_offline(self) -> None:
        self.was_offline = False

    def _set_status(self, status: NetworkStatus) -> None:
        if status == self._status:
            return
        previous, self._status = self._status, status

        if status is NetworkStatus.OFFLINE:
            self.was_offline = True
            logger.warning("No network connection. Writes will be queued until it is restored.")
        elif status is NetworkStatus.ONLINE and self.was_offline:
            logger.info("Network connection restored.")
        logger.debug(f"Network status {previous.value} -> {status.value}")

        for listener in list(self._listeners):
            try:
                listener(status)
            except Exception:
                logger.exception("Network status listener failed")

    def _handle_online(self) -> None:
        self._set_status(NetworkStatus.ONLINE)

    def _handle_offline(self) -> None:
        self._set_status(NetworkStatus.OFFLINE)

    async def check_connectivity(self) -> NetworkStatus:
        """Pings the API once and reclassifies the connection."""
        await self.connectivity.refresh()
        if not self.connectivity.is_online:
            self._set_status(NetworkStatus.OFFLINE)
            return self._status

        started = self.timer()
        try:
            response = await self.client.get(
                self.ping_path, headers={"Cache-Control": "no-cache"}, timeout=self.timeout
            )
        except (httpx.HTTPError, OSError) as e:
            logger.debug(f"Health check {self.ping_path} failed: {e!r}")
            status = NetworkStatus.LIMITED if self.connectivity.is_online else NetworkStatus.OFFLINE
            self._set_status(status)
            return self._status

        if not response.is_success:
            self._set_status(NetworkStatus.LIMITED)
            return self._status

        latency_ms = (self.timer() - started) * 1000
        if latency_ms > self.latency_threshold_ms:
            self._set_status(NetworkStatus.LIMITED)
        else:
            self._set_status(NetworkStatus.ONLINE)
        return self._status

    async def _poll(self) -> None:
        while True:
            await self.check_connectivity()
            await asyncio.sleep(self.interval)

    async def start(self) -> None:
        if self.running:
            return
        self._status = NetworkStatus.ONLINE if self.connectivity.is_online else NetworkStatus.OFFLINE
        self.connectivity.add_listener(ONLINE, self._handle_online)
        self.connectivity.add_listener(OFFLINE, self._handle_offline)
        self._task = asyncio.create_task(self._poll())
        logger.info(f"Network monitor started (every {self.interval:g}s against {self.ping_path})")

    async def stop(self) -> None:
        self.connectivity.remove_listener(ONLINE, self._handle_online)
        self.connectivity.remove_listener(OFFLINE, self._handle_offline)
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Network monitor stopped.")
