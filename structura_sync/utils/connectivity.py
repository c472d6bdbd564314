import asyncio
import logging
from typing import Callable

from structura_sync.config import CONNECTIVITY_PROBE_HOST, CONNECTIVITY_PROBE_PORT, HEALTH_CHECK_TIMEOUT

logger = logging.getLogger(__name__)

ONLINE = "online"
OFFLINE = "offline"


class PlatformConnectivity:
    """Coarse "is there a network at all" flag with online/offline transition events.

    The flag is set by whoever owns the platform signal (``set_online``) or,
    when a probe host is configured, refreshed by a TCP connect to it.
    """

    def __init__(
        self,
        online: bool = True,
        probe_host: str | None = CONNECTIVITY_PROBE_HOST,
        probe_port: int = CONNECTIVITY_PROBE_PORT,
        probe_timeout: float = HEALTH_CHECK_TIMEOUT,
    ):
        self._online = online
        self.probe_host = probe_host
        self.probe_port = probe_port
        self.probe_timeout = probe_timeout
        self._listeners: dict[str, list[Callable[[], None]]] = {ONLINE: [], OFFLINE: []}

    @property
    def is_online(self) -> bool:
        return self._online

    def add_listener(self, event: str, callback: Callable[[], None]) -> None:
        self._listeners[event].append(callback)

    def remove_listener(self, event: str, callback: Callable[[], None]) -> None:
        if callback in self._listeners[event]:
            self._listeners[event].remove(callback)

    def listener_count(self) -> int:
        return sum(len(callbacks) for callbacks in self._listeners.values())

    def set_online(self, online: bool) -> None:
        if online == self._online:
            return
        self._online = online
        event = ONLINE if online else OFFLINE
        logger.info(f"Platform connectivity changed: {event}")
        for callback in list(self._listeners[event]):
            try:
                callback()
            except Exception:
                logger.exception(f"Connectivity listener for '{event}' failed")

    async def refresh(self) -> bool:
        """Re-probes the platform signal. Without a probe host the current flag is kept."""
        if not self.probe_host:
            return self._online
        try:
            _, writer = await asyncio.wait_for(
                asyncio.open_connection(self.probe_host, self.probe_port), timeout=self.probe_timeout
            )
            writer.close()
            await writer.wait_closed()
            self.set_online(True)
        except (OSError, asyncio.TimeoutError) as e:
            logger.debug(f"Connectivity probe to {self.probe_host}:{self.probe_port} failed: {e}")
            self.set_online(False)
        return self._online
