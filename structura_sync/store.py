import json
import logging
from typing import Callable

from pydantic import ValidationError

from structura_sync.config import MAX_QUEUE_SIZE, STORAGE_KEY
from structura_sync.errors import StorageError
from structura_sync.models import PendingRequest, now_ms

logger = logging.getLogger(__name__)

# ValueError covers bad JSON and pydantic's ValidationError; TypeError covers entries with mistyped fields
STORE_FAILURES = (StorageError, ValueError, TypeError)


class PendingRequestStore:
    """Durable list of requests waiting for delivery.

    The whole queue lives under one key as a JSON array, in insertion order.
    Every operation is best effort: storage failures are logged and never
    reach the caller.
    """

    def __init__(
        self,
        backend,
        key: str = STORAGE_KEY,
        max_size: int | None = MAX_QUEUE_SIZE,
        on_evict: Callable[[PendingRequest], None] | None = None,
        clock: Callable[[], int] = now_ms,
    ):
        self.backend = backend
        self.key = key
        self.max_size = max_size
        self.on_evict = on_evict
        self.clock = clock

    async def _read(self) -> list[dict]:
        raw = await self.backend.get(self.key)
        if not raw:
            return []
        data = json.loads(raw)
        if not isinstance(data, list):
            raise ValueError(f"Expected a JSON array under '{self.key}', got {type(data).__name__}")
        entries = [item for item in data if isinstance(item, dict)]
        if len(entries) != len(data):
            logger.warning(f"Dropping {len(data) - len(entries)} non-object entries from '{self.key}'")
        return entries

    async def _write(self, items: list[dict]) -> None:
        await self.backend.set(self.key, json.dumps(items))

    async def store(self, request: PendingRequest) -> None:
        """Adds the request, replacing an entry with the same id."""
        try:
            items = await self._read()
            entry = request.to_storage()
            for index, item in enumerate(items):
                if item.get("id") == request.id:
                    items[index] = entry
                    break
            else:
                items = self._evict_for(items)
                items.append(entry)
            await self._write(items)
            logger.info(f"Queued {request.method} {request.url} for later delivery (id: {request.id})")
        except STORE_FAILURES as e:
            logger.warning(f"Failed to store pending request {request.id}: {e}")

    def _evict_for(self, items: list[dict]) -> list[dict]:
        if self.max_size is None or len(items) < self.max_size:
            return items
        ordered = sorted(items, key=lambda item: item.get("timestamp", 0))
        overflow = len(items) - self.max_size + 1
        evicted_ids = set()
        for item in ordered[:overflow]:
            evicted_ids.add(item.get("id"))
            logger.warning(
                f"Offline queue is full ({self.max_size}), evicting oldest request "
                f"{item.get('method')} {item.get('url')} (id: {item.get('id')})"
            )
            if self.on_evict:
                try:
                    self.on_evict(PendingRequest.model_validate(item))
                except ValidationError:
                    logger.warning(f"Evicted entry {item.get('id')} is malformed, not reported")
        return [item for item in items if item.get("id") not in evicted_ids]

    async def load_all(self) -> list[PendingRequest]:
        """Returns every pending request in stored order, or [] when the store is unreadable."""
        try:
            items = await self._read()
        except STORE_FAILURES as e:
            logger.error(f"Failed to load pending requests: {e}")
            return []

        requests = []
        for item in items:
            try:
                requests.append(PendingRequest.model_validate(item))
            except ValidationError as e:
                logger.warning(f"Skipping malformed pending request {item!r}: {e}")
        return requests

    async def count(self) -> int:
        return len(await self.load_all())

    async def remove(self, request_id: str) -> None:
        try:
            items = await self._read()
            remaining = [item for item in items if item.get("id") != request_id]
            if len(remaining) != len(items):
                await self._write(remaining)
        except STORE_FAILURES as e:
            logger.warning(f"Failed to remove pending request {request_id}: {e}")

    async def update_retry(self, request_id: str) -> PendingRequest | None:
        """Increments the retry counter and stamps the attempt time. Returns the updated entry, if any."""
        try:
            items = await self._read()
            for item in items:
                if item.get("id") == request_id:
                    item["retryCount"] = item.get("retryCount", 0) + 1
                    item["lastRetry"] = self.clock()
                    await self._write(items)
                    return PendingRequest.model_validate(item)
        except STORE_FAILURES as e:
            logger.warning(f"Failed to update retry counter of {request_id}: {e}")
        return None

    async def clear(self) -> None:
        try:
            await self.backend.delete(self.key)
            logger.info("Offline queue cleared.")
        except STORE_FAILURES as e:
            logger.warning(f"Failed to clear offline queue: {e}")
