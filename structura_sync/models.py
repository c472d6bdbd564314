import time
from datetime import datetime
from enum import Enum
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict, Field

from structura_sync.errors import user_message


def now_ms() -> int:
    return int(time.time() * 1000)


def make_request_id(method: str, url: str, timestamp: int) -> str:
    return f"{method}-{url}-{timestamp}"


class NetworkStatus(str, Enum):
    ONLINE = "online"
    OFFLINE = "offline"
    LIMITED = "limited"


class PendingRequest(BaseModel):
    """A mutation waiting for delivery. Stored with the camelCase keys of the shared queue format."""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    url: str
    method: str
    body: Any = None
    timestamp: int
    retry_count: int = Field(default=0, ge=0, alias="retryCount")
    last_retry: int | None = Field(default=None, alias="lastRetry")

    @classmethod
    def create(cls, method: str, url: str, body: Any = None, timestamp: int | None = None) -> "PendingRequest":
        timestamp = now_ms() if timestamp is None else timestamp
        return cls(
            id=make_request_id(method, url, timestamp),
            url=url,
            method=method,
            body=body,
            timestamp=timestamp,
        )

    def to_storage(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class DeliveryOutcome(str, Enum):
    DELIVERED = "delivered"
    QUEUED = "queued"
    FAILED = "failed"


class DeliveryResult(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    outcome: DeliveryOutcome
    response: httpx.Response | None = None
    request: PendingRequest | None = None
    error: Exception | None = None

    @property
    def delivered(self) -> bool:
        return self.outcome is DeliveryOutcome.DELIVERED

    @property
    def queued(self) -> bool:
        return self.outcome is DeliveryOutcome.QUEUED

    @property
    def message(self) -> str | None:
        """What to tell the user about a failed delivery."""
        return user_message(self.error) if self.error is not None else None


class SyncStatus(BaseModel):
    is_syncing: bool = False
    pending_changes: int = 0
    progress: int = 0
    last_successful_sync: datetime | None = None
