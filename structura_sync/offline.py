import logging
from typing import Any, Callable

import httpx

from structura_sync.config import FEATURES
from structura_sync.errors import SyncError, categorize_error
from structura_sync.models import DeliveryOutcome, DeliveryResult, PendingRequest, now_ms
from structura_sync.store import PendingRequestStore
from structura_sync.utils.connectivity import PlatformConnectivity
from structura_sync.utils.http import api_request

logger = logging.getLogger(__name__)

QUEUED_MESSAGE = "Request will be synchronized as soon as the connection is restored"


def queued_response(request: PendingRequest) -> httpx.Response:
    """Stand-in 200 answer for a request that went into the offline queue."""
    return httpx.Response(
        200,
        json={"success": True, "offlineQueued": True, "message": QUEUED_MESSAGE, "requestId": request.id},
    )


async def send_with_offline_support(
    client: httpx.AsyncClient,
    store: PendingRequestStore,
    connectivity: PlatformConnectivity,
    method: str,
    url: str,
    body: Any = None,
    queue_enabled: bool = FEATURES["offline_queue"],
    clock: Callable[[], int] = now_ms,
) -> DeliveryResult:
    """Sends a request, queueing it when it fails while the platform is offline.

    The outcome says what happened: DELIVERED with the real response, QUEUED
    with the stored request, or FAILED with the original error.
    """
    try:
        response = await api_request(client, method, url, body)
    except (SyncError, httpx.HTTPError) as e:
        if connectivity.is_online or not queue_enabled:
            logger.error(f"{method} {url} failed ({categorize_error(e).value}): {e}")
            return DeliveryResult(outcome=DeliveryOutcome.FAILED, error=e)

        request = PendingRequest.create(method, url, body, timestamp=clock())
        await store.store(request)
        return DeliveryResult(outcome=DeliveryOutcome.QUEUED, request=request, response=queued_response(request))

    return DeliveryResult(outcome=DeliveryOutcome.DELIVERED, response=response)


async def request_with_offline_support(
    client: httpx.AsyncClient,
    store: PendingRequestStore,
    connectivity: PlatformConnectivity,
    method: str,
    url: str,
    body: Any = None,
    **kwargs,
) -> httpx.Response:
    """Drop-in replacement for api_request: queued writes come back as a 200 with offlineQueued set,
    failures while online are raised unchanged.
    """
    result = await send_with_offline_support(client, store, connectivity, method, url, body, **kwargs)
    if result.outcome is DeliveryOutcome.FAILED:
        raise result.error
    return result.response
