import logging
from typing import Any

import httpx

from structura_sync.config import API_BASE_URL, IS_DEVELOPMENT, REQUEST_TIMEOUT
from structura_sync.errors import ApiError, NetworkError, RequestTimeoutError

logger = logging.getLogger(__name__)


def create_client(base_url: str = API_BASE_URL, timeout: float = REQUEST_TIMEOUT, **kwargs) -> httpx.AsyncClient:
    """Client for the Bau-Structura REST API. Session cookies persist on the client and go out with every request."""
    return httpx.AsyncClient(base_url=base_url, timeout=timeout, **kwargs)


def raise_for_status(response: httpx.Response) -> None:
    if response.is_success:
        return
    text = response.text or response.reason_phrase
    if IS_DEVELOPMENT:
        logger.error(f"API error ({response.status_code}) {response.request.url} - Body: {text}")
    raise ApiError(response.status_code, text, str(response.request.url))


async def api_request(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    data: Any = None,
    timeout: float | None = None,
) -> httpx.Response:
    """Sends one request and returns the response, raising for anything but 2xx.

    ApiError carries status and body of a non-2xx answer, RequestTimeoutError
    means no answer within the timeout, NetworkError a transport failure.
    """
    timeout = REQUEST_TIMEOUT if timeout is None else timeout
    if IS_DEVELOPMENT:
        logger.debug(f"[API] {method} {url}" + (f" body={data!r}" if data is not None else ""))

    try:
        if data is not None:
            response = await client.request(method, url, json=data, timeout=timeout)
        else:
            response = await client.request(method, url, timeout=timeout)
    except httpx.TimeoutException as e:
        raise RequestTimeoutError(method, url, timeout) from e
    except httpx.TransportError as e:
        raise NetworkError(method, url, str(e) or type(e).__name__) from e

    raise_for_status(response)
    return response


async def get_json(
    client: httpx.AsyncClient,
    path: str,
    on_401: str = "throw",
    timeout: float | None = None,
) -> Any:
    """GETs a resource and decodes it. With on_401="return_none" an unauthenticated answer yields None."""
    try:
        response = await api_request(client, "GET", path, timeout=timeout)
    except ApiError as e:
        if e.status_code == 401 and on_401 == "return_none":
            return None
        raise
    return response.json()
