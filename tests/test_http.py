import json

import httpx
import pytest

from structura_sync.errors import ApiError, NetworkError, RequestTimeoutError
from structura_sync.utils.http import api_request, create_client, get_json


async def test_post_sends_json_body(client, api_mock):
    route = api_mock.post("/api/notes").mock(return_value=httpx.Response(201, json={"id": 1}))

    response = await api_request(client, "POST", "/api/notes", {"text": "test"})

    assert response.status_code == 201
    sent = route.calls.last.request
    assert json.loads(sent.content) == {"text": "test"}
    assert sent.headers["content-type"] == "application/json"


async def test_request_without_body_sends_no_content_type(client, api_mock):
    route = api_mock.delete("/api/notes/1").mock(return_value=httpx.Response(204))

    await api_request(client, "DELETE", "/api/notes/1")

    assert "content-type" not in route.calls.last.request.headers


async def test_non_2xx_raises_api_error_with_status_and_body(client, api_mock):
    api_mock.post("/api/projects").mock(return_value=httpx.Response(500, text="database down"))

    with pytest.raises(ApiError) as exc_info:
        await api_request(client, "POST", "/api/projects", {"name": "Kanal Nord"})

    assert exc_info.value.status_code == 500
    assert exc_info.value.body == "database down"
    assert str(exc_info.value) == "500: database down"


async def test_empty_error_body_falls_back_to_reason_phrase(client, api_mock):
    api_mock.get("/api/projects").mock(return_value=httpx.Response(503))

    with pytest.raises(ApiError, match="503: Service Unavailable"):
        await api_request(client, "GET", "/api/projects")


async def test_timeout_is_reported_separately(client, api_mock):
    api_mock.get("/api/projects").mock(side_effect=httpx.ReadTimeout("timed out"))

    with pytest.raises(RequestTimeoutError) as exc_info:
        await api_request(client, "GET", "/api/projects", timeout=15)

    assert str(exc_info.value) == "API request timeout (> 15s): GET /api/projects"


async def test_connection_failure_raises_network_error(client, api_mock):
    api_mock.get("/api/projects").mock(side_effect=httpx.ConnectError("connection refused"))

    with pytest.raises(NetworkError):
        await api_request(client, "GET", "/api/projects")


async def test_get_json_decodes_payload(client, api_mock):
    api_mock.get("/api/user").mock(return_value=httpx.Response(200, json={"username": "bauleiter"}))

    assert await get_json(client, "/api/user") == {"username": "bauleiter"}


async def test_get_json_can_return_none_when_unauthenticated(client, api_mock):
    api_mock.get("/api/user").mock(return_value=httpx.Response(401, text="Unauthorized"))

    assert await get_json(client, "/api/user", on_401="return_none") is None
    with pytest.raises(ApiError):
        await get_json(client, "/api/user")


async def test_create_client_uses_base_url_and_timeout():
    async with create_client(base_url="https://api.example.com", timeout=12) as client:
        assert client.base_url.host == "api.example.com"
        assert client.timeout.read == 12
