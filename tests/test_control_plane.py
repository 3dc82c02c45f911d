import json

import httpx
import pytest

from game_session_host.control_plane import ControlPlaneClient, DelegateError


def _recording_transport(responder):
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return responder(request)

    return httpx.MockTransport(handler), requests


@pytest.mark.anyio
async def test_host_posts_requester_and_returns_body_unchanged() -> None:
    body = {"ok": True, "joinCode": "ABCD1234", "hostId": "cp-1", "extra": {"region": "eu"}}
    transport, requests = _recording_transport(lambda _: httpx.Response(200, json=body))
    client = ControlPlaneClient(
        "https://control.example.com/", api_key="secret", transport=transport
    )

    result = await client.host("player-1")

    assert result == body
    assert len(requests) == 1
    request = requests[0]
    assert request.method == "POST"
    assert str(request.url) == "https://control.example.com/host"
    assert request.headers["x-api-key"] == "secret"
    assert json.loads(request.content) == {"requesterId": "player-1"}


@pytest.mark.anyio
async def test_bare_session_body_is_marked_ok() -> None:
    body = {"joinCode": "ABCD12", "hostId": "cp-1", "message": "m", "wsUrl": None}
    transport, _ = _recording_transport(lambda _: httpx.Response(200, json=body))
    client = ControlPlaneClient("https://control.example.com", transport=transport)

    result = await client.host(None)

    assert result == {"ok": True, **body}


@pytest.mark.anyio
async def test_explicit_not_ok_body_is_a_delegate_error() -> None:
    transport, _ = _recording_transport(
        lambda _: httpx.Response(200, json={"ok": False, "error": "no capacity"})
    )
    client = ControlPlaneClient("https://control.example.com", transport=transport)
    with pytest.raises(DelegateError) as excinfo:
        await client.host(None)
    assert excinfo.value.message == "no capacity"
    assert excinfo.value.status_code == 200


@pytest.mark.anyio
async def test_api_key_header_omitted_when_not_configured() -> None:
    transport, requests = _recording_transport(lambda _: httpx.Response(200, json={"ok": True}))
    client = ControlPlaneClient("https://control.example.com", path="sessions", transport=transport)
    await client.host(None)
    assert "x-api-key" not in requests[0].headers
    assert str(requests[0].url) == "https://control.example.com/sessions"


@pytest.mark.anyio
async def test_404_on_api_base_retries_once_without_segment() -> None:
    def responder(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/api/host":
            return httpx.Response(404, text="not found")
        return httpx.Response(200, json={"ok": True, "joinCode": "RETRY1"})

    transport, requests = _recording_transport(responder)
    client = ControlPlaneClient("https://control.example.com/api", transport=transport)

    result = await client.host(None)

    assert result["joinCode"] == "RETRY1"
    assert [r.url.path for r in requests] == ["/api/host", "/host"]


@pytest.mark.anyio
async def test_retry_is_bounded_to_one_attempt() -> None:
    transport, requests = _recording_transport(lambda _: httpx.Response(404, text="nope"))
    client = ControlPlaneClient("https://control.example.com/api", transport=transport)
    with pytest.raises(DelegateError) as excinfo:
        await client.host(None)
    assert excinfo.value.status_code == 404
    assert len(requests) == 2


@pytest.mark.anyio
async def test_404_without_known_segment_is_not_retried() -> None:
    transport, requests = _recording_transport(lambda _: httpx.Response(404, text="nope"))
    client = ControlPlaneClient("https://control.example.com/v1", transport=transport)
    with pytest.raises(DelegateError):
        await client.host(None)
    assert len(requests) == 1


@pytest.mark.anyio
async def test_server_error_becomes_delegate_error() -> None:
    transport, _ = _recording_transport(lambda _: httpx.Response(503, text="maintenance"))
    client = ControlPlaneClient("https://control.example.com", transport=transport)
    with pytest.raises(DelegateError) as excinfo:
        await client.host(None)
    assert excinfo.value.status_code == 503
    assert "503" in excinfo.value.message
    assert "maintenance" in excinfo.value.message


@pytest.mark.anyio
async def test_network_failure_becomes_delegate_error() -> None:
    def responder(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    transport, _ = _recording_transport(responder)
    client = ControlPlaneClient("https://control.example.com", transport=transport)
    with pytest.raises(DelegateError) as excinfo:
        await client.host(None)
    assert excinfo.value.status_code is None
    assert "ConnectError" in excinfo.value.message


@pytest.mark.anyio
async def test_non_json_body_is_rejected() -> None:
    transport, _ = _recording_transport(lambda _: httpx.Response(200, text="<html>"))
    client = ControlPlaneClient("https://control.example.com", transport=transport)
    with pytest.raises(DelegateError):
        await client.host(None)


@pytest.mark.anyio
async def test_teardown_sends_delete_with_host_id() -> None:
    transport, requests = _recording_transport(
        lambda _: httpx.Response(200, json={"ok": True, "hostId": "cp-1", "message": "stopped"})
    )
    client = ControlPlaneClient("https://control.example.com", transport=transport)
    result = await client.teardown("cp-1")
    assert result["message"] == "stopped"
    assert requests[0].method == "DELETE"
    assert json.loads(requests[0].content) == {"hostId": "cp-1"}


def test_from_config_requires_base_url(make_config) -> None:
    assert ControlPlaneClient.from_config(make_config()) is None
    config = make_config({"control_plane": {"base_url": "https://cp.example.com", "path": "/games/host"}})
    client = ControlPlaneClient.from_config(config)
    assert client is not None
    assert client.url_for() == "https://cp.example.com/games/host"
