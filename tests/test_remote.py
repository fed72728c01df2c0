"""Tests for the remote environment probe."""

from pathlib import Path

import httpx
import pytest

from localhistory.errors import RemoteEnvironmentError
from localhistory.remote import HttpRemoteEnvironment, RemoteEnvironment, RemoteEnvironmentProtocol


def make_remote(handler, api_key="test-key"):
    return HttpRemoteEnvironment(
        "https://api.example.com",
        api_key,
        transport=httpx.MockTransport(handler),
    )


class TestHTTPSEnforcement:
    def test_allows_https(self):
        remote = HttpRemoteEnvironment("https://api.example.com/", "key")
        assert remote._api_url == "https://api.example.com"

    def test_allows_localhost(self):
        remote = HttpRemoteEnvironment("http://localhost:8000", "key")
        assert remote._api_url == "http://localhost:8000"

    def test_allows_127_0_0_1(self):
        HttpRemoteEnvironment("http://127.0.0.1:8000", "key")

    def test_rejects_plain_http(self):
        with pytest.raises(ValueError, match="must use HTTPS"):
            HttpRemoteEnvironment("http://api.example.com", "key")

    def test_satisfies_protocol(self):
        assert isinstance(HttpRemoteEnvironment("https://api.example.com"), RemoteEnvironmentProtocol)


class TestGetEnvironment:
    @pytest.mark.asyncio
    async def test_returns_history_home(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"history_home": "/shared/History"})

        remote = make_remote(handler)
        env = await remote.get_environment()
        await remote.aclose()

        assert env == RemoteEnvironment(history_home=Path("/shared/History"))
        assert seen[0].url.path == "/v1/environment"
        assert seen[0].headers["Authorization"] == "Bearer test-key"

    @pytest.mark.asyncio
    async def test_no_auth_header_without_key(self):
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={})

        remote = make_remote(handler, api_key="")
        env = await remote.get_environment()

        assert env == RemoteEnvironment(history_home=None)
        assert "Authorization" not in seen[0].headers

    @pytest.mark.asyncio
    async def test_404_means_no_remote(self):
        remote = make_remote(lambda request: httpx.Response(404))
        assert await remote.get_environment() is None

    @pytest.mark.asyncio
    async def test_server_error(self):
        remote = make_remote(lambda request: httpx.Response(500))
        with pytest.raises(RemoteEnvironmentError, match="500"):
            await remote.get_environment()

    @pytest.mark.asyncio
    async def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        remote = make_remote(handler)
        with pytest.raises(RemoteEnvironmentError):
            await remote.get_environment()

    @pytest.mark.asyncio
    async def test_malformed_body(self):
        remote = make_remote(lambda request: httpx.Response(200, content=b"not json"))
        with pytest.raises(RemoteEnvironmentError):
            await remote.get_environment()

    @pytest.mark.asyncio
    async def test_non_object_body(self):
        remote = make_remote(lambda request: httpx.Response(200, json=["a"]))
        with pytest.raises(RemoteEnvironmentError, match="not an object"):
            await remote.get_environment()
