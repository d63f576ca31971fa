"""
Unit tests for the Cloud Foundry instance resolver.
"""

import httpx
import pytest

from shared.errors import ResolveFailed
from service_federation.app.discovery.resolver import AppInstances, InstanceResolver

from conftest import APP_GUID


class FakePlatform:
    """Minimal Cloud Foundry API and UAA behind an httpx MockTransport."""

    def __init__(self, instances=3, app_status=200, token_status=200, expires_in=3600):
        self.instances = instances
        self.app_status = app_status
        self.token_status = token_status
        self.expires_in = expires_in
        self.token_requests = []
        self.api_requests = []
        self.reject_next_api_call = False
        self.issued = 0

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if request.url.host == "api.example.com" and path == "/":
            return httpx.Response(200, json={"links": {"login": {"href": "https://login.example.com/"}}})

        if request.url.host == "login.example.com" and path == "/oauth/token":
            self.token_requests.append(request)
            if self.token_status != 200:
                return httpx.Response(self.token_status, json={"error": "unauthorized"})
            self.issued += 1
            return httpx.Response(200, json={"access_token": f"token-{self.issued}", "expires_in": self.expires_in})

        self.api_requests.append(request)
        if self.reject_next_api_call:
            self.reject_next_api_call = False
            return httpx.Response(401, json={"errors": [{"title": "CF-InvalidAuthToken"}]})
        if path == f"/v3/apps/{APP_GUID}":
            if self.app_status != 200:
                return httpx.Response(self.app_status, json={"errors": [{"title": "CF-ResourceNotFound"}]})
            return httpx.Response(200, json={"guid": APP_GUID, "name": "web-app"})
        if path == f"/v3/apps/{APP_GUID}/processes/web":
            return httpx.Response(200, json={"type": "web", "instances": self.instances})
        return httpx.Response(404, json={})


class TestInstanceResolver:
    """Test cases for InstanceResolver."""

    @pytest.fixture
    def platform(self):
        """Create a fake platform."""
        return FakePlatform()

    @pytest.fixture
    def resolver(self, config, platform):
        """Create InstanceResolver talking to the fake platform."""
        client = httpx.AsyncClient(transport=httpx.MockTransport(platform.handler))
        return InstanceResolver(config, client=client)

    @pytest.mark.asyncio
    async def test_resolve_success(self, resolver, platform):
        """Test instance count and name are resolved."""
        result = await resolver.resolve(APP_GUID)

        assert result == AppInstances(instance_count=3, app_name="web-app")
        assert platform.api_requests[0].headers["Authorization"] == "bearer token-1"

    @pytest.mark.asyncio
    async def test_password_grant(self, resolver, platform):
        """Test the token request uses the cf client and configured credentials."""
        await resolver.resolve(APP_GUID)

        request = platform.token_requests[0]
        body = request.content.decode()
        assert "grant_type=password" in body
        assert "username=admin" in body
        assert "password=secret" in body
        assert request.headers["Authorization"].startswith("Basic ")

    @pytest.mark.asyncio
    async def test_token_reused_but_instances_not_cached(self, resolver, platform):
        """Test a second resolve reuses the token and sees the new instance count."""
        await resolver.resolve(APP_GUID)
        platform.instances = 5

        result = await resolver.resolve(APP_GUID)

        assert result.instance_count == 5
        assert len(platform.token_requests) == 1

    @pytest.mark.asyncio
    async def test_expired_token_refreshed(self, config):
        """Test a token inside the expiry margin is never reused."""
        platform = FakePlatform(expires_in=10)
        client = httpx.AsyncClient(transport=httpx.MockTransport(platform.handler))
        resolver = InstanceResolver(config, client=client)

        await resolver.resolve(APP_GUID)
        await resolver.resolve(APP_GUID)

        assert len(platform.token_requests) == 4

    @pytest.mark.asyncio
    async def test_rejected_token_refreshed_once(self, resolver, platform):
        """Test a 401 triggers a new token and a repeated request."""
        await resolver.resolve(APP_GUID)
        platform.reject_next_api_call = True

        result = await resolver.resolve(APP_GUID)

        assert result.instance_count == 3
        assert len(platform.token_requests) == 2
        assert platform.api_requests[-1].headers["Authorization"] == "bearer token-2"

    @pytest.mark.asyncio
    async def test_unknown_application(self, config):
        """Test a missing application fails resolution."""
        platform = FakePlatform(app_status=404)
        client = httpx.AsyncClient(transport=httpx.MockTransport(platform.handler))
        resolver = InstanceResolver(config, client=client)

        with pytest.raises(ResolveFailed) as exc_info:
            await resolver.resolve(APP_GUID)

        assert exc_info.value.message == "Application not found"

    @pytest.mark.asyncio
    async def test_authentication_failure(self, config):
        """Test rejected credentials fail resolution."""
        platform = FakePlatform(token_status=401)
        client = httpx.AsyncClient(transport=httpx.MockTransport(platform.handler))
        resolver = InstanceResolver(config, client=client)

        with pytest.raises(ResolveFailed) as exc_info:
            await resolver.resolve(APP_GUID)

        assert exc_info.value.details["status_code"] == 401

    @pytest.mark.asyncio
    async def test_server_error(self, config):
        """Test a platform 5xx fails resolution."""
        platform = FakePlatform(app_status=502)
        client = httpx.AsyncClient(transport=httpx.MockTransport(platform.handler))
        resolver = InstanceResolver(config, client=client)

        with pytest.raises(ResolveFailed) as exc_info:
            await resolver.resolve(APP_GUID)

        assert exc_info.value.details["status_code"] == 502

    @pytest.mark.asyncio
    async def test_timeout(self, config):
        """Test a platform timeout fails resolution."""
        def handler(request):
            raise httpx.ConnectTimeout("timed out", request=request)

        resolver = InstanceResolver(config, client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))

        with pytest.raises(ResolveFailed) as exc_info:
            await resolver.resolve(APP_GUID)

        assert exc_info.value.message == "Platform API timeout"

    @pytest.mark.asyncio
    async def test_unreachable(self, config):
        """Test a connection error fails resolution."""
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        resolver = InstanceResolver(config, client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))

        with pytest.raises(ResolveFailed) as exc_info:
            await resolver.resolve(APP_GUID)

        assert exc_info.value.code == "RESOLVE_FAILED"
        assert "connection refused" in exc_info.value.details["error"]

    @pytest.mark.asyncio
    async def test_malformed_process(self, config):
        """Test a process payload without instances fails resolution."""
        def handler(request):
            path = request.url.path
            if path == "/":
                return httpx.Response(200, json={"links": {"uaa": {"href": "https://uaa.example.com"}}})
            if path == "/oauth/token":
                return httpx.Response(200, json={"access_token": "t", "expires_in": 600})
            if path.endswith("/processes/web"):
                return httpx.Response(200, json={"type": "web"})
            return httpx.Response(200, json={"name": "web-app"})

        resolver = InstanceResolver(config, client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))

        with pytest.raises(ResolveFailed) as exc_info:
            await resolver.resolve(APP_GUID)

        assert exc_info.value.message == "Malformed platform API response"

    @pytest.mark.asyncio
    async def test_malformed_token_expiry(self, config):
        """Test a non-numeric token lifetime fails resolution."""
        def handler(request):
            if request.url.path == "/":
                return httpx.Response(200, json={"links": {"login": {"href": "https://login.example.com"}}})
            if request.url.path == "/oauth/token":
                return httpx.Response(200, json={"access_token": "t", "expires_in": "soon"})
            return httpx.Response(200, json={"name": "web-app", "instances": 1})

        resolver = InstanceResolver(config, client=httpx.AsyncClient(transport=httpx.MockTransport(handler)))

        with pytest.raises(ResolveFailed) as exc_info:
            await resolver.resolve(APP_GUID)

        assert exc_info.value.message == "Malformed token response"

    @pytest.mark.asyncio
    async def test_aclose_leaves_injected_client_open(self, resolver):
        """Test an injected client is owned by the caller."""
        await resolver.aclose()

        assert resolver._client.is_closed is False
