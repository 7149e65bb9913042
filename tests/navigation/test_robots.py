"""Tests for robots.txt enforcement."""

import httpx
import pytest

from capy_web.navigation.robots import RobotsPolicy

ROBOTS_TXT = """
User-agent: *
Disallow: /private
Allow: /
"""


def policy_for(handler, enabled=True):
    """RobotsPolicy whose HTTP client is served by a mock transport."""
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return RobotsPolicy(user_agent="capy-web-bot/0.1", client=client, enabled=enabled)


class TestRobotsPolicy:
    """Test allow/deny decisions and caching."""

    @pytest.mark.asyncio
    async def test_rules_apply(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(str(request.url))
            return httpx.Response(200, text=ROBOTS_TXT)

        policy = policy_for(handler)

        assert await policy.allowed("https://acme.com/pricing")
        assert not await policy.allowed("https://acme.com/private/report")
        assert calls == ["https://acme.com/robots.txt"]

    @pytest.mark.asyncio
    async def test_origins_cached_separately(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request.url.host)
            return httpx.Response(200, text=ROBOTS_TXT)

        policy = policy_for(handler)
        await policy.allowed("https://acme.com/")
        await policy.allowed("https://docs.acme.com/")
        await policy.allowed("https://acme.com/about")

        assert calls == ["acme.com", "docs.acme.com"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [401, 403])
    async def test_auth_errors_disallow_everything(self, status):
        policy = policy_for(lambda request: httpx.Response(status))
        assert not await policy.allowed("https://acme.com/")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status", [404, 500])
    async def test_other_errors_allow_everything(self, status):
        policy = policy_for(lambda request: httpx.Response(status))
        assert await policy.allowed("https://acme.com/private")

    @pytest.mark.asyncio
    async def test_network_failure_allows_and_is_retried(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request.url.host)
            raise httpx.ConnectError("connection refused", request=request)

        policy = policy_for(handler)
        assert await policy.allowed("https://acme.com/")
        assert await policy.allowed("https://acme.com/")
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_disabled_never_fetches(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("robots.txt must not be fetched")

        policy = policy_for(handler, enabled=False)
        assert await policy.allowed("https://acme.com/private")

    @pytest.mark.asyncio
    async def test_forget_refetches(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request.url.host)
            return httpx.Response(200, text=ROBOTS_TXT)

        policy = policy_for(handler)
        await policy.allowed("https://acme.com/")
        policy.forget("https://acme.com/")
        await policy.allowed("https://acme.com/")
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_aclose_leaves_injected_client_open(self):
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(404)))
        policy = RobotsPolicy(client=client)
        await policy.aclose()
        assert not client.is_closed
        await client.aclose()
