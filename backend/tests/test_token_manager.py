"""
PracticeSync — Token Manager Unit Tests
=========================================

What we test:
    ✅ Client-credentials request shape (Basic auth, grant_type)
    ✅ Token reused until the refresh buffer, then refreshed
    ✅ Concurrent callers share one refresh
    ✅ Failures raise TokenAcquisitionError / ConfigurationError
"""

import asyncio
import base64

import httpx
import pytest

from practice_sync.exceptions import ConfigurationError, TokenAcquisitionError
from practice_sync.services.token_manager import CachedToken, TokenManager


class FakeClock:
    def __init__(self, now: float = 1_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def _token_transport(requests, status=200, payload=None):
    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        body = payload if payload is not None else {
            "access_token": f"token-{len(requests)}",
            "token_type": "Bearer",
            "expires_in": 3600,
        }
        return httpx.Response(status, json=body)

    return httpx.MockTransport(handler)


class TestCachedToken:
    def test_validity_respects_buffer(self):
        token = CachedToken(token="t", expires_at=100.0)
        assert token.is_valid(now=30.0, buffer_seconds=60)
        assert not token.is_valid(now=41.0, buffer_seconds=60)
        assert not token.is_valid(now=100.0)


class TestTokenManager:
    @pytest.mark.asyncio
    async def test_requests_token_with_basic_auth(self, test_settings):
        requests = []
        async with httpx.AsyncClient(transport=_token_transport(requests)) as http:
            manager = TokenManager(test_settings, http, clock=FakeClock())
            token = await manager.get_token()

        assert token == "token-1"
        request = requests[0]
        assert request.method == "POST"
        assert str(request.url) == test_settings.halaxy_token_url
        expected = base64.b64encode(b"test-client-id:test-client-secret").decode()
        assert request.headers["Authorization"] == f"Basic {expected}"
        assert b"grant_type=client_credentials" in request.content

    @pytest.mark.asyncio
    async def test_token_is_cached_until_buffer(self, test_settings):
        requests = []
        clock = FakeClock()
        async with httpx.AsyncClient(transport=_token_transport(requests)) as http:
            manager = TokenManager(test_settings, http, clock=clock)
            assert await manager.get_token() == "token-1"

            clock.now += 3600 - 61
            assert await manager.get_token() == "token-1"

            # inside the 60s refresh buffer
            clock.now += 2
            assert await manager.get_token() == "token-2"

        assert len(requests) == 2

    @pytest.mark.asyncio
    async def test_invalidate_forces_refresh(self, test_settings):
        requests = []
        async with httpx.AsyncClient(transport=_token_transport(requests)) as http:
            manager = TokenManager(test_settings, http, clock=FakeClock())
            await manager.get_token()
            manager.invalidate()
            assert await manager.get_token() == "token-2"

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_request(self, test_settings):
        requests = []
        async with httpx.AsyncClient(transport=_token_transport(requests)) as http:
            manager = TokenManager(test_settings, http, clock=FakeClock())
            tokens = await asyncio.gather(*(manager.get_token() for _ in range(5)))

        assert set(tokens) == {"token-1"}
        assert len(requests) == 1

    @pytest.mark.asyncio
    async def test_rejected_credentials(self, test_settings):
        requests = []
        transport = _token_transport(requests, status=401, payload={"error": "invalid_client"})
        async with httpx.AsyncClient(transport=transport) as http:
            manager = TokenManager(test_settings, http, clock=FakeClock())
            with pytest.raises(TokenAcquisitionError) as exc_info:
                await manager.get_token()

        assert exc_info.value.status_code == 401
        assert "401" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_malformed_response(self, test_settings):
        transport = _token_transport([], payload={"token_type": "Bearer"})
        async with httpx.AsyncClient(transport=transport) as http:
            manager = TokenManager(test_settings, http, clock=FakeClock())
            with pytest.raises(TokenAcquisitionError):
                await manager.get_token()

    @pytest.mark.asyncio
    async def test_network_failure(self, test_settings):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as http:
            manager = TokenManager(test_settings, http, clock=FakeClock())
            with pytest.raises(TokenAcquisitionError):
                await manager.get_token()

    @pytest.mark.asyncio
    async def test_missing_credentials(self, test_settings):
        settings = test_settings.model_copy(update={"halaxy_client_secret": ""})
        requests = []
        async with httpx.AsyncClient(transport=_token_transport(requests)) as http:
            manager = TokenManager(settings, http, clock=FakeClock())
            with pytest.raises(ConfigurationError):
                await manager.get_token()
        assert requests == []

    @pytest.mark.asyncio
    async def test_status_reports_expiry(self, test_settings):
        clock = FakeClock()
        async with httpx.AsyncClient(transport=_token_transport([])) as http:
            manager = TokenManager(test_settings, http, clock=clock)
            assert manager.status().has_token is False

            await manager.get_token()
            status = manager.status()
            assert status.has_token is True
            assert status.is_expired is False

            clock.now += 4000
            assert manager.status().is_expired is True
