"""
PracticeSync — Halaxy OAuth Token Manager
===========================================

What:  Acquires and caches the client-credential access token for Halaxy.
Why:   Every FHIR call needs a bearer token, and the token endpoint is slow
       and rate limited; one token is reused until shortly before it expires.
How:   POST {token_url} with HTTP Basic (client_id:client_secret) and
       grant_type=client_credentials. The result is kept in a CachedToken
       owned by this object and refreshed lazily under an asyncio.Lock, so
       concurrent callers trigger a single refresh.
Who:   Owned by HalaxyClient; one instance per process.

Failures raise TokenAcquisitionError, never RemoteApiError, so callers can
tell "bad credentials / auth outage" from "bad resource fetch".
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

import httpx

from practice_sync.config import Settings
from practice_sync.exceptions import MAX_ERROR_BODY_LENGTH, ConfigurationError, TokenAcquisitionError
from practice_sync.schemas.sync import TokenStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CachedToken:
    token: str
    expires_at: float  # epoch seconds

    def is_valid(self, now: float, buffer_seconds: float = 0) -> bool:
        return now < self.expires_at - buffer_seconds


class TokenManager:
    def __init__(
        self,
        settings: Settings,
        http: httpx.AsyncClient,
        clock: Callable[[], float] = time.time,
    ):
        self._settings = settings
        self._http = http
        self._clock = clock
        self._cached: Optional[CachedToken] = None
        self._lock = asyncio.Lock()

    async def get_token(self) -> str:
        """Return a valid access token, refreshing it if it is near expiry."""
        buffer = self._settings.token_refresh_buffer_seconds
        cached = self._cached
        if cached and cached.is_valid(self._clock(), buffer):
            return cached.token

        async with self._lock:
            # Another coroutine may have refreshed while we waited
            cached = self._cached
            if cached and cached.is_valid(self._clock(), buffer):
                return cached.token
            self._cached = await self._request_token()
            return self._cached.token

    def invalidate(self) -> None:
        """Drop the cached token; the next get_token() fetches a new one."""
        self._cached = None

    def status(self) -> TokenStatus:
        cached = self._cached
        if cached is None:
            return TokenStatus(has_token=False, expires_at=None, is_expired=True)
        return TokenStatus(
            has_token=True,
            expires_at=datetime.fromtimestamp(cached.expires_at, tz=timezone.utc),
            is_expired=not cached.is_valid(self._clock()),
        )

    async def _request_token(self) -> CachedToken:
        if not self._settings.is_configured:
            raise ConfigurationError(
                "Halaxy credentials not configured. "
                "Set HALAXY_CLIENT_ID and HALAXY_CLIENT_SECRET."
            )

        logger.info("Requesting new Halaxy access token")
        try:
            response = await self._http.post(
                self._settings.halaxy_token_url,
                data={"grant_type": "client_credentials"},
                auth=(self._settings.halaxy_client_id, self._settings.halaxy_client_secret),
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as e:
            logger.error("Token request failed: %s", str(e))
            raise TokenAcquisitionError(
                message=f"Failed to reach Halaxy token endpoint: {type(e).__name__}",
                context={"error_type": type(e).__name__},
            ) from e

        if response.status_code != 200:
            body = response.text[:MAX_ERROR_BODY_LENGTH]
            logger.error("Token request rejected: %d %s", response.status_code, body)
            raise TokenAcquisitionError(
                message=f"Failed to get Halaxy access token: {response.status_code} {body}".rstrip(),
                status_code=response.status_code,
            )

        try:
            payload = response.json()
            access_token = payload["access_token"]
            expires_in = float(payload.get("expires_in", 3600))
        except (ValueError, KeyError, TypeError) as e:
            raise TokenAcquisitionError(
                message="Halaxy token response was not understood",
                status_code=response.status_code,
            ) from e

        expires_at = self._clock() + expires_in
        logger.info("Halaxy access token obtained, expires in %ds", int(expires_in))
        return CachedToken(token=access_token, expires_at=expires_at)
