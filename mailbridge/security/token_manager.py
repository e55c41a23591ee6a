"""
OAuth2 access-token lifecycle for the Gmail API.

The manager keeps one bearer token and its expiry, refreshing it lazily with
the long-lived refresh token. Refreshes are single-flight: concurrent callers
that find the token stale wait on one lock, and whoever gets it second sees
the fresh token on the fast path instead of issuing another POST.
"""
from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

import httpx
from pydantic import ValidationError

from mailbridge.schemas.gmail import TokenResponse
from mailbridge.utils.config import Settings, settings
from mailbridge.utils.errors import AuthError, ConfigError, NetworkError
from mailbridge.utils.logging import mask_secret

logger = logging.getLogger(__name__)

# Refreshed tokens are treated as expired this long before Google says so
EXPIRY_BUFFER_SECONDS = 60


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TokenManager:
    """Owns the access token, its expiry and the refresh credentials."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        refresh_token: str,
        access_token: Optional[str] = None,
        default_ttl: Optional[int] = None,
        token_url: Optional[str] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._client_id = client_id
        self._client_secret = client_secret
        self._refresh_token = refresh_token
        self._token_url = token_url or settings.OAUTH_TOKEN_URL
        self._clock = clock
        self._lock = asyncio.Lock()

        ttl = settings.TOKEN_EXPIRY_SECONDS if default_ttl is None else default_ttl
        now = self._clock()
        if access_token:
            self.access_token = access_token
            self.expiry = now + timedelta(seconds=ttl)
        else:
            # Empty token: expiry in the past forces a refresh on first use
            self.access_token = ""
            self.expiry = now

    @classmethod
    def from_settings(cls, config: Settings = settings) -> "TokenManager":
        missing = config.missing_gmail_credentials()
        if missing:
            raise ConfigError(missing[0])
        return cls(
            client_id=config.GMAIL_CLIENT_ID,
            client_secret=config.GMAIL_CLIENT_SECRET,
            refresh_token=config.GMAIL_REFRESH_TOKEN,
            access_token=config.GMAIL_ACCESS_TOKEN,
            default_ttl=config.TOKEN_EXPIRY_SECONDS,
            token_url=config.OAUTH_TOKEN_URL,
        )

    @property
    def client_id(self) -> str:
        return self._client_id

    @property
    def has_valid_token(self) -> bool:
        return bool(self.access_token) and self._clock() < self.expiry

    def expires_in(self) -> int:
        """Whole seconds until the current token goes stale (0 if stale)."""
        if not self.access_token:
            return 0
        remaining = (self.expiry - self._clock()).total_seconds()
        return max(0, int(remaining))

    def status(self) -> Dict[str, Any]:
        return {
            "has_token": bool(self.access_token),
            "valid": self.has_valid_token,
            "expires_in": self.expires_in(),
            "token": mask_secret(self.access_token) if self.access_token else None,
            "client_id": mask_secret(self._client_id),
        }

    async def get_token(self, http: Any) -> str:
        """
        Return a valid bearer token, refreshing through ``http`` if needed.

        ``http`` only needs an awaitable ``post(url, data=...)`` returning an
        object with ``status_code`` and ``text`` (``httpx.AsyncClient`` fits).
        """
        if self.has_valid_token:
            return self.access_token

        async with self._lock:
            # Another caller may have refreshed while we waited
            if self.has_valid_token:
                logger.debug("Token refreshed by a concurrent caller")
                return self.access_token
            return await self._refresh(http)

    async def _refresh(self, http: Any) -> str:
        logger.debug("OAuth token expired or not set, refreshing")
        logger.debug(
            "Requesting token from %s (client_id %s, refresh_token %s)",
            self._token_url,
            mask_secret(self._client_id),
            mask_secret(self._refresh_token),
        )
        form = {
            "client_id": self._client_id,
            "client_secret": self._client_secret,
            "refresh_token": self._refresh_token,
            "grant_type": "refresh_token",
        }

        try:
            response = await http.post(self._token_url, data=form)
        except httpx.RequestError as exc:
            logger.error("Token refresh request failed: %s", exc)
            raise NetworkError(f"Token refresh request failed: {exc}") from exc

        status = response.status_code
        body = response.text
        logger.debug("Token response status: %s", status)

        if not 200 <= status < 300:
            logger.error("Token refresh failed. Status: %s, Error: %s", status, body)
            raise AuthError(
                f"Failed to refresh token. Status: {status}, Error: {body}",
                status_code=status,
                body=body,
            )

        try:
            token_data = TokenResponse.model_validate_json(body)
        except ValidationError as exc:
            logger.error("Failed to parse token response: %s", exc.errors(include_input=False))
            raise AuthError(
                f"Failed to parse token response: {exc.error_count()} validation error(s)",
                status_code=status,
            ) from exc

        lifetime = max(0, token_data.expires_in - EXPIRY_BUFFER_SECONDS)
        self.access_token = token_data.access_token
        self.expiry = self._clock() + timedelta(seconds=lifetime)

        logger.info("Token refreshed successfully, valid for %s seconds", lifetime)
        logger.debug("Token (truncated): %s", mask_secret(self.access_token))
        return self.access_token

