from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional, Tuple, List

from google_auth_oauthlib.flow import Flow
from google.oauth2.credentials import Credentials

from mailbridge.security.token_manager import TokenManager
from mailbridge.utils.config import settings
from mailbridge.utils.errors import ConfigError

logger = logging.getLogger(__name__)


def _ensure_client_config(redirect_uri: Optional[str] = None) -> dict:
    if not settings.GMAIL_CLIENT_ID:
        raise ConfigError("GMAIL_CLIENT_ID")
    if not settings.GMAIL_CLIENT_SECRET:
        raise ConfigError("GMAIL_CLIENT_SECRET")

    config = {
        "web": {
            "client_id": settings.GMAIL_CLIENT_ID,
            "client_secret": settings.GMAIL_CLIENT_SECRET,
            "auth_uri": settings.OAUTH_AUTH_URL,
            "token_uri": settings.OAUTH_TOKEN_URL,
        }
    }

    if redirect_uri:
        config["web"]["redirect_uris"] = [redirect_uri]

    return config


def _scopes(scopes: Optional[List[str]] = None) -> List[str]:
    return scopes or list(settings.GMAIL_SCOPES)


# Start and callback build separate flows, so no PKCE verifier survives between them
def create_authorization_url(
    redirect_uri: str,
    scopes: Optional[List[str]] = None,
    state: Optional[str] = None,
) -> Tuple[str, str]:
    """Construct an authorization URL for the Gmail OAuth flow."""
    flow = Flow.from_client_config(
        _ensure_client_config(redirect_uri),
        scopes=_scopes(scopes),
        state=state,
        redirect_uri=redirect_uri,
        autogenerate_code_verifier=False,
    )
    auth_url, new_state = flow.authorization_url(
        access_type="offline",
        include_granted_scopes="true",
        prompt="consent",
    )
    return auth_url, new_state


def exchange_code(
    redirect_uri: str,
    code: str,
    state: Optional[str] = None,
    scopes: Optional[List[str]] = None,
) -> Credentials:
    """Exchange an authorization code for access/refresh tokens."""
    flow = Flow.from_client_config(
        _ensure_client_config(redirect_uri),
        scopes=_scopes(scopes),
        state=state,
        redirect_uri=redirect_uri,
        autogenerate_code_verifier=False,
    )
    flow.fetch_token(code=code)
    return flow.credentials


def token_manager_from_credentials(creds: Credentials) -> TokenManager:
    """Build a TokenManager around freshly issued OAuth credentials."""
    if not creds.refresh_token:
        raise ConfigError("GMAIL_REFRESH_TOKEN")

    ttl = None
    if creds.expiry:
        # google-auth reports expiry as a naive UTC datetime
        expiry = creds.expiry.replace(tzinfo=timezone.utc)
        ttl = max(0, int((expiry - datetime.now(timezone.utc)).total_seconds()))

    logger.info("Building token manager from OAuth callback credentials")
    return TokenManager(
        client_id=settings.GMAIL_CLIENT_ID,
        client_secret=settings.GMAIL_CLIENT_SECRET,
        refresh_token=creds.refresh_token,
        access_token=creds.token,
        default_ttl=ttl,
        token_url=settings.OAUTH_TOKEN_URL,
    )
