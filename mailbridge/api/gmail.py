import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.concurrency import run_in_threadpool
from oauthlib.oauth2.rfc6749.errors import OAuth2Error
from pydantic import BaseModel

from mailbridge.api.tools import get_registry, install_token_manager, to_http_exception
from mailbridge.tools.gmail_oauth import (
    create_authorization_url,
    exchange_code,
    token_manager_from_credentials,
)
from mailbridge.tools.toolkit import ToolRegistry
from mailbridge.utils.config import settings
from mailbridge.utils.errors import ConfigError
from mailbridge.utils.logging import mask_secret

logger = logging.getLogger(__name__)

router = APIRouter()


class OAuthStartResponse(BaseModel):
    authorization_url: str
    state: str


class OAuthCallbackResponse(BaseModel):
    message: str
    refresh_token: str
    refresh_token_hint: str
    token_expiry: str | None = None


class OAuthStatusResponse(BaseModel):
    configured: bool
    authorized: bool
    missing: list[str] = []
    token: dict | None = None


@router.get("/oauth/start", response_model=OAuthStartResponse)
def oauth_start(
    redirect_uri: str = Query(..., description="OAuth redirect URI configured in Google console"),
    state: str | None = Query(None, description="Optional opaque state for CSRF protection"),
):
    try:
        auth_url, new_state = create_authorization_url(redirect_uri=redirect_uri, state=state)
        return OAuthStartResponse(authorization_url=auth_url, state=new_state)
    except ConfigError as exc:
        raise to_http_exception(exc) from exc


@router.get("/oauth/callback", response_model=OAuthCallbackResponse)
async def oauth_callback(
    code: str = Query(..., description="Authorization code returned by Google"),
    redirect_uri: str = Query(..., description="Same redirect URI used to start the OAuth flow"),
    state: str | None = Query(None, description="State value returned by Google"),
):
    try:
        # fetch_token is a blocking requests call
        creds = await run_in_threadpool(exchange_code, redirect_uri=redirect_uri, code=code, state=state)
        manager = token_manager_from_credentials(creds)
    except ConfigError as exc:
        raise to_http_exception(exc) from exc
    except (OAuth2Error, ValueError) as exc:
        logger.warning("OAuth code exchange failed: %s", exc)
        raise HTTPException(status_code=400, detail=f"OAuth code exchange failed: {exc}") from exc

    await install_token_manager(manager)
    expiry = creds.expiry.isoformat() if creds.expiry else None
    return OAuthCallbackResponse(
        message="Gmail authorization completed. Set GMAIL_REFRESH_TOKEN to keep it across restarts.",
        refresh_token=creds.refresh_token,
        refresh_token_hint=mask_secret(creds.refresh_token),
        token_expiry=expiry,
    )


@router.get("/oauth/status", response_model=OAuthStatusResponse)
def oauth_status(registry: ToolRegistry = Depends(get_registry)):
    gmail = registry.tools.get("gmail")
    if gmail is not None:
        token = gmail.token_manager.status()
        return OAuthStatusResponse(configured=True, authorized=token["valid"], token=token)

    missing = settings.missing_gmail_credentials()
    return OAuthStatusResponse(configured=not missing, authorized=False, missing=missing)
