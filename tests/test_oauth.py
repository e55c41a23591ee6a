"""
OAuth helpers and the /gmail/oauth endpoints.
No request leaves the process: the code exchange is monkeypatched.
"""
import asyncio
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs, urlparse

import pytest
from fastapi.testclient import TestClient
from google.oauth2.credentials import Credentials
from oauthlib.oauth2.rfc6749.errors import InvalidGrantError

from mailbridge.api import gmail as gmail_api
from mailbridge.api import tools as tools_api
from mailbridge.main import app
from mailbridge.tools.gmail_oauth import create_authorization_url, token_manager_from_credentials
from mailbridge.utils.config import settings
from mailbridge.utils.errors import ConfigError

REFRESH = "1//refresh-token-abcdefghijkl"


@pytest.fixture(autouse=True)
def clean_registry():
    tools_api._registry.tools.clear()
    yield
    tools_api._registry.tools.clear()


@pytest.fixture
def client_config(monkeypatch):
    monkeypatch.setattr(settings, "GMAIL_CLIENT_ID", "client-id.apps.example")
    monkeypatch.setattr(settings, "GMAIL_CLIENT_SECRET", "client-secret-value")


def credentials(refresh_token=REFRESH, hours=1):
    expiry = datetime.now(timezone.utc).replace(tzinfo=None) + timedelta(hours=hours)
    return Credentials(token="ya29.access-token", refresh_token=refresh_token, expiry=expiry)


def test_authorization_url_requests_offline_access(client_config):
    url, state = create_authorization_url("http://localhost:8000/gmail/oauth/callback", state="abc")

    query = parse_qs(urlparse(url).query)
    assert state == "abc"
    assert query["access_type"] == ["offline"]
    assert query["prompt"] == ["consent"]
    assert query["client_id"] == ["client-id.apps.example"]
    assert query["redirect_uri"] == ["http://localhost:8000/gmail/oauth/callback"]


def test_authorization_url_requires_client_id():
    with pytest.raises(ConfigError) as excinfo:
        create_authorization_url("http://localhost/cb")
    assert excinfo.value.variable == "GMAIL_CLIENT_ID"


def test_token_manager_from_credentials(client_config):
    manager = token_manager_from_credentials(credentials())

    assert manager.access_token == "ya29.access-token"
    assert manager.has_valid_token
    assert 3500 < manager.expires_in() <= 3600
    assert manager.client_id == "client-id.apps.example"


def test_token_manager_needs_refresh_token(client_config):
    with pytest.raises(ConfigError):
        token_manager_from_credentials(credentials(refresh_token=None))


def test_status_without_configuration():
    with TestClient(app) as client:
        body = client.get("/gmail/oauth/status").json()

    assert body["configured"] is False
    assert body["authorized"] is False
    assert body["missing"] == ["GMAIL_CLIENT_ID", "GMAIL_CLIENT_SECRET", "GMAIL_REFRESH_TOKEN"]


def test_start_without_configuration_is_config_error():
    with TestClient(app) as client:
        response = client.get("/gmail/oauth/start", params={"redirect_uri": "http://localhost/cb"})

    assert response.status_code == 500
    assert response.json()["detail"]["code"] == 1001


def test_start_returns_authorization_url(client_config):
    with TestClient(app) as client:
        response = client.get("/gmail/oauth/start", params={"redirect_uri": "http://localhost/cb", "state": "s1"})

    assert response.status_code == 200
    assert response.json()["state"] == "s1"
    assert "access_type=offline" in response.json()["authorization_url"]


def test_callback_installs_credentials(client_config, monkeypatch, caplog):
    monkeypatch.setattr(gmail_api, "exchange_code", lambda redirect_uri, code, state=None: credentials())

    with TestClient(app) as client:
        response = client.get("/gmail/oauth/callback", params={"code": "c0de", "redirect_uri": "http://localhost/cb"})
        status = client.get("/gmail/oauth/status").json()

    assert response.status_code == 200
    body = response.json()
    assert body["refresh_token"] == REFRESH
    assert body["refresh_token_hint"] == "1//r...ijkl"
    assert REFRESH not in caplog.text

    assert status["configured"] is True
    assert status["authorized"] is True
    assert status["token"]["valid"] is True


def test_callback_exchange_failure_is_400(client_config, monkeypatch):
    def fail(redirect_uri, code, state=None):
        raise InvalidGrantError(description="Bad code")

    monkeypatch.setattr(gmail_api, "exchange_code", fail)

    with TestClient(app) as client:
        response = client.get("/gmail/oauth/callback", params={"code": "bad", "redirect_uri": "http://localhost/cb"})

    assert response.status_code == 400
    assert "OAuth code exchange failed" in response.json()["detail"]
    assert "gmail" not in tools_api._registry.tools


def test_callback_exchanges_code_off_the_event_loop(client_config, monkeypatch):
    seen = {}

    def exchange(redirect_uri, code, state=None):
        try:
            asyncio.get_running_loop()
            seen["on_loop"] = True
        except RuntimeError:
            seen["on_loop"] = False
        return credentials()

    monkeypatch.setattr(gmail_api, "exchange_code", exchange)

    with TestClient(app) as client:
        response = client.get("/gmail/oauth/callback", params={"code": "c0de", "redirect_uri": "http://localhost/cb"})

    assert response.status_code == 200
    assert seen == {"on_loop": False}
