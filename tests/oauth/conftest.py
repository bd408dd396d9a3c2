"""Shared fixtures for OAuth tests."""

from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest import mock

import pytest

from twitchbot.oauth.config import TwitchOAuthConfig
from twitchbot.oauth.token_storage import TokenData, TokenStorage


@pytest.fixture
def config(tmp_path: Path) -> TwitchOAuthConfig:
    """Test OAuth config with an ephemeral callback port."""
    return TwitchOAuthConfig(
        client_id="test_client_id",
        client_secret="test_client_secret",
        redirect_base_url="http://localhost:3000",
        listen_host="127.0.0.1",
        listen_port=0,
        scopes=("chat:read", "chat:edit"),
        token_file=str(tmp_path / "tokens.json"),
        authorization_timeout=5,
        max_retries=2,
    )


@pytest.fixture
def storage(config: TwitchOAuthConfig) -> TokenStorage:
    """File storage inside the test's temporary directory."""
    return TokenStorage(config.token_file)


@pytest.fixture
def valid_token() -> TokenData:
    """Token that expires in one hour."""
    return TokenData(
        access_token="valid_access_token",
        refresh_token="valid_refresh_token",
        expires_at=datetime.now(timezone.utc) + timedelta(hours=1),
        scopes=("chat:read", "chat:edit"),
    )


@pytest.fixture
def expired_token() -> TokenData:
    """Token that expired ten minutes ago but can be refreshed."""
    return TokenData(
        access_token="expired_access_token",
        refresh_token="valid_refresh_token",
        expires_at=datetime.now(timezone.utc) - timedelta(minutes=10),
        scopes=("chat:read", "chat:edit"),
    )


def _make_response(status_code: int = 200, json_data=None, text: str = "") -> mock.Mock:
    """Fake requests.Response."""
    response = mock.Mock()
    response.status_code = status_code
    response.text = text
    if isinstance(json_data, Exception):
        response.json.side_effect = json_data
    else:
        response.json.return_value = json_data
    return response


@pytest.fixture
def http_session() -> mock.Mock:
    """Stand-in for the token endpoint (requests.Session)."""
    return mock.Mock()


@pytest.fixture
def make_response():
    """Factory for fake token endpoint responses."""
    return _make_response
