"""Tests for OAuth callback server module."""

import socket
import time
from unittest import mock
from urllib.parse import parse_qs, urlparse

import pytest
import requests

from twitchbot.oauth.auth_server import (
    CallbackState,
    OAuthCallbackServer,
    build_authorization_url,
    run_authorization_flow,
)
from twitchbot.oauth.exceptions import (
    AuthorizationError,
    AuthorizationTimeoutError,
    ProtocolError,
    TokenStorageError,
)
from twitchbot.oauth.token_manager import TokenManager
from twitchbot.oauth.token_storage import TokenData


@pytest.fixture
def manager(config, storage, http_session) -> TokenManager:
    return TokenManager(config, storage=storage, session=http_session)


@pytest.fixture
def server(config, manager):
    server = OAuthCallbackServer(config, manager)
    yield server
    server.stop()


@pytest.fixture
def client(server):
    return server.app.test_client()


@pytest.fixture
def browser() -> requests.Session:
    """Plain HTTP client for the local server (ignores proxy settings)."""
    session = requests.Session()
    session.trust_env = False
    yield session
    session.close()


class TestBuildAuthorizationUrl:
    """Tests for build_authorization_url."""

    def test_query_round_trip(self):
        """Parsing the query recovers every configured value."""
        scopes = ("chat:read", "chat:edit", "user:read:email")
        url = build_authorization_url(
            "https://id.twitch.tv/oauth2/authorize",
            "client_123",
            "http://localhost:3000/auth/callback",
            scopes,
        )

        parsed = urlparse(url)
        query = parse_qs(parsed.query)
        assert f"{parsed.scheme}://{parsed.netloc}{parsed.path}" == "https://id.twitch.tv/oauth2/authorize"
        assert query["client_id"] == ["client_123"]
        assert query["redirect_uri"] == ["http://localhost:3000/auth/callback"]
        assert query["response_type"] == ["code"]
        assert set(query["scope"][0].split(" ")) == set(scopes)

    def test_parameter_order_is_stable(self):
        """Parameters always appear in the same order."""
        url = build_authorization_url("https://example.com/authorize", "id", "http://cb", ["a"])

        keys = [pair.split("=")[0] for pair in urlparse(url).query.split("&")]
        assert keys == ["client_id", "redirect_uri", "response_type", "scope"]

    def test_values_are_url_encoded(self):
        """Reserved characters are percent-encoded."""
        url = build_authorization_url(
            "https://example.com/authorize", "id", "http://localhost:3000/auth/callback", ["chat:read"]
        )

        assert "redirect_uri=http%3A%2F%2Flocalhost%3A3000%2Fauth%2Fcallback" in url
        assert "scope=chat%3Aread" in url


class TestRoutes:
    """Tests for the callback server routes (Flask test client)."""

    def test_initiate_redirects_to_twitch(self, client, config):
        """GET /auth/twitch answers 303 to the authorization URL."""
        response = client.get("/auth/twitch")

        assert response.status_code == 303
        location = response.headers["Location"]
        assert location.startswith(config.authorization_url)
        query = parse_qs(urlparse(location).query)
        assert query["client_id"] == ["test_client_id"]
        assert query["redirect_uri"] == [config.redirect_uri]
        assert query["scope"] == ["chat:read chat:edit"]

    def test_initiate_has_no_side_effects(self, client, server, http_session):
        """The redirect neither calls the provider nor changes state."""
        client.get("/auth/twitch")

        http_session.post.assert_not_called()
        assert server.state is CallbackState.IDLE

    def test_unknown_path_is_404(self, client):
        """Unknown paths answer 404."""
        response = client.get("/auth/github")

        assert response.status_code == 404
        assert response.get_data(as_text=True) == "Not Found"

    @pytest.mark.parametrize("method", ["post", "put", "delete", "options", "head"])
    def test_other_methods_are_404(self, client, server, http_session, method):
        """Non-GET methods answer 404 rather than 405 and never exchange a code."""
        response = getattr(client, method)("/auth/callback?code=abc")

        assert response.status_code == 404
        http_session.post.assert_not_called()
        assert server.state is CallbackState.IDLE

    def test_head_on_initiate_is_404(self, client):
        """HEAD on the initiate route does not redirect."""
        response = client.head("/auth/twitch")

        assert response.status_code == 404

    def test_callback_success(self, client, server, http_session, make_response, storage):
        """A valid code gives 200, delivers the token and stores it."""
        http_session.post.return_value = make_response(
            200, {"access_token": "tok1", "refresh_token": "ref1", "expires_in": 10}
        )

        response = client.get("/auth/callback?code=valid123")

        assert response.status_code == 200
        assert "Authorization Successful" in response.get_data(as_text=True)
        assert http_session.post.call_args[1]["data"]["code"] == "valid123"
        assert server.state is CallbackState.DELIVERED
        token = server.wait_for_result(timeout=1)
        assert token.access_token == "tok1"
        assert storage.load() == token

    def test_callback_exchange_failure(self, client, server, http_session, make_response):
        """A failed exchange gives 500 and delivers nothing."""
        http_session.post.return_value = make_response(400, text="invalid code")

        response = client.get("/auth/callback?code=bad")

        assert response.status_code == 500
        assert "Authorization Failed" in response.get_data(as_text=True)
        assert "invalid code" not in response.get_data(as_text=True)
        assert server.state is CallbackState.FAILED
        with pytest.raises(AuthorizationError, match="Token exchange failed") as exc_info:
            server.wait_for_result(timeout=0.1)
        assert not isinstance(exc_info.value, AuthorizationTimeoutError)
        assert isinstance(exc_info.value.__cause__, ProtocolError)
        assert server._results.empty()

    def test_callback_with_provider_error(self, client, server, http_session):
        """An error redirect from Twitch gives 400 without calling the token endpoint."""
        response = client.get(
            "/auth/callback?error=access_denied&error_description=The+user+denied+you+access"
        )

        assert response.status_code == 400
        body = response.get_data(as_text=True)
        assert "access_denied" in body
        assert "The user denied you access" in body
        http_session.post.assert_not_called()
        assert server.state is CallbackState.FAILED
        with pytest.raises(AuthorizationError, match="access_denied"):
            server.wait_for_result(timeout=0.1)

    def test_callback_error_is_escaped(self, client):
        """Query values are HTML-escaped on the failure page."""
        response = client.get("/auth/callback?error=<script>")

        assert "<script>" not in response.get_data(as_text=True)

    def test_callback_missing_code(self, client, server, http_session):
        """A callback without code gives 400 and no exchange."""
        response = client.get("/auth/callback")

        assert response.status_code == 400
        assert "No authorization code" in response.get_data(as_text=True)
        http_session.post.assert_not_called()
        assert server.state is CallbackState.FAILED

    def test_second_callback_is_rejected(self, client, http_session, make_response):
        """Only one callback per cycle triggers an exchange."""
        http_session.post.return_value = make_response(200, {"access_token": "tok1"})

        client.get("/auth/callback?code=first")
        response = client.get("/auth/callback?code=second")

        assert response.status_code == 409
        assert http_session.post.call_count == 1

    def test_success_page_warns_when_token_not_saved(
        self, client, server, http_session, make_response, storage
    ):
        """The success page says so when the token could not be stored."""
        http_session.post.return_value = make_response(200, {"access_token": "tok1"})
        storage.save = mock.Mock(side_effect=TokenStorageError("read-only"))

        response = client.get("/auth/callback?code=valid123")

        assert response.status_code == 200
        assert "could not be saved" in response.get_data(as_text=True)
        assert server.wait_for_result(timeout=1).access_token == "tok1"


class TestServerLifecycle:
    """Tests for start/wait/stop on a real socket."""

    def test_start_binds_and_stop_releases_port(self, server):
        """start() listens, stop() closes the socket."""
        server.start()
        port = server.port

        assert server.is_running
        assert server.state is CallbackState.LISTENING
        assert port != 0

        server.stop()

        assert not server.is_running
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.bind(("127.0.0.1", port))

    def test_stop_is_idempotent(self, server):
        """stop() can be called repeatedly, even before start()."""
        server.stop()
        server.start()
        server.stop()
        server.stop()

        assert not server.is_running

    def test_server_cannot_be_restarted(self, server):
        """A cycle needs a new server."""
        server.start()
        server.stop()

        with pytest.raises(AuthorizationError, match="cannot be restarted"):
            server.start()

    def test_start_fails_when_port_in_use(self, config, manager):
        """Binding an occupied port raises AuthorizationError."""
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.bind(("127.0.0.1", 0))
            sock.listen(1)
            config.listen_port = sock.getsockname()[1]
            server = OAuthCallbackServer(config, manager)

            with pytest.raises(AuthorizationError, match="Could not start callback server"):
                server.start()

    def test_context_manager_stops_server(self, config, manager):
        """Leaving the with-block stops the server."""
        with OAuthCallbackServer(config, manager) as server:
            assert server.is_running

        assert not server.is_running

    def test_wait_for_result_times_out(self, server):
        """wait_for_result raises AuthorizationTimeoutError when nothing arrives."""
        server.start()

        with pytest.raises(AuthorizationTimeoutError, match="No authorization completed"):
            server.wait_for_result(timeout=0.1)


class TestEndToEnd:
    """Full callback cycles over HTTP against a stubbed provider."""

    def test_successful_cycle(self, server, browser, http_session, make_response, storage):
        """Callback with a valid code delivers and stores the token."""
        http_session.post.return_value = make_response(
            200, {"access_token": "tok1", "refresh_token": "ref1", "expires_in": 10}
        )
        server.start()

        response = browser.get(
            f"http://127.0.0.1:{server.port}/auth/callback",
            params={"code": "valid123"},
            timeout=5,
        )

        assert response.status_code == 200
        token = server.wait_for_result(timeout=2)
        assert token.access_token == "tok1"
        assert token.refresh_token == "ref1"
        assert storage.load() == token

    def test_failed_cycle(self, server, browser, http_session, make_response, storage):
        """Provider rejection gives 500, nothing delivered, store unchanged."""
        http_session.post.return_value = make_response(400, text="bad code")
        server.start()

        response = browser.get(
            f"http://127.0.0.1:{server.port}/auth/callback",
            params={"code": "valid123"},
            timeout=5,
        )

        assert response.status_code == 500
        started = time.monotonic()
        with pytest.raises(AuthorizationError, match="Token exchange failed") as exc_info:
            server.wait_for_result(timeout=30)
        assert time.monotonic() - started < 5
        assert not isinstance(exc_info.value, AuthorizationTimeoutError)
        assert storage.load() is None

    def test_initiate_over_http(self, server, browser, config):
        """The initiate route redirects real clients with 303."""
        server.start()

        response = browser.get(server.local_url, allow_redirects=False, timeout=5)

        assert response.status_code == 303
        assert response.headers["Location"].startswith(config.authorization_url)


class TestRunAuthorizationFlow:
    """Tests for run_authorization_flow function."""

    @mock.patch("twitchbot.oauth.auth_server.webbrowser")
    @mock.patch.object(OAuthCallbackServer, "start")
    @mock.patch.object(OAuthCallbackServer, "wait_for_result")
    @mock.patch.object(OAuthCallbackServer, "stop")
    def test_run_authorization_flow_success(
        self, mock_stop, mock_wait, mock_start, mock_browser, config, manager, capsys
    ):
        """run_authorization_flow returns the delivered token."""
        mock_wait.return_value = TokenData(access_token="tok1")

        token = run_authorization_flow(config, manager, open_browser=True, timeout=30)

        assert token.access_token == "tok1"
        mock_start.assert_called_once()
        mock_wait.assert_called_once_with(30)
        mock_stop.assert_called_once()
        mock_browser.open.assert_called_once()
        assert "/auth/twitch" in capsys.readouterr().out

    @mock.patch("twitchbot.oauth.auth_server.webbrowser")
    @mock.patch.object(OAuthCallbackServer, "start")
    @mock.patch.object(OAuthCallbackServer, "wait_for_result")
    @mock.patch.object(OAuthCallbackServer, "stop")
    def test_run_authorization_flow_no_browser(
        self, mock_stop, mock_wait, mock_start, mock_browser, config, manager
    ):
        """run_authorization_flow works without opening browser."""
        mock_wait.return_value = TokenData(access_token="tok1")

        run_authorization_flow(config, manager, open_browser=False)

        mock_browser.open.assert_not_called()

    @mock.patch.object(OAuthCallbackServer, "start")
    @mock.patch.object(OAuthCallbackServer, "wait_for_result")
    @mock.patch.object(OAuthCallbackServer, "stop")
    def test_run_authorization_flow_stops_server_on_timeout(
        self, mock_stop, mock_wait, mock_start, config, manager
    ):
        """The server is stopped when the flow times out."""
        mock_wait.side_effect = AuthorizationTimeoutError("No authorization completed")

        with pytest.raises(AuthorizationTimeoutError):
            run_authorization_flow(config, manager, timeout=1)

        mock_stop.assert_called_once()
