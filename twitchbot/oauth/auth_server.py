"""
OAuth callback server for the Twitch bot.

This module provides a small local HTTP server that brokers one
authorization code into a token. It exposes exactly two routes:

- GET /auth/<provider>: redirects the browser to Twitch's consent page
- GET /auth/callback: receives the authorization code, exchanges it for
  a token and hands the token to the waiting caller

The server is single-use. Each authorization cycle moves through
IDLE -> LISTENING -> EXCHANGING -> DELIVERED or FAILED, and a new cycle
needs a new server.
"""

import logging
import queue
import threading
import webbrowser
from enum import Enum
from typing import Iterable, Optional
from urllib.parse import urlencode

from flask import Flask, Response, redirect, request
from markupsafe import escape
from werkzeug.serving import make_server

from .config import TwitchOAuthConfig
from .exceptions import AuthorizationError, AuthorizationTimeoutError, TokenExchangeError
from .token_manager import TokenManager
from .token_storage import TokenData

logger = logging.getLogger(__name__)

PAGE_TEMPLATE = """<html>
<head><title>{title}</title></head>
<body style="font-family: Arial, sans-serif; max-width: 600px; margin: 50px auto; padding: 20px;">
    <h1 style="color: {color};">{title}</h1>
    {body}
    <p style="margin-top: 30px; color: #666;">You can close this window now.</p>
</body>
</html>"""

SUCCESS_COLOR = "#4caf50"
FAILURE_COLOR = "#d32f2f"


class CallbackState(Enum):
    """State of one authorization cycle."""

    IDLE = "idle"
    LISTENING = "listening"
    EXCHANGING = "exchanging"
    DELIVERED = "delivered"
    FAILED = "failed"


def build_authorization_url(
    authorization_url: str,
    client_id: str,
    redirect_uri: str,
    scopes: Iterable[str],
) -> str:
    """
    Build the provider authorization URL.

    Query parameters always come in the same order: client_id,
    redirect_uri, response_type, scope.

    Args:
        authorization_url: Provider authorization endpoint
        client_id: Application client ID
        redirect_uri: Callback URL registered with the provider
        scopes: Requested scopes (sent space separated)

    Returns:
        Complete authorization URL with query parameters
    """
    params = [
        ("client_id", client_id),
        ("redirect_uri", redirect_uri),
        ("response_type", "code"),
        ("scope", " ".join(scopes)),
    ]
    return f"{authorization_url}?{urlencode(params)}"


def render_page(title: str, body: str, status: int, color: str) -> Response:
    """Static HTML page shown to the user at the end of the flow."""
    return Response(
        PAGE_TEMPLATE.format(title=title, body=body, color=color),
        status=status,
        content_type="text/html",
    )


class OAuthCallbackServer:
    """
    Local HTTP server that captures the redirect back from Twitch.

    The server:
    1. Starts an HTTP listener on the configured address (start)
    2. Redirects the browser to Twitch from the initiate route
    3. Exchanges the code it receives on the callback route
    4. Puts the token on a single-slot queue (wait_for_result)
    5. Shuts down and releases the port (stop)

    The object returned by start() is the handle for the running cycle;
    it also works as a context manager.
    """

    def __init__(self, config: TwitchOAuthConfig, token_manager: TokenManager):
        """
        Initialize callback server.

        Args:
            config: OAuth configuration
            token_manager: Exchanger used for the authorization code
        """
        self.config = config
        self.token_manager = token_manager
        self.state = CallbackState.IDLE
        self._state_lock = threading.Lock()
        self._results: "queue.Queue[TokenData]" = queue.Queue(maxsize=1)
        self._finished = threading.Event()
        self._failure: Optional[str] = None
        self._failure_cause: Optional[Exception] = None
        self._http_server = None
        self._thread: Optional[threading.Thread] = None

        self.app = Flask(__name__)
        self.app.logger.setLevel(logging.WARNING)

        self.app.add_url_rule(
            self.config.initiate_path,
            "oauth_initiate",
            self._handle_initiate,
            methods=["GET"],
            provide_automatic_options=False,
        )
        self.app.add_url_rule(
            self.config.callback_path,
            "oauth_callback",
            self._handle_callback,
            methods=["GET"],
            provide_automatic_options=False,
        )
        self.app.register_error_handler(404, self._handle_not_found)
        self.app.register_error_handler(405, self._handle_not_found)

    @property
    def port(self) -> int:
        """Port the server is bound to (the configured port until started)."""
        if self._http_server is not None:
            return self._http_server.server_port
        return self.config.listen_port

    @property
    def local_url(self) -> str:
        """URL the operator opens to start the flow."""
        return f"http://{self.config.listen_host}:{self.port}{self.config.initiate_path}"

    @property
    def is_running(self) -> bool:
        return self._http_server is not None

    def generate_authorization_url(self) -> str:
        """
        Generate the Twitch authorization URL.

        Returns:
            Complete authorization URL with query parameters
        """
        url = build_authorization_url(
            self.config.authorization_url,
            self.config.client_id,
            self.config.redirect_uri,
            self.config.scopes,
        )
        logger.debug(f"Generated authorization URL: {url}")
        return url

    def _handle_initiate(self) -> Response:
        """Redirect the browser to the Twitch consent page."""
        # Flask answers HEAD on GET rules
        if request.method != "GET":
            return self._handle_not_found(None)

        logger.info("Redirecting browser to Twitch authorization page")
        return redirect(self.generate_authorization_url(), code=303)

    def _handle_not_found(self, error) -> Response:
        return Response("Not Found", status=404, content_type="text/plain")

    def _handle_callback(self) -> Response:
        """Handle OAuth callback from Twitch."""
        if request.method != "GET":
            return self._handle_not_found(None)

        logger.info("Received OAuth callback")

        with self._state_lock:
            if self.state not in (CallbackState.IDLE, CallbackState.LISTENING):
                logger.warning(
                    f"Ignoring callback, authorization cycle is already {self.state.value}"
                )
                return render_page(
                    "Authorization Already Handled",
                    "<p>This authorization attempt has already been processed.</p>",
                    status=409,
                    color=FAILURE_COLOR,
                )
            self.state = CallbackState.EXCHANGING

        # Check for error response
        error = request.args.get("error")
        if error:
            error_desc = request.args.get("error_description", "Unknown error")
            logger.error(f"OAuth error: {error} - {error_desc}")
            self._fail(f"Twitch denied the authorization: {error} - {error_desc}")
            return render_page(
                "Authorization Failed",
                f"<p><strong>Error:</strong> {escape(error)}</p>"
                f"<p><strong>Description:</strong> {escape(error_desc)}</p>",
                status=400,
                color=FAILURE_COLOR,
            )

        code = request.args.get("code")
        if not code:
            logger.error("No authorization code in callback")
            self._fail("No authorization code received from Twitch")
            return render_page(
                "Authorization Failed",
                "<p>No authorization code received from Twitch.</p>",
                status=400,
                color=FAILURE_COLOR,
            )

        try:
            token = self.token_manager.exchange_code_for_tokens(code)
        except TokenExchangeError as e:
            logger.error(f"Token exchange failed: {e}")
            self._fail(f"Token exchange failed: {e}", cause=e)
            return render_page(
                "Authorization Failed",
                "<p>OAuth2 token could not be obtained.</p>",
                status=500,
                color=FAILURE_COLOR,
            )

        self._set_state(CallbackState.DELIVERED)
        self._results.put_nowait(token)
        self._finished.set()
        logger.info("Access token delivered")

        body = "<p>Authentication was successful!</p>"
        if self.token_manager.last_storage_error is not None:
            body += "<p>Warning: the token could not be saved and will be lost on restart.</p>"

        return render_page("Authorization Successful", body, status=200, color=SUCCESS_COLOR)

    def _set_state(self, state: CallbackState) -> None:
        with self._state_lock:
            self.state = state

    def _fail(self, reason: str, cause: Optional[Exception] = None) -> None:
        """End the cycle without a token and wake the waiting caller."""
        self._failure = reason
        self._failure_cause = cause
        self._set_state(CallbackState.FAILED)
        self._finished.set()

    def start(self) -> "OAuthCallbackServer":
        """
        Start the callback server in a background thread.

        Returns:
            This server, as the handle for the running cycle

        Raises:
            AuthorizationError: If the server was already used or the
                                address cannot be bound
        """
        host, port = self.config.listen_host, self.config.listen_port

        with self._state_lock:
            if self.state is not CallbackState.IDLE or self._http_server is not None:
                raise AuthorizationError(
                    f"Callback server cannot be restarted (state: {self.state.value})"
                )
            try:
                self._http_server = make_server(host, port, self.app, threaded=True)
            except (OSError, SystemExit) as e:
                # werkzeug exits instead of raising when the address is taken
                reason = e if isinstance(e, OSError) else "address unavailable"
                logger.error(f"Could not bind callback server to {host}:{port}: {reason}")
                raise AuthorizationError(
                    f"Could not start callback server on {host}:{port}: {reason}"
                ) from e
            self.state = CallbackState.LISTENING

        self._thread = threading.Thread(
            target=self._http_server.serve_forever,
            name="oauth-callback-server",
            daemon=True,
        )
        self._thread.start()

        logger.info(f"OAuth callback server listening on http://{host}:{self.port}")
        return self

    def wait_for_result(self, timeout: Optional[float] = None) -> TokenData:
        """
        Wait for the outcome of the callback route.

        Returns as soon as the cycle is delivered or failed.

        Args:
            timeout: Maximum seconds to wait (default: config.authorization_timeout)

        Returns:
            The token obtained from Twitch

        Raises:
            AuthorizationError: If the callback failed (provider error,
                                missing code or token exchange failure)
            AuthorizationTimeoutError: If no callback completes in time
        """
        if timeout is None:
            timeout = self.config.authorization_timeout

        logger.info(f"Waiting for OAuth callback (timeout: {timeout}s)")

        if not self._finished.wait(timeout):
            logger.warning(f"Timeout waiting for authorization after {timeout}s")
            raise AuthorizationTimeoutError(
                f"No authorization completed within {timeout} seconds. "
                f"Please ensure you completed the authorization in your browser."
            )

        if self._failure is not None:
            raise AuthorizationError(self._failure) from self._failure_cause

        try:
            return self._results.get_nowait()
        except queue.Empty:
            raise AuthorizationError("Authorization result was already collected") from None

    def stop(self) -> None:
        """
        Stop the callback server and release its port.

        Safe to call more than once.
        """
        server, self._http_server = self._http_server, None
        if server is None:
            return

        logger.info("OAuth callback server shutting down")
        server.shutdown()
        server.server_close()

        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None

    def __enter__(self) -> "OAuthCallbackServer":
        return self.start()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()


def run_authorization_flow(
    config: TwitchOAuthConfig,
    token_manager: TokenManager,
    open_browser: bool = False,
    timeout: Optional[float] = None,
) -> TokenData:
    """
    Run the complete interactive authorization flow.

    This function:
    1. Starts the callback server
    2. Shows the URL the operator has to open
    3. Opens the browser if requested
    4. Waits for the token (bounded by timeout)
    5. Stops the server, whatever the outcome

    Args:
        config: OAuth configuration
        token_manager: Exchanger used by the callback route
        open_browser: Whether to open the browser automatically
        timeout: Seconds to wait (default: config.authorization_timeout)

    Returns:
        The token obtained from Twitch

    Raises:
        AuthorizationError: If the server cannot start or the callback fails
        AuthorizationTimeoutError: If the user never completes the flow
    """
    server = OAuthCallbackServer(config, token_manager)

    try:
        server.start()

        print("\n" + "=" * 70)
        print("TWITCH OAUTH AUTHORIZATION")
        print("=" * 70)
        print("\nOpen this URL to authorize the bot:")
        print(f"\n  {server.local_url}\n")
        print("It redirects to:")
        print(f"  {server.generate_authorization_url()}\n")

        if open_browser:
            try:
                webbrowser.open(server.local_url)
            except webbrowser.Error as e:
                logger.warning(f"Could not open browser automatically: {e}")
                print("Could not open browser, copy the URL above instead.")

        print("Waiting for authorization...")
        print("=" * 70 + "\n")

        token = server.wait_for_result(timeout)
        logger.info("Authorization flow completed successfully")
        return token

    finally:
        server.stop()
