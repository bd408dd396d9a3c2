"""
OAuth configuration for the Twitch bot.

This module provides configuration management for the OAuth 2.0
authorization code flow against Twitch. Configuration can be loaded from
environment variables or provided programmatically. Required values are
checked when the configuration is built, so the callback server never
starts with an empty client id or redirect URL.
"""

import os
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from .exceptions import ConfigurationError

DEFAULT_SCOPES: Tuple[str, ...] = (
    "chat:read",
    "chat:edit",
    "channel:moderate",
    "channel:manage:moderators",
    "moderator:manage:banned_users",
    "user:read:email",
)


@dataclass
class TwitchOAuthConfig:
    """
    Configuration for Twitch OAuth 2.0.

    Attributes:
        client_id: Twitch application client ID from the developer console
        client_secret: Twitch application client secret
        redirect_base_url: Public base URL the provider redirects back to
            (the callback path is appended to it)
        provider: Provider name used in the initiate route (/auth/<provider>)
        callback_path: URL path for the callback route
        listen_host: Address the local callback server binds to
        listen_port: Port the local callback server binds to (0 = ephemeral)
        authorization_url: Twitch OAuth authorization endpoint
        token_url: Twitch OAuth token endpoint
        scopes: Scopes requested during authorization
        token_file: Path of the JSON token file
        database_url: SQLAlchemy URL; when set, tokens are stored in the
            database instead of the token file
        authorization_timeout: Seconds to wait for the browser flow
        refresh_buffer_seconds: Treat tokens as expired this many seconds early
        request_timeout: Seconds before a token endpoint request times out
        max_retries: Retries for transient token endpoint failures
    """

    # Required - from the Twitch developer console
    client_id: str
    client_secret: str
    redirect_base_url: str

    # Local callback server
    provider: str = "twitch"
    callback_path: str = "/auth/callback"
    listen_host: str = "127.0.0.1"
    listen_port: int = 3000

    # Twitch OAuth endpoints
    authorization_url: str = "https://id.twitch.tv/oauth2/authorize"
    token_url: str = "https://id.twitch.tv/oauth2/token"

    scopes: Sequence[str] = DEFAULT_SCOPES

    # Token storage
    token_file: str = "~/.twitchbot/tokens.json"
    database_url: Optional[str] = None

    # Timing
    authorization_timeout: int = 300
    refresh_buffer_seconds: int = 0
    request_timeout: int = 30
    max_retries: int = 2

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        if not self.client_id:
            raise ConfigurationError("client_id cannot be empty")

        if not self.client_secret:
            raise ConfigurationError("client_secret cannot be empty")

        if not self.redirect_base_url:
            raise ConfigurationError("redirect_base_url cannot be empty")

        if not self.provider or "/" in self.provider:
            raise ConfigurationError(f"Invalid provider name: {self.provider!r}")

        if self.initiate_path == self.callback_path:
            raise ConfigurationError(
                f"provider {self.provider!r} clashes with callback path {self.callback_path}"
            )

        if not isinstance(self.listen_port, int) or not (0 <= self.listen_port <= 65535):
            raise ConfigurationError(
                f"listen_port must be between 0 and 65535, got {self.listen_port}"
            )

        if self.authorization_timeout <= 0:
            raise ConfigurationError("authorization_timeout must be positive")

        if self.refresh_buffer_seconds < 0:
            raise ConfigurationError("refresh_buffer_seconds cannot be negative")

        if self.max_retries < 0:
            raise ConfigurationError("max_retries cannot be negative")

        self.scopes = tuple(self.scopes)

    @property
    def redirect_uri(self) -> str:
        """
        Full callback URL registered with Twitch.

        Returns:
            Redirect URI (e.g., http://localhost:3000/auth/callback)
        """
        return f"{self.redirect_base_url.rstrip('/')}{self.callback_path}"

    @property
    def initiate_path(self) -> str:
        """Path of the route that redirects the browser to Twitch."""
        return f"/auth/{self.provider}"

    @property
    def token_path(self) -> str:
        """Token file path with ~ expanded."""
        return os.path.expanduser(self.token_file)

    @classmethod
    def from_env(cls) -> "TwitchOAuthConfig":
        """
        Load configuration from environment variables.

        Required environment variables:
            TWITCH_CLIENT_ID: Twitch application client ID
            TWITCH_CLIENT_SECRET: Twitch application client secret
            HOSTNAME_URL: Base URL Twitch redirects back to

        Optional environment variables:
            TWITCH_LISTEN_HOST: Callback server address (default: 127.0.0.1)
            TWITCH_LISTEN_PORT: Callback server port (default: 3000)
            TWITCH_SCOPES: Space separated scope list
            TWITCH_TOKEN_FILE: Token file path (default: ~/.twitchbot/tokens.json)
            DATABASE_URL: Store tokens in this database instead of the file
            TWITCH_AUTH_TIMEOUT: Seconds to wait for authorization (default: 300)

        Returns:
            TwitchOAuthConfig instance

        Raises:
            ConfigurationError: If required environment variables are missing
        """
        client_id = os.environ.get("TWITCH_CLIENT_ID")
        client_secret = os.environ.get("TWITCH_CLIENT_SECRET")
        redirect_base_url = os.environ.get("HOSTNAME_URL")

        if not client_id or not client_secret or not redirect_base_url:
            raise ConfigurationError(
                "Missing Twitch OAuth settings. Set environment variables:\n"
                "  TWITCH_CLIENT_ID=your_client_id\n"
                "  TWITCH_CLIENT_SECRET=your_client_secret\n"
                "  HOSTNAME_URL=http://localhost:3000\n"
                "\n"
                "Register an application at: https://dev.twitch.tv/console"
            )

        scopes_env = os.environ.get("TWITCH_SCOPES")
        scopes = tuple(scopes_env.split()) if scopes_env else DEFAULT_SCOPES

        return cls(
            client_id=client_id,
            client_secret=client_secret,
            redirect_base_url=redirect_base_url,
            listen_host=os.environ.get("TWITCH_LISTEN_HOST", "127.0.0.1"),
            listen_port=_int_from_env("TWITCH_LISTEN_PORT", 3000),
            scopes=scopes,
            token_file=os.environ.get("TWITCH_TOKEN_FILE", "~/.twitchbot/tokens.json"),
            database_url=os.environ.get("DATABASE_URL") or None,
            authorization_timeout=_int_from_env("TWITCH_AUTH_TIMEOUT", 300),
        )


def _int_from_env(name: str, default: int) -> int:
    value = os.environ.get(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}") from None
