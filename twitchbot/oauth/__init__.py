"""
OAuth 2.0 module for the Twitch bot.

This module implements the OAuth 2.0 Authorization Code flow against
Twitch for a locally running bot: a short-lived callback server brokers
the authorization code into a token, the token is persisted, and callers
get a valid access token from the coordinator.

Public API:
    TwitchOAuthConfig: OAuth configuration management
    TokenData: Token data structure
    TokenStorage: File-based token persistence
    DatabaseTokenStorage: SQLAlchemy token persistence
    TokenManager: Token exchange and refresh
    OAuthCallbackServer: Local callback server
    OAuthCoordinator: High-level OAuth interface

Exceptions:
    TwitchOAuthError: Base exception
    ConfigurationError: Configuration error
    AuthorizationError: Authorization flow error
    AuthorizationTimeoutError: Browser flow not completed in time
    TokenExchangeError: Token exchange failed
    TransportError: Token endpoint unreachable
    ProtocolError: Token endpoint rejected the request
    TokenRefreshError: Token refresh failed
    TokenNotAvailableError: No valid tokens
    TokenStorageError: Storage operation failed
"""

from .auth_server import (
    CallbackState,
    OAuthCallbackServer,
    build_authorization_url,
    run_authorization_flow,
)
from .config import DEFAULT_SCOPES, TwitchOAuthConfig
from .coordinator import OAuthCoordinator, create_token_storage
from .database import DatabaseTokenStorage
from .exceptions import (
    AuthorizationError,
    AuthorizationTimeoutError,
    ConfigurationError,
    ProtocolError,
    TokenExchangeError,
    TokenNotAvailableError,
    TokenRefreshError,
    TokenStorageError,
    TransportError,
    TwitchOAuthError,
)
from .token_manager import TokenManager
from .token_storage import TokenData, TokenStorage

__all__ = [
    # Configuration
    "TwitchOAuthConfig",
    "DEFAULT_SCOPES",
    # Token Storage
    "TokenData",
    "TokenStorage",
    "DatabaseTokenStorage",
    "create_token_storage",
    # Token Manager
    "TokenManager",
    # Authorization Server
    "CallbackState",
    "OAuthCallbackServer",
    "build_authorization_url",
    "run_authorization_flow",
    # Coordinator
    "OAuthCoordinator",
    # Exceptions
    "TwitchOAuthError",
    "ConfigurationError",
    "AuthorizationError",
    "AuthorizationTimeoutError",
    "TokenExchangeError",
    "TransportError",
    "ProtocolError",
    "TokenRefreshError",
    "TokenNotAvailableError",
    "TokenStorageError",
]
