"""
OAuth exception classes for the Twitch bot.

This module defines the exception hierarchy for all OAuth-related errors.
Callers can catch TwitchOAuthError to handle every failure of the
authorization flow, or a specific subclass to tell them apart.
"""


class TwitchOAuthError(Exception):
    """Base exception for all Twitch OAuth errors."""

    pass


class ConfigurationError(TwitchOAuthError):
    """OAuth configuration error (missing or invalid configuration)."""

    pass


class AuthorizationError(TwitchOAuthError):
    """OAuth authorization flow error."""

    pass


class AuthorizationTimeoutError(AuthorizationError):
    """The browser flow was not completed within the allowed time."""

    pass


class TokenExchangeError(TwitchOAuthError):
    """Failed to exchange authorization code for tokens."""

    pass


class TransportError(TokenExchangeError):
    """Network failure while talking to the token endpoint."""

    pass


class ProtocolError(TokenExchangeError):
    """Token endpoint rejected the request or answered with an unusable body."""

    pass


class TokenRefreshError(TwitchOAuthError):
    """Failed to refresh access token using refresh token."""

    pass


class TokenNotAvailableError(TwitchOAuthError):
    """No valid tokens available (need to authorize first)."""

    pass


class TokenStorageError(TwitchOAuthError):
    """Token storage operation failed (file or database error)."""

    pass
