"""Tests for OAuth exceptions."""

import pytest

from twitchbot.oauth.exceptions import (
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


class TestOAuthExceptions:
    """Tests for OAuth exception hierarchy."""

    def test_twitch_oauth_error_is_base_exception(self):
        """TwitchOAuthError is base for all OAuth errors."""
        error = TwitchOAuthError("test error")
        assert isinstance(error, Exception)
        assert str(error) == "test error"

    @pytest.mark.parametrize(
        "exc_class",
        [
            ConfigurationError,
            AuthorizationError,
            TokenExchangeError,
            TokenRefreshError,
            TokenNotAvailableError,
            TokenStorageError,
        ],
    )
    def test_direct_subclasses_inherit_from_base(self, exc_class):
        """Every OAuth error can be caught as TwitchOAuthError."""
        error = exc_class("message")
        assert isinstance(error, TwitchOAuthError)
        assert str(error) == "message"

    def test_timeout_is_an_authorization_error(self):
        """AuthorizationTimeoutError is a kind of AuthorizationError."""
        assert issubclass(AuthorizationTimeoutError, AuthorizationError)

    def test_transport_and_protocol_are_exchange_errors(self):
        """Transport and protocol failures are both exchange failures."""
        assert issubclass(TransportError, TokenExchangeError)
        assert issubclass(ProtocolError, TokenExchangeError)

    def test_timeout_is_not_an_exchange_error(self):
        """A timeout is never reported as a transport or protocol failure."""
        assert not issubclass(AuthorizationTimeoutError, TokenExchangeError)

    def test_exceptions_can_be_caught_by_base(self):
        """All OAuth exceptions can be caught by base class."""
        with pytest.raises(TwitchOAuthError):
            raise ProtocolError("missing access_token")
