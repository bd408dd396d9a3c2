"""
Token manager for Twitch OAuth integration.

This module manages the OAuth token lifecycle including:
- Token exchange (authorization code -> access/refresh tokens)
- Token refresh (refresh token -> new access token)
- Persisting every new token before it is handed out
"""

import logging
import time
from typing import Optional

import requests

from .config import TwitchOAuthConfig
from .exceptions import (
    ProtocolError,
    TokenRefreshError,
    TokenStorageError,
    TransportError,
)
from .token_storage import TokenData, TokenStorage

logger = logging.getLogger(__name__)


class TokenManager:
    """
    Exchanges authorization codes and refresh tokens for new tokens.

    Responsibilities:
    - Build token endpoint requests
    - Retry transient failures with exponential backoff
    - Parse token responses into TokenData
    - Persist tokens (a storage failure is logged, not fatal)
    """

    def __init__(
        self,
        config: TwitchOAuthConfig,
        storage=None,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize token manager.

        Args:
            config: OAuth configuration
            storage: Token storage (TokenStorage or DatabaseTokenStorage;
                     file storage from config if not provided)
            session: HTTP session used for token endpoint calls
        """
        self.config = config
        self.storage = storage or TokenStorage(config.token_path)
        self.session = session or requests.Session()
        self.last_storage_error: Optional[TokenStorageError] = None

    def build_token_params(self, code: Optional[str]) -> dict:
        """
        Form parameters for the authorization code grant.

        Args:
            code: Authorization code from the callback (empty if None)

        Returns:
            Dictionary of form fields
        """
        return {
            "client_id": self.config.client_id,
            "client_secret": self.config.client_secret,
            "code": code or "",
            "grant_type": "authorization_code",
            "redirect_uri": self.config.redirect_uri,
        }

    def build_refresh_params(self, refresh_token: str) -> dict:
        """Form parameters for the refresh token grant."""
        return {
            "client_id": self.config.client_id,
            "client_secret": self.config.client_secret,
            "grant_type": "refresh_token",
            "refresh_token": refresh_token,
        }

    def exchange_code_for_tokens(self, authorization_code: Optional[str]) -> TokenData:
        """
        Exchange authorization code for access and refresh tokens.

        The new token is saved before it is returned. If saving fails the
        error is logged and kept in ``last_storage_error``, and the token
        is returned anyway.

        Args:
            authorization_code: Code received from OAuth callback

        Returns:
            TokenData with access token and, when issued, refresh token

        Raises:
            TransportError: If the token endpoint cannot be reached
            ProtocolError: If the endpoint rejects the code or the
                           response has no access token
        """
        logger.info("Exchanging authorization code for tokens")

        response = self._post(self.build_token_params(authorization_code), "Token exchange")

        if not 200 <= response.status_code < 300:
            logger.error(f"Token exchange failed: {response.status_code} - {response.text}")
            raise ProtocolError(
                f"Authorization failed: token endpoint returned status {response.status_code}"
            )

        token_data = self._parse_token_response(response, ProtocolError)
        self._persist(token_data)

        logger.info("Successfully obtained access token")
        return token_data

    def refresh_tokens(self, token: TokenData) -> TokenData:
        """
        Refresh access token using refresh token.

        Args:
            token: Current (usually expired) token with a refresh token

        Returns:
            New TokenData with fresh access token

        Raises:
            TokenRefreshError: If the token has no refresh token or refresh fails
        """
        if not token.refresh_token:
            raise TokenRefreshError("No refresh token available. Run authorization flow first.")

        logger.info("Refreshing access token")

        try:
            response = self._post(self.build_refresh_params(token.refresh_token), "Token refresh")
        except TransportError as e:
            raise TokenRefreshError(str(e)) from e

        if not 200 <= response.status_code < 300:
            logger.error(f"Token refresh failed: {response.status_code} - {response.text}")
            raise TokenRefreshError(
                f"Token refresh failed with status {response.status_code}. "
                f"Your refresh token may have been revoked. "
                f"Please run the authorization flow again."
            )

        new_token = self._parse_token_response(response, TokenRefreshError)
        # Refresh token may or may not be returned; keep existing if not
        if not new_token.refresh_token:
            new_token = new_token.with_refresh_token(token.refresh_token)

        self._persist(new_token)

        logger.info("Successfully refreshed tokens")
        return new_token

    def _post(self, data: dict, operation: str) -> requests.Response:
        """
        POST form data to the token endpoint.

        Connection errors, timeouts and 5xx responses are retried with
        exponential backoff (1s, 2s, 4s, ...). 4xx responses are returned
        immediately.

        Raises:
            TransportError: If the endpoint is unreachable after all retries
        """
        attempts = self.config.max_retries + 1

        for attempt in range(attempts):
            try:
                response = self.session.post(
                    self.config.token_url,
                    data=data,
                    headers={"Accept": "application/json"},
                    timeout=self.config.request_timeout,
                )
            except (requests.ConnectionError, requests.Timeout) as e:
                logger.warning(f"{operation}: network error (attempt {attempt + 1}/{attempts}): {e}")
                if attempt + 1 >= attempts:
                    raise TransportError(
                        f"Authorization failed: could not reach token endpoint: {e}"
                    ) from e
            except requests.RequestException as e:
                logger.error(f"{operation}: request error: {e}")
                raise TransportError(f"Authorization failed: request error: {e}") from e
            else:
                if response.status_code < 500 or attempt + 1 >= attempts:
                    return response
                logger.warning(
                    f"{operation}: server error {response.status_code} "
                    f"(attempt {attempt + 1}/{attempts})"
                )

            delay = 2 ** attempt
            logger.warning(f"Retrying after {delay}s")
            time.sleep(delay)

        # Unreachable: the loop either returns or raises on the last attempt
        raise TransportError(f"{operation} failed after {attempts} attempts")

    def _parse_token_response(
        self,
        response: requests.Response,
        error_cls: type,
    ) -> TokenData:
        """
        Build TokenData from a successful token endpoint response.

        The configured scopes are used; a differing scope list in the
        response is only logged.
        """
        try:
            data = response.json()
        except ValueError as e:
            logger.error(f"Token endpoint returned invalid JSON: {e}")
            raise error_cls("Authorization failed: invalid response from token endpoint") from e

        if not isinstance(data, dict) or not data.get("access_token"):
            logger.error("Token endpoint response has no access_token")
            raise error_cls("Authorization failed: response has no access_token")

        expires_in = data.get("expires_in")
        if expires_in is not None:
            try:
                expires_in = int(expires_in)
            except (TypeError, ValueError):
                logger.error(f"Token endpoint returned invalid expires_in: {expires_in!r}")
                raise error_cls("Authorization failed: invalid expires_in in response") from None

        granted = data.get("scope")
        if isinstance(granted, str):
            granted = granted.split()
        if granted is not None and set(granted) != set(self.config.scopes):
            logger.warning(f"Granted scopes differ from requested scopes: {granted}")

        try:
            return TokenData.from_expires_in(
                access_token=data["access_token"],
                expires_in=expires_in,
                refresh_token=data.get("refresh_token") or None,
                scopes=tuple(self.config.scopes),
                token_type=data.get("token_type") or "bearer",
            )
        except ValueError as e:
            logger.error(f"Unusable token response: {e}")
            raise error_cls(f"Authorization failed: {e}") from e

    def _persist(self, token_data: TokenData) -> None:
        """Save a new token; storage failures are logged and remembered."""
        try:
            self.storage.save(token_data)
            self.last_storage_error = None
        except TokenStorageError as e:
            logger.error(
                f"Token obtained but could not be saved, it will not survive a restart: {e}"
            )
            self.last_storage_error = e
