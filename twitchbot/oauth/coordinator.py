"""
OAuth coordinator for high-level OAuth operations.

This module provides the main interface for OAuth operations in the bot.
It decides whether the stored token can be used, refreshes it when it
has expired, and falls back to the interactive browser flow otherwise.
"""

import logging
import threading
from typing import Optional

from .auth_server import run_authorization_flow
from .config import TwitchOAuthConfig
from .database import DatabaseTokenStorage
from .exceptions import TokenNotAvailableError, TokenRefreshError
from .token_manager import TokenManager
from .token_storage import TokenData, TokenStorage

logger = logging.getLogger(__name__)

# One acquisition cycle per process: the callback server binds a fixed port.
_ACQUISITION_LOCK = threading.Lock()


def create_token_storage(config: TwitchOAuthConfig):
    """
    Create the token storage selected by the configuration.

    Returns:
        DatabaseTokenStorage when database_url is set, TokenStorage otherwise
    """
    if config.database_url:
        return DatabaseTokenStorage(config.database_url)
    return TokenStorage(config.token_path)


class OAuthCoordinator:
    """
    High-level coordinator for OAuth operations.

    This is the main interface that the bot should use for OAuth.

    Example:
        coordinator = OAuthCoordinator()
        token = coordinator.get_token()
        headers = coordinator.get_authorization_header()
    """

    def __init__(
        self,
        config: Optional[TwitchOAuthConfig] = None,
        storage=None,
        token_manager: Optional[TokenManager] = None,
    ):
        """
        Initialize OAuth coordinator.

        Args:
            config: OAuth configuration (loads from environment if not provided)
            storage: Token storage (selected from config if not provided)
            token_manager: Token manager (built from config and storage if not provided)
        """
        self.config = config or TwitchOAuthConfig.from_env()
        self.storage = storage or create_token_storage(self.config)
        self.token_manager = token_manager or TokenManager(self.config, self.storage)

    def get_token(self, open_browser: bool = False) -> TokenData:
        """
        Get a valid token, acquiring a new one if needed.

        1. Return the stored token if it is still valid (no network calls)
        2. Refresh it if it has expired and a refresh token is stored
        3. Otherwise run the interactive authorization flow

        Concurrent callers wait for the running cycle and then reuse its token.

        Args:
            open_browser: Whether to open the browser for the interactive flow

        Returns:
            Valid TokenData

        Raises:
            TokenStorageError: If the stored credential cannot be read
            AuthorizationTimeoutError: If the interactive flow is not completed in time
            AuthorizationError: If the callback server cannot start or the callback fails
        """
        with _ACQUISITION_LOCK:
            token = self.storage.load()

            if token is not None and not token.expires_within(self.config.refresh_buffer_seconds):
                logger.info("Using stored access token")
                return token

            if token is not None and token.refresh_token:
                logger.info("Stored access token expired, refreshing")
                try:
                    return self.token_manager.refresh_tokens(token)
                except TokenRefreshError as e:
                    logger.warning(f"Token refresh failed, starting authorization flow: {e}")
            elif token is not None:
                logger.info("Stored access token expired and cannot be refreshed")
            else:
                logger.info("No stored token found, starting authorization flow")

            return self.run_authorization_flow(open_browser)

    def run_authorization_flow(self, open_browser: bool = False) -> TokenData:
        """
        Run the interactive authorization flow unconditionally.

        Args:
            open_browser: Whether to automatically open browser

        Returns:
            TokenData obtained from Twitch
        """
        token = run_authorization_flow(
            self.config,
            self.token_manager,
            open_browser=open_browser,
            timeout=self.config.authorization_timeout,
        )

        if self.token_manager.last_storage_error is not None:
            logger.warning("Authorization succeeded but the token was not saved")
        else:
            logger.info("Authorization complete! Token saved successfully.")

        return token

    def get_access_token(self) -> str:
        """
        Get a valid access token without starting the interactive flow.

        Refreshes the stored token when it has expired. Runs under the same
        lock as get_token, so a refresh token is only ever sent once.

        Returns:
            Valid access token string

        Raises:
            TokenNotAvailableError: If no usable token is stored
        """
        with _ACQUISITION_LOCK:
            token = self.storage.load()

            if token is None:
                raise TokenNotAvailableError("No tokens available. Run authorization flow first.")

            if token.expires_within(self.config.refresh_buffer_seconds):
                if not token.refresh_token:
                    raise TokenNotAvailableError(
                        "Stored token has expired and cannot be refreshed. "
                        "Run authorization flow again."
                    )
                token = self.token_manager.refresh_tokens(token)

        return token.access_token

    def get_authorization_header(self) -> dict:
        """
        Get headers for Twitch API requests.

        Returns:
            Dict with Authorization and Client-Id headers

        Raises:
            TokenNotAvailableError: If not authorized
        """
        token = self.get_access_token()
        return {"Authorization": f"Bearer {token}", "Client-Id": self.config.client_id}

    def is_authorized(self) -> bool:
        """
        Check if a valid or refreshable token is stored.

        Returns:
            True if authorized, False otherwise
        """
        token = self.storage.load()
        if token is None:
            return False
        return token.is_valid or bool(token.refresh_token)

    def get_status(self) -> dict:
        """
        Get current authorization status for diagnostics.

        Returns:
            Dictionary with status information including:
            - authorized: bool
            - expired: bool (if authorized)
            - expires_at: ISO timestamp or None (if authorized)
            - expires_in_seconds: float or None (if authorized)
            - refreshable: bool (if authorized)
            - scopes: list of str (if authorized)
            - storage: location of the stored credential
            - message: str (if not authorized)
        """
        token = self.storage.load()
        location = self.storage.describe()

        if token is None:
            return {"authorized": False, "message": "No tokens stored", "storage": location}

        return {
            "authorized": True,
            "expired": token.is_expired,
            "expires_at": token.expires_at.isoformat() if token.expires_at else None,
            "expires_in_seconds": token.expires_in,
            "refreshable": bool(token.refresh_token),
            "scopes": list(token.scopes),
            "storage": location,
        }

    def revoke(self) -> bool:
        """
        Delete the locally stored token.

        This does NOT revoke the token on Twitch's servers.

        Returns:
            True if a stored token was removed
        """
        removed = self.storage.delete()
        logger.info("Authorization revoked locally. Re-authorization required.")
        return removed
