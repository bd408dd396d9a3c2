"""
Token storage for Twitch OAuth integration.

This module provides the in-memory token model and file-based token
persistence. The token file holds exactly one credential; saving a new
token replaces the previous one. Tokens are stored in plaintext JSON with
user-only permissions.
"""

import json
import logging
import os
import tempfile
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional, Tuple

from .exceptions import TokenStorageError

logger = logging.getLogger(__name__)

SUPPORTED_TOKEN_TYPES = ("bearer",)


def utc_now() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@dataclass(frozen=True)
class TokenData:
    """
    OAuth credential issued by Twitch.

    Instances are immutable: refreshing a token produces a new TokenData.

    Attributes:
        access_token: Token sent with API calls
        refresh_token: Token used to obtain a new access token (optional)
        token_type: Token type, only "bearer" is supported
        expires_at: Absolute expiry in UTC, None if the provider gave none
        scopes: Scopes requested for this token
    """

    access_token: str = field(repr=False)
    refresh_token: Optional[str] = field(default=None, repr=False)
    token_type: str = "bearer"
    expires_at: Optional[datetime] = None
    scopes: Tuple[str, ...] = ()

    def __post_init__(self) -> None:
        if not self.access_token:
            raise ValueError("access_token cannot be empty")

        token_type = (self.token_type or "").lower()
        if token_type not in SUPPORTED_TOKEN_TYPES:
            raise ValueError(f"Unsupported token type: {self.token_type!r}")

        object.__setattr__(self, "token_type", token_type)
        object.__setattr__(self, "scopes", tuple(self.scopes))
        if self.expires_at is not None:
            object.__setattr__(self, "expires_at", _as_utc(self.expires_at))

    @classmethod
    def from_expires_in(
        cls,
        access_token: str,
        expires_in: Optional[int],
        refresh_token: Optional[str] = None,
        scopes: Tuple[str, ...] = (),
        issued_at: Optional[datetime] = None,
        token_type: str = "bearer",
    ) -> "TokenData":
        """
        Create TokenData from a relative lifetime.

        Token endpoints report "seconds until expiry"; this converts it to
        the absolute instant the token is stored with.

        Args:
            access_token: Access token
            expires_in: Lifetime in seconds, None if unknown
            refresh_token: Refresh token (optional)
            scopes: Requested scopes
            issued_at: Issue time (default: now)
            token_type: Token type

        Returns:
            TokenData with an absolute UTC expiry
        """
        expires_at = None
        if expires_in is not None:
            issued = _as_utc(issued_at) if issued_at else utc_now()
            expires_at = issued + timedelta(seconds=int(expires_in))

        return cls(
            access_token=access_token,
            refresh_token=refresh_token,
            token_type=token_type,
            expires_at=expires_at,
            scopes=tuple(scopes),
        )

    @property
    def is_expired(self) -> bool:
        """
        Check if access token is expired.

        Returns:
            True if an expiry is known and has been reached, False otherwise
        """
        return self.expires_at is not None and utc_now() >= self.expires_at

    @property
    def is_valid(self) -> bool:
        """True if the token can be used right now."""
        return bool(self.access_token) and not self.is_expired

    @property
    def expires_in(self) -> Optional[float]:
        """Seconds until expiry (never negative), None if unknown."""
        if self.expires_at is None:
            return None
        return max(0.0, (self.expires_at - utc_now()).total_seconds())

    def expires_within(self, seconds: int) -> bool:
        """
        Check if token expires within given seconds.

        Tokens without a known expiry never expire.

        Args:
            seconds: Number of seconds to check

        Returns:
            True if token will expire within the specified time, False otherwise
        """
        if self.expires_at is None:
            return False
        return utc_now() + timedelta(seconds=seconds) >= self.expires_at

    def with_refresh_token(self, refresh_token: Optional[str]) -> "TokenData":
        """Return a copy carrying a different refresh token."""
        return replace(self, refresh_token=refresh_token)

    def to_dict(self) -> dict:
        """
        Convert to dictionary for JSON serialization.

        Returns:
            Dictionary representation of token data
        """
        return {
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "token_type": self.token_type,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "scopes": list(self.scopes),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "TokenData":
        """
        Create TokenData from dictionary.

        Args:
            data: Dictionary with token data fields

        Returns:
            TokenData instance

        Raises:
            KeyError: If access_token is missing
            ValueError: If fields have invalid values
        """
        expires_at = data.get("expires_at")
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token"),
            token_type=data.get("token_type", "bearer"),
            expires_at=datetime.fromisoformat(expires_at) if expires_at else None,
            scopes=tuple(data.get("scopes") or ()),
        )


class TokenStorage:
    """
    File-based token storage (plaintext JSON).

    The file holds a single credential. Writes go to a temporary file that
    replaces the token file, so a reader never sees a half-written token.
    """

    def __init__(self, token_file: str):
        """
        Initialize token storage.

        Args:
            token_file: Path to token storage file
        """
        self.token_file = Path(token_file).expanduser()
        self._lock = threading.Lock()

    def _ensure_directory(self) -> None:
        """Create parent directory if needed."""
        self.token_file.parent.mkdir(parents=True, exist_ok=True)

    def save(self, token_data: TokenData) -> None:
        """
        Save tokens to file, replacing any stored token.

        Args:
            token_data: Token data to save

        Raises:
            TokenStorageError: If save operation fails
        """
        with self._lock:
            tmp_path = None
            try:
                self._ensure_directory()
                fd, tmp_path = tempfile.mkstemp(
                    dir=str(self.token_file.parent), prefix=".tokens-", suffix=".tmp"
                )
                with os.fdopen(fd, "w") as f:
                    json.dump(token_data.to_dict(), f, indent=2)
                os.chmod(tmp_path, 0o600)
                os.replace(tmp_path, self.token_file)
                tmp_path = None

                logger.info(f"Tokens saved to {self.token_file}")
            except OSError as e:
                logger.error(f"Failed to save tokens: {e}")
                raise TokenStorageError(f"Failed to save tokens: {e}") from e
            finally:
                if tmp_path is not None and os.path.exists(tmp_path):
                    os.unlink(tmp_path)

    def load(self) -> Optional[TokenData]:
        """
        Load tokens from file.

        Returns:
            TokenData if a token is stored, None if the file does not exist

        Raises:
            TokenStorageError: If the file cannot be read or is corrupted
        """
        if not self.token_file.exists():
            logger.debug(f"No token file found at {self.token_file}")
            return None

        try:
            with open(self.token_file, "r") as f:
                data = json.load(f)

            token_data = TokenData.from_dict(data)
            logger.debug(f"Tokens loaded from {self.token_file}")
            return token_data

        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            logger.error(f"Invalid token file at {self.token_file}: {e}")
            raise TokenStorageError(f"Invalid token file at {self.token_file}: {e}") from e
        except OSError as e:
            logger.error(f"Could not read token file: {e}")
            raise TokenStorageError(f"Could not read token file: {e}") from e

    def delete(self) -> bool:
        """
        Delete token file.

        Returns:
            True if file was deleted, False if file didn't exist

        Raises:
            TokenStorageError: If the file exists but cannot be removed
        """
        with self._lock:
            if not self.token_file.exists():
                logger.debug(f"Token file does not exist: {self.token_file}")
                return False

            try:
                self.token_file.unlink()
            except OSError as e:
                logger.error(f"Failed to delete token file: {e}")
                raise TokenStorageError(f"Failed to delete token file: {e}") from e

            logger.info(f"Token file deleted: {self.token_file}")
            return True

    def describe(self) -> str:
        """Human readable location of the stored credential."""
        return str(self.token_file)
