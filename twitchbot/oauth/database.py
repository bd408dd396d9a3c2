"""SQLAlchemy-backed token storage.

Stores the bot's single credential as one row of the ``access`` table.
The row always has id 1: saving inserts it when missing and updates it
otherwise, so the table never holds more than one credential.
"""

import logging
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from sqlalchemy import Column, DateTime, Integer, String, Text, create_engine
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker

from .exceptions import TokenStorageError
from .token_storage import TokenData

logger = logging.getLogger(__name__)

Base = declarative_base()

ACCESS_ROW_ID = 1


class AccessRecord(Base):
    """Persisted credential row.

    Attributes:
        id: Fixed slot identifier (always 1)
        access_token: Access token (never empty)
        refresh_token: Refresh token, NULL if the provider issued none
        token_type: Token type ("bearer")
        expires_at: Absolute expiry as naive UTC, NULL if unknown
        scopes: Space separated scope list
        updated_at: Timestamp of the last save (naive UTC)
    """

    __tablename__ = "access"

    id = Column(Integer, primary_key=True, autoincrement=False)
    access_token = Column(String, nullable=False)
    refresh_token = Column(String, nullable=True)
    token_type = Column(String, nullable=False, default="bearer")
    expires_at = Column(DateTime, nullable=True)
    scopes = Column(Text, nullable=False, default="")
    updated_at = Column(DateTime, nullable=False)

    def __repr__(self) -> str:
        return f"<AccessRecord(id={self.id}, expires_at={self.expires_at})>"

    def to_token(self) -> TokenData:
        """Rebuild the token model from this row."""
        return TokenData(
            access_token=self.access_token,
            refresh_token=self.refresh_token,
            token_type=self.token_type or "bearer",
            expires_at=self.expires_at,
            scopes=tuple((self.scopes or "").split()),
        )

    def apply(self, token: TokenData) -> None:
        """Copy token fields onto this row."""
        self.access_token = token.access_token
        self.refresh_token = token.refresh_token
        self.token_type = token.token_type
        self.expires_at = _to_naive_utc(token.expires_at)
        self.scopes = " ".join(token.scopes)
        self.updated_at = _to_naive_utc(datetime.now(timezone.utc))


def _to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def init_engine(database_url: str) -> Engine:
    """Create an engine for the token database.

    Creates the database directory for SQLite files if it doesn't exist.

    Args:
        database_url: SQLAlchemy database URL

    Returns:
        Configured SQLAlchemy engine
    """
    url = make_url(database_url)
    connect_args = {}

    if url.get_backend_name() == "sqlite":
        connect_args["check_same_thread"] = False
        if url.database and url.database != ":memory:":
            db_dir = Path(url.database).expanduser().parent
            if not db_dir.exists():
                db_dir.mkdir(parents=True, exist_ok=True)
                logger.info(f"Created database directory: {db_dir}")

    return create_engine(url, connect_args=connect_args, pool_pre_ping=True)


class DatabaseTokenStorage:
    """
    Database token storage (single row, plaintext).

    Exposes the same interface as TokenStorage so the token manager and
    coordinator work with either backend.
    """

    def __init__(self, database_url: str, engine: Optional[Engine] = None):
        """
        Initialize database storage and create the table if needed.

        Args:
            database_url: SQLAlchemy database URL
            engine: Pre-built engine (optional, mostly for tests)

        Raises:
            TokenStorageError: If the database cannot be reached
        """
        self.database_url = database_url
        self.engine = engine or init_engine(database_url)
        self._session_factory = sessionmaker(
            bind=self.engine, autoflush=False, expire_on_commit=False
        )
        self._lock = threading.Lock()

        try:
            Base.metadata.create_all(bind=self.engine)
        except SQLAlchemyError as e:
            logger.error(f"Could not initialize token table: {e}")
            raise TokenStorageError(f"Could not initialize token table: {e}") from e

    def load(self) -> Optional[TokenData]:
        """
        Load the stored credential.

        Returns:
            TokenData if a row exists, None otherwise

        Raises:
            TokenStorageError: If the database cannot be read or the row is invalid
        """
        try:
            with self._session_factory() as session:
                record = session.get(AccessRecord, ACCESS_ROW_ID)
                if record is None:
                    logger.debug("No access row stored")
                    return None
                return record.to_token()
        except SQLAlchemyError as e:
            logger.error(f"Failed to load tokens from database: {e}")
            raise TokenStorageError(f"Failed to load tokens from database: {e}") from e
        except ValueError as e:
            logger.error(f"Invalid access row in database: {e}")
            raise TokenStorageError(f"Invalid access row in database: {e}") from e

    def save(self, token_data: TokenData) -> None:
        """
        Insert or update the credential row.

        Args:
            token_data: Token data to save

        Raises:
            TokenStorageError: If the write fails
        """
        with self._lock:
            try:
                with self._session_factory() as session, session.begin():
                    record = session.get(AccessRecord, ACCESS_ROW_ID)
                    if record is None:
                        record = AccessRecord(id=ACCESS_ROW_ID)
                        record.apply(token_data)
                        session.add(record)
                        logger.info("New access added to the database")
                    else:
                        record.apply(token_data)
                        logger.info("Access updated in the database")
            except SQLAlchemyError as e:
                logger.error(f"Failed to save tokens to database: {e}")
                raise TokenStorageError(f"Failed to save tokens to database: {e}") from e

    def delete(self) -> bool:
        """
        Delete the credential row.

        Returns:
            True if a row was deleted, False if none existed
        """
        with self._lock:
            try:
                with self._session_factory() as session, session.begin():
                    record = session.get(AccessRecord, ACCESS_ROW_ID)
                    if record is None:
                        return False
                    session.delete(record)
            except SQLAlchemyError as e:
                logger.error(f"Failed to delete tokens from database: {e}")
                raise TokenStorageError(f"Failed to delete tokens from database: {e}") from e

        logger.info("Access removed from the database")
        return True

    def describe(self) -> str:
        """Human readable location of the stored credential."""
        return make_url(self.database_url).render_as_string(hide_password=True)
