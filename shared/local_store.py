"""Local bookmark store backed by SQLAlchemy."""

import asyncio
import logging
from datetime import datetime
from typing import List, Optional, Type, TypeVar
from uuid import UUID

from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from shared.config import get_local_database_url
from shared.db_models import AuthSessionRecord, Base

logger = logging.getLogger(__name__)

T = TypeVar("T")


class LocalStore:
    """Unit-of-work handle over the local database.

    A single long-lived session tracks every entity returned by fetch_all(),
    so mutations made during a sync pass are committed together by save().
    The store assumes a single writer; callers mutating entities from
    background tasks must hold ``lock``.
    """

    def __init__(self, database_url: Optional[str] = None):
        """Initialize database connection."""
        self.database_url = database_url or get_local_database_url()
        engine_kwargs = {"pool_pre_ping": True}
        if self.database_url.startswith("sqlite") and ":memory:" in self.database_url:
            # One shared connection, otherwise every checkout sees an empty database
            engine_kwargs = {
                "connect_args": {"check_same_thread": False},
                "poolclass": StaticPool,
            }
        self.engine = create_engine(self.database_url, **engine_kwargs)
        self.SessionLocal = sessionmaker(
            autocommit=False, autoflush=False, expire_on_commit=False, bind=self.engine
        )
        self.session: Session = self.SessionLocal()
        self.lock = asyncio.Lock()

    def create_tables(self):
        """Create all tables in the database."""
        Base.metadata.create_all(bind=self.engine)

    def close(self):
        self.session.close()
        self.engine.dispose()

    # Entity operations

    def fetch_all(self, model: Type[T]) -> List[T]:
        """Return every entity of the given model."""
        return list(self.session.execute(select(model)).scalars().all())

    def get(self, model: Type[T], entity_id: UUID) -> Optional[T]:
        return self.session.get(model, entity_id)

    def insert(self, entity):
        """Stage a new entity; it is written on the next save()."""
        self.session.add(entity)

    def delete(self, entity):
        self.session.delete(entity)

    def save(self):
        """Commit all staged changes as one transaction."""
        try:
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

    def rollback(self):
        """Discard staged changes and reload tracked entities on next access."""
        self.session.rollback()
        self.session.expire_all()

    # Auth session persistence

    def save_auth_session(
        self,
        user_id: UUID,
        email: Optional[str],
        access_token: str,
        refresh_token: str,
        expires_at: datetime,
        encryption_service: 'EncryptionService'
    ) -> AuthSessionRecord:
        """
        Store or replace the persisted auth session with encrypted tokens.

        Args:
            user_id: Authenticated user ID
            email: User email (None for anonymous users)
            access_token: Access token (will be encrypted)
            refresh_token: Refresh token (will be encrypted)
            expires_at: Access token expiry (naive UTC)
            encryption_service: Encryption service for encrypting tokens

        Returns:
            The stored AuthSessionRecord
        """
        with self.SessionLocal() as session:
            record = session.get(AuthSessionRecord, 1)
            if record is None:
                record = AuthSessionRecord(id=1)
                session.add(record)

            record.user_id = user_id
            record.email = email
            record.access_token = encryption_service.encrypt(access_token)
            record.refresh_token = encryption_service.encrypt(refresh_token)
            record.expires_at = expires_at

            session.commit()
            session.refresh(record)
            return record

    def load_auth_session(self, encryption_service: 'EncryptionService') -> Optional[dict]:
        """
        Retrieve and decrypt the persisted auth session.

        Returns:
            Dictionary with decrypted tokens or None if no session is stored
        """
        with self.SessionLocal() as session:
            record = session.get(AuthSessionRecord, 1)
            if not record:
                return None

            return {
                'user_id': record.user_id,
                'email': record.email,
                'access_token': encryption_service.decrypt(record.access_token),
                'refresh_token': encryption_service.decrypt(record.refresh_token),
                'expires_at': record.expires_at,
            }

    def clear_auth_session(self) -> bool:
        """
        Delete the persisted auth session.

        Returns:
            True if a session was deleted, False if none was stored
        """
        with self.SessionLocal() as session:
            record = session.get(AuthSessionRecord, 1)
            if not record:
                return False
            session.delete(record)
            session.commit()
            return True
