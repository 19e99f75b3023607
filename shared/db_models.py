"""SQLAlchemy models for the local bookmark store."""

import uuid

from sqlalchemy import (
    JSON, Boolean, Column, DateTime, ForeignKey, Integer, LargeBinary, String, Text, TypeDecorator
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import declarative_base, relationship

from shared.models import BookmarkSource, utc_now


class UUID(TypeDecorator):
    """Platform-independent UUID type.

    Uses PostgreSQL's UUID type when available, otherwise uses
    CHAR(36), storing as stringified hex values.
    """
    impl = String
    cache_ok = True

    def load_dialect_impl(self, dialect):
        if dialect.name == 'postgresql':
            return dialect.type_descriptor(PG_UUID(as_uuid=True))
        return dialect.type_descriptor(String(36))

    def process_bind_param(self, value, dialect):
        if value is None or dialect.name == 'postgresql':
            return value
        if isinstance(value, uuid.UUID):
            return str(value)
        return str(uuid.UUID(str(value)))

    def process_result_value(self, value, dialect):
        if value is None or dialect.name == 'postgresql':
            return value
        if isinstance(value, str):
            return uuid.UUID(value)
        return value


Base = declarative_base()


class Category(Base):
    """Model for categories table."""
    __tablename__ = 'categories'

    id = Column(UUID(), primary_key=True, default=uuid.uuid4)
    name = Column(String(255), nullable=False)
    icon = Column(String(100), nullable=False, default='folder.fill')
    color_hex = Column(String(20), nullable=False, default='#007AFF')
    order = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=utc_now)
    updated_at = Column(DateTime, nullable=True)

    @property
    def last_modified(self):
        return self.updated_at or self.created_at


class Bookmark(Base):
    """Model for bookmarks table."""
    __tablename__ = 'bookmarks'

    id = Column(UUID(), primary_key=True, default=uuid.uuid4)
    title = Column(Text, nullable=False)
    url = Column(Text, nullable=True)
    note = Column(Text, nullable=False, default='')
    source = Column(String(50), nullable=False, default=BookmarkSource.OTHER.value)
    is_read = Column(Boolean, nullable=False, default=False)
    is_favorite = Column(Boolean, nullable=False, default=False)
    category_id = Column(UUID(), nullable=True)  # Local category UUID
    tags = Column(JSON, nullable=False, default=list)
    image_data = Column(LargeBinary, nullable=True)  # Primary image
    image_urls = Column(JSON, nullable=True)  # Remote storage paths
    created_at = Column(DateTime, nullable=False, default=utc_now)
    updated_at = Column(DateTime, nullable=True)

    images = relationship(
        'BookmarkImage',
        order_by='BookmarkImage.position',
        cascade='all, delete-orphan',
        lazy='selectin',
    )

    @property
    def last_modified(self):
        return self.updated_at or self.created_at

    @property
    def source_enum(self) -> BookmarkSource:
        return BookmarkSource.parse(self.source)

    def local_images(self) -> list:
        """All locally stored image bytes, primary image first."""
        images = []
        if self.image_data:
            images.append(self.image_data)
        images.extend(image.data for image in self.images if image.data)
        return images


class BookmarkImage(Base):
    """Additional images attached to a bookmark (e.g. multi-photo posts)."""
    __tablename__ = 'bookmark_images'

    id = Column(Integer, primary_key=True, autoincrement=True)
    bookmark_id = Column(UUID(), ForeignKey('bookmarks.id', ondelete='CASCADE'), nullable=False)
    position = Column(Integer, nullable=False, default=0)
    data = Column(LargeBinary, nullable=False)


class AuthSessionRecord(Base):
    """Persisted remote auth session. Tokens are stored encrypted."""
    __tablename__ = 'auth_sessions'

    id = Column(Integer, primary_key=True, default=1)
    user_id = Column(UUID(), nullable=False)
    email = Column(String(255), nullable=True)
    access_token = Column(Text, nullable=False)   # Encrypted
    refresh_token = Column(Text, nullable=False)  # Encrypted
    expires_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False, default=utc_now, onupdate=utc_now)
