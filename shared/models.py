"""Shared data models for the bookmark sync application."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional


class BookmarkSource(str, Enum):
    """Where a bookmark was saved from."""
    TWITTER = "Twitter"
    REDDIT = "Reddit"
    LINKEDIN = "LinkedIn"
    MEDIUM = "Medium"
    YOUTUBE = "YouTube"
    INSTAGRAM = "Instagram"
    GITHUB = "GitHub"
    ARTICLE = "Article"
    OTHER = "Other"

    @classmethod
    def parse(cls, value: Optional[str]) -> "BookmarkSource":
        """Map a stored value to a source, falling back to OTHER."""
        try:
            return cls(value)
        except ValueError:
            return cls.OTHER


class SyncState(str, Enum):
    """Published state of the sync engine."""
    IDLE = "idle"
    SYNCING = "syncing"
    DOWNLOADING = "downloading"
    UPLOADING = "uploading"
    OFFLINE = "offline"
    ERROR = "error"


IN_PROGRESS_STATES = (SyncState.SYNCING, SyncState.DOWNLOADING, SyncState.UPLOADING)


class DeleteMode(str, Enum):
    """How remote records are removed."""
    SOFT = "soft"
    HARD = "hard"


class ConflictPolicy(str, Enum):
    """How the download phase treats a bookmark that exists on both sides."""
    REMOTE_WINS = "remote_wins"
    NEWEST_WINS = "newest_wins"


def utc_now() -> datetime:
    """Current UTC time as a naive datetime (the local store's convention)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO 8601 timestamp into a naive UTC datetime."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def format_timestamp(value: datetime) -> str:
    """Format a naive UTC datetime as ISO 8601 with a Z suffix."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.replace(microsecond=0).isoformat() + "Z"


@dataclass
class RemoteCategoryRecord:
    """Row of the remote categories table."""
    id: str
    user_id: Optional[str] = None
    local_id: Optional[str] = None
    name: Optional[str] = None
    icon: Optional[str] = None
    color: Optional[str] = None
    order: Optional[int] = None
    is_encrypted: bool = False
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    deleted_at: Optional[str] = None
    sync_version: int = 1
    last_modified_device: Optional[str] = None

    @classmethod
    def from_row(cls, row: dict) -> "RemoteCategoryRecord":
        return cls(
            id=str(row["id"]),
            user_id=row.get("user_id"),
            local_id=row.get("local_id"),
            name=row.get("name"),
            icon=row.get("icon"),
            color=row.get("color"),
            order=row.get("order"),
            is_encrypted=row.get("is_encrypted") is True,
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
            deleted_at=row.get("deleted_at"),
            sync_version=row.get("sync_version") or 1,
            last_modified_device=row.get("last_modified_device"),
        )

    @property
    def target_id(self) -> str:
        """The local identity this record maps to."""
        return self.local_id or self.id


@dataclass
class RemoteBookmarkRecord:
    """Row of the remote bookmarks table."""
    id: str
    title: str
    source: str
    user_id: Optional[str] = None
    local_id: Optional[str] = None
    url: Optional[str] = None
    note: Optional[str] = None
    is_read: bool = False
    is_favorite: bool = False
    category_id: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    image_urls: List[str] = field(default_factory=list)
    is_encrypted: bool = False
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    deleted_at: Optional[str] = None
    sync_version: int = 1
    last_modified_device: Optional[str] = None

    @classmethod
    def from_row(cls, row: dict) -> "RemoteBookmarkRecord":
        category_id = row.get("category_id")
        return cls(
            id=str(row["id"]),
            title=row.get("title") or "",
            source=row.get("source") or BookmarkSource.OTHER.value,
            user_id=row.get("user_id"),
            local_id=row.get("local_id"),
            url=row.get("url"),
            note=row.get("note"),
            is_read=bool(row.get("is_read")),
            is_favorite=bool(row.get("is_favorite")),
            category_id=str(category_id) if category_id else None,
            tags=list(row.get("tags") or []),
            image_urls=list(row.get("image_urls") or []),
            is_encrypted=row.get("is_encrypted") is True,
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
            deleted_at=row.get("deleted_at"),
            sync_version=row.get("sync_version") or 1,
            last_modified_device=row.get("last_modified_device"),
        )

    @property
    def target_id(self) -> str:
        """The local identity this record maps to."""
        return self.local_id or self.id


@dataclass
class SyncResult:
    """Outcome of one full sync pass."""
    status: str  # completed, failed, skipped
    started_at: datetime
    completed_at: Optional[datetime] = None
    categories_downloaded: int = 0
    bookmarks_downloaded: int = 0
    bookmarks_updated: int = 0
    categories_uploaded: int = 0
    bookmarks_uploaded: int = 0
    images_failed: int = 0
    error: Optional[str] = None
    reason: Optional[str] = None
