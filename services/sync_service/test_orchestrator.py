"""Unit tests for the sync orchestrator.

Tests cover:
- Full pass round trip between two devices
- Upload idempotence and UUID stability
- Category reference resolution
- Offline and concurrent-pass guards
- Failure handling (image failures, download rollback, upload failure)
- Single-record sync and soft/hard delete
"""

import asyncio
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, Mock, patch
from uuid import uuid4

import httpx
import pytest

from services.auth_service.gotrue_client import AuthError
from services.media_service.adapter import MediaError, MediaSyncAdapter
from services.sync_service.errors import (
    DownloadFailedError, NotAuthenticatedError, SyncFailedError
)
from services.sync_service.events import SyncEventKind
from services.sync_service.orchestrator import SyncOrchestrator
from services.sync_service.remote_store import RemoteStoreError
from shared.db_models import Bookmark, BookmarkImage, Category
from shared.encryption import EncryptionService
from shared.local_store import LocalStore
from shared.models import ConflictPolicy, DeleteMode, SyncState, format_timestamp, utc_now


# Test doubles

class FakeRemoteStore:
    """In-memory stand-in for the remote tables, keyed like the real backend."""

    def __init__(self, supports_upsert=True):
        self.supports_upsert = supports_upsert
        self.tables = {"bookmarks": [], "categories": []}
        self.calls = []
        self._next_id = 0

    @staticmethod
    def _matches(row, filters):
        for column, value in filters.items():
            if value is None:
                if row.get(column) is not None:
                    return False
            elif row.get(column) != value:
                return False
        return True

    async def select(self, table, filters, columns="*"):
        self.calls.append(("select", table))
        await asyncio.sleep(0)
        return [dict(row) for row in self.tables[table] if self._matches(row, filters)]

    async def count(self, table, filters):
        self.calls.append(("count", table))
        return len([row for row in self.tables[table] if self._matches(row, filters)])

    async def insert(self, table, payload):
        self.calls.append(("insert", table))
        self._next_id += 1
        row = {"id": f"remote-{self._next_id}", "deleted_at": None}
        row.update(payload)
        self.tables[table].append(row)

    async def update(self, table, values, filters):
        self.calls.append(("update", table))
        for row in self.tables[table]:
            if self._matches(row, filters):
                row.update(values)

    async def upsert(self, table, payload, on_conflict="user_id,local_id"):
        self.calls.append(("upsert", table))
        key = {"user_id": payload["user_id"], "local_id": payload["local_id"]}
        existing = [row for row in self.tables[table] if self._matches(row, key)]
        if existing:
            existing[0].update(payload)
        else:
            self._next_id += 1
            row = {"id": f"remote-{self._next_id}", "deleted_at": None}
            row.update(payload)
            self.tables[table].append(row)

    async def delete(self, table, filters):
        self.calls.append(("delete", table))
        self.tables[table] = [row for row in self.tables[table] if not self._matches(row, filters)]

    def live_rows(self, table):
        return [row for row in self.tables[table] if row.get("deleted_at") is None]


class FakeMedia:
    """Stores uploaded images in memory."""

    def __init__(self):
        self.objects = {}
        self.fail_indexes = set()
        self.deleted_owners = []

    async def upload(self, image, owner_id, index=0):
        if index in self.fail_indexes:
            raise MediaError(f"upload of image {index} failed")
        path = f"user/{owner_id}/{index}.jpg"
        self.objects[path] = image
        return path

    async def download(self, path_or_url):
        return self.objects.get(path_or_url)

    async def delete_all(self, owner_id):
        self.deleted_owners.append(owner_id)
        prefix = f"user/{owner_id}/"
        for key in [key for key in self.objects if key.startswith(prefix)]:
            del self.objects[key]


def make_auth(user_id):
    auth = Mock()
    auth.is_authenticated.return_value = user_id is not None
    auth.current_user_id.return_value = user_id
    auth.ensure_valid_session = AsyncMock()
    return auth


def make_store():
    store = LocalStore("sqlite:///:memory:")
    store.create_tables()
    return store


# Fixtures

@pytest.fixture
def user_id():
    return uuid4()


@pytest.fixture
def encryption_service():
    return EncryptionService(encryption_key=EncryptionService.generate_key())


@pytest.fixture
def remote():
    return FakeRemoteStore()


@pytest.fixture
def media():
    return FakeMedia()


@pytest.fixture
def store_a():
    store = make_store()
    yield store
    store.close()


@pytest.fixture
def store_b():
    store = make_store()
    yield store
    store.close()


@pytest.fixture
def make_orchestrator(remote, media, user_id, encryption_service):
    """Build an orchestrator for a given local store (one per simulated device)."""
    def _make(local_store, **kwargs):
        options = {
            "local_store": local_store,
            "remote_store": remote,
            "auth": make_auth(user_id),
            "encryption_service": encryption_service,
            "media": media,
            "notification_service": Mock(send_sync_failure_notification=AsyncMock()),
            "device_id": "test-device",
        }
        options.update(kwargs)
        return SyncOrchestrator(**options)
    return _make


def add_category(store, name="Reading"):
    category = Category(id=uuid4(), name=name, icon="book", color_hex="#FF0000", order=1)
    store.insert(category)
    store.save()
    return category


def add_bookmark(store, **fields):
    values = {"id": uuid4(), "title": "A", "url": "https://x", "tags": ["t1"]}
    values.update(fields)
    bookmark = Bookmark(**values)
    store.insert(bookmark)
    store.save()
    return bookmark


# Full pass

class TestFullSync:
    """Tests for perform_full_sync."""

    @pytest.mark.asyncio
    async def test_round_trip_between_devices(self, store_a, store_b, make_orchestrator):
        """Test that device B reconstructs what device A uploaded."""
        category = add_category(store_a)
        bookmark = add_bookmark(
            store_a, title="A", url="https://x", note="n", tags=["t1", "t2"],
            is_read=True, is_favorite=True, source="GitHub", category_id=category.id
        )

        result_a = await make_orchestrator(store_a).perform_full_sync()
        result_b = await make_orchestrator(store_b).perform_full_sync()

        assert result_a.status == "completed"
        assert result_b.status == "completed"
        assert result_b.categories_downloaded == 1
        assert result_b.bookmarks_downloaded == 1

        downloaded = store_b.get(Bookmark, bookmark.id)
        assert downloaded is not None
        assert downloaded.title == "A"
        assert downloaded.url == "https://x"
        assert downloaded.note == "n"
        assert downloaded.tags == ["t1", "t2"]
        assert downloaded.is_read is True
        assert downloaded.is_favorite is True
        assert downloaded.source == "GitHub"
        assert downloaded.category_id == category.id

        downloaded_category = store_b.get(Category, category.id)
        assert downloaded_category.name == "Reading"
        assert downloaded_category.icon == "book"
        assert downloaded_category.color_hex == "#FF0000"

    @pytest.mark.asyncio
    async def test_upload_is_idempotent(self, store_a, remote, make_orchestrator):
        """Test that repeated uploads leave exactly one remote row per entity."""
        add_category(store_a)
        add_bookmark(store_a)
        orchestrator = make_orchestrator(store_a)

        await orchestrator.upload_to_remote()
        await orchestrator.upload_to_remote()

        assert len(remote.tables["bookmarks"]) == 1
        assert len(remote.tables["categories"]) == 1

    @pytest.mark.asyncio
    async def test_uuid_stable_across_devices(self, store_a, store_b, remote, make_orchestrator):
        """Test that download and re-upload never mint new identities."""
        bookmark = add_bookmark(store_a)

        await make_orchestrator(store_a).perform_full_sync()
        await make_orchestrator(store_b).perform_full_sync()
        await make_orchestrator(store_a).perform_full_sync()

        assert [b.id for b in store_b.fetch_all(Bookmark)] == [bookmark.id]
        assert [row["local_id"] for row in remote.tables["bookmarks"]] == [str(bookmark.id)]

    @pytest.mark.asyncio
    async def test_encrypted_upload_and_unchanged_download(self, store_a, remote, make_orchestrator):
        """Test the remote row is encrypted and downloading it back changes nothing."""
        bookmark = add_bookmark(store_a, title="A", url="https://x", tags=["t1"])
        orchestrator = make_orchestrator(store_a)

        await orchestrator.upload_to_remote()

        row = remote.tables["bookmarks"][0]
        assert row["local_id"] == str(bookmark.id)
        assert row["is_encrypted"] is True
        assert row["title"] != "A"

        result = await orchestrator.download_from_remote()

        assert result.bookmarks_downloaded == 0
        bookmarks = store_a.fetch_all(Bookmark)
        assert len(bookmarks) == 1
        assert bookmarks[0].title == "A"
        assert bookmarks[0].url == "https://x"
        assert bookmarks[0].tags == ["t1"]

    @pytest.mark.asyncio
    async def test_category_reference_resolved_to_remote_id(self, store_a, remote, make_orchestrator):
        category = add_category(store_a)
        add_bookmark(store_a, category_id=category.id)

        await make_orchestrator(store_a).upload_to_remote()

        category_row = remote.tables["categories"][0]
        assert remote.tables["bookmarks"][0]["category_id"] == category_row["id"]

    @pytest.mark.asyncio
    async def test_unmapped_category_sent_as_null(self, store_a, remote, make_orchestrator):
        add_bookmark(store_a, category_id=uuid4())

        await make_orchestrator(store_a).upload_to_remote()

        assert remote.tables["bookmarks"][0]["category_id"] is None

    @pytest.mark.asyncio
    async def test_offline_short_circuit(self, store_a, remote, make_orchestrator):
        """Test that no remote call is made without connectivity."""
        connectivity = Mock()
        connectivity.is_connected.return_value = False
        orchestrator = make_orchestrator(store_a, connectivity=connectivity)

        result = await orchestrator.perform_full_sync()

        assert result.status == "skipped"
        assert result.reason == "offline"
        assert orchestrator.state == SyncState.OFFLINE
        assert remote.calls == []

    @pytest.mark.asyncio
    async def test_unauthenticated_short_circuit(self, store_a, remote, make_orchestrator):
        orchestrator = make_orchestrator(store_a, auth=make_auth(None))

        result = await orchestrator.perform_full_sync()

        assert result.reason == "not_authenticated"
        assert orchestrator.state == SyncState.OFFLINE
        assert not orchestrator.can_sync()
        assert remote.calls == []

    @pytest.mark.asyncio
    async def test_concurrent_pass_is_noop(self, store_a, remote, make_orchestrator):
        """Test that a second pass started during the first does nothing."""
        add_bookmark(store_a)
        orchestrator = make_orchestrator(store_a)

        first, second = await asyncio.gather(
            orchestrator.perform_full_sync(),
            orchestrator.perform_full_sync(),
        )

        assert first.status == "completed"
        assert second.status == "skipped"
        assert second.reason == "in_progress"
        assert len(remote.tables["bookmarks"]) == 1

    @pytest.mark.asyncio
    async def test_guard_covers_all_in_progress_states(self, store_a, remote, make_orchestrator):
        orchestrator = make_orchestrator(store_a)

        for state in (SyncState.SYNCING, SyncState.DOWNLOADING, SyncState.UPLOADING):
            orchestrator.state = state
            assert not orchestrator.can_sync()
            result = await orchestrator.perform_full_sync()
            assert result.reason == "in_progress"

        assert remote.calls == []

    @pytest.mark.asyncio
    async def test_success_updates_state_and_events(self, store_a, make_orchestrator):
        orchestrator = make_orchestrator(store_a)
        queue = orchestrator.subscribe()

        result = await orchestrator.perform_full_sync()

        assert orchestrator.state == SyncState.IDLE
        assert orchestrator.last_sync_date == result.completed_at
        assert orchestrator.sync_error is None
        assert queue.get_nowait().kind == SyncEventKind.STARTED
        completed = queue.get_nowait()
        assert completed.kind == SyncEventKind.COMPLETED
        assert completed.result is result

    @pytest.mark.asyncio
    async def test_image_upload_failure_skipped(self, store_a, remote, media, make_orchestrator):
        """Test that one failed image upload is logged and the others are kept."""
        bookmark = add_bookmark(store_a, image_data=b"primary")
        bookmark.images = [BookmarkImage(position=0, data=b"extra")]
        store_a.save()
        media.fail_indexes = {0}

        result = await make_orchestrator(store_a).perform_full_sync()

        assert result.status == "completed"
        assert result.images_failed == 1
        assert remote.tables["bookmarks"][0]["image_urls"] == [f"user/{bookmark.id}/1.jpg"]

    @pytest.mark.asyncio
    async def test_image_urls_omitted_without_images(self, store_a, remote, make_orchestrator):
        add_bookmark(store_a)

        await make_orchestrator(store_a).upload_to_remote()

        assert "image_urls" not in remote.tables["bookmarks"][0]

    @pytest.mark.asyncio
    async def test_download_fetches_first_image(self, store_a, store_b, make_orchestrator):
        bookmark = add_bookmark(store_a, image_data=b"picture")

        await make_orchestrator(store_a).perform_full_sync()
        await make_orchestrator(store_b).perform_full_sync()

        downloaded = store_b.get(Bookmark, bookmark.id)
        assert downloaded.image_data == b"picture"
        assert downloaded.image_urls == [f"user/{bookmark.id}/0.jpg"]

    @pytest.mark.asyncio
    async def test_download_failure_rolls_back(self, store_a, store_b, remote, make_orchestrator):
        """Test that a failed save leaves the local store untouched and skips upload."""
        add_category(store_a)
        add_bookmark(store_a)
        await make_orchestrator(store_a).perform_full_sync()
        remote.calls.clear()

        orchestrator = make_orchestrator(store_b)
        with patch.object(store_b, "save", side_effect=RuntimeError("disk full")):
            result = await orchestrator.perform_full_sync()

        assert result.status == "failed"
        assert isinstance(orchestrator.sync_error, DownloadFailedError)
        assert "disk full" in result.error
        assert orchestrator.state == SyncState.ERROR
        assert store_b.fetch_all(Bookmark) == []
        assert store_b.fetch_all(Category) == []
        assert not [call for call in remote.calls if call[0] == "upsert"]
        orchestrator.notification_service.send_sync_failure_notification.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_upload_failure(self, store_a, remote, make_orchestrator):
        add_bookmark(store_a)
        remote.upsert = AsyncMock(side_effect=RemoteStoreError("boom", status_code=500))
        orchestrator = make_orchestrator(store_a)
        queue = orchestrator.subscribe()

        result = await orchestrator.perform_full_sync()

        assert result.status == "failed"
        assert isinstance(orchestrator.sync_error, SyncFailedError)
        assert orchestrator.state == SyncState.ERROR
        events = [queue.get_nowait().kind for _ in range(queue.qsize())]
        assert events == [SyncEventKind.STARTED, SyncEventKind.FAILED]

    @pytest.mark.asyncio
    async def test_session_failure_is_not_authenticated(self, store_a, remote, make_orchestrator):
        orchestrator = make_orchestrator(store_a)
        orchestrator.auth.ensure_valid_session.side_effect = AuthError("revoked", status_code=401)

        result = await orchestrator.perform_full_sync()

        assert isinstance(orchestrator.sync_error, NotAuthenticatedError)
        assert result.reason == "not_authenticated"
        assert remote.calls == []

    @pytest.mark.asyncio
    async def test_download_category_defaults(self, store_a, remote, user_id, make_orchestrator):
        """Test defaults for sparse remote categories and skipping invalid ids."""
        category_id = uuid4()
        remote.tables["categories"] = [
            {"id": "c1", "user_id": str(user_id), "local_id": str(category_id), "name": None,
             "is_encrypted": False, "deleted_at": None},
            {"id": "c2", "user_id": str(user_id), "local_id": "not-a-uuid", "name": "Bad",
             "is_encrypted": False, "deleted_at": None},
        ]

        result = await make_orchestrator(store_a).download_from_remote()

        assert result.categories_downloaded == 1
        category = store_a.get(Category, category_id)
        assert category.name == "Unnamed"
        assert category.icon == "folder"
        assert category.color_hex == "#000000"
        assert category.order == 0

    @pytest.mark.asyncio
    async def test_download_unknown_source(self, store_a, remote, user_id, make_orchestrator):
        bookmark_id = uuid4()
        remote.tables["bookmarks"] = [
            {"id": "b1", "user_id": str(user_id), "local_id": str(bookmark_id), "title": "Plain",
             "source": "Fax", "is_encrypted": False, "deleted_at": None},
        ]

        await make_orchestrator(store_a).download_from_remote()

        assert store_a.get(Bookmark, bookmark_id).source == "Other"

    @pytest.mark.asyncio
    async def test_remote_wins_overwrites_local(self, store_a, remote, user_id, make_orchestrator):
        bookmark = add_bookmark(store_a, title="Local", updated_at=utc_now() + timedelta(days=1))
        remote.tables["bookmarks"] = [
            {"id": "b1", "user_id": str(user_id), "local_id": str(bookmark.id), "title": "Remote",
             "source": "Other", "is_encrypted": False, "deleted_at": None,
             "updated_at": "2020-01-01T00:00:00Z"},
        ]

        result = await make_orchestrator(store_a).download_from_remote()

        assert result.bookmarks_updated == 1
        assert store_a.get(Bookmark, bookmark.id).title == "Remote"

    @pytest.mark.asyncio
    async def test_newest_wins_keeps_newer_local(self, store_a, remote, user_id, make_orchestrator):
        bookmark = add_bookmark(store_a, title="Local", updated_at=datetime(2030, 1, 1))
        remote.tables["bookmarks"] = [
            {"id": "b1", "user_id": str(user_id), "local_id": str(bookmark.id), "title": "Remote",
             "source": "Other", "is_encrypted": False, "deleted_at": None,
             "updated_at": "2020-01-01T00:00:00Z"},
        ]
        orchestrator = make_orchestrator(store_a, conflict_policy=ConflictPolicy.NEWEST_WINS)

        result = await orchestrator.download_from_remote()

        assert result.bookmarks_updated == 0
        assert store_a.get(Bookmark, bookmark.id).title == "Local"

    @pytest.mark.asyncio
    async def test_newest_wins_keeps_unsynced_local_edit(self, store_a, store_b, remote, make_orchestrator):
        """Test that a later pass on an idle device does not clobber an older-uploaded edit."""
        bookmark = add_bookmark(store_a, title="v1", created_at=utc_now() - timedelta(days=1))
        await make_orchestrator(store_a).perform_full_sync()
        await make_orchestrator(store_b).perform_full_sync()

        edited_at = utc_now() - timedelta(hours=1)
        edited = store_a.get(Bookmark, bookmark.id)
        edited.title = "v2"
        edited.updated_at = edited_at
        store_a.save()

        await make_orchestrator(store_b).perform_full_sync()
        result = await make_orchestrator(
            store_a, conflict_policy=ConflictPolicy.NEWEST_WINS
        ).perform_full_sync()

        assert result.status == "completed"
        assert store_a.get(Bookmark, bookmark.id).title == "v2"
        assert remote.tables["bookmarks"][0]["updated_at"] == format_timestamp(edited_at)

        await make_orchestrator(store_b).perform_full_sync()
        assert store_b.get(Bookmark, bookmark.id).title == "v2"

    @pytest.mark.asyncio
    async def test_legacy_category_without_local_id_keeps_links(self, store_a, remote, user_id, make_orchestrator):
        category_id = uuid4()
        bookmark_id = uuid4()
        remote.tables["categories"] = [
            {"id": str(category_id), "user_id": str(user_id), "local_id": None, "name": "Legacy",
             "is_encrypted": False, "deleted_at": None},
        ]
        remote.tables["bookmarks"] = [
            {"id": "b1", "user_id": str(user_id), "local_id": str(bookmark_id), "title": "Plain",
             "source": "Other", "category_id": str(category_id), "is_encrypted": False,
             "deleted_at": None},
        ]

        await make_orchestrator(store_a).download_from_remote()

        assert store_a.get(Category, category_id).name == "Legacy"
        assert store_a.get(Bookmark, bookmark_id).category_id == category_id

    @pytest.mark.asyncio
    async def test_malformed_image_url_does_not_abort_pass(self, store_a, remote, user_id, make_orchestrator):
        """Test that an unfetchable image is counted and the record still lands."""
        bookmark_id = uuid4()
        remote.tables["bookmarks"] = [
            {"id": "b1", "user_id": str(user_id), "local_id": str(bookmark_id), "title": "Plain",
             "source": "Other", "image_urls": ["http://[::1"], "is_encrypted": False,
             "deleted_at": None},
        ]
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(404)))
        media = MediaSyncAdapter(Mock(), lambda: user_id, http_client)

        result = await make_orchestrator(store_a, media=media).perform_full_sync()

        assert result.status == "completed"
        assert result.images_failed == 1
        assert store_a.get(Bookmark, bookmark_id).title == "Plain"
        assert remote.calls[-1] == ("upsert", "bookmarks")

    @pytest.mark.asyncio
    async def test_raising_media_download_is_counted(self, store_a, remote, user_id, media, make_orchestrator):
        bookmark_id = uuid4()
        remote.tables["bookmarks"] = [
            {"id": "b1", "user_id": str(user_id), "local_id": str(bookmark_id), "title": "Plain",
             "source": "Other", "image_urls": ["user/x/0.jpg"], "is_encrypted": False,
             "deleted_at": None},
        ]
        media.download = AsyncMock(side_effect=RuntimeError("decoder crashed"))

        result = await make_orchestrator(store_a).download_from_remote()

        assert result.images_failed == 1
        assert store_a.get(Bookmark, bookmark_id) is not None


# Single-record operations

class TestSingleRecordOperations:
    """Tests for sync_bookmark, sync_category and deletes."""

    @pytest.mark.asyncio
    async def test_sync_bookmark_upsert(self, store_a, remote, make_orchestrator):
        category = add_category(store_a)
        bookmark = add_bookmark(store_a, category_id=category.id)
        orchestrator = make_orchestrator(store_a)

        await orchestrator.sync_category(category)
        await orchestrator.sync_bookmark(bookmark)
        await orchestrator.sync_bookmark(bookmark)

        assert len(remote.tables["bookmarks"]) == 1
        row = remote.tables["bookmarks"][0]
        assert row["local_id"] == str(bookmark.id)
        assert row["category_id"] == remote.tables["categories"][0]["id"]

    @pytest.mark.asyncio
    async def test_sync_bookmark_unsynced_category(self, store_a, remote, make_orchestrator):
        category = add_category(store_a)
        bookmark = add_bookmark(store_a, category_id=category.id)

        await make_orchestrator(store_a).sync_bookmark(bookmark)

        assert remote.tables["bookmarks"][0]["category_id"] is None

    @pytest.mark.asyncio
    async def test_two_step_write_without_upsert(self, store_a, make_orchestrator):
        """Test the count-then-insert/update branch."""
        remote = FakeRemoteStore(supports_upsert=False)
        bookmark = add_bookmark(store_a)
        orchestrator = make_orchestrator(store_a, remote_store=remote)

        await orchestrator.sync_bookmark(bookmark)
        bookmark.title = "Renamed"
        await orchestrator.sync_bookmark(bookmark)

        writes = [call for call in remote.calls if call[0] in ("count", "insert", "update", "upsert")]
        assert writes == [
            ("count", "bookmarks"), ("insert", "bookmarks"),
            ("count", "bookmarks"), ("update", "bookmarks"),
        ]
        assert len(remote.tables["bookmarks"]) == 1

    @pytest.mark.asyncio
    async def test_requires_authentication(self, store_a, make_orchestrator):
        bookmark = add_bookmark(store_a)
        category = add_category(store_a)
        orchestrator = make_orchestrator(store_a, auth=make_auth(None))

        with pytest.raises(NotAuthenticatedError):
            await orchestrator.sync_bookmark(bookmark)
        with pytest.raises(NotAuthenticatedError):
            await orchestrator.sync_category(category)
        with pytest.raises(NotAuthenticatedError):
            await orchestrator.delete_bookmark(bookmark)
        with pytest.raises(NotAuthenticatedError):
            await orchestrator.delete_category(category)

    @pytest.mark.asyncio
    async def test_soft_delete_hidden_from_download(self, store_a, store_b, remote, media, make_orchestrator):
        """Test that soft-deleted rows stay remotely but are not downloaded."""
        bookmark = add_bookmark(store_a, image_data=b"img")
        category = add_category(store_a)
        orchestrator = make_orchestrator(store_a)
        await orchestrator.upload_to_remote()

        await orchestrator.delete_bookmark(bookmark)
        await orchestrator.delete_category(category.id)

        assert len(remote.tables["bookmarks"]) == 1
        assert remote.tables["bookmarks"][0]["deleted_at"] is not None
        assert remote.tables["categories"][0]["deleted_at"] is not None
        assert media.deleted_owners == []

        await make_orchestrator(store_b).download_from_remote()
        assert store_b.fetch_all(Bookmark) == []
        assert store_b.fetch_all(Category) == []

    @pytest.mark.asyncio
    async def test_hard_delete_removes_row_and_images(self, store_a, remote, media, make_orchestrator):
        bookmark = add_bookmark(store_a, image_data=b"img")
        orchestrator = make_orchestrator(store_a, delete_mode=DeleteMode.HARD)
        await orchestrator.upload_to_remote()
        assert media.objects

        await orchestrator.delete_bookmark(bookmark.id)

        assert remote.tables["bookmarks"] == []
        assert media.deleted_owners == [bookmark.id]
        assert media.objects == {}
