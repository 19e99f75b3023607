"""Sync orchestration logic."""

import asyncio
import logging
from typing import List, Optional, Set, Tuple
from uuid import UUID

from services.auth_service.gotrue_client import AuthError
from services.auth_service.session import AuthSessionManager
from services.media_service.adapter import MediaSyncAdapter
from services.sync_service.connectivity import ConnectivityMonitor
from services.sync_service.errors import (
    DownloadFailedError, NotAuthenticatedError, OfflineError, SyncError, SyncFailedError
)
from services.sync_service.events import SyncEvent, SyncEventKind
from services.sync_service.identifiers import CategoryIdMap
from services.sync_service.notifications import NotificationService
from services.sync_service.payloads import (
    build_bookmark_payload, build_category_payload, decrypt_if_needed
)
from services.sync_service.remote_store import BOOKMARKS_TABLE, CATEGORIES_TABLE, RemoteStore
from shared.config import get_default_device_id
from shared.db_models import Bookmark, Category
from shared.encryption import EncryptionService
from shared.events import EventChannel
from shared.local_store import LocalStore
from shared.models import (
    IN_PROGRESS_STATES, BookmarkSource, ConflictPolicy, DeleteMode, RemoteBookmarkRecord,
    RemoteCategoryRecord, SyncResult, SyncState, format_timestamp, parse_timestamp, utc_now
)

logger = logging.getLogger(__name__)


def _as_uuid(value: Optional[str]) -> Optional[UUID]:
    if not value:
        return None
    try:
        return UUID(value)
    except ValueError:
        return None


class SyncOrchestrator:
    """Reconciles the local bookmark store with the remote tables.

    A full pass downloads remote records into the local store, persists them,
    then uploads every local record. Both directions are keyed by the local
    UUID (``local_id`` remotely) so repeated passes never duplicate rows.
    """

    def __init__(
        self,
        local_store: LocalStore,
        remote_store: RemoteStore,
        auth: AuthSessionManager,
        encryption_service: EncryptionService,
        media: Optional[MediaSyncAdapter] = None,
        connectivity: Optional[ConnectivityMonitor] = None,
        notification_service: Optional[NotificationService] = None,
        device_id: Optional[str] = None,
        delete_mode: DeleteMode = DeleteMode.SOFT,
        conflict_policy: ConflictPolicy = ConflictPolicy.REMOTE_WINS
    ):
        """
        Initialize the sync orchestrator.

        Args:
            local_store: Local unit-of-work store
            remote_store: Remote table client
            auth: Session manager providing the current user
            encryption_service: Field encryption for uploaded content
            media: Image adapter; images are skipped when absent
            connectivity: Reachability monitor; assumed online when absent
            notification_service: Failure notifications
            device_id: Value written to ``last_modified_device``
            delete_mode: How delete_bookmark/delete_category remove rows
            conflict_policy: How download treats bookmarks present on both sides
        """
        self.local_store = local_store
        self.remote_store = remote_store
        self.auth = auth
        self.encryption_service = encryption_service
        self.media = media
        self.connectivity = connectivity
        self.notification_service = notification_service or NotificationService()
        self.device_id = device_id or get_default_device_id()
        self.delete_mode = DeleteMode(delete_mode)
        self.conflict_policy = ConflictPolicy(conflict_policy)

        self.state = SyncState.IDLE
        self.last_sync_date = None
        self.sync_error: Optional[SyncError] = None
        self.events: EventChannel[SyncEvent] = EventChannel()

    def subscribe(self) -> asyncio.Queue:
        """Queue receiving every SyncEvent from now on."""
        return self.events.subscribe()

    def unsubscribe(self, queue: asyncio.Queue):
        self.events.unsubscribe(queue)

    @property
    def is_syncing(self) -> bool:
        return self.state in IN_PROGRESS_STATES

    def _is_connected(self) -> bool:
        return self.connectivity is None or self.connectivity.is_connected()

    def can_sync(self) -> bool:
        return (
            self.local_store is not None
            and self.auth.is_authenticated()
            and self._is_connected()
            and not self.is_syncing
        )

    # Full pass

    async def perform_full_sync(self) -> SyncResult:
        """
        Run one download-then-upload pass.

        Never raises: failures are stored in ``sync_error``, published as a
        FAILED event and reported in the returned result.
        """
        started_at = utc_now()

        if self.is_syncing:
            logger.info("Sync already in progress, skipping")
            return SyncResult(status="skipped", started_at=started_at, reason="in_progress")

        if self.local_store is None:
            logger.warning("No local store configured, skipping sync")
            return SyncResult(status="skipped", started_at=started_at, reason="no_local_store")

        if not self.auth.is_authenticated() or not self._is_connected():
            reason = "not_authenticated" if not self.auth.is_authenticated() else "offline"
            logger.info(f"Cannot sync ({reason}), going offline")
            self.state = SyncState.OFFLINE
            return SyncResult(status="skipped", started_at=started_at, reason=reason)

        self.state = SyncState.SYNCING
        self.sync_error = None
        result = SyncResult(status="running", started_at=started_at)
        self.events.publish(SyncEvent(kind=SyncEventKind.STARTED))
        logger.info(f"Starting full sync for user {self.auth.current_user_id()}")

        try:
            await self._ensure_session()

            self.state = SyncState.DOWNLOADING
            await self.download_from_remote(result)

            self.state = SyncState.UPLOADING
            await self.upload_to_remote(result)

        except Exception as e:
            error = e if isinstance(e, SyncError) else SyncFailedError(str(e))
            failed_phase = self.state.value
            logger.error(f"Full sync failed during {failed_phase}: {error}", exc_info=True)

            self.state = SyncState.ERROR
            self.sync_error = error
            result.status = "failed"
            result.error = str(error)
            result.reason = error.code
            result.completed_at = utc_now()
            self.events.publish(SyncEvent(kind=SyncEventKind.FAILED, result=result, error=error))

            user_id = self.auth.current_user_id()
            await self.notification_service.send_sync_failure_notification(
                user_id=str(user_id) if user_id else None,
                device_id=self.device_id,
                error_message=str(error),
                context={"phase": failed_phase}
            )
            return result

        result.status = "completed"
        result.completed_at = utc_now()
        self.last_sync_date = result.completed_at
        self.state = SyncState.IDLE
        self.events.publish(SyncEvent(kind=SyncEventKind.COMPLETED, result=result))
        logger.info(
            f"Full sync completed: {result.categories_downloaded} categories and "
            f"{result.bookmarks_downloaded} bookmarks downloaded, {result.bookmarks_updated} updated, "
            f"{result.categories_uploaded} categories and {result.bookmarks_uploaded} bookmarks uploaded"
        )
        return result

    async def _ensure_session(self):
        try:
            await self.auth.ensure_valid_session()
        except AuthError as e:
            if e.status_code is None:
                raise OfflineError(str(e)) from e
            raise NotAuthenticatedError(str(e)) from e

    def _require_user(self) -> UUID:
        user_id = self.auth.current_user_id()
        if user_id is None:
            raise NotAuthenticatedError()
        return user_id

    # Download

    async def download_from_remote(self, result: Optional[SyncResult] = None) -> SyncResult:
        """
        Materialize remote categories and bookmarks into the local store.

        All local changes are saved together; on any failure they are rolled
        back and DownloadFailedError is raised.
        """
        result = result or SyncResult(status="running", started_at=utc_now())
        user_id = self._require_user()
        filters = {"user_id": str(user_id), "deleted_at": None}

        try:
            category_rows = await self.remote_store.select(CATEGORIES_TABLE, filters)
            bookmark_rows = await self.remote_store.select(BOOKMARKS_TABLE, filters)
            categories = [RemoteCategoryRecord.from_row(row) for row in category_rows]
            bookmarks = [RemoteBookmarkRecord.from_row(row) for row in bookmark_rows]
            logger.info(f"Fetched {len(categories)} categories and {len(bookmarks)} bookmarks from remote")

            id_map = CategoryIdMap.from_records(categories)

            async with self.local_store.lock:
                try:
                    known_categories = self._merge_categories(categories, result)
                    await self._merge_bookmarks(bookmarks, id_map, known_categories, result)
                    self.local_store.save()
                except Exception:
                    self.local_store.rollback()
                    raise

        except SyncError:
            raise
        except Exception as e:
            raise DownloadFailedError(str(e)) from e

        return result

    def _merge_categories(self, records: List[RemoteCategoryRecord], result: SyncResult) -> Set[UUID]:
        """Insert remote-only categories. Returns every known local category id."""
        known = {category.id for category in self.local_store.fetch_all(Category)}

        for record in records:
            try:
                category_id = UUID(record.target_id)
            except ValueError:
                logger.warning(f"Skipping remote category {record.id}: invalid local id {record.target_id!r}")
                continue
            if category_id in known:
                continue

            name = decrypt_if_needed(record.name, record.is_encrypted, self.encryption_service)
            self.local_store.insert(Category(
                id=category_id,
                name=name or "Unnamed",
                icon=record.icon or "folder",
                color_hex=record.color or "#000000",
                order=record.order or 0,
                created_at=parse_timestamp(record.created_at) or utc_now(),
                updated_at=parse_timestamp(record.updated_at),
            ))
            known.add(category_id)
            result.categories_downloaded += 1

        return known

    async def _merge_bookmarks(
        self,
        records: List[RemoteBookmarkRecord],
        id_map: CategoryIdMap,
        known_categories: Set[UUID],
        result: SyncResult
    ):
        local = {bookmark.id: bookmark for bookmark in self.local_store.fetch_all(Bookmark)}

        for record in records:
            try:
                bookmark_id = UUID(record.target_id)
            except ValueError:
                logger.warning(f"Skipping remote bookmark {record.id}: invalid local id {record.target_id!r}")
                continue

            category_id = _as_uuid(id_map.local_id_for(record.category_id))
            if category_id not in known_categories:
                category_id = None

            bookmark = local.get(bookmark_id)
            if bookmark is None:
                bookmark = Bookmark(
                    id=bookmark_id,
                    source=BookmarkSource.parse(record.source).value,
                    created_at=parse_timestamp(record.created_at) or utc_now(),
                    category_id=category_id,
                )
                self._apply_remote_content(bookmark, record)
                self.local_store.insert(bookmark)
                local[bookmark_id] = bookmark
                result.bookmarks_downloaded += 1
            else:
                if not self._remote_is_preferred(bookmark, record):
                    logger.debug(f"Keeping newer local bookmark {bookmark_id}")
                    continue
                self._apply_remote_content(bookmark, record)
                if category_id is not None:
                    bookmark.category_id = category_id
                result.bookmarks_updated += 1

            if record.image_urls and not bookmark.image_data and self.media is not None:
                try:
                    image = await self.media.download(record.image_urls[0])
                except Exception as e:
                    logger.warning(f"Image download raised for bookmark {bookmark_id}: {e}")
                    image = None
                if image:
                    bookmark.image_data = image
                else:
                    logger.warning(f"Could not fetch image for bookmark {bookmark_id}")
                    result.images_failed += 1

    def _apply_remote_content(self, bookmark: Bookmark, record: RemoteBookmarkRecord):
        def plain(value):
            return decrypt_if_needed(value, record.is_encrypted, self.encryption_service)

        bookmark.title = plain(record.title) or ""
        bookmark.url = plain(record.url) or None
        bookmark.note = plain(record.note) or ""
        bookmark.tags = [plain(tag) for tag in record.tags]
        bookmark.is_read = record.is_read
        bookmark.is_favorite = record.is_favorite
        bookmark.image_urls = list(record.image_urls) or None
        updated_at = parse_timestamp(record.updated_at)
        if updated_at:
            bookmark.updated_at = updated_at

    def _remote_is_preferred(self, bookmark: Bookmark, record: RemoteBookmarkRecord) -> bool:
        if self.conflict_policy == ConflictPolicy.REMOTE_WINS:
            return True
        remote_updated = parse_timestamp(record.updated_at)
        return remote_updated is not None and remote_updated > bookmark.last_modified

    # Upload

    async def upload_to_remote(self, result: Optional[SyncResult] = None) -> SyncResult:
        """
        Upsert every local category, then every local bookmark with its images.

        Raises:
            SyncFailedError: If any write fails
        """
        result = result or SyncResult(status="running", started_at=utc_now())
        user_id = self._require_user()

        try:
            async with self.local_store.lock:
                categories = self.local_store.fetch_all(Category)
                bookmarks = self.local_store.fetch_all(Bookmark)

            for category in categories:
                payload = build_category_payload(category, user_id, self.encryption_service, self.device_id)
                await self._write(CATEGORIES_TABLE, payload, user_id, category.id)
                result.categories_uploaded += 1

            category_rows = await self.remote_store.select(
                CATEGORIES_TABLE, {"user_id": str(user_id)}, columns="id,local_id"
            )
            id_map = CategoryIdMap.from_rows(category_rows)

            for bookmark in bookmarks:
                payload = build_bookmark_payload(bookmark, user_id, self.encryption_service, self.device_id)
                image_urls, failed = await self._upload_images(bookmark)
                result.images_failed += failed
                if image_urls:
                    payload["image_urls"] = image_urls
                payload["category_id"] = id_map.remote_id_for(bookmark.category_id)
                await self._write(BOOKMARKS_TABLE, payload, user_id, bookmark.id)
                result.bookmarks_uploaded += 1

        except SyncError:
            raise
        except Exception as e:
            raise SyncFailedError(str(e)) from e

        return result

    async def _upload_images(self, bookmark: Bookmark) -> Tuple[List[str], int]:
        """Upload every local image concurrently. Returns (paths in order, failure count)."""
        images = bookmark.local_images()
        if not images or self.media is None:
            return [], 0

        outcomes = await asyncio.gather(
            *(self.media.upload(image, bookmark.id, index) for index, image in enumerate(images)),
            return_exceptions=True
        )

        paths = []
        failed = 0
        for index, outcome in enumerate(outcomes):
            if isinstance(outcome, BaseException):
                logger.warning(f"Image {index} of bookmark {bookmark.id} not uploaded: {outcome}")
                failed += 1
            else:
                paths.append(outcome)
        return paths, failed

    async def _write(self, table: str, payload: dict, user_id: UUID, local_id: UUID):
        """Create or update the row keyed by (user_id, local_id)."""
        if self.remote_store.supports_upsert:
            await self.remote_store.upsert(table, payload)
            return

        filters = {"user_id": str(user_id), "local_id": str(local_id)}
        if await self.remote_store.count(table, filters) > 0:
            await self.remote_store.update(table, payload, filters)
        else:
            await self.remote_store.insert(table, payload)

    # Single-record operations

    async def sync_bookmark(self, bookmark: Bookmark):
        """Push one local bookmark immediately."""
        user_id = self._require_user()
        payload = build_bookmark_payload(bookmark, user_id, self.encryption_service, self.device_id)

        payload["category_id"] = None
        if bookmark.category_id:
            rows = await self.remote_store.select(
                CATEGORIES_TABLE,
                {"user_id": str(user_id), "local_id": str(bookmark.category_id)},
                columns="id"
            )
            if rows:
                payload["category_id"] = rows[0]["id"]

        image_urls, _ = await self._upload_images(bookmark)
        if image_urls:
            payload["image_urls"] = image_urls

        await self._write(BOOKMARKS_TABLE, payload, user_id, bookmark.id)
        logger.info(f"Synced bookmark {bookmark.id}")

    async def sync_category(self, category: Category):
        """Push one local category immediately."""
        user_id = self._require_user()
        payload = build_category_payload(category, user_id, self.encryption_service, self.device_id)
        await self._write(CATEGORIES_TABLE, payload, user_id, category.id)
        logger.info(f"Synced category {category.id}")

    async def delete_bookmark(self, bookmark):
        """Remove a bookmark remotely. Accepts the entity or its UUID."""
        user_id = self._require_user()
        bookmark_id = getattr(bookmark, "id", bookmark)
        await self._delete(BOOKMARKS_TABLE, user_id, bookmark_id)
        if self.delete_mode == DeleteMode.HARD and self.media is not None:
            await self.media.delete_all(bookmark_id)
        logger.info(f"Deleted bookmark {bookmark_id} ({self.delete_mode.value})")

    async def delete_category(self, category):
        """Remove a category remotely. Accepts the entity or its UUID."""
        user_id = self._require_user()
        category_id = getattr(category, "id", category)
        await self._delete(CATEGORIES_TABLE, user_id, category_id)
        logger.info(f"Deleted category {category_id} ({self.delete_mode.value})")

    async def _delete(self, table: str, user_id: UUID, local_id: UUID):
        filters = {"user_id": str(user_id), "local_id": str(local_id)}
        if self.delete_mode == DeleteMode.HARD:
            await self.remote_store.delete(table, filters)
            return

        now = format_timestamp(utc_now())
        await self.remote_store.update(
            table,
            {"deleted_at": now, "updated_at": now, "last_modified_device": self.device_id},
            filters
        )
