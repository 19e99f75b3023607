"""Carry local data over when an anonymous user signs in to a real account."""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from uuid import UUID

from services.sync_service.errors import SyncError
from shared.models import SyncResult, utc_now

logger = logging.getLogger(__name__)


class MigrationError(SyncError):
    code = "migration_failed"


@dataclass
class MigrationResult:
    old_user_id: UUID
    new_user_id: UUID
    categories_migrated: int
    bookmarks_migrated: int
    images_failed: int
    completed_at: datetime


class AccountMigrationService:
    """Re-uploads every local record under the newly signed-in user.

    Rows written under the anonymous user stay on the backend; they are
    unreachable once that session is gone.
    """

    def __init__(self, orchestrator):
        self.orchestrator = orchestrator
        self.last_result: Optional[MigrationResult] = None

    @staticmethod
    def needs_migration(previous_session, new_session) -> bool:
        """True when an anonymous session was replaced by a different, named account."""
        return (
            previous_session is not None
            and new_session is not None
            and previous_session.is_anonymous
            and not new_session.is_anonymous
            and previous_session.user_id != new_session.user_id
        )

    async def migrate(self, old_user_id: UUID) -> MigrationResult:
        """
        Upload local data for the current user, then run a full pass.

        Raises:
            MigrationError: If nothing can be migrated or the upload fails
        """
        new_user_id = self.orchestrator.auth.current_user_id()
        if new_user_id is None:
            raise MigrationError("No account to migrate to")
        if new_user_id == old_user_id:
            raise MigrationError("Already signed in to the same account")
        if self.orchestrator.is_syncing:
            raise MigrationError("A sync pass is in progress")

        logger.info(f"Migrating local data from anonymous user {old_user_id} to {new_user_id}")
        try:
            upload = await self.orchestrator.upload_to_remote(
                SyncResult(status="running", started_at=utc_now())
            )
        except SyncError as e:
            raise MigrationError(f"Upload to new account failed: {e}") from e

        full_sync = await self.orchestrator.perform_full_sync()
        if full_sync.status == "failed":
            logger.warning(f"Follow-up sync after migration failed: {full_sync.error}")

        self.last_result = MigrationResult(
            old_user_id=old_user_id,
            new_user_id=new_user_id,
            categories_migrated=upload.categories_uploaded,
            bookmarks_migrated=upload.bookmarks_uploaded,
            images_failed=upload.images_failed,
            completed_at=utc_now(),
        )
        logger.info(
            f"Migration complete: {upload.categories_uploaded} categories, "
            f"{upload.bookmarks_uploaded} bookmarks"
        )
        return self.last_result
