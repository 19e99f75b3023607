"""Local repositories that push every committed change to the remote backend."""

import asyncio
import logging
from typing import List, Optional, Set
from uuid import UUID

from shared.db_models import Bookmark, Category
from shared.local_store import LocalStore
from shared.models import utc_now

logger = logging.getLogger(__name__)


class SyncableRepository:
    """Create, update and delete entities locally, then sync them in the background.

    The local commit always happens first and is never undone by a sync
    failure; the remote call runs as a task whose errors are only logged.
    ``sync`` is anything exposing the orchestrator's single-record operations.
    """

    model = None

    def __init__(self, local_store: LocalStore, sync, sync_enabled: bool = True):
        self.local_store = local_store
        self.sync = sync
        self.sync_enabled = sync_enabled
        self._pending: Set[asyncio.Task] = set()

    def fetch_all(self) -> list:
        return self.local_store.fetch_all(self.model)

    def get(self, entity_id: UUID):
        return self.local_store.get(self.model, entity_id)

    async def create(self, entity):
        async with self.local_store.lock:
            self.local_store.insert(entity)
            self.local_store.save()
        self._schedule(self._push(entity), f"sync {entity.id}")
        return entity

    async def update(self, entity, **changes):
        """Apply field changes, stamp the edit time and commit."""
        async with self.local_store.lock:
            for field, value in changes.items():
                setattr(entity, field, value)
            entity.updated_at = utc_now()
            self.local_store.save()
        self._schedule(self._push(entity), f"sync {entity.id}")
        return entity

    async def delete(self, entity):
        entity_id = entity.id
        async with self.local_store.lock:
            self._before_delete(entity)
            self.local_store.delete(entity)
            self.local_store.save()
        self._schedule(self._remove(entity_id), f"delete {entity_id}")

    async def wait_pending(self):
        """Wait for every scheduled remote call to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def _before_delete(self, entity):
        pass

    async def _push(self, entity):
        raise NotImplementedError

    async def _remove(self, entity_id: UUID):
        raise NotImplementedError

    def _schedule(self, coro, label: str):
        if not self.sync_enabled:
            coro.close()
            return
        task = asyncio.create_task(self._run(coro, label))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _run(self, coro, label: str):
        try:
            await coro
        except Exception as e:
            logger.warning(f"Background {label} failed, local change kept: {e}")


class BookmarkRepository(SyncableRepository):
    model = Bookmark

    def fetch_by_category(self, category_id: Optional[UUID]) -> List[Bookmark]:
        return [bookmark for bookmark in self.fetch_all() if bookmark.category_id == category_id]

    async def _push(self, bookmark: Bookmark):
        await self.sync.sync_bookmark(bookmark)

    async def _remove(self, bookmark_id: UUID):
        await self.sync.delete_bookmark(bookmark_id)


class CategoryRepository(SyncableRepository):
    model = Category

    def _before_delete(self, category: Category):
        # Bookmarks outlive their category and become uncategorized locally
        for bookmark in self.local_store.fetch_all(Bookmark):
            if bookmark.category_id == category.id:
                bookmark.category_id = None
                bookmark.updated_at = utc_now()

    async def _push(self, category: Category):
        await self.sync.sync_category(category)

    async def _remove(self, category_id: UUID):
        await self.sync.delete_category(category_id)
