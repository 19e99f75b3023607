"""Periodic full sync while a user is signed in."""

import asyncio
import logging
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from services.auth_service.session import AuthSessionManager, AuthState
from services.sync_service.orchestrator import SyncOrchestrator

logger = logging.getLogger(__name__)

JOB_ID = "auto_sync"


class AutoSyncScheduler:
    """Runs ``perform_full_sync`` on a fixed interval.

    Overlap with manual passes is prevented by the orchestrator's own
    in-progress guard; failed passes are not retried early.
    """

    def __init__(self, orchestrator: SyncOrchestrator, interval: float = 300.0):
        """
        Args:
            orchestrator: Sync orchestrator to drive
            interval: Seconds between passes
        """
        self.orchestrator = orchestrator
        self.interval = interval
        self._scheduler: Optional[AsyncIOScheduler] = None
        self._follow_task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None

    async def start(self):
        """Start the interval job. Must be called from the running event loop."""
        if self._scheduler is not None:
            return

        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            self._run_sync,
            trigger=IntervalTrigger(seconds=self.interval),
            id=JOB_ID,
            name="Bookmark auto sync",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )
        self._scheduler.start()
        logger.info(f"Auto sync started (every {self.interval:.0f}s)")

    async def stop(self):
        if self._scheduler is None:
            return
        self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info("Auto sync stopped")

    async def _run_sync(self):
        if not self.orchestrator.can_sync():
            logger.debug(f"Skipping scheduled sync (state={self.orchestrator.state.value})")
            return
        result = await self.orchestrator.perform_full_sync()
        logger.info(f"Scheduled sync finished: {result.status}")

    # Auth following

    def follow_auth(self, auth: AuthSessionManager):
        """Start on sign-in and stop on sign-out for as long as the task runs."""
        if self._follow_task and not self._follow_task.done():
            return
        queue = auth.subscribe()
        self._follow_task = asyncio.create_task(self._follow(auth, queue))

    async def _follow(self, auth: AuthSessionManager, queue: asyncio.Queue):
        try:
            # Catch up with a restore that finished before we subscribed
            await self._apply_auth_state(auth.state)
            while True:
                change = await queue.get()
                await self._apply_auth_state(change.state)
        finally:
            auth.unsubscribe(queue)

    async def _apply_auth_state(self, state: AuthState):
        if state == AuthState.AUTHENTICATED:
            await self.start()
        elif state == AuthState.UNAUTHENTICATED:
            await self.stop()

    async def shutdown(self):
        """Stop following auth changes and stop the scheduler."""
        if self._follow_task:
            self._follow_task.cancel()
            try:
                await self._follow_task
            except asyncio.CancelledError:
                pass
            self._follow_task = None
        await self.stop()
