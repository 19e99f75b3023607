"""Authenticated session lifecycle."""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional
from uuid import UUID

from services.auth_service.gotrue_client import AuthError, AuthSession, GoTrueClient
from shared.encryption import EncryptionError, EncryptionService
from shared.events import EventChannel
from shared.local_store import LocalStore

logger = logging.getLogger(__name__)


class AuthState(str, Enum):
    INITIALIZING = "initializing"
    UNAUTHENTICATED = "unauthenticated"
    AUTHENTICATED = "authenticated"


class AuthChangeEvent(str, Enum):
    INITIAL_SESSION = "initial_session"
    SIGNED_IN = "signed_in"
    SIGNED_OUT = "signed_out"
    TOKEN_REFRESHED = "token_refreshed"
    USER_DELETED = "user_deleted"


@dataclass
class AuthStateChange:
    event: AuthChangeEvent
    state: AuthState
    user_id: Optional[UUID] = None


class AuthSessionManager:
    """Owns the authenticated identity.

    State machine: ``initializing -> {unauthenticated, authenticated}``,
    driven by restore, sign-in, sign-out, token refresh and server-side
    session deletion. ``restore()`` must complete before sync starts;
    callers await ``wait_for_session_restore()``.
    """

    def __init__(
        self,
        gotrue: GoTrueClient,
        local_store: LocalStore,
        encryption_service: EncryptionService,
        refresh_threshold: float = 300.0
    ):
        """
        Args:
            gotrue: Identity provider client
            local_store: Store used to persist the session between runs
            encryption_service: Encrypts persisted tokens
            refresh_threshold: Refresh the access token when it expires within this many seconds
        """
        self.gotrue = gotrue
        self.local_store = local_store
        self.encryption_service = encryption_service
        self.refresh_threshold = refresh_threshold

        self.state = AuthState.INITIALIZING
        self._session: Optional[AuthSession] = None
        self._restored = asyncio.Event()
        self._refresh_lock = asyncio.Lock()
        self._events: EventChannel[AuthStateChange] = EventChannel()

    # Accessors

    @property
    def session(self) -> Optional[AuthSession]:
        return self._session

    @property
    def access_token(self) -> Optional[str]:
        return self._session.access_token if self._session else None

    @property
    def is_session_restored(self) -> bool:
        return self._restored.is_set()

    def current_user_id(self) -> Optional[UUID]:
        return self._session.user_id if self._session else None

    def is_authenticated(self) -> bool:
        return self.state == AuthState.AUTHENTICATED and self._session is not None

    def subscribe(self) -> asyncio.Queue:
        """Queue receiving every AuthStateChange from now on."""
        return self._events.subscribe()

    def unsubscribe(self, queue: asyncio.Queue):
        self._events.unsubscribe(queue)

    # Restore

    async def restore(self):
        """Load the persisted session, refreshing it if it is about to expire."""
        if self._restored.is_set():
            return

        try:
            session = self._load_persisted()
            if session and session.expires_within(self.refresh_threshold):
                try:
                    session = await self.gotrue.refresh_session(session.refresh_token)
                    self._persist(session)
                    logger.info(f"Restored session refreshed for {session.user_id}")
                except AuthError as e:
                    if e.is_session_revoked:
                        logger.warning(f"Stored session was revoked: {e}")
                        self.local_store.clear_auth_session()
                        session = None
                    else:
                        # Keep the stale session; ensure_valid_session() retries later
                        logger.warning(f"Could not refresh restored session: {e}")

            self._session = session
            if session:
                self.state = AuthState.AUTHENTICATED
                logger.info(f"Session restored for user {session.user_id}")
            else:
                self.state = AuthState.UNAUTHENTICATED
                logger.info("No stored session, sign-in required")
        finally:
            if self.state == AuthState.INITIALIZING:
                self.state = AuthState.UNAUTHENTICATED
            self._restored.set()
            self._publish(AuthChangeEvent.INITIAL_SESSION)

    async def wait_for_session_restore(self, timeout: Optional[float] = None):
        """Block until restore() has finished."""
        if self._restored.is_set():
            return
        logger.debug("Waiting for session restore...")
        await asyncio.wait_for(self._restored.wait(), timeout)

    # Transitions

    async def sign_in_with_password(self, email: str, password: str) -> AuthSession:
        session = await self.gotrue.sign_in_with_password(email, password)
        self._apply(session, AuthChangeEvent.SIGNED_IN)
        return session

    async def sign_in_anonymously(self) -> AuthSession:
        session = await self.gotrue.sign_in_anonymously()
        self._apply(session, AuthChangeEvent.SIGNED_IN)
        return session

    async def refresh_session(self) -> AuthSession:
        """Refresh the access token. A revoked session signs the user out."""
        async with self._refresh_lock:
            if self._session is None:
                raise AuthError("No active session", status_code=401)

            try:
                session = await self.gotrue.refresh_session(self._session.refresh_token)
            except AuthError as e:
                if e.is_session_revoked:
                    await self.handle_session_deleted()
                raise

            self._apply(session, AuthChangeEvent.TOKEN_REFRESHED)
            logger.info(f"Token refreshed, new expiry: {session.expires_at.isoformat()}")
            return session

    async def ensure_valid_session(self):
        """
        Make sure a usable session exists before talking to the backend.

        Raises:
            AuthError: If there is no session or it cannot be refreshed
        """
        await self.wait_for_session_restore()
        if not self.is_authenticated():
            raise AuthError("No active session", status_code=401)
        if self._session.expires_within(self.refresh_threshold):
            await self.refresh_session()

    async def sign_out(self):
        """Sign out locally; the remote logout is best-effort."""
        if self._session:
            try:
                await self.gotrue.sign_out(self._session.access_token)
            except AuthError as e:
                logger.warning(f"Remote sign-out failed, clearing local session anyway: {e}")
        self._clear()
        logger.info("Signed out")
        self._publish(AuthChangeEvent.SIGNED_OUT)

    async def handle_session_deleted(self):
        """The server no longer recognises this session or user."""
        self._clear()
        logger.warning("Session deleted on the server, signed out")
        self._publish(AuthChangeEvent.USER_DELETED)

    # Private helpers

    def _apply(self, session: AuthSession, event: AuthChangeEvent):
        self._session = session
        self.state = AuthState.AUTHENTICATED
        self._persist(session)
        self._restored.set()
        self._publish(event)

    def _clear(self):
        self._session = None
        self.state = AuthState.UNAUTHENTICATED
        self.local_store.clear_auth_session()

    def _publish(self, event: AuthChangeEvent):
        self._events.publish(AuthStateChange(event=event, state=self.state, user_id=self.current_user_id()))

    def _persist(self, session: AuthSession):
        try:
            self.local_store.save_auth_session(
                user_id=session.user_id,
                email=session.email,
                access_token=session.access_token,
                refresh_token=session.refresh_token,
                expires_at=session.expires_at,
                encryption_service=self.encryption_service,
            )
        except EncryptionError as e:
            logger.warning(f"Session not persisted, it will not survive a restart: {e}")

    def _load_persisted(self) -> Optional[AuthSession]:
        try:
            stored = self.local_store.load_auth_session(self.encryption_service)
        except EncryptionError as e:
            logger.warning(f"Stored session unreadable, discarding: {e}")
            self.local_store.clear_auth_session()
            return None
        if not stored:
            return None
        return AuthSession(**stored)
