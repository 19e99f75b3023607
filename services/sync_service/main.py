"""Sync Service - FastAPI application."""

import logging
import os
import sys
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import List, Optional
from uuid import UUID

import httpx
from fastapi import BackgroundTasks, FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy import text

from services.auth_service.gotrue_client import AuthError, GoTrueClient
from services.auth_service.session import AuthSessionManager
from services.media_service.adapter import MediaError, MediaSyncAdapter
from services.media_service.storage_client import StorageClient
from services.sync_service.auto_sync import AutoSyncScheduler
from services.sync_service.connectivity import ConnectivityMonitor
from services.sync_service.errors import NotAuthenticatedError, SyncError
from services.sync_service.migration import AccountMigrationService
from services.sync_service.notifications import NotificationService
from services.sync_service.orchestrator import SyncOrchestrator
from services.sync_service.remote_store import RemoteStore, RemoteStoreError
from shared.config import (
    get_encryption_config, get_storage_config, get_supabase_config, get_sync_config
)
from shared.db_models import Bookmark, Category
from shared.encryption import EncryptionService
from shared.local_store import LocalStore
from shared.models import BookmarkSource, ConflictPolicy, DeleteMode, SyncResult
from shared.repositories import BookmarkRepository, CategoryRepository

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)]
)

logger = logging.getLogger(__name__)

VERSION = "0.1.0"


@dataclass
class ServiceContainer:
    """Every long-lived collaborator of the sync service."""
    local_store: LocalStore
    encryption_service: EncryptionService
    http_client: httpx.AsyncClient
    auth: AuthSessionManager
    remote_store: RemoteStore
    media: MediaSyncAdapter
    connectivity: ConnectivityMonitor
    orchestrator: SyncOrchestrator
    auto_sync: AutoSyncScheduler
    bookmarks: BookmarkRepository
    categories: CategoryRepository
    migration: AccountMigrationService
    auto_sync_enabled: bool = True

    async def start(self):
        await self.auth.restore()
        self.connectivity.start()
        if self.auto_sync_enabled:
            self.auto_sync.follow_auth(self.auth)

    async def aclose(self):
        await self.auto_sync.shutdown()
        await self.bookmarks.wait_pending()
        await self.categories.wait_pending()
        await self.connectivity.stop()
        await self.http_client.aclose()
        self.local_store.close()


def build_services() -> ServiceContainer:
    """Construct and wire the service graph from environment configuration."""
    supabase_config = get_supabase_config()
    storage_config = get_storage_config()
    sync_config = get_sync_config()
    encryption_config = get_encryption_config()

    local_store = LocalStore()
    local_store.create_tables()
    logger.info("Local store initialized")

    encryption_service = EncryptionService(
        encryption_key=encryption_config["key"],
        key_file=encryption_config["key_file"],
        auto_generate=encryption_config["auto_generate"],
    )
    logger.info("Encryption service initialized")

    http_client = httpx.AsyncClient(
        base_url=supabase_config["url"],
        timeout=supabase_config["timeout"]
    )

    auth = AuthSessionManager(
        gotrue=GoTrueClient(http_client, supabase_config["anon_key"]),
        local_store=local_store,
        encryption_service=encryption_service,
        refresh_threshold=supabase_config["refresh_threshold"],
    )

    remote_store = RemoteStore(
        client=http_client,
        api_key=supabase_config["anon_key"],
        token_provider=lambda: auth.access_token,
        supports_upsert=sync_config["native_upsert"],
    )

    storage_client = StorageClient(
        bucket_name=storage_config["bucket"],
        endpoint_url=storage_config["endpoint_url"],
        region=storage_config["region"],
        access_key_id=storage_config["access_key_id"],
        secret_access_key=storage_config["secret_access_key"],
    )
    media = MediaSyncAdapter(
        storage=storage_client,
        user_id_provider=auth.current_user_id,
        http_client=http_client,
        max_image_size=storage_config["max_image_size"],
        max_dimension=storage_config["max_image_dimension"],
        jpeg_quality=storage_config["jpeg_quality"],
    )

    connectivity = ConnectivityMonitor(
        http_client,
        probe_path="/rest/v1/",
        interval=sync_config["connectivity_interval"]
    )

    orchestrator = SyncOrchestrator(
        local_store=local_store,
        remote_store=remote_store,
        auth=auth,
        encryption_service=encryption_service,
        media=media,
        connectivity=connectivity,
        notification_service=NotificationService(),
        device_id=sync_config["device_id"],
        delete_mode=DeleteMode(sync_config["delete_mode"]),
        conflict_policy=ConflictPolicy(sync_config["conflict_policy"]),
    )

    logger.info(f"Remote backend: {supabase_config['url']}, device {sync_config['device_id']}")

    return ServiceContainer(
        local_store=local_store,
        encryption_service=encryption_service,
        http_client=http_client,
        auth=auth,
        remote_store=remote_store,
        media=media,
        connectivity=connectivity,
        orchestrator=orchestrator,
        auto_sync=AutoSyncScheduler(orchestrator, interval=sync_config["auto_sync_interval"]),
        bookmarks=BookmarkRepository(local_store, orchestrator),
        categories=CategoryRepository(local_store, orchestrator),
        migration=AccountMigrationService(orchestrator),
        auto_sync_enabled=sync_config["auto_sync_enabled"],
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events."""
    logger.info("Sync Service starting up...")

    if getattr(app.state, "services", None) is None:
        app.state.services = build_services()
    services: ServiceContainer = app.state.services
    await services.start()

    yield

    await services.aclose()
    logger.info("Sync Service shutting down...")


# Request/Response models

class SignInRequest(BaseModel):
    """Email/password sign-in; omit both for an anonymous session."""
    email: Optional[str] = None
    password: Optional[str] = None


class SessionResponse(BaseModel):
    state: str
    user_id: Optional[str] = None
    email: Optional[str] = None
    is_anonymous: Optional[bool] = None
    expires_at: Optional[str] = None


class SyncResultResponse(BaseModel):
    """Response model for a full sync pass."""
    status: str
    reason: Optional[str] = None
    error: Optional[str] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    counts: dict = {}


class SyncStatusResponse(BaseModel):
    state: str
    can_sync: bool
    is_connected: bool
    last_sync_date: Optional[str] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None


class RecordSyncResponse(BaseModel):
    id: str
    status: str
    message: Optional[str] = None


class BookmarkCreateRequest(BaseModel):
    title: str
    url: Optional[str] = None
    note: str = ""
    source: str = BookmarkSource.OTHER.value
    tags: List[str] = []
    category_id: Optional[UUID] = None
    is_read: bool = False
    is_favorite: bool = False


class BookmarkUpdateRequest(BaseModel):
    title: Optional[str] = None
    url: Optional[str] = None
    note: Optional[str] = None
    source: Optional[str] = None
    tags: Optional[List[str]] = None
    category_id: Optional[UUID] = None
    is_read: Optional[bool] = None
    is_favorite: Optional[bool] = None


class BookmarkResponse(BaseModel):
    id: str
    title: str
    url: Optional[str] = None
    note: str
    source: str
    tags: List[str]
    category_id: Optional[str] = None
    is_read: bool
    is_favorite: bool
    updated_at: Optional[str] = None


class CategoryCreateRequest(BaseModel):
    name: str
    icon: str = "folder.fill"
    color_hex: str = "#007AFF"
    order: int = 0


class CategoryUpdateRequest(BaseModel):
    name: Optional[str] = None
    icon: Optional[str] = None
    color_hex: Optional[str] = None
    order: Optional[int] = None


class CategoryResponse(BaseModel):
    id: str
    name: str
    icon: str
    color_hex: str
    order: int


def _bookmark_response(bookmark: Bookmark) -> BookmarkResponse:
    return BookmarkResponse(
        id=str(bookmark.id),
        title=bookmark.title,
        url=bookmark.url,
        note=bookmark.note or "",
        source=bookmark.source,
        tags=list(bookmark.tags or []),
        category_id=str(bookmark.category_id) if bookmark.category_id else None,
        is_read=bool(bookmark.is_read),
        is_favorite=bool(bookmark.is_favorite),
        updated_at=bookmark.last_modified.isoformat() if bookmark.last_modified else None,
    )


def _category_response(category: Category) -> CategoryResponse:
    return CategoryResponse(
        id=str(category.id),
        name=category.name,
        icon=category.icon,
        color_hex=category.color_hex,
        order=category.order,
    )


def _result_response(result: SyncResult) -> SyncResultResponse:
    return SyncResultResponse(
        status=result.status,
        reason=result.reason,
        error=result.error,
        started_at=result.started_at.isoformat() if result.started_at else None,
        completed_at=result.completed_at.isoformat() if result.completed_at else None,
        counts={
            "categories_downloaded": result.categories_downloaded,
            "bookmarks_downloaded": result.bookmarks_downloaded,
            "bookmarks_updated": result.bookmarks_updated,
            "categories_uploaded": result.categories_uploaded,
            "bookmarks_uploaded": result.bookmarks_uploaded,
            "images_failed": result.images_failed,
        }
    )


def _session_response(auth: AuthSessionManager) -> SessionResponse:
    session = auth.session
    if session is None:
        return SessionResponse(state=auth.state.value)
    return SessionResponse(
        state=auth.state.value,
        user_id=str(session.user_id),
        email=session.email,
        is_anonymous=session.is_anonymous,
        expires_at=session.expires_at.isoformat(),
    )


def _clean_changes(changes: dict, nullable=()) -> dict:
    """Drop explicit nulls for columns that cannot hold them."""
    return {field: value for field, value in changes.items() if value is not None or field in nullable}


async def _migrate_account(services: ServiceContainer, old_user_id: UUID):
    try:
        await services.migration.migrate(old_user_id)
    except SyncError as e:
        logger.error(f"Account migration from {old_user_id} failed: {e}")


def create_app(services: Optional[ServiceContainer] = None) -> FastAPI:
    """
    Create the FastAPI application.

    Args:
        services: Prebuilt service container; built from the environment
                  at startup when omitted
    """
    app = FastAPI(
        title="Bookmark Sync Service",
        description="Synchronizes the local bookmark store with the remote backend",
        version=VERSION,
        lifespan=lifespan
    )
    app.state.services = services

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Error handling middleware
    @app.middleware("http")
    async def error_handling_middleware(request: Request, call_next):
        """Global error handling middleware."""
        try:
            response = await call_next(request)
            return response
        except Exception as exc:
            logger.error(f"Unhandled exception: {exc}", exc_info=True)
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={
                    "error": "Internal server error",
                    "detail": str(exc)
                }
            )

    @app.exception_handler(NotAuthenticatedError)
    async def not_authenticated_handler(request: Request, exc: NotAuthenticatedError):
        return JSONResponse(
            status_code=status.HTTP_401_UNAUTHORIZED,
            content={"error": exc.code, "detail": str(exc)}
        )

    @app.exception_handler(SyncError)
    async def sync_error_handler(request: Request, exc: SyncError):
        return JSONResponse(
            status_code=status.HTTP_409_CONFLICT,
            content={"error": exc.code, "detail": str(exc)}
        )

    @app.exception_handler(RemoteStoreError)
    async def remote_store_error_handler(request: Request, exc: RemoteStoreError):
        logger.error(f"Remote store request failed: {exc}")
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content={"error": "remote_error", "detail": str(exc), "code": exc.code}
        )

    @app.exception_handler(MediaError)
    async def media_error_handler(request: Request, exc: MediaError):
        logger.error(f"Media operation failed: {exc}")
        return JSONResponse(
            status_code=status.HTTP_502_BAD_GATEWAY,
            content={"error": "media_error", "detail": str(exc)}
        )

    def get_services() -> ServiceContainer:
        return app.state.services

    # Health check endpoint
    @app.get("/health", status_code=status.HTTP_200_OK)
    async def health_check():
        """Health check endpoint."""
        services = get_services()

        db_healthy = False
        try:
            with services.local_store.engine.connect() as connection:
                connection.execute(text("SELECT 1"))
            db_healthy = True
        except Exception as e:
            logger.error(f"Local database health check failed: {e}")

        remote_healthy = services.connectivity.is_connected()
        overall_status = "healthy" if (db_healthy and remote_healthy) else "degraded"

        return {
            "status": overall_status,
            "service": "sync_service",
            "version": VERSION,
            "dependencies": {
                "local_database": "up" if db_healthy else "down",
                "remote_backend": "up" if remote_healthy else "down"
            },
            "auth_state": services.auth.state.value,
            "sync_state": services.orchestrator.state.value,
        }

    @app.get("/", status_code=status.HTTP_200_OK)
    async def root():
        """Root endpoint."""
        return {
            "service": "Bookmark Sync Service",
            "version": VERSION,
            "status": "running"
        }

    # Auth

    @app.get("/auth/session", response_model=SessionResponse)
    async def get_session():
        return _session_response(get_services().auth)

    @app.post("/auth/sign-in", response_model=SessionResponse)
    async def sign_in(request: SignInRequest, background_tasks: BackgroundTasks):
        """
        Sign in with email and password, or anonymously when both are omitted.

        Signing in to a named account from an anonymous session migrates the
        local data to the new account in the background.
        """
        services = get_services()
        auth = services.auth
        previous_session = auth.session
        try:
            if request.email and request.password:
                await auth.sign_in_with_password(request.email, request.password)
            elif request.email or request.password:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail="Both email and password are required"
                )
            else:
                await auth.sign_in_anonymously()
        except AuthError as e:
            logger.warning(f"Sign-in failed: {e}")
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail=str(e))

        if AccountMigrationService.needs_migration(previous_session, auth.session):
            background_tasks.add_task(_migrate_account, services, previous_session.user_id)
        return _session_response(auth)

    @app.post("/auth/sign-out", response_model=SessionResponse)
    async def sign_out():
        auth = get_services().auth
        await auth.sign_out()
        return _session_response(auth)

    # Full sync

    @app.post("/sync", response_model=SyncResultResponse, status_code=status.HTTP_202_ACCEPTED)
    async def trigger_sync(background_tasks: BackgroundTasks):
        """
        Start a full sync pass in the background.

        When the pass cannot run (offline, signed out, already running) the
        skipped result is returned immediately instead.
        """
        orchestrator = get_services().orchestrator
        if orchestrator.is_syncing:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Sync already in progress")

        if not orchestrator.can_sync():
            result = await orchestrator.perform_full_sync()
            return _result_response(result)

        background_tasks.add_task(orchestrator.perform_full_sync)
        return SyncResultResponse(status="queued")

    @app.get("/sync/status", response_model=SyncStatusResponse)
    async def get_sync_status():
        services = get_services()
        orchestrator = services.orchestrator
        error = orchestrator.sync_error
        return SyncStatusResponse(
            state=orchestrator.state.value,
            can_sync=orchestrator.can_sync(),
            is_connected=services.connectivity.is_connected(),
            last_sync_date=orchestrator.last_sync_date.isoformat() if orchestrator.last_sync_date else None,
            error_code=error.code if error else None,
            error_message=str(error) if error else None,
        )

    # Single-record operations

    @app.post("/sync/bookmarks/{bookmark_id}", response_model=RecordSyncResponse)
    async def sync_bookmark(bookmark_id: UUID):
        services = get_services()
        bookmark = services.local_store.get(Bookmark, bookmark_id)
        if bookmark is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Bookmark {bookmark_id} not found")
        await services.orchestrator.sync_bookmark(bookmark)
        return RecordSyncResponse(id=str(bookmark_id), status="synced")

    @app.post("/sync/categories/{category_id}", response_model=RecordSyncResponse)
    async def sync_category(category_id: UUID):
        services = get_services()
        category = services.local_store.get(Category, category_id)
        if category is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Category {category_id} not found")
        await services.orchestrator.sync_category(category)
        return RecordSyncResponse(id=str(category_id), status="synced")

    @app.delete("/sync/bookmarks/{bookmark_id}", response_model=RecordSyncResponse)
    async def delete_bookmark(bookmark_id: UUID):
        orchestrator = get_services().orchestrator
        await orchestrator.delete_bookmark(bookmark_id)
        return RecordSyncResponse(
            id=str(bookmark_id), status="deleted", message=f"{orchestrator.delete_mode.value} delete"
        )

    @app.delete("/sync/categories/{category_id}", response_model=RecordSyncResponse)
    async def delete_category(category_id: UUID):
        orchestrator = get_services().orchestrator
        await orchestrator.delete_category(category_id)
        return RecordSyncResponse(
            id=str(category_id), status="deleted", message=f"{orchestrator.delete_mode.value} delete"
        )

    # Local bookmarks and categories

    def _get_or_404(repository, entity_id: UUID, kind: str):
        entity = repository.get(entity_id)
        if entity is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{kind} {entity_id} not found")
        return entity

    @app.get("/bookmarks", response_model=List[BookmarkResponse])
    async def list_bookmarks():
        return [_bookmark_response(bookmark) for bookmark in get_services().bookmarks.fetch_all()]

    @app.post("/bookmarks", response_model=BookmarkResponse, status_code=status.HTTP_201_CREATED)
    async def create_bookmark(request: BookmarkCreateRequest):
        """Save a bookmark locally; it is pushed to the backend in the background."""
        values = request.model_dump()
        values["source"] = BookmarkSource.parse(values["source"]).value
        bookmark = await get_services().bookmarks.create(Bookmark(**values))
        return _bookmark_response(bookmark)

    @app.patch("/bookmarks/{bookmark_id}", response_model=BookmarkResponse)
    async def update_bookmark(bookmark_id: UUID, request: BookmarkUpdateRequest):
        repository = get_services().bookmarks
        bookmark = _get_or_404(repository, bookmark_id, "Bookmark")
        changes = _clean_changes(request.model_dump(exclude_unset=True), nullable=("url", "category_id"))
        if "source" in changes:
            changes["source"] = BookmarkSource.parse(changes["source"]).value
        await repository.update(bookmark, **changes)
        return _bookmark_response(bookmark)

    @app.delete("/bookmarks/{bookmark_id}", status_code=status.HTTP_204_NO_CONTENT)
    async def remove_bookmark(bookmark_id: UUID):
        repository = get_services().bookmarks
        await repository.delete(_get_or_404(repository, bookmark_id, "Bookmark"))

    @app.get("/categories", response_model=List[CategoryResponse])
    async def list_categories():
        return [_category_response(category) for category in get_services().categories.fetch_all()]

    @app.post("/categories", response_model=CategoryResponse, status_code=status.HTTP_201_CREATED)
    async def create_category(request: CategoryCreateRequest):
        category = await get_services().categories.create(Category(**request.model_dump()))
        return _category_response(category)

    @app.patch("/categories/{category_id}", response_model=CategoryResponse)
    async def update_category(category_id: UUID, request: CategoryUpdateRequest):
        repository = get_services().categories
        category = _get_or_404(repository, category_id, "Category")
        await repository.update(category, **_clean_changes(request.model_dump(exclude_unset=True)))
        return _category_response(category)

    @app.delete("/categories/{category_id}", status_code=status.HTTP_204_NO_CONTENT)
    async def remove_category(category_id: UUID):
        repository = get_services().categories
        await repository.delete(_get_or_404(repository, category_id, "Category"))

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("SYNC_SERVICE_PORT", 8005))
    uvicorn.run(app, host="0.0.0.0", port=port)
