"""Shared configuration utilities."""

import os
import socket
import uuid
from typing import Optional


def get_env(key: str, default: Optional[str] = None, required: bool = False) -> str:
    """Get environment variable with optional default and required validation."""
    value = os.getenv(key, default)
    if required and not value:
        raise ValueError(f"Required environment variable {key} is not set")
    return value


def get_bool_env(key: str, default: bool = False) -> bool:
    """Get a boolean environment variable ("true"/"1"/"yes" are truthy)."""
    value = os.getenv(key)
    if value is None or not value.strip():
        return default
    return value.strip().lower() in ("true", "1", "yes")


def get_local_database_url() -> str:
    """Get the local bookmark store database URL from environment."""
    return get_env("LOCAL_DATABASE_URL", "sqlite:///bookmarks.db")


def get_supabase_config() -> dict:
    """Get remote backend (Supabase) configuration from environment."""
    return {
        "url": get_env("SUPABASE_URL", "http://localhost:54321").rstrip("/"),
        "anon_key": get_env("SUPABASE_ANON_KEY", ""),
        "timeout": float(get_env("SUPABASE_TIMEOUT", "30")),
        "refresh_threshold": float(get_env("SUPABASE_REFRESH_THRESHOLD", "300")),
    }


def get_storage_config() -> dict:
    """Get S3-compatible image storage configuration from environment."""
    supabase_url = get_env("SUPABASE_URL", "http://localhost:54321").rstrip("/")
    return {
        "bucket": get_env("STORAGE_BUCKET", "bookmark-images"),
        "endpoint_url": get_env("STORAGE_ENDPOINT_URL", f"{supabase_url}/storage/v1/s3"),
        "region": get_env("STORAGE_REGION", "us-east-1"),
        "access_key_id": get_env("STORAGE_ACCESS_KEY_ID"),
        "secret_access_key": get_env("STORAGE_SECRET_ACCESS_KEY"),
        "max_image_size": int(get_env("STORAGE_MAX_IMAGE_SIZE", str(5 * 1024 * 1024))),
        "max_image_dimension": int(get_env("STORAGE_MAX_IMAGE_DIMENSION", "1920")),
        "jpeg_quality": int(get_env("STORAGE_JPEG_QUALITY", "80")),
    }


def get_default_device_id() -> str:
    """Stable per-host identifier used as ``last_modified_device``."""
    return str(uuid.uuid5(uuid.NAMESPACE_DNS, socket.gethostname()))


def get_sync_config() -> dict:
    """Get sync engine configuration from environment."""
    return {
        "auto_sync_interval": float(get_env("SYNC_AUTO_INTERVAL", "300")),
        "auto_sync_enabled": get_bool_env("SYNC_AUTO_ENABLED", True),
        "delete_mode": get_env("SYNC_DELETE_MODE", "soft"),
        "conflict_policy": get_env("SYNC_CONFLICT_POLICY", "remote_wins"),
        "native_upsert": get_bool_env("SYNC_NATIVE_UPSERT", True),
        "device_id": get_env("SYNC_DEVICE_ID") or get_default_device_id(),
        "connectivity_interval": float(get_env("SYNC_CONNECTIVITY_INTERVAL", "30")),
    }


def get_encryption_config() -> dict:
    """Get field-encryption key configuration from environment."""
    return {
        "key": get_env("BOOKMARK_ENCRYPTION_KEY"),
        "key_file": get_env(
            "BOOKMARK_ENCRYPTION_KEY_FILE",
            os.path.join(os.path.expanduser("~"), ".bookmark_sync", "encryption.key"),
        ),
        "auto_generate": get_bool_env("BOOKMARK_ENCRYPTION_AUTO_GENERATE", True),
    }
