"""Upload payload builders and the decryption side of the encryption boundary."""

import logging
from typing import Optional
from uuid import UUID

from shared.db_models import Bookmark, Category
from shared.encryption import EncryptionError, EncryptionService
from shared.models import format_timestamp, utc_now

logger = logging.getLogger(__name__)

SYNC_VERSION = 1
ENCRYPTION_ERROR_PLACEHOLDER = "[Encryption Error]"


def build_bookmark_payload(
    bookmark: Bookmark,
    user_id: UUID,
    encryption_service: EncryptionService,
    device_id: str
) -> dict:
    """
    Build the remote row for a bookmark.

    Metadata goes in plaintext; title, url, note and each tag are encrypted
    individually. If any field fails to encrypt, content is replaced by
    placeholders and ``is_encrypted`` is false so readers skip decryption.

    ``updated_at`` is the last local edit, not the upload time, so conflict
    resolution on other devices compares edits.

    ``category_id`` and ``image_urls`` are left to the caller.
    """
    payload = {
        "user_id": str(user_id),
        "local_id": str(bookmark.id),
        "source": bookmark.source_enum.value,
        "is_read": bool(bookmark.is_read),
        "is_favorite": bool(bookmark.is_favorite),
        "created_at": format_timestamp(bookmark.created_at),
        "updated_at": format_timestamp(bookmark.last_modified or utc_now()),
        "sync_version": SYNC_VERSION,
        "last_modified_device": device_id,
        "is_encrypted": True,
    }

    try:
        payload["title"] = encryption_service.encrypt(bookmark.title)
        payload["url"] = encryption_service.encrypt(bookmark.url) if bookmark.url else ""
        payload["note"] = encryption_service.encrypt(bookmark.note) if bookmark.note else ""
        payload["tags"] = [encryption_service.encrypt(tag) for tag in (bookmark.tags or [])]
    except EncryptionError as e:
        logger.warning(f"Encryption failed for bookmark {bookmark.id}, sending placeholder content: {e}")
        payload.update({
            "title": ENCRYPTION_ERROR_PLACEHOLDER,
            "url": "",
            "note": "",
            "tags": [],
            "is_encrypted": False,
        })

    return payload


def build_category_payload(
    category: Category,
    user_id: UUID,
    encryption_service: EncryptionService,
    device_id: str
) -> dict:
    """Build the remote row for a category; only the name is encrypted."""
    payload = {
        "user_id": str(user_id),
        "local_id": str(category.id),
        "icon": category.icon,
        "color": category.color_hex,
        "order": category.order,
        "created_at": format_timestamp(category.created_at),
        "updated_at": format_timestamp(category.last_modified or utc_now()),
        "sync_version": SYNC_VERSION,
        "last_modified_device": device_id,
        "is_encrypted": True,
    }

    try:
        payload["name"] = encryption_service.encrypt(category.name)
    except EncryptionError as e:
        logger.warning(f"Encryption failed for category {category.id}, sending placeholder name: {e}")
        payload["name"] = ENCRYPTION_ERROR_PLACEHOLDER
        payload["is_encrypted"] = False

    return payload


def decrypt_if_needed(
    value: Optional[str],
    is_encrypted: bool,
    encryption_service: EncryptionService
) -> Optional[str]:
    """
    Return the plaintext of a remote field.

    Plaintext fields are returned unchanged. Encrypted fields that cannot be
    decrypted are returned as-is so a single bad field never aborts a pass.
    """
    if not is_encrypted or not value:
        return value
    try:
        plaintext = encryption_service.decrypt_optional(value)
    except Exception as e:
        logger.warning(f"Could not decrypt field, keeping stored value: {e}")
        return value
    return plaintext if plaintext is not None else value
