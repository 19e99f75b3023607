"""Moves bookmark images between the local store and object storage."""

import asyncio
import hashlib
import io
import logging
from collections import OrderedDict
from typing import Callable, Optional
from uuid import UUID

import httpx
from botocore.exceptions import BotoCoreError, ClientError
from PIL import Image, UnidentifiedImageError

from services.media_service.storage_client import StorageClient

logger = logging.getLogger(__name__)


class MediaError(Exception):
    """Raised when an image cannot be prepared or uploaded."""


class MediaSyncAdapter:
    """Uploads local images for a bookmark and downloads remote ones back.

    Stored paths look like ``{user_id}/{bookmark_id}/{index}_{digest}.jpg``.
    The digest is taken from the optimized bytes, so re-uploading an
    unchanged image overwrites the same object.
    """

    def __init__(
        self,
        storage: StorageClient,
        user_id_provider: Callable[[], Optional[UUID]],
        http_client: httpx.AsyncClient,
        max_image_size: int = 5 * 1024 * 1024,
        max_dimension: int = 1920,
        jpeg_quality: int = 80,
        cache_size: int = 100
    ):
        self.storage = storage
        self.user_id_provider = user_id_provider
        self.http_client = http_client
        self.max_image_size = max_image_size
        self.max_dimension = max_dimension
        self.jpeg_quality = jpeg_quality
        self.cache_size = cache_size
        self._cache: "OrderedDict[str, bytes]" = OrderedDict()

    async def upload(self, image: bytes, owner_id: UUID, index: int = 0) -> str:
        """
        Optimize and upload one image.

        Args:
            image: Raw image bytes
            owner_id: Local UUID of the owning bookmark
            index: Position of the image within the bookmark

        Returns:
            The storage path of the uploaded image

        Raises:
            MediaError: If not signed in, the image is unreadable or too large,
                        or the upload fails
        """
        user_id = self.user_id_provider()
        if user_id is None:
            raise MediaError("Not authenticated")

        optimized = await asyncio.to_thread(self.optimize_image, image)
        if len(optimized) > self.max_image_size:
            raise MediaError(
                f"Image too large: {len(optimized)} bytes (max {self.max_image_size})"
            )

        digest = hashlib.sha256(optimized).hexdigest()[:8]
        path = f"{user_id}/{owner_id}/{index}_{digest}.jpg"

        try:
            await self.storage.upload_object(path, optimized, content_type="image/jpeg")
        except (ClientError, BotoCoreError) as e:
            raise MediaError(f"Upload failed for {path}: {e}") from e

        self._remember(path, optimized)
        return path

    async def download(self, path_or_url: str) -> Optional[bytes]:
        """
        Fetch an image by storage path or full URL.

        Returns:
            Image bytes, or None if it could not be fetched
        """
        cached = self._cache.get(path_or_url)
        if cached is not None:
            self._cache.move_to_end(path_or_url)
            return cached

        try:
            if path_or_url.startswith(("http://", "https://")):
                response = await self.http_client.get(path_or_url, follow_redirects=True)
                if response.status_code != 200:
                    logger.warning(f"Image download returned HTTP {response.status_code}: {path_or_url}")
                    return None
                data = response.content
            else:
                data = await self.storage.get_object(path_or_url)
        except (httpx.HTTPError, httpx.InvalidURL, ValueError, ClientError, BotoCoreError) as e:
            logger.warning(f"Image download failed for {path_or_url}: {e}")
            return None

        if not data:
            return None

        self._remember(path_or_url, data)
        return data

    async def delete_all(self, owner_id: UUID) -> int:
        """Remove every stored image of a bookmark."""
        user_id = self.user_id_provider()
        if user_id is None:
            raise MediaError("Not authenticated")

        prefix = f"{user_id}/{owner_id}/"
        try:
            deleted = await self.storage.delete_prefix(prefix)
        except (ClientError, BotoCoreError) as e:
            raise MediaError(f"Delete failed for {prefix}: {e}") from e

        for key in [key for key in self._cache if key.startswith(prefix)]:
            del self._cache[key]
        return deleted

    def optimize_image(self, data: bytes) -> bytes:
        """Downscale to max_dimension and re-encode as JPEG."""
        try:
            with Image.open(io.BytesIO(data)) as img:
                img.load()
                if max(img.size) > self.max_dimension:
                    img.thumbnail((self.max_dimension, self.max_dimension))
                output = io.BytesIO()
                img.convert("RGB").save(output, format="JPEG", quality=self.jpeg_quality)
                return output.getvalue()
        except (UnidentifiedImageError, OSError) as e:
            raise MediaError(f"Invalid image data: {e}") from e

    def clear_cache(self):
        self._cache.clear()

    def _remember(self, key: str, data: bytes):
        self._cache[key] = data
        self._cache.move_to_end(key)
        while len(self._cache) > self.cache_size:
            self._cache.popitem(last=False)
