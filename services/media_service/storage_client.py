"""S3-compatible object storage client for bookmark images."""

import asyncio
import logging
from typing import List, Optional

import boto3
from botocore.exceptions import ClientError

logger = logging.getLogger(__name__)


class StorageClient:
    """Handles object storage operations for bookmark images."""

    def __init__(
        self,
        bucket_name: str,
        endpoint_url: Optional[str] = None,
        region: str = "us-east-1",
        access_key_id: Optional[str] = None,
        secret_access_key: Optional[str] = None
    ):
        """
        Initialize storage client.

        Args:
            bucket_name: Bucket holding bookmark images
            endpoint_url: S3-compatible endpoint (e.g. the backend's /storage/v1/s3)
            region: Storage region
            access_key_id: Access key ID (optional, uses default credentials if not provided)
            secret_access_key: Secret access key (optional)
        """
        self.bucket_name = bucket_name
        self.region = region

        client_kwargs = {"region_name": region}
        if endpoint_url:
            client_kwargs["endpoint_url"] = endpoint_url
        if access_key_id and secret_access_key:
            client_kwargs["aws_access_key_id"] = access_key_id
            client_kwargs["aws_secret_access_key"] = secret_access_key

        self.s3_client = boto3.client('s3', **client_kwargs)

    async def upload_object(
        self,
        key: str,
        data: bytes,
        content_type: str = "image/jpeg"
    ) -> str:
        """
        Upload an object, overwriting any existing object with the same key.

        Args:
            key: Object key (path)
            data: Object bytes
            content_type: MIME type

        Returns:
            The object key
        """
        try:
            await asyncio.to_thread(
                self.s3_client.put_object,
                Bucket=self.bucket_name,
                Key=key,
                Body=data,
                ContentType=content_type,
                CacheControl="max-age=3600",
            )
            logger.info(f"Uploaded {len(data) // 1024} KB to storage: {key}")
            return key

        except ClientError as e:
            logger.error(f"Failed to upload object {key}: {e}", exc_info=True)
            raise

    async def get_object(self, key: str) -> bytes:
        """Download an object's bytes."""
        response = await asyncio.to_thread(
            self.s3_client.get_object, Bucket=self.bucket_name, Key=key
        )
        return await asyncio.to_thread(response["Body"].read)

    async def list_keys(self, prefix: str) -> List[str]:
        keys = []
        paginator = self.s3_client.get_paginator("list_objects_v2")

        def _collect():
            for page in paginator.paginate(Bucket=self.bucket_name, Prefix=prefix):
                keys.extend(item["Key"] for item in page.get("Contents", []))

        await asyncio.to_thread(_collect)
        return keys

    async def delete_prefix(self, prefix: str) -> int:
        """
        Delete every object under a prefix.

        Returns:
            Number of objects deleted
        """
        keys = await self.list_keys(prefix)
        if not keys:
            return 0

        for start in range(0, len(keys), 1000):
            batch = keys[start:start + 1000]
            await asyncio.to_thread(
                self.s3_client.delete_objects,
                Bucket=self.bucket_name,
                Delete={"Objects": [{"Key": key} for key in batch], "Quiet": True},
            )
        logger.info(f"Deleted {len(keys)} objects under {prefix}")
        return len(keys)
