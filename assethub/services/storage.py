"""S3/MinIO storage service."""

import logging
import secrets
import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator
from uuid import UUID

import aioboto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from assethub.config import get_settings
from assethub.core.exceptions import MergeFailureError

settings = get_settings()
logger = logging.getLogger(__name__)


class StorageService:
    """Service for object storage operations with S3/MinIO.

    Every key is scoped under ``tenants/<tenant_id>/``; operations reject keys
    outside the calling tenant's prefix.
    """

    def __init__(self) -> None:
        self.session = aioboto3.Session()
        self.bucket = settings.s3_bucket
        self.config = Config(
            signature_version="s3v4",
            s3={"addressing_style": "path"},
        )

    @asynccontextmanager
    async def _get_client(self) -> AsyncGenerator:
        """Get async S3 client."""
        async with self.session.client(
            "s3",
            endpoint_url=settings.s3_endpoint_url,
            aws_access_key_id=settings.s3_access_key,
            aws_secret_access_key=settings.s3_secret_key,
            region_name=settings.s3_region,
            config=self.config,
        ) as client:
            yield client

    @staticmethod
    def tenant_prefix(tenant_id: UUID) -> str:
        return f"tenants/{tenant_id}/"

    def generate_storage_key(self, tenant_id: UUID, user_id: UUID, filename: str) -> str:
        """Build a unique destination key with tenant prefix for isolation."""
        timestamp = int(time.time() * 1000)
        random = secrets.token_hex(6)
        return f"{self.tenant_prefix(tenant_id)}{user_id}/{timestamp}-{random}-{filename}"

    def _check_key(self, tenant_id: UUID, object_key: str) -> None:
        if not object_key.startswith(self.tenant_prefix(tenant_id)):
            raise ValueError(f"Object key {object_key!r} is outside tenant {tenant_id}")

    async def generate_presigned_upload_url(
        self,
        tenant_id: UUID,
        object_key: str,
        content_type: str,
        expires_in: int = 3600,
    ) -> str:
        """Generate presigned URL for a direct PUT by the client."""
        self._check_key(tenant_id, object_key)
        async with self._get_client() as client:
            url = await client.generate_presigned_url(
                "put_object",
                Params={
                    "Bucket": self.bucket,
                    "Key": object_key,
                    "ContentType": content_type,
                },
                ExpiresIn=expires_in,
            )
            return url

    async def delete_object(self, tenant_id: UUID, object_key: str) -> bool:
        """Delete an object. Returns False if the store reported an error."""
        self._check_key(tenant_id, object_key)
        try:
            async with self._get_client() as client:
                await client.delete_object(Bucket=self.bucket, Key=object_key)
            return True
        except (BotoCoreError, ClientError) as e:
            logger.warning(f"Failed to delete {object_key}: {e}")
            return False

    async def merge_objects(
        self,
        tenant_id: UUID,
        target_key: str,
        source_keys: list[str],
        content_type: str,
    ) -> None:
        """Concatenate ``source_keys`` into ``target_key`` server-side.

        Uses a multipart upload with one copied part per source object, so
        every source except the last must be at least 5 MiB.
        """
        self._check_key(tenant_id, target_key)
        for key in source_keys:
            self._check_key(tenant_id, key)

        async with self._get_client() as client:
            upload = await client.create_multipart_upload(
                Bucket=self.bucket,
                Key=target_key,
                ContentType=content_type,
                Metadata={"tenant_id": str(tenant_id)},
            )
            upload_id = upload["UploadId"]

            try:
                parts = []
                for part_number, source_key in enumerate(source_keys, start=1):
                    response = await client.upload_part_copy(
                        Bucket=self.bucket,
                        Key=target_key,
                        UploadId=upload_id,
                        PartNumber=part_number,
                        CopySource={"Bucket": self.bucket, "Key": source_key},
                    )
                    parts.append({
                        "PartNumber": part_number,
                        "ETag": response["CopyPartResult"]["ETag"],
                    })

                await client.complete_multipart_upload(
                    Bucket=self.bucket,
                    Key=target_key,
                    UploadId=upload_id,
                    MultipartUpload={"Parts": parts},
                )
            except (BotoCoreError, ClientError) as e:
                await client.abort_multipart_upload(
                    Bucket=self.bucket,
                    Key=target_key,
                    UploadId=upload_id,
                )
                raise MergeFailureError(f"Failed to merge chunks into {target_key}: {e}") from e


# Singleton instance
storage_service = StorageService()
