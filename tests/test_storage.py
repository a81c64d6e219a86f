"""Tests for the object storage service."""

from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest
from botocore.exceptions import ClientError

from assethub.core.exceptions import MergeFailureError
from assethub.services.storage import StorageService


def _client_context(client):
    context = MagicMock()
    context.__aenter__ = AsyncMock(return_value=client)
    context.__aexit__ = AsyncMock(return_value=None)
    return context


def _client_error(operation: str) -> ClientError:
    return ClientError({"Error": {"Code": "InternalError", "Message": "boom"}}, operation)


@pytest.fixture
def service():
    return StorageService()


@pytest.fixture
def client():
    return AsyncMock()


@pytest.fixture
def tenant_id():
    return uuid4()


class TestKeys:
    def test_storage_key_is_tenant_scoped(self, service, tenant_id):
        user_id = uuid4()
        key = service.generate_storage_key(tenant_id, user_id, "video.mp4")

        assert key.startswith(f"tenants/{tenant_id}/{user_id}/")
        assert key.endswith("-video.mp4")
        assert key != service.generate_storage_key(tenant_id, user_id, "video.mp4")

    @pytest.mark.asyncio
    async def test_rejects_foreign_keys(self, service, tenant_id):
        with pytest.raises(ValueError):
            await service.delete_object(tenant_id, f"tenants/{uuid4()}/u/key.chunk.0")


class TestPresignedUrl:
    @pytest.mark.asyncio
    async def test_presigns_put(self, service, client, tenant_id):
        key = f"tenants/{tenant_id}/u/key.chunk.0"
        client.generate_presigned_url.return_value = "https://minio.test/signed"

        with patch.object(service, "_get_client", return_value=_client_context(client)):
            url = await service.generate_presigned_upload_url(
                tenant_id, key, "application/octet-stream", expires_in=600
            )

        assert url == "https://minio.test/signed"
        client.generate_presigned_url.assert_awaited_once_with(
            "put_object",
            Params={
                "Bucket": service.bucket,
                "Key": key,
                "ContentType": "application/octet-stream",
            },
            ExpiresIn=600,
        )


class TestDeleteObject:
    @pytest.mark.asyncio
    async def test_delete(self, service, client, tenant_id):
        key = f"tenants/{tenant_id}/u/key.chunk.0"

        with patch.object(service, "_get_client", return_value=_client_context(client)):
            assert await service.delete_object(tenant_id, key) is True

        client.delete_object.assert_awaited_once_with(Bucket=service.bucket, Key=key)

    @pytest.mark.asyncio
    async def test_delete_error_returns_false(self, service, client, tenant_id):
        client.delete_object.side_effect = _client_error("DeleteObject")

        with patch.object(service, "_get_client", return_value=_client_context(client)):
            deleted = await service.delete_object(tenant_id, f"tenants/{tenant_id}/u/k.chunk.0")

        assert deleted is False


class TestMergeObjects:
    @pytest.mark.asyncio
    async def test_copies_parts_in_order(self, service, client, tenant_id):
        target = f"tenants/{tenant_id}/u/key"
        sources = [f"{target}.chunk.0", f"{target}.chunk.1"]
        client.create_multipart_upload.return_value = {"UploadId": "mpu-1"}
        client.upload_part_copy.side_effect = [
            {"CopyPartResult": {"ETag": '"e0"'}},
            {"CopyPartResult": {"ETag": '"e1"'}},
        ]

        with patch.object(service, "_get_client", return_value=_client_context(client)):
            await service.merge_objects(tenant_id, target, sources, "video/mp4")

        part_numbers = [c.kwargs["PartNumber"] for c in client.upload_part_copy.await_args_list]
        assert part_numbers == [1, 2]
        client.complete_multipart_upload.assert_awaited_once_with(
            Bucket=service.bucket,
            Key=target,
            UploadId="mpu-1",
            MultipartUpload={
                "Parts": [
                    {"PartNumber": 1, "ETag": '"e0"'},
                    {"PartNumber": 2, "ETag": '"e1"'},
                ]
            },
        )

    @pytest.mark.asyncio
    async def test_failure_aborts_multipart_upload(self, service, client, tenant_id):
        target = f"tenants/{tenant_id}/u/key"
        client.create_multipart_upload.return_value = {"UploadId": "mpu-1"}
        client.upload_part_copy.side_effect = _client_error("UploadPartCopy")

        with patch.object(service, "_get_client", return_value=_client_context(client)):
            with pytest.raises(MergeFailureError):
                await service.merge_objects(tenant_id, target, [f"{target}.chunk.0"], "video/mp4")

        client.abort_multipart_upload.assert_awaited_once_with(
            Bucket=service.bucket, Key=target, UploadId="mpu-1"
        )
        client.complete_multipart_upload.assert_not_awaited()
