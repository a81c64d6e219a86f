"""Asset registry: permanent asset records and the merge job hand-off."""

import logging
from datetime import datetime, timezone
from uuid import UUID

from arq import ArqRedis
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from assethub.core.validation import get_file_category
from assethub.models.asset import Asset, AssetStatus

logger = logging.getLogger(__name__)

MERGE_JOB = "merge_upload_chunks"


class AssetRegistry:
    """Creates asset rows and schedules the asynchronous chunk merge."""

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        queue: ArqRedis,
    ) -> None:
        self.session_maker = session_maker
        self.queue = queue

    async def create_asset(
        self,
        tenant_id: UUID,
        user_id: UUID,
        file_name: str,
        mime_type: str,
        size_bytes: int,
        storage_key: str,
        metadata: dict | None = None,
    ) -> UUID:
        """Insert an asset in ``processing`` state and return its id."""
        metadata = metadata or {}
        title = file_name.rsplit(".", 1)[0] or file_name

        async with self.session_maker() as db:
            asset = Asset(
                tenant_id=tenant_id,
                uploaded_by=user_id,
                file_name=file_name,
                original_file_name=file_name,
                file_type=get_file_category(mime_type),
                mime_type=mime_type,
                file_size=size_bytes,
                storage_key=storage_key,
                title=metadata.get("title") or title,
                description=metadata.get("description"),
                tags=list(metadata.get("tags") or []),
                asset_metadata=metadata,
                processing_status=AssetStatus.PROCESSING.value,
            )
            db.add(asset)
            await db.commit()
            await db.refresh(asset)

        logger.info(f"Created asset {asset.id} for tenant {tenant_id}: {file_name}")
        return asset.id

    async def schedule_merge(self, asset_id: UUID, chunk_keys: list[str]) -> None:
        """Queue the merge job; not awaited beyond the enqueue."""
        await self.queue.enqueue_job(MERGE_JOB, str(asset_id), chunk_keys)

    async def get_asset(self, asset_id: UUID) -> Asset | None:
        async with self.session_maker() as db:
            result = await db.execute(select(Asset).where(Asset.id == asset_id))
            return result.scalar_one_or_none()

    async def _set_status(
        self,
        asset_id: UUID,
        status: AssetStatus,
        error_message: str | None = None,
    ) -> None:
        async with self.session_maker() as db:
            result = await db.execute(select(Asset).where(Asset.id == asset_id))
            asset = result.scalar_one_or_none()
            if asset is None:
                logger.error(f"Asset {asset_id} not found")
                return

            asset.processing_status = status.value
            asset.error_message = error_message[:2000] if error_message else None
            asset.processed_at = datetime.now(timezone.utc)
            await db.commit()

    async def mark_ready(self, asset_id: UUID) -> None:
        await self._set_status(asset_id, AssetStatus.READY)

    async def mark_failed(self, asset_id: UUID, error_message: str) -> None:
        await self._set_status(asset_id, AssetStatus.FAILED, error_message)
