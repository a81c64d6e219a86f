"""Arq task definitions for upload finalization and session expiry."""

import logging
from uuid import UUID

from arq import cron

from assethub.core.exceptions import MergeFailureError
from assethub.database import async_session_maker, engine
from assethub.services.assets import AssetRegistry
from assethub.services.storage import storage_service
from assethub.services.uploads import build_upload_manager
from assethub.workers.settings import redis_settings

logger = logging.getLogger(__name__)


async def merge_upload_chunks(ctx: dict, asset_id: str, chunk_keys: list[str]) -> dict:
    """
    Merge uploaded chunk objects into the asset's final object.

    On success the chunk objects are deleted and the asset becomes ready.
    On failure the asset is marked failed; the client already got its
    asset id, so the asset status is the only place the failure shows.

    Args:
        ctx: Arq context
        asset_id: UUID of the asset created at finalize
        chunk_keys: Chunk object keys in part order

    Returns:
        Dict with merge results
    """
    registry: AssetRegistry = ctx["assets"]
    asset = await registry.get_asset(UUID(asset_id))

    if not asset:
        logger.error(f"Asset {asset_id} not found")
        return {"error": "Asset not found"}

    logger.info(f"Merging {len(chunk_keys)} chunks for asset {asset_id}")

    try:
        await storage_service.merge_objects(
            asset.tenant_id,
            asset.storage_key,
            chunk_keys,
            asset.mime_type,
        )
    except Exception as e:
        error = e if isinstance(e, MergeFailureError) else MergeFailureError(f"Chunk merge failed: {e}")
        logger.exception(f"Error merging chunks for asset {asset_id}")
        await registry.mark_failed(asset.id, error.message)
        return {"error": error.message}

    failed = []
    for key in chunk_keys:
        if not await storage_service.delete_object(asset.tenant_id, key):
            failed.append(key)
    if failed:
        logger.warning(f"Asset {asset_id}: {len(failed)} chunk objects left behind")

    await registry.mark_ready(asset.id)
    logger.info(f"Asset {asset_id} merged from {len(chunk_keys)} chunks")

    return {
        "asset_id": asset_id,
        "chunks": len(chunk_keys),
        "chunks_not_deleted": len(failed),
    }


async def sweep_expired_upload_sessions(ctx: dict) -> dict:
    """Cron job: reap expired upload sessions and their chunk objects."""
    manager = ctx["upload_manager"]
    reaped = await manager.sweep_expired_sessions()
    return {"reaped": reaped}


# ── Lifecycle ───────────────────────────────────────────────────────


async def startup(ctx: dict) -> None:
    """Worker startup hook."""
    logger.info("Worker starting up...")
    ctx["assets"] = AssetRegistry(async_session_maker, ctx["redis"])
    ctx["upload_manager"] = build_upload_manager(ctx["redis"])


async def shutdown(ctx: dict) -> None:
    """Worker shutdown hook."""
    logger.info("Worker shutting down...")
    await engine.dispose()


class WorkerSettings:
    """Arq worker settings."""

    functions = [merge_upload_chunks]
    cron_jobs = [
        cron(
            sweep_expired_upload_sessions,
            minute={0, 15, 30, 45},
        ),
    ]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = redis_settings
    max_jobs = 10
    job_timeout = 600  # 10 minutes max per job
    keep_result = 3600  # Keep results for 1 hour
