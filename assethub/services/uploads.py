"""Resumable chunked upload coordinator.

Clients initialize a session, PUT each chunk directly to object storage with
a pre-signed URL, and confirm it here. The confirmation that completes the
set hands off to the asset registry, which merges the chunk objects in a
background job. Chunk bytes never pass through this service.
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Protocol
from uuid import UUID, uuid4

from arq import ArqRedis

from assethub.config import get_settings
from assethub.core.clock import Clock, utcnow
from assethub.core.exceptions import (
    ChunkIndexOutOfRangeError,
    QuotaExceededError,
    SessionNotFoundError,
    UploadValidationError,
)
from assethub.core.session_store import RedisSessionStore, SessionStore
from assethub.core.validation import (
    format_file_size,
    sanitize_file_name,
    validate_file_name,
    validate_file_size,
    validate_file_type,
)
from assethub.database import async_session_maker
from assethub.schemas.upload import (
    CancelResult,
    ChunkConfirmation,
    ChunkUploadUrl,
    InitializeUploadResponse,
    UploadProgress,
    UploadSession,
    UploadState,
)
from assethub.services.assets import AssetRegistry
from assethub.services.quota import QuotaValidator
from assethub.services.storage import storage_service
from assethub.services.usage import UsageService, percent

settings = get_settings()
logger = logging.getLogger(__name__)

CHUNK_CONTENT_TYPE = "application/octet-stream"
CANCELLABLE_STATES = (UploadState.INITIALIZED, UploadState.UPLOADING)


class StorageBackend(Protocol):
    def generate_storage_key(self, tenant_id: UUID, user_id: UUID, filename: str) -> str: ...

    async def generate_presigned_upload_url(
        self, tenant_id: UUID, object_key: str, content_type: str, expires_in: int
    ) -> str: ...

    async def delete_object(self, tenant_id: UUID, object_key: str) -> bool: ...


class AssetSink(Protocol):
    async def create_asset(
        self,
        tenant_id: UUID,
        user_id: UUID,
        file_name: str,
        mime_type: str,
        size_bytes: int,
        storage_key: str,
        metadata: dict | None = None,
    ) -> UUID: ...

    async def schedule_merge(self, asset_id: UUID, chunk_keys: list[str]) -> None: ...

    async def mark_failed(self, asset_id: UUID, error_message: str) -> None: ...


class UsageTracker(Protocol):
    async def increment_upload_count(self, tenant_id: UUID) -> None: ...

    async def record_active_user(self, tenant_id: UUID, user_id: UUID) -> bool: ...


def total_chunks_for(file_size: int, chunk_size: int) -> int:
    """Ceiling division of the file size by the chunk size."""
    return (file_size + chunk_size - 1) // chunk_size


def new_session_id(now: datetime) -> str:
    return f"upload_{int(now.timestamp() * 1000)}_{uuid4().hex}"


class UploadSessionManager:
    """Coordinates upload sessions across the session store and collaborators."""

    def __init__(
        self,
        sessions: SessionStore,
        storage: StorageBackend,
        assets: AssetSink,
        usage: UsageTracker,
        quota: QuotaValidator,
        chunk_size: int = settings.upload_chunk_size,
        max_chunks: int = settings.upload_max_chunks,
        session_ttl: int = settings.upload_session_ttl_seconds,
        chunk_url_expiry: int = settings.chunk_url_expiry_seconds,
        max_file_size_mb: int = settings.max_upload_file_size_mb,
        sweep_retry_seconds: int = settings.upload_sweep_retry_seconds,
        clock: Clock = utcnow,
    ) -> None:
        self.sessions = sessions
        self.storage = storage
        self.assets = assets
        self.usage = usage
        self.quota = quota
        self.chunk_size = chunk_size
        self.max_chunks = max_chunks
        self.session_ttl = session_ttl
        self.chunk_url_expiry = chunk_url_expiry
        self.max_file_size_mb = max_file_size_mb
        self.sweep_retry_seconds = sweep_retry_seconds
        self.clock = clock

    # --- Public operations ---

    async def initialize_upload(
        self,
        tenant_id: UUID,
        user_id: UUID,
        file_name: str,
        declared_size: int,
        mime_type: str,
        metadata: dict | None = None,
    ) -> InitializeUploadResponse:
        """Validate the file, check quota and open a session.

        Raises:
            UploadValidationError: bad name, type or size.
            QuotaExceededError: the tenant cannot take this upload.
        """
        validate_file_name(file_name)
        validate_file_type(file_name, mime_type)
        validate_file_size(declared_size, self.max_file_size_mb)

        decision = await self.quota.validate(tenant_id, declared_size)
        if not decision.allowed:
            raise QuotaExceededError(
                decision.reason or "Upload not allowed",
                remaining=decision.remaining.model_dump() if decision.remaining else None,
            )
        if decision.limits and decision.limits.allowed_file_types:
            validate_file_type(file_name, mime_type, decision.limits.allowed_file_types)

        total_chunks = total_chunks_for(declared_size, self.chunk_size)
        if total_chunks > self.max_chunks:
            raise UploadValidationError(
                f"File too large. Maximum {self.max_chunks} chunks allowed."
            )

        now = self.clock()
        session = UploadSession(
            session_id=new_session_id(now),
            tenant_id=tenant_id,
            user_id=user_id,
            file_name=file_name,
            declared_size=declared_size,
            mime_type=mime_type.strip().lower(),
            storage_key=self.storage.generate_storage_key(
                tenant_id, user_id, sanitize_file_name(file_name)
            ),
            chunk_size=self.chunk_size,
            total_chunks=total_chunks,
            created_at=now,
            expires_at=now + timedelta(seconds=self.session_ttl),
            metadata=metadata or {},
        )
        await self.sessions.create(session, self.session_ttl)

        logger.info(
            f"Upload session {session.session_id} initialized for tenant {tenant_id}: "
            f"{file_name} ({format_file_size(declared_size)}, {total_chunks} chunks)"
        )
        return InitializeUploadResponse(
            session_id=session.session_id,
            total_chunks=total_chunks,
            chunk_size=self.chunk_size,
            expires_at=session.expires_at,
        )

    async def get_chunk_upload_url(
        self,
        session_id: str,
        chunk_index: int,
        tenant_id: UUID | None = None,
    ) -> ChunkUploadUrl:
        """Pre-signed PUT URL for one chunk; no URL if it is already stored."""
        session = await self._load(session_id, tenant_id)
        self._check_index(session, chunk_index)

        if chunk_index in session.uploaded_chunks:
            return ChunkUploadUrl(
                chunk_index=chunk_index,
                already_uploaded=True,
                is_complete=session.is_complete,
            )

        url = await self.storage.generate_presigned_upload_url(
            session.tenant_id,
            session.chunk_key(chunk_index),
            CHUNK_CONTENT_TYPE,
            self.chunk_url_expiry,
        )
        return ChunkUploadUrl(
            chunk_index=chunk_index,
            upload_url=url,
            expires_in=self.chunk_url_expiry,
        )

    async def confirm_chunk_upload(
        self,
        session_id: str,
        chunk_index: int,
        etag: str | None = None,
        tenant_id: UUID | None = None,
    ) -> ChunkConfirmation:
        """Record a stored chunk; the completing confirmation finalizes."""
        session = await self._load(session_id, tenant_id)
        self._check_index(session, chunk_index)

        uploaded = await self.sessions.mark_chunk_uploaded(session_id, chunk_index)
        if uploaded is None:
            raise SessionNotFoundError(session_id)

        logger.debug(
            f"Chunk {chunk_index} confirmed for {session_id} "
            f"({uploaded}/{session.total_chunks}, etag={etag})"
        )

        is_complete = uploaded >= session.total_chunks
        asset_id = await self._finalize(session) if is_complete else None

        return ChunkConfirmation(
            chunk_index=chunk_index,
            uploaded_chunks=uploaded,
            total_chunks=session.total_chunks,
            is_complete=is_complete,
            asset_id=asset_id,
        )

    async def get_upload_progress(
        self,
        session_id: str,
        tenant_id: UUID | None = None,
    ) -> UploadProgress | None:
        """Progress of a live session, or None if it does not exist."""
        session = await self.sessions.get(session_id)
        if session is None or not self._owned_by(session, tenant_id):
            return None

        uploaded = len(session.uploaded_chunks)
        return UploadProgress(
            session_id=session_id,
            uploaded_chunks=uploaded,
            total_chunks=session.total_chunks,
            percent_complete=percent(uploaded, session.total_chunks),
            is_complete=uploaded == session.total_chunks,
            state=session.state,
        )

    async def cancel_upload(
        self,
        session_id: str,
        tenant_id: UUID | None = None,
    ) -> CancelResult:
        """Tear down a session and the chunk objects it has accumulated.

        A session that is already finalizing is left alone: completion wins.
        """
        session = await self.sessions.get(session_id)
        if session is None or not self._owned_by(session, tenant_id):
            return CancelResult(session_id=session_id, found=False, cancelled=False)

        claimed = await self.sessions.claim(session_id, CANCELLABLE_STATES)
        if claimed is None:
            logger.info(f"Cancel of {session_id} ignored: upload is finalizing")
            return CancelResult(session_id=session_id, found=True, cancelled=False)

        keys = [claimed.chunk_key(i) for i in claimed.uploaded_chunks]
        failed = await self._delete_objects(claimed.tenant_id, keys)

        logger.info(
            f"Upload session {session_id} cancelled: "
            f"{len(keys) - len(failed)} chunks deleted, {len(failed)} failed"
        )
        return CancelResult(
            session_id=session_id,
            found=True,
            cancelled=True,
            deleted_chunks=len(keys) - len(failed),
            failed_chunks=failed,
        )

    async def sweep_expired_sessions(
        self,
        now: datetime | None = None,
        limit: int = settings.upload_sweep_batch_size,
    ) -> int:
        """Reap expired sessions and every chunk object they may have left.

        Works through the expiry index in batches of ``limit`` until it is
        drained up to ``now``. Finalizing sessions are pushed back by
        ``sweep_retry_seconds`` and left alone.

        Returns:
            Number of sessions reaped.
        """
        now = now or self.clock()
        retry_at = now + timedelta(seconds=max(self.sweep_retry_seconds, 1))
        reaped = 0

        while True:
            batch = await self.sessions.expired_session_ids(now, limit)
            for session_id in batch:
                session = await self.sessions.reap(session_id, retry_at)
                if session is None:
                    continue

                # Unconfirmed chunks may exist too, so try every possible key
                failed = await self._delete_objects(session.tenant_id, session.all_chunk_keys())
                if failed:
                    logger.warning(f"Expired session {session_id}: {len(failed)} chunk deletes failed")
                reaped += 1

            if len(batch) < limit:
                break

        if reaped:
            logger.info(f"Reaped {reaped} expired upload sessions")
        return reaped

    # --- Internals ---

    async def _finalize(self, session: UploadSession) -> UUID | None:
        """Create the asset and retire the session, exactly once per session.

        Returns None to every caller that loses the finalize race.
        """
        session_id = session.session_id
        if not await self.sessions.begin_finalize(session_id, session.total_chunks):
            return None

        try:
            asset_id = await self.assets.create_asset(
                tenant_id=session.tenant_id,
                user_id=session.user_id,
                file_name=session.file_name,
                mime_type=session.mime_type,
                size_bytes=session.declared_size,
                storage_key=session.storage_key,
                metadata=session.metadata,
            )
        except Exception:
            logger.exception(f"Failed to create asset for upload {session_id}")
            await self.sessions.abort_finalize(session_id)
            raise

        try:
            await self.assets.schedule_merge(asset_id, session.all_chunk_keys())
        except Exception:
            logger.exception(f"Failed to schedule merge for asset {asset_id}")
            await self.assets.mark_failed(asset_id, "Failed to schedule chunk merge")
            await self.sessions.abort_finalize(session_id)
            raise

        try:
            await self.usage.increment_upload_count(session.tenant_id)
            await self.usage.record_active_user(session.tenant_id, session.user_id)
        except Exception:
            logger.exception(f"Failed to record usage for upload {session_id}")

        if await self.sessions.claim(session_id, [UploadState.FINALIZING]) is None:
            logger.warning(f"Upload session {session_id} vanished during finalize")

        logger.info(f"Upload session {session_id} completed as asset {asset_id}")
        return asset_id

    async def _load(self, session_id: str, tenant_id: UUID | None) -> UploadSession:
        session = await self.sessions.get(session_id)
        if session is None or not self._owned_by(session, tenant_id):
            raise SessionNotFoundError(session_id)
        return session

    @staticmethod
    def _owned_by(session: UploadSession, tenant_id: UUID | None) -> bool:
        return tenant_id is None or session.tenant_id == tenant_id

    @staticmethod
    def _check_index(session: UploadSession, chunk_index: int) -> None:
        if not 0 <= chunk_index < session.total_chunks:
            raise ChunkIndexOutOfRangeError(chunk_index, session.total_chunks)

    async def _delete_objects(self, tenant_id: UUID, keys: list[str]) -> list[str]:
        """Best-effort deletes. Returns the keys that could not be deleted."""
        results = await asyncio.gather(
            *(self.storage.delete_object(tenant_id, key) for key in keys),
            return_exceptions=True,
        )
        failed = []
        for key, result in zip(keys, results):
            if isinstance(result, BaseException):
                logger.warning(f"Failed to delete chunk {key}: {result}")
                failed.append(key)
            elif not result:
                failed.append(key)
        return failed


def build_upload_manager(redis: ArqRedis) -> UploadSessionManager:
    """Wire the manager to Redis, PostgreSQL and S3."""
    usage = UsageService(async_session_maker, redis)
    return UploadSessionManager(
        sessions=RedisSessionStore(redis, grace_seconds=settings.upload_session_grace_seconds),
        storage=storage_service,
        assets=AssetRegistry(async_session_maker, redis),
        usage=usage,
        quota=QuotaValidator(usage),
    )
