"""In-memory collaborators for upload coordinator tests.

Every method yields to the event loop once before touching state, so
``asyncio.gather`` interleaves callers the way concurrent requests would,
while each mutation itself stays atomic like the Redis scripts.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Iterable
from uuid import UUID, uuid4

from assethub.core.session_store import SessionStore
from assethub.schemas.upload import UploadSession, UploadState
from assethub.schemas.usage import UsageLimits, UsageSnapshot


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime | None = None) -> None:
        self.now = now or datetime(2026, 3, 14, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: int) -> None:
        self.now += timedelta(seconds=seconds)


class InMemorySessionStore(SessionStore):
    def __init__(self, clock: FrozenClock | None = None) -> None:
        self.clock = clock or FrozenClock()
        self.records: dict[str, UploadSession] = {}
        self.states: dict[str, UploadState] = {}
        self.chunks: dict[str, set[int]] = {}
        self.expiry: dict[str, datetime] = {}
        self.cleanup: dict[str, UploadSession] = {}

    def _snapshot(self, session_id: str) -> UploadSession:
        session = self.records[session_id].model_copy()
        session.uploaded_chunks = sorted(self.chunks[session_id])
        session.state = self.states[session_id]
        return session

    def _drop(self, session_id: str) -> None:
        self.records.pop(session_id, None)
        self.states.pop(session_id, None)
        self.chunks.pop(session_id, None)
        self.expiry.pop(session_id, None)
        self.cleanup.pop(session_id, None)

    def expire_keys(self, session_id: str) -> None:
        """Drop the live record as a Redis TTL would, keeping both indexes."""
        self.records.pop(session_id)
        self.states.pop(session_id)
        self.chunks.pop(session_id)

    async def create(self, session: UploadSession, ttl_seconds: int) -> None:
        await asyncio.sleep(0)
        self.records[session.session_id] = session.model_copy()
        self.states[session.session_id] = UploadState.INITIALIZED
        self.chunks[session.session_id] = set()
        self.expiry[session.session_id] = session.expires_at
        self.cleanup[session.session_id] = session.model_copy()

    async def get(self, session_id: str) -> UploadSession | None:
        await asyncio.sleep(0)
        if session_id not in self.records:
            return None
        session = self._snapshot(session_id)
        if session.is_expired(self.clock()):
            return None
        return session

    async def mark_chunk_uploaded(self, session_id: str, chunk_index: int) -> int | None:
        await asyncio.sleep(0)
        if session_id not in self.states:
            return None
        self.chunks[session_id].add(chunk_index)
        if self.states[session_id] == UploadState.INITIALIZED:
            self.states[session_id] = UploadState.UPLOADING
        return len(self.chunks[session_id])

    async def begin_finalize(self, session_id: str, total_chunks: int) -> bool:
        await asyncio.sleep(0)
        if self.states.get(session_id) != UploadState.UPLOADING:
            return False
        if len(self.chunks[session_id]) < total_chunks:
            return False
        self.states[session_id] = UploadState.FINALIZING
        return True

    async def abort_finalize(self, session_id: str) -> None:
        await asyncio.sleep(0)
        if self.states.get(session_id) == UploadState.FINALIZING:
            self.states[session_id] = UploadState.UPLOADING

    async def claim(
        self, session_id: str, states: Iterable[UploadState]
    ) -> UploadSession | None:
        await asyncio.sleep(0)
        if session_id not in self.states or self.states[session_id] not in set(states):
            return None
        session = self._snapshot(session_id)
        self._drop(session_id)
        return session

    async def expired_session_ids(self, now: datetime, limit: int) -> list[str]:
        await asyncio.sleep(0)
        expired = sorted(
            (expires_at, session_id)
            for session_id, expires_at in self.expiry.items()
            if expires_at <= now
        )
        return [session_id for _, session_id in expired[:limit]]

    async def reap(self, session_id: str, retry_at: datetime) -> UploadSession | None:
        await asyncio.sleep(0)
        if self.states.get(session_id) == UploadState.FINALIZING:
            self.expiry[session_id] = retry_at
            return None
        if session_id in self.records:
            session = self._snapshot(session_id)
        else:
            session = self.cleanup.get(session_id)
        self._drop(session_id)
        return session


class FakeStorage:
    def __init__(self) -> None:
        self.presigned: list[str] = []
        self.deleted: list[str] = []
        self.failing_keys: set[str] = set()

    def generate_storage_key(self, tenant_id: UUID, user_id: UUID, filename: str) -> str:
        return f"tenants/{tenant_id}/{user_id}/1773489600000-0a1b2c3d4e5f-{filename}"

    async def generate_presigned_upload_url(
        self, tenant_id: UUID, object_key: str, content_type: str, expires_in: int
    ) -> str:
        await asyncio.sleep(0)
        self.presigned.append(object_key)
        return f"https://s3.test/assets/{object_key}?X-Amz-Expires={expires_in}"

    async def delete_object(self, tenant_id: UUID, object_key: str) -> bool:
        await asyncio.sleep(0)
        if object_key in self.failing_keys:
            return False
        self.deleted.append(object_key)
        return True


class FakeAssetRegistry:
    def __init__(self) -> None:
        self.created: list[dict] = []
        self.merges: list[tuple[UUID, list[str]]] = []
        self.failed: dict[UUID, str] = {}
        self.create_error: Exception | None = None
        self.schedule_error: Exception | None = None

    async def create_asset(self, **fields) -> UUID:
        await asyncio.sleep(0)
        if self.create_error:
            raise self.create_error
        asset_id = uuid4()
        self.created.append({"id": asset_id, **fields})
        return asset_id

    async def schedule_merge(self, asset_id: UUID, chunk_keys: list[str]) -> None:
        await asyncio.sleep(0)
        if self.schedule_error:
            raise self.schedule_error
        self.merges.append((asset_id, chunk_keys))

    async def mark_failed(self, asset_id: UUID, error_message: str) -> None:
        self.failed[asset_id] = error_message


class FakeUsageTracker:
    def __init__(self) -> None:
        self.uploads: dict[UUID, int] = {}
        self.active_users: set[tuple[UUID, UUID]] = set()
        self.error: Exception | None = None

    async def increment_upload_count(self, tenant_id: UUID) -> None:
        if self.error:
            raise self.error
        self.uploads[tenant_id] = self.uploads.get(tenant_id, 0) + 1

    async def record_active_user(self, tenant_id: UUID, user_id: UUID) -> bool:
        if (tenant_id, user_id) in self.active_users:
            return False
        self.active_users.add((tenant_id, user_id))
        return True


class FakeUsageSource:
    """Fixed usage and limits for the quota validator."""

    def __init__(
        self,
        usage: UsageSnapshot | None = None,
        limits: UsageLimits | None = None,
        error: Exception | None = None,
    ) -> None:
        self.usage = usage or UsageSnapshot()
        self.limits = limits or UsageLimits(
            max_users=10,
            max_assets=1000,
            max_storage_gb=10,
            max_file_size_mb=100,
            max_asset_groups=50,
        )
        self.error = error

    async def get_current_usage(self, tenant_id: UUID) -> UsageSnapshot:
        if self.error:
            raise self.error
        return self.usage

    async def get_limits(self, tenant_id: UUID) -> UsageLimits:
        if self.error:
            raise self.error
        return self.limits
