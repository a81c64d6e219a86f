"""Usage tracking: per-tenant snapshots, monthly counters and limits."""

import logging
from datetime import datetime, timezone
from uuid import UUID

from redis.asyncio import Redis
from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload

from assethub.config import get_settings
from assethub.core.clock import Clock, utcnow
from assethub.models.asset import Asset
from assethub.models.tenant import Tenant
from assethub.models.usage import UsageMetric
from assethub.models.user import User
from assethub.schemas.usage import (
    RemainingQuota,
    UsageHistoryEntry,
    UsageLimits,
    UsagePercentages,
    UsageSnapshot,
    UsageSummary,
    UsageTrend,
)

settings = get_settings()
logger = logging.getLogger(__name__)

LIMIT_FIELDS = tuple(UsageLimits.model_fields)


def month_id(now: datetime) -> str:
    """Calendar month identifier, ``YYYY-MM``."""
    return now.strftime("%Y-%m")


def next_month_start(now: datetime) -> datetime:
    if now.month == 12:
        return datetime(now.year + 1, 1, 1, tzinfo=timezone.utc)
    return datetime(now.year, now.month + 1, 1, tzinfo=timezone.utc)


def percent(part: int, whole: int) -> int:
    """Integer percentage rounded half-up; 0 when ``whole`` is not positive."""
    if whole <= 0:
        return 0
    return (200 * part + whole) // (2 * whole)


def default_limits() -> UsageLimits:
    return UsageLimits(
        max_users=settings.default_max_users,
        max_assets=settings.default_max_assets,
        max_storage_gb=settings.default_max_storage_gb,
        max_file_size_mb=settings.default_max_file_size_mb,
        max_asset_groups=settings.default_max_asset_groups,
        max_files_per_upload=settings.default_max_files_per_upload,
        allowed_file_types=list(settings.default_allowed_file_types),
    )


def merge_limits(base: dict | None, overrides: dict | None) -> UsageLimits:
    """Apply per-tenant overrides on top of tier limits, field by field."""
    fallback = default_limits().model_dump()
    base = base or {}
    overrides = overrides or {}

    merged = {}
    for field in LIMIT_FIELDS:
        if overrides.get(field) is not None:
            merged[field] = overrides[field]
        elif base.get(field) is not None:
            merged[field] = base[field]
        else:
            merged[field] = fallback[field]
    return UsageLimits(**merged)


class UsageService:
    """Service for tracking usage and resolving tenant limits.

    Snapshots are cached in Redis for ``cache_ttl`` seconds and invalidated
    by every event that changes them. Monthly counters live in one
    ``usage_metrics`` row per tenant and month.
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        redis: Redis,
        cache_ttl: int = settings.usage_cache_ttl_seconds,
        clock: Clock = utcnow,
    ) -> None:
        self.session_maker = session_maker
        self.redis = redis
        self.cache_ttl = cache_ttl
        self.clock = clock

    def current_month(self) -> str:
        return month_id(self.clock())

    @staticmethod
    def _cache_key(tenant_id: UUID, month: str) -> str:
        return f"usage:{tenant_id}:{month}"

    @staticmethod
    def _active_users_key(tenant_id: UUID, month: str) -> str:
        return f"active_users:{tenant_id}:{month}"

    async def get_cached_usage(self, tenant_id: UUID) -> UsageSnapshot | None:
        cached = await self.redis.get(self._cache_key(tenant_id, self.current_month()))
        if cached is None:
            return None
        return UsageSnapshot.model_validate_json(cached)

    async def get_current_usage(self, tenant_id: UUID) -> UsageSnapshot:
        """Cached snapshot, recomputed on miss."""
        cached = await self.get_cached_usage(tenant_id)
        if cached is not None:
            return cached
        return await self.refresh_usage(tenant_id)

    async def refresh_usage(self, tenant_id: UUID) -> UsageSnapshot:
        """Recompute totals from live assets and store them for this month."""
        month = self.current_month()

        async with self.session_maker() as db:
            result = await db.execute(
                select(
                    func.count(Asset.id),
                    func.coalesce(func.sum(Asset.file_size), 0),
                )
                .where(Asset.tenant_id == tenant_id)
                .where(Asset.deleted_at.is_(None))
            )
            total_assets, total_storage_bytes = result.one()

            result = await db.execute(
                select(func.count(User.id)).where(User.tenant_id == tenant_id)
            )
            total_users = result.scalar_one() or 0

            result = await db.execute(
                select(UsageMetric)
                .where(UsageMetric.tenant_id == tenant_id)
                .where(UsageMetric.month == month)
            )
            metric = result.scalar_one_or_none()

            snapshot = UsageSnapshot(
                total_assets=total_assets or 0,
                total_storage_bytes=int(total_storage_bytes or 0),
                total_users=total_users,
                total_asset_groups=0,
                monthly_uploads=metric.monthly_uploads if metric else 0,
                monthly_downloads=metric.monthly_downloads if metric else 0,
                monthly_active_users=metric.monthly_active_users if metric else 0,
            )

            totals = {
                "total_assets": snapshot.total_assets,
                "total_storage_bytes": snapshot.total_storage_bytes,
                "total_users": snapshot.total_users,
                "total_asset_groups": snapshot.total_asset_groups,
            }
            stmt = (
                pg_insert(UsageMetric)
                .values(tenant_id=tenant_id, month=month, **totals)
                .on_conflict_do_update(
                    constraint="uq_usage_metrics_tenant_month",
                    set_={**totals, "calculated_at": func.now()},
                )
            )
            await db.execute(stmt)
            await db.commit()

        logger.debug(
            f"Recomputed usage for tenant {tenant_id}: "
            f"{snapshot.total_assets} assets, {snapshot.total_storage_bytes} bytes"
        )
        await self.redis.set(
            self._cache_key(tenant_id, month),
            snapshot.model_dump_json(),
            ex=self.cache_ttl,
        )
        return snapshot

    async def invalidate(self, tenant_id: UUID) -> None:
        """Drop the cached snapshot (uploads, downloads, asset deletion)."""
        await self.redis.delete(self._cache_key(tenant_id, self.current_month()))

    async def get_limits(self, tenant_id: UUID) -> UsageLimits:
        """Tier limits with tenant overrides applied.

        Raises:
            LookupError: if the tenant does not exist.
        """
        async with self.session_maker() as db:
            result = await db.execute(
                select(Tenant)
                .where(Tenant.id == tenant_id)
                .options(selectinload(Tenant.tier))
            )
            tenant = result.scalar_one_or_none()

        if tenant is None:
            raise LookupError(f"Tenant {tenant_id} not found")

        base = tenant.tier.limits if tenant.tier else None
        return merge_limits(base, tenant.tier_overrides)

    async def _increment(self, tenant_id: UUID, column: str) -> None:
        month = self.current_month()
        async with self.session_maker() as db:
            stmt = (
                pg_insert(UsageMetric)
                .values(tenant_id=tenant_id, month=month, **{column: 1})
                .on_conflict_do_update(
                    constraint="uq_usage_metrics_tenant_month",
                    set_={
                        column: getattr(UsageMetric, column) + 1,
                        "calculated_at": func.now(),
                    },
                )
            )
            await db.execute(stmt)
            await db.commit()
        await self.invalidate(tenant_id)

    async def increment_upload_count(self, tenant_id: UUID) -> None:
        await self._increment(tenant_id, "monthly_uploads")

    async def increment_download_count(self, tenant_id: UUID) -> None:
        await self._increment(tenant_id, "monthly_downloads")

    async def record_active_user(self, tenant_id: UUID, user_id: UUID) -> bool:
        """Count a user as active this month. Returns False if already counted."""
        now = self.clock()
        month = month_id(now)
        key = self._active_users_key(tenant_id, month)

        added = await self.redis.sadd(key, str(user_id))
        if not added:
            return False

        try:
            await self.redis.expireat(key, next_month_start(now))
            active_users = await self.redis.scard(key)

            async with self.session_maker() as db:
                stmt = (
                    pg_insert(UsageMetric)
                    .values(tenant_id=tenant_id, month=month, monthly_active_users=active_users)
                    .on_conflict_do_update(
                        constraint="uq_usage_metrics_tenant_month",
                        set_={
                            "monthly_active_users": active_users,
                            "calculated_at": func.now(),
                        },
                    )
                )
                await db.execute(stmt)
                await db.commit()
        except Exception:
            # Forget the member so the next activity retries the write
            await self.redis.srem(key, str(user_id))
            raise

        await self.invalidate(tenant_id)
        return True

    async def get_usage_history(
        self, tenant_id: UUID, months: int = 12
    ) -> list[UsageHistoryEntry]:
        """Stored monthly rows, most recent first."""
        async with self.session_maker() as db:
            result = await db.execute(
                select(UsageMetric)
                .where(UsageMetric.tenant_id == tenant_id)
                .order_by(UsageMetric.month.desc())
                .limit(months)
            )
            rows = result.scalars().all()

        return [
            UsageHistoryEntry(
                month=row.month,
                total_assets=row.total_assets or 0,
                total_storage_bytes=row.total_storage_bytes or 0,
                total_users=row.total_users or 0,
                total_asset_groups=row.total_asset_groups or 0,
                monthly_uploads=row.monthly_uploads or 0,
                monthly_downloads=row.monthly_downloads or 0,
                monthly_active_users=row.monthly_active_users or 0,
            )
            for row in rows
        ]

    async def get_usage_summary(self, tenant_id: UUID) -> UsageSummary:
        usage = await self.get_current_usage(tenant_id)
        limits = await self.get_limits(tenant_id)
        return build_usage_summary(usage, limits)


def build_usage_summary(usage: UsageSnapshot, limits: UsageLimits) -> UsageSummary:
    """Display figures; percentages are never used for admission."""
    return UsageSummary(
        current=usage,
        limits=limits,
        percentages=UsagePercentages(
            assets=percent(usage.total_assets, limits.max_assets),
            storage=percent(usage.total_storage_bytes, limits.max_storage_bytes),
            users=percent(usage.total_users, limits.max_users),
        ),
        remaining=RemainingQuota(
            assets=max(0, limits.max_assets - usage.total_assets),
            storage_bytes=max(0, limits.max_storage_bytes - usage.total_storage_bytes),
            users=max(0, limits.max_users - usage.total_users),
        ),
        trend=UsageTrend(
            uploads_this_month=usage.monthly_uploads,
            downloads_this_month=usage.monthly_downloads,
            active_users_this_month=usage.monthly_active_users,
        ),
    )
