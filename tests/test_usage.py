"""Tests for usage tracking and limit resolution."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest

from assethub.schemas.usage import GIB, UsageLimits, UsageSnapshot
from assethub.services.usage import (
    UsageService,
    build_usage_summary,
    merge_limits,
    month_id,
    next_month_start,
    percent,
)
from tests.fakes import FrozenClock


def _session_maker(db):
    """async_sessionmaker stand-in yielding ``db``."""
    context = MagicMock()
    context.__aenter__ = AsyncMock(return_value=db)
    context.__aexit__ = AsyncMock(return_value=None)
    return MagicMock(return_value=context)


@pytest.fixture
def redis():
    return AsyncMock()


@pytest.fixture
def db():
    return AsyncMock()


@pytest.fixture
def service(db, redis):
    clock = FrozenClock(datetime(2026, 3, 14, 12, 0, tzinfo=timezone.utc))
    return UsageService(_session_maker(db), redis, cache_ttl=600, clock=clock)


class TestPercent:
    @pytest.mark.parametrize(
        "part,whole,expected",
        [(2, 3, 67), (1, 3, 33), (1, 200, 1), (0, 10, 0), (10, 10, 100), (15, 10, 150), (5, 0, 0)],
    )
    def test_rounds_half_up(self, part, whole, expected):
        assert percent(part, whole) == expected


class TestMonths:
    def test_month_id(self):
        assert month_id(datetime(2026, 1, 31, 23, 59, tzinfo=timezone.utc)) == "2026-01"

    def test_next_month_start(self):
        assert next_month_start(datetime(2026, 3, 14, tzinfo=timezone.utc)) == datetime(
            2026, 4, 1, tzinfo=timezone.utc
        )

    def test_next_month_start_wraps_year(self):
        assert next_month_start(datetime(2026, 12, 31, tzinfo=timezone.utc)) == datetime(
            2027, 1, 1, tzinfo=timezone.utc
        )


class TestMergeLimits:
    def test_defaults_without_tier(self):
        limits = merge_limits(None, None)

        assert limits.max_users == 10
        assert limits.max_assets == 1000
        assert limits.max_storage_gb == 10
        assert limits.max_file_size_mb == 100
        assert limits.max_files_per_upload == 10

    def test_overrides_win_field_by_field(self):
        limits = merge_limits(
            {"max_assets": 5000, "max_storage_gb": 100},
            {"max_storage_gb": 250, "max_users": None},
        )

        assert limits.max_assets == 5000
        assert limits.max_storage_gb == 250
        assert limits.max_users == 10
        assert limits.max_asset_groups == 50

    def test_upload_settings_carry_through(self):
        limits = merge_limits(
            {"max_files_per_upload": 50, "allowed_file_types": ["image/*", "video/*"]},
            {"allowed_file_types": ["image/*"]},
        )

        assert limits.max_files_per_upload == 50
        assert limits.allowed_file_types == ["image/*"]
        assert merge_limits(None, None).allowed_file_types == []


class TestUsageSummary:
    def test_percentages_and_remaining(self):
        usage = UsageSnapshot(
            total_assets=500,
            total_storage_bytes=12 * GIB,
            total_users=3,
            monthly_uploads=42,
            monthly_active_users=2,
        )
        limits = UsageLimits(
            max_users=10,
            max_assets=1000,
            max_storage_gb=10,
            max_file_size_mb=100,
            max_asset_groups=50,
        )

        summary = build_usage_summary(usage, limits)

        assert summary.percentages.assets == 50
        assert summary.percentages.storage == 120
        assert summary.percentages.users == 30
        assert summary.remaining.assets == 500
        assert summary.remaining.storage_bytes == 0
        assert summary.trend.uploads_this_month == 42
        assert summary.trend.active_users_this_month == 2


class TestUsageService:
    @pytest.mark.asyncio
    async def test_cached_usage(self, service, redis):
        tenant_id = uuid4()
        redis.get.return_value = UsageSnapshot(total_assets=7).model_dump_json().encode()

        usage = await service.get_current_usage(tenant_id)

        assert usage.total_assets == 7
        redis.get.assert_awaited_once_with(f"usage:{tenant_id}:2026-03")

    @pytest.mark.asyncio
    async def test_cache_miss_recomputes(self, service, db, redis):
        tenant_id = uuid4()
        redis.get.return_value = None

        totals = MagicMock()
        totals.one.return_value = (4, 4096)
        users = MagicMock()
        users.scalar_one.return_value = 2
        metric = MagicMock()
        metric.scalar_one_or_none.return_value = MagicMock(
            monthly_uploads=3, monthly_downloads=1, monthly_active_users=2
        )
        db.execute.side_effect = [totals, users, metric, MagicMock()]

        usage = await service.get_current_usage(tenant_id)

        assert usage.total_assets == 4
        assert usage.total_storage_bytes == 4096
        assert usage.total_users == 2
        assert usage.monthly_uploads == 3
        db.commit.assert_awaited_once()
        redis.set.assert_awaited_once()
        assert redis.set.await_args.kwargs["ex"] == 600

    @pytest.mark.asyncio
    async def test_limits_merge_tier_and_overrides(self, service, db):
        tenant = MagicMock()
        tenant.tier.limits = {"max_assets": 5000, "max_storage_gb": 100}
        tenant.tier_overrides = {"max_storage_gb": 250}
        result = MagicMock()
        result.scalar_one_or_none.return_value = tenant
        db.execute.return_value = result

        limits = await service.get_limits(uuid4())

        assert limits.max_assets == 5000
        assert limits.max_storage_gb == 250

    @pytest.mark.asyncio
    async def test_limits_unknown_tenant(self, service, db):
        result = MagicMock()
        result.scalar_one_or_none.return_value = None
        db.execute.return_value = result

        with pytest.raises(LookupError):
            await service.get_limits(uuid4())

    @pytest.mark.asyncio
    async def test_increment_upload_count_invalidates_cache(self, service, db, redis):
        tenant_id = uuid4()

        await service.increment_upload_count(tenant_id)

        db.execute.assert_awaited_once()
        db.commit.assert_awaited_once()
        redis.delete.assert_awaited_once_with(f"usage:{tenant_id}:2026-03")

    @pytest.mark.asyncio
    async def test_first_activity_of_month_is_recorded(self, service, db, redis):
        tenant_id, user_id = uuid4(), uuid4()
        redis.sadd.return_value = 1
        redis.scard.return_value = 3

        recorded = await service.record_active_user(tenant_id, user_id)

        assert recorded is True
        redis.sadd.assert_awaited_once_with(f"active_users:{tenant_id}:2026-03", str(user_id))
        redis.expireat.assert_awaited_once_with(
            f"active_users:{tenant_id}:2026-03",
            datetime(2026, 4, 1, tzinfo=timezone.utc),
        )
        db.execute.assert_awaited_once()
        redis.delete.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_repeat_activity_is_ignored(self, service, db, redis):
        redis.sadd.return_value = 0

        recorded = await service.record_active_user(uuid4(), uuid4())

        assert recorded is False
        db.execute.assert_not_awaited()
        redis.delete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_failed_write_forgets_the_user(self, service, db, redis):
        tenant_id, user_id = uuid4(), uuid4()
        redis.sadd.return_value = 1
        redis.scard.return_value = 1
        db.execute.side_effect = RuntimeError("connection reset")

        with pytest.raises(RuntimeError):
            await service.record_active_user(tenant_id, user_id)

        redis.srem.assert_awaited_once_with(f"active_users:{tenant_id}:2026-03", str(user_id))
        redis.delete.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_history_most_recent_first(self, service, db):
        rows = [
            MagicMock(
                month="2026-03",
                total_assets=5,
                total_storage_bytes=100,
                total_users=2,
                total_asset_groups=0,
                monthly_uploads=4,
                monthly_downloads=0,
                monthly_active_users=2,
            ),
            MagicMock(
                month="2026-02",
                total_assets=1,
                total_storage_bytes=None,
                total_users=1,
                total_asset_groups=None,
                monthly_uploads=1,
                monthly_downloads=None,
                monthly_active_users=1,
            ),
        ]
        result = MagicMock()
        result.scalars.return_value.all.return_value = rows
        db.execute.return_value = result

        history = await service.get_usage_history(uuid4(), months=2)

        assert [entry.month for entry in history] == ["2026-03", "2026-02"]
        assert history[1].total_storage_bytes == 0

    @pytest.mark.asyncio
    async def test_increment_download_count(self, service, db, redis):
        tenant_id = uuid4()

        await service.increment_download_count(tenant_id)

        statement = db.execute.await_args.args[0]
        assert "monthly_downloads" in str(statement)
        redis.delete.assert_awaited_once_with(f"usage:{tenant_id}:2026-03")
